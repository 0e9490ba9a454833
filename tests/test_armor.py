import os
from os.path import join
from tempfile import TemporaryDirectory

import pytest

from pgpstream.core import Reader
from pgpstream.error import MalformedPacket
from pgpstream.openpgp import ArmorReader, Kind, crc24, decoder_stream

import builder

TEST_VECTORS = [0, 1, 2, 3, 47, 48, 49, 50, 51, 5000]

def vector(t):
    return bytes(i % 251 for i in range(t))

def test_dearmor_file():
    for t in TEST_VECTORS:
        with TemporaryDirectory() as tmp:
            asc = join(tmp, "a.asc")
            with open(asc, "wb") as f:
                f.write(builder.armor(vector(t), "ARMORED FILE"))
            ar = ArmorReader.new(Reader.open(asc))
            assert vector(t) == ar.read()
            ar.close()

def test_dearmor_fd():
    for t in TEST_VECTORS:
        with TemporaryDirectory() as tmp:
            asc = join(tmp, "a.asc")
            with open(asc, "wb") as f:
                f.write(builder.armor(vector(t), "ARMORED FILE"))
            fd = os.open(asc, os.O_RDONLY)
            with ArmorReader.new(Reader.from_fd(fd)) as ar:
                assert vector(t) == ar.read()

def test_dearmor_bytes():
    for t in TEST_VECTORS:
        asc = builder.armor(vector(t), "ARMORED FILE")
        ar = ArmorReader.new(Reader.from_bytes(asc))
        assert vector(t) == ar.read()
        assert ar.label == "ARMORED FILE"

def test_headers():
    asc = builder.armor(b"data", headers=[("Version", "1"),
                                          ("Comment", "a: b")])
    ar = ArmorReader.new(Reader.from_bytes(asc), Kind.Message)
    assert ar.read() == b"data"
    assert ar.headers == [("Version", "1"), ("Comment", "a: b")]

def test_leading_text():
    asc = b"Some text before the armor.\r\n\r\n" \
        + builder.armor(b"data").replace(b"\n", b"\r\n")
    assert ArmorReader.new(Reader.from_bytes(asc)).read() == b"data"

def test_kind_mismatch():
    asc = builder.armor(b"data", "PUBLIC KEY BLOCK")
    with pytest.raises(MalformedPacket):
        ArmorReader.new(Reader.from_bytes(asc), Kind.Message).read()
    ar = ArmorReader.new(Reader.from_bytes(asc), Kind.PublicKey)
    assert ar.read() == b"data"

def test_bad_checksum():
    lines = builder.armor(b"data").split(b"\n")
    asc = b"\n".join(b"=AAAA" if l.startswith(b"=") else l for l in lines)
    with pytest.raises(MalformedPacket):
        ArmorReader.new(Reader.from_bytes(asc)).read()

def test_missing_checksum():
    lines = builder.armor(vector(100)).split(b"\n")
    asc = b"\n".join(l for l in lines if not l.startswith(b"="))
    assert ArmorReader.new(Reader.from_bytes(asc)).read() == vector(100)

def test_truncated():
    asc = builder.armor(vector(200))
    with pytest.raises(MalformedPacket):
        ArmorReader.new(Reader.from_bytes(asc[:-40])).read()
    with pytest.raises(MalformedPacket):
        ArmorReader.new(Reader.from_bytes(b"no armor here")).read()

def test_crc24():
    assert crc24(b"") == 0xB704CE
    for t in TEST_VECTORS:
        assert crc24(vector(t)) == builder.crc24(vector(t))

def test_decoder_stream():
    data = builder.literal(b"hello")
    assert decoder_stream(Reader.from_bytes(data)).read() == data
    assert decoder_stream(data).read() == data
    assert decoder_stream(b"\n\n" + builder.armor(data)).read() == data
