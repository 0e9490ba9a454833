import io
import os
import struct

import pytest
from cryptography.hazmat.primitives.asymmetric import padding

from pgpstream import crypto
from pgpstream.error import (
    InvalidPassword,
    InvalidSessionKey,
    MalformedPacket,
    ModificationDetected,
    UnsupportedAlgorithm,
)
from pgpstream.glue import Cursor
from pgpstream.openpgp import HashAlgorithm, PublicKeyAlgorithm, SymmetricAlgorithm
from pgpstream.packet import PacketParser

import builder

def test_s2k_iterated():
    salt = os.urandom(8)
    s2k = crypto.S2K.parse(Cursor(bytes([3, builder.SHA256]) + salt + b"\x60"))
    assert s2k.count == 65536
    assert s2k.derive(b"password", 32) == \
        builder.s2k_iterated_sha256(b"password", salt, 0x60)

def test_s2k_simple():
    s2k = crypto.S2K.parse(Cursor(bytes([0, builder.SHA1])))
    key = s2k.derive(b"pw", 32)
    assert key[:20] == builder.sha1(b"pw")
    assert key[20:] == builder.sha1(b"\x00pw")[:12]

def test_s2k_unsupported():
    with pytest.raises(UnsupportedAlgorithm):
        crypto.S2K.parse(Cursor(bytes([42, builder.SHA1])))
    with pytest.raises(UnsupportedAlgorithm):
        crypto.S2K.parse(Cursor(bytes([3, 99]) + bytes(9)))

def test_quick_check():
    key = os.urandom(32)
    body = builder.seip_body(key, b"data")
    assert crypto.quick_check(SymmetricAlgorithm.AES256, key, body[1:19])
    assert not crypto.quick_check(SymmetricAlgorithm.AES256, os.urandom(32),
                                  body[1:19])

def decrypting_reader(key, body):
    inner = io.BytesIO(body[19:])
    return crypto.DecryptingReader(inner, SymmetricAlgorithm.AES256, key,
                                   body[1:19])

def test_decrypting_reader():
    key = os.urandom(32)
    plaintext = os.urandom(20000)
    r = decrypting_reader(key, builder.seip_body(key, plaintext))
    assert r.read() == plaintext

def test_decrypting_reader_wrong_key():
    body = builder.seip_body(os.urandom(32), b"data")
    with pytest.raises(InvalidSessionKey):
        decrypting_reader(os.urandom(32), body)

def test_decrypting_reader_modified():
    key = os.urandom(32)
    body = bytearray(builder.seip_body(key, os.urandom(100)))
    body[60] ^= 0xFF
    with pytest.raises(ModificationDetected):
        decrypting_reader(key, bytes(body)).read()

def test_decrypting_reader_failure_is_sticky():
    key = os.urandom(32)
    body = bytearray(builder.seip_body(key, os.urandom(100)))
    body[60] ^= 0x01
    r = decrypting_reader(key, bytes(body))
    with pytest.raises(ModificationDetected):
        r.read()
    with pytest.raises(ModificationDetected):
        r.read()

def test_decrypting_reader_truncated():
    key = os.urandom(32)
    seip = PacketParser.from_bytes(builder.seip(key, os.urandom(100))[:-10]).next()
    r = crypto.DecryptingReader(seip.body, SymmetricAlgorithm.AES256, key,
                                seip.prefix(18))
    with pytest.raises(ModificationDetected):
        r.read()

def test_decrypting_reader_without_mdc():
    key = os.urandom(32)
    body = builder.seip_body(key, b"data")[:-22]
    with pytest.raises(ModificationDetected):
        decrypting_reader(key, body).read()

def test_unlock_secret_wrong_passphrase(bob):
    key = PacketParser.from_bytes(bob.secret_packet(b"right")).next()
    with pytest.raises(InvalidPassword):
        crypto.unlock_secret(key.algorithm, key.secret, b"wrong")
    fields = crypto.unlock_secret(key.algorithm, key.secret, b"right")
    assert set(fields) == {"d", "p", "q", "u"}

def test_unlock_secret_checksum(alice):
    key = PacketParser.from_bytes(alice.secret_packet()).next()
    assert "secret" in crypto.unlock_secret(key.algorithm, key.secret, None)

def session_key_esk(bob, m):
    c = bob.private.public_key().encrypt(m, padding.PKCS1v15())
    return {"c": int.from_bytes(c, "big")}

def test_rsa_session_key(bob):
    packet = PacketParser.from_bytes(bob.secret_packet()).next()
    session_key = os.urandom(32)
    checksum = struct.pack(">H", sum(session_key) & 0xFFFF)
    esk = session_key_esk(bob, bytes([builder.AES256]) + session_key + checksum)
    algorithm, key = crypto.decrypt_session_key(
        packet.algorithm, packet.public,
        crypto.unlock_secret(packet.algorithm, packet.secret, None),
        packet.fingerprint, esk)
    assert algorithm == SymmetricAlgorithm.AES256
    assert key == session_key

def test_session_key_checksum(bob):
    session_key = os.urandom(32)
    wrong = struct.pack(">H", (sum(session_key) + 1) & 0xFFFF)
    esk = session_key_esk(bob, bytes([builder.AES256]) + session_key + wrong)
    packet = PacketParser.from_bytes(bob.secret_packet()).next()
    with pytest.raises(InvalidSessionKey):
        crypto.decrypt_session_key(
            packet.algorithm, packet.public,
            crypto.unlock_secret(packet.algorithm, packet.secret, None),
            packet.fingerprint, esk)

def test_ecdh_session_key(alice_enc):
    session_key = os.urandom(32)
    pkesk = PacketParser.from_bytes(builder.pkesk(alice_enc, session_key)).next()
    key = PacketParser.from_bytes(alice_enc.secret_packet(subkey=True)).next()
    algorithm, decrypted = key.unlock(None).decrypt_session_key(pkesk)
    assert algorithm == SymmetricAlgorithm.AES256
    assert decrypted == session_key

def test_session_key_algorithm_mismatch(alice_enc, bob):
    pkesk = PacketParser.from_bytes(builder.pkesk(bob, os.urandom(32))).next()
    key = PacketParser.from_bytes(alice_enc.secret_packet(subkey=True)).next()
    with pytest.raises(UnsupportedAlgorithm):
        key.unlock(None).decrypt_session_key(pkesk)

def test_verify_signature(alice, bob):
    digest = builder.sha1(b"data") + bytes(12)
    for signer in (alice, bob):
        key = PacketParser.from_bytes(signer.public_packet()).next()
        mpis = crypto.parse_signature_mpis(key.algorithm,
                                           Cursor(signer.sign(digest)))
        assert crypto.verify_signature(key.algorithm, key.public, mpis,
                                       HashAlgorithm.SHA256, digest)
        assert not crypto.verify_signature(key.algorithm, key.public, mpis,
                                           HashAlgorithm.SHA256, digest[::-1])

def test_cannot_sign_with_ecdh(alice_enc):
    key = PacketParser.from_bytes(alice_enc.public_packet()).next()
    assert key.algorithm == PublicKeyAlgorithm.ECDH
    with pytest.raises(UnsupportedAlgorithm):
        crypto.verify_signature(key.algorithm, key.public, [1, 2],
                                HashAlgorithm.SHA256, bytes(32))

def test_mpi_bit_count():
    assert Cursor(b"\x00\x00").mpi() == 0
    assert Cursor(b"\x00\x09\x01\x00").mpi() == 256
    assert Cursor(builder.mpi_bytes(b"\x40" + bytes(32))).mpi_bytes()[0] == 0x40
    for data in (b"\x00\x0a\x01\x00",   # slack bits
                 b"\x00\x08\x01\x00",   # too few bits
                 b"\x00\x10\x00\xff"):  # leading zero octet
        with pytest.raises(MalformedPacket):
            Cursor(data).mpi()
