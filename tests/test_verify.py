import pytest

from pgpstream.error import MalformedPacket, UnsupportedHashAlgorithm
from pgpstream.packet import PacketParser
from pgpstream.verify import (
    DecryptionState,
    PendingSignature,
    Validation,
    ValidationOutcome,
)

import builder

TEXT = b"first\r\nsecond\nthird\rfourth\r\n\r\nlast"

def pending(signer, sigtype=builder.BINARY):
    ops = PacketParser.from_bytes(builder.one_pass_sig(signer, sigtype)).next()
    key = PacketParser.from_bytes(signer.public_packet()).next()
    return PendingSignature(ops, key)

def parse_signature(signer, data, sigtype=builder.BINARY, corrupt=False):
    return PacketParser.from_bytes(
        builder.signature(signer, data, sigtype, corrupt)).next()

def chunked(data, size):
    return [data[i:i + size] for i in range(0, len(data), size)]

def test_binary_signature(alice):
    p = pending(alice)
    for chunk in chunked(TEXT, 4):
        p.update(chunk)
    assert p.verify(parse_signature(alice, TEXT))
    # Verifying does not consume the digest.
    assert p.verify(parse_signature(alice, TEXT))

def test_text_signature_any_chunking(alice, bob):
    sig = parse_signature(alice, TEXT, builder.TEXT)
    for size in range(1, len(TEXT) + 1):
        p = pending(alice, builder.TEXT)
        for chunk in chunked(TEXT, size):
            p.update(chunk)
        assert p.verify(sig), size

def test_modified_data(alice):
    p = pending(alice)
    p.update(TEXT + b"!")
    assert not p.verify(parse_signature(alice, TEXT))

def test_bad_signature_value(bob):
    p = pending(bob)
    p.update(TEXT)
    assert not p.verify(parse_signature(bob, TEXT, corrupt=True))

def test_signature_type_mismatch(alice):
    p = pending(alice)
    p.update(TEXT)
    assert not p.verify(parse_signature(alice, TEXT, builder.TEXT))

def test_wrong_signer(alice, bob):
    p = pending(alice)
    p.update(TEXT)
    assert not p.verify(parse_signature(bob, TEXT))

def test_unsupported_hash(alice):
    ops = bytes([3, 0, 1, builder.EDDSA]) + alice.keyid() + b"\x01"
    ops = PacketParser.from_bytes(builder.packet(builder.ONE_PASS_SIG, ops)).next()
    key = PacketParser.from_bytes(alice.public_packet()).next()
    with pytest.raises(UnsupportedHashAlgorithm):
        PendingSignature(ops, key)

def test_decryption_state(alice, bob):
    state = DecryptionState()
    assert state.num_signatures == 0
    state.add_signature(pending(alice))
    state.add_signature(pending(bob))
    state.update(TEXT)
    assert state.num_signatures == 2
    assert state.pending[0].verify(parse_signature(alice, TEXT))
    assert state.pending[1].verify(parse_signature(bob, TEXT))
    assert state.read_trailing_signatures() == []

def test_matches(alice, bob):
    p = pending(alice, builder.TEXT)
    assert p.matches(parse_signature(alice, TEXT, builder.TEXT))
    assert not p.matches(parse_signature(alice, TEXT))
    assert not p.matches(parse_signature(bob, TEXT, builder.TEXT))

def test_integrity_error_without_encryption():
    state = DecryptionState()
    error = MalformedPacket("Truncated packet body")
    assert state.integrity_error(error) is error

def test_outcomes():
    assert ValidationOutcome.incomplete().status == Validation.Incomplete
    assert ValidationOutcome.unsigned().status == Validation.Unsigned
    failed = ValidationOutcome.failed("Bad signature")
    assert failed.status == Validation.Failed
    assert not failed.is_verified
    assert "Bad signature" in str(failed)
    verified = ValidationOutcome.verified(["someone"])
    assert verified.is_verified
    assert verified.signers == ["someone"]
    assert verified.reason is None
