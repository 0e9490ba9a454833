import pytest

from pgpstream.error import ConfigurationError, InvalidPassword
from pgpstream.keyring import KeyRing, KeyResolver
from pgpstream.openpgp import KeyID
from pgpstream.packet import UnlockedKey

import builder
from builder import KeyMaterial
from conftest import PASSPHRASE

def resolver(public_ring, secret_ring, passphrase=PASSPHRASE):
    return KeyResolver(KeyRing.from_bytes(public_ring),
                       KeyRing.from_bytes(secret_ring), passphrase)

def keyid(key):
    return KeyID.from_bytes(key.keyid())

def test_resolve_secret_key(public_ring, secret_ring, alice_enc, bob):
    with resolver(public_ring, secret_ring) as r:
        for key in (alice_enc, bob):
            unlocked = r.resolve_secret_key(keyid(key))
            assert isinstance(unlocked, UnlockedKey)
            assert unlocked.keyid == keyid(key)

def test_wrong_passphrase(public_ring, secret_ring, bob):
    with resolver(public_ring, secret_ring, b"wrong") as r:
        assert r.resolve_secret_key(keyid(bob)) is None
        # Told apart from a missing key.
        with pytest.raises(InvalidPassword):
            r.unlock(keyid(bob))
        assert r.unlock(KeyID.wildcard()) is None

def test_missing_key(public_ring, secret_ring):
    with resolver(public_ring, secret_ring) as r:
        assert r.resolve_secret_key(KeyID.from_hex("0123456789ABCDEF")) is None
        assert r.resolve_public_key(KeyID.from_hex("0123456789ABCDEF")) is None

def test_public_key_has_no_secret(public_ring, alice):
    with resolver(public_ring, public_ring) as r:
        assert r.resolve_secret_key(keyid(alice)) is None

def test_unprotected_key():
    key = KeyMaterial.cv25519()
    ring = key.secret_packet(subkey=True)
    with resolver(b"", ring, None) as r:
        assert r.resolve_secret_key(keyid(key)) is not None

def test_resolve_public_key(public_ring, secret_ring, alice):
    with resolver(public_ring, secret_ring) as r:
        key = r.resolve_public_key(keyid(alice))
        assert bytes(key.fingerprint) == alice.fingerprint()
        assert not key.is_secret

def test_secret_keyids(public_ring, secret_ring, alice, alice_enc, bob):
    with resolver(public_ring, secret_ring) as r:
        assert r.secret_keyids() == [keyid(alice_enc), keyid(bob)]
    with resolver(public_ring, public_ring) as r:
        assert r.secret_keyids() == []

def test_str_passphrase(public_ring, secret_ring, bob):
    with resolver(public_ring, secret_ring, PASSPHRASE.decode()) as r:
        assert r.resolve_secret_key(keyid(bob)) is not None

def test_close(public_ring, secret_ring, bob):
    r = resolver(public_ring, secret_ring)
    r.close()
    r.close()
    with pytest.raises(ConfigurationError):
        r.resolve_secret_key(keyid(bob))

def test_gnu_dummy_key(alice_enc):
    # A stub whose secret part lives elsewhere.
    body = alice_enc.public_body() + bytes([255, builder.AES256, 101, 0]) \
        + b"GNU" + bytes([1])
    ring = builder.packet(builder.SECRET_SUBKEY, body)
    with resolver(b"", ring) as r:
        assert r.resolve_secret_key(keyid(alice_enc)) is None
