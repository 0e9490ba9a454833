import pytest

from pgpstream.core import Context, ValidationPolicy
from pgpstream.decrypt import Decryptor

from builder import KeyMaterial, keyring

PASSPHRASE = b"streng geheim"

@pytest.fixture(scope="session")
def alice():
    """Ed25519 signing key."""
    return KeyMaterial.ed25519()

@pytest.fixture(scope="session")
def alice_enc():
    """Curve25519 encryption subkey of alice."""
    return KeyMaterial.cv25519()

@pytest.fixture(scope="session")
def bob():
    """RSA key that signs and decrypts."""
    return KeyMaterial.rsa()

@pytest.fixture(scope="session")
def public_ring(alice, alice_enc, bob):
    return keyring(alice.public_packet(),
                   alice_enc.public_packet(subkey=True),
                   bob.public_packet())

@pytest.fixture(scope="session")
def secret_ring(alice, alice_enc, bob):
    return keyring(alice.secret_packet(PASSPHRASE),
                   alice_enc.secret_packet(PASSPHRASE, subkey=True),
                   bob.secret_packet(PASSPHRASE))

@pytest.fixture
def ctx(public_ring, secret_ring):
    return Context(public_ring, secret_ring, PASSPHRASE,
                   policy=ValidationPolicy.Required)

@pytest.fixture
def optional_ctx(public_ring, secret_ring):
    return Context(public_ring, secret_ring, PASSPHRASE,
                   policy=ValidationPolicy.Optional)

@pytest.fixture
def decryptor(ctx):
    with Decryptor(ctx) as d:
        yield d

@pytest.fixture
def lenient(optional_ctx):
    with Decryptor(optional_ctx) as d:
        yield d
