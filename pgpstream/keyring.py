import logging
import os
from types import MappingProxyType

from .core import Reader
from .error import ConfigurationError, Error, InvalidPassword, StructuralError
from .openpgp import decoder_stream
from .packet import Key, PacketParser

logger = logging.getLogger(__name__)

class KeyRing(object):
    """An immutable collection of keys, indexed by key ID.

    Primary keys and subkeys are indexed alike.  If two keys share a
    key ID, the first one wins.
    """

    def __init__(self, keys=()):
        index = {}
        for key in keys:
            index.setdefault(key.keyid, key)
        self.__keys = MappingProxyType(index)

    @classmethod
    def from_reader(cls, reader):
        try:
            parser = PacketParser(decoder_stream(reader))
            keys = [p for p in parser if isinstance(p, Key)]
        except Error as e:
            raise ConfigurationError("Malformed key ring: {}".format(e)) from e
        return KeyRing(keys)

    @classmethod
    def from_bytes(cls, source):
        with Reader.from_bytes(source) as reader:
            return cls.from_reader(reader)

    @classmethod
    def open(cls, filename):
        try:
            reader = Reader.open(filename)
        except OSError as e:
            raise ConfigurationError(
                "Cannot open key ring {}: {}".format(filename, e)) from e
        with reader:
            return cls.from_reader(reader)

    @classmethod
    def load(cls, source):
        """Builds a KeyRing from any of the accepted key ring sources."""
        if source is None:
            return KeyRing()
        if isinstance(source, KeyRing):
            return source
        if isinstance(source, (bytes, bytearray, memoryview)):
            return cls.from_bytes(source)
        if isinstance(source, (str, os.PathLike)):
            return cls.open(source)
        if hasattr(source, "read"):
            return cls.from_reader(source)
        raise ConfigurationError(
            "Cannot read a key ring from {}".format(type(source).__name__))

    def get(self, keyid):
        return self.__keys.get(keyid)

    def keyids(self):
        return list(self.__keys)

    def __contains__(self, keyid):
        return keyid in self.__keys

    def __len__(self):
        return len(self.__keys)

    def __iter__(self):
        return iter(self.__keys.values())

    def __str__(self):
        return "<KeyRing {} keys>".format(len(self))

class KeyResolver(object):
    """Looks up keys for decryption and verification.

    All secret keys are unlocked with the same passphrase.  It is kept
    in a bytearray that close() overwrites.
    """

    def __init__(self, public_keyring, secret_keyring, passphrase=None):
        self.public_keyring = public_keyring
        self.secret_keyring = secret_keyring
        if isinstance(passphrase, str):
            passphrase = passphrase.encode("utf-8")
        self.__passphrase = bytearray(passphrase or b"")

    @classmethod
    def from_context(cls, ctx):
        return KeyResolver(ctx.public_keyring, ctx.secret_keyring,
                           ctx.take_passphrase())

    def unlock(self, keyid):
        """Returns the unlocked secret key, or None if there is none.

        Raises InvalidPassword if the key exists but the passphrase
        does not unlock it.
        """
        if self.__passphrase is None:
            raise ConfigurationError("Key resolver has been closed")
        key = self.secret_keyring.get(keyid)
        if key is None or not key.is_secret:
            return None
        return key.unlock(self.__passphrase)

    def resolve_secret_key(self, keyid):
        try:
            unlocked = self.unlock(keyid)
        except InvalidPassword:
            logger.debug("Passphrase does not unlock secret key %s", keyid)
            return None
        except StructuralError as e:
            logger.debug("Cannot use secret key %s: %s", keyid, e)
            return None
        if unlocked is None:
            logger.debug("No secret key for %s", keyid)
        return unlocked

    def resolve_public_key(self, keyid):
        return self.public_keyring.get(keyid)

    def secret_keyids(self):
        """Key IDs of all secret keys that can decrypt."""
        return [k.keyid for k in self.secret_keyring
                if k.is_secret and k.can_encrypt]

    def close(self):
        if self.__passphrase is not None:
            for i in range(len(self.__passphrase)):
                self.__passphrase[i] = 0
            self.__passphrase = None

    # Implement the context manager protocol.
    def __enter__(self):
        return self
    def __exit__(self, *args):
        self.close()
        return False
