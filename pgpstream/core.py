import io
import os
from enum import Enum

from .error import ConfigurationError

# Containers (encryption, compression) that may be nested in a message.
MAX_RECURSION_DEPTH = 16

class ValidationPolicy(Enum):
    Required = "required"
    Optional = "optional"

    def is_signature_check_required(self):
        return self is ValidationPolicy.Required

class Context(object):
    """Configuration for decrypting and verifying messages.

    The key rings may be given as KeyRing objects, bytes, open binary
    files or file names; they are parsed here so that a malformed ring
    is reported when the context is built, not in the middle of a
    decryption.  The passphrase is handed over to the KeyResolver and
    not kept by the context.
    """

    def __init__(self, public_keyring=None, secret_keyring=None,
                 passphrase=None,
                 policy=ValidationPolicy.Required,
                 max_recursion_depth=MAX_RECURSION_DEPTH):
        # keyring imports the reader classes below.
        from .keyring import KeyRing

        if not hasattr(policy, "is_signature_check_required"):
            raise ConfigurationError(
                "Policy must provide is_signature_check_required(): {!r}"
                .format(policy))
        if not isinstance(max_recursion_depth, int) or max_recursion_depth < 1:
            raise ConfigurationError(
                "max_recursion_depth must be a positive integer, got {!r}"
                .format(max_recursion_depth))

        self.public_keyring = KeyRing.load(public_keyring)
        self.secret_keyring = KeyRing.load(secret_keyring)
        self.policy = policy
        self.max_recursion_depth = max_recursion_depth
        self.__passphrase = passphrase
        self.__passphrase_taken = False

    def take_passphrase(self):
        """Returns the passphrase and forgets it.

        A context with a passphrase serves a single Decryptor.
        """
        if self.__passphrase_taken:
            raise ConfigurationError(
                "The passphrase was already taken by another Decryptor")
        passphrase, self.__passphrase = self.__passphrase, None
        self.__passphrase_taken = passphrase is not None
        return passphrase

class AbstractReader(io.RawIOBase):
    def readable(self):
        return True
    def writable(self):
        return False

    def drain(self):
        """Reads and discards everything up to the end of the stream."""
        while self.read(io.DEFAULT_BUFFER_SIZE):
            pass

    # Implement the context manager protocol.
    def __enter__(self):
        return self
    def __exit__(self, *args):
        self.close()
        return False

class Reader(AbstractReader):
    """Adapts any binary file object, and allows peeking at its head."""

    def __init__(self, inner, owned=False):
        super(Reader, self).__init__()
        self.inner = inner
        self.__owned = owned
        self.__pushback = b""

    @classmethod
    def open(cls, filename):
        return Reader(open(filename, "rb"), owned=True)

    @classmethod
    def from_fd(cls, fd):
        return Reader(os.fdopen(fd, "rb"), owned=True)

    @classmethod
    def from_bytes(cls, buf):
        return Reader(io.BytesIO(bytes(buf)), owned=True)

    @classmethod
    def wrap(cls, source):
        """Returns source as a Reader, accepting bytes and file objects."""
        if isinstance(source, Reader):
            return source
        if isinstance(source, (bytes, bytearray, memoryview)):
            return cls.from_bytes(source)
        if hasattr(source, "read"):
            return Reader(source)
        raise TypeError("Expected bytes or a binary file object, got {}"
                        .format(type(source).__name__))

    def peek(self, n):
        while len(self.__pushback) < n:
            chunk = self.inner.read(n - len(self.__pushback))
            if not chunk:
                break
            self.__pushback += chunk
        return self.__pushback[:n]

    def readinto(self, buf):
        if self.__pushback:
            n = min(len(buf), len(self.__pushback))
            buf[:n] = self.__pushback[:n]
            self.__pushback = self.__pushback[n:]
            return n
        data = self.inner.read(len(buf))
        if not data:
            return 0
        n = len(data)
        buf[:n] = data
        return n

    def close(self):
        if not self.closed and self.__owned:
            self.inner.close()
        super(Reader, self).close()
