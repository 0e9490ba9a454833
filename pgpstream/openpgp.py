import base64
import binascii
from enum import Enum

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import algorithms

from .error import (
    MalformedPacket,
    MalformedValue,
    UnsupportedHashAlgorithm,
    UnsupportedPublicKeyAlgorithm,
    UnsupportedSymmetricAlgorithm,
)
from .core import AbstractReader, Reader

def _grouped(hexy, spacer):
    groups = [hexy[i:i + 4] for i in range(0, len(hexy), 4)]
    if spacer and len(groups) == 10:
        return " ".join(groups[:5]) + "  " + " ".join(groups[5:])
    return " ".join(groups)

def _unhex(s):
    if isinstance(s, (bytes, bytearray)):
        s = s.decode("ascii", "replace")
    s = "".join(s.split())
    if s.lower().startswith("0x"):
        s = s[2:]
    try:
        return bytes.fromhex(s)
    except ValueError as e:
        raise MalformedValue("Not a hex string: {!r}".format(s)) from e

class KeyID(object):
    __slots__ = ("_raw",)

    def __init__(self, raw):
        self._raw = bytes(raw)

    @classmethod
    def from_bytes(cls, raw):
        if len(raw) != 8:
            raise MalformedValue("KeyID must be of length 8")
        return KeyID(raw)

    @classmethod
    def from_hex(cls, s):
        raw = _unhex(s)
        if len(raw) == 20:
            # A v4 fingerprint; the key ID is its low 64 bits.
            raw = raw[-8:]
        return cls.from_bytes(raw)

    @classmethod
    def wildcard(cls):
        return KeyID(bytes(8))

    def is_wildcard(self):
        return self._raw == bytes(8)

    def hex(self):
        return self._raw.hex().upper()

    def __bytes__(self):
        return self._raw

    def __str__(self):
        return _grouped(self.hex(), False)

    def __repr__(self):
        return "KeyID({})".format(self.hex())

    def __eq__(self, other):
        return isinstance(other, KeyID) and self._raw == other._raw

    def __hash__(self):
        return hash(self._raw)

    def copy(self):
        return KeyID(self._raw)

class Fingerprint(object):
    __slots__ = ("_raw",)

    def __init__(self, raw):
        self._raw = bytes(raw)

    @classmethod
    def from_bytes(cls, raw):
        if len(raw) not in (20, 32):
            raise MalformedValue(
                "Fingerprint must be 20 or 32 bytes, got {}".format(len(raw)))
        return Fingerprint(raw)

    @classmethod
    def from_hex(cls, s):
        return cls.from_bytes(_unhex(s))

    def hex(self):
        return self._raw.hex().upper()

    def keyid(self):
        return KeyID(self._raw[-8:])

    def __bytes__(self):
        return self._raw

    def __str__(self):
        return _grouped(self.hex(), True)

    def __repr__(self):
        return "Fingerprint({})".format(self.hex())

    def __eq__(self, other):
        return isinstance(other, Fingerprint) and self._raw == other._raw

    def __hash__(self):
        return hash(self._raw)

    def copy(self):
        return Fingerprint(self._raw)

class Tag(Enum):
    Reserved = 0
    PKESK = 1
    Signature = 2
    SKESK = 3
    OnePassSig = 4
    SecretKey = 5
    PublicKey = 6
    SecretSubkey = 7
    CompressedData = 8
    SED = 9
    Marker = 10
    Literal = 11
    Trust = 12
    UserID = 13
    PublicSubkey = 14
    Unassigned15 = 15
    Unassigned16 = 16
    UserAttribute = 17
    SEIP = 18
    MDC = 19
    AED = 20
    Padding = 21

    @classmethod
    def from_int(cls, value):
        """Returns the Tag, or the bare integer for unassigned tags."""
        try:
            return cls(value)
        except ValueError:
            return value

class PublicKeyAlgorithm(Enum):
    RSAEncryptSign = 1
    RSAEncrypt = 2
    RSASign = 3
    ElGamalEncrypt = 16
    DSA = 17
    ECDH = 18
    ECDSA = 19
    ElGamalEncryptSign = 20
    EdDSA = 22

    @classmethod
    def from_int(cls, value):
        try:
            return cls(value)
        except ValueError as e:
            raise UnsupportedPublicKeyAlgorithm(
                "Unsupported public key algorithm {}".format(value)) from e

    @property
    def is_rsa(self):
        return self in (PublicKeyAlgorithm.RSAEncryptSign,
                        PublicKeyAlgorithm.RSAEncrypt,
                        PublicKeyAlgorithm.RSASign)

    @property
    def is_elgamal(self):
        return self in (PublicKeyAlgorithm.ElGamalEncrypt,
                        PublicKeyAlgorithm.ElGamalEncryptSign)

class SymmetricAlgorithm(Enum):
    Unencrypted = 0
    IDEA = 1
    TripleDES = 2
    CAST5 = 3
    Blowfish = 4
    AES128 = 7
    AES192 = 8
    AES256 = 9
    Twofish = 10
    Camellia128 = 11
    Camellia192 = 12
    Camellia256 = 13

    @classmethod
    def from_int(cls, value):
        try:
            return cls(value)
        except ValueError as e:
            raise UnsupportedSymmetricAlgorithm(
                "Unknown symmetric algorithm {}".format(value)) from e

    @property
    def key_size(self):
        return self._params()[1]

    @property
    def block_size(self):
        return 16

    def cipher(self, key):
        """Returns the cryptography block cipher keyed with key."""
        factory, key_size = self._params()
        if len(key) != key_size:
            raise UnsupportedSymmetricAlgorithm(
                "{} needs a {} byte key, got {}".format(
                    self.name, key_size, len(key)))
        return factory(key)

    def _params(self):
        try:
            return _SYMMETRIC[self]
        except KeyError:
            raise UnsupportedSymmetricAlgorithm(
                "Unsupported symmetric algorithm {}".format(self.name)) from None

_SYMMETRIC = {
    SymmetricAlgorithm.AES128: (algorithms.AES, 16),
    SymmetricAlgorithm.AES192: (algorithms.AES, 24),
    SymmetricAlgorithm.AES256: (algorithms.AES, 32),
    SymmetricAlgorithm.Camellia128: (algorithms.Camellia, 16),
    SymmetricAlgorithm.Camellia192: (algorithms.Camellia, 24),
    SymmetricAlgorithm.Camellia256: (algorithms.Camellia, 32),
}

class HashAlgorithm(Enum):
    MD5 = 1
    SHA1 = 2
    RIPEMD160 = 3
    SHA256 = 8
    SHA384 = 9
    SHA512 = 10
    SHA224 = 11

    @classmethod
    def from_int(cls, value):
        try:
            return cls(value)
        except ValueError as e:
            raise UnsupportedHashAlgorithm(
                "Unknown hash algorithm {}".format(value)) from e

    def algorithm(self):
        try:
            return _HASHES[self]()
        except KeyError:
            raise UnsupportedHashAlgorithm(
                "Unsupported hash algorithm {}".format(self.name)) from None

    def context(self):
        return hashes.Hash(self.algorithm())

_HASHES = {
    HashAlgorithm.SHA1: hashes.SHA1,
    HashAlgorithm.SHA224: hashes.SHA224,
    HashAlgorithm.SHA256: hashes.SHA256,
    HashAlgorithm.SHA384: hashes.SHA384,
    HashAlgorithm.SHA512: hashes.SHA512,
}

class CompressionAlgorithm(Enum):
    Uncompressed = 0
    Zip = 1
    Zlib = 2
    BZip2 = 3

class SignatureType(Enum):
    Binary = 0x00
    Text = 0x01
    Standalone = 0x02

class Curve(Enum):
    NistP256 = bytes.fromhex("2a8648ce3d030107")
    NistP384 = bytes.fromhex("2b81040022")
    NistP521 = bytes.fromhex("2b81040023")
    Ed25519 = bytes.fromhex("2b06010401da470f01")
    Cv25519 = bytes.fromhex("2b060104019755010501")

    @classmethod
    def from_oid(cls, oid):
        try:
            return cls(bytes(oid))
        except ValueError as e:
            raise UnsupportedPublicKeyAlgorithm(
                "Unsupported curve with OID {}".format(bytes(oid).hex())) from e

    @property
    def oid(self):
        return self.value

    def ec_curve(self):
        try:
            return _NIST_CURVES[self]()
        except KeyError:
            raise UnsupportedPublicKeyAlgorithm(
                "{} is not a Weierstrass curve".format(self.name)) from None

_NIST_CURVES = {
    Curve.NistP256: ec.SECP256R1,
    Curve.NistP384: ec.SECP384R1,
    Curve.NistP521: ec.SECP521R1,
}

CRC24_INIT = 0xB704CE
CRC24_POLY = 0x1864CFB

def _crc24_table():
    table = []
    for i in range(256):
        crc = i << 16
        for _ in range(8):
            crc <<= 1
            if crc & 0x1000000:
                crc ^= CRC24_POLY
        table.append(crc & 0xFFFFFF)
    return table

_CRC24_TABLE = _crc24_table()

def crc24(data, crc=CRC24_INIT):
    for b in data:
        crc = ((crc << 8) & 0xFFFFFF) ^ _CRC24_TABLE[((crc >> 16) ^ b) & 0xFF]
    return crc

class Kind(Enum):
    Message = "MESSAGE"
    PublicKey = "PUBLIC KEY BLOCK"
    SecretKey = "PRIVATE KEY BLOCK"
    Signature = "SIGNATURE"
    File = "ARMORED FILE"
    Any = None

class ArmorReader(AbstractReader):
    """Decodes an ASCII armored block into the binary data it carries.

    The armor lines are consumed lazily, so a large armored message is
    never held in memory.  A CRC-24 line, when present, is checked once
    the last data line has been read.
    """

    def __init__(self, inner, kind=Kind.Any):
        super(ArmorReader, self).__init__()
        self.inner = inner
        self.kind = kind
        self.label = None
        self.headers = []
        self.__raw = b""
        self.__pending = b""
        self.__buffer = b""
        self.__crc = CRC24_INIT
        self.__started = False
        self.__eof = False

    @classmethod
    def new(cls, inner, kind=Kind.Any):
        return cls(inner, kind)

    def readinto(self, buf):
        if not self.__started:
            self.__begin()
        while not self.__buffer and not self.__eof:
            self.__next_line()
        n = min(len(buf), len(self.__buffer))
        buf[:n] = self.__buffer[:n]
        self.__buffer = self.__buffer[n:]
        return n

    def close(self):
        super(ArmorReader, self).close()
        self.inner.close()

    def __readline(self):
        while b"\n" not in self.__raw:
            chunk = self.inner.read(4096)
            if not chunk:
                line, self.__raw = self.__raw, b""
                return line
            self.__raw += chunk
        line, _, self.__raw = self.__raw.partition(b"\n")
        return line + b"\n"

    def __begin(self):
        self.__started = True
        while True:
            line = self.__readline()
            if not line:
                raise MalformedPacket("No armor header line found")
            line = line.strip()
            if line.startswith(b"-----BEGIN PGP ") and line.endswith(b"-----"):
                self.label = line[15:-5].decode("ascii", "replace")
                break

        if self.kind.value is not None and self.label != self.kind.value:
            raise MalformedPacket("Expected armored {}, found {}".format(
                self.kind.value, self.label))

        while True:
            line = self.__readline()
            if not line:
                raise MalformedPacket("Armor ends in its header")
            line = line.strip()
            if not line:
                break
            key, sep, value = line.partition(b": ")
            if not sep:
                # No blank line after the armor header line.
                self.__decode(line)
                break
            self.headers.append((key.decode("utf-8", "replace"),
                                 value.decode("utf-8", "replace")))

    def __next_line(self):
        line = self.__readline()
        if not line:
            raise MalformedPacket("Armor is missing its tail line")
        line = line.strip()
        if not line:
            return
        if line.startswith(b"-----END PGP "):
            self.__finish(None)
        elif line.startswith(b"=") and len(line) == 5:
            self.__finish(line[1:])
            while True:
                line = self.__readline()
                if not line:
                    raise MalformedPacket("Armor is missing its tail line")
                if line.strip():
                    break
            if not line.strip().startswith(b"-----END PGP "):
                raise MalformedPacket("Expected armor tail line after checksum")
        else:
            self.__decode(line)

    def __decode(self, line):
        self.__pending += line
        n = len(self.__pending) // 4 * 4
        chunk, self.__pending = self.__pending[:n], self.__pending[n:]
        try:
            data = base64.b64decode(chunk, validate=True)
        except binascii.Error as e:
            raise MalformedPacket("Invalid base64 in armor: {}".format(e)) from e
        self.__crc = crc24(data, self.__crc)
        self.__buffer += data

    def __finish(self, checksum):
        if self.__pending:
            raise MalformedPacket("Truncated base64 data in armor")
        if checksum is not None:
            try:
                expected = int.from_bytes(
                    base64.b64decode(checksum, validate=True), "big")
            except binascii.Error as e:
                raise MalformedPacket("Invalid armor checksum line") from e
            if expected != self.__crc:
                raise MalformedPacket(
                    "Armor checksum mismatch: expected {:06X}, got {:06X}"
                    .format(expected, self.__crc))
        self.__eof = True

def decoder_stream(source):
    """Returns a reader yielding binary OpenPGP data from source.

    Binary data is passed through; anything else is taken to be ASCII
    armor.  This mirrors how binary packets always start with a byte
    that has its high bit set.
    """
    reader = Reader.wrap(source)
    head = reader.peek(1024)
    for b in head:
        if b in b" \t\r\n":
            continue
        if b & 0x80:
            return reader
        return ArmorReader.new(reader)
    return reader
