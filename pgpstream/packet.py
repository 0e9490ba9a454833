import bz2
import logging
import struct
import zlib

from cryptography.hazmat.primitives import hashes

from . import crypto
from .core import AbstractReader, Reader
from .error import (
    MalformedPacket,
    UnsupportedAlgorithm,
    UnsupportedCompressionAlgorithm,
)
from .glue import CHUNK_SIZE, Cursor, pgp_iterator, pgp_time, read_exact
from .openpgp import (
    CompressionAlgorithm,
    Fingerprint,
    HashAlgorithm,
    KeyID,
    PublicKeyAlgorithm,
    Tag,
)

logger = logging.getLogger(__name__)

# Packets other than data packets are read into memory; bound them.
MAX_PACKET_SIZE = 1 << 20

_DATA_PACKETS = (Tag.Literal, Tag.CompressedData, Tag.SED, Tag.SEIP, Tag.AED)

class Header(object):
    def __init__(self, tag, length, partial=False):
        self.tag = tag
        # None for old format packets of indeterminate length.
        self.length = length
        self.partial = partial

    def __str__(self):
        return "<Header tag={} length={}{}>".format(
            self.tag, self.length, " partial" if self.partial else "")

def _read_new_length(reader):
    """Returns (length, partial) of a new format body length."""
    o1 = read_exact(reader, 1)[0]
    if o1 < 192:
        return o1, False
    if o1 < 224:
        return ((o1 - 192) << 8) + read_exact(reader, 1)[0] + 192, False
    if o1 == 255:
        return struct.unpack(">I", read_exact(reader, 4))[0], False
    return 1 << (o1 & 0x1F), True

def read_header(reader):
    """Reads a packet header, or returns None at the end of the input."""
    first = reader.read(1)
    if not first:
        return None
    b = first[0]
    if not b & 0x80:
        raise MalformedPacket("Invalid packet header byte {:#04x}".format(b))

    if b & 0x40:
        tag = b & 0x3F
        length, partial = _read_new_length(reader)
    else:
        tag = (b >> 2) & 0x0F
        partial = False
        length_type = b & 0x03
        if length_type == 3:
            length = None
        else:
            size = (1, 2, 4)[length_type]
            length = int.from_bytes(read_exact(reader, size), "big")

    if tag == 0:
        raise MalformedPacket("Packet tag 0 is reserved")
    tag = Tag.from_int(tag)
    if partial and tag not in _DATA_PACKETS:
        raise MalformedPacket(
            "Partial body length not allowed for {}".format(tag))
    return Header(tag, length, partial)

class BodyReader(AbstractReader):
    """Reads one packet body, following partial body length chunks."""

    def __init__(self, inner, header):
        super(BodyReader, self).__init__()
        self.__inner = inner
        self.__remaining = header.length
        self.__partial = header.partial

    def readinto(self, buf):
        while self.__remaining == 0:
            if not self.__partial:
                return 0
            self.__remaining, self.__partial = _read_new_length(self.__inner)

        want = len(buf)
        if self.__remaining is not None:
            want = min(want, self.__remaining)
        data = self.__inner.read(want)
        if not data:
            if self.__remaining is None:
                return 0
            raise MalformedPacket("Truncated packet body")
        n = len(data)
        buf[:n] = data
        if self.__remaining is not None:
            self.__remaining -= n
        return n

def _read_body(body):
    data = bytearray()
    while True:
        chunk = body.read(CHUNK_SIZE)
        if not chunk:
            return bytes(data)
        data += chunk
        if len(data) > MAX_PACKET_SIZE:
            raise MalformedPacket(
                "Packet exceeds {} bytes".format(MAX_PACKET_SIZE))

def _enum_or_int(enum, value):
    try:
        return enum(value)
    except ValueError:
        return value

class Packet(object):
    def __init__(self, header):
        self.header = header

    @property
    def tag(self):
        return self.header.tag

    @classmethod
    def parse(cls, header, body):
        return cls(header)

    def __str__(self):
        return "<Packet tag={}>".format(self.tag)

class Unknown(Packet):
    """A packet that is recognized but not processed.  Its body is skipped."""

class PKESK(Packet):
    def __init__(self, header, version, recipient=None, algorithm=None,
                 fields=None):
        super(PKESK, self).__init__(header)
        self.version = version
        self.recipient = recipient
        self.algorithm = algorithm
        self.fields = fields

    @property
    def supported(self):
        return self.fields is not None

    @classmethod
    def parse(cls, header, body):
        c = Cursor(_read_body(body))
        version = c.byte()
        if version != 3:
            logger.debug("Unsupported PKESK version %d", version)
            return PKESK(header, version)
        recipient = KeyID(c.read(8))
        algorithm = _enum_or_int(PublicKeyAlgorithm, c.byte())
        try:
            fields = crypto.parse_esk_fields(
                PublicKeyAlgorithm.from_int(algorithm), c)
            if c.remaining:
                raise MalformedPacket(
                    "{} bytes of junk after the session key".format(
                        c.remaining))
        except (UnsupportedAlgorithm, MalformedPacket) as e:
            # Unusable, but other session keys may still decrypt.
            logger.debug("Unusable PKESK for %s: %s", recipient, e)
            fields = None
        return PKESK(header, version, recipient, algorithm, fields)

    def __str__(self):
        return "<PKESK recipient={} algorithm={}>".format(
            self.recipient, self.algorithm)

class SKESK(Packet):
    """Passphrase encrypted session keys.  Not used for decryption."""

class OnePassSig(Packet):
    def __init__(self, header, sigtype, hash_algorithm, algorithm, issuer, last):
        super(OnePassSig, self).__init__(header)
        self.sigtype = sigtype
        self.hash_algorithm = hash_algorithm
        self.algorithm = algorithm
        self.issuer = issuer
        self.last = last

    @classmethod
    def parse(cls, header, body):
        c = Cursor(_read_body(body))
        version = c.byte()
        if version != 3:
            logger.debug("Unsupported one-pass signature version %d", version)
            return Unknown(header)
        sigtype = c.byte()
        hash_algorithm = _enum_or_int(HashAlgorithm, c.byte())
        algorithm = _enum_or_int(PublicKeyAlgorithm, c.byte())
        issuer = KeyID(c.read(8))
        last = bool(c.byte())
        return OnePassSig(header, sigtype, hash_algorithm, algorithm, issuer, last)

    def __str__(self):
        return "<OnePassSig issuer={} hash={}>".format(
            self.issuer, self.hash_algorithm)

def _subpackets(area):
    c = Cursor(area)
    while c.remaining:
        o = c.byte()
        if o < 192:
            length = o
        elif o < 255:
            length = ((o - 192) << 8) + c.byte() + 192
        else:
            length = c.uint32()
        if length == 0:
            raise MalformedPacket("Empty signature subpacket")
        data = c.read(length)
        yield data[0] & 0x7F, data[1:]

class Signature(Packet):
    CreationTime = 2
    Issuer = 16
    IssuerFingerprint = 33

    def __init__(self, header, version):
        super(Signature, self).__init__(header)
        self.version = version
        self.sigtype = None
        self.algorithm = None
        self.hash_algorithm = None
        self.issuer = None
        self.created = None
        self.digest_prefix = None
        self.hashed = b""
        self.mpis = None

    @classmethod
    def parse(cls, header, body):
        data = _read_body(body)
        c = Cursor(data)
        sig = Signature(header, c.byte())

        if sig.version in (2, 3):
            if c.byte() != 5:
                raise MalformedPacket("Malformed v3 signature")
            sig.hashed = c.read(5)
            sig.sigtype = sig.hashed[0]
            sig.created = pgp_time(struct.unpack(">I", sig.hashed[1:])[0])
            sig.issuer = KeyID(c.read(8))
            sig.algorithm = _enum_or_int(PublicKeyAlgorithm, c.byte())
            sig.hash_algorithm = _enum_or_int(HashAlgorithm, c.byte())
        elif sig.version == 4:
            sig.sigtype = c.byte()
            sig.algorithm = _enum_or_int(PublicKeyAlgorithm, c.byte())
            sig.hash_algorithm = _enum_or_int(HashAlgorithm, c.byte())
            hashed_area = c.read(c.uint16())
            sig.hashed = data[:c.offset]
            unhashed_area = c.read(c.uint16())
            sig._parse_subpackets(hashed_area, unhashed_area)
        else:
            logger.debug("Unsupported signature version %d", sig.version)
            return sig

        sig.digest_prefix = c.read(2)
        if isinstance(sig.algorithm, PublicKeyAlgorithm):
            sig.mpis = crypto.parse_signature_mpis(sig.algorithm, c)
        return sig

    def _parse_subpackets(self, hashed_area, unhashed_area):
        issuer = None
        for hashed, area in ((True, hashed_area), (False, unhashed_area)):
            for kind, value in _subpackets(area):
                if kind == Signature.CreationTime and len(value) == 4 \
                   and hashed:
                    self.created = pgp_time(struct.unpack(">I", value)[0])
                elif kind == Signature.Issuer and len(value) == 8:
                    issuer = issuer or KeyID(value)
                elif kind == Signature.IssuerFingerprint and len(value) == 21 \
                     and value[0] == 4:
                    issuer = issuer or Fingerprint(value[1:]).keyid()
        self.issuer = issuer

    @property
    def trailer(self):
        """The data hashed after the signed document."""
        if self.version == 4:
            return self.hashed + b"\x04\xff" + struct.pack(">I", len(self.hashed))
        return self.hashed

    def __str__(self):
        return "<Signature issuer={} type={:#04x}>".format(
            self.issuer, self.sigtype or 0)

class Literal(Packet):
    def __init__(self, header, format, filename, date, body):
        super(Literal, self).__init__(header)
        self.format = format
        self.filename = filename
        self.date = date
        self.body = body

    @classmethod
    def parse(cls, header, body):
        format = read_exact(body, 1).decode("latin-1")
        filename = read_exact(body, read_exact(body, 1)[0])
        date = pgp_time(struct.unpack(">I", read_exact(body, 4))[0])
        return Literal(header, format, filename, date, body)

class CompressedData(Packet):
    def __init__(self, header, algorithm, body):
        super(CompressedData, self).__init__(header)
        self.algorithm = algorithm
        self.body = body

    @classmethod
    def parse(cls, header, body):
        algorithm = _enum_or_int(CompressionAlgorithm, read_exact(body, 1)[0])
        return CompressedData(header, algorithm, body)

    def reader(self):
        if not isinstance(self.algorithm, CompressionAlgorithm):
            raise UnsupportedCompressionAlgorithm(
                "Unknown compression algorithm {}".format(self.algorithm))
        return DecompressingReader(self.body, self.algorithm)

class SED(Packet):
    """Encrypted data without integrity protection."""

    def __init__(self, header, body):
        super(SED, self).__init__(header)
        self.body = body

    @classmethod
    def parse(cls, header, body):
        return SED(header, body)

class SEIP(Packet):
    def __init__(self, header, version, body):
        super(SEIP, self).__init__(header)
        self.version = version
        self.body = body
        self.__prefix = b""

    @classmethod
    def parse(cls, header, body):
        return SEIP(header, read_exact(body, 1)[0], body)

    def prefix(self, size):
        """Returns the first size octets of ciphertext, read only once."""
        if len(self.__prefix) < size:
            self.__prefix += read_exact(self.body, size - len(self.__prefix))
        return self.__prefix[:size]

class DecompressingReader(AbstractReader):
    """Inflates a compressed data packet body in bounded chunks."""

    def __init__(self, inner, algorithm):
        super(DecompressingReader, self).__init__()
        self.algorithm = algorithm
        self.__inner = inner
        self.__buffer = b""
        self.__eof = False
        if algorithm is CompressionAlgorithm.Zip:
            self.__d = zlib.decompressobj(-15)
        elif algorithm is CompressionAlgorithm.Zlib:
            self.__d = zlib.decompressobj()
        elif algorithm is CompressionAlgorithm.BZip2:
            self.__d = bz2.BZ2Decompressor()
        else:
            self.__d = None

    def readinto(self, buf):
        while not self.__buffer and not self.__eof:
            try:
                self.__fill()
            except (zlib.error, OSError, EOFError) as e:
                raise MalformedPacket(
                    "Corrupt {} data: {}".format(self.algorithm.name, e)) from e
        n = min(len(buf), len(self.__buffer))
        buf[:n] = self.__buffer[:n]
        self.__buffer = self.__buffer[n:]
        return n

    def __fill(self):
        if self.__d is None:
            self.__buffer = self.__inner.read(CHUNK_SIZE)
            self.__eof = not self.__buffer
        elif self.algorithm is CompressionAlgorithm.BZip2:
            if self.__d.eof:
                self.__inner.drain()
                self.__eof = True
                return
            data = b""
            if self.__d.needs_input:
                data = self.__inner.read(CHUNK_SIZE)
                if not data:
                    raise MalformedPacket("Truncated BZip2 data")
            self.__buffer = self.__d.decompress(data, CHUNK_SIZE)
        else:
            data = self.__d.unconsumed_tail
            if not data:
                data = self.__inner.read(CHUNK_SIZE)
            if not data and self.__d.eof:
                self.__buffer = self.__d.flush()
                self.__eof = True
                return
            # Without new input, this returns output still held back.
            self.__buffer = self.__d.decompress(data, CHUNK_SIZE)
            if not data and not self.__buffer:
                raise MalformedPacket("Truncated {} data".format(
                    self.algorithm.name))

class Key(Packet):
    """A version 4 public or secret key or subkey packet."""

    def __init__(self, header, created, algorithm, public, public_body,
                 secret=None):
        super(Key, self).__init__(header)
        self.created = created
        self.algorithm = algorithm
        self.public = public
        self.public_body = public_body
        self.secret = secret
        h = hashes.Hash(hashes.SHA1())
        h.update(b"\x99" + struct.pack(">H", len(public_body)) + public_body)
        self.__fingerprint = Fingerprint(h.finalize())

    @classmethod
    def parse(cls, header, body):
        data = _read_body(body)
        c = Cursor(data)
        version = c.byte()
        if version != 4:
            logger.debug("Skipping version %d key", version)
            return Unknown(header)
        created = c.uint32()
        try:
            algorithm = PublicKeyAlgorithm.from_int(c.byte())
            public = crypto.parse_public_fields(algorithm, c)
        except UnsupportedAlgorithm as e:
            logger.debug("Skipping key: %s", e)
            return Unknown(header)
        public_body = data[:c.offset]
        secret = None
        if header.tag in (Tag.SecretKey, Tag.SecretSubkey):
            secret = c.rest()
        return cls(header, created, algorithm, public, public_body, secret)

    @property
    def fingerprint(self):
        return self.__fingerprint

    @property
    def keyid(self):
        return self.__fingerprint.keyid()

    @property
    def creation_time(self):
        return pgp_time(self.created)

    @property
    def is_secret(self):
        return self.secret is not None

    @property
    def can_encrypt(self):
        return self.algorithm in (PublicKeyAlgorithm.RSAEncryptSign,
                                  PublicKeyAlgorithm.RSAEncrypt,
                                  PublicKeyAlgorithm.ECDH)

    def verify(self, signature, digest):
        return crypto.verify_signature(self.algorithm, self.public,
                                       signature.mpis,
                                       signature.hash_algorithm, digest)

    def unlock(self, passphrase):
        """Returns an UnlockedKey, or raises InvalidPassword."""
        if not self.is_secret:
            raise UnsupportedAlgorithm("{} has no secret key material"
                                       .format(self.keyid))
        return UnlockedKey(self, crypto.unlock_secret(
            self.algorithm, self.secret, passphrase))

    def __str__(self):
        return "<{} {} {}>".format(self.__class__.__name__, self.keyid,
                                   self.algorithm.name)

class PublicKey(Key):
    pass
class PublicSubkey(Key):
    pass
class SecretKey(Key):
    pass
class SecretSubkey(Key):
    pass

class UnlockedKey(object):
    """Secret key material that can decrypt session keys."""

    def __init__(self, key, secret):
        self.key = key
        self.__secret = secret

    @property
    def keyid(self):
        return self.key.keyid

    def decrypt_session_key(self, pkesk):
        algorithm = self.key.algorithm
        if pkesk.algorithm != algorithm and not (
                isinstance(pkesk.algorithm, PublicKeyAlgorithm)
                and pkesk.algorithm.is_rsa and algorithm.is_rsa):
            raise UnsupportedAlgorithm(
                "PKESK for {} cannot be decrypted with a {} key".format(
                    pkesk.algorithm, algorithm.name))
        return crypto.decrypt_session_key(algorithm, self.key.public,
                                          self.__secret,
                                          self.key.fingerprint, pkesk.fields)

_PACKETS = {
    Tag.PKESK: PKESK,
    Tag.Signature: Signature,
    Tag.SKESK: SKESK,
    Tag.OnePassSig: OnePassSig,
    Tag.SecretKey: SecretKey,
    Tag.PublicKey: PublicKey,
    Tag.SecretSubkey: SecretSubkey,
    Tag.CompressedData: CompressedData,
    Tag.SED: SED,
    Tag.Literal: Literal,
    Tag.PublicSubkey: PublicSubkey,
    Tag.SEIP: SEIP,
}

class PacketParser(object):
    """Reads packets one at a time from a binary stream.

    Data packets hand out their body as a stream; reading the next
    packet skips whatever the caller left unread.
    """

    def __init__(self, reader):
        self.reader = reader
        self.__body = None
        self.__eof = False

    @classmethod
    def from_reader(cls, reader):
        return PacketParser(reader)

    @classmethod
    def open(cls, filename):
        return PacketParser(Reader.open(filename))

    @classmethod
    def from_bytes(cls, source):
        return PacketParser(Reader.from_bytes(source))

    @property
    def eof(self):
        return self.__eof

    def next(self):
        if self.__body is not None:
            self.__body.drain()
            self.__body = None
        if self.__eof:
            return None

        header = read_header(self.reader)
        if header is None:
            self.__eof = True
            return None
        self.__body = BodyReader(self.reader, header)
        packet = _PACKETS.get(header.tag, Unknown).parse(header, self.__body)
        logger.debug("Read %s", packet)
        return packet

    def __iter__(self):
        return pgp_iterator(self.next)
