"""Cryptographic operations on OpenPGP key material.

Everything here is built on the primitives of the ``cryptography``
package.  Key material is passed around as dicts of the algorithm
specific fields (MPIs as ints, curve points as bytes) so that the
packet classes stay independent of any particular backend.
"""

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import constant_time, hashes
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed25519, padding, rsa, utils, x25519
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature
from cryptography.hazmat.primitives.ciphers import Cipher, modes
from cryptography.hazmat.primitives.keywrap import InvalidUnwrap, aes_key_unwrap

from .core import AbstractReader
from .error import (
    InvalidPassword,
    InvalidSessionKey,
    MalformedPacket,
    ModificationDetected,
    UnsupportedAlgorithm,
    UnsupportedPublicKeyAlgorithm,
    UnsupportedSymmetricAlgorithm,
)
from .glue import CHUNK_SIZE, Cursor, int_to_bytes, left_pad
from .openpgp import Curve, HashAlgorithm, PublicKeyAlgorithm, SymmetricAlgorithm

# The MDC packet's header, followed by a SHA-1 digest.
MDC_HEADER = b"\xd3\x14"
MDC_LENGTH = 22

ANONYMOUS_SENDER = b"Anonymous Sender    "

CURVE25519_P = 2 ** 255 - 19

_AES = (SymmetricAlgorithm.AES128,
        SymmetricAlgorithm.AES192,
        SymmetricAlgorithm.AES256)

class S2K(object):
    """A string-to-key specifier."""
    Simple = 0
    Salted = 1
    Iterated = 3
    GnuDummy = 101

    def __init__(self, type, hash_algorithm=None, salt=b"", count=None):
        self.type = type
        self.hash_algorithm = hash_algorithm
        self.salt = salt
        self.count = count

    @classmethod
    def parse(cls, cursor):
        t = cursor.byte()
        if t in (S2K.Simple, S2K.Salted, S2K.Iterated):
            hash_algorithm = HashAlgorithm.from_int(cursor.byte())
            salt = cursor.read(8) if t != S2K.Simple else b""
            count = None
            if t == S2K.Iterated:
                c = cursor.byte()
                count = (16 + (c & 15)) << ((c >> 4) + 6)
            return S2K(t, hash_algorithm, salt, count)
        if t == S2K.GnuDummy:
            cursor.byte()
            if cursor.read(3) != b"GNU":
                raise MalformedPacket("Malformed GNU S2K extension")
            mode = cursor.byte()
            if mode == 2:
                # Divert to card: serial number follows.
                cursor.read(cursor.byte())
            return S2K(t)
        raise UnsupportedAlgorithm("Unsupported S2K type {}".format(t))

    def derive(self, passphrase, key_size):
        if self.type == S2K.GnuDummy:
            raise UnsupportedAlgorithm("Secret key material is not available")
        data = self.salt + bytes(passphrase)
        total = len(data)
        if self.count is not None:
            total = max(self.count, len(data))

        key = b""
        preload = 0
        while len(key) < key_size:
            h = self.hash_algorithm.context()
            h.update(b"\x00" * preload)
            _feed_repeated(h, data, total)
            key += h.finalize()
            preload += 1
        return key[:key_size]

def _feed_repeated(h, data, total):
    if not data:
        return
    block = data * max(1, CHUNK_SIZE // len(data))
    while total >= len(block):
        h.update(block)
        total -= len(block)
    if total:
        h.update((data * (total // len(data) + 1))[:total])

def cfb_decryptor(algorithm, key, iv=None):
    if iv is None:
        iv = b"\x00" * algorithm.block_size
    return Cipher(algorithm.cipher(key), modes.CFB(iv)).decryptor()

def cfb_decrypt(algorithm, key, iv, data):
    d = cfb_decryptor(algorithm, key, iv)
    return d.update(data) + d.finalize()

def quick_check(algorithm, key, prefix):
    """Checks the repeated octets of an encrypted data prefix."""
    bs = algorithm.block_size
    if len(prefix) != bs + 2:
        return False
    plain = cfb_decrypt(algorithm, key, b"\x00" * bs, prefix)
    return plain[bs - 2:bs] == plain[bs:]

class DecryptingReader(AbstractReader):
    """Decrypts the body of a version 1 SEIP packet.

    The plaintext ends with a modification detection code.  Since the
    body is not framed, the last 22 decrypted octets are always held
    back until the ciphertext ends and the MDC can be checked.
    """

    def __init__(self, ciphertext, algorithm, key, prefix):
        super(DecryptingReader, self).__init__()
        self.algorithm = algorithm
        self.__inner = ciphertext
        self.__decryptor = cfb_decryptor(algorithm, key)
        self.__mdc = hashes.Hash(hashes.SHA1())

        plain = self.__decryptor.update(prefix)
        bs = algorithm.block_size
        if len(plain) != bs + 2 or plain[bs - 2:bs] != plain[bs:]:
            raise InvalidSessionKey("Session key does not decrypt the data")
        self.__mdc.update(plain)
        self.__held = b""
        self.__buffer = b""
        self.__eof = False
        self.__error = None

    def readinto(self, buf):
        # A failed integrity check fails every later read too.
        if self.__error is not None:
            raise self.__error
        try:
            self.__fill()
        except ModificationDetected as e:
            self.__error = e
            raise
        n = min(len(buf), len(self.__buffer))
        buf[:n] = self.__buffer[:n]
        self.__buffer = self.__buffer[n:]
        return n

    def __fill(self):
        while not self.__buffer and not self.__eof:
            try:
                chunk = self.__inner.read(CHUNK_SIZE)
            except MalformedPacket as e:
                raise ModificationDetected(
                    "Encrypted data is truncated: {}".format(e)) from e
            if not chunk:
                self.__eof = True
                self.__check_mdc()
                break
            plain = self.__held + self.__decryptor.update(chunk)
            self.__held = plain[-MDC_LENGTH:]
            ready = plain[:-MDC_LENGTH]
            self.__mdc.update(ready)
            self.__buffer = ready

    def __check_mdc(self):
        held = self.__held + self.__decryptor.finalize()
        if len(held) != MDC_LENGTH or held[:2] != MDC_HEADER:
            raise ModificationDetected("Encrypted data lacks its MDC packet")
        self.__mdc.update(MDC_HEADER)
        if not constant_time.bytes_eq(self.__mdc.finalize(), held[2:]):
            raise ModificationDetected("MDC mismatch: the message was modified")

def parse_public_fields(algorithm, cursor):
    if algorithm.is_rsa:
        return {"n": cursor.mpi(), "e": cursor.mpi()}
    if algorithm is PublicKeyAlgorithm.DSA:
        return {"p": cursor.mpi(), "q": cursor.mpi(),
                "g": cursor.mpi(), "y": cursor.mpi()}
    if algorithm.is_elgamal:
        return {"p": cursor.mpi(), "g": cursor.mpi(), "y": cursor.mpi()}
    if algorithm in (PublicKeyAlgorithm.ECDSA, PublicKeyAlgorithm.EdDSA,
                     PublicKeyAlgorithm.ECDH):
        curve = Curve.from_oid(cursor.read(cursor.byte()))
        fields = {"curve": curve, "point": cursor.mpi_bytes()}
        if algorithm is PublicKeyAlgorithm.ECDH:
            kdf = cursor.read(cursor.byte())
            if len(kdf) != 3 or kdf[0] != 1:
                raise MalformedPacket("Malformed ECDH KDF parameters")
            fields["kdf_hash"] = HashAlgorithm.from_int(kdf[1])
            fields["kek"] = SymmetricAlgorithm.from_int(kdf[2])
        return fields
    raise UnsupportedPublicKeyAlgorithm(
        "Unsupported public key algorithm {}".format(algorithm))

def parse_secret_fields(algorithm, cursor):
    if algorithm.is_rsa:
        return {"d": cursor.mpi(), "p": cursor.mpi(),
                "q": cursor.mpi(), "u": cursor.mpi()}
    if algorithm is PublicKeyAlgorithm.DSA or algorithm.is_elgamal:
        return {"x": cursor.mpi()}
    return {"secret": cursor.mpi_bytes()}

def parse_esk_fields(algorithm, cursor):
    if algorithm.is_rsa:
        return {"c": cursor.mpi()}
    if algorithm.is_elgamal:
        return {"gk": cursor.mpi(), "myk": cursor.mpi()}
    if algorithm is PublicKeyAlgorithm.ECDH:
        point = cursor.mpi_bytes()
        return {"point": point, "wrapped": cursor.read(cursor.byte())}
    raise UnsupportedPublicKeyAlgorithm(
        "{} cannot encrypt session keys".format(algorithm.name))

def parse_signature_mpis(algorithm, cursor):
    if algorithm.is_rsa:
        return [cursor.mpi()]
    return [cursor.mpi(), cursor.mpi()]

def unlock_secret(algorithm, raw, passphrase):
    """Decrypts the secret part of a key packet and parses its MPIs."""
    cursor = Cursor(raw)
    usage = cursor.byte()
    if usage == 0:
        start = cursor.offset
        fields = parse_secret_fields(algorithm, cursor)
        if sum(raw[start:cursor.offset]) & 0xFFFF != cursor.uint16():
            raise MalformedPacket("Secret key checksum mismatch")
        return fields

    if usage not in (254, 255):
        raise UnsupportedAlgorithm(
            "Unsupported secret key protection with cipher {}".format(usage))

    cipher = SymmetricAlgorithm.from_int(cursor.byte())
    s2k = S2K.parse(cursor)
    if s2k.type == S2K.GnuDummy:
        raise UnsupportedAlgorithm("Secret key material is not available")
    iv = cursor.read(cipher.block_size)
    key = s2k.derive(passphrase or b"", cipher.key_size)
    plain = cfb_decrypt(cipher, key, iv, cursor.rest())

    if usage == 254:
        body, check = plain[:-20], plain[-20:]
        h = hashes.Hash(hashes.SHA1())
        h.update(body)
        if len(plain) < 20 or not constant_time.bytes_eq(h.finalize(), check):
            raise InvalidPassword("Wrong passphrase")
    else:
        body, check = plain[:-2], plain[-2:]
        if len(plain) < 2 or sum(body) & 0xFFFF != int.from_bytes(check, "big"):
            raise InvalidPassword("Wrong passphrase")

    try:
        return parse_secret_fields(algorithm, Cursor(body))
    except MalformedPacket as e:
        raise InvalidPassword("Wrong passphrase") from e

def _session_key(m):
    """Splits algorithm || key || checksum."""
    if len(m) < 3:
        raise InvalidSessionKey("Session key too short")
    algorithm = SymmetricAlgorithm.from_int(m[0])
    key, checksum = m[1:-2], m[-2:]
    if len(key) != algorithm.key_size:
        raise InvalidSessionKey("Session key has the wrong length for {}"
                                .format(algorithm.name))
    if sum(key) & 0xFFFF != int.from_bytes(checksum, "big"):
        raise InvalidSessionKey("Session key checksum mismatch")
    return algorithm, key

def decrypt_session_key(algorithm, public, secret, fingerprint, esk):
    """Returns (SymmetricAlgorithm, key) from a PKESK's fields."""
    if algorithm in (PublicKeyAlgorithm.RSAEncryptSign,
                     PublicKeyAlgorithm.RSAEncrypt):
        return _session_key(_rsa_decrypt(public, secret, esk))
    if algorithm is PublicKeyAlgorithm.ECDH:
        return _session_key(_ecdh_decrypt(public, secret, fingerprint, esk))
    raise UnsupportedPublicKeyAlgorithm(
        "Cannot decrypt session keys with {}".format(algorithm.name))

def _rsa_decrypt(public, secret, esk):
    n, e = public["n"], public["e"]
    p, q, d = secret["p"], secret["q"], secret["d"]
    try:
        key = rsa.RSAPrivateNumbers(
            p=p, q=q, d=d,
            dmp1=rsa.rsa_crt_dmp1(d, p),
            dmq1=rsa.rsa_crt_dmq1(d, q),
            iqmp=rsa.rsa_crt_iqmp(p, q),
            public_numbers=rsa.RSAPublicNumbers(e, n)).private_key()
    except ValueError as e:
        raise MalformedPacket("Inconsistent RSA key material") from e

    size = (n.bit_length() + 7) // 8
    c = int_to_bytes(esk["c"])
    if len(c) > size:
        raise InvalidSessionKey("RSA ciphertext larger than the modulus")
    try:
        return key.decrypt(left_pad(c, size), padding.PKCS1v15())
    except ValueError as e:
        raise InvalidSessionKey("RSA decryption failed") from e

def _ecdh_decrypt(public, secret, fingerprint, esk):
    curve = public["curve"]
    kek = public["kek"]
    if kek not in _AES:
        raise UnsupportedSymmetricAlgorithm(
            "Unsupported key wrap algorithm {}".format(kek.name))
    ephemeral = esk["point"]

    try:
        if curve is Curve.Cv25519:
            if len(ephemeral) != 33 or ephemeral[0] != 0x40:
                raise InvalidSessionKey("Malformed Curve25519 point")
            if int.from_bytes(ephemeral[1:], "little") >= CURVE25519_P:
                raise InvalidSessionKey("Non-canonical Curve25519 point")
            # Stored big-endian, X25519 wants the native little-endian form.
            native = left_pad(secret["secret"], 32)[::-1]
            shared = x25519.X25519PrivateKey.from_private_bytes(native).exchange(
                x25519.X25519PublicKey.from_public_bytes(ephemeral[1:]))
        else:
            ec_curve = curve.ec_curve()
            key = ec.derive_private_key(
                int.from_bytes(secret["secret"], "big"), ec_curve)
            shared = key.exchange(
                ec.ECDH(),
                ec.EllipticCurvePublicKey.from_encoded_point(ec_curve, ephemeral))
    except ValueError as e:
        raise InvalidSessionKey("ECDH key agreement failed") from e

    param = (bytes([len(curve.oid)]) + curve.oid
             + bytes([PublicKeyAlgorithm.ECDH.value])
             + bytes([3, 1, public["kdf_hash"].value, kek.value])
             + ANONYMOUS_SENDER + bytes(fingerprint))
    h = public["kdf_hash"].context()
    h.update(b"\x00\x00\x00\x01" + shared + param)
    wrapping_key = h.finalize()[:kek.key_size]

    try:
        m = aes_key_unwrap(wrapping_key, esk["wrapped"])
    except (InvalidUnwrap, ValueError) as e:
        raise InvalidSessionKey("ECDH key unwrap failed") from e

    pad = m[-1] if m else 0
    if not 1 <= pad <= 8 or m[-pad:] != bytes([pad]) * pad:
        raise InvalidSessionKey("Malformed ECDH session key padding")
    return m[:-pad]

def verify_signature(algorithm, public, mpis, hash_algorithm, digest):
    """Returns whether mpis is a valid signature over digest."""
    prehashed = utils.Prehashed(hash_algorithm.algorithm())
    try:
        if algorithm.is_rsa:
            n = public["n"]
            key = rsa.RSAPublicNumbers(public["e"], n).public_key()
            signature = left_pad(int_to_bytes(mpis[0]), (n.bit_length() + 7) // 8)
            key.verify(signature, digest, padding.PKCS1v15(), prehashed)
        elif algorithm is PublicKeyAlgorithm.DSA:
            key = dsa.DSAPublicNumbers(
                public["y"],
                dsa.DSAParameterNumbers(public["p"], public["q"], public["g"])
            ).public_key()
            key.verify(encode_dss_signature(*mpis), digest, prehashed)
        elif algorithm is PublicKeyAlgorithm.ECDSA:
            key = ec.EllipticCurvePublicKey.from_encoded_point(
                public["curve"].ec_curve(), public["point"])
            key.verify(encode_dss_signature(*mpis), digest, ec.ECDSA(prehashed))
        elif algorithm is PublicKeyAlgorithm.EdDSA:
            point = public["point"]
            if public["curve"] is not Curve.Ed25519:
                raise UnsupportedPublicKeyAlgorithm(
                    "EdDSA over {}".format(public["curve"].name))
            if len(point) != 33 or point[0] != 0x40:
                return False
            key = ed25519.Ed25519PublicKey.from_public_bytes(point[1:])
            r, s = (left_pad(int_to_bytes(x), 32) for x in mpis)
            key.verify(r + s, digest)
        else:
            raise UnsupportedPublicKeyAlgorithm(
                "{} cannot make signatures".format(algorithm.name))
    except (InvalidSignature, ValueError, MalformedPacket):
        return False
    return True
