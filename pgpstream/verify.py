import logging
import re
from enum import Enum

from .core import AbstractReader
from .error import (
    Error,
    KeyResolutionError,
    ModificationDetected,
    SignatureVerificationError,
    StructuralError,
    UnsignedMessageError,
    UnsupportedAlgorithm,
)
from .glue import CHUNK_SIZE
from .openpgp import HashAlgorithm, SignatureType

logger = logging.getLogger(__name__)

# Errors that modified encrypted data can cause before its MDC is read.
_MASKED_BY_MODIFICATION = (StructuralError, KeyResolutionError,
                           UnsignedMessageError)

class Validation(Enum):
    Verified = 1
    Unsigned = 2
    Failed = 3
    Incomplete = 4

class ValidationOutcome(object):
    """The result of checking a message's signatures."""

    def __init__(self, status, reason=None, signers=()):
        self.status = status
        self.reason = reason
        self.signers = list(signers)

    @classmethod
    def verified(cls, signers):
        return ValidationOutcome(Validation.Verified, signers=signers)

    @classmethod
    def unsigned(cls):
        return ValidationOutcome(Validation.Unsigned)

    @classmethod
    def failed(cls, reason):
        return ValidationOutcome(Validation.Failed, reason=reason)

    @classmethod
    def incomplete(cls):
        return ValidationOutcome(Validation.Incomplete)

    @property
    def is_verified(self):
        return self.status is Validation.Verified

    def __str__(self):
        if self.reason:
            return "<ValidationOutcome {}: {}>".format(self.status.name,
                                                       self.reason)
        return "<ValidationOutcome {}>".format(self.status.name)

_LINE_ENDING = re.compile(rb"\r\n|\r|\n")

class PendingSignature(object):
    """A signature announced by a one-pass signature packet.

    Hashes the literal data as it streams past, until the signature
    packet itself arrives after the data.
    """

    def __init__(self, ops, key):
        self.keyid = ops.issuer
        self.key = key
        self.sigtype = ops.sigtype
        self.algorithm = ops.algorithm
        self.hash_algorithm = HashAlgorithm.from_int(ops.hash_algorithm)
        self.__hash = self.hash_algorithm.context()
        self.__text = ops.sigtype == SignatureType.Text.value
        # A CR ended the previous chunk, so a leading LF was hashed already.
        self.__last_cr = False

    def update(self, data):
        if self.__text and data:
            skip_lf = self.__last_cr and data[:1] == b"\n"
            self.__last_cr = data[-1:] == b"\r"
            if skip_lf:
                data = data[1:]
            data = _LINE_ENDING.sub(b"\r\n", data)
        self.__hash.update(data)

    def matches(self, sig):
        """Returns whether sig is the one this announcement promised."""
        return sig.issuer == self.keyid \
            and sig.sigtype == self.sigtype \
            and sig.hash_algorithm == self.hash_algorithm

    def verify(self, sig):
        """Returns whether sig is a good signature over the hashed data."""
        if sig.sigtype != self.sigtype \
           or sig.hash_algorithm != self.hash_algorithm \
           or sig.algorithm != self.key.algorithm \
           or sig.mpis is None:
            logger.debug("%s does not match its one-pass announcement", sig)
            return False

        h = self.__hash.copy()
        h.update(sig.trailer)
        digest = h.finalize()
        if digest[:2] != sig.digest_prefix:
            logger.debug("Digest prefix mismatch for %s", sig)
            return False
        try:
            return self.key.verify(sig, digest)
        except UnsupportedAlgorithm as e:
            logger.debug("Cannot verify %s: %s", sig, e)
            return False

    def __str__(self):
        return "<PendingSignature {} {}>".format(self.keyid,
                                                 self.hash_algorithm.name)

class DecryptionState(object):
    """What the packet walker learned on its way to the literal data."""

    def __init__(self):
        self.pending = []
        # Outermost first.
        self.sources = []
        self.decryptors = []
        # Readers opened on the caller's behalf, closed with the stream.
        self.owned = []

    def add_signature(self, pending):
        self.pending.append(pending)

    @property
    def num_signatures(self):
        return len(self.pending)

    def push_source(self, source):
        self.sources.append(source)

    def push_decryptor(self, reader):
        self.decryptors.append(reader)

    def own(self, reader):
        self.owned.append(reader)

    def update(self, data):
        for pending in self.pending:
            pending.update(data)

    def read_trailing_signatures(self):
        """Reads every entered level to its end, innermost first."""
        found = []
        for source in reversed(self.sources):
            found.extend(source.signatures())
        return found

    def integrity_error(self, error):
        """Returns the error to report in place of error.

        Modified encrypted data usually shows up as a malformed packet
        or an unknown signer long before its MDC is reached.  So the
        encrypted data is read to its end first, and if it fails the
        integrity check, that is reported instead.
        """
        if not isinstance(error, _MASKED_BY_MODIFICATION):
            return error
        for reader in reversed(self.decryptors):
            try:
                reader.drain()
            except ModificationDetected as e:
                return ModificationDetected(str(e))
            except Error as e:
                logger.debug("Cannot check the integrity of %s: %s",
                             reader, e)
        return error

    def close(self):
        for reader in self.owned:
            reader.close()

class StreamingVerifier(AbstractReader):
    """Reads the literal data of a message, verifying it at the end.

    The outcome stays Incomplete until the data has been read to the
    end.  At that point the trailing signatures are read and checked;
    with a policy that requires signatures, a failure is raised from
    the final read.  An error while reading makes the outcome Failed,
    and is raised again by every later read.
    """

    def __init__(self, literal, state, policy):
        super(StreamingVerifier, self).__init__()
        self.literal = literal
        self.state = state
        self.policy = policy
        self.__outcome = ValidationOutcome.incomplete()
        self.__exhausted = False
        self.__finalized = False
        self.__error = None

    @property
    def outcome(self):
        return self.__outcome

    @property
    def format(self):
        return self.literal.format

    @property
    def filename(self):
        return self.literal.filename

    @property
    def date(self):
        return self.literal.date

    def readinto(self, buf):
        if self.__error is not None:
            raise self.__error
        if self.__exhausted:
            return 0
        try:
            n = self.literal.body.readinto(buf)
        except Error as e:
            error = self.__fail(e)
            if error is e:
                raise
            raise error from e
        if not n:
            self.__exhausted = True
            self.finalize()
            return 0
        self.state.update(bytes(buf[:n]))
        return n

    def finalize(self):
        """Checks the signatures and returns the ValidationOutcome.

        Any unread data is consumed first.  Once the stream has been
        closed, the outcome is Incomplete for good.
        """
        if self.__finalized or self.closed:
            return self.__outcome
        try:
            if not self.__exhausted:
                while True:
                    chunk = self.literal.body.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    self.state.update(chunk)
                self.__exhausted = True
            signatures = self.state.read_trailing_signatures()
        except Error as e:
            error = self.__fail(e)
            if error is e:
                raise
            raise error from e
        self.__finalized = True

        self.__outcome = self.__check(signatures)
        if self.__outcome.status is Validation.Failed:
            if self.policy.is_signature_check_required():
                raise SignatureVerificationError(self.__outcome.reason)
            logger.warning("Signature verification failed: %s",
                           self.__outcome.reason)
        else:
            logger.debug("Message validation: %s", self.__outcome)
        return self.__outcome

    def close(self):
        if not self.closed:
            self.state.close()
        super(StreamingVerifier, self).close()

    def __fail(self, e):
        error = self.state.integrity_error(e)
        self.__error = error
        self.__exhausted = self.__finalized = True
        self.__outcome = ValidationOutcome.failed(str(error))
        logger.debug("Reading the message failed: %s", error)
        return error

    def __check(self, signatures):
        if not self.state.pending:
            if self.policy.is_signature_check_required():
                return ValidationOutcome.failed("Message is not signed")
            return ValidationOutcome.unsigned()

        unmatched = list(self.state.pending)
        signers = []
        failures = []
        for sig in signatures:
            # Trailing signatures come in the reverse order of their
            # announcements.
            match = next((p for p in reversed(unmatched) if p.matches(sig)),
                         None)
            if match is None:
                match = next((p for p in reversed(unmatched)
                              if p.keyid == sig.issuer), None)
            if match is None:
                logger.debug("Ignoring unannounced %s", sig)
                continue
            unmatched.remove(match)
            if match.verify(sig):
                logger.debug("Good signature from %s", match.keyid)
                signers.append(match.keyid)
            else:
                failures.append("Bad signature from {}".format(match.keyid))
        for pending in unmatched:
            failures.append("No signature from {}".format(pending.keyid))

        if failures:
            return ValidationOutcome.failed("; ".join(failures))
        return ValidationOutcome.verified(signers)
