from enum import Enum

class Status(Enum):
    UnknownError = 0
    DecryptionFailed = 1
    NoVerifiableSignature = 2
    SignatureVerificationFailed = 3
    MalformedMessage = 4
    InvalidConfiguration = 5

class Error(Exception):
    status = Status.UnknownError

class MalformedValue(Error, ValueError):
    status = Status.MalformedMessage

    def __init__(self, message="Malformed value"):
        super(MalformedValue, self).__init__(message)

# Structural errors abort the decode immediately.

class StructuralError(Error):
    status = Status.MalformedMessage

class MalformedPacket(StructuralError):
    pass

class MalformedMessageError(StructuralError):
    pass

class RecursionLimitExceeded(MalformedMessageError):
    pass

class UnsupportedAlgorithm(StructuralError):
    pass

class UnsupportedHashAlgorithm(UnsupportedAlgorithm):
    pass

class UnsupportedSymmetricAlgorithm(UnsupportedAlgorithm):
    pass

class UnsupportedPublicKeyAlgorithm(UnsupportedAlgorithm):
    pass

class UnsupportedCompressionAlgorithm(UnsupportedAlgorithm):
    pass

class DecryptionError(Error):
    status = Status.DecryptionFailed

class NoEncryptedDataError(DecryptionError):
    pass

class InvalidSessionKey(DecryptionError):
    pass

class InvalidPassword(DecryptionError):
    pass

class ModificationDetected(DecryptionError):
    pass

class KeyResolutionError(Error):
    pass

class NoMatchingSecretKeyError(KeyResolutionError):
    status = Status.DecryptionFailed

class NoVerifiableSignature(KeyResolutionError):
    status = Status.NoVerifiableSignature

class UnsignedMessageError(Error):
    status = Status.NoVerifiableSignature

class SignatureVerificationError(Error):
    """Raised only once the signed data has been read to the end."""
    status = Status.SignatureVerificationFailed

class ConfigurationError(Error):
    status = Status.InvalidConfiguration
