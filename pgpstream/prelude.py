from .core import Context, MAX_RECURSION_DEPTH, Reader, ValidationPolicy
from .decrypt import Decryptor, PacketWalker
from .error import *
from .keyring import KeyRing, KeyResolver
from .openpgp import ArmorReader, Fingerprint, KeyID, Kind
from .packet import PacketParser
from .verify import StreamingVerifier, Validation, ValidationOutcome
