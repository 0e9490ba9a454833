import logging

from .core import Context, MAX_RECURSION_DEPTH, Reader
from .crypto import DecryptingReader, quick_check
from .error import (
    DecryptionError,
    Error,
    MalformedMessageError,
    NoEncryptedDataError,
    NoMatchingSecretKeyError,
    NoVerifiableSignature,
    RecursionLimitExceeded,
    StructuralError,
    UnsignedMessageError,
    UnsupportedAlgorithm,
)
from .keyring import KeyResolver
from .message import NodeKind, PacketSource
from .openpgp import decoder_stream
from .packet import SED
from .verify import DecryptionState, PendingSignature, StreamingVerifier

logger = logging.getLogger(__name__)

_CONTAINERS = (NodeKind.EncryptedContainer, NodeKind.CompressedContainer)

class PacketWalker(object):
    """Descends through a message's containers to its literal data.

    Each encrypted or compressed container is unwrapped and its
    contents are read by a new PacketSource, kept on a stack rather
    than by recursion.  One-pass signature announcements met on the
    way are turned into pending signatures.  The walk ends at the
    literal data, which is handed out wrapped in a StreamingVerifier.
    """

    def __init__(self, resolver, policy,
                 max_recursion_depth=MAX_RECURSION_DEPTH):
        self.resolver = resolver
        self.policy = policy
        self.max_recursion_depth = max_recursion_depth

    def decode(self, reader, state=None):
        if state is None:
            state = DecryptionState()
        try:
            return self.__walk(reader, state)
        except Error as e:
            error = state.integrity_error(e)
            if error is e:
                raise
            raise error from e

    def __walk(self, reader, state):
        source = PacketSource(reader)
        state.push_source(source)

        while True:
            node = source.next_node()
            if node is None:
                raise MalformedMessageError(
                    "Message ended without literal data")
            logger.debug("Depth %d: %s", source.depth, node)

            if node.kind in _CONTAINERS \
               and source.depth >= self.max_recursion_depth:
                raise RecursionLimitExceeded(
                    "Containers nested deeper than {} levels"
                    .format(self.max_recursion_depth))

            if node.kind is NodeKind.EncryptedContainer:
                decryptor = self.__decrypt(node)
                state.push_decryptor(decryptor)
                source = PacketSource(decryptor, source.depth + 1)
                state.push_source(source)
            elif node.kind is NodeKind.CompressedContainer:
                source = PacketSource(node.packet.reader(), source.depth + 1)
                state.push_source(source)
            elif node.kind is NodeKind.SignatureAnnouncementList:
                self.__announce(state, node)
            elif node.kind is NodeKind.LiteralPayload:
                if self.policy.is_signature_check_required() \
                   and not state.num_signatures:
                    raise UnsignedMessageError(
                        "Message is not signed by any known key")
                return StreamingVerifier(node.packet, state, self.policy)
            else:
                logger.debug("Skipping %s", node)

    def __decrypt(self, node):
        data = node.packet
        if not node.session_keys:
            raise NoEncryptedDataError(
                "Message has no public key encrypted session key")
        if isinstance(data, SED):
            raise DecryptionError(
                "Refusing encrypted data without integrity protection")
        if data.version != 1:
            raise DecryptionError(
                "Unsupported encrypted data version {}".format(data.version))

        for pkesk in node.session_keys:
            if not pkesk.supported:
                logger.debug("Skipping unsupported %s", pkesk)
                continue
            for secret in self.__secret_keys(pkesk.recipient):
                try:
                    algorithm, key = secret.decrypt_session_key(pkesk)
                except (DecryptionError, StructuralError) as e:
                    logger.debug("%s does not decrypt %s: %s",
                                 secret.keyid, pkesk, e)
                    continue
                prefix = data.prefix(algorithm.block_size + 2)
                if not quick_check(algorithm, key, prefix):
                    logger.debug("Session key from %s fails the quick check",
                                 secret.keyid)
                    continue
                logger.debug("Decrypted session key with %s", secret.keyid)
                return DecryptingReader(data.body, algorithm, key, prefix)

        raise NoMatchingSecretKeyError(
            "No secret key decrypts the message for {}".format(
                ", ".join(str(p.recipient) for p in node.session_keys)))

    def __secret_keys(self, recipient):
        if recipient.is_wildcard():
            keyids = self.resolver.secret_keyids()
        else:
            keyids = [recipient]
        for keyid in keyids:
            secret = self.resolver.resolve_secret_key(keyid)
            if secret is not None:
                yield secret

    def __announce(self, state, node):
        for ops in node.packets:
            key = self.resolver.resolve_public_key(ops.issuer)
            if key is None:
                logger.debug("No public key for signer %s", ops.issuer)
                continue
            try:
                pending = PendingSignature(ops, key)
            except UnsupportedAlgorithm as e:
                logger.debug("Cannot verify signature by %s: %s",
                             ops.issuer, e)
                continue
            state.add_signature(pending)

        if self.policy.is_signature_check_required() \
           and not state.num_signatures:
            raise NoVerifiableSignature(
                "None of the signers {} has a known public key".format(
                    ", ".join(str(ops.issuer) for ops in node.packets)))

class Decryptor(object):
    """Decrypts and verifies messages with the keys of a Context.

    The Decryptor takes the passphrase from the context; close() wipes
    it.
    """

    def __init__(self, ctx=None):
        if ctx is None:
            ctx = Context()
        self.ctx = ctx
        self.resolver = KeyResolver.from_context(ctx)

    def decrypt_and_verify(self, source):
        """Returns a StreamingVerifier over the plaintext of source.

        source may be bytes, a binary file object or a Reader, holding
        a binary or an ASCII armored message.
        """
        walker = PacketWalker(self.resolver, self.ctx.policy,
                              self.ctx.max_recursion_depth)
        state = DecryptionState()
        reader = Reader.wrap(source)
        if reader is not source:
            state.own(reader)
        try:
            return walker.decode(decoder_stream(reader), state)
        except Error:
            state.close()
            raise

    def close(self):
        self.resolver.close()

    # Implement the context manager protocol.
    def __enter__(self):
        return self
    def __exit__(self, *args):
        self.close()
        return False
