from enum import Enum

from .error import MalformedMessageError
from .glue import pgp_iterator
from .packet import (
    CompressedData,
    Literal,
    OnePassSig,
    PacketParser,
    PKESK,
    SED,
    SEIP,
    SKESK,
    Signature,
)

class NodeKind(Enum):
    EncryptedContainer = 1
    CompressedContainer = 2
    SignatureAnnouncementList = 3
    LiteralPayload = 4
    TrailingSignatureList = 5
    Unknown = 6

class PacketNode(object):
    """One step of a message's structure: a packet or a run of packets."""

    def __init__(self, kind, packets):
        self.kind = kind
        self.packets = packets

    @property
    def packet(self):
        """The container or literal packet that ends this node."""
        return self.packets[-1]

    @property
    def session_keys(self):
        return [p for p in self.packets if isinstance(p, PKESK)]

    def __str__(self):
        return "<{} {}>".format(self.kind.name,
                                ", ".join(str(p) for p in self.packets))

_ESK = (PKESK, SKESK)
_ENCRYPTED = (SEIP, SED)

class PacketSource(object):
    """Groups the packets of one nesting level into PacketNodes.

    Each encrypted or compressed container the walker enters gets its
    own source over the container's decoded body.
    """

    def __init__(self, reader, depth=0):
        self.parser = PacketParser(reader)
        self.depth = depth
        self.__peeked = None

    def __next_packet(self):
        if self.__peeked is not None:
            packet, self.__peeked = self.__peeked, None
            return packet
        return self.parser.next()

    def __peek(self):
        if self.__peeked is None:
            self.__peeked = self.parser.next()
        return self.__peeked

    def __run(self, first, cls):
        packets = [first]
        while isinstance(self.__peek(), cls):
            packets.append(self.__next_packet())
        return packets

    def next_node(self):
        packet = self.__next_packet()
        if packet is None:
            return None

        if isinstance(packet, _ESK):
            packets = self.__run(packet, _ESK)
            data = self.__next_packet()
            if not isinstance(data, _ENCRYPTED):
                raise MalformedMessageError(
                    "Encrypted session keys not followed by encrypted data, "
                    "found {}".format(data))
            packets.append(data)
            return PacketNode(NodeKind.EncryptedContainer, packets)
        if isinstance(packet, _ENCRYPTED):
            return PacketNode(NodeKind.EncryptedContainer, [packet])
        if isinstance(packet, CompressedData):
            return PacketNode(NodeKind.CompressedContainer, [packet])
        if isinstance(packet, OnePassSig):
            return PacketNode(NodeKind.SignatureAnnouncementList,
                              self.__run(packet, OnePassSig))
        if isinstance(packet, Literal):
            return PacketNode(NodeKind.LiteralPayload, [packet])
        if isinstance(packet, Signature):
            return PacketNode(NodeKind.TrailingSignatureList,
                              self.__run(packet, Signature))
        return PacketNode(NodeKind.Unknown, [packet])

    def __iter__(self):
        return pgp_iterator(self.next_node)

    def signatures(self):
        """Reads this level to its end, returning the signatures found."""
        found = []
        for node in self:
            if node.kind is NodeKind.TrailingSignatureList:
                found.extend(node.packets)
        return found
