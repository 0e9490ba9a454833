import struct
from datetime import datetime, timezone

from .error import MalformedPacket

CHUNK_SIZE = 8192

class Cursor(object):
    """Reads OpenPGP's scalar types from an in-memory packet body.

    Every accessor raises MalformedPacket instead of returning short
    data, so packet parsers never have to check lengths themselves.
    """

    def __init__(self, data):
        self.data = bytes(data)
        self.offset = 0

    @property
    def remaining(self):
        return len(self.data) - self.offset

    def read(self, n):
        if n < 0 or self.offset + n > len(self.data):
            raise MalformedPacket(
                "Truncated packet: wanted {} bytes, {} left".format(
                    n, self.remaining))
        chunk = self.data[self.offset:self.offset + n]
        self.offset += n
        return chunk

    def rest(self):
        return self.read(self.remaining)

    def byte(self):
        return self.read(1)[0]

    def uint16(self):
        return struct.unpack(">H", self.read(2))[0]

    def uint32(self):
        return struct.unpack(">I", self.read(4))[0]

    def mpi_bytes(self):
        bits = self.uint16()
        data = self.read((bits + 7) // 8)
        # The bit count must be exact: no leading zeros, no slack.
        if data and data[0].bit_length() + 8 * (len(data) - 1) != bits:
            raise MalformedPacket(
                "MPI bit count {} does not match its value".format(bits))
        return data

    def mpi(self):
        return int.from_bytes(self.mpi_bytes(), "big")

def int_to_bytes(n, length=None):
    if length is None:
        length = max(1, (n.bit_length() + 7) // 8)
    return n.to_bytes(length, "big")

def left_pad(data, length):
    if len(data) > length:
        raise MalformedPacket("Value too long: {} > {}".format(len(data), length))
    return b"\x00" * (length - len(data)) + data

def read_exact(reader, n):
    """Reads exactly n bytes from reader or raises MalformedPacket."""
    chunks = []
    wanted = n
    while wanted > 0:
        chunk = reader.read(wanted)
        if not chunk:
            raise MalformedPacket(
                "Unexpected end of data: wanted {} bytes, got {}".format(
                    n, n - wanted))
        chunks.append(chunk)
        wanted -= len(chunk)
    return b"".join(chunks)

def pgp_iterator(next_fn, map=lambda x: x):
    while True:
        entry = next_fn()
        if entry is None:
            break
        yield map(entry)

def pgp_time(t):
    if t == 0:
        return None
    else:
        return datetime.fromtimestamp(t, timezone.utc)
