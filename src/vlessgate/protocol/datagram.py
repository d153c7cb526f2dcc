"""Length-prefixed UDP packet framing.

Inside a VLESS UDP tunnel each datagram travels as a 2-byte big-endian
length followed by the packet, in both directions. Packets may straddle
WebSocket frames, so the upstream side splits them incrementally.
"""

from __future__ import annotations

import struct

MAX_DATAGRAM_SIZE = 0xFFFF

_LENGTH = struct.Struct(">H")


def frame_datagram(payload: bytes) -> bytes:
    if len(payload) > MAX_DATAGRAM_SIZE:
        raise ValueError(f"datagram too large: {len(payload)} bytes")
    return _LENGTH.pack(len(payload)) + payload


class DatagramFramer:
    """Splits a byte stream into length-prefixed packets.

    Holds at most one partial packet, so the buffer never grows past
    2 + MAX_DATAGRAM_SIZE bytes plus the frame being fed.
    """

    __slots__ = ("_buffer",)

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer += data
        packets: list[bytes] = []
        offset = 0
        while len(self._buffer) - offset >= _LENGTH.size:
            (length,) = _LENGTH.unpack_from(self._buffer, offset)
            end = offset + _LENGTH.size + length
            if end > len(self._buffer):
                break
            packets.append(bytes(self._buffer[offset + _LENGTH.size : end]))
            offset = end
        if offset:
            del self._buffer[:offset]
        return packets
