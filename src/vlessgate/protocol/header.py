"""VLESS tunnel-setup header codec.

Wire layout (multi-byte fields big-endian)::

    version(1) | client_id(16) | addon_len(1) | addon(N) | command(1)
    | port(2) | address_type(1) | address(4 | 1+len | 16) | payload...

Decoding is pull-based against whatever has been buffered so far and never
performs I/O. Anything after the header boundary is returned untouched as
payload.
"""

from __future__ import annotations

import ipaddress
import struct
from dataclasses import dataclass
from enum import IntEnum

PROTOCOL_VERSION = 0
CLIENT_ID_SIZE = 16
MAX_ADDON_SIZE = 255
MAX_DOMAIN_SIZE = 255

# version + id + addon_len + addon + command + port + address_type + domain_len + domain
MAX_HEADER_SIZE = 1 + CLIENT_ID_SIZE + 1 + MAX_ADDON_SIZE + 1 + 2 + 1 + 1 + MAX_DOMAIN_SIZE

_PORT = struct.Struct(">H")


class Command(IntEnum):
    """Tunnel command."""

    TCP = 1
    UDP = 2
    MUX = 3


class AddressType(IntEnum):
    """Destination address encoding."""

    IPV4 = 1
    DOMAIN = 2
    IPV6 = 3


@dataclass(frozen=True)
class TunnelRequest:
    """Decoded tunnel-setup header."""

    client_id: bytes
    command: Command
    port: int
    address_type: AddressType
    address: str
    addon: bytes = b""
    version: int = PROTOCOL_VERSION

    def __post_init__(self) -> None:
        if len(self.client_id) != CLIENT_ID_SIZE:
            raise ValueError(f"client_id must be {CLIENT_ID_SIZE} bytes")
        if len(self.addon) > MAX_ADDON_SIZE:
            raise ValueError("addon longer than 255 bytes")
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"port out of range: {self.port}")
        if self.address_type == AddressType.IPV4:
            object.__setattr__(self, "address", str(ipaddress.IPv4Address(self.address)))
        elif self.address_type == AddressType.IPV6:
            object.__setattr__(self, "address", str(ipaddress.IPv6Address(self.address)))
        else:
            encoded = self.address.encode("ascii")
            if not 0 < len(encoded) <= MAX_DOMAIN_SIZE:
                raise ValueError("domain must be 1-255 bytes")
        object.__setattr__(self, "command", Command(self.command))
        object.__setattr__(self, "address_type", AddressType(self.address_type))

    @property
    def addon_length(self) -> int:
        return len(self.addon)

    @property
    def target(self) -> str:
        """host:port form used in logs."""
        if self.address_type == AddressType.IPV6:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"


@dataclass(frozen=True)
class Incomplete:
    """More bytes are needed before the header can be decoded."""


@dataclass(frozen=True)
class Parsed:
    """Header fully decoded; remainder is payload that followed it."""

    request: TunnelRequest
    remainder: bytes = b""


@dataclass(frozen=True)
class Malformed:
    """Buffered bytes can never form a valid header."""

    reason: str


DecodeResult = Incomplete | Parsed | Malformed

_INCOMPLETE = Incomplete()


def decode_request(buffer: bytes | bytearray | memoryview) -> DecodeResult:
    """Attempt to decode one TunnelRequest from the start of buffer."""
    data = memoryview(buffer)
    size = len(data)

    if size < 1:
        return _INCOMPLETE
    version = data[0]
    if version != PROTOCOL_VERSION:
        return Malformed(f"unsupported version {version}")

    cursor = 1 + CLIENT_ID_SIZE
    if size < cursor + 1:
        return _INCOMPLETE
    client_id = bytes(data[1:cursor])

    addon_len = data[cursor]
    cursor += 1
    if size < cursor + addon_len + 1:
        return _INCOMPLETE
    addon = bytes(data[cursor : cursor + addon_len])
    cursor += addon_len

    command_byte = data[cursor]
    cursor += 1
    try:
        command = Command(command_byte)
    except ValueError:
        return Malformed(f"unknown command {command_byte}")

    if size < cursor + 3:
        return _INCOMPLETE
    (port,) = _PORT.unpack_from(data, cursor)
    cursor += 2
    type_byte = data[cursor]
    cursor += 1
    try:
        address_type = AddressType(type_byte)
    except ValueError:
        return Malformed(f"unknown address type {type_byte}")

    if address_type == AddressType.IPV4:
        if size < cursor + 4:
            return _INCOMPLETE
        address = str(ipaddress.IPv4Address(bytes(data[cursor : cursor + 4])))
        cursor += 4
    elif address_type == AddressType.IPV6:
        if size < cursor + 16:
            return _INCOMPLETE
        address = str(ipaddress.IPv6Address(bytes(data[cursor : cursor + 16])))
        cursor += 16
    else:
        if size < cursor + 1:
            return _INCOMPLETE
        domain_len = data[cursor]
        cursor += 1
        if domain_len == 0:
            return Malformed("empty domain")
        if size < cursor + domain_len:
            return _INCOMPLETE
        try:
            address = bytes(data[cursor : cursor + domain_len]).decode("ascii")
        except UnicodeDecodeError:
            return Malformed("domain is not ascii")
        cursor += domain_len

    request = TunnelRequest(
        client_id=client_id,
        command=command,
        port=port,
        address_type=address_type,
        address=address,
        addon=addon,
        version=version,
    )
    return Parsed(request=request, remainder=bytes(data[cursor:]))


def encode_request(request: TunnelRequest) -> bytes:
    """Serialize a TunnelRequest to its wire form."""
    out = bytearray()
    out.append(request.version)
    out += request.client_id
    out.append(len(request.addon))
    out += request.addon
    out.append(request.command)
    out += _PORT.pack(request.port)
    out.append(request.address_type)
    if request.address_type == AddressType.IPV4:
        out += ipaddress.IPv4Address(request.address).packed
    elif request.address_type == AddressType.IPV6:
        out += ipaddress.IPv6Address(request.address).packed
    else:
        domain = request.address.encode("ascii")
        out.append(len(domain))
        out += domain
    return bytes(out)


def response_header(version: int = PROTOCOL_VERSION) -> bytes:
    """Preamble the server puts in front of the first downstream message."""
    return bytes((version, 0))


class HeaderDecoder:
    """Incremental decoder fed by successive WebSocket frames.

    Bytes are accumulated until decode_request() stops returning Incomplete.
    After Parsed or Malformed the decoder is finished and drops its buffer.

    Example:
        decoder = HeaderDecoder()
        result = decoder.feed(frame)
        if isinstance(result, Parsed):
            ...
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._finished = False
        self.frames = 0

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    @property
    def finished(self) -> bool:
        return self._finished

    def feed(self, data: bytes) -> DecodeResult:
        if self._finished:
            raise RuntimeError("header already decoded")
        self.frames += 1
        self._buffer += data
        result = decode_request(bytes(self._buffer))
        if not isinstance(result, Incomplete):
            self._finished = True
            self._buffer.clear()
        return result
