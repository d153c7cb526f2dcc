"""Wire formats."""

from .datagram import MAX_DATAGRAM_SIZE, DatagramFramer, frame_datagram
from .header import (
    MAX_HEADER_SIZE,
    PROTOCOL_VERSION,
    AddressType,
    Command,
    DecodeResult,
    HeaderDecoder,
    Incomplete,
    Malformed,
    Parsed,
    TunnelRequest,
    decode_request,
    encode_request,
    response_header,
)

__all__ = [
    # Header
    "PROTOCOL_VERSION",
    "MAX_HEADER_SIZE",
    "AddressType",
    "Command",
    "TunnelRequest",
    "DecodeResult",
    "Incomplete",
    "Parsed",
    "Malformed",
    "HeaderDecoder",
    "decode_request",
    "encode_request",
    "response_header",
    # UDP framing
    "MAX_DATAGRAM_SIZE",
    "DatagramFramer",
    "frame_datagram",
]
