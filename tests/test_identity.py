"""Tests for the identity gate."""

from __future__ import annotations

from uuid import UUID

import pytest

from vlessgate.core.exceptions import AuthRejected, ConfigurationError
from vlessgate.protocol.header import AddressType, Command, TunnelRequest
from vlessgate.security.identity import Identity, IdentityGate

CLIENT_UUID = UUID("0d3c8f6e-3d5a-4c61-9a53-0b6f3c1b2a77")


def request_with(client_id: bytes) -> TunnelRequest:
    return TunnelRequest(
        client_id=client_id,
        command=Command.TCP,
        port=443,
        address_type=AddressType.DOMAIN,
        address="example.com",
    )


class TestIdentity:
    def test_from_string(self) -> None:
        identity = Identity.from_string(str(CLIENT_UUID))
        assert identity.value == CLIENT_UUID.bytes
        assert identity.uuid == CLIENT_UUID

    def test_from_uuid(self) -> None:
        assert Identity.from_string(CLIENT_UUID).uuid == CLIENT_UUID

    def test_strips_whitespace(self) -> None:
        assert Identity.from_string(f"  {CLIENT_UUID}\n").uuid == CLIENT_UUID

    @pytest.mark.parametrize("value", ["", "not-a-uuid", "0d3c8f6e-3d5a-4c61-9a53"])
    def test_invalid_string(self, value: str) -> None:
        with pytest.raises(ConfigurationError):
            Identity.from_string(value)

    def test_wrong_length(self) -> None:
        with pytest.raises(ConfigurationError):
            Identity(b"\x00" * 8)

    def test_repr_is_redacted(self) -> None:
        identity = Identity.from_string(CLIENT_UUID)
        assert str(CLIENT_UUID) not in repr(identity)
        assert CLIENT_UUID.hex not in repr(identity)


class TestIdentityGate:
    """Client identifier check."""

    def test_accepts_matching_id(self) -> None:
        gate = IdentityGate(Identity.from_string(CLIENT_UUID))
        gate.check(request_with(CLIENT_UUID.bytes))

    @pytest.mark.parametrize("bit", [0, 7, 64, 127])
    def test_rejects_single_bit_difference(self, bit: int) -> None:
        gate = IdentityGate(Identity.from_string(CLIENT_UUID))
        flipped = bytearray(CLIENT_UUID.bytes)
        flipped[bit // 8] ^= 1 << (bit % 8)
        with pytest.raises(AuthRejected):
            gate.check(request_with(bytes(flipped)))

    def test_matches_is_exact(self) -> None:
        identity = Identity.from_string(CLIENT_UUID)
        assert identity.matches(CLIENT_UUID.bytes)
        assert not identity.matches(CLIENT_UUID.bytes[:15])
        assert not identity.matches(b"")
