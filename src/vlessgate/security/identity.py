"""Client identity: the configured UUID and the constant-time gate that checks it."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from uuid import UUID

from vlessgate.core.exceptions import AuthRejected, ConfigurationError
from vlessgate.protocol.header import TunnelRequest


@dataclass(frozen=True)
class Identity:
    """The configured client identifier. Read-only after startup."""

    value: bytes

    def __post_init__(self) -> None:
        if len(self.value) != 16:
            raise ConfigurationError("identity must be 16 bytes")

    @classmethod
    def from_string(cls, value: str | UUID) -> Identity:
        try:
            uuid = value if isinstance(value, UUID) else UUID(value.strip())
        except (ValueError, AttributeError) as e:
            raise ConfigurationError(f"Invalid UUID: {value!r}") from e
        return cls(uuid.bytes)

    @property
    def uuid(self) -> UUID:
        return UUID(bytes=self.value)

    def matches(self, candidate: bytes) -> bool:
        # compare_digest only leaks length, which is fixed by the wire format
        return secrets.compare_digest(candidate, self.value)

    def __repr__(self) -> str:
        return "Identity(<redacted>)"


class IdentityGate:
    def __init__(self, identity: Identity) -> None:
        self._identity = identity

    def check(self, request: TunnelRequest) -> None:
        if not self._identity.matches(request.client_id):
            raise AuthRejected("client identifier mismatch")
