"""Security: client identity checks."""

from vlessgate.security.identity import Identity, IdentityGate

__all__ = ["Identity", "IdentityGate"]
