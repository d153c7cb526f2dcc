"""vlessgate - VLESS over WebSocket tunnel gateway."""

__version__ = "0.1.0"
