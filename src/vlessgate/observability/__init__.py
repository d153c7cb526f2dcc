from vlessgate.observability.metrics import (
    ACTIVE_SESSIONS,
    BYTES_TRANSFERRED,
    CONNECT_DURATION,
    SESSIONS,
    SESSIONS_CLOSED,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "SESSIONS",
    "SESSIONS_CLOSED",
    "ACTIVE_SESSIONS",
    "BYTES_TRANSFERRED",
    "CONNECT_DURATION",
    "generate_metrics",
    "get_content_type",
]
