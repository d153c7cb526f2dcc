"""Prometheus metrics for tunnel sessions, relayed bytes and connect latency."""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

SESSIONS = Counter(
    "vlessgate_sessions_total",
    "Tunnel sessions that passed authentication",
    ["command"],
)

SESSIONS_CLOSED = Counter(
    "vlessgate_sessions_closed_total",
    "Closed tunnel sessions",
    ["reason"],  # normal, malformed, auth_rejected, connect_failure, ...
)

ACTIVE_SESSIONS = Gauge(
    "vlessgate_active_sessions",
    "Current tunnel sessions",
)

BYTES_TRANSFERRED = Counter(
    "vlessgate_bytes_total",
    "Payload bytes relayed",
    ["direction", "protocol"],  # direction: up/down, protocol: tcp/udp
)

CONNECT_DURATION = Histogram(
    "vlessgate_connect_duration_seconds",
    "Outbound connect latency",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
