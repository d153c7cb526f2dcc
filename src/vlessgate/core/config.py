"""Configuration types with environment variable support.

All tunables can be set via environment variables with the VLESSGATE_ prefix.
Example: VLESSGATE_CONNECT_TIMEOUT=5 sets the outbound connect timeout to 5s.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PATH_PREFIX = "/work-tunnel-"


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


class ServerConfig(BaseModel):
    """Server configuration."""

    uuid: UUID = Field(
        description="Client identifier every tunnel header must carry.",
    )
    host: str = "0.0.0.0"
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="Listen port for HTTP and WebSocket upgrades.",
    )
    name: str | None = Field(
        default=None,
        description="Node name. When set, the WebSocket path is path_prefix + name.",
    )
    path_prefix: str = Field(
        default=DEFAULT_PATH_PREFIX,
        description="Prefix of the WebSocket path when a node name is configured.",
    )
    cert_path: str | None = None
    key_path: str | None = None
    metrics_enabled: bool = Field(
        default=False,
        description="Expose Prometheus metrics at /metrics.",
    )

    @property
    def ws_path(self) -> str:
        """Path that accepts tunnel WebSocket upgrades."""
        if self.name:
            return f"{self.path_prefix}{self.name}"
        return f"/{self.uuid}"


class TimeoutConfig(BaseSettings):
    """Timeout configuration. All values in seconds."""

    model_config = SettingsConfigDict(
        env_prefix="VLESSGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    connect_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Outbound connect timeout, DNS resolution included.",
    )
    udp_idle_timeout: float = Field(
        default=60.0,
        gt=0,
        description="UDP association closes after this long without traffic.",
    )
    header_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Time allowed for the tunnel-setup header to arrive.",
    )
    ping_interval: float = Field(
        default=30.0,
        description="WebSocket heartbeat ping interval.",
    )


class ResourceConfig(BaseSettings):
    """Resource ceilings and buffer sizes."""

    model_config = SettingsConfigDict(
        env_prefix="VLESSGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_sessions: int = Field(
        default=1024,
        ge=1,
        description="Maximum concurrent tunnel sessions.",
    )
    header_max_frames: int = Field(
        default=16,
        ge=1,
        description="Maximum WebSocket frames the tunnel-setup header may span.",
    )
    read_size: int = Field(
        default=64 * 1024,
        ge=1024,
        description="Largest chunk read from an outbound connection (bytes).",
    )
    udp_queue_size: int = Field(
        default=128,
        ge=1,
        description="Datagrams buffered per UDP association before dropping.",
    )
    ws_max_msg_size: int = Field(
        default=1024 * 1024,
        description="Largest accepted WebSocket message (bytes).",
    )


class GatewayConfig(BaseSettings):
    """Master configuration combining the tunable sections.

    Use get_config() to get a cached instance.
    """

    model_config = SettingsConfigDict(
        env_prefix="VLESSGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def timeouts(self) -> TimeoutConfig:
        """Get timeout configuration."""
        return TimeoutConfig()

    @property
    def resources(self) -> ResourceConfig:
        """Get resource configuration."""
        return ResourceConfig()

    def to_env_dict(self, section: str | None = None) -> dict[str, str]:
        """Export current configuration as environment variable dictionary.

        Args:
            section: Limit the export to one section (timeouts, resources)
        """
        display = self.to_display_dict()
        if section is not None:
            display = {section: display[section]}
        result = {}
        for values in display.values():
            for key, value in values.items():
                result[f"VLESSGATE_{key.upper()}"] = str(value)
        return result

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a nested dictionary for display."""
        return {
            "timeouts": self.timeouts.model_dump(),
            "resources": self.resources.model_dump(),
        }


_config: GatewayConfig | None = None


def get_config() -> GatewayConfig:
    """Get the global configuration instance.

    The instance is created once and cached for the lifetime of the process.
    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = GatewayConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration."""
    global _config
    _config = None
