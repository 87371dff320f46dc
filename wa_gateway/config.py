"""Gateway configuration.

Settings come from built-in defaults, then an optional YAML file, then
``WA_GATEWAY_*`` environment variables (e.g. ``WA_GATEWAY_PORT=8080``).
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

ENV_PREFIX = "WA_GATEWAY_"


class ConfigError(ValueError):
    """Configuration could not be loaded."""


@dataclass(frozen=True)
class GatewayConfig:
    """Runtime settings for the gateway.

    Attributes:
        host: Interface the HTTP server binds to.
        port: HTTP server port.
        bridge_url: WebSocket URL of the WhatsApp Web bridge.
        bridge_token: Optional token sent in the bridge hello frame.
        auth_dir: Directory holding persisted session credentials.
        reconnect_delay: Seconds to wait before reconnecting.
        connect_timeout: Bridge connection timeout (seconds).
        send_timeout: Time to wait for a bridge ack (seconds).
        cors_origin: Value of Access-Control-Allow-Origin.
        log_level: Root logging level name.
    """

    host: str = "0.0.0.0"
    port: int = 3000
    bridge_url: str = "ws://127.0.0.1:3001/ws"
    bridge_token: str | None = None
    auth_dir: str = "auth"
    reconnect_delay: float = 5.0
    connect_timeout: float = 15.0
    send_timeout: float = 30.0
    cors_origin: str = "*"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"port out of range: {self.port}")
        if self.reconnect_delay < 0:
            raise ConfigError("reconnect_delay must not be negative")
        if self.connect_timeout <= 0 or self.send_timeout <= 0:
            raise ConfigError("timeouts must be positive")


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw value to the type of the named field."""
    default = getattr(GatewayConfig, name)
    if value is None:
        return None
    try:
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from err
    return str(value)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file with error handling."""
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {path}")
    return data


def load_config(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> GatewayConfig:
    """Build the gateway configuration.

    Args:
        path: Optional YAML file.
        environ: Environment mapping (defaults to ``os.environ``).
        overrides: Explicit values (e.g. from CLI flags); None values are
            ignored.

    Raises:
        ConfigError: Unknown keys, bad values, or a missing file.
    """
    fields = {f.name for f in dataclasses.fields(GatewayConfig)}
    values: dict[str, Any] = {}

    if path is not None:
        data = _load_yaml(Path(path))
        unknown = set(data) - fields
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        values.update(data)

    env = os.environ if environ is None else environ
    for name in fields:
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is not None:
            values[name] = raw

    unknown = set(overrides) - fields
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
    values.update({k: v for k, v in overrides.items() if v is not None})

    return GatewayConfig(**{k: _coerce(k, v) for k, v in values.items()})
