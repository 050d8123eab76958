from __future__ import annotations

import json
import os
import socket
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv


DEFAULT_CONFIG_PATH = Path("/etc/nexus-agent/config.json")
SOCKETIO_PATH = "/socket.io/?EIO=4&transport=websocket"

# Local `.env` files never override variables that are already exported.
load_dotenv(override=False)


def _env_name(key: str) -> str:
    return f"NEXUS_{key.upper()}"


def _raw(key: str, file_values: Dict[str, Any]) -> Optional[Any]:
    value = os.getenv(_env_name(key))
    if value is not None and value.strip() != "":
        return value.strip()
    return file_values.get(key)


def _get_str(key: str, default: str, file_values: Dict[str, Any]) -> str:
    value = _raw(key, file_values)
    if value is None:
        return default
    return str(value).strip()


def _get_int(key: str, default: int, file_values: Dict[str, Any]) -> int:
    value = _raw(key, file_values)
    if value is None or str(value).strip() == "":
        return default
    return int(value)


def _get_float(key: str, default: float, file_values: Dict[str, Any]) -> float:
    value = _raw(key, file_values)
    if value is None or str(value).strip() == "":
        return default
    return float(value)


def _get_bool(key: str, default: bool, file_values: Dict[str, Any]) -> bool:
    value = _raw(key, file_values)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    # Identity
    agent_name: str = socket.gethostname()
    agent_token: str = ""
    backend_url: str = "http://localhost:3000"

    # Loops
    collection_interval_seconds: float = 5.0
    command_poll_seconds: float = 0.5
    heartbeat_interval_seconds: float = 30.0
    http_timeout_seconds: float = 10.0

    # Container runtime
    docker_enabled: bool = True
    docker_socket_path: str = "/var/run/docker.sock"

    # Duplex transport
    transport_enabled: bool = True
    transport_protocol: str = "json"  # 'json' | 'socketio'
    transport_path: str = "/ws/agent"
    reconnect_delay_seconds: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_file: str = ""

    def transport_url(self) -> str:
        base = self.backend_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        path = self.transport_path
        if self.transport_protocol == "socketio" and path == "/ws/agent":
            path = SOCKETIO_PATH
        return base + path


def load_config_file(path: Optional[Path]) -> Dict[str, Any]:
    """Read the optional JSON config file; a missing file yields {}."""
    if path is None or not path.is_file():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object at top level")
    return data


def load_settings(config_path: Optional[Path] = DEFAULT_CONFIG_PATH, **overrides: Any) -> Settings:
    """Build Settings from defaults, the config file, env vars and explicit overrides.

    Precedence (highest first): overrides, NEXUS_* env vars, config file, defaults.
    """
    file_values = load_config_file(config_path)
    defaults = Settings()
    values: Dict[str, Any] = {}
    for f in fields(Settings):
        default = getattr(defaults, f.name)
        if isinstance(default, bool):
            values[f.name] = _get_bool(f.name, default, file_values)
        elif isinstance(default, int):
            values[f.name] = _get_int(f.name, default, file_values)
        elif isinstance(default, float):
            values[f.name] = _get_float(f.name, default, file_values)
        else:
            values[f.name] = _get_str(f.name, default, file_values)

    settings = Settings(**values)
    clean = {k: v for k, v in overrides.items() if v is not None}
    if clean:
        settings = replace(settings, **clean)
    if settings.transport_protocol not in ("json", "socketio"):
        raise ValueError(f"unknown transport_protocol: {settings.transport_protocol!r}")
    return settings
