#!/usr/bin/env python3
"""Configuration loading for the light proxy bridge.

Settings come from three layers, later layers winning:
- built-in defaults
- options.json in the data directory (written by the add-on supervisor)
- environment variables

Every value is coerced to its expected type; anything unparsable falls back
to the default with a warning.
"""

import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Button timing defaults (ms)
DEFAULT_HOLD_DETECT_MS = 300
DEFAULT_HOLD_MISFIRE_GRACE_MS = 250
DEFAULT_HOLD_RATE_MS = 5000

# Give Home Assistant this long to report the light before notifications resume
DEFAULT_STARTUP_WATCHDOG_MS = 30000

# Environment variable -> option key
ENV_OPTIONS = {
    "HA_HOST": "ha_host",
    "HA_PORT": "ha_port",
    "HA_TOKEN": "ha_token",
    "HA_USE_SSL": "ha_use_ssl",
    "HA_WEBSOCKET_URL": "ha_websocket_url",
    "LIGHT_ENTITY_ID": "entity_id",
    "BRIGHTNESS_SCALE": "brightness_scale",
    "PROXY_PORT": "proxy_port",
    "LOG_LEVEL": "log_level",
}


def to_int(value: Any) -> Optional[int]:
    """Coerce a proxy/HA value to int, or None when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(round(float(value)))
    except (ValueError, TypeError):
        return None


def to_float(value: Any) -> Optional[float]:
    """Coerce a proxy/HA value to float, or None when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def to_bool(value: Any) -> Optional[bool]:
    """Coerce "true"/"1"/"yes"/"on" style values to bool."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
    return None


@dataclass
class BridgeConfig:
    """All runtime settings for one bridged light."""
    entity_id: str = ""
    ha_host: str = "localhost"
    ha_port: int = 8123
    ha_token: str = ""
    ha_use_ssl: bool = False
    ha_websocket_url: str = ""
    brightness_scale: int = 255
    hold_detect_ms: int = DEFAULT_HOLD_DETECT_MS
    hold_misfire_grace_ms: int = DEFAULT_HOLD_MISFIRE_GRACE_MS
    hold_rate_default_ms: int = DEFAULT_HOLD_RATE_MS
    startup_watchdog_ms: int = DEFAULT_STARTUP_WATCHDOG_MS
    brightness_rate_default: int = 0
    color_rate_default: int = 0
    proxy_port: int = 8099
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        """Build a config from a raw dict, coercing each known key."""
        config = cls()
        for f in fields(cls):
            if f.name not in data or data[f.name] is None:
                continue
            raw = data[f.name]
            default = getattr(config, f.name)
            if isinstance(default, bool):
                value = to_bool(raw)
            elif isinstance(default, int):
                value = to_int(raw)
            else:
                value = str(raw)
            if value is None:
                logger.warning(f"Invalid value for '{f.name}': {raw!r}, keeping {default!r}")
                continue
            setattr(config, f.name, value)

        if config.brightness_scale not in (100, 255):
            logger.warning(f"Unsupported brightness_scale {config.brightness_scale}, using 255")
            config.brightness_scale = 255
        return config

    @property
    def websocket_url(self) -> str:
        """Home Assistant websocket URL, explicit or built from host/port."""
        if self.ha_websocket_url:
            return self.ha_websocket_url
        protocol = "wss" if self.ha_use_ssl else "ws"
        return f"{protocol}://{self.ha_host}:{self.ha_port}/api/websocket"


def get_data_directory() -> str:
    """Get the appropriate data directory based on environment."""
    if os.path.exists("/data"):
        # Running as a Home Assistant add-on
        return "/data"
    # Running in development - use local .data directory
    data_dir = os.path.join(os.path.dirname(__file__), ".data")
    os.makedirs(data_dir, exist_ok=True)
    return data_dir


def load_config(data_dir: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> BridgeConfig:
    """Load defaults, then options.json, then environment overrides.

    Args:
        data_dir: Optional data directory path. If None, auto-detected.
        environ: Optional environment mapping (defaults to os.environ)

    Returns:
        The merged BridgeConfig
    """
    if data_dir is None:
        data_dir = get_data_directory()
    if environ is None:
        environ = dict(os.environ)

    merged: Dict[str, Any] = {}

    path = os.path.join(data_dir, "options.json")
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                part = json.load(f)
            if isinstance(part, dict):
                merged.update(part)
            else:
                logger.warning(f"Ignoring {path}: expected a JSON object")
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to read options from {path}: {e}")

    for env_name, key in ENV_OPTIONS.items():
        if environ.get(env_name):
            merged[key] = environ[env_name]

    config = BridgeConfig.from_dict(merged)
    logger.info(
        f"Loaded config: entity={config.entity_id or '<unset>'}, "
        f"url={config.websocket_url}, brightness_scale={config.brightness_scale}"
    )
    return config
