"""
Configuration for the coordinator: defaults, ~/.lifxctl/config.json,
the LIFX_API_TOKEN environment variable and explicit overrides, in that
order of precedence, validated with one voluptuous schema.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import voluptuous as vol

from .constants import (
    CONFIG_DIR_NAME,
    CONFIG_FILE_NAME,
    DEFAULT_CONTROL_TIMEOUT_MS,
    DEFAULT_DURATION_MS,
    DEFAULT_LAN_COOLDOWN_MS,
    DEFAULT_LAN_RETRY_ATTEMPTS,
    DEFAULT_LAN_STATE_TIMEOUT_MS,
    DEFAULT_LAN_TIMEOUT_MS,
    HTTP_TOKEN_ENV,
)
from .errors import ConfigError

# camelCase spellings accepted in the JSON file
_ALIASES = {
    "enableLanDiscovery": "enable_lan_discovery",
    "lanTimeoutMs": "lan_timeout_ms",
    "lanTimeout": "lan_timeout_ms",
    "lanStateTimeoutMs": "lan_state_timeout_ms",
    "lanStateTimeout": "lan_state_timeout_ms",
    "lanRetryAttempts": "lan_retry_attempts",
    "lanCooldownMs": "lan_cooldown_ms",
    "lanCooldownPeriod": "lan_cooldown_ms",
    "httpApiToken": "http_api_token",
    "controlTimeoutMs": "control_timeout_ms",
    "defaultFadeDuration": "default_duration_ms",
}


def _token(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise vol.Invalid("expected a string")
    value = value.strip()
    return value or None


_positive_ms = vol.All(vol.Coerce(int), vol.Range(min=1))

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Optional("enable_lan_discovery", default=True): vol.Boolean(),
        vol.Optional("lan_timeout_ms", default=DEFAULT_LAN_TIMEOUT_MS): _positive_ms,
        vol.Optional("lan_state_timeout_ms", default=DEFAULT_LAN_STATE_TIMEOUT_MS): _positive_ms,
        vol.Optional("lan_retry_attempts", default=DEFAULT_LAN_RETRY_ATTEMPTS): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=10)
        ),
        vol.Optional("lan_cooldown_ms", default=DEFAULT_LAN_COOLDOWN_MS): vol.All(
            vol.Coerce(int), vol.Range(min=0)
        ),
        vol.Optional("http_api_token", default=None): _token,
        vol.Optional("control_timeout_ms", default=DEFAULT_CONTROL_TIMEOUT_MS): _positive_ms,
        vol.Optional("default_duration_ms", default=DEFAULT_DURATION_MS): vol.All(
            vol.Coerce(int), vol.Range(min=0)
        ),
    }
)


@dataclass(frozen=True)
class Config:
    enable_lan_discovery: bool = True
    lan_timeout_ms: int = DEFAULT_LAN_TIMEOUT_MS
    lan_state_timeout_ms: int = DEFAULT_LAN_STATE_TIMEOUT_MS
    lan_retry_attempts: int = DEFAULT_LAN_RETRY_ATTEMPTS
    lan_cooldown_ms: int = DEFAULT_LAN_COOLDOWN_MS
    http_api_token: Optional[str] = None
    control_timeout_ms: int = DEFAULT_CONTROL_TIMEOUT_MS
    default_duration_ms: int = DEFAULT_DURATION_MS

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Config":
        """Validate ``data`` (snake_case or camelCase keys) and build a Config."""
        normalized = {_ALIASES.get(key, key): value for key, value in data.items()}
        try:
            validated = CONFIG_SCHEMA(normalized)
        except vol.Invalid as e:
            key = ".".join(str(p) for p in e.path) or "config"
            raise ConfigError(f"Invalid value for '{key}': {e.msg}", reason="config") from e
        return cls(**validated)


def get_config_dir() -> Path:
    """Gets the configuration directory for the application."""
    return Path.home() / CONFIG_DIR_NAME


def load_config_file(path: Optional[Path] = None) -> dict:
    """Read the JSON config file; a missing file means no settings."""
    config_file = path or (get_config_dir() / CONFIG_FILE_NAME)
    if not config_file.exists():
        return {}
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read {config_file}: {e}", reason="config") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file} must contain a JSON object", reason="config")
    return data


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Config:
    """Merge defaults, file, environment and overrides into one Config.

    Override values of None are ignored so CLI flags that were not given do
    not mask file settings.
    """
    environ = os.environ if environ is None else environ
    merged: dict[str, Any] = {
        _ALIASES.get(key, key): value for key, value in load_config_file(path).items()
    }

    env_token = environ.get(HTTP_TOKEN_ENV)
    if env_token:
        merged["http_api_token"] = env_token

    for key, value in (overrides or {}).items():
        if value is not None:
            merged[_ALIASES.get(key, key)] = value

    return Config.from_mapping(merged)
