"""Settings for a Dr. Route instance.

Values are layered: dataclass defaults, then an optional YAML file, then the
process environment. CLI flags are applied last by ``drroute.cli``.
"""

import os
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from drroute.core.errors import ConfigError

logger = logging.getLogger(__name__)

# Environment variable -> settings field
ENV_VARS = {
    "PORT": "port",
    "PIDFILE": "pid_file",
    "DRROUTE_HOST": "host",
    "DRROUTE_POLL_INTERVAL": "poll_interval",
    "DRROUTE_LOG_LEVEL": "log_level",
}

INT_FIELDS = ("port", "read_size")
FLOAT_FIELDS = ("poll_interval", "connect_timeout", "http_timeout")
# poll_interval and port may be 0 (no pause between probes, ephemeral port)
POSITIVE_FIELDS = ("read_size", "connect_timeout", "http_timeout")


@dataclass(frozen=True)
class Settings:
    """Configuration for the control server and the poller."""
    host: str = "0.0.0.0"
    port: int = 8080
    pid_file: Optional[str] = None  # No PID file when unset
    poll_interval: float = 1.0  # Seconds slept between probes
    connect_timeout: float = 5.0  # TCP connect timeout in seconds
    read_size: int = 1024  # Max bytes read from a TCP target
    http_timeout: Optional[float] = None  # None keeps aiohttp's default
    log_level: str = "INFO"


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw YAML/env value to the type of settings field ``name``."""
    if value is None:
        return None
    if name in INT_FIELDS or name in FLOAT_FIELDS:
        if isinstance(value, bool):
            raise ConfigError(f"Invalid value for {name}: {value!r}")
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid value for {name}: {value!r}")
        if name in INT_FIELDS:
            if not number.is_integer():
                raise ConfigError(f"{name} must be a whole number, got {value!r}")
            number = int(number)
        if number < 0 or (number == 0 and name in POSITIVE_FIELDS):
            raise ConfigError(f"{name} out of range: {value!r}")
        if name == "port" and number > 65535:
            raise ConfigError(f"port out of range: {value!r}")
        return number
    if name == "log_level":
        level = str(value).upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ConfigError(f"Unknown log level: {value!r}")
        return level
    return str(value)


def _apply(settings: Settings, values: Mapping[str, Any], source: str) -> Settings:
    known = {f.name for f in fields(Settings)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown settings in {source}: {', '.join(sorted(unknown))}")
    return replace(settings, **{k: _coerce(k, v) for k, v in values.items()})


def load_yaml(path: str) -> Dict[str, Any]:
    """Read a YAML settings file into a plain mapping."""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file '{path}' not found")
    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping")
    return data


def load_settings(config_path: Optional[str] = None,
                  environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from defaults, an optional YAML file and the environment.

    Args:
        config_path: Optional YAML file with settings field names as keys
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        The resolved settings

    Raises:
        ConfigError: If the file is missing or malformed, or a value has the
            wrong type
    """
    environ = os.environ if environ is None else environ
    settings = Settings()

    if config_path:
        settings = _apply(settings, load_yaml(config_path), config_path)
        logger.debug(f"Loaded settings from {config_path}")

    overrides = {
        field_name: environ[var]
        for var, field_name in ENV_VARS.items()
        if environ.get(var)
    }
    if overrides:
        settings = _apply(settings, overrides, "environment")

    return settings
