"""Configuration for the device connection and sync policy.

Values come from a TOML file::

    [device]
    host = "192.168.1.201"
    port = 4370
    timeout = 30
    write_timeout = 10
    record_layout = "flat-v1"

    [sync]
    auto_clear_enabled = false
    auto_clear_threshold = 50000

or from ``ZKCLOCK_*`` environment variables, falling back to defaults.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path

from .errors import ConfigError
from .models.layouts import DEFAULT_LAYOUT, get_layout
from .protocol.commands import DEFAULT_PORT

logger = logging.getLogger(__name__)

CONFIG_ENV = "ZKCLOCK_CONFIG"
MIN_TIMEOUT = 5.0

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class DeviceConfig:
    """Time-clock connection settings."""

    host: str = "192.168.1.201"
    port: int = DEFAULT_PORT
    timeout: float = 30.0
    write_timeout: float = 10.0
    record_layout: str = DEFAULT_LAYOUT


@dataclass
class SyncConfig:
    """Auto-clear policy applied after a download."""

    auto_clear_enabled: bool = False
    auto_clear_threshold: int = 50000


@dataclass
class AppConfig:
    device: DeviceConfig = field(default_factory=DeviceConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @classmethod
    def load(cls, path: str | Path) -> AppConfig:
        """Load and validate a TOML config file.

        Raises:
            ConfigError: If the file cannot be parsed or holds bad values.
        """
        path = Path(path)
        try:
            with path.open("rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Failed to parse {path}: {e}") from e

        config = cls(
            device=_from_table(DeviceConfig, raw.get("device", {})),
            sync=_from_table(SyncConfig, raw.get("sync", {})),
        )
        config.validate()
        return config

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> AppConfig:
        """Build a config from ``ZKCLOCK_*`` environment variables."""
        env = os.environ if environ is None else environ
        config = cls()
        device, sync = config.device, config.sync

        device.host = env.get("ZKCLOCK_HOST", device.host)
        device.port = _env_number(env, "ZKCLOCK_PORT", int, device.port)
        device.timeout = _env_number(env, "ZKCLOCK_TIMEOUT", float, device.timeout)
        device.write_timeout = _env_number(
            env, "ZKCLOCK_WRITE_TIMEOUT", float, device.write_timeout
        )
        device.record_layout = env.get("ZKCLOCK_RECORD_LAYOUT", device.record_layout)
        sync.auto_clear_enabled = _env_bool(
            env, "ZKCLOCK_AUTO_CLEAR", sync.auto_clear_enabled
        )
        sync.auto_clear_threshold = _env_number(
            env, "ZKCLOCK_AUTO_CLEAR_THRESHOLD", int, sync.auto_clear_threshold
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Raise ``ConfigError`` on the first invalid value."""
        device = self.device
        if not device.host.strip():
            raise ConfigError("Device host cannot be empty")
        if not 0 < device.port <= 0xFFFF:
            raise ConfigError(f"Device port must be 1-65535, got {device.port}")
        if device.timeout < MIN_TIMEOUT:
            raise ConfigError(
                f"Timeout must be at least {MIN_TIMEOUT:g} seconds, got {device.timeout}"
            )
        if device.write_timeout <= 0:
            raise ConfigError("Write timeout must be positive")
        try:
            get_layout(device.record_layout)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        if self.sync.auto_clear_threshold < 1:
            raise ConfigError("Auto-clear threshold must be at least 1")


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load config from ``path``, ``$ZKCLOCK_CONFIG``, or the environment.

    A missing file is not an error: the environment and defaults apply.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV)
    if path is not None and Path(path).exists():
        logger.info("Loading config from %s", path)
        return AppConfig.load(path)
    if path is not None:
        logger.info("Config file %s not found, using environment", path)
    return AppConfig.from_env()


def _from_table(cls, table: dict):
    known = {f.name for f in fields(cls)}
    unknown = set(table) - known
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**table)


def _env_number(env, name: str, kind, default):
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return kind(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def _env_bool(env, name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")
