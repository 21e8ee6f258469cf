"""Configuration management for Handover Sync."""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from platformdirs import user_config_dir, user_data_dir, user_log_dir

from .errors import ConfigurationError

__all__ = [
    "Config",
    "SyncSettings",
    "NetworkSettings",
    "setup_logging",
    "ENDPOINT_ENV_VAR",
    "MAX_QUEUE_SIZE",
]

logger = logging.getLogger(__name__)

APP_NAME = "Handover Sync"
APP_AUTHOR = "HOT Process"

ENDPOINT_ENV_VAR = "HANDOVER_SYNC_ENDPOINT"

# Sync settings
DEFAULT_SYNC_INTERVAL = 300  # seconds, how often the timer checks staleness
DEFAULT_STALE_AFTER = 600  # seconds since last sync before the timer syncs
DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT = 30
MAX_QUEUE_SIZE = 1000

# Connectivity probe
DEFAULT_PROBE_HOST = "script.google.com"
DEFAULT_PROBE_PORT = 443
DEFAULT_PROBE_INTERVAL = 15


@dataclass
class SyncSettings:
    """Sync configuration."""

    interval_seconds: int = DEFAULT_SYNC_INTERVAL
    stale_after_seconds: int = DEFAULT_STALE_AFTER
    max_retries: int = DEFAULT_MAX_RETRIES
    max_queue_size: int = MAX_QUEUE_SIZE
    timeout: int = DEFAULT_TIMEOUT
    # Queue drain backoff. A zero base delay retries on the very next cycle.
    retry_base_delay: float = 0.0
    retry_max_delay: float = 300.0
    retry_jitter: bool = False


@dataclass
class NetworkSettings:
    """Connectivity probe settings."""

    probe_host: str = DEFAULT_PROBE_HOST
    probe_port: int = DEFAULT_PROBE_PORT
    probe_interval: int = DEFAULT_PROBE_INTERVAL


@dataclass
class Config:
    """Main configuration object."""

    endpoint_url: str = ""
    sync: SyncSettings = field(default_factory=SyncSettings)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    notifications: bool = True
    debug_mode: bool = False

    @classmethod
    def get_config_dir(cls) -> Path:
        """Get the configuration directory path."""
        return Path(user_config_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory path (for the SQLite store)."""
        return Path(user_data_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_log_dir(cls) -> Path:
        """Get the log directory path."""
        return Path(user_log_dir(APP_NAME, APP_AUTHOR))

    @classmethod
    def get_config_file(cls) -> Path:
        """Get the config file path."""
        return cls.get_config_dir() / "config.json"

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "Config":
        """Load config from file, or return defaults.

        A malformed file is logged and replaced by defaults rather than
        stopping the agent.
        """
        config_file = config_file or cls.get_config_file()
        config = cls()
        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)
                config = cls.from_dict(data)
            except (OSError, ValueError, ConfigurationError) as e:
                logger.warning(f"Failed to load config: {e}, using defaults")

        env_endpoint = os.getenv(ENDPOINT_ENV_VAR)
        if env_endpoint:
            config.endpoint_url = env_endpoint.strip()
        return config

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary.

        Raises:
            ConfigurationError: If the data is not shaped like a config
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Config must be a JSON object")

        data = dict(data)
        sync_data = data.pop("sync", None) or {}
        network_data = data.pop("network", None) or {}
        try:
            return cls(
                sync=SyncSettings(**sync_data),
                network=NetworkSettings(**network_data),
                **{k: v for k, v in data.items() if k in cls.__dataclass_fields__},
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid config: {e}") from e

    def merge_overrides(self, overrides: dict) -> None:
        """Apply a partial config blob (e.g. the stored ``sync_config`` value).

        Accepts the nested ``sync``/``network`` shape written by this agent and
        the flat ``googleScriptUrl``/``syncInterval``/``maxRetries`` shape
        saved by the browser app. Unknown keys are ignored. Values of the
        wrong type are dropped with a warning and the current value is kept.
        """
        overrides = dict(overrides)
        sync_data = overrides.get("sync")
        sync_data = dict(sync_data) if isinstance(sync_data, dict) else {}

        # Browser app settings
        if "googleScriptUrl" in overrides:
            overrides.setdefault("endpoint_url", overrides["googleScriptUrl"])
        interval_ms = overrides.get("syncInterval")
        if _is_number(interval_ms):
            sync_data.setdefault("interval_seconds", int(interval_ms // 1000))
        elif interval_ms is not None:
            logger.warning(f"Ignoring invalid syncInterval override: {interval_ms!r}")
        if "maxRetries" in overrides:
            sync_data.setdefault("max_retries", overrides["maxRetries"])

        _apply_overrides(self.sync, sync_data)
        network_data = overrides.get("network")
        if isinstance(network_data, dict):
            _apply_overrides(self.network, network_data)
        _apply_overrides(
            self,
            {k: overrides[k] for k in ("endpoint_url", "notifications", "debug_mode") if k in overrides},
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def save(self, config_file: Optional[Path] = None) -> None:
        """Save config to file."""
        config_file = config_file or self.get_config_file()
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Config saved to {config_file}")


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _apply_overrides(target, values: dict) -> None:
    """Set known dataclass fields on ``target``, skipping mistyped values."""
    for key, value in values.items():
        field_info = target.__dataclass_fields__.get(key)
        if field_info is None:
            continue
        expected = field_info.type
        if expected is float and _is_number(value):
            value = float(value)
        elif expected is int and _is_number(value) and float(value).is_integer():
            value = int(value)
        elif expected in (bool, str) and isinstance(value, expected):
            pass
        else:
            logger.warning(f"Ignoring invalid config override {key}={value!r}")
            continue
        setattr(target, key, value)


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    log_dir = Config.get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "handover-sync.log"

    level = logging.DEBUG if debug else logging.INFO
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
