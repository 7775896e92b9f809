"""Configuration management for the TTH blocklist filter."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from .constants import (
    DEFAULT_DEBOUNCE_SECONDS,
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_SYNC_RETRIES,
    DEFAULT_SYNC_RETRY_DELAY,
)

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


@dataclass
class Config:
    """Application configuration loaded from environment."""

    # Paths
    blocklist_dir: Path = field(default_factory=lambda: Path("./blocklists"))
    data_dir: Path = field(default_factory=lambda: Path("./data"))
    settings_file: Path = field(default_factory=lambda: Path("./config/settings.yaml"))

    # Remote synchronization
    sync_retries: int = DEFAULT_SYNC_RETRIES
    sync_retry_delay: float = DEFAULT_SYNC_RETRY_DELAY
    fetch_timeout: int = DEFAULT_FETCH_TIMEOUT

    # Directory watching
    watch_enabled: bool = True
    watch_debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    auto_enable_new_sources: bool = True

    # Health server (optional)
    health_host: str = "0.0.0.0"
    health_port: int = 8081
    health_enabled: bool = True

    log_level: str = "INFO"

    def __post_init__(self):
        """Normalize paths and make sure the data directory exists."""
        self.blocklist_dir = Path(self.blocklist_dir)
        self.data_dir = Path(self.data_dir)
        self.settings_file = Path(self.settings_file)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def sync_state_file(self) -> Path:
        return self.data_dir / "sync_state.json"


def load_config() -> Config:
    """Load configuration from environment variables."""
    load_dotenv()

    return Config(
        blocklist_dir=Path(os.getenv("BLOCKLIST_DIR", "./blocklists")),
        data_dir=Path(os.getenv("DATA_DIR", "./data")),
        settings_file=Path(os.getenv("SETTINGS_FILE", "./config/settings.yaml")),
        sync_retries=int(os.getenv("SYNC_RETRIES", str(DEFAULT_SYNC_RETRIES))),
        sync_retry_delay=float(os.getenv("SYNC_RETRY_DELAY", str(DEFAULT_SYNC_RETRY_DELAY))),
        fetch_timeout=int(os.getenv("FETCH_TIMEOUT", str(DEFAULT_FETCH_TIMEOUT))),
        watch_enabled=_env_bool("WATCH_ENABLED", "true"),
        watch_debounce_seconds=float(
            os.getenv("WATCH_DEBOUNCE_SECONDS", str(DEFAULT_DEBOUNCE_SECONDS))
        ),
        auto_enable_new_sources=_env_bool("AUTO_ENABLE_NEW_SOURCES", "true"),
        health_host=os.getenv("HEALTH_HOST", "0.0.0.0"),
        health_port=int(os.getenv("HEALTH_PORT", "8081")),
        health_enabled=_env_bool("HEALTH_ENABLED", "true"),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of error messages."""
    errors: list[str] = []
    if config.sync_retries < 1:
        errors.append("SYNC_RETRIES must be at least 1")
    if config.sync_retry_delay < 0:
        errors.append("SYNC_RETRY_DELAY must not be negative")
    if config.fetch_timeout < 1:
        errors.append("FETCH_TIMEOUT must be at least 1 second")
    if config.watch_debounce_seconds < 0:
        errors.append("WATCH_DEBOUNCE_SECONDS must not be negative")
    if config.blocklist_dir.exists() and not config.blocklist_dir.is_dir():
        errors.append(f"BLOCKLIST_DIR {config.blocklist_dir} is not a directory")
    if logging.getLevelName(config.log_level) == f"Level {config.log_level}":
        errors.append(f"LOG_LEVEL {config.log_level!r} is not a logging level")

    if not config.health_enabled:
        logger.info("Health server disabled (HEALTH_ENABLED=false)")

    return errors
