"""Configuration loading for plaid-ledger.

Settings come from a TOML file (default ``~/.config/plaid-ledger/config.toml``)
and are then overridden by environment variables, so secrets never have to
live on disk.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "plaid-ledger" / "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "plaid-ledger"

PLAID_ENV_HOSTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}


@dataclass
class PlaidConfig:
    """Plaid API credentials and request settings."""

    client_id: str = ""
    secret: str = ""
    environment: str = "sandbox"
    country_codes: list[str] = field(default_factory=lambda: ["US", "CA"])
    products: list[str] = field(default_factory=lambda: ["transactions"])
    page_size: int = 500

    @property
    def host(self) -> str:
        """Base URL for the configured Plaid environment."""
        return PLAID_ENV_HOSTS.get(self.environment, PLAID_ENV_HOSTS["sandbox"])


@dataclass
class SyncConfig:
    """Retry, locking and investment window settings for sync."""

    max_retries: int = 3
    retry_backoff_seconds: float = 2.0
    max_pagination_restarts: int = 3
    lock_timeout_seconds: float = 30.0
    lock_lease_seconds: float = 900.0
    investments_start_date: str = "2024-01-01"
    investments_overlap_days: int = 7
    investments_page_size: int = 500


@dataclass
class SplitConfig:
    """Split-transaction settings."""

    # Allowed relative gap between sum(children) and the parent amount.
    tolerance_percent: float = 5.0
    ai_split_tag_name: str = "ai-split"
    ai_split_tag_color: str = "#8b5cf6"


@dataclass
class ReconnectionConfig:
    """Settings for pending bank reconnections."""

    ttl_seconds: int = 300


@dataclass
class CategorizationConfig:
    """Automatic categorization settings."""

    enabled: bool = True
    min_confidence: int = 60
    history_min_samples: int = 2
    use_ai: bool = False
    model: str = "claude-3-5-haiku-latest"
    api_key: str = ""
    max_tokens: int = 1024


@dataclass
class LoggingConfig:
    """Log levels and optional log file."""

    level: str = "INFO"
    third_party_level: str = "WARNING"
    file: Optional[str] = None


@dataclass
class Config:
    """Top-level application configuration."""

    plaid: PlaidConfig = field(default_factory=PlaidConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    splits: SplitConfig = field(default_factory=SplitConfig)
    reconnection: ReconnectionConfig = field(default_factory=ReconnectionConfig)
    categorization: CategorizationConfig = field(default_factory=CategorizationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)

    @property
    def db_path(self) -> Path:
        """Path of the SQLite ledger database."""
        return self.data_dir / "ledger.db"

    @property
    def mock_db_path(self) -> Path:
        """Path of the database used with ``--mock``."""
        return self.data_dir / "mock_ledger.db"


def _section(cls: type, data: dict[str, Any]) -> Any:
    """Build a config dataclass from a TOML table, ignoring unknown keys."""
    known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
    unknown = set(data) - set(known)
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, ", ".join(sorted(unknown)))
    return cls(**known)


def _apply_env_overrides(config: Config) -> None:
    """Override file settings with environment variables."""
    if os.environ.get("PLAID_CLIENT_ID"):
        config.plaid.client_id = os.environ["PLAID_CLIENT_ID"]
    if os.environ.get("PLAID_SECRET"):
        config.plaid.secret = os.environ["PLAID_SECRET"]
    if os.environ.get("PLAID_ENV"):
        config.plaid.environment = os.environ["PLAID_ENV"]
    if os.environ.get("ANTHROPIC_API_KEY"):
        config.categorization.api_key = os.environ["ANTHROPIC_API_KEY"]
    if os.environ.get("PLAID_LEDGER_DATA_DIR"):
        config.data_dir = Path(os.environ["PLAID_LEDGER_DATA_DIR"]).expanduser()
    if os.environ.get("PLAID_LEDGER_LOG_LEVEL"):
        config.logging.level = os.environ["PLAID_LEDGER_LOG_LEVEL"]


def load_config(path: Optional[Path] = None) -> Config:
    """Load configuration from TOML and environment.

    Args:
        path: Config file path. Defaults to ``~/.config/plaid-ledger/config.toml``.
            A missing file is not an error; defaults are used instead.

    Returns:
        Populated Config instance.

    Raises:
        ValueError: If the file is not valid TOML or names an unknown Plaid environment.
    """
    path = Path(path) if path else DEFAULT_CONFIG_PATH
    data: dict[str, Any] = {}
    if path.exists():
        try:
            with path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config file {path}: {e}") from e
        logger.debug("Loaded config from %s", path)
    else:
        logger.debug("No config file at %s, using defaults", path)

    config = Config(
        plaid=_section(PlaidConfig, data.get("plaid", {})),
        sync=_section(SyncConfig, data.get("sync", {})),
        splits=_section(SplitConfig, data.get("splits", {})),
        reconnection=_section(ReconnectionConfig, data.get("reconnection", {})),
        categorization=_section(CategorizationConfig, data.get("categorization", {})),
        logging=_section(LoggingConfig, data.get("logging", {})),
    )
    if data.get("data_dir"):
        config.data_dir = Path(data["data_dir"]).expanduser()

    _apply_env_overrides(config)

    if config.plaid.environment not in PLAID_ENV_HOSTS:
        raise ValueError(f"Invalid Plaid environment: {config.plaid.environment}")
    return config
