# =============================================================================
# shoppe_core/config/settings.py
# Runtime Settings for the cache/sync layer
# =============================================================================
"""
SyncSettings - configuration for the local cache and the sync engine.

Sources, lowest to highest priority:
1. Dataclass defaults
2. `.streamlit/secrets.toml` ([supabase] url / key)
3. `.env` file (loaded into the environment with python-dotenv)
4. Process environment variables

Environment variables:
    SUPABASE_URL                 Remote database URL
    SUPABASE_KEY                 Remote database API key
    SHOPPE_DB_PATH               Local SQLite cache file
    SHOPPE_FRESHNESS_MINUTES     Staleness window (default: 5)
    SHOPPE_CONNECTIVITY_TIMEOUT  Probe timeout in seconds (default: 3)
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import toml
from dotenv import load_dotenv

from shoppe_core.errors import ConfigurationError
from shoppe_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_DB_PATH = Path("local_data") / "shoppe_cache.db"
DEFAULT_SECRETS_PATH = Path(".streamlit") / "secrets.toml"

# Observed default of the mobile app: customers_<service> stale after 5 minutes
DEFAULT_FRESHNESS_WINDOW = timedelta(minutes=5)
MAX_CONNECTIVITY_TIMEOUT = 3.0


@dataclass
class SyncSettings:
    """Settings shared by the cache store, probe and sync engine."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    db_path: Path = DEFAULT_DB_PATH
    freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW
    connectivity_timeout: float = MAX_CONNECTIVITY_TIMEOUT
    connectivity_hosts: Tuple[Tuple[str, int], ...] = (
        ("8.8.8.8", 53),        # Google DNS
        ("1.1.1.1", 53),        # Cloudflare DNS
        ("208.67.222.222", 53), # OpenDNS
    )
    check_interval_online: float = 30.0
    check_interval_offline: float = 10.0
    fetch_batch_size: int = 1000
    notify_ui: bool = False

    def __post_init__(self):
        self.db_path = Path(self.db_path)
        self.validate()

    @property
    def freshness_window_ms(self) -> int:
        return int(self.freshness_window.total_seconds() * 1000)

    @property
    def has_remote(self) -> bool:
        """True when remote database credentials are configured."""
        return bool(self.supabase_url and self.supabase_key)

    def validate(self) -> None:
        """Raise ConfigurationError for values the sync layer cannot run with."""
        if self.freshness_window <= timedelta(0):
            raise ConfigurationError(
                "Freshness window must be positive",
                config_key="freshness_window",
                expected_type="timedelta > 0",
            )
        if not 0 < self.connectivity_timeout <= MAX_CONNECTIVITY_TIMEOUT:
            raise ConfigurationError(
                f"Connectivity timeout must be in (0, {MAX_CONNECTIVITY_TIMEOUT}] seconds",
                config_key="connectivity_timeout",
                expected_type="float",
            )
        if self.fetch_batch_size <= 0:
            raise ConfigurationError(
                "Fetch batch size must be positive",
                config_key="fetch_batch_size",
                expected_type="int > 0",
            )

    @classmethod
    def load(
        cls,
        secrets_path: Optional[Path] = None,
        env_file: Optional[Path] = None,
        **overrides: Any,
    ) -> SyncSettings:
        """
        Build settings from secrets.toml, .env and the environment.

        Args:
            secrets_path: Streamlit secrets file (default: .streamlit/secrets.toml)
            env_file: Optional .env file (default: search from the working directory)
            **overrides: Explicit values that win over every other source

        Returns:
            Validated SyncSettings
        """
        load_dotenv(dotenv_path=env_file)

        values: Dict[str, Any] = {}

        secrets = _read_secrets(secrets_path or DEFAULT_SECRETS_PATH)
        supabase_secrets = secrets.get("supabase", {})
        if supabase_secrets.get("url"):
            values["supabase_url"] = supabase_secrets["url"]
        if supabase_secrets.get("key"):
            values["supabase_key"] = supabase_secrets["key"]

        if os.getenv("SUPABASE_URL"):
            values["supabase_url"] = os.getenv("SUPABASE_URL")
        if os.getenv("SUPABASE_KEY"):
            values["supabase_key"] = os.getenv("SUPABASE_KEY")
        if os.getenv("SHOPPE_DB_PATH"):
            values["db_path"] = Path(os.environ["SHOPPE_DB_PATH"])

        minutes = os.getenv("SHOPPE_FRESHNESS_MINUTES")
        if minutes:
            values["freshness_window"] = timedelta(
                minutes=_parse_float("SHOPPE_FRESHNESS_MINUTES", minutes)
            )

        timeout = os.getenv("SHOPPE_CONNECTIVITY_TIMEOUT")
        if timeout:
            values["connectivity_timeout"] = _parse_float("SHOPPE_CONNECTIVITY_TIMEOUT", timeout)

        values.update(overrides)
        settings = cls(**values)
        logger.debug(
            f"Settings loaded: db={settings.db_path}, "
            f"window={settings.freshness_window}, remote={settings.has_remote}"
        )
        return settings


def _read_secrets(path: Path) -> Dict[str, Any]:
    """Read a Streamlit-style secrets.toml; missing file means no secrets."""
    if not path.exists():
        return {}
    try:
        return toml.load(path)
    except toml.TomlDecodeError as e:
        raise ConfigurationError(
            f"Could not parse secrets file: {e}",
            config_key=str(path),
        ) from e


def _parse_float(key: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{key} must be a number, got '{raw}'",
            config_key=key,
            expected_type="float",
        ) from e
