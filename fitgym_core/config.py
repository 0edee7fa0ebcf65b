# =============================================================================
# fitgym_core/config.py
# Application Configuration
# =============================================================================
"""
Configuration for the offline-first data core.

Values come from the environment (optionally a .env file). Defaults suit a
single device running fully offline.
"""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from fitgym_core.errors import ConfigurationError


DEFAULT_DB_PATH = Path("local_data") / "fitgym.db"


@dataclass
class AppConfig:
    """Configuration for store, sync and derived metrics."""

    # ==================== LOCAL STORE ====================
    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)

    # ==================== REMOTE STORE ====================
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # ==================== CALENDAR ====================
    timezone: str = "UTC"

    # ==================== SYNC DRAINER ====================
    sync_interval: float = 30.0     # Seconds between periodic drains
    batch_size: int = 50            # Queue entries per table per batch
    backoff_base: float = 2.0       # First retry delay (seconds)
    backoff_cap: float = 300.0      # Max retry delay (seconds)

    # ==================== CONNECTIVITY ====================
    check_interval_online: float = 30.0
    check_interval_offline: float = 10.0
    connection_timeout: float = 5.0

    # ==================== RECORDS ====================
    award_first_entry: bool = False  # First-ever value counts as a PR

    # ==================== LOGGING ====================
    log_level: int = logging.INFO

    def __post_init__(self):
        self.db_path = Path(self.db_path)
        if self.batch_size <= 0:
            raise ConfigurationError(
                "batch_size must be positive",
                config_key="batch_size",
                expected_type="int > 0",
            )
        if self.backoff_base <= 0 or self.backoff_cap < self.backoff_base:
            raise ConfigurationError(
                "backoff_cap must be >= backoff_base > 0",
                config_key="backoff_base",
            )
        if self.sync_interval <= 0:
            raise ConfigurationError(
                "sync_interval must be positive",
                config_key="sync_interval",
                expected_type="float > 0",
            )
        # Fail fast on an unknown zone
        self.tzinfo()

    @property
    def has_remote(self) -> bool:
        """Whether cloud credentials are configured."""
        return bool(self.supabase_url and self.supabase_key)

    def tzinfo(self) -> ZoneInfo:
        """Resolve the configured IANA timezone."""
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(
                f"Unknown timezone: {self.timezone}",
                config_key="timezone",
                expected_type="IANA zone name",
            ) from e

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> AppConfig:
        """
        Build configuration from environment variables.

        Recognised variables:
            FITGYM_DB_PATH, FITGYM_TIMEZONE, FITGYM_SYNC_INTERVAL,
            FITGYM_BATCH_SIZE, FITGYM_BACKOFF_BASE, FITGYM_BACKOFF_CAP,
            FITGYM_AWARD_FIRST_ENTRY, FITGYM_LOG_LEVEL,
            SUPABASE_URL, SUPABASE_KEY
        """
        load_dotenv(env_file)

        kwargs = {
            "supabase_url": os.getenv("SUPABASE_URL") or None,
            "supabase_key": os.getenv("SUPABASE_KEY") or None,
            "timezone": os.getenv("FITGYM_TIMEZONE", "UTC"),
        }

        db_path = os.getenv("FITGYM_DB_PATH")
        if db_path:
            kwargs["db_path"] = Path(db_path)

        for key, env_name, cast in [
            ("sync_interval", "FITGYM_SYNC_INTERVAL", float),
            ("batch_size", "FITGYM_BATCH_SIZE", int),
            ("backoff_base", "FITGYM_BACKOFF_BASE", float),
            ("backoff_cap", "FITGYM_BACKOFF_CAP", float),
        ]:
            raw = os.getenv(env_name)
            if raw is None:
                continue
            try:
                kwargs[key] = cast(raw)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for {env_name}: {raw!r}",
                    config_key=env_name,
                    expected_type=cast.__name__,
                ) from e

        award = os.getenv("FITGYM_AWARD_FIRST_ENTRY")
        if award is not None:
            kwargs["award_first_entry"] = award.strip().lower() in ("1", "true", "yes", "on")

        level = os.getenv("FITGYM_LOG_LEVEL")
        if level:
            resolved = logging.getLevelName(level.upper())
            if not isinstance(resolved, int):
                raise ConfigurationError(
                    f"Unknown log level: {level}",
                    config_key="FITGYM_LOG_LEVEL",
                )
            kwargs["log_level"] = resolved

        return cls(**kwargs)
