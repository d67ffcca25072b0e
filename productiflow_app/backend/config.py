# backend/config.py
"""
Runtime configuration for the ProductiFlow backend.

Values come from the environment (optionally seeded from a .env file).
Defaults target a local SQLite database under ./data.
"""
import os
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATABASE_URL = 'sqlite:///data/productiflow.db'
DEFAULT_SYNC_INTERVAL_SECONDS = 30.0
DEFAULT_LOG_DIR = os.path.join('data', 'logs')

DERIVED_EVENT_POLICIES = ('additive', 'reconcile')


@dataclass(frozen=True)
class Config:
    database_url: str = DEFAULT_DATABASE_URL
    sync_interval_seconds: float = DEFAULT_SYNC_INTERVAL_SECONDS
    derived_event_policy: str = 'additive'
    log_dir: str = DEFAULT_LOG_DIR
    environment: str = 'development'

    def __post_init__(self):
        if self.derived_event_policy not in DERIVED_EVENT_POLICIES:
            raise ValueError(
                f"Unknown DERIVED_EVENT_POLICY '{self.derived_event_policy}' "
                f"(expected one of {', '.join(DERIVED_EVENT_POLICIES)})"
            )
        if self.sync_interval_seconds <= 0:
            raise ValueError("SYNC_INTERVAL_SECONDS must be positive")

    @classmethod
    def from_env(cls, **overrides) -> 'Config':
        """Build a Config from environment variables, then apply overrides."""
        interval = os.getenv('SYNC_INTERVAL_SECONDS', '')
        try:
            interval_value = float(interval) if interval else DEFAULT_SYNC_INTERVAL_SECONDS
        except ValueError:
            raise ValueError(f"SYNC_INTERVAL_SECONDS must be a number, got '{interval}'")

        config = cls(
            database_url=os.getenv('DATABASE_URL', DEFAULT_DATABASE_URL),
            sync_interval_seconds=interval_value,
            derived_event_policy=os.getenv('DERIVED_EVENT_POLICY', 'additive').strip().lower(),
            log_dir=os.getenv('PRODUCTIFLOW_LOG_DIR', DEFAULT_LOG_DIR),
            environment=os.getenv('ENVIRONMENT', 'development'),
        )
        return replace(config, **overrides) if overrides else config

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith('sqlite')


_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the process-wide configuration."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config
