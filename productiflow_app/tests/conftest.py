"""
Shared fixtures. Every test gets its own SQLite file under tmp_path and a
controllable clock; nothing touches ./data.
"""
import os
import sys
from datetime import datetime, timedelta

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.app_store import create_app_store
from backend.config import Config
from backend.database import Store
from backend.derivation import DerivationEngine
from backend.repository import EntityRepository


class FakeClock:
    """Callable stand-in for datetime.now."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, value: datetime):
        self.current = value
        return self.current


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 6, 9, 0, 0))


@pytest.fixture
def config(tmp_path):
    return Config(
        database_url=f"sqlite:///{tmp_path / 'productiflow_test.db'}",
        log_dir=str(tmp_path / 'logs'),
        sync_interval_seconds=0.05,
    )


@pytest.fixture
def store(config):
    store = Store(config.database_url)
    store.init_db()
    yield store
    store.dispose()


@pytest.fixture
def repository(store, clock):
    repo = EntityRepository(store, clock=clock)
    repo.ensure_defaults()
    return repo


@pytest.fixture
def engine(repository):
    return DerivationEngine(repository)


@pytest.fixture
def app(config, clock):
    app = create_app_store(config, clock=clock, configure_logging=False)
    yield app
    app.close()
