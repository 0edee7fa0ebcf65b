# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import datetime, timedelta, timezone
from typing import List, Tuple
from unittest.mock import MagicMock

from fitgym_core.utils.clock import Clock


# =============================================================================
# TIME FIXTURES
# =============================================================================

class FixedClock(Clock):
    """Clock pinned to a settable instant."""

    def __init__(self, moment: datetime, tz=None):
        super().__init__(tz or moment.tzinfo or timezone.utc)
        self.moment = moment

    def now(self) -> datetime:
        return self.moment.astimezone(self.tz)

    def advance(self, **kwargs) -> datetime:
        self.moment = self.moment + timedelta(**kwargs)
        return self.moment

    def set(self, moment: datetime) -> None:
        self.moment = moment


@pytest.fixture
def clock():
    """Clock at 2024-03-15 18:00 UTC"""
    return FixedClock(datetime(2024, 3, 15, 18, 0, tzinfo=timezone.utc))


@pytest.fixture
def clock_factory():
    """Build clocks for other zones / instants"""
    def _make(moment: datetime, tz=None) -> FixedClock:
        return FixedClock(moment, tz)
    return _make


# =============================================================================
# STORE FIXTURES
# =============================================================================

@pytest.fixture
def config(tmp_path):
    """Local-only configuration in a temp directory"""
    from fitgym_core.config import AppConfig

    return AppConfig(
        db_path=tmp_path / "fitgym.db",
        batch_size=10,
        backoff_base=2.0,
        backoff_cap=300.0,
    )


@pytest.fixture
def store(tmp_path, clock):
    """Temporary SQLite store (file-backed: connections are per thread)"""
    from fitgym_core.offline.local_store import LocalStore

    local_store = LocalStore(tmp_path / "fitgym.db", clock=clock)
    yield local_store
    local_store.close()


@pytest.fixture
def queue(store):
    return store.sync_queue


@pytest.fixture
def remote():
    """Dict-backed remote store"""
    from fitgym_core.offline.remote_store import InMemoryRemoteStore

    return InMemoryRemoteStore()


@pytest.fixture
def fake_monotonic():
    """Controllable monotonic clock for backoff tests"""
    class _Monotonic:
        def __init__(self):
            self.value = 1000.0

        def __call__(self) -> float:
            return self.value

        def advance(self, seconds: float) -> None:
            self.value += seconds

    return _Monotonic()


@pytest.fixture
def drainer(store, remote, config, fake_monotonic):
    """Drainer with no connection manager (always online)"""
    from fitgym_core.offline.sync_drainer import SyncDrainer

    return SyncDrainer(store, remote, config=config, monotonic=fake_monotonic)


# =============================================================================
# ENGINE / SERVICE FIXTURES
# =============================================================================

@pytest.fixture
def record_engine(store, clock):
    from fitgym_core.engines import RecordEngine

    return RecordEngine(store, clock=clock)


@pytest.fixture
def streak_engine(store, clock):
    from fitgym_core.engines import StreakEngine

    return StreakEngine(store, clock=clock)


@pytest.fixture
def workout_service(store, record_engine, streak_engine, clock):
    from fitgym_core.services import WorkoutService

    return WorkoutService(store, record_engine, streak_engine, clock=clock)


@pytest.fixture
def attendance_service(store, streak_engine, clock):
    from fitgym_core.services import AttendanceService

    return AttendanceService(store, streak_engine, clock=clock)


@pytest.fixture
def nutrition_service(store, streak_engine):
    from fitgym_core.services import NutritionService

    return NutritionService(store, streak_engine)


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def ordering_remote():
    """
    Remote mock that records call order and rejects an UPDATE or DELETE
    arriving before the row's INSERT.
    """
    from fitgym_core.errors import SyncRejectedError
    from fitgym_core.offline.remote_store import RemoteStore

    calls: List[Tuple[str, str, str]] = []
    seen = set()

    def _create(table, record_id, data):
        calls.append(("INSERT", table, record_id))
        seen.add((table, record_id))

    def _requires_insert(op):
        def _call(table, record_id, data=None):
            if (table, record_id) not in seen:
                raise SyncRejectedError(f"{op} before INSERT", table=table, record_id=record_id)
            calls.append((op, table, record_id))
        return _call

    mock = MagicMock(spec=RemoteStore)
    mock.create.side_effect = _create
    mock.update.side_effect = _requires_insert("UPDATE")
    mock.delete.side_effect = _requires_insert("DELETE")
    mock.fetch.return_value = []
    # apply() dispatches to the mocked primitives
    mock.apply.side_effect = lambda entry: RemoteStore.apply(mock, entry)
    mock.calls = calls
    return mock


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.upsert.return_value.execute.return_value = MagicMock()
    mock_client.table.return_value.update.return_value.eq.return_value.execute.return_value = MagicMock()
    mock_client.table.return_value.delete.return_value.eq.return_value.execute.return_value = MagicMock()
    return mock_client

