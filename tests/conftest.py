from datetime import timedelta

import pytest

from polyfolio.config import settings
from polyfolio.database import get_db, reset_db


@pytest.fixture(autouse=True, scope="session")
def use_test_db(tmp_path_factory):
    # Route all database operations in tests to a temporary DuckDB file
    temp_dir = tmp_path_factory.mktemp("test_db")
    settings.DB_PATH = temp_dir / "test_portfolio.duckdb"
    reset_db()

    yield

    reset_db()


@pytest.fixture()
def clean_db():
    """Empty every table before the test."""
    db = get_db()
    db.execute("DELETE FROM positions")
    db.execute("DELETE FROM portfolio_snapshots")
    db.execute("DELETE FROM copy_trading_events")
    db.execute("DELETE FROM app_settings")
    db.execute("DELETE FROM scheduler_runs")
    return db


class InMemoryStore:
    """Dict-backed stand-in for PortfolioStore."""

    def __init__(self) -> None:
        self.snapshots: dict[int, tuple] = {}
        self.events: list = []
        self.fail_save = False
        self.fail_events_for: set[str] = set()
        self.calls: dict[str, int] = {}

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    async def find_snapshot_near(self, timestamp, tolerance_minutes=5):
        self._count("find_snapshot_near")
        window = timedelta(minutes=tolerance_minutes)
        return any(
            abs(snap.timestamp - timestamp) <= window
            for snap, _ in self.snapshots.values()
        )

    async def save_snapshot_with_positions(self, snapshot, positions):
        self._count("save_snapshot_with_positions")
        if self.fail_save:
            raise RuntimeError("database is locked")
        snapshot_id = len(self.snapshots) + 1
        self.snapshots[snapshot_id] = (
            snapshot.model_copy(update={"id": snapshot_id}),
            list(positions),
        )
        return snapshot_id

    async def get_most_recent_snapshot(self):
        self._count("get_most_recent_snapshot")
        if not self.snapshots:
            return None
        return max(
            (snap for snap, _ in self.snapshots.values()),
            key=lambda s: s.timestamp,
        )

    async def get_distinct_copied_from_values(self, snapshot_id):
        self._count("get_distinct_copied_from_values")
        _, positions = self.snapshots[snapshot_id]
        return sorted({p.copied_from for p in positions if p.copied_from})

    async def append_copy_trading_event(self, event):
        self._count("append_copy_trading_event")
        if event.trader_name in self.fail_events_for:
            raise RuntimeError(f"constraint violation for {event.trader_name}")
        self.events.append(event)
        return len(self.events)


@pytest.fixture()
def memory_store():
    return InMemoryStore()
