"""Reconciliation Engine — dedupes snapshots and tracks copied traders.

Parsed snapshots are persisted through a store; after each save the set of
traders being copied is compared with the previous snapshot's set and a
``copier_added`` / ``copier_removed`` event is appended for every change.

The trader set lives on the engine instance, so a process must run at most
one reconciliation pass at a time (RefreshService holds a lock for this).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from polyfolio.config import settings
from polyfolio.models.portfolio import (
    CopyTradingEvent,
    PortfolioSnapshot,
    Position,
    ReconcileResult,
)
from polyfolio.utils.logger import logger


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    REFRESHING = "refreshing"


def diff_traders(
    previous: set[str] | frozenset[str], current: set[str] | frozenset[str],
) -> tuple[list[str], list[str]]:
    """Return (added, removed) trader names, each sorted."""
    added = sorted(current - previous)
    removed = sorted(previous - current)
    return added, removed


class ReconciliationEngine:
    """Persists snapshots and emits copy-trading change events."""

    def __init__(
        self,
        store: object,
        tolerance_minutes: float | None = None,
    ) -> None:
        """store must implement the PortfolioStore read/write contract."""
        self._store = store
        self.tolerance_minutes = (
            settings.DUPLICATE_TOLERANCE_MINUTES
            if tolerance_minutes is None
            else tolerance_minutes
        )
        self._last_known_traders: set[str] = set()
        # False until a snapshot exists to diff against
        self._has_baseline = False
        self._state = EngineState.UNINITIALIZED

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def last_known_traders(self) -> frozenset[str]:
        return frozenset(self._last_known_traders)

    async def initialize(self, from_snapshot: int | None = None) -> None:
        """Seed the known-trader set from storage.

        Uses the snapshot id *from_snapshot* when given, otherwise the most
        recent stored snapshot.  No-op once the engine is initialized.
        """
        if self._state is not EngineState.UNINITIALIZED:
            return

        snapshot_id = from_snapshot
        if snapshot_id is None:
            latest = await self._store.get_most_recent_snapshot()
            snapshot_id = latest.id if latest else None

        traders: set[str] = set()
        if snapshot_id is not None:
            traders = set(
                await self._store.get_distinct_copied_from_values(snapshot_id)
            )

        self._last_known_traders = traders
        self._has_baseline = snapshot_id is not None
        self._state = EngineState.READY
        logger.info(
            "[Reconciler] Initialized known traders: %s",
            sorted(traders) or "none",
        )

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def is_duplicate(self, snapshot: PortfolioSnapshot) -> bool:
        """True if a stored snapshot lies within the tolerance window."""
        return await self._store.find_snapshot_near(
            snapshot.timestamp, self.tolerance_minutes,
        )

    async def reconcile(
        self, snapshot: PortfolioSnapshot, positions: list[Position],
    ) -> ReconcileResult:
        """Persist *snapshot* and emit events for copied-trader changes.

        Storage errors propagate; the known-trader set is then left as it
        was so the pass can be retried.
        """
        await self.initialize()

        self._state = EngineState.REFRESHING
        try:
            snapshot_id = await self._store.save_snapshot_with_positions(
                snapshot, positions,
            )
            current = set(
                await self._store.get_distinct_copied_from_values(snapshot_id)
            )
            emitted, failed = await self._emit_changes(current, snapshot.timestamp)
            self._last_known_traders = current
            self._has_baseline = True
        finally:
            self._state = EngineState.READY

        return ReconcileResult(
            snapshot_id=snapshot_id,
            emitted_events=emitted,
            failed_events=failed,
        )

    async def ingest_historical(
        self, snapshot: PortfolioSnapshot, positions: list[Position],
    ) -> ReconcileResult | None:
        """Reconcile a backfilled snapshot unless it duplicates a stored one.

        Returns None when the snapshot was skipped.
        """
        if await self.is_duplicate(snapshot):
            logger.debug(
                "[Reconciler] Skipping duplicate snapshot at %s",
                snapshot.timestamp.isoformat(),
            )
            return None
        return await self.reconcile(snapshot, positions)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _emit_changes(
        self, current: set[str], timestamp: datetime,
    ) -> tuple[list[CopyTradingEvent], list[str]]:
        # First observation is the baseline, not a flood of "added" events
        if not self._has_baseline:
            return [], []

        added, removed = diff_traders(self._last_known_traders, current)
        changes = [
            ("copier_added", trader, f"Started copying {trader}")
            for trader in added
        ] + [
            ("copier_removed", trader, f"Stopped copying {trader}")
            for trader in removed
        ]

        emitted: list[CopyTradingEvent] = []
        failed: list[str] = []
        for event_type, trader, description in changes:
            event = CopyTradingEvent(
                timestamp=timestamp,
                event_type=event_type,
                description=description,
                trader_name=trader,
            )
            try:
                event_id = await self._store.append_copy_trading_event(event)
            except Exception as exc:
                logger.error(
                    "[Reconciler] Failed to record %s for %s: %s",
                    event_type, trader, exc,
                )
                failed.append(trader)
                continue
            emitted.append(event.model_copy(update={"id": event_id}))
            logger.info("[Reconciler] %s", description)

        return emitted, failed
