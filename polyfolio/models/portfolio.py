"""Portfolio models — PortfolioSnapshot, Position, CopyTradingEvent.

Field names are snake_case, matching the DuckDB columns.  The camelCase
shape used by API consumers is the same model dumped with
``model_dump(by_alias=True)``; either spelling is accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Side = Literal["Yes", "No"]
EventType = Literal["copier_added", "copier_removed", "settings_changed"]
TimeRange = Literal["24h", "48h", "3d", "7d", "all"]


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PortfolioSnapshot(_Record):
    """One point-in-time observation of aggregate account state."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True,
    )

    id: int | None = None  # assigned by storage
    timestamp: datetime
    total_balance: float = 0.0
    available_balance: float = 0.0
    invested: float = 0.0
    value: float = 0.0
    total_pnl_usd: float = 0.0
    total_pnl_pct: float = 0.0
    # Count claimed by the "Positions(N)" header; may exceed parsed positions
    total_positions_reported: int | None = None


class Position(_Record):
    """One open market position belonging to a snapshot."""

    market_question: str
    side: Side = "Yes"
    entry_price: float = 0.0
    invested: float = 0.0
    shares: float = 0.0
    value: float = 0.0
    pnl_usd: float = 0.0
    pnl_pct: float = 0.0
    expiry_timestamp: str | None = None
    copied_from: str | None = None

    @property
    def is_copy_trade(self) -> bool:
        return bool(self.copied_from and self.copied_from.strip())


class CopyTradingEvent(_Record):
    """A change in the set of copied traders between two snapshots."""

    id: int | None = None
    timestamp: datetime
    event_type: EventType
    description: str
    trader_name: str | None = None


class ParsedPortfolio(_Record):
    """Parser output: one snapshot and its positions, in message order."""

    snapshot: PortfolioSnapshot
    positions: list[Position] = Field(default_factory=list)

    def copy_traders(self) -> set[str]:
        """Distinct non-empty copied_from values."""
        return {
            p.copied_from.strip() for p in self.positions if p.is_copy_trade
        }


class ReconcileResult(_Record):
    """Outcome of one reconciliation pass."""

    snapshot_id: int
    emitted_events: list[CopyTradingEvent] = Field(default_factory=list)
    # Traders whose event could not be written
    failed_events: list[str] = Field(default_factory=list)


class BackfillResult(_Record):
    """Counters for a historical backfill run."""

    total_messages: int = 0
    saved: int = 0
    skipped: int = 0
    failed: int = 0


class HistoricalMessage(_Record):
    """A past bot reply, as handed over by the transport layer."""

    message_text: str
    timestamp: datetime
    message_id: int


class BalanceHistoryItem(_Record):
    """One point of the balance chart."""

    timestamp: datetime
    total_balance: float
    invested: float


class InvestedByTrader(_Record):
    """Amount allocated to one copied trader at one snapshot."""

    timestamp: datetime
    trader: str
    invested: float
