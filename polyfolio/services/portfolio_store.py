"""Portfolio Store — DuckDB persistence for snapshots, positions and events.

Write side is what the reconciliation engine needs; the read side serves
history charts and the latest-portfolio view.  Database errors propagate
unchanged to the caller.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from polyfolio.database import get_db
from polyfolio.models.portfolio import (
    BalanceHistoryItem,
    CopyTradingEvent,
    InvestedByTrader,
    ParsedPortfolio,
    PortfolioSnapshot,
    Position,
)
from polyfolio.utils.logger import logger
from polyfolio.utils.time_ranges import (
    DEFAULT_RANGE,
    from_db_time,
    range_start,
    to_db_time,
)

_SNAPSHOT_COLUMNS = (
    "id, timestamp, total_balance, available_balance, invested, value, "
    "total_pnl_usd, total_pnl_pct, total_positions"
)
_POSITION_COLUMNS = (
    "market_question, side, entry_price, invested, shares, value, "
    "pnl_usd, pnl_pct, expiry_timestamp, copied_from"
)


def _snapshot_from_row(row: tuple) -> PortfolioSnapshot:
    return PortfolioSnapshot(
        id=row[0],
        timestamp=from_db_time(row[1]),
        total_balance=row[2],
        available_balance=row[3],
        invested=row[4],
        value=row[5],
        total_pnl_usd=row[6],
        total_pnl_pct=row[7],
        total_positions_reported=row[8],
    )


def _position_from_row(row: tuple) -> Position:
    return Position(
        market_question=row[0],
        side=row[1],
        entry_price=row[2],
        invested=row[3],
        shares=row[4],
        value=row[5],
        pnl_usd=row[6],
        pnl_pct=row[7],
        expiry_timestamp=row[8],
        copied_from=row[9],
    )


class PortfolioStore:
    """Read/write access to the portfolio tables."""

    # ------------------------------------------------------------------
    # Reconciliation contract
    # ------------------------------------------------------------------

    async def find_snapshot_near(
        self, timestamp: datetime, tolerance_minutes: float = 5,
    ) -> bool:
        """True if any stored snapshot lies within ±tolerance of *timestamp*."""
        center = to_db_time(timestamp)
        window = timedelta(minutes=tolerance_minutes)
        row = get_db().execute(
            "SELECT id FROM portfolio_snapshots "
            "WHERE timestamp BETWEEN ? AND ? LIMIT 1",
            [center - window, center + window],
        ).fetchone()
        return row is not None

    async def save_snapshot_with_positions(
        self, snapshot: PortfolioSnapshot, positions: list[Position],
    ) -> int:
        """Insert a snapshot and all of its positions atomically.

        Returns the new snapshot id.
        """
        db = get_db()
        db.begin()
        try:
            snapshot_id = db.execute(
                """
                INSERT INTO portfolio_snapshots
                    (timestamp, total_balance, available_balance, invested,
                     value, total_pnl_usd, total_pnl_pct, total_positions)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                [
                    to_db_time(snapshot.timestamp),
                    snapshot.total_balance,
                    snapshot.available_balance,
                    snapshot.invested,
                    snapshot.value,
                    snapshot.total_pnl_usd,
                    snapshot.total_pnl_pct,
                    snapshot.total_positions_reported,
                ],
            ).fetchone()[0]

            for pos in positions:
                db.execute(
                    f"""
                    INSERT INTO positions (snapshot_id, {_POSITION_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        snapshot_id,
                        pos.market_question,
                        pos.side,
                        pos.entry_price,
                        pos.invested,
                        pos.shares,
                        pos.value,
                        pos.pnl_usd,
                        pos.pnl_pct,
                        pos.expiry_timestamp,
                        pos.copied_from,
                    ],
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            "[Store] Saved snapshot %d: balance=$%.2f, %d positions",
            snapshot_id, snapshot.total_balance, len(positions),
        )
        return snapshot_id

    async def get_most_recent_snapshot(self) -> PortfolioSnapshot | None:
        """Latest snapshot by observation time."""
        row = get_db().execute(
            f"SELECT {_SNAPSHOT_COLUMNS} FROM portfolio_snapshots "
            "ORDER BY timestamp DESC, id DESC LIMIT 1"
        ).fetchone()
        return _snapshot_from_row(row) if row else None

    async def get_distinct_copied_from_values(self, snapshot_id: int) -> list[str]:
        """Distinct non-empty copied_from values of one snapshot, sorted."""
        rows = get_db().execute(
            "SELECT DISTINCT copied_from FROM positions "
            "WHERE snapshot_id = ? AND copied_from IS NOT NULL "
            "AND copied_from != '' "
            "ORDER BY copied_from",
            [snapshot_id],
        ).fetchall()
        return [r[0] for r in rows]

    async def append_copy_trading_event(self, event: CopyTradingEvent) -> int:
        """Append one event to the log and return its id."""
        db = get_db()
        event_id = db.execute(
            """
            INSERT INTO copy_trading_events
                (timestamp, event_type, description, trader_name)
            VALUES (?, ?, ?, ?)
            RETURNING id
            """,
            [
                to_db_time(event.timestamp),
                event.event_type,
                event.description,
                event.trader_name,
            ],
        ).fetchone()[0]
        return event_id

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def get_positions(self, snapshot_id: int) -> list[Position]:
        rows = get_db().execute(
            f"SELECT {_POSITION_COLUMNS} FROM positions "
            "WHERE snapshot_id = ? ORDER BY market_question ASC, id ASC",
            [snapshot_id],
        ).fetchall()
        return [_position_from_row(r) for r in rows]

    async def get_latest_portfolio(self) -> ParsedPortfolio | None:
        """Latest snapshot together with its positions."""
        snapshot = await self.get_most_recent_snapshot()
        if snapshot is None:
            return None
        positions = await self.get_positions(snapshot.id)
        return ParsedPortfolio(snapshot=snapshot, positions=positions)

    async def get_history(self, limit: int = 50) -> list[PortfolioSnapshot]:
        """Most recent snapshots, newest first."""
        rows = get_db().execute(
            f"SELECT {_SNAPSHOT_COLUMNS} FROM portfolio_snapshots "
            "ORDER BY timestamp DESC, id DESC LIMIT ?",
            [limit],
        ).fetchall()
        return [_snapshot_from_row(r) for r in rows]

    async def get_balance_history(
        self, time_range: str = DEFAULT_RANGE, now: datetime | None = None,
    ) -> list[BalanceHistoryItem]:
        """Balance and invested over time, oldest first."""
        start = range_start(time_range, now)
        sql = "SELECT timestamp, total_balance, invested FROM portfolio_snapshots"
        params: list = []
        if start is not None:
            sql += " WHERE timestamp >= ?"
            params.append(to_db_time(start))
        sql += " ORDER BY timestamp ASC, id ASC"

        rows = get_db().execute(sql, params).fetchall()
        return [
            BalanceHistoryItem(
                timestamp=from_db_time(r[0]), total_balance=r[1], invested=r[2],
            )
            for r in rows
        ]

    async def get_invested_by_trader(
        self, time_range: str = DEFAULT_RANGE, now: datetime | None = None,
    ) -> list[InvestedByTrader]:
        """Capital allocated per copied trader at each snapshot.

        Positions whose invested amount is missing (0) count at their
        current value instead.
        """
        start = range_start(time_range, now)
        params: list = []
        time_filter = ""
        if start is not None:
            time_filter = "AND s.timestamp >= ?"
            params.append(to_db_time(start))

        rows = get_db().execute(
            f"""
            SELECT
                s.timestamp,
                p.copied_from AS trader,
                SUM(COALESCE(NULLIF(p.invested, 0), p.value)) AS invested
            FROM portfolio_snapshots s
            INNER JOIN positions p ON p.snapshot_id = s.id
            WHERE p.copied_from IS NOT NULL AND p.copied_from != ''
                {time_filter}
            GROUP BY s.timestamp, p.copied_from
            HAVING SUM(COALESCE(NULLIF(p.invested, 0), p.value)) > 0
            ORDER BY s.timestamp ASC, trader ASC
            """,
            params,
        ).fetchall()
        return [
            InvestedByTrader(
                timestamp=from_db_time(r[0]), trader=r[1], invested=r[2],
            )
            for r in rows
        ]

    async def get_copy_trading_events(self, limit: int = 100) -> list[CopyTradingEvent]:
        """Copy-trading events, oldest first."""
        rows = get_db().execute(
            "SELECT id, timestamp, event_type, description, trader_name "
            "FROM copy_trading_events ORDER BY timestamp ASC, id ASC LIMIT ?",
            [limit],
        ).fetchall()
        return [
            CopyTradingEvent(
                id=r[0],
                timestamp=from_db_time(r[1]),
                event_type=r[2],
                description=r[3],
                trader_name=r[4],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Key/value settings
    # ------------------------------------------------------------------

    async def get_setting(self, key: str) -> str | None:
        row = get_db().execute(
            "SELECT value FROM app_settings WHERE key = ?", [key],
        ).fetchone()
        return row[0] if row else None

    async def save_setting(self, key: str, value: str) -> bool:
        """Upsert a setting.  Returns False (and logs) on failure."""
        try:
            get_db().execute(
                """
                INSERT INTO app_settings (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT (key) DO UPDATE
                SET value = excluded.value, updated_at = excluded.updated_at
                """,
                [key, value, to_db_time(datetime.now(timezone.utc))],
            )
        except Exception as exc:
            logger.error("[Store] Error saving setting %s: %s", key, exc)
            return False
        return True
