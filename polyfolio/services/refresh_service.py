"""Refresh Service — drives parse → reconcile passes.

Two entry points:
  - refresh():  ask the bot for the current portfolio and record it
  - backfill(): replay past bot messages, oldest first, skipping any that
    duplicate an already-stored snapshot

Both go through one lock so only one pass touches the engine at a time.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone

from polyfolio.config import settings
from polyfolio.engine.message_parser import parse_portfolio_message
from polyfolio.engine.reconciler import ReconciliationEngine
from polyfolio.models.portfolio import BackfillResult, ReconcileResult
from polyfolio.services.transport import PortfolioSource, looks_like_portfolio_report
from polyfolio.utils.logger import logger


class RefreshService:
    """Serialises refresh and backfill passes over one engine."""

    def __init__(
        self, source: PortfolioSource, engine: ReconciliationEngine,
    ) -> None:
        self._source = source
        self._engine = engine
        self._lock = asyncio.Lock()
        self.last_result: ReconcileResult | None = None
        self.last_error: str | None = None
        self.last_refreshed_at: datetime | None = None

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    async def refresh(self) -> ReconcileResult:
        """Fetch, parse and reconcile the current portfolio.

        Errors from the transport or the store propagate to the caller.
        """
        async with self._lock:
            start = time.time()
            try:
                text = await self._source.fetch_positions_text()
                logger.info("[Refresh] Received response, length: %d", len(text))

                parsed = parse_portfolio_message(text)
                result = await self._engine.reconcile(
                    parsed.snapshot, parsed.positions,
                )
            except Exception as exc:
                self.last_error = str(exc)
                raise

            self.last_result = result
            self.last_error = None
            self.last_refreshed_at = datetime.now(timezone.utc)
            logger.info(
                "[Refresh] Saved snapshot %d (%d positions, %d events) in %.1fs",
                result.snapshot_id,
                len(parsed.positions),
                len(result.emitted_events),
                time.time() - start,
            )
            return result

    async def backfill(self, limit: int | None = None) -> BackfillResult:
        """Rebuild snapshot history from past bot messages."""
        if limit is None:
            limit = settings.BACKFILL_LIMIT
        async with self._lock:
            logger.info("[Refresh] Fetching up to %d historical messages...", limit)
            messages = await self._source.fetch_historical_messages(limit)
            messages = [
                m for m in messages if looks_like_portfolio_report(m.message_text)
            ]
            # Chronological, so the trader set evolves in real order
            messages.sort(key=lambda m: (m.timestamp, m.message_id))

            result = BackfillResult(total_messages=len(messages))
            for msg in messages:
                try:
                    parsed = parse_portfolio_message(msg.message_text, msg.timestamp)
                    outcome = await self._engine.ingest_historical(
                        parsed.snapshot, parsed.positions,
                    )
                except Exception as exc:
                    logger.error(
                        "[Refresh] Error processing message %d: %s",
                        msg.message_id, exc,
                    )
                    result.failed += 1
                    continue

                if outcome is None:
                    result.skipped += 1
                else:
                    result.saved += 1

            logger.info(
                "[Refresh] Backfill completed: saved %d, skipped %d duplicates, "
                "%d failed",
                result.saved, result.skipped, result.failed,
            )
            return result
