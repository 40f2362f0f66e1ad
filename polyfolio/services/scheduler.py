"""Portfolio Scheduler — APScheduler-based polling of the portfolio bot.

  - Every REFRESH_INTERVAL_MINUTES (5): ask the bot for /positions,
    record the snapshot and copy-trading changes
  - Every HEALTH_CHECK_INTERVAL_MINUTES (2): verify the Telegram
    connection, reconnecting when it has dropped
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from polyfolio.config import settings
from polyfolio.database import get_db
from polyfolio.services.refresh_service import RefreshService
from polyfolio.services.transport import PortfolioSource, TransportError
from polyfolio.utils.logger import logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PortfolioScheduler:
    """Runs periodic refreshes and connection health checks."""

    def __init__(
        self, refresh_service: RefreshService, source: PortfolioSource,
    ) -> None:
        self._refresh = refresh_service
        self._source = source
        self._scheduler: AsyncIOScheduler | None = None
        self.is_running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> dict:
        """Start the polling schedule, with one refresh right away."""
        if self.is_running:
            return {"status": "already_running"}

        self._scheduler = AsyncIOScheduler()

        # First run fires immediately, then on the interval
        self._scheduler.add_job(
            self._auto_refresh,
            IntervalTrigger(minutes=settings.REFRESH_INTERVAL_MINUTES),
            id="auto_refresh",
            name="Portfolio Auto-Refresh",
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self._scheduler.add_job(
            self._health_check,
            IntervalTrigger(minutes=settings.HEALTH_CHECK_INTERVAL_MINUTES),
            id="health_check",
            name="Telegram Health Check",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        self._scheduler.start()
        self.is_running = True
        logger.info(
            "[Scheduler] Started - refresh every %d min, health check every %d min",
            settings.REFRESH_INTERVAL_MINUTES,
            settings.HEALTH_CHECK_INTERVAL_MINUTES,
        )
        return {"status": "started", "jobs": len(self._scheduler.get_jobs())}

    def stop(self) -> dict:
        """Stop all scheduled jobs."""
        if not self.is_running or not self._scheduler:
            return {"status": "not_running"}

        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self.is_running = False
        logger.info("[Scheduler] Stopped")
        return {"status": "stopped"}

    # ------------------------------------------------------------------
    # Status & History
    # ------------------------------------------------------------------

    def get_status(self) -> dict:
        jobs = []
        if self._scheduler and self.is_running:
            for job in self._scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": next_run.isoformat() if next_run else None,
                })

        last = self._refresh.last_result
        return {
            "is_running": self.is_running,
            "jobs": jobs,
            "job_count": len(jobs),
            "refresh_in_progress": self._refresh.is_busy,
            "last_snapshot_id": last.snapshot_id if last else None,
            "last_error": self._refresh.last_error,
        }

    @staticmethod
    def get_history(limit: int = 20) -> list[dict]:
        """Recent scheduler runs, newest first."""
        db = get_db()
        rows = db.execute(
            "SELECT id, job_name, started_at, completed_at, status, "
            "summary, error "
            "FROM scheduler_runs "
            "ORDER BY started_at DESC LIMIT ?",
            [limit],
        ).fetchall()
        return [
            {
                "id": r[0],
                "job_name": r[1],
                "started_at": str(r[2]) if r[2] else None,
                "completed_at": str(r[3]) if r[3] else None,
                "status": r[4],
                "summary": r[5],
                "error": r[6],
            }
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Manual triggers
    # ------------------------------------------------------------------

    async def run_job(self, job_name: str) -> dict:
        """Manually trigger a job by name."""
        handlers = {
            "auto_refresh": self._auto_refresh,
            "health_check": self._health_check,
            "backfill": self._backfill,
        }
        handler = handlers.get(job_name)
        if not handler:
            return {"error": f"Unknown job: {job_name}"}

        status = await handler()
        return {"status": status or "completed", "job": job_name}

    # ------------------------------------------------------------------
    # Job implementations
    # ------------------------------------------------------------------

    async def _auto_refresh(self) -> str | None:
        if self._refresh.is_busy:
            logger.info("[Scheduler] Refresh already in progress, skipping")
            return "skipped"

        run_id = self._log_start("auto_refresh")
        try:
            result = await self._refresh.refresh()
            summary = (
                f"Snapshot {result.snapshot_id} saved, "
                f"{len(result.emitted_events)} copy-trading events."
            )
            self._log_end(run_id, "success", summary)
        except TransportError as e:
            self._log_end(run_id, "error", error=str(e))
            logger.error("[Scheduler] Auto-refresh failed: %s", e)
            if e.needs_reconnect:
                await self._try_reconnect()
        except Exception as e:
            self._log_end(run_id, "error", error=str(e))
            logger.exception("[Scheduler] Auto-refresh failed")

    async def _backfill(self) -> None:
        run_id = self._log_start("backfill")
        try:
            result = await self._refresh.backfill()
            summary = (
                f"{result.total_messages} messages: saved {result.saved}, "
                f"skipped {result.skipped}, failed {result.failed}."
            )
            self._log_end(run_id, "success", summary)
        except Exception as e:
            self._log_end(run_id, "error", error=str(e))
            logger.exception("[Scheduler] Backfill failed")

    async def _health_check(self) -> None:
        try:
            if await self._source.check_connection():
                logger.debug("[Scheduler] Connection OK")
                return
            logger.warning("[Scheduler] Connection lost")
        except Exception as e:
            logger.error("[Scheduler] Connection check failed: %s", e)
        await self._try_reconnect()

    async def _try_reconnect(self) -> None:
        logger.info("[Scheduler] Attempting to reconnect...")
        try:
            await self._source.reconnect()
        except Exception:
            logger.exception("[Scheduler] Reconnect failed")

    # ------------------------------------------------------------------
    # DB logging helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _log_start(job_name: str) -> str:
        run_id = str(uuid.uuid4())[:8]
        db = get_db()
        db.execute(
            "INSERT INTO scheduler_runs (id, job_name, started_at, status) "
            "VALUES (?, ?, ?, 'running')",
            [run_id, job_name, _utcnow()],
        )
        return run_id

    @staticmethod
    def _log_end(
        run_id: str,
        status: str,
        summary: str = "",
        error: str = "",
    ) -> None:
        db = get_db()
        db.execute(
            "UPDATE scheduler_runs "
            "SET completed_at = ?, status = ?, summary = ?, error = ? "
            "WHERE id = ?",
            [_utcnow(), status, summary, error, run_id],
        )
