"""Application configuration — environment variables and defaults.

Everything the tracker needs to know about where it stores data, which bot
it talks to, and how often it refreshes lives HERE.
"""

import os
from pathlib import Path


class Settings:
    """Central configuration pulled from environment with safe defaults."""

    # Paths
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    DATA_DIR: Path = Path(os.getenv("POLYFOLIO_DATA_DIR", str(BASE_DIR / "data")))
    LOGS_DIR: Path = BASE_DIR / "logs"

    # Database
    DB_PATH: Path = Path(
        os.getenv("POLYFOLIO_DB_PATH", str(DATA_DIR / "portfolio.duckdb"))
    )

    # ── Telegram bot being polled ─────────────────────────────────
    # Accepts "@PolyBot" or "PolyBot"; stored without the "@".
    TARGET_BOT_USERNAME: str = os.getenv("TARGET_BOT_USERNAME", "").lstrip("@")

    # ── Refresh cadence ───────────────────────────────────────────
    REFRESH_INTERVAL_MINUTES: int = int(os.getenv("REFRESH_INTERVAL_MINUTES", "5"))
    HEALTH_CHECK_INTERVAL_MINUTES: int = int(
        os.getenv("HEALTH_CHECK_INTERVAL_MINUTES", "2")
    )

    # ── Reconciliation ────────────────────────────────────────────
    # Two snapshots closer than this are the same logical observation
    DUPLICATE_TOLERANCE_MINUTES: int = int(
        os.getenv("DUPLICATE_TOLERANCE_MINUTES", "5")
    )
    BACKFILL_LIMIT: int = int(os.getenv("BACKFILL_LIMIT", "2000"))
    HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "50"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def __init__(self) -> None:
        """Ensure runtime directories exist."""
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)
        self.LOGS_DIR.mkdir(parents=True, exist_ok=True)


settings = Settings()
