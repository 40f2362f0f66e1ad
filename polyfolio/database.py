"""DuckDB session management and table initialization."""

from __future__ import annotations

import duckdb

from polyfolio.config import settings
from polyfolio.utils.logger import logger

_connection: duckdb.DuckDBPyConnection | None = None


def get_db() -> duckdb.DuckDBPyConnection:
    """Return the singleton DuckDB connection, creating tables on first call."""
    global _connection  # noqa: PLW0603
    if _connection is None:
        db_path = str(settings.DB_PATH)
        settings.DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Opening DuckDB at %s", db_path)
        _connection = duckdb.connect(db_path)
        _init_tables(_connection)
    return _connection


def reset_db() -> None:
    """Close the singleton connection (next get_db() reopens settings.DB_PATH)."""
    global _connection  # noqa: PLW0603
    if _connection is not None:
        _connection.close()
        _connection = None


def _init_tables(conn: duckdb.DuckDBPyConnection) -> None:
    """Create tables if they don't exist.

    Timestamps are stored as naive UTC.
    """
    conn.execute("CREATE SEQUENCE IF NOT EXISTS seq_portfolio_snapshots START 1;")
    conn.execute("CREATE SEQUENCE IF NOT EXISTS seq_positions START 1;")
    conn.execute("CREATE SEQUENCE IF NOT EXISTS seq_copy_trading_events START 1;")

    conn.execute("""
        CREATE TABLE IF NOT EXISTS portfolio_snapshots (
            id                INTEGER PRIMARY KEY DEFAULT nextval('seq_portfolio_snapshots'),
            timestamp         TIMESTAMP NOT NULL,
            total_balance     DOUBLE NOT NULL,
            available_balance DOUBLE NOT NULL,
            invested          DOUBLE NOT NULL,
            value             DOUBLE NOT NULL,
            total_pnl_usd     DOUBLE NOT NULL,
            total_pnl_pct     DOUBLE NOT NULL,
            total_positions   BIGINT
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS positions (
            id               INTEGER PRIMARY KEY DEFAULT nextval('seq_positions'),
            snapshot_id      INTEGER NOT NULL REFERENCES portfolio_snapshots(id),
            market_question  VARCHAR NOT NULL,
            side             VARCHAR NOT NULL,
            entry_price      DOUBLE NOT NULL,
            invested         DOUBLE NOT NULL,
            shares           DOUBLE NOT NULL,
            value            DOUBLE NOT NULL,
            pnl_usd          DOUBLE NOT NULL,
            pnl_pct          DOUBLE NOT NULL,
            expiry_timestamp VARCHAR,
            copied_from      VARCHAR
        );
    """)

    # Append-only
    conn.execute("""
        CREATE TABLE IF NOT EXISTS copy_trading_events (
            id          INTEGER PRIMARY KEY DEFAULT nextval('seq_copy_trading_events'),
            timestamp   TIMESTAMP NOT NULL,
            event_type  VARCHAR NOT NULL,
            description VARCHAR NOT NULL,
            trader_name VARCHAR
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS app_settings (
            key        VARCHAR PRIMARY KEY,
            value      VARCHAR NOT NULL,
            updated_at TIMESTAMP NOT NULL
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS scheduler_runs (
            id           VARCHAR PRIMARY KEY,
            job_name     VARCHAR NOT NULL,
            started_at   TIMESTAMP NOT NULL,
            completed_at TIMESTAMP,
            status       VARCHAR NOT NULL,
            summary      VARCHAR DEFAULT '',
            error        VARCHAR DEFAULT ''
        );
    """)

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_snapshot_timestamp "
        "ON portfolio_snapshots(timestamp);"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_positions_snapshot "
        "ON positions(snapshot_id);"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_copy_events_timestamp "
        "ON copy_trading_events(timestamp);"
    )

    logger.info("DuckDB tables initialized")
