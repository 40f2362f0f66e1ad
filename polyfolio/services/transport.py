"""Transport interface — where portfolio messages come from.

The Telegram user-account client lives outside this package.  Anything
that can send ``/positions`` to the portfolio bot and read its replies can
drive the tracker by implementing :class:`PortfolioSource`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from polyfolio.models.portfolio import HistoricalMessage

POSITIONS_COMMAND = "/positions"

# Reply polling used by concrete sources
DEFAULT_RESPONSE_TIMEOUT_S = 30
POLL_INTERVAL_S = 1.5

# Replies shorter than this are status placeholders, not reports
_MIN_REPORT_LENGTH = 50


class TransportError(Exception):
    """Connection or authorization failure in the transport layer."""

    def __init__(self, message: str, *, needs_reconnect: bool = False) -> None:
        super().__init__(message)
        self.needs_reconnect = needs_reconnect


def is_loading_placeholder(text: str) -> bool:
    """True for the bot's interim "Loading..." replies."""
    return "Loading" in text or "loading" in text or len(text) < _MIN_REPORT_LENGTH


def looks_like_portfolio_report(text: str) -> bool:
    """True for past messages worth backfilling."""
    return "Total Balance" in text or "Positions(" in text


class PortfolioSource(ABC):
    """A live connection to the portfolio bot."""

    @abstractmethod
    async def fetch_positions_text(self) -> str:
        """Send POSITIONS_COMMAND and return the first substantive reply.

        Raises TransportError if no reply arrives within the timeout.
        """

    @abstractmethod
    async def fetch_historical_messages(self, limit: int) -> list[HistoricalMessage]:
        """Return up to *limit* past bot messages (any order)."""

    @abstractmethod
    async def check_connection(self) -> bool:
        """True if connected and authorized."""

    @abstractmethod
    async def reconnect(self) -> None:
        """Drop and re-establish the connection."""
