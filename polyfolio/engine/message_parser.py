"""Message Parser — turns a portfolio bot reply into typed records.

The bot's reply is a chat rendering, not a versioned format, so parsing is
line-oriented and permissive:

  1. every trimmed, non-empty line is classified once
     (control / noise / position header / field / plain text);
  2. a small state machine consumes the classified lines —
     summary fields are only read before the first position header,
     position details only after it, and the first control button ends
     the page.

A drifted label costs one field, never the whole message.  The parser
never raises; unrecognised text yields zeroed fields and fewer positions.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple

from polyfolio.models.portfolio import ParsedPortfolio, PortfolioSnapshot, Position
from polyfolio.utils.logger import logger

# ── Line shapes ────────────────────────────────────────────────────
_NUMBERED_RE = re.compile(r"^#?\d+\.")
_NUMBER_PREFIX_RE = re.compile(r"^#?\d+\.\s*")
_CHECKMARK_PREFIX_RE = re.compile(r"^[✓✔✅]\s*")
_PAGINATION_RE = re.compile(r"^#\s*\d+$")  # "# 2" page buttons
_BULLET_INVESTED_RE = re.compile(r"^•\s*(Invested|invested)")
# Counts longer than 9 digits are ignored
_POSITIONS_HEADER_RE = re.compile(r"Positions\s*\((\d{1,9})\)", re.IGNORECASE)

# ── Values ─────────────────────────────────────────────────────────
_NUMBER_RE = re.compile(r"([+-]?[\d,]+\.?\d*)")
# "Total PNL: -$15.19 (-0.02%)": amount and percent signed independently
_TOTAL_PNL_RE = re.compile(r"([+-]?)\$?([\d,]+\.?\d*)\s*\(([+-]?)([\d,]+\.?\d*)%\)")
# "PNL: -3.20 $ (-5.1%)"
_POSITION_PNL_RE = re.compile(r"([+-]?[\d,]+\.?\d*)\s*\$?\s*\(([+-]?[\d,]+\.?\d*)%\)")
_ISO_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")
_SLASH_DATE_RE = re.compile(r"\d{1,2}/\d{1,2}/\d{4}")
_COPIED_FROM_RE = re.compile(
    r"(?:copied\s+from|copy\s+trade\s+by|copied|from)\s*:?\s*(.*)$",
    re.IGNORECASE,
)

_CONTROL_MARKERS = ("← back", "refresh", "last page", "next", "auto redeem", "limit")
_NOISE_MARKERS = (
    "total balance",
    "view profile",
    "polygonscan",
    "polymarket may have",
    "delayed price data",
    "manual trades",
    "copy trades",
)


class LineKind(str, Enum):
    """What a single line of the message is."""

    CONTROL = "control"  # navigation / action button, ends the page
    NOISE = "noise"  # boilerplate inside the positions list
    POSITION_HEADER = "position_header"
    FIELD = "field"  # summary or detail field, see ClassifiedLine.field
    TEXT = "text"  # nothing recognised


class ParserState(str, Enum):
    SEEKING_HEADER = "seeking_header"
    IN_SUMMARY = "in_summary"
    IN_POSITIONS = "in_positions"
    DONE = "done"


class ClassifiedLine(NamedTuple):
    kind: LineKind
    field: str | None = None


# ══════════════════════════════════════════════════════════════════════
# Primitives
# ══════════════════════════════════════════════════════════════════════


def extract_number(text: str) -> float | None:
    """First signed number in *text*, thousands separators removed.

    Returns None when nothing parses or the value is zero, so callers
    keep their existing default instead of overwriting it.
    """
    match = _NUMBER_RE.search(text)
    if not match:
        return None
    try:
        number = float(match.group(1).replace(",", ""))
    except ValueError:
        return None
    return number or None


def extract_date(text: str) -> str | None:
    """ISO yyyy-mm-dd if present, else m/d/yyyy, else None."""
    match = _ISO_DATE_RE.search(text) or _SLASH_DATE_RE.search(text)
    return match.group(0) if match else None


def extract_copied_from(text: str) -> str | None:
    """Trader name following "copied from" / "copy trade by" / "from"."""
    match = _COPIED_FROM_RE.search(text)
    if not match:
        return None
    return match.group(1).strip() or None


def _to_float(raw: str) -> float:
    try:
        return float(raw.replace(",", "") or "0")
    except ValueError:
        return 0.0


def _is_numbered(line: str) -> bool:
    return bool(_NUMBERED_RE.match(line))


def _is_pagination(line: str) -> bool:
    return bool(_PAGINATION_RE.match(line))


def _starts_positions(line: str) -> bool:
    """Numbered line carrying a market question — the first one ends the summary."""
    return _is_numbered(line) and "?" in line


def _mentions_side_no(lower: str) -> bool:
    return "no" in lower or "short" in lower


# ══════════════════════════════════════════════════════════════════════
# Classification
# ══════════════════════════════════════════════════════════════════════


def classify_summary_line(line: str) -> ClassifiedLine:
    """Classify a line seen before the first position header."""
    if _starts_positions(line):
        return ClassifiedLine(LineKind.POSITION_HEADER)

    lower = line.lower()
    # Guards shared by the invested / value / pnl rows
    structural = _is_numbered(line) or _is_pagination(line)
    listed = structural or line.startswith("•")

    if "total balance" in lower:
        return ClassifiedLine(LineKind.FIELD, "total_balance")
    if "available balance" in lower or ("available" in lower and "balance" in lower):
        return ClassifiedLine(LineKind.FIELD, "available_balance")
    if "invested" in lower and "shares" not in lower and not listed:
        return ClassifiedLine(LineKind.FIELD, "invested")
    if "value" in lower and "pnl" not in lower and not listed:
        return ClassifiedLine(LineKind.FIELD, "value")
    if ("total pnl" in lower or "total profit" in lower) and not structural:
        return ClassifiedLine(LineKind.FIELD, "total_pnl")
    return ClassifiedLine(LineKind.TEXT)


def _is_control(line: str, lower: str) -> bool:
    if any(marker in lower for marker in _CONTROL_MARKERS):
        return True
    if "sell" in lower and "shares" not in lower:
        return True
    return _is_pagination(line)


def _is_noise(line: str, lower: str) -> bool:
    if any(marker in lower for marker in _NOISE_MARKERS):
        return True
    if lower.startswith("• invested:") or _BULLET_INVESTED_RE.match(line):
        return True
    if lower.startswith("invested:") and "?" not in line:
        return True
    return len(line) < 10 and "?" not in line and not _is_numbered(line)


def _is_position_header(line: str) -> bool:
    numbered = _is_numbered(line)
    if numbered and ("?" in line or len(line) > 20):
        return True
    return "?" in line and len(line) > 15 and numbered


def _detail_field(lower: str) -> str | None:
    if "side:" in lower or "position:" in lower:
        return "side"
    if "entry" in lower:
        return "entry_price"
    if "invested" in lower and "shares" not in lower:
        return "invested"
    if "shares" in lower:
        return "shares"
    if "value" in lower and "pnl" not in lower:
        return "value"
    if "pnl" in lower or "profit" in lower:
        return "pnl"
    if "expiry" in lower or "expires" in lower:
        return "expiry_timestamp"
    if "copied" in lower or "from" in lower or "copy trade by" in lower:
        return "copied_from"
    return None


def classify_position_line(line: str, *, check_controls: bool = True) -> ClassifiedLine:
    """Classify a line seen inside the positions list.

    The line that opens the list is never treated as a control button,
    so *check_controls* is False for it.
    """
    lower = line.lower()
    if check_controls and _is_control(line, lower):
        return ClassifiedLine(LineKind.CONTROL)
    if _is_noise(line, lower):
        return ClassifiedLine(LineKind.NOISE)
    if _is_position_header(line):
        return ClassifiedLine(LineKind.POSITION_HEADER)
    field = _detail_field(lower)
    if field:
        return ClassifiedLine(LineKind.FIELD, field)
    return ClassifiedLine(LineKind.TEXT)


# ══════════════════════════════════════════════════════════════════════
# Consumers
# ══════════════════════════════════════════════════════════════════════


def _apply_summary_field(summary: dict, field: str, line: str) -> None:
    if field == "total_pnl":
        match = _TOTAL_PNL_RE.search(line)
        if match:
            sign = -1 if match.group(1) == "-" else 1
            pct_sign = -1 if match.group(3) == "-" else 1
            summary["total_pnl_usd"] = sign * _to_float(match.group(2))
            summary["total_pnl_pct"] = pct_sign * _to_float(match.group(4))
            return
        pnl = extract_number(line)
        if pnl is not None:
            summary["total_pnl_usd"] = pnl
        return

    # Balances, invested and value are never negative
    amount = extract_number(line)
    if amount is not None and amount >= 0:
        summary[field] = amount


def _new_position(line: str) -> dict:
    question = _NUMBER_PREFIX_RE.sub("", line, count=1).strip()
    question = _CHECKMARK_PREFIX_RE.sub("", question, count=1).strip()
    return {
        "market_question": question,
        "side": "No" if _mentions_side_no(line.lower()) else "Yes",
        "entry_price": 0.0,
        "invested": 0.0,
        "shares": 0.0,
        "value": 0.0,
        "pnl_usd": 0.0,
        "pnl_pct": 0.0,
        "expiry_timestamp": None,
        "copied_from": None,
    }


def _apply_detail_field(position: dict, field: str, line: str) -> None:
    if field == "side":
        position["side"] = "No" if _mentions_side_no(line.lower()) else "Yes"
    elif field == "pnl":
        match = _POSITION_PNL_RE.search(line)
        if match:
            position["pnl_usd"] = _to_float(match.group(1))
            position["pnl_pct"] = _to_float(match.group(2))
        else:
            position["pnl_usd"] = extract_number(line) or 0.0
    elif field == "expiry_timestamp":
        position["expiry_timestamp"] = extract_date(line)
    elif field == "copied_from":
        position["copied_from"] = extract_copied_from(line)
    else:
        position[field] = extract_number(line) or 0.0


# ══════════════════════════════════════════════════════════════════════
# Entry point
# ══════════════════════════════════════════════════════════════════════


def parse_portfolio_message(
    text: str, timestamp: datetime | None = None,
) -> ParsedPortfolio:
    """Parse one portfolio reply into a snapshot and its positions.

    Args:
        text: Raw message text as delivered by the bot.
        timestamp: When the message was observed.  Defaults to now (UTC);
            backfill passes the message's delivery time.
    """
    text = text or ""
    lines = [ln.strip() for ln in text.split("\n")]
    lines = [ln for ln in lines if ln]

    summary: dict = {
        "timestamp": timestamp or datetime.now(timezone.utc),
        "total_balance": 0.0,
        "available_balance": 0.0,
        "invested": 0.0,
        "value": 0.0,
        "total_pnl_usd": 0.0,
        "total_pnl_pct": 0.0,
        "total_positions_reported": None,
    }
    header = _POSITIONS_HEADER_RE.search(text)
    if header:
        summary["total_positions_reported"] = int(header.group(1))

    positions: list[dict] = []
    current: dict | None = None
    state = ParserState.SEEKING_HEADER

    for line in lines:
        if state is ParserState.DONE:
            break

        first_in_positions = False
        if state is not ParserState.IN_POSITIONS:
            classified = classify_summary_line(line)
            if classified.kind is LineKind.FIELD:
                state = ParserState.IN_SUMMARY
                _apply_summary_field(summary, classified.field, line)
                continue
            if classified.kind is not LineKind.POSITION_HEADER:
                continue
            state = ParserState.IN_POSITIONS
            first_in_positions = True

        classified = classify_position_line(
            line, check_controls=not first_in_positions,
        )
        if classified.kind is LineKind.CONTROL:
            state = ParserState.DONE
        elif classified.kind is LineKind.POSITION_HEADER:
            if current and current["market_question"]:
                positions.append(current)
            current = _new_position(line)
        elif classified.kind is LineKind.FIELD and current is not None:
            _apply_detail_field(current, classified.field, line)

    if current and current["market_question"]:
        positions.append(current)

    parsed = ParsedPortfolio(
        snapshot=PortfolioSnapshot(**summary),
        positions=[Position(**p) for p in positions],
    )
    logger.debug(
        "[Parser] %d lines -> balance=%.2f, %d positions (header claims %s)",
        len(lines),
        parsed.snapshot.total_balance,
        len(parsed.positions),
        parsed.snapshot.total_positions_reported,
    )
    return parsed
