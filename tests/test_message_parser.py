"""Tests for the portfolio message parser.

Covers: number/date/trader primitives, line classification, summary
fields, position blocks, control buttons, noise rows and degradation on
unrecognised text.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from polyfolio.engine.message_parser import (
    LineKind,
    classify_position_line,
    classify_summary_line,
    extract_copied_from,
    extract_date,
    extract_number,
    parse_portfolio_message,
)

_TS = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)

SIMPLE_REPORT = (
    "Total Balance: $90.20\n"
    "Available Balance: $12.50\n"
    "Invested: $77.70\n"
    "Value: $80.00\n"
    "Total PNL: -$15.19 (-0.02%)\n"
    "#1. Will X happen?\n"
    "Side: Yes\n"
    "Entry: 0.45\n"
    "Invested: $50.00\n"
    "Shares: 111\n"
    "Value: $55.00\n"
    "PNL: $5.00 (10.00%)\n"
    "Copied from: trader_a"
)

BOT_REPORT = """📊 Manage your Positions(3)

Total Balance: $1,250.40
Available Balance: $310.15
Invested: $880.00
Value: $940.25
Total PNL: +$60.25 (+6.85%)

#1. Will Bitcoin reach $100k by June?
Position: Yes
Entry Price: 0.62
Shares: 250.5
Current Value: $180.00
PNL: +$25.00 (+16.13%)
Expires: 2025-06-30
Copy trade by: whale_01
View Profile
#2. ✅ Will the Fed cut rates in March?
Position: No
Entry Price: 0.30
Shares: 1,000
PNL: -3.20 (-5.10%)
Expiry: 3/19/2025
Copied from: alice
Polymarket may have delayed price data
← Back
#3. Will this ever be parsed?
Copied from: ghost
"""


# ══════════════════════════════════════════════════════════════════════
# 1.  Primitives
# ══════════════════════════════════════════════════════════════════════


class TestExtractNumber:

    def test_thousands_separator(self):
        assert extract_number("Total Balance: $1,250.40") == 1250.40

    def test_keeps_sign(self):
        assert extract_number("PNL: -15.19") == -15.19

    def test_zero_is_no_value(self):
        assert extract_number("Value: $0.00") is None

    def test_no_digits(self):
        assert extract_number("Value: n/a") is None

    def test_first_number_wins(self):
        assert extract_number("Shares: 111 of 200") == 111


class TestExtractDate:

    def test_iso(self):
        assert extract_date("Expires: 2025-06-30 23:59") == "2025-06-30"

    def test_slash(self):
        assert extract_date("Expiry: 3/19/2025") == "3/19/2025"

    def test_none(self):
        assert extract_date("Expires: soon") is None


class TestExtractCopiedFrom:

    @pytest.mark.parametrize(
        ("line", "expected"),
        [
            ("Copied from: trader_a", "trader_a"),
            ("Copy trade by: whale_01", "whale_01"),
            ("From bob", "bob"),
            ("copied: carol", "carol"),
            ("Copied from:", None),
        ],
    )
    def test_trailing_name(self, line, expected):
        assert extract_copied_from(line) == expected


# ══════════════════════════════════════════════════════════════════════
# 2.  Line classification
# ══════════════════════════════════════════════════════════════════════


class TestClassification:

    def test_summary_boundary_is_position_header(self):
        assert classify_summary_line("#1. Will X happen?").kind is LineKind.POSITION_HEADER

    def test_numbered_line_without_question_is_not_boundary(self):
        result = classify_summary_line("1. Invested in markets: $40")
        assert result.kind is LineKind.TEXT

    @pytest.mark.parametrize(
        ("line", "field"),
        [
            ("Total Balance: $10", "total_balance"),
            ("Available Balance: $5", "available_balance"),
            ("Balance available: $5", "available_balance"),
            ("Invested: $7", "invested"),
            ("Value: $8", "value"),
            ("Total PNL: $1 (2%)", "total_pnl"),
            ("Total Profit: $1", "total_pnl"),
        ],
    )
    def test_summary_fields(self, line, field):
        result = classify_summary_line(line)
        assert result.kind is LineKind.FIELD
        assert result.field == field

    def test_bullet_invested_is_not_summary_invested(self):
        assert classify_summary_line("• Invested: $7").kind is LineKind.TEXT

    @pytest.mark.parametrize(
        "line",
        ["← Back", "🔄 Refresh", "Last Page", "Next ➡️", "Auto Redeem: ON",
         "Sell All", "Limit Orders", "# 2"],
    )
    def test_control_buttons(self, line):
        assert classify_position_line(line).kind is LineKind.CONTROL

    def test_sell_shares_is_not_control(self):
        assert classify_position_line("Sell 20 shares").kind is not LineKind.CONTROL

    def test_controls_skipped_on_opening_line(self):
        line = "#1. Will the next Fed chair be Hassett?"
        assert classify_position_line(line).kind is LineKind.CONTROL
        result = classify_position_line(line, check_controls=False)
        assert result.kind is LineKind.POSITION_HEADER

    @pytest.mark.parametrize(
        "line",
        ["Total Balance: $10", "View Profile", "Check on Polygonscan",
         "• Invested: $40", "Invested: $40", "Manual trades are shown",
         "Yes", "$4.00"],
    )
    def test_noise(self, line):
        assert classify_position_line(line).kind is LineKind.NOISE

    @pytest.mark.parametrize(
        ("line", "field"),
        [
            ("Position: Yes", "side"),
            ("Entry Price: 0.62", "entry_price"),
            ("Total invested 40", "invested"),
            ("Shares: 250.5", "shares"),
            ("Current Value: $180.00", "value"),
            ("PNL: +$25.00 (+16.13%)", "pnl"),
            ("Expires: 2025-06-30", "expiry_timestamp"),
            ("Copied from: alice", "copied_from"),
        ],
    )
    def test_detail_fields(self, line, field):
        result = classify_position_line(line)
        assert result.kind is LineKind.FIELD
        assert result.field == field


# ══════════════════════════════════════════════════════════════════════
# 3.  Whole messages
# ══════════════════════════════════════════════════════════════════════


class TestParseSimpleReport:

    def test_summary(self):
        snap = parse_portfolio_message(SIMPLE_REPORT, _TS).snapshot
        assert snap.total_balance == 90.20
        assert snap.available_balance == 12.50
        assert snap.invested == 77.70
        assert snap.value == 80.00
        assert snap.total_pnl_usd == -15.19
        assert snap.total_pnl_pct == -0.02
        assert snap.timestamp == _TS

    def test_single_position(self):
        positions = parse_portfolio_message(SIMPLE_REPORT, _TS).positions
        assert len(positions) == 1
        pos = positions[0]
        assert pos.market_question == "Will X happen?"
        assert pos.side == "Yes"
        assert pos.entry_price == 0.45
        assert pos.shares == 111
        assert pos.value == 55.00
        assert pos.pnl_usd == 5.00
        assert pos.pnl_pct == 10.00
        assert pos.copied_from == "trader_a"

    def test_invested_restatement_is_skipped_inside_positions(self):
        # "Invested: ..." rows in the list repeat the summary figure
        pos = parse_portfolio_message(SIMPLE_REPORT, _TS).positions[0]
        assert pos.invested == 0.0

    def test_idempotent(self):
        first = parse_portfolio_message(SIMPLE_REPORT, _TS)
        second = parse_portfolio_message(SIMPLE_REPORT, _TS)
        assert first == second


class TestParseBotReport:

    @pytest.fixture()
    def parsed(self):
        return parse_portfolio_message(BOT_REPORT, _TS)

    def test_header_count(self, parsed):
        assert parsed.snapshot.total_positions_reported == 3

    def test_summary(self, parsed):
        snap = parsed.snapshot
        assert snap.total_balance == 1250.40
        assert snap.available_balance == 310.15
        assert snap.invested == 880.00
        assert snap.value == 940.25
        assert snap.total_pnl_usd == 60.25
        assert snap.total_pnl_pct == 6.85

    def test_stops_at_back_button(self, parsed):
        questions = [p.market_question for p in parsed.positions]
        assert questions == [
            "Will Bitcoin reach $100k by June?",
            "Will the Fed cut rates in March?",
        ]
        assert "ghost" not in parsed.copy_traders()

    def test_first_position(self, parsed):
        pos = parsed.positions[0]
        assert pos.side == "Yes"
        assert pos.entry_price == 0.62
        assert pos.shares == 250.5
        assert pos.value == 180.00
        assert pos.pnl_usd == 25.00
        assert pos.pnl_pct == 16.13
        assert pos.expiry_timestamp == "2025-06-30"
        assert pos.copied_from == "whale_01"

    def test_second_position(self, parsed):
        pos = parsed.positions[1]
        assert pos.side == "No"
        assert pos.entry_price == 0.30
        assert pos.shares == 1000
        assert pos.pnl_usd == -3.20
        assert pos.pnl_pct == -5.10
        assert pos.expiry_timestamp == "3/19/2025"
        assert pos.copied_from == "alice"

    def test_copy_traders(self, parsed):
        assert parsed.copy_traders() == {"whale_01", "alice"}


class TestParseEdgeCases:

    def test_empty_text(self):
        parsed = parse_portfolio_message("", _TS)
        assert parsed.positions == []
        assert parsed.snapshot.total_balance == 0.0
        assert parsed.snapshot.total_positions_reported is None

    def test_unstructured_text(self):
        parsed = parse_portfolio_message("⏳ Loading your portfolio, please wait...", _TS)
        assert parsed.positions == []
        assert parsed.snapshot.total_pnl_usd == 0.0

    def test_header_count_without_body(self):
        parsed = parse_portfolio_message("Manage your positions (11)\nsomething broke", _TS)
        assert parsed.snapshot.total_positions_reported == 11
        assert parsed.positions == []

    @pytest.mark.parametrize("digits", ["9" * 5000, "3000000000"])
    def test_oversized_header_count_is_ignored(self, digits):
        text = f"Manage your Positions({digits})\nTotal Balance: $5"
        parsed = parse_portfolio_message(text, _TS)
        assert parsed.snapshot.total_positions_reported is None
        assert parsed.snapshot.total_balance == 5.0

    def test_nine_digit_header_count(self):
        parsed = parse_portfolio_message("Positions(999999999)", _TS)
        assert parsed.snapshot.total_positions_reported == 999_999_999

    def test_no_numbered_lines_means_no_positions(self):
        text = "Total Balance: $50\nWill X happen?\nValue: $20"
        parsed = parse_portfolio_message(text, _TS)
        assert parsed.positions == []
        assert parsed.snapshot.value == 20

    def test_negative_balance_is_ignored(self):
        text = "Total Balance: -50.00\nInvested: -10\nTotal PNL: -12.5"
        snap = parse_portfolio_message(text, _TS).snapshot
        assert snap.total_balance == 0.0
        assert snap.invested == 0.0
        assert snap.total_pnl_usd == -12.5

    def test_summary_lines_after_first_position_are_ignored(self):
        text = "#1. Will X happen?\nTotal Balance: $99\nShares: 10"
        parsed = parse_portfolio_message(text, _TS)
        assert parsed.snapshot.total_balance == 0.0
        assert parsed.positions[0].shares == 10

    def test_pagination_button_ends_page(self):
        text = (
            "#1. Will X happen?\nShares: 10\n"
            "# 2\n"
            "#3. Will Y happen?\nShares: 20"
        )
        parsed = parse_portfolio_message(text, _TS)
        assert len(parsed.positions) == 1

    def test_side_no_from_header(self):
        text = "#1. Will X happen? (NO)\nShares: 5"
        assert parse_portfolio_message(text, _TS).positions[0].side == "No"

    def test_checkmark_is_stripped(self):
        text = "1. ✔ Will Y happen?"
        assert parse_portfolio_message(text, _TS).positions[0].market_question == (
            "Will Y happen?"
        )

    def test_long_numbered_line_opens_position(self):
        text = "#1. Will X happen?\nShares: 10\n2. Presidential Election Winner 2028\nShares: 20"
        positions = parse_portfolio_message(text, _TS).positions
        assert [p.market_question for p in positions] == [
            "Will X happen?",
            "Presidential Election Winner 2028",
        ]
        assert positions[1].shares == 20

    def test_very_short_detail_rows_are_dropped(self):
        # "Shares: 5" is under 10 characters
        text = "#1. Will X happen?\nShares: 5"
        assert parse_portfolio_message(text, _TS).positions[0].shares == 0.0

    def test_duplicate_questions_are_kept(self):
        text = (
            "#1. Will X happen?\nShares: 1\n"
            "#2. Will X happen?\nPosition: No\nShares: 2"
        )
        positions = parse_portfolio_message(text, _TS).positions
        assert len(positions) == 2
        assert [p.side for p in positions] == ["Yes", "No"]

    def test_default_timestamp_is_now(self):
        before = datetime.now(timezone.utc)
        snap = parse_portfolio_message("Total Balance: $1").snapshot
        assert before <= snap.timestamp <= datetime.now(timezone.utc)
