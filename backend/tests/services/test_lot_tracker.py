# backend/tests/services/test_lot_tracker.py
"""
Unit tests for FIFO lot replay.

These tests verify the pure replay logic WITHOUT database dependencies.
Simple dataclasses stand in for the Transaction and Dividend models.

Test Coverage:
- Lot opening and FIFO consumption
- Deterministic ordering (date, id) regardless of input order
- Insufficient shares on oversized sells
- Reinvested dividends, cash dividends and fees
- Closed mapping of every TransactionType
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest

from portfolio_engine.models import TransactionType
from portfolio_engine.services.exceptions import (
    InconsistentLedgerError,
    InsufficientSharesError,
)
from portfolio_engine.services.valuation.lot_tracker import (
    TRANSACTION_EVENT_KINDS,
    LotTracker,
)
from portfolio_engine.services.valuation.types import EventKind, EventSource


# =============================================================================
# MOCK OBJECTS (No database needed)
# =============================================================================

@dataclass
class MockTransaction:
    """Mock Transaction for unit testing."""
    id: int
    type: TransactionType
    date: date
    shares: Decimal
    cost_per_share: Decimal


@dataclass
class MockDividend:
    """Mock Dividend for unit testing."""
    id: int
    ex_dividend_date: date
    total_amount: Decimal
    buy_order_date: date | None = None
    reinvestment_shares: Decimal | None = None
    reinvestment_price: Decimal | None = None
    reinvestment_transaction_id: int | None = None

    @property
    def has_reinvestment(self) -> bool:
        return (
            self.buy_order_date is not None
            and self.reinvestment_shares is not None
            and self.reinvestment_price is not None
        )


def buy(txn_id: int, on: date, shares: str, price: str) -> MockTransaction:
    return MockTransaction(txn_id, TransactionType.BUY, on, Decimal(shares), Decimal(price))


def sell(txn_id: int, on: date, shares: str, price: str) -> MockTransaction:
    return MockTransaction(txn_id, TransactionType.SELL, on, Decimal(shares), Decimal(price))


PF_ID = 1


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def tracker() -> LotTracker:
    return LotTracker()


@pytest.fixture
def two_buys_one_sell() -> list[MockTransaction]:
    """Buy 10 @ 10, buy 5 @ 12, sell 8 @ 15."""
    return [
        buy(1, date(2024, 1, 1), "10", "10"),
        buy(2, date(2024, 2, 1), "5", "12"),
        sell(3, date(2024, 3, 1), "8", "15"),
    ]


# =============================================================================
# FIFO CONSUMPTION
# =============================================================================

class TestFifoConsumption:
    """Tests for lot opening and oldest-first consumption."""

    def test_sell_consumes_oldest_lot_first(self, tracker, two_buys_one_sell):
        result = tracker.track(PF_ID, two_buys_one_sell)

        open_lots = result.open_lots
        assert len(open_lots) == 2
        assert open_lots[0].remaining_shares == Decimal("2")
        assert open_lots[0].cost_per_share == Decimal("10")
        assert open_lots[1].remaining_shares == Decimal("5")
        assert open_lots[1].cost_per_share == Decimal("12")
        assert result.remaining_shares == Decimal("7")

    def test_single_disposal_from_first_lot(self, tracker, two_buys_one_sell):
        result = tracker.track(PF_ID, two_buys_one_sell)

        assert len(result.disposals) == 1
        disposal = result.disposals[0]
        assert disposal.transaction_id == 3
        assert disposal.lot_source_id == 1
        assert disposal.lot_open_date == date(2024, 1, 1)
        assert disposal.shares_disposed == Decimal("8")
        assert disposal.sale_price == Decimal("15")

    def test_sell_spanning_two_lots(self, tracker):
        transactions = [
            buy(1, date(2024, 1, 1), "10", "10"),
            buy(2, date(2024, 2, 1), "5", "12"),
            sell(3, date(2024, 3, 1), "12", "15"),
        ]

        result = tracker.track(PF_ID, transactions)

        assert [d.shares_disposed for d in result.disposals] == [Decimal("10"), Decimal("2")]
        assert [d.lot_source_id for d in result.disposals] == [1, 2]
        # First lot is fully consumed but still reported
        assert len(result.lots) == 2
        assert not result.lots[0].is_open
        assert result.open_lots[0].remaining_shares == Decimal("3")

    def test_partial_lot_keeps_original_cost(self, tracker):
        transactions = [
            buy(1, date(2024, 1, 1), "10", "10"),
            sell(2, date(2024, 2, 1), "3", "20"),
            sell(3, date(2024, 3, 1), "3", "5"),
        ]

        result = tracker.track(PF_ID, transactions)

        assert result.open_lots[0].remaining_shares == Decimal("4")
        assert result.open_lots[0].cost_per_share == Decimal("10")
        assert result.open_lots[0].remaining_cost_basis == Decimal("40")

    def test_fractional_shares(self, tracker):
        transactions = [
            buy(1, date(2024, 1, 1), "1.5", "100"),
            sell(2, date(2024, 2, 1), "0.25", "110"),
        ]

        result = tracker.track(PF_ID, transactions)

        assert result.remaining_shares == Decimal("1.25")

    def test_as_of_ignores_later_events(self, tracker, two_buys_one_sell):
        result = tracker.track(PF_ID, two_buys_one_sell, as_of=date(2024, 2, 15))

        assert result.remaining_shares == Decimal("15")
        assert result.disposals == ()
        assert result.as_of == date(2024, 2, 15)

    def test_empty_history(self, tracker):
        result = tracker.track(PF_ID, [])

        assert result.lots == ()
        assert result.remaining_shares == Decimal("0")


# =============================================================================
# ORDERING
# =============================================================================

class TestOrdering:
    """Processing order is (date, id), independent of input order."""

    def test_input_order_does_not_matter(self, tracker, two_buys_one_sell):
        forward = tracker.track(PF_ID, two_buys_one_sell)
        backward = tracker.track(PF_ID, list(reversed(two_buys_one_sell)))

        assert forward == backward

    def test_same_day_events_ordered_by_id(self, tracker):
        day = date(2024, 1, 1)
        transactions = [
            sell(3, day, "5", "12"),
            buy(2, day, "5", "11"),
            buy(1, day, "5", "10"),
        ]

        result = tracker.track(PF_ID, transactions)

        # The sell (id 3) runs after both buys and fully consumes lot 1
        assert [d.lot_source_id for d in result.disposals] == [1]
        assert [lot.source_id for lot in result.open_lots] == [2]
        lot_1 = next(lot for lot in result.lots if lot.source_id == 1)
        assert lot_1.remaining_shares == Decimal("0")

    def test_same_day_sell_before_buy_by_id_fails(self, tracker):
        day = date(2024, 1, 1)
        transactions = [
            sell(1, day, "5", "12"),
            buy(2, day, "5", "10"),
        ]

        with pytest.raises(InsufficientSharesError):
            tracker.track(PF_ID, transactions)

    def test_build_events_sorted(self, tracker, two_buys_one_sell):
        events = tracker.build_events(PF_ID, reversed(two_buys_one_sell))

        assert [e.event_id for e in events] == [1, 2, 3]
        assert [e.kind for e in events] == [EventKind.BUY, EventKind.BUY, EventKind.SELL]


# =============================================================================
# INSUFFICIENT SHARES
# =============================================================================

class TestInsufficientShares:
    """Tests for sells exceeding the shares held."""

    def test_oversized_sell_reports_shortfall(self, tracker):
        transactions = [
            buy(1, date(2024, 1, 1), "10", "10"),
            buy(2, date(2024, 2, 1), "5", "12"),
            sell(3, date(2024, 3, 1), "20", "15"),
        ]

        with pytest.raises(InsufficientSharesError) as exc_info:
            tracker.track(PF_ID, transactions)

        error = exc_info.value
        assert error.shortfall == Decimal("5")
        assert error.requested == Decimal("20")
        assert error.available == Decimal("15")
        assert error.transaction_id == 3
        assert error.sell_date == date(2024, 3, 1)
        assert error.portfolio_fund_id == PF_ID

    def test_sell_without_lots(self, tracker):
        with pytest.raises(InsufficientSharesError) as exc_info:
            tracker.track(PF_ID, [sell(1, date(2024, 1, 1), "1", "10")])

        assert exc_info.value.shortfall == Decimal("1")

    def test_later_buy_does_not_cover_earlier_sell(self, tracker):
        transactions = [
            buy(1, date(2024, 1, 1), "5", "10"),
            sell(2, date(2024, 2, 1), "8", "12"),
            buy(3, date(2024, 3, 1), "5", "10"),
        ]

        with pytest.raises(InsufficientSharesError) as exc_info:
            tracker.track(PF_ID, transactions)

        assert exc_info.value.shortfall == Decimal("3")

    def test_oversized_sell_after_as_of_is_ignored(self, tracker):
        transactions = [
            buy(1, date(2024, 1, 1), "5", "10"),
            sell(2, date(2024, 2, 1), "8", "12"),
        ]

        result = tracker.track(PF_ID, transactions, as_of=date(2024, 1, 31))

        assert result.remaining_shares == Decimal("5")


# =============================================================================
# DIVIDENDS AND FEES
# =============================================================================

class TestDividendsAndFees:
    """Tests for reinvestments and cash events."""

    def test_reinvested_dividend_opens_lot(self, tracker):
        transactions = [buy(1, date(2024, 1, 1), "10", "10")]
        dividends = [
            MockDividend(
                id=1,
                ex_dividend_date=date(2024, 3, 1),
                total_amount=Decimal("5"),
                buy_order_date=date(2024, 3, 5),
                reinvestment_shares=Decimal("0.5"),
                reinvestment_price=Decimal("10"),
            )
        ]

        result = tracker.track(PF_ID, transactions, dividends)

        assert result.remaining_shares == Decimal("10.5")
        reinvested = result.lots[1]
        assert reinvested.source == EventSource.DIVIDEND
        assert reinvested.open_date == date(2024, 3, 5)

    def test_linked_reinvestment_not_counted_twice(self, tracker):
        transactions = [
            buy(1, date(2024, 1, 1), "10", "10"),
            MockTransaction(2, TransactionType.DIVIDEND, date(2024, 3, 5), Decimal("0.5"), Decimal("10")),
        ]
        dividends = [
            MockDividend(
                id=1,
                ex_dividend_date=date(2024, 3, 1),
                total_amount=Decimal("5"),
                buy_order_date=date(2024, 3, 5),
                reinvestment_shares=Decimal("0.5"),
                reinvestment_price=Decimal("10"),
                reinvestment_transaction_id=2,
            )
        ]

        result = tracker.track(PF_ID, transactions, dividends)

        assert result.remaining_shares == Decimal("10.5")
        assert len(result.lots) == 2

    def test_cash_dividend_has_no_lot_effect(self, tracker):
        transactions = [buy(1, date(2024, 1, 1), "10", "10")]
        dividends = [MockDividend(id=1, ex_dividend_date=date(2024, 3, 1), total_amount=Decimal("5"))]

        result = tracker.track(PF_ID, transactions, dividends)

        assert result.remaining_shares == Decimal("10")
        assert len(result.cash_dividends) == 1
        assert result.cash_dividends[0].amount == Decimal("5")
        assert result.cash_dividends[0].date == date(2024, 3, 1)

    def test_fee_is_cash_flow(self, tracker):
        transactions = [
            buy(1, date(2024, 1, 1), "10", "10"),
            MockTransaction(2, TransactionType.FEE, date(2024, 1, 2), Decimal("0"), Decimal("2.50")),
        ]

        result = tracker.track(PF_ID, transactions)

        assert result.remaining_shares == Decimal("10")
        assert [f.amount for f in result.fees] == [Decimal("2.50")]


# =============================================================================
# EVENT MAPPING
# =============================================================================

class TestEventMapping:
    """The transaction type mapping is closed."""

    def test_every_transaction_type_is_mapped(self):
        assert set(TRANSACTION_EVENT_KINDS) == set(TransactionType)

    @pytest.mark.parametrize("transaction_type", list(TransactionType))
    def test_every_transaction_type_is_processed(self, tracker, transaction_type):
        transactions = [
            buy(1, date(2024, 1, 1), "10", "10"),
            MockTransaction(2, transaction_type, date(2024, 2, 1), Decimal("1"), Decimal("10")),
        ]

        result = tracker.track(PF_ID, transactions)

        assert result.portfolio_fund_id == PF_ID

    def test_unknown_type_is_inconsistent(self, tracker):
        transactions = [
            MockTransaction(1, "TRANSFER", date(2024, 1, 1), Decimal("1"), Decimal("10")),
        ]

        with pytest.raises(InconsistentLedgerError):
            tracker.track(PF_ID, transactions)

    def test_non_positive_buy_is_inconsistent(self, tracker):
        with pytest.raises(InconsistentLedgerError):
            tracker.track(PF_ID, [buy(1, date(2024, 1, 1), "0", "10")])

    def test_zero_share_reinvestment_is_logged_with_context(self, tracker, caplog):
        dividend = MockDividend(
            id=4,
            ex_dividend_date=date(2024, 2, 1),
            total_amount=Decimal("5"),
            buy_order_date=date(2024, 2, 5),
            reinvestment_shares=Decimal("0"),
            reinvestment_price=Decimal("10"),
        )

        with caplog.at_level(logging.ERROR, logger="portfolio_engine.services.valuation.lot_tracker"):
            with pytest.raises(InconsistentLedgerError) as exc_info:
                tracker.track(PF_ID, [buy(1, date(2024, 1, 1), "10", "10")], [dividend])

        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert record.ledger_context["portfolio_fund_id"] == PF_ID
        assert record.ledger_context["event_id"] == 4
        assert record.ledger_context["source"] == "DIVIDEND"
        assert record.ledger_context["kind"] == "REINVESTMENT"
        assert exc_info.value.context == record.ledger_context

    def test_unknown_type_is_logged(self, tracker, caplog):
        transactions = [
            MockTransaction(1, "TRANSFER", date(2024, 1, 1), Decimal("1"), Decimal("10")),
        ]

        with caplog.at_level(logging.ERROR, logger="portfolio_engine.services.valuation.lot_tracker"):
            with pytest.raises(InconsistentLedgerError):
                tracker.track(PF_ID, transactions)

        assert caplog.records[-1].ledger_context == {
            "portfolio_fund_id": PF_ID,
            "transaction_id": 1,
            "type": "TRANSFER",
        }
