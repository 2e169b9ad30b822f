# backend/tests/services/test_ledger_writer.py
"""
Tests for LedgerWriter.

Every write must regenerate realized records, commit atomically and
invalidate the cached snapshots it affects.
"""

import logging
from datetime import date
from decimal import Decimal

import pytest

from portfolio_engine.models import (
    Dividend,
    DividendType,
    ReinvestmentStatus,
    Transaction,
    TransactionType,
)
from portfolio_engine.services import derive_reinvestment_status
from portfolio_engine.services.exceptions import (
    InsufficientSharesError,
    NotFoundError,
    PortfolioFundNotFoundError,
    ValidationError,
)
from conftest import (
    create_fund,
    create_fund_price,
    create_portfolio,
    create_portfolio_fund,
)


@pytest.fixture
def holding(db):
    portfolio = create_portfolio(db)
    fund = create_fund(db, dividend_type=DividendType.STOCK)
    portfolio_fund = create_portfolio_fund(db, portfolio, fund)
    create_fund_price(db, fund, date(2024, 1, 1), Decimal("10"))
    return portfolio, fund, portfolio_fund


def buy(writer, db, portfolio_fund, on: date, shares: str, price: str) -> Transaction:
    return writer.add_transaction(
        db, portfolio_fund.id, TransactionType.BUY, on, Decimal(shares), Decimal(price)
    )


def sell(writer, db, portfolio_fund, on: date, shares: str, price: str) -> Transaction:
    return writer.add_transaction(
        db, portfolio_fund.id, TransactionType.SELL, on, Decimal(shares), Decimal(price)
    )


class TestTransactions:
    """Tests for transaction writes."""

    def test_sell_regenerates_realized(self, writer, db, ledger, holding):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        buy(writer, db, portfolio_fund, date(2024, 2, 1), "5", "12")
        sell(writer, db, portfolio_fund, date(2024, 3, 1), "8", "15")

        stored = ledger.list_realized_gain_loss(portfolio_fund.id)

        assert len(stored) == 1
        assert stored[0].proceeds == Decimal("120")
        assert stored[0].cost_basis == Decimal("80")
        assert stored[0].gain_loss == Decimal("40")

    def test_engine_read_sees_written_records(self, writer, engine, db, ledger, holding):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        sell(writer, db, portfolio_fund, date(2024, 3, 1), "4", "15")

        records = engine.get_realized_gain_loss(ledger, portfolio_fund.id)

        assert [r.gain_loss for r in records] == [Decimal("20")]
        assert not db.new and not db.dirty and not db.deleted

    def test_oversized_sell_is_rolled_back(self, writer, db, ledger, holding):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "15", "10")

        with pytest.raises(InsufficientSharesError) as exc_info:
            sell(writer, db, portfolio_fund, date(2024, 3, 1), "20", "15")

        assert exc_info.value.shortfall == Decimal("5")
        assert len(ledger.list_transactions(portfolio_fund.id)) == 1
        assert ledger.list_realized_gain_loss(portfolio_fund.id) == []

    def test_backdated_sell_invalidates_from_its_date(self, writer, engine, db, ledger, holding):
        portfolio, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        engine.get_snapshot(ledger, portfolio.id, date(2024, 1, 10))
        engine.get_snapshot(ledger, portfolio.id, date(2024, 1, 20))

        sell(writer, db, portfolio_fund, date(2024, 1, 15), "4", "10")

        assert engine.cache.dates_for(portfolio.id) == [date(2024, 1, 10)]
        assert engine.get_snapshot(ledger, portfolio.id, date(2024, 1, 20)).total_value == Decimal("60")

    def test_update_moves_date(self, writer, engine, db, ledger, holding):
        portfolio, _, portfolio_fund = holding
        txn = buy(writer, db, portfolio_fund, date(2024, 1, 10), "10", "10")
        engine.get_snapshot(ledger, portfolio.id, date(2024, 1, 5))

        writer.update_transaction(db, txn.id, transaction_date=date(2024, 1, 2))

        assert engine.cache.dates_for(portfolio.id) == []
        assert engine.get_snapshot(ledger, portfolio.id, date(2024, 1, 5)).total_value == Decimal("100")

    def test_update_that_breaks_a_later_sell_fails(self, writer, db, ledger, holding):
        _, _, portfolio_fund = holding
        txn = buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        sell(writer, db, portfolio_fund, date(2024, 2, 1), "8", "12")

        with pytest.raises(InsufficientSharesError):
            writer.update_transaction(db, txn.id, shares=Decimal("5"))

        assert db.get(Transaction, txn.id).shares == Decimal("10")

    def test_delete_regenerates_realized(self, writer, db, ledger, holding):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        txn = sell(writer, db, portfolio_fund, date(2024, 2, 1), "4", "12")

        writer.delete_transaction(db, txn.id)

        assert ledger.list_realized_gain_loss(portfolio_fund.id) == []
        assert len(ledger.list_transactions(portfolio_fund.id)) == 1

    def test_delete_needed_buy_fails(self, writer, db, ledger, holding):
        _, _, portfolio_fund = holding
        txn = buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        sell(writer, db, portfolio_fund, date(2024, 2, 1), "4", "12")

        with pytest.raises(InsufficientSharesError):
            writer.delete_transaction(db, txn.id)

        assert len(ledger.list_transactions(portfolio_fund.id)) == 2

    @pytest.mark.parametrize("shares,price", [("0", "10"), ("-1", "10"), ("1", "0")])
    def test_non_positive_values_rejected(self, writer, db, holding, shares, price):
        _, _, portfolio_fund = holding

        with pytest.raises(ValidationError):
            buy(writer, db, portfolio_fund, date(2024, 1, 1), shares, price)

    def test_fee_needs_positive_amount_only(self, writer, db, ledger, holding):
        _, _, portfolio_fund = holding

        writer.add_transaction(
            db, portfolio_fund.id, TransactionType.FEE, date(2024, 1, 1), Decimal("0"), Decimal("2")
        )

        assert len(ledger.list_transactions(portfolio_fund.id)) == 1

    def test_unknown_portfolio_fund(self, writer, db):
        with pytest.raises(PortfolioFundNotFoundError):
            writer.add_transaction(
                db, 999, TransactionType.BUY, date(2024, 1, 1), Decimal("1"), Decimal("1")
            )

    def test_unknown_transaction(self, writer, db):
        with pytest.raises(NotFoundError):
            writer.delete_transaction(db, 999)


def add_dividend(writer, db, portfolio_fund, ex_date: date, per_share: str, **reinvestment) -> Dividend:
    return writer.add_dividend(db, portfolio_fund.id, ex_date, ex_date, Decimal(per_share), **reinvestment)


class TestDividends:
    """Tests for dividend writes."""

    def test_shares_owned_from_lots(self, writer, db, holding):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        sell(writer, db, portfolio_fund, date(2024, 2, 1), "4", "12")
        buy(writer, db, portfolio_fund, date(2024, 4, 1), "20", "10")

        dividend = add_dividend(writer, db, portfolio_fund, date(2024, 3, 1), "0.5")

        assert dividend.shares_owned == Decimal("6")
        assert dividend.total_amount == Decimal("3")
        assert dividend.reinvestment_status == ReinvestmentStatus.PENDING

    def test_reinvested_dividend_opens_lot(self, writer, engine, db, ledger, holding):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")

        dividend = add_dividend(
            writer, db, portfolio_fund, date(2024, 3, 1), "1",
            buy_order_date=date(2024, 3, 5),
            reinvestment_shares=Decimal("1"),
            reinvestment_price=Decimal("10"),
        )

        assert dividend.reinvestment_status == ReinvestmentStatus.COMPLETED
        assert engine.get_lots(ledger, portfolio_fund.id).remaining_shares == Decimal("11")

    def test_clearing_reinvestment(self, writer, engine, db, ledger, holding):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        dividend = add_dividend(
            writer, db, portfolio_fund, date(2024, 3, 1), "1",
            buy_order_date=date(2024, 3, 5),
            reinvestment_shares=Decimal("0.5"),
            reinvestment_price=Decimal("10"),
        )
        assert dividend.reinvestment_status == ReinvestmentStatus.PARTIAL

        writer.update_dividend_reinvestment(db, dividend.id, None, None, None)

        assert dividend.reinvestment_status == ReinvestmentStatus.PENDING
        assert engine.get_lots(ledger, portfolio_fund.id).remaining_shares == Decimal("10")

    def test_update_recomputes_amounts_after_backdated_buy(self, writer, engine, db, ledger, holding):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        dividend = add_dividend(writer, db, portfolio_fund, date(2024, 3, 1), "1")
        buy(writer, db, portfolio_fund, date(2024, 2, 1), "5", "10")
        assert dividend.total_amount == Decimal("10")

        writer.update_dividend_reinvestment(
            db, dividend.id, date(2024, 3, 5), Decimal("1.5"), Decimal("10")
        )

        # 15 shares held on the ex-date × 1 = 15, fully reinvested as 1.5 × 10
        assert dividend.shares_owned == Decimal("15")
        assert dividend.total_amount == Decimal("15")
        assert dividend.reinvestment_status == ReinvestmentStatus.COMPLETED
        assert engine.get_lots(ledger, portfolio_fund.id).remaining_shares == Decimal("16.5")

    def test_update_ignores_own_reinvestment_lot(self, writer, db, holding):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        reinvestment = dict(
            buy_order_date=date(2024, 3, 1),
            reinvestment_shares=Decimal("1"),
            reinvestment_price=Decimal("10"),
        )
        dividend = add_dividend(writer, db, portfolio_fund, date(2024, 3, 1), "1", **reinvestment)

        writer.update_dividend_reinvestment(db, dividend.id, **reinvestment)

        assert dividend.shares_owned == Decimal("10")
        assert dividend.reinvestment_status == ReinvestmentStatus.COMPLETED

    def test_delete_dividend(self, writer, db, ledger, holding):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        dividend = add_dividend(writer, db, portfolio_fund, date(2024, 3, 1), "0.5")

        writer.delete_dividend(db, dividend.id)

        assert ledger.list_dividends(portfolio_fund.id) == []

    def test_unknown_dividend(self, writer, db):
        with pytest.raises(NotFoundError):
            writer.delete_dividend(db, 999)


class TestDividendValidation:
    """Bad dividend input is a ValidationError and leaves the ledger untouched."""

    def test_fund_without_dividends_rejected(self, writer, db, ledger):
        portfolio_fund = create_portfolio_fund(db, create_portfolio(db), create_fund(db))
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")

        with pytest.raises(ValidationError) as exc_info:
            add_dividend(writer, db, portfolio_fund, date(2024, 3, 1), "0.5")

        assert exc_info.value.field == "dividend_type"
        assert ledger.list_dividends(portfolio_fund.id) == []

    @pytest.mark.parametrize("shares,price,field", [
        ("0", "10", "reinvestment_shares"),
        ("-1", "10", "reinvestment_shares"),
        ("1", "0", "reinvestment_price"),
    ])
    def test_non_positive_reinvestment_rejected(self, writer, db, ledger, holding, caplog, shares, price, field):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(ValidationError) as exc_info:
                add_dividend(
                    writer, db, portfolio_fund, date(2024, 2, 1), "0.5",
                    buy_order_date=date(2024, 2, 5),
                    reinvestment_shares=Decimal(shares),
                    reinvestment_price=Decimal(price),
                )

        assert exc_info.value.field == field
        assert [r for r in caplog.records if r.levelno >= logging.ERROR] == []
        assert ledger.list_dividends(portfolio_fund.id) == []

    @pytest.mark.parametrize("reinvestment", [
        {"reinvestment_shares": Decimal("1"), "reinvestment_price": Decimal("10")},
        {"buy_order_date": date(2024, 2, 5)},
    ])
    def test_incomplete_reinvestment_rejected(self, writer, db, ledger, holding, reinvestment):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")

        with pytest.raises(ValidationError) as exc_info:
            add_dividend(writer, db, portfolio_fund, date(2024, 2, 1), "0.5", **reinvestment)

        assert exc_info.value.field == "reinvestment"
        assert ledger.list_dividends(portfolio_fund.id) == []

    def test_update_with_non_positive_reinvestment_keeps_dividend(self, writer, db, holding):
        _, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        dividend = add_dividend(writer, db, portfolio_fund, date(2024, 2, 1), "0.5")

        with pytest.raises(ValidationError):
            writer.update_dividend_reinvestment(db, dividend.id, date(2024, 2, 5), Decimal("0"), Decimal("10"))

        db.refresh(dividend)
        assert dividend.buy_order_date is None
        assert dividend.reinvestment_status == ReinvestmentStatus.PENDING

    def test_cash_fund_dividend_is_completed_without_lot(self, writer, engine, db, ledger):
        fund = create_fund(db, dividend_type=DividendType.CASH)
        portfolio_fund = create_portfolio_fund(db, create_portfolio(db), fund)
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")

        dividend = add_dividend(writer, db, portfolio_fund, date(2024, 3, 1), "0.5")

        assert dividend.reinvestment_status == ReinvestmentStatus.COMPLETED
        assert engine.get_lots(ledger, portfolio_fund.id).remaining_shares == Decimal("10")

    def test_cash_fund_rejects_reinvestment(self, writer, db, ledger):
        fund = create_fund(db, dividend_type=DividendType.CASH)
        portfolio_fund = create_portfolio_fund(db, create_portfolio(db), fund)
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")

        with pytest.raises(ValidationError):
            add_dividend(
                writer, db, portfolio_fund, date(2024, 3, 1), "0.5",
                buy_order_date=date(2024, 3, 5),
                reinvestment_shares=Decimal("0.5"),
                reinvestment_price=Decimal("10"),
            )

        assert ledger.list_dividends(portfolio_fund.id) == []


def make_dividend(
        total: str,
        buy_order_date: date | None = None,
        shares: str | None = None,
        price: str | None = None,
) -> Dividend:
    return Dividend(
        total_amount=Decimal(total),
        buy_order_date=buy_order_date,
        reinvestment_shares=Decimal(shares) if shares is not None else None,
        reinvestment_price=Decimal(price) if price is not None else None,
    )


class TestReinvestmentStatus:

    def test_pending_without_reinvestment(self):
        status = derive_reinvestment_status(make_dividend("10"), DividendType.STOCK)

        assert status == ReinvestmentStatus.PENDING

    def test_pending_without_buy_order_date(self):
        # No buy order means no lot was opened, whatever shares/price say
        dividend = make_dividend("10", shares="0.5", price="20")

        assert derive_reinvestment_status(dividend, DividendType.STOCK) == ReinvestmentStatus.PENDING

    def test_completed_when_amounts_match_to_the_cent(self):
        dividend = make_dividend("10.004", date(2024, 3, 5), "0.5", "20.001")

        assert derive_reinvestment_status(dividend, DividendType.STOCK) == ReinvestmentStatus.COMPLETED

    def test_partial_when_amounts_differ(self):
        dividend = make_dividend("10", date(2024, 3, 5), "0.4", "20")

        assert derive_reinvestment_status(dividend, DividendType.STOCK) == ReinvestmentStatus.PARTIAL

    def test_cash_dividend_is_completed(self):
        assert derive_reinvestment_status(make_dividend("10"), DividendType.CASH) == ReinvestmentStatus.COMPLETED


class TestMarketData:
    """Price and rate writes invalidate the portfolios they affect."""

    def test_price_write_invalidates_holders_only(self, writer, engine, db, ledger, holding):
        portfolio, fund, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")

        other = create_portfolio(db, name="Other")
        other_fund = create_fund(db, name="Other Fund")
        other_pf = create_portfolio_fund(db, other, other_fund)
        create_fund_price(db, other_fund, date(2024, 1, 1), Decimal("5"))
        buy(writer, db, other_pf, date(2024, 1, 1), "1", "5")

        engine.get_snapshot(ledger, portfolio.id, date(2024, 1, 10))
        engine.get_snapshot(ledger, other.id, date(2024, 1, 10))

        writer.set_fund_price(db, fund.id, date(2024, 1, 5), Decimal("11"))

        assert engine.cache.dates_for(portfolio.id) == []
        assert engine.cache.dates_for(other.id) == [date(2024, 1, 10)]
        assert engine.get_snapshot(ledger, portfolio.id, date(2024, 1, 10)).total_value == Decimal("110")

    def test_price_upsert(self, writer, db, ledger, holding):
        _, fund, _ = holding

        writer.set_fund_price(db, fund.id, date(2024, 1, 1), Decimal("10.5"))

        assert ledger.get_fund_price(fund.id, date(2024, 1, 1)).price == Decimal("10.5")

    def test_rate_write_invalidates_everything_from_date(self, writer, engine, db, ledger, holding):
        portfolio, _, portfolio_fund = holding
        buy(writer, db, portfolio_fund, date(2024, 1, 1), "10", "10")
        engine.get_snapshot(ledger, portfolio.id, date(2024, 1, 2))
        engine.get_snapshot(ledger, portfolio.id, date(2024, 1, 10))

        writer.set_exchange_rate(db, "usd", "eur", date(2024, 1, 5), Decimal("0.92"))

        assert engine.cache.dates_for(portfolio.id) == [date(2024, 1, 2)]
        assert ledger.get_exchange_rate("USD", "EUR", date(2024, 1, 5)).rate == Decimal("0.92")

    def test_non_positive_price_rejected(self, writer, db, holding):
        _, fund, _ = holding

        with pytest.raises(ValidationError):
            writer.set_fund_price(db, fund.id, date(2024, 1, 1), Decimal("0"))
