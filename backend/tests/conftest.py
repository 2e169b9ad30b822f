# backend/tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Database session fixtures (in-memory SQLite)
- Engine fixtures with a fresh snapshot cache
- Sample data factories
"""

import os

# Settings are read at import time; tests always run against the test profile
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import date
from decimal import Decimal
from typing import Iterator

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from portfolio_engine.database import create_db_engine, init_db
from portfolio_engine.models import (
    Base,
    Dividend,
    DividendType,
    ExchangeRate,
    Fund,
    FundPrice,
    Portfolio,
    PortfolioFund,
    ReinvestmentStatus,
    Transaction,
    TransactionType,
)
from portfolio_engine.services import (
    LedgerWriter,
    PortfolioEngine,
    SnapshotCache,
    SqlLedgerStore,
)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine() -> Iterator[Engine]:
    """Create an in-memory SQLite database engine for testing."""
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(db_engine) -> Iterator[Session]:
    """Create a database session for testing."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def ledger(db: Session) -> SqlLedgerStore:
    return SqlLedgerStore(db)


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def engine() -> PortfolioEngine:
    """Engine with its own snapshot cache, so tests never share snapshots."""
    return PortfolioEngine(snapshot_cache=SnapshotCache(max_size=1000))


@pytest.fixture
def writer(engine: PortfolioEngine) -> LedgerWriter:
    return LedgerWriter(engine)


# =============================================================================
# SAMPLE DATA FACTORIES
# =============================================================================

def create_portfolio(
        db: Session,
        name: str = "Test Portfolio",
        currency: str = "EUR",
        is_archived: bool = False,
        exclude_from_overview: bool = False,
) -> Portfolio:
    """Factory function for creating Portfolio entities in the database."""
    portfolio = Portfolio(
        name=name,
        currency=currency,
        is_archived=is_archived,
        exclude_from_overview=exclude_from_overview,
    )
    db.add(portfolio)
    db.commit()
    db.refresh(portfolio)
    return portfolio


def create_fund(
        db: Session,
        name: str = "World Equity Fund",
        currency: str = "EUR",
        isin: str | None = None,
        symbol: str | None = None,
        dividend_type: DividendType = DividendType.NONE,
) -> Fund:
    """Factory function for creating Fund entities in the database."""
    fund = Fund(name=name, currency=currency, isin=isin, symbol=symbol, dividend_type=dividend_type)
    db.add(fund)
    db.commit()
    db.refresh(fund)
    return fund


def create_portfolio_fund(db: Session, portfolio: Portfolio, fund: Fund) -> PortfolioFund:
    portfolio_fund = PortfolioFund(portfolio_id=portfolio.id, fund_id=fund.id)
    db.add(portfolio_fund)
    db.commit()
    db.refresh(portfolio_fund)
    return portfolio_fund


def create_transaction(
        db: Session,
        portfolio_fund: PortfolioFund,
        transaction_type: TransactionType,
        transaction_date: date,
        shares: Decimal,
        cost_per_share: Decimal,
) -> Transaction:
    """
    Factory function for creating Transaction entities in the database.

    Inserts directly, bypassing LedgerWriter (no realized regeneration,
    no cache invalidation).
    """
    txn = Transaction(
        portfolio_fund_id=portfolio_fund.id,
        type=transaction_type,
        date=transaction_date,
        shares=shares,
        cost_per_share=cost_per_share,
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


def create_dividend(
        db: Session,
        portfolio_fund: PortfolioFund,
        ex_dividend_date: date,
        shares_owned: Decimal,
        dividend_per_share: Decimal,
        record_date: date | None = None,
        buy_order_date: date | None = None,
        reinvestment_shares: Decimal | None = None,
        reinvestment_price: Decimal | None = None,
        reinvestment_transaction_id: int | None = None,
) -> Dividend:
    """Factory function for creating Dividend entities in the database."""
    dividend = Dividend(
        portfolio_fund_id=portfolio_fund.id,
        record_date=record_date or ex_dividend_date,
        ex_dividend_date=ex_dividend_date,
        shares_owned=shares_owned,
        dividend_per_share=dividend_per_share,
        total_amount=shares_owned * dividend_per_share,
        reinvestment_status=ReinvestmentStatus.PENDING,
        buy_order_date=buy_order_date,
        reinvestment_shares=reinvestment_shares,
        reinvestment_price=reinvestment_price,
        reinvestment_transaction_id=reinvestment_transaction_id,
    )
    db.add(dividend)
    db.commit()
    db.refresh(dividend)
    return dividend


def create_fund_price(db: Session, fund: Fund, price_date: date, price: Decimal) -> FundPrice:
    row = FundPrice(fund_id=fund.id, date=price_date, price=price)
    db.add(row)
    db.commit()
    return row


def create_exchange_rate(
        db: Session,
        from_currency: str,
        to_currency: str,
        rate_date: date,
        rate: Decimal,
) -> ExchangeRate:
    """Factory function for creating ExchangeRate entities (1 from = rate to)."""
    row = ExchangeRate(
        from_currency=from_currency,
        to_currency=to_currency,
        date=rate_date,
        rate=rate,
    )
    db.add(row)
    db.commit()
    return row
