# backend/portfolio_engine/services/__init__.py
"""
Service layer of the portfolio engine.

Services:
- Have NO knowledge of any transport (HTTP, CLI)
- Raise domain-specific exceptions
- Receive the ledger (or a database session) as a parameter on every call
- Are easily testable via dependency injection

Usage:
    from portfolio_engine.services import PortfolioEngine, LedgerWriter, SqlLedgerStore
    from portfolio_engine.services import (
        InsufficientSharesError,
        NoPriceAvailableError,
        NoRateAvailableError,
    )

Architecture:
    services/
    ├── __init__.py                  # This file - main exports
    ├── exceptions.py                # Domain exceptions
    ├── constants.py                 # Business constants and limits
    ├── protocols.py                 # Service interfaces (Protocol classes)
    ├── currency_converter.py        # Historical currency conversion
    ├── ledger_store.py              # SQLAlchemy-backed ledger reads
    ├── ledger_writer.py             # Ledger edits + realized regeneration + invalidation
    ├── engine.py                    # PortfolioEngine facade
    ├── valuation/                   # Point-in-time valuation
    │   ├── types.py                 # Valuation data types
    │   ├── lot_tracker.py           # FIFO lot replay
    │   ├── realized.py              # Realized gain/loss records
    │   ├── calculators.py           # Market value, cost basis, cash flows
    │   └── service.py               # ValuationService (orchestrator)
    └── materialization/             # Snapshot cache and history
        ├── cache.py                 # Bounded, single-flight snapshot store
        └── service.py               # Snapshot and history queries
"""

from portfolio_engine.services.currency_converter import CurrencyConverter, RateResult
from portfolio_engine.services.engine import PortfolioEngine
# Exceptions
from portfolio_engine.services.exceptions import (
    # Base exceptions
    ServiceError,
    ValidationError,
    NotFoundError,
    # Lookup
    PortfolioNotFoundError,
    PortfolioFundNotFoundError,
    InvalidDateRangeError,
    # Ledger integrity
    LedgerError,
    InsufficientSharesError,
    InconsistentLedgerError,
    # Missing market data
    IncompleteDataError,
    NoPriceAvailableError,
    NoRateAvailableError,
)
from portfolio_engine.services.ledger_store import SqlLedgerStore
from portfolio_engine.services.ledger_writer import LedgerWriter, derive_reinvestment_status
from portfolio_engine.services.materialization import MaterializationService, SnapshotCache
from portfolio_engine.services.valuation import ValuationService

__all__ = [
    # Entry points
    "PortfolioEngine",
    "LedgerWriter",
    "derive_reinvestment_status",
    "SqlLedgerStore",

    # Building blocks
    "ValuationService",
    "MaterializationService",
    "SnapshotCache",
    "CurrencyConverter",
    "RateResult",

    # Exceptions
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "PortfolioNotFoundError",
    "PortfolioFundNotFoundError",
    "InvalidDateRangeError",
    "LedgerError",
    "InsufficientSharesError",
    "InconsistentLedgerError",
    "IncompleteDataError",
    "NoPriceAvailableError",
    "NoRateAvailableError",
]
