# backend/portfolio_engine/services/valuation/__init__.py
"""
Valuation Package.

This package turns a portfolio's ledger into lots, realized gains and
point-in-time valuations:
- Lot replay (LotTracker.track)
- Realized gain/loss records (RealizedGainLossCalculator.calculate)
- Single date valuation (ValuationService.valuate)

Usage:
    from portfolio_engine.services.valuation import ValuationService

    service = ValuationService()
    valuation = service.valuate(ledger, portfolio_id=1, valuation_date=date(2024, 3, 15))
    lots = service.track_lots(ledger, portfolio_fund_id=7, as_of=date(2024, 3, 15))

Architecture:
    valuation/
    ├── __init__.py      # This file - package exports
    ├── types.py         # Frozen result types
    ├── lot_tracker.py   # FIFO lot replay
    ├── realized.py      # Realized gain/loss records + invariant checks
    ├── calculators.py   # Value / cost basis / realized / cash calculators
    └── service.py       # ValuationService (orchestrator)

Data Flow:
    Transactions + Dividends → LotTracker → LotTrackingResult
    LotTrackingResult → RealizedGainLossCalculator → RealizedGainLossRecord[]
    Lots + Prices + Rates → calculators → FundValuation → PortfolioValuation
"""

from portfolio_engine.services.valuation.calculators import (
    CashFlowCalculator,
    CostBasisCalculator,
    MarketValueCalculator,
    RealizedTotalsCalculator,
)
from portfolio_engine.services.valuation.lot_tracker import LotTracker
from portfolio_engine.services.valuation.realized import RealizedGainLossCalculator
from portfolio_engine.services.valuation.service import ValuationService
from portfolio_engine.services.valuation.types import (
    CashFlow,
    Disposal,
    EventKind,
    EventSource,
    FundHistory,
    FundSnapshot,
    FundValuation,
    LedgerEvent,
    Lot,
    LotTrackingResult,
    MaterializedSnapshot,
    PortfolioHistory,
    PortfolioValuation,
    RealizedGainLossRecord,
)

__all__ = [
    # Main service
    "ValuationService",

    # Data types
    "CashFlow",
    "Disposal",
    "EventKind",
    "EventSource",
    "FundHistory",
    "FundSnapshot",
    "FundValuation",
    "LedgerEvent",
    "Lot",
    "LotTrackingResult",
    "MaterializedSnapshot",
    "PortfolioHistory",
    "PortfolioValuation",
    "RealizedGainLossRecord",

    # Calculators (for testing)
    "LotTracker",
    "RealizedGainLossCalculator",
    "MarketValueCalculator",
    "CostBasisCalculator",
    "RealizedTotalsCalculator",
    "CashFlowCalculator",
]
