# backend/portfolio_engine/services/constants.py
"""
Centralized constants for the portfolio engine services.

Usage:
    from portfolio_engine.services.constants import ZERO, CURRENCY_PRECISION
"""

from decimal import Decimal


# =============================================================================
# CACHE SETTINGS
# =============================================================================

# Default bound on materialized snapshots held in memory.
# One entry per (portfolio, date): 5000 entries covers ~13 years of daily
# history for a single portfolio, or a year for a dozen portfolios.
SNAPSHOT_CACHE_MAX_SIZE: int = 5000


# =============================================================================
# RESOURCE LIMIT CONSTANTS
# =============================================================================

# Maximum date range for history queries (days)
# 20 years of daily data = ~7,305 snapshots
MAX_HISTORY_DAYS: int = 365 * 20 + 5  # 20 years with leap year buffer


# =============================================================================
# DECIMAL PRECISION CONSTANTS
# =============================================================================
# The engine never rounds internally; these are for callers and for
# comparisons that are defined on rounded amounts.

# Currency amounts: 2 decimal places (e.g., $1234.56)
# Used for: reinvestment status (reinvested amount vs dividend amount)
CURRENCY_PRECISION: Decimal = Decimal("0.01")

# Share quantities and FX rates: 8 decimal places, matching Numeric(18, 8)
SHARE_PRECISION: Decimal = Decimal("0.00000001")


# =============================================================================
# UTILITY CONSTANTS
# =============================================================================

# Type-safe zero for Decimal comparisons
ZERO: Decimal = Decimal("0")

# Identity exchange rate (from_currency == to_currency)
ONE: Decimal = Decimal("1")
