# backend/portfolio_engine/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO HTTP knowledge.
The calling layer is responsible for mapping them to responses. Every error
carries structured attributes (fund, date, shortfall) so callers can render
a precise message.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    │   └── InvalidDateRangeError
    ├── NotFoundError
    │   ├── PortfolioNotFoundError
    │   └── PortfolioFundNotFoundError
    ├── LedgerError
    │   ├── InsufficientSharesError   (user-input error, surfaced verbatim)
    │   └── InconsistentLedgerError   (fatal invariant violation)
    └── IncompleteDataError           ("no data as of this date")
        ├── NoPriceAvailableError
        └── NoRateAvailableError
"""

from datetime import date
from decimal import Decimal
from typing import Any


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when programmatic input validation fails.

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class InvalidDateRangeError(ValidationError):
    """
    Raised when a history range is empty or too long.

    Attributes:
        start_date: Requested first date
        end_date: Requested last date
    """

    def __init__(self, start_date: date, end_date: date, reason: str | None = None) -> None:
        self.start_date = start_date
        self.end_date = end_date
        msg = reason or f"Invalid date range: start {start_date} is after end {end_date}"
        super().__init__(msg, field="start_date")


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "Portfolio")
        resource_id: Identifier of the resource
    """

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: int | str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


class PortfolioNotFoundError(NotFoundError):
    """Raised when a portfolio cannot be found."""

    def __init__(self, portfolio_id: int) -> None:
        self.portfolio_id = portfolio_id
        super().__init__(
            f"Portfolio {portfolio_id} not found",
            resource_type="Portfolio",
            resource_id=portfolio_id,
        )


class PortfolioFundNotFoundError(NotFoundError):
    """Raised when a portfolio-fund link cannot be found."""

    def __init__(self, portfolio_fund_id: int) -> None:
        self.portfolio_fund_id = portfolio_fund_id
        super().__init__(
            f"Portfolio fund {portfolio_fund_id} not found",
            resource_type="PortfolioFund",
            resource_id=portfolio_fund_id,
        )


# =============================================================================
# LEDGER ERRORS
# =============================================================================


class LedgerError(ServiceError):
    """
    Base exception for errors found while replaying a fund's ledger.

    Attributes:
        portfolio_fund_id: The portfolio fund whose history was replayed
    """

    def __init__(self, message: str, portfolio_fund_id: int | None = None) -> None:
        self.portfolio_fund_id = portfolio_fund_id
        super().__init__(message)


class InsufficientSharesError(LedgerError):
    """
    Raised when a sell exceeds the shares held as of its date.

    The engine does not allow negative positions. No lot state is changed
    and no realized gain/loss is produced when this is raised.

    Attributes:
        transaction_id: The offending sell transaction
        sell_date: Date of the sell
        requested: Shares the sell tried to dispose
        available: Shares held across all open lots at that point
        shortfall: requested - available
    """

    def __init__(
            self,
            portfolio_fund_id: int,
            transaction_id: int,
            sell_date: date,
            requested: Decimal,
            available: Decimal,
    ) -> None:
        self.transaction_id = transaction_id
        self.sell_date = sell_date
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        super().__init__(
            f"Insufficient shares for sell {transaction_id} on {sell_date}: "
            f"requested {requested}, available {available}, shortfall {self.shortfall}",
            portfolio_fund_id=portfolio_fund_id,
        )


class InconsistentLedgerError(LedgerError):
    """
    Raised when an invariant is violated during recomputation.

    This is never expected and never silently corrected.

    Attributes:
        context: Structured detail about the violation
    """

    def __init__(
            self,
            message: str,
            portfolio_fund_id: int | None = None,
            context: dict[str, Any] | None = None,
    ) -> None:
        self.context = context or {}
        super().__init__(message, portfolio_fund_id=portfolio_fund_id)


# =============================================================================
# INCOMPLETE DATA ERRORS
# =============================================================================


class IncompleteDataError(ServiceError):
    """
    Base exception for missing market data as of a date.

    Callers should render "no data as of this date" rather than a
    generic failure.

    Attributes:
        as_of: The date for which data was required
    """

    def __init__(self, message: str, as_of: date) -> None:
        self.as_of = as_of
        super().__init__(message)


class NoPriceAvailableError(IncompleteDataError):
    """
    Raised when a fund has no price on or before the requested date.

    Attributes:
        fund_id: The fund lacking a price
    """

    def __init__(self, fund_id: int, price_date: date) -> None:
        self.fund_id = fund_id
        super().__init__(
            f"No price available for fund {fund_id} on or before {price_date}",
            as_of=price_date,
        )


class NoRateAvailableError(IncompleteDataError):
    """
    Raised when no exchange rate exists on or before the requested date.

    Attributes:
        from_currency: Source currency code
        to_currency: Target currency code
    """

    def __init__(self, from_currency: str, to_currency: str, rate_date: date) -> None:
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(
            f"No exchange rate available for {from_currency}/{to_currency} on or before {rate_date}",
            as_of=rate_date,
        )


__all__ = [
    # Base
    "ServiceError",
    # Validation
    "ValidationError",
    "InvalidDateRangeError",
    # Not Found
    "NotFoundError",
    "PortfolioNotFoundError",
    "PortfolioFundNotFoundError",
    # Ledger
    "LedgerError",
    "InsufficientSharesError",
    "InconsistentLedgerError",
    # Incomplete data
    "IncompleteDataError",
    "NoPriceAvailableError",
    "NoRateAvailableError",
]
