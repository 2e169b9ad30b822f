# backend/portfolio_engine/services/currency_converter.py
"""
Currency conversion against the ledger's exchange-rate table.

=============================================================================
RATE CONVENTION
=============================================================================

    rate = "1 from_currency = X to_currency"

Example:
    from_currency = "USD"
    to_currency = "EUR"
    rate = 0.92

    Meaning: 1 USD = 0.92 EUR
    Conversion: EUR_amount = USD_amount × rate

=============================================================================

Lookup rule:
- Identity (from == to) is always rate 1, with no lookup
- Otherwise the most recent rate with date <= requested date is used;
  falling back to a prior date is normal behavior, not an error
- When the pair is only stored the other way round (to → from), that
  rate is used inverted: amounts are divided by it
- Only a total absence of any prior rate in either direction raises
  NoRateAvailableError

No rounding is applied; rounding is a presentation concern.

Usage:
    converter = CurrencyConverter()

    eur = converter.convert(ledger, Decimal("100"), "USD", "EUR", date(2024, 3, 15))

    result = converter.get_rate(ledger, "USD", "EUR", date(2024, 3, 16))
    result.rate            # Decimal("0.92")
    result.actual_date     # date(2024, 3, 15) - Friday rate used on Saturday
    result.is_exact_match  # False
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from portfolio_engine.services.constants import ONE
from portfolio_engine.services.exceptions import NoRateAvailableError

if TYPE_CHECKING:
    from portfolio_engine.services.protocols import LedgerStoreProtocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateResult:
    """Result of an exchange-rate lookup."""

    from_currency: str
    to_currency: str
    date: date
    rate: Decimal
    actual_date: date  # The date the rate is actually from
    inverse_rate: Decimal | None = None  # Stored to → from rate, when the pair was inverted

    @property
    def is_exact_match(self) -> bool:
        """False if a prior date's rate was used."""
        return self.actual_date == self.date

    @property
    def is_inverse(self) -> bool:
        return self.inverse_rate is not None

    def apply(self, amount: Decimal) -> Decimal:
        """Convert an amount; inverted pairs divide by the stored rate."""
        if self.inverse_rate is not None:
            return amount / self.inverse_rate
        return amount * self.rate


class CurrencyConverter:
    """
    Resolves amounts between currencies as of a date.

    Stateless; the ledger is passed per call so one converter can be
    shared across requests.
    """

    def get_rate(
            self,
            ledger: LedgerStoreProtocol,
            from_currency: str,
            to_currency: str,
            on_date: date,
    ) -> RateResult:
        """
        Get the rate valid on a date.

        Args:
            ledger: Ledger store to read rates from
            from_currency: Source currency (e.g., "USD")
            to_currency: Target currency (e.g., "EUR")
            on_date: Date the rate must be valid on

        Returns:
            RateResult with the rate and the date it is from

        Raises:
            NoRateAvailableError: No rate on or before on_date
        """
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()

        if from_currency == to_currency:
            return RateResult(
                from_currency=from_currency,
                to_currency=to_currency,
                date=on_date,
                rate=ONE,
                actual_date=on_date,
            )

        row = ledger.get_exchange_rate(from_currency, to_currency, on_date)
        inverse = None
        if row is None:
            inverse = ledger.get_exchange_rate(to_currency, from_currency, on_date)
        if row is None and inverse is None:
            logger.warning(f"No exchange rate for {from_currency}/{to_currency} on or before {on_date}")
            raise NoRateAvailableError(from_currency, to_currency, on_date)

        if inverse is not None:
            logger.debug(
                f"Using inverted {to_currency}/{from_currency} rate from {inverse.date} for {on_date}"
            )
            return RateResult(
                from_currency=from_currency,
                to_currency=to_currency,
                date=on_date,
                rate=ONE / inverse.rate,
                actual_date=inverse.date,
                inverse_rate=inverse.rate,
            )

        if row.date != on_date:
            logger.debug(
                f"Using {from_currency}/{to_currency} rate from {row.date} for {on_date}"
            )

        return RateResult(
            from_currency=from_currency,
            to_currency=to_currency,
            date=on_date,
            rate=row.rate,
            actual_date=row.date,
        )

    def get_rate_or_none(
            self,
            ledger: LedgerStoreProtocol,
            from_currency: str,
            to_currency: str,
            on_date: date,
    ) -> RateResult | None:
        """
        Get the rate valid on a date, returning None instead of raising.
        """
        try:
            return self.get_rate(ledger, from_currency, to_currency, on_date)
        except NoRateAvailableError:
            return None

    def convert(
            self,
            ledger: LedgerStoreProtocol,
            amount: Decimal,
            from_currency: str,
            to_currency: str,
            on_date: date,
    ) -> Decimal:
        """
        Convert an amount as of a date.

        Returns:
            amount × rate (or amount ÷ inverse rate), unrounded; amount
            itself for identity conversions

        Raises:
            NoRateAvailableError: No rate on or before on_date in either direction
        """
        if from_currency.upper() == to_currency.upper():
            return amount

        return self.get_rate(ledger, from_currency, to_currency, on_date).apply(amount)
