"""
services/currency_service.py — Currency Conversion Resolver.

Turns (amount, from, to, date, mode) into a ConvertedAmount.

Rules:
  - Same currency: identity, rate 1, the provider is never called.
  - SIMPLE (and OFF, whose percentage/netting math still needs one
    currency): the provider's LATEST rate; rate_source CURRENT.
  - SMART: the rate as of the expense date; rate_source HISTORICAL, or
    HISTORICAL_NEAREST when the provider substituted an earlier date.
  - Provider failure or no rate: `converted` is None. Never raises.

No caching or batching happens here. Callers that convert many amounts
(balance_service) look a rate up once per distinct (currency, date) pair
with quote() and apply it to every amount with apply().
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from fairshare.app.errors import RateProviderError
from fairshare.app.services.money import quantize
from fairshare.app.services.rate_provider import RateProvider
from fairshare.app.services.types import (
    LATEST,
    ConversionMode,
    ConvertedAmount,
    Money,
    RateQuote,
    RateSource,
)

logger = logging.getLogger(__name__)


def rate_key(on: date, mode: ConversionMode):
    """The provider date argument for a lookup: the expense date in SMART mode, else LATEST."""
    return on if mode == ConversionMode.SMART else LATEST


class CurrencyResolver:

    def __init__(self, provider: RateProvider) -> None:
        self._provider = provider

    def quote(
            self,
            from_currency: str,
            to_currency: str,
            on: date,
            mode: ConversionMode,
    ) -> RateQuote | None:
        """Asks the provider for one rate. Failures are logged and reported as None."""
        as_of = rate_key(on, mode)
        try:
            quote = self._provider.get_rate(from_currency, to_currency, as_of)
        except RateProviderError as exc:
            logger.warning(
                "Exchange rate unavailable",
                extra={"extra_data": {
                    "from": from_currency,
                    "to": to_currency,
                    "as_of": str(as_of),
                    "reason": str(exc),
                }},
            )
            return None
        except Exception:
            logger.exception(
                "Exchange rate provider failed",
                extra={"extra_data": {
                    "from": from_currency,
                    "to": to_currency,
                    "as_of": str(as_of),
                }},
            )
            return None

        if quote is None:
            logger.warning(
                "Exchange rate provider has no rate",
                extra={"extra_data": {
                    "from": from_currency,
                    "to": to_currency,
                    "as_of": str(as_of),
                }},
            )
        return quote

    @staticmethod
    def apply(
            amount: Decimal,
            from_currency: str,
            to_currency: str,
            on: date,
            mode: ConversionMode,
            quote: RateQuote | None,
    ) -> ConvertedAmount:
        """Builds the ConvertedAmount for `amount` from an already fetched quote."""
        original = Money(amount, from_currency)

        if from_currency == to_currency:
            return ConvertedAmount(
                original=original,
                converted=Money(amount, to_currency),
                rate=Decimal("1"),
            )

        if quote is None:
            return ConvertedAmount(original=original, converted=None)

        if mode == ConversionMode.SMART:
            source = (
                RateSource.HISTORICAL if quote.as_of == on
                else RateSource.HISTORICAL_NEAREST
            )
        else:
            source = RateSource.CURRENT

        return ConvertedAmount(
            original=original,
            converted=Money(quantize(amount * quote.rate, to_currency), to_currency),
            rate=quote.rate,
            rate_date=quote.as_of,
            rate_source=source,
        )

    def resolve(
            self,
            amount: Decimal,
            from_currency: str,
            to_currency: str,
            on: date,
            mode: ConversionMode,
    ) -> ConvertedAmount:
        if from_currency == to_currency:
            return self.apply(amount, from_currency, to_currency, on, mode, None)
        quote = self.quote(from_currency, to_currency, on, mode)
        return self.apply(amount, from_currency, to_currency, on, mode, quote)
