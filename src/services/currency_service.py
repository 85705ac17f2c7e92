from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Mapping, Optional, Union

from src.core.config import get_settings
from src.models.performance import coerce_decimal

logger = logging.getLogger(__name__)

DEFAULT_REPORTING_CURRENCY = "NIS"
DEFAULT_RATES_TO_REPORTING: Dict[str, Decimal] = {
    "USD": Decimal("3.7"),
    "EUR": Decimal("4.0"),
    "GBP": Decimal("4.7"),
}
# Codes that are the same currency as the reporting one.
REPORTING_CURRENCY_ALIASES = {
    "NIS": frozenset({"NIS", "ILS", "₪"}),
    "ILS": frozenset({"NIS", "ILS", "₪"}),
}
CURRENCY_SYMBOLS = {
    "₪": "NIS",
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
}
# accounting_currencies ids
CURRENCY_IDS = {
    1: "NIS",
    2: "EUR",
    3: "USD",
    4: "GBP",
}


def parse_rate_overrides(raw: str) -> Dict[str, Decimal]:
    """Parse `USD:3.7,EUR:4.0` into a rate table, skipping malformed entries."""
    rates: Dict[str, Decimal] = {}
    for item in (raw or "").split(","):
        code, separator, value = item.partition(":")
        if not separator:
            continue
        rate = coerce_decimal(value)
        normalized_code = code.strip().upper()
        if not normalized_code or rate is None or rate <= 0:
            continue
        rates[normalized_code] = rate
    return rates


class CurrencyService:
    def __init__(
        self,
        reporting_currency: Optional[str] = None,
        rates: Optional[Mapping[str, Decimal]] = None,
    ) -> None:
        if reporting_currency is None or rates is None:
            settings = get_settings()
            reporting_currency = reporting_currency or settings.reporting_currency
            if rates is None:
                rates = {**DEFAULT_RATES_TO_REPORTING, **parse_rate_overrides(settings.fx_reporting_rates)}
        self.reporting_currency = reporting_currency.strip().upper() or DEFAULT_REPORTING_CURRENCY
        self.rates: Dict[str, Decimal] = {code.upper(): Decimal(rate) for code, rate in rates.items()}
        for alias in REPORTING_CURRENCY_ALIASES.get(self.reporting_currency, {self.reporting_currency}):
            self.rates[alias] = Decimal("1")

    def resolve_currency_code(self, currency: Union[int, str, None]) -> Optional[str]:
        """Map a stored currency value (id, symbol or ISO code) to an ISO code."""
        if currency is None or isinstance(currency, bool):
            return None
        if isinstance(currency, int):
            return CURRENCY_IDS.get(currency)
        value = str(currency).strip()
        if not value:
            return None
        if value.isdigit():
            return CURRENCY_IDS.get(int(value))
        if value in CURRENCY_SYMBOLS:
            return CURRENCY_SYMBOLS[value]
        upper = value.upper()
        if upper == "ILS":
            return "NIS"
        return upper

    def rate_for(self, currency: Union[int, str, None]) -> Decimal:
        code = self.resolve_currency_code(currency)
        rate = self.rates.get(code) if code is not None else None
        if rate is None:
            logger.warning(
                "Unknown or missing currency %r; counting amount at rate 1 in %s",
                currency,
                self.reporting_currency,
            )
            return Decimal("1")
        return rate

    def to_reporting_currency(
        self,
        amount: Optional[Decimal],
        currency_code: Union[int, str, None],
        vat_amount: Optional[Decimal] = None,
    ) -> Decimal:
        base = amount if amount is not None else Decimal("0")
        if vat_amount is not None:
            base += vat_amount
        # Credits and refunds stay negative.
        if base == 0:
            return Decimal("0")
        return base * self.rate_for(currency_code)
