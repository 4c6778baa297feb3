"""
CurrencyNormalizer: converts line costs into the quotation's base currency.

Rates are supplied by the caller (the quotation parameters); this module
never looks them up. A rate is expressed as base units per one unit of the
foreign currency, e.g. USD -> ILS 3.7 means 1 USD = 3.7 ILS.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, Mapping

from quoter.models.domain import QuotationParameters
from quoter.services.errors import InvalidInputError, InvalidRateError

logger = logging.getLogger("quoter-currency")

# The catalog stores shekel prices under the legacy "NIS" code
CURRENCY_ALIASES: Dict[str, str] = {"NIS": "ILS"}

_CODE_RE = re.compile(r"^[A-Z]{3}$")


def normalize_code(code: str) -> str:
    """Upper-case, alias-resolve and validate a three-letter currency code."""
    if not isinstance(code, str):
        raise InvalidInputError(f"Currency code must be a string, got {code!r}")
    cleaned = code.strip().upper()
    if not _CODE_RE.match(cleaned):
        raise InvalidInputError(f"Malformed currency code: {code!r}")
    return CURRENCY_ALIASES.get(cleaned, cleaned)


def _check_amount(amount: float) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Amount must be numeric, got {amount!r}") from None
    if math.isnan(value) or math.isinf(value):
        raise InvalidInputError(f"Amount must be finite, got {amount!r}")
    if value < 0:
        raise InvalidInputError(f"Amount cannot be negative, got {value}")
    return value


@dataclass(frozen=True)
class RateTable:
    base_currency: str
    rates: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        base = normalize_code(self.base_currency)
        cleaned: Dict[str, float] = {}
        for code, rate in self.rates.items():
            ccy = normalize_code(code)
            if ccy == base:
                continue
            try:
                value = float(rate)
            except (TypeError, ValueError):
                raise InvalidRateError(ccy, f"rate {rate!r} is not numeric") from None
            if not value > 0 or math.isinf(value):
                raise InvalidRateError(ccy, f"rate must be positive, got {rate!r}")
            cleaned[ccy] = value
        object.__setattr__(self, "base_currency", base)
        object.__setattr__(self, "rates", cleaned)

    @classmethod
    def from_parameters(cls, params: QuotationParameters) -> "RateTable":
        return cls(
            base_currency=params.base_currency,
            rates={"USD": params.usd_to_base_rate, "EUR": params.eur_to_base_rate},
        )

    def rate_for(self, currency: str) -> float:
        """Base units per one unit of ``currency``."""
        ccy = normalize_code(currency)
        if ccy == self.base_currency:
            return 1.0
        try:
            return self.rates[ccy]
        except KeyError:
            raise InvalidRateError(ccy, f"not in rate table (base {self.base_currency})") from None


def convert(amount: float, from_currency: str, rates: RateTable) -> float:
    """Convert a non-negative ``amount`` in ``from_currency`` into the base currency."""
    value = _check_amount(amount)
    return value * rates.rate_for(from_currency)


def convert_from_base(amount: float, to_currency: str, rates: RateTable) -> float:
    """Inverse of :func:`convert`."""
    value = _check_amount(amount)
    return value / rates.rate_for(to_currency)


def convert_between(amount: float, from_currency: str, to_currency: str, rates: RateTable) -> float:
    if normalize_code(from_currency) == normalize_code(to_currency):
        return _check_amount(amount)
    return convert_from_base(convert(amount, from_currency, rates), to_currency, rates)


class CurrencyNormalizer:
    """Rate-table bound converter handed to the pricing engines."""

    def __init__(self, rates: RateTable, display_currency: str = "USD") -> None:
        self.rates = rates
        self.base_currency = rates.base_currency
        self.display_currency = normalize_code(display_currency)
        # Fail early if the display currency cannot be produced
        rates.rate_for(self.display_currency)

    @classmethod
    def from_parameters(cls, params: QuotationParameters) -> "CurrencyNormalizer":
        return cls(RateTable.from_parameters(params), params.display_currency)

    def to_base(self, amount: float, currency: str) -> float:
        return convert(amount, currency, self.rates)

    def to_display(self, amount_base: float) -> float:
        return convert_from_base(amount_base, self.display_currency, self.rates)

    def from_base(self, amount_base: float, currency: str) -> float:
        return convert_from_base(amount_base, currency, self.rates)

    def signed_to_display(self, amount_base: float) -> float:
        """Display conversion that tolerates negative amounts (credit lines, unclamped discounts)."""
        if amount_base < 0:
            return -self.to_display(-amount_base)
        return self.to_display(amount_base)
