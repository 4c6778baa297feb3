"""
Markup / margin calculator.

    price  = cost * (1 + markup% / 100)
    margin = (price - cost) / cost * 100       (0 when cost == 0)

Negative markups are discounts. A discount deeper than 100 % would produce a
negative price; by default that price is clamped to zero and flagged.
"""
import logging
import math
from dataclasses import dataclass
from typing import Optional

from quoter.services.errors import InvalidInputError

logger = logging.getLogger("quoter-pricing")


@dataclass(frozen=True)
class MarkupResult:
    cost: float
    markup_percent: float
    price: float
    clamped: bool = False
    warning: Optional[str] = None


@dataclass(frozen=True)
class LinePricing:
    unit: MarkupResult
    quantity: int
    total_cost: float
    total_price: float


def _finite(value: float, name: str) -> float:
    try:
        f = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{name} must be numeric, got {value!r}") from None
    if math.isnan(f) or math.isinf(f):
        raise InvalidInputError(f"{name} must be finite, got {value!r}")
    return f


def _check_cost(cost: float) -> float:
    c = _finite(cost, "cost")
    if c < 0:
        raise InvalidInputError(f"Cost cannot be negative, got {c}")
    return c


def check_quantity(quantity: int) -> int:
    if isinstance(quantity, bool):
        raise InvalidInputError(f"Quantity must be a number, got {quantity!r}")
    q = _finite(quantity, "quantity")
    if q <= 0:
        raise InvalidInputError(f"Quantity must be positive, got {quantity}")
    return quantity


def apply_markup(cost: float, markup_percent: float, clamp_negative: bool = True) -> MarkupResult:
    """Customer price from cost and a markup percentage."""
    c = _check_cost(cost)
    m = _finite(markup_percent, "markup_percent")
    price = c * (1.0 + m / 100.0)

    if price < 0:
        if clamp_negative:
            warning = f"Markup {m:.2f}% drives price below zero; clamped to 0"
            logger.warning(warning)
            return MarkupResult(cost=c, markup_percent=m, price=0.0, clamped=True, warning=warning)
        warning = f"Markup {m:.2f}% produces negative price {price:.2f} (credit line)"
        logger.warning(warning)
        return MarkupResult(cost=c, markup_percent=m, price=price, warning=warning)

    return MarkupResult(cost=c, markup_percent=m, price=price)


def calculate_margin(cost: float, price: float) -> float:
    """Margin on cost, in percent. Zero-cost lines report 0 rather than NaN."""
    c = _check_cost(cost)
    p = _finite(price, "price")
    if c > 0:
        return (p - c) / c * 100.0
    return 0.0


def price_line(cost: float, markup_percent: float, quantity: int,
               multiplier: int = 1, clamp_negative: bool = True) -> LinePricing:
    """Unit markup plus extended totals for ``quantity`` x ``multiplier`` units."""
    check_quantity(quantity)
    check_quantity(multiplier)
    unit = apply_markup(cost, markup_percent, clamp_negative=clamp_negative)
    units = quantity * multiplier
    return LinePricing(
        unit=unit,
        quantity=quantity,
        total_cost=unit.cost * units,
        total_price=unit.price * units,
    )


def markup_from_coefficient(coefficient: float) -> float:
    """
    Convert a legacy profit coefficient (price = cost / coefficient) into a
    markup percentage. 0.75 -> 33.33 %.
    """
    k = _finite(coefficient, "coefficient")
    if k <= 0:
        raise InvalidInputError(f"Profit coefficient must be positive, got {coefficient}")
    return (1.0 / k - 1.0) * 100.0


def partner_cost_from_msrp(msrp_price: float, discount_percent: float) -> float:
    """Partner cost = MSRP x (1 - discount%)."""
    msrp = _check_cost(msrp_price)
    d = _finite(discount_percent, "discount_percent")
    if not 0 <= d <= 100:
        raise InvalidInputError(f"Partner discount must be between 0 and 100, got {d}")
    return msrp * (1.0 - d / 100.0)


def partner_discount_from_msrp(msrp_price: float, partner_cost: float) -> float:
    """Discount % implied by a partner cost against the list price."""
    msrp = _check_cost(msrp_price)
    cost = _check_cost(partner_cost)
    if msrp == 0:
        return 0.0
    return (msrp - cost) / msrp * 100.0
