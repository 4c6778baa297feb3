"""
Quotation defaults: the single source of truth for default parameters and
reporting thresholds.

The pricing engines never import from here at computation time. Callers
build a QuotationParameters (usually through default_parameters) and pass it
explicitly into every calculation.
"""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from quoter.models.domain import QuotationParameters
from quoter.models.schemas import parse_parameters
from quoter.services.errors import InvalidInputError

# ── Exchange rates (base currency units per foreign unit) ────────────────────
BASE_CURRENCY: str = "ILS"
DISPLAY_CURRENCY: str = "USD"
DEFAULT_USD_TO_ILS_RATE: float = 3.7
DEFAULT_EUR_TO_ILS_RATE: float = 4.0

# ── Pricing ─────────────────────────────────────────────────────────────────
DEFAULT_MARKUP_PERCENT: float = 25.0
DEFAULT_DAY_LABOR_COST: float = 1200.0     # ILS per day
DEFAULT_PROFIT_PERCENT: float = 20.0
DEFAULT_RISK_PERCENT: float = 10.0
DEFAULT_INCLUDE_VAT: bool = True
DEFAULT_VAT_RATE: float = 17.0

# Legacy quotations stored a profit coefficient (price = cost / k) instead of a markup
LEGACY_PROFIT_COEFFICIENT: float = 0.75

# ── Statistics ───────────────────────────────────────────────────────────────
# Material vs labor share gap (percentage points) before a quote is called heavy
PROFILE_THRESHOLD_PCT: float = 20.0
# Allowed drift when checking that category percentages sum to 100
PERCENT_SUM_TOLERANCE: float = 1.0

# ── Environment overrides (embedding application only) ─────────────────────
_ENV_MAP = {
    "QUOTER_USD_TO_ILS_RATE": ("usd_to_base_rate", float),
    "QUOTER_EUR_TO_ILS_RATE": ("eur_to_base_rate", float),
    "QUOTER_DEFAULT_MARKUP": ("markup_percent", float),
    "QUOTER_DAY_LABOR_COST": ("day_labor_cost", float),
    "QUOTER_DEFAULT_RISK": ("risk_percent", float),
    "QUOTER_VAT_RATE": ("vat_rate", float),
    "QUOTER_INCLUDE_VAT": ("include_vat", lambda v: v.strip().lower() in ("1", "true", "yes")),
}


def default_parameters(as_of: Optional[datetime] = None, **overrides: Any) -> QuotationParameters:
    """Validated parameters seeded from the defaults above."""
    data = {
        "usd_to_base_rate": DEFAULT_USD_TO_ILS_RATE,
        "eur_to_base_rate": DEFAULT_EUR_TO_ILS_RATE,
        "markup_percent": DEFAULT_MARKUP_PERCENT,
        "day_labor_cost": DEFAULT_DAY_LABOR_COST,
        "profit_percent": DEFAULT_PROFIT_PERCENT,
        "risk_percent": DEFAULT_RISK_PERCENT,
        "include_vat": DEFAULT_INCLUDE_VAT,
        "vat_rate": DEFAULT_VAT_RATE,
        "as_of": as_of or datetime.now(timezone.utc),
        "base_currency": BASE_CURRENCY,
        "display_currency": DISPLAY_CURRENCY,
    }
    data.update(overrides)
    return parse_parameters(data)


def parameters_from_env(environ: Optional[Mapping[str, str]] = None,
                        as_of: Optional[datetime] = None) -> QuotationParameters:
    """Defaults overridden by QUOTER_* environment variables."""
    env = os.environ if environ is None else environ
    overrides = {}
    for var, (name, cast) in _ENV_MAP.items():
        raw = env.get(var)
        if raw in (None, ""):
            continue
        try:
            overrides[name] = cast(raw)
        except ValueError:
            raise InvalidInputError(f"{var}={raw!r} is not a valid value") from None
    return default_parameters(as_of=as_of, **overrides)
