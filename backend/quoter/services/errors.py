"""Error taxonomy for the quotation pricing engine.

Every error here propagates to the caller. Nothing in the engine retries:
each operation is a pure function of its inputs.
"""
from datetime import datetime
from typing import Optional, Sequence


class QuoterError(Exception):
    """Base class for all pricing engine failures."""


class InvalidInputError(QuoterError, ValueError):
    """Negative cost/quantity, malformed currency code or a malformed item."""


class UnknownReferenceError(InvalidInputError):
    """A line item or assembly member points at an id missing from the library."""

    def __init__(self, kind: str, ref_id: str):
        self.kind = kind
        self.ref_id = ref_id
        super().__init__(f"Unknown {kind} reference: {ref_id}")


class NoActivePriceError(QuoterError, LookupError):
    """No price-history record is valid for the component at the requested time."""

    def __init__(self, component_id: str, as_of: Optional[datetime] = None, detail: str = ""):
        self.component_id = component_id
        self.as_of = as_of
        msg = f"No active price for component {component_id}"
        if as_of is not None:
            msg += f" as of {as_of.isoformat()}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class CircularAssemblyError(QuoterError):
    """The assembly membership graph contains a cycle."""

    def __init__(self, path: Sequence[str]):
        self.path = list(path)
        super().__init__("Circular assembly reference: " + " -> ".join(self.path))


class InvalidRateError(QuoterError):
    """Missing or non-positive exchange rate for a currency the computation needs."""

    def __init__(self, currency: str, detail: str = ""):
        self.currency = currency
        msg = f"No valid exchange rate for {currency}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
