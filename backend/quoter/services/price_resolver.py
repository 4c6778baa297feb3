"""
Price traceability resolver.

Picks the single price-history record whose half-open validity window
[valid_from, valid_to) contains the evaluation timestamp. Overlapping windows
are a data-integrity problem in the library; they are reported, not fatal.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from quoter.models.domain import PriceHistoryRecord
from quoter.services.errors import NoActivePriceError

logger = logging.getLogger("quoter-pricing")


@dataclass(frozen=True)
class PriceResolution:
    record: PriceHistoryRecord
    conflicts: Tuple[PriceHistoryRecord, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def cost(self) -> float:
        return self.record.cost

    @property
    def currency(self) -> str:
        return self.record.currency


def _utc(ts: datetime) -> datetime:
    # Naive timestamps are stored as UTC
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def _contains(record: PriceHistoryRecord, as_of: datetime) -> bool:
    if _utc(record.valid_from) > as_of:
        return False
    return record.valid_to is None or as_of < _utc(record.valid_to)


def resolve_active_price(history: Sequence[PriceHistoryRecord], as_of: datetime,
                         component_id: Optional[str] = None) -> PriceResolution:
    """
    Return the record active at ``as_of``.

    Raises NoActivePriceError when no record covers the timestamp; never
    defaults to a zero price.
    """
    cid = component_id or (history[0].component_id if history else "<unknown>")
    if not history:
        raise NoActivePriceError(cid, as_of, "empty price history")

    point = _utc(as_of)
    candidates = [r for r in history if _contains(r, point)]
    if not candidates:
        raise NoActivePriceError(cid, as_of)

    candidates.sort(key=lambda r: _utc(r.valid_from), reverse=True)
    winner, losers = candidates[0], tuple(candidates[1:])

    warnings: Tuple[str, ...] = ()
    if losers:
        msg = (
            f"Component {cid}: {len(candidates)} price records valid at {point.isoformat()}; "
            f"using record from {winner.valid_from.isoformat()}"
        )
        logger.warning(msg)
        warnings = (msg,)

    return PriceResolution(record=winner, conflicts=losers, warnings=warnings)


def validate_price_history(history: Sequence[PriceHistoryRecord],
                           component_id: Optional[str] = None) -> List[str]:
    """List invariant violations in one component's price history."""
    problems: List[str] = []
    if not history:
        return problems

    cid = component_id or history[0].component_id
    open_records = [r for r in history if r.is_open]
    if len(open_records) > 1:
        problems.append(f"Component {cid} has {len(open_records)} open price records (expected at most 1)")

    for r in history:
        if r.component_id != cid:
            problems.append(f"Price record for {r.component_id} found in history of {cid}")
        if r.valid_to is not None and _utc(r.valid_to) <= _utc(r.valid_from):
            problems.append(
                f"Component {cid}: record from {r.valid_from.isoformat()} ends at or before it starts"
            )
    return problems
