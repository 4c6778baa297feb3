"""
QuotationEngine: full recompute of a quotation's derived state.

    subtotal      = sum(total_price) over materialized items
    risk_addition = subtotal * risk% / 100
    vat_amount    = (subtotal + risk_addition) * vat% / 100   if VAT included
    final_total   = subtotal + risk_addition + vat_amount
    profit_margin = (total_price - total_cost) / total_cost * 100   (0 at zero cost)

Calculations are never patched. Any edit returns a project with
calculations=None; reading calculations always recomputes from scratch.
"""
import logging
import time
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from quoter.models.domain import (
    AssemblyRef,
    CategoryTotals,
    ComponentRef,
    CustomCost,
    ItemType,
    LaborSubtype,
    MaterializedItem,
    QuotationCalculations,
    QuotationItem,
    QuotationParameters,
    QuotationProject,
    QuotationStatus,
    QuotationSystem,
    ReferenceData,
    SystemTotals,
    UnpricedItem,
)
from quoter.models.schemas import parameter_errors
from quoter.services.assembly_engine import AssemblyRollupEngine
from quoter.services.currency_engine import CurrencyNormalizer, normalize_code
from quoter.services.errors import InvalidInputError, NoActivePriceError, QuoterError, UnknownReferenceError
from quoter.services.item_engine import ItemMaterializer, generate_display_number
from quoter.services.perf_monitor import timed, tracker
from quoter.services.statistics_engine import calculate_statistics

logger = logging.getLogger("quoter-quotation")


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

@timed
def aggregate(
    items: Sequence[MaterializedItem],
    parameters: QuotationParameters,
    normalizer: CurrencyNormalizer,
    unpriced: Sequence[UnpricedItem] = (),
    systems: Sequence[QuotationSystem] = (),
) -> QuotationCalculations:
    """
    Fold materialized lines into a calculations snapshot.

    Per-system totals follow the order of ``systems``; systems not listed
    there are appended in the order their first line appears.
    """
    by_type: Dict[ItemType, CategoryTotals] = {t: CategoryTotals() for t in ItemType}
    by_subtype: Dict[LaborSubtype, CategoryTotals] = {s: CategoryTotals() for s in LaborSubtype}
    by_system: Dict[str, SystemTotals] = {
        s.id: SystemTotals(s.id, s.name, s.order, s.quantity) for s in sorted(systems, key=lambda s: s.order)
    }
    warnings: List[str] = []

    subtotal = 0.0
    subtotal_display = 0.0
    total_cost = 0.0
    total_cost_display = 0.0
    for item in items:
        by_type[item.kind.item_type] = by_type[item.kind.item_type].add(item)
        if item.kind.labor_subtype is not None:
            by_subtype[item.kind.labor_subtype] = by_subtype[item.kind.labor_subtype].add(item)
        if item.system_id not in by_system:
            by_system[item.system_id] = SystemTotals(item.system_id, item.system_id, len(by_system) + 1,
                                                     item.system_quantity)
        by_system[item.system_id] = by_system[item.system_id].add(item)
        subtotal += item.total_price
        subtotal_display += item.total_price_display
        total_cost += item.total_cost
        total_cost_display += item.total_cost_display
        warnings.extend(item.warnings)

    for u in unpriced:
        warnings.append(f"Line {u.display_number} is unpriced: {u.reason}")

    risk_addition = subtotal * parameters.risk_percent / 100.0
    total_quote = subtotal + risk_addition
    vat_amount = total_quote * parameters.vat_rate / 100.0 if parameters.include_vat else 0.0
    final_total = total_quote + vat_amount
    profit = subtotal - total_cost
    profit_margin = profit / total_cost * 100.0 if total_cost > 0 else 0.0

    return QuotationCalculations(
        base_currency=normalizer.base_currency,
        display_currency=normalizer.display_currency,
        by_type=by_type,
        by_labor_subtype=by_subtype,
        subtotal=subtotal,
        subtotal_display=subtotal_display,
        total_cost=total_cost,
        total_cost_display=total_cost_display,
        total_profit=profit,
        risk_addition=risk_addition,
        total_quote=total_quote,
        vat_amount=vat_amount,
        final_total=final_total,
        profit_margin_percent=profit_margin,
        unpriced_items=tuple(unpriced),
        warnings=tuple(warnings),
        by_system=by_system,
    )


# ---------------------------------------------------------------------------
# Recompute cycle
# ---------------------------------------------------------------------------

class QuotationEngine:
    """Stateless driver; every call builds fresh per-pass engines."""

    def recompute(self, project: QuotationProject, reference: ReferenceData,
                  strict: bool = True) -> QuotationProject:
        """
        Rebuild materialized items, calculations and statistics.

        strict=True propagates NoActivePriceError. strict=False lists such
        lines in calculations.unpriced_items instead (never as zero). Circular
        assemblies, bad rates and bad input always propagate.
        """
        start = time.perf_counter()
        try:
            result = self._recompute(project, reference, strict)
        except QuoterError as exc:
            tracker.record_error(type(exc).__name__)
            logger.error(f"Recompute of quotation {project.id} failed: {exc}",
                         extra={"quotation_id": project.id})
            raise

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        tracker.record_recompute(duration_ms, len(result.materialized_items))
        logger.info(
            f"Quotation {project.id} recomputed: final total {result.calculations.final_total:.2f} "
            f"{result.calculations.base_currency}",
            extra={"quotation_id": project.id, "duration_ms": duration_ms,
                   "item_count": len(result.materialized_items)},
        )
        return result

    def calculations_for(self, project: QuotationProject, reference: ReferenceData,
                         strict: bool = True) -> QuotationCalculations:
        """Reading calculations always goes through a full recompute."""
        return self.recompute(project, reference, strict=strict).calculations

    def _recompute(self, project: QuotationProject, reference: ReferenceData,
                   strict: bool) -> QuotationProject:
        params = project.parameters
        errors = parameter_errors(params)
        if errors:
            raise InvalidInputError("Invalid quotation parameters: " + "; ".join(errors))
        normalizer = CurrencyNormalizer.from_parameters(params)
        rollup_engine = AssemblyRollupEngine(reference, normalizer, params.as_of)
        materializer = ItemMaterializer(reference, params, normalizer, rollup_engine)

        _check_item_layout(project)

        materialized: List[MaterializedItem] = []
        unpriced: List[UnpricedItem] = []
        for system in sorted(project.systems, key=lambda s: s.order):
            for item in project.items_for_system(system.id):
                try:
                    materialized.append(materializer.materialize(item, system))
                except NoActivePriceError as exc:
                    if strict:
                        raise
                    display = generate_display_number(system.order, item.item_order)
                    logger.warning(f"Quotation {project.id}: line {display} unpriced: {exc}",
                                   extra={"quotation_id": project.id})
                    unpriced.append(UnpricedItem(item.id, display, str(exc)))

        calculations = aggregate(materialized, params, normalizer, unpriced, project.systems)
        computed = replace(project, calculations=calculations,
                           materialized_items=tuple(materialized), statistics=None)
        return replace(computed, statistics=calculate_statistics(computed))


def _check_item_layout(project: QuotationProject) -> None:
    """Every item sits in a known system at a unique position; ids are unique."""
    system_ids = {s.id for s in project.systems}
    seen_ids = set()
    positions = set()
    for item in project.items:
        if item.system_id not in system_ids:
            raise UnknownReferenceError("system", item.system_id)
        if item.id in seen_ids:
            raise InvalidInputError(f"Duplicate item id {item.id}")
        if (item.system_id, item.item_order) in positions:
            raise InvalidInputError(
                f"Item {item.id}: position {item.item_order} in system {item.system_id} is already taken"
            )
        seen_ids.add(item.id)
        positions.add((item.system_id, item.item_order))


# ---------------------------------------------------------------------------
# Edits: each returns a new, stale project
# ---------------------------------------------------------------------------

def _stale(project: QuotationProject, **changes: Any) -> QuotationProject:
    return replace(project, calculations=None, materialized_items=(), statistics=None, **changes)


def renumber_items(items: Iterable[QuotationItem],
                   systems: Sequence[QuotationSystem]) -> Tuple[QuotationItem, ...]:
    """Contiguous item_order 1..n inside each system, keeping relative order."""
    by_system: Dict[str, List[QuotationItem]] = {}
    for item in items:
        by_system.setdefault(item.system_id, []).append(item)

    ordered: List[QuotationItem] = []
    for system in sorted(systems, key=lambda s: s.order):
        group = sorted(by_system.pop(system.id, []), key=lambda i: i.item_order)
        for index, item in enumerate(group, start=1):
            ordered.append(item if item.item_order == index else replace(item, item_order=index))
    if by_system:
        raise UnknownReferenceError("system", next(iter(by_system)))
    return tuple(ordered)


def add_system(project: QuotationProject, system: QuotationSystem) -> QuotationProject:
    if any(s.id == system.id for s in project.systems):
        raise InvalidInputError(f"System {system.id} already exists")
    return _stale(project, systems=project.systems + (system,))


def remove_system(project: QuotationProject, system_id: str) -> QuotationProject:
    project.system(system_id)
    remaining = [s for s in sorted(project.systems, key=lambda s: s.order) if s.id != system_id]
    systems = tuple(s if s.order == n else replace(s, order=n) for n, s in enumerate(remaining, start=1))
    items = [i for i in project.items if i.system_id != system_id]
    return _stale(project, systems=systems, items=renumber_items(items, systems))


def add_item(project: QuotationProject, item: QuotationItem) -> QuotationProject:
    project.system(item.system_id)
    if any(i.id == item.id for i in project.items):
        raise InvalidInputError(f"Item {item.id} already exists")
    return _stale(project, items=renumber_items(project.items + (item,), project.systems))


def update_item(project: QuotationProject, item_id: str, **changes: Any) -> QuotationProject:
    if "id" in changes:
        raise InvalidInputError("Item id cannot be changed")
    items = []
    found = False
    for item in project.items:
        if item.id == item_id:
            item = replace(item, **changes)
            found = True
        items.append(item)
    if not found:
        raise UnknownReferenceError("item", item_id)
    if "system_id" in changes:
        project.system(changes["system_id"])
    return _stale(project, items=renumber_items(items, project.systems))


def remove_item(project: QuotationProject, item_id: str) -> QuotationProject:
    items = [i for i in project.items if i.id != item_id]
    if len(items) == len(project.items):
        raise UnknownReferenceError("item", item_id)
    return _stale(project, items=renumber_items(items, project.systems))


def update_parameters(project: QuotationProject, **changes: Any) -> QuotationProject:
    params = replace(project.parameters, **changes)
    errors = parameter_errors(params)
    if errors:
        raise InvalidInputError("Invalid quotation parameters: " + "; ".join(errors))
    return _stale(project, parameters=params)


def set_status(project: QuotationProject, status: QuotationStatus) -> QuotationProject:
    # Status is metadata; it does not invalidate the numbers
    return replace(project, status=QuotationStatus(status))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_quotation_item(item: QuotationItem, reference: Optional[ReferenceData] = None) -> List[str]:
    errors: List[str] = []
    if not item.name or not item.name.strip():
        errors.append("Item name is required")
    if item.margin_percentage is not None and item.margin_percentage < -100:
        errors.append("Markup below -100% would price the line below zero")

    source = item.source
    if isinstance(source, CustomCost) and source.currency is not None:
        try:
            normalize_code(source.currency)
        except InvalidInputError as exc:
            errors.append(str(exc))
    if reference is not None:
        if isinstance(source, ComponentRef) and source.component_id not in reference.components:
            errors.append(f"Unknown component {source.component_id}")
        if isinstance(source, AssemblyRef) and source.assembly_id not in reference.assemblies:
            errors.append(f"Unknown assembly {source.assembly_id}")
    return errors


def validate_parameters(params: QuotationParameters) -> List[str]:
    return parameter_errors(params)
