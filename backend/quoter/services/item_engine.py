"""
Quotation item materializer.

Turns a persisted QuotationItem into a fully computed, display-ready line:

    unit_cost_base = resolved cost (after currency normalisation)
    total_cost     = unit_cost_base * quantity * system.quantity
    unit_price     = apply_markup(unit_cost_base, item margin or quotation default)
    total_price    = unit_price * quantity * system.quantity
    display_number = "<system order>.<item order>"

Custom and internal-labor lines skip traceability; they are labeled as such
in the trace so audit output can tell them apart.
"""
import logging
from typing import List, Optional, Tuple

from quoter.models.domain import (
    AssemblyRef,
    Component,
    ComponentRef,
    CustomCost,
    InternalLabor,
    ItemTrace,
    MaterializedItem,
    PriceTrace,
    QuotationItem,
    QuotationParameters,
    QuotationSystem,
    ReferenceData,
)
from quoter.services.assembly_engine import AssemblyRollupEngine
from quoter.services.currency_engine import CurrencyNormalizer
from quoter.services.errors import InvalidInputError
from quoter.services.markup_engine import apply_markup, calculate_margin, check_quantity
from quoter.services.price_resolver import resolve_active_price

logger = logging.getLogger("quoter-items")

CUSTOM_ITEM_NOTE = "Custom item: price entered on the quotation, not traceable to a price-history record"
INTERNAL_LABOR_NOTE = "Internal labor: priced at the quotation day-labor cost"


def generate_display_number(system_order: int, item_order: int) -> str:
    return f"{system_order}.{item_order}"


class ItemMaterializer:
    """Materializes quotation lines against one reference snapshot and parameter set."""

    def __init__(
        self,
        reference: ReferenceData,
        parameters: QuotationParameters,
        normalizer: Optional[CurrencyNormalizer] = None,
        rollup_engine: Optional[AssemblyRollupEngine] = None,
    ) -> None:
        self.reference = reference
        self.parameters = parameters
        self.normalizer = normalizer or CurrencyNormalizer.from_parameters(parameters)
        self.rollup_engine = rollup_engine or AssemblyRollupEngine(reference, self.normalizer, parameters.as_of)

    # ------------------------------------------------------------------
    # Cost resolution per source variant
    # ------------------------------------------------------------------

    def _resolve_cost(self, item: QuotationItem) -> Tuple[float, ItemTrace, Optional[Component]]:
        source = item.source

        if isinstance(source, ComponentRef):
            component = self.reference.component(source.component_id)
            resolution = resolve_active_price(component.price_history, self.parameters.as_of, component.id)
            cost_base = self.normalizer.to_base(resolution.cost, resolution.currency)
            notes = list(resolution.warnings)
            if not component.is_active:
                notes.append(f"Component {component.id} ({component.name}) is inactive")
            trace = ItemTrace(
                source_kind="component",
                is_traceable=True,
                records=(PriceTrace(component.id, resolution.record, 1.0, cost_base),),
                notes=tuple(notes),
            )
            return cost_base, trace, component

        if isinstance(source, AssemblyRef):
            rollup = self.rollup_engine.rollup(source.assembly_id)
            trace = ItemTrace(
                source_kind="assembly",
                is_traceable=True,
                records=rollup.traces,
                notes=rollup.warnings,
            )
            return rollup.unit_cost_base, trace, None

        if isinstance(source, CustomCost):
            currency = source.currency or self.parameters.base_currency
            cost_base = self.normalizer.to_base(source.unit_cost, currency)
            trace = ItemTrace(source_kind="custom", is_traceable=False, notes=(CUSTOM_ITEM_NOTE,))
            return cost_base, trace, None

        if isinstance(source, InternalLabor):
            day_cost = float(self.parameters.day_labor_cost)
            if day_cost < 0:
                raise InvalidInputError(f"Day labor cost cannot be negative, got {day_cost}")
            trace = ItemTrace(source_kind="internal-day-rate", is_traceable=False, notes=(INTERNAL_LABOR_NOTE,))
            return day_cost, trace, None

        raise InvalidInputError(f"Item {item.id} has unsupported source {source!r}")

    def _msrp_unit_price(self, item: QuotationItem, component: Optional[Component],
                         warnings: List[str]) -> Optional[float]:
        wants_msrp = item.use_msrp_pricing or self.parameters.use_msrp_pricing
        if not wants_msrp or not isinstance(item.source, ComponentRef):
            return None
        if component is None or not component.has_msrp:
            if item.use_msrp_pricing:
                msg = f"Item {item.id}: MSRP pricing requested but component has no MSRP; using cost + markup"
                logger.warning(msg)
                warnings.append(msg)
            return None
        return self.normalizer.to_base(component.msrp_price, component.msrp_currency)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def materialize(self, item: QuotationItem, system: QuotationSystem) -> MaterializedItem:
        if item.system_id != system.id:
            raise InvalidInputError(f"Item {item.id} belongs to system {item.system_id}, not {system.id}")
        check_quantity(item.quantity)
        check_quantity(system.quantity)

        cost_base, trace, component = self._resolve_cost(item)
        warnings: List[str] = list(trace.notes)

        msrp_price = self._msrp_unit_price(item, component, warnings)
        if msrp_price is not None:
            unit_price = msrp_price
            pricing_mode = "msrp"
        else:
            markup = item.margin_percentage
            if markup is None:
                markup = self.parameters.markup_percent
            result = apply_markup(cost_base, markup, clamp_negative=self.parameters.clamp_negative_prices)
            if result.warning:
                warnings.append(f"Item {item.id}: {result.warning}")
            unit_price = result.price
            pricing_mode = "markup"

        units = item.quantity * system.quantity
        total_cost = cost_base * units
        total_price = unit_price * units

        return MaterializedItem(
            item_id=item.id,
            system_id=system.id,
            display_number=generate_display_number(system.order, item.item_order),
            name=item.name,
            kind=item.kind,
            quantity=item.quantity,
            system_quantity=system.quantity,
            unit_cost_base=cost_base,
            total_cost=total_cost,
            unit_price=unit_price,
            total_price=total_price,
            unit_cost_display=self.normalizer.to_display(cost_base),
            unit_price_display=self.normalizer.signed_to_display(unit_price),
            total_cost_display=self.normalizer.to_display(total_cost),
            total_price_display=self.normalizer.signed_to_display(total_price),
            margin_percent=calculate_margin(cost_base, unit_price),
            pricing_mode=pricing_mode,
            trace=trace,
            warnings=tuple(warnings),
        )
