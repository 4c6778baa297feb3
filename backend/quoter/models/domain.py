"""
Domain entities for the quotation pricing engine.

Pure dataclasses with no persistence or framework dependency. Library
entities (components, price history, assemblies) and quotation inputs are
frozen snapshots; derived results (materialized items, calculations) are
rebuilt on every recompute and never edited in place.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from quoter.services.errors import InvalidInputError, UnknownReferenceError


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ItemType(str, Enum):
    HARDWARE = "hardware"
    SOFTWARE = "software"
    LABOR = "labor"


class LaborSubtype(str, Enum):
    ENGINEERING = "engineering"
    COMMISSIONING = "commissioning"
    INSTALLATION = "installation"
    PROGRAMMING = "programming"


class ItemKind(Enum):
    """
    Item type with its labor subtype folded in.

    A labor line always carries exactly one subtype and a non-labor line never
    carries one, so the pairing cannot be built inconsistently.
    """

    HARDWARE = (ItemType.HARDWARE, None)
    SOFTWARE = (ItemType.SOFTWARE, None)
    LABOR_ENGINEERING = (ItemType.LABOR, LaborSubtype.ENGINEERING)
    LABOR_COMMISSIONING = (ItemType.LABOR, LaborSubtype.COMMISSIONING)
    LABOR_INSTALLATION = (ItemType.LABOR, LaborSubtype.INSTALLATION)
    LABOR_PROGRAMMING = (ItemType.LABOR, LaborSubtype.PROGRAMMING)

    @property
    def item_type(self) -> ItemType:
        return self.value[0]

    @property
    def labor_subtype(self) -> Optional[LaborSubtype]:
        return self.value[1]

    @property
    def is_labor(self) -> bool:
        return self.item_type is ItemType.LABOR

    @property
    def label(self) -> str:
        if self.labor_subtype is None:
            return self.item_type.value
        return f"{self.item_type.value}/{self.labor_subtype.value}"

    @classmethod
    def from_parts(cls, item_type: Union[str, ItemType],
                   labor_subtype: Union[str, LaborSubtype, None] = None) -> "ItemKind":
        """Build a kind from the two persisted columns, rejecting inconsistent pairs."""
        try:
            itype = ItemType(item_type)
            subtype = LaborSubtype(labor_subtype) if labor_subtype else None
        except ValueError as exc:
            raise InvalidInputError(str(exc)) from exc

        if itype is ItemType.LABOR and subtype is None:
            raise InvalidInputError("Labor items require a labor subtype")
        if itype is not ItemType.LABOR and subtype is not None:
            raise InvalidInputError(f"{itype.value} items cannot carry a labor subtype")

        for kind in cls:
            if kind.value == (itype, subtype):
                return kind
        raise InvalidInputError(f"Unsupported item kind {itype.value}/{subtype}")


class QuotationStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    WON = "won"
    LOST = "lost"


# ---------------------------------------------------------------------------
# Component library
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PriceHistoryRecord:
    component_id: str
    cost: float
    currency: str
    valid_from: datetime
    valid_to: Optional[datetime] = None
    source: str = ""              # supplier quote / document the price came from

    def __post_init__(self):
        if self.cost < 0:
            raise InvalidInputError(f"Price record for {self.component_id} has negative cost {self.cost}")

    @property
    def is_open(self) -> bool:
        return self.valid_to is None


@dataclass(frozen=True)
class Component:
    id: str
    name: str
    unit_cost: float
    currency: str
    category: str = ""
    manufacturer: str = ""
    cached_costs: Mapping[str, float] = field(default_factory=dict)   # USD / ILS / EUR snapshots
    is_active: bool = True
    price_history: Tuple[PriceHistoryRecord, ...] = ()
    msrp_price: Optional[float] = None
    msrp_currency: Optional[str] = None
    partner_discount_percent: Optional[float] = None

    @property
    def has_msrp(self) -> bool:
        return self.msrp_price is not None and self.msrp_currency is not None


@dataclass(frozen=True)
class AssemblyMember:
    component_id: Optional[str] = None
    assembly_id: Optional[str] = None
    quantity: float = 1.0

    def __post_init__(self):
        if (self.component_id is None) == (self.assembly_id is None):
            raise InvalidInputError("Assembly member must reference exactly one of component_id / assembly_id")
        if self.quantity <= 0:
            raise InvalidInputError(f"Assembly member quantity must be positive, got {self.quantity}")

    @property
    def ref_id(self) -> str:
        return self.component_id if self.component_id is not None else self.assembly_id

    @property
    def is_assembly(self) -> bool:
        return self.assembly_id is not None


@dataclass(frozen=True)
class Assembly:
    id: str
    name: str
    members: Tuple[AssemblyMember, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class ReferenceData:
    """Immutable snapshot of the component and assembly libraries for one computation."""

    components: Mapping[str, Component] = field(default_factory=dict)
    assemblies: Mapping[str, Assembly] = field(default_factory=dict)

    @classmethod
    def build(cls, components: Iterable[Component] = (),
              assemblies: Iterable[Assembly] = ()) -> "ReferenceData":
        return cls(
            components={c.id: c for c in components},
            assemblies={a.id: a for a in assemblies},
        )

    def component(self, component_id: str) -> Component:
        try:
            return self.components[component_id]
        except KeyError:
            raise UnknownReferenceError("component", component_id) from None

    def assembly(self, assembly_id: str) -> Assembly:
        try:
            return self.assemblies[assembly_id]
        except KeyError:
            raise UnknownReferenceError("assembly", assembly_id) from None


# ---------------------------------------------------------------------------
# Quotation inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ComponentRef:
    component_id: str


@dataclass(frozen=True)
class AssemblyRef:
    assembly_id: str


@dataclass(frozen=True)
class CustomCost:
    """Line typed in directly on the quotation; no library price behind it."""
    unit_cost: float
    currency: Optional[str] = None     # None -> quotation base currency

    def __post_init__(self):
        if self.unit_cost < 0:
            raise InvalidInputError(f"Custom item unit cost cannot be negative, got {self.unit_cost}")


@dataclass(frozen=True)
class InternalLabor:
    """Labor days by the in-house team, priced at the quotation's day-labor cost."""


ItemSource = Union[ComponentRef, AssemblyRef, CustomCost, InternalLabor]


@dataclass(frozen=True)
class QuotationSystem:
    id: str
    name: str
    order: int
    quantity: int = 1
    description: str = ""

    def __post_init__(self):
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 1:
            raise InvalidInputError(f"System {self.id} quantity must be a positive integer, got {self.quantity!r}")


@dataclass(frozen=True)
class QuotationItem:
    id: str
    system_id: str
    item_order: int
    name: str
    kind: ItemKind
    source: ItemSource
    quantity: int = 1
    margin_percentage: Optional[float] = None   # None -> quotation default markup
    use_msrp_pricing: bool = False
    notes: str = ""

    def __post_init__(self):
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise InvalidInputError(f"Item {self.id} quantity must be an integer, got {self.quantity!r}")
        if self.quantity <= 0:
            raise InvalidInputError(f"Item {self.id} quantity must be positive, got {self.quantity}")
        if not isinstance(self.kind, ItemKind):
            raise InvalidInputError(f"Item {self.id} kind must be an ItemKind, got {self.kind!r}")
        if not isinstance(self.source, (ComponentRef, AssemblyRef, CustomCost, InternalLabor)):
            raise InvalidInputError(f"Item {self.id} has unsupported source {self.source!r}")
        if isinstance(self.source, InternalLabor) and not self.kind.is_labor:
            raise InvalidInputError(f"Item {self.id}: internal labor source requires a labor kind")

    @property
    def is_custom(self) -> bool:
        return isinstance(self.source, (CustomCost, InternalLabor))


@dataclass(frozen=True)
class QuotationParameters:
    usd_to_base_rate: float
    eur_to_base_rate: float
    markup_percent: float
    day_labor_cost: float
    profit_percent: float
    risk_percent: float
    include_vat: bool
    vat_rate: float
    as_of: datetime
    base_currency: str = "ILS"
    display_currency: str = "USD"
    use_msrp_pricing: bool = False
    clamp_negative_prices: bool = True


# ---------------------------------------------------------------------------
# Derived results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PriceTrace:
    """One price-history record that contributed to a line's cost."""
    component_id: str
    record: PriceHistoryRecord
    quantity: float            # multiplier of this leaf within the line's unit
    cost_base: float           # record cost converted to base currency


@dataclass(frozen=True)
class ItemTrace:
    source_kind: str           # component | assembly | custom | internal-day-rate
    is_traceable: bool
    records: Tuple[PriceTrace, ...] = ()
    notes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MaterializedItem:
    item_id: str
    system_id: str
    display_number: str
    name: str
    kind: ItemKind
    quantity: int
    system_quantity: int
    unit_cost_base: float
    total_cost: float
    unit_price: float
    total_price: float
    unit_cost_display: float
    unit_price_display: float
    total_cost_display: float
    total_price_display: float
    margin_percent: float
    pricing_mode: str          # markup | msrp
    trace: ItemTrace
    warnings: Tuple[str, ...] = ()

    @property
    def item_type(self) -> ItemType:
        return self.kind.item_type

    def as_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "system_id": self.system_id,
            "display_number": self.display_number,
            "name": self.name,
            "item_type": self.kind.item_type.value,
            "labor_subtype": self.kind.labor_subtype.value if self.kind.labor_subtype else None,
            "quantity": self.quantity,
            "system_quantity": self.system_quantity,
            "unit_cost": round(self.unit_cost_base, 2),
            "total_cost": round(self.total_cost, 2),
            "unit_price": round(self.unit_price, 2),
            "total_price": round(self.total_price, 2),
            "unit_price_display": round(self.unit_price_display, 2),
            "total_price_display": round(self.total_price_display, 2),
            "margin_percent": round(self.margin_percent, 1),
            "pricing_mode": self.pricing_mode,
            "price_source": self.trace.source_kind,
            "traceable": self.trace.is_traceable,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class CategoryTotals:
    cost: float = 0.0
    price: float = 0.0
    cost_display: float = 0.0
    price_display: float = 0.0
    item_count: int = 0

    def add(self, item: MaterializedItem) -> "CategoryTotals":
        return CategoryTotals(
            cost=self.cost + item.total_cost,
            price=self.price + item.total_price,
            cost_display=self.cost_display + item.total_cost_display,
            price_display=self.price_display + item.total_price_display,
            item_count=self.item_count + 1,
        )


@dataclass(frozen=True)
class SystemTotals:
    """One system's lines; amounts already include the system multiplier."""
    system_id: str
    name: str
    order: int
    system_quantity: int = 1
    total: CategoryTotals = field(default_factory=CategoryTotals)
    material: CategoryTotals = field(default_factory=CategoryTotals)   # hardware + software
    labor: CategoryTotals = field(default_factory=CategoryTotals)

    def add(self, item: MaterializedItem) -> "SystemTotals":
        if item.kind.is_labor:
            return replace(self, total=self.total.add(item), labor=self.labor.add(item))
        return replace(self, total=self.total.add(item), material=self.material.add(item))


@dataclass(frozen=True)
class UnpricedItem:
    item_id: str
    display_number: str
    reason: str


@dataclass(frozen=True)
class QuotationCalculations:
    base_currency: str
    display_currency: str
    by_type: Mapping[ItemType, CategoryTotals]
    by_labor_subtype: Mapping[LaborSubtype, CategoryTotals]
    subtotal: float
    subtotal_display: float
    total_cost: float
    total_cost_display: float
    total_profit: float
    risk_addition: float
    total_quote: float          # subtotal + risk, before VAT
    vat_amount: float
    final_total: float
    profit_margin_percent: float
    unpriced_items: Tuple[UnpricedItem, ...] = ()
    warnings: Tuple[str, ...] = ()
    by_system: Mapping[str, SystemTotals] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return not self.unpriced_items

    def type_price(self, item_type: ItemType) -> float:
        return self.by_type.get(item_type, CategoryTotals()).price

    def labor_price(self, subtype: LaborSubtype) -> float:
        return self.by_labor_subtype.get(subtype, CategoryTotals()).price

    def as_dict(self) -> Dict[str, Any]:
        return {
            "base_currency": self.base_currency,
            "display_currency": self.display_currency,
            "by_type": {
                t.value: {
                    "cost": round(c.cost, 2),
                    "price": round(c.price, 2),
                    "cost_display": round(c.cost_display, 2),
                    "price_display": round(c.price_display, 2),
                    "item_count": c.item_count,
                }
                for t, c in self.by_type.items()
            },
            "by_labor_subtype": {
                s.value: {"cost": round(c.cost, 2), "price": round(c.price, 2), "item_count": c.item_count}
                for s, c in self.by_labor_subtype.items()
            },
            "subtotal": round(self.subtotal, 2),
            "subtotal_display": round(self.subtotal_display, 2),
            "total_cost": round(self.total_cost, 2),
            "total_profit": round(self.total_profit, 2),
            "risk_addition": round(self.risk_addition, 2),
            "total_quote": round(self.total_quote, 2),
            "vat_amount": round(self.vat_amount, 2),
            "final_total": round(self.final_total, 2),
            "profit_margin_percent": round(self.profit_margin_percent, 1),
            "by_system": {
                sid: {
                    "name": s.name,
                    "system_quantity": s.system_quantity,
                    "price": round(s.total.price, 2),
                    "price_display": round(s.total.price_display, 2),
                    "material_price": round(s.material.price, 2),
                    "labor_price": round(s.labor.price, 2),
                    "item_count": s.total.item_count,
                }
                for sid, s in self.by_system.items()
            },
            "is_complete": self.is_complete,
            "unpriced_items": [u.display_number for u in self.unpriced_items],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class QuotationProject:
    id: str
    name: str
    customer_name: str
    parameters: QuotationParameters
    systems: Tuple[QuotationSystem, ...] = ()
    items: Tuple[QuotationItem, ...] = ()
    status: QuotationStatus = QuotationStatus.DRAFT
    description: str = ""
    calculations: Optional[QuotationCalculations] = None
    materialized_items: Tuple[MaterializedItem, ...] = ()
    statistics: Optional[Any] = None

    @property
    def is_stale(self) -> bool:
        return self.calculations is None

    def system(self, system_id: str) -> QuotationSystem:
        for system in self.systems:
            if system.id == system_id:
                return system
        raise UnknownReferenceError("system", system_id)

    def items_for_system(self, system_id: str) -> List[QuotationItem]:
        return sorted((i for i in self.items if i.system_id == system_id), key=lambda i: i.item_order)
