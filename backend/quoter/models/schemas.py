"""
Pydantic schemas for quotation inputs arriving from the persistence layer.

Persisted rows are flat (nullable component_id / assembly_id, separate
item_type and labor_subtype columns). The schemas validate them and convert
to the tagged domain dataclasses.
"""
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from quoter.models.domain import (
    AssemblyRef,
    ComponentRef,
    CustomCost,
    InternalLabor,
    ItemKind,
    ItemType,
    LaborSubtype,
    QuotationItem,
    QuotationParameters,
)
from quoter.services.currency_engine import normalize_code
from quoter.services.errors import InvalidInputError


class QuotationParametersSchema(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    usd_to_base_rate: float = Field(..., gt=0, description="Base units per 1 USD, e.g. 3.7 ILS")
    eur_to_base_rate: float = Field(..., gt=0, description="Base units per 1 EUR")
    markup_percent: float = Field(..., description="Default markup; negative values are discounts")
    day_labor_cost: float = Field(..., ge=0, description="Internal labor cost per day, base currency")
    profit_percent: float = Field(20.0, ge=0, description="Target profit margin; reported against, never applied")
    risk_percent: float = Field(..., ge=0)
    include_vat: bool = True
    vat_rate: float = Field(..., ge=0, le=100)
    as_of: datetime = Field(..., description="Pricing timestamp for price-history resolution")
    base_currency: str = "ILS"
    display_currency: str = "USD"
    use_msrp_pricing: bool = False
    clamp_negative_prices: bool = True

    @field_validator("base_currency", "display_currency")
    @classmethod
    def _currency_code(cls, value: str) -> str:
        return normalize_code(value)

    def to_domain(self) -> QuotationParameters:
        return QuotationParameters(**self.model_dump())

    @classmethod
    def from_domain(cls, params: QuotationParameters) -> "QuotationParametersSchema":
        return cls(**asdict(params))


class QuotationItemSchema(BaseModel):
    """Flat quotation_items row."""
    id: str
    system_id: str
    item_order: int = Field(..., ge=1)
    name: str = Field(..., min_length=1)
    item_type: ItemType
    labor_subtype: Optional[LaborSubtype] = None
    component_id: Optional[str] = None
    assembly_id: Optional[str] = None
    is_custom_item: bool = False
    is_internal_labor: bool = False
    unit_cost: Optional[float] = Field(None, ge=0, description="Stored cost, custom items only")
    currency: Optional[str] = Field(None, description="Custom items only; empty means the quotation base currency")
    quantity: int = Field(..., gt=0)
    margin_percentage: Optional[float] = None
    use_msrp_pricing: bool = False
    notes: str = ""

    @field_validator("currency")
    @classmethod
    def _currency_code(cls, value: Optional[str]) -> Optional[str]:
        return normalize_code(value) if value else None

    @model_validator(mode="after")
    def _check_source(self) -> "QuotationItemSchema":
        refs = [r for r in (self.component_id, self.assembly_id) if r]
        if len(refs) > 1:
            raise ValueError("component_id and assembly_id are mutually exclusive")
        if refs and (self.is_custom_item or self.is_internal_labor):
            raise ValueError("custom / internal labor items cannot reference the library")
        if not refs and not self.is_internal_labor and self.unit_cost is None:
            raise ValueError("custom items require unit_cost")
        # Raises on inconsistent type / subtype pairs
        ItemKind.from_parts(self.item_type, self.labor_subtype)
        return self

    def to_domain(self) -> QuotationItem:
        if self.component_id:
            source = ComponentRef(self.component_id)
        elif self.assembly_id:
            source = AssemblyRef(self.assembly_id)
        elif self.is_internal_labor:
            source = InternalLabor()
        else:
            source = CustomCost(unit_cost=self.unit_cost, currency=self.currency)

        return QuotationItem(
            id=self.id,
            system_id=self.system_id,
            item_order=self.item_order,
            name=self.name,
            kind=ItemKind.from_parts(self.item_type, self.labor_subtype),
            source=source,
            quantity=self.quantity,
            margin_percentage=self.margin_percentage,
            use_msrp_pricing=self.use_msrp_pricing,
            notes=self.notes,
        )


def _messages(exc: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in err['loc']) or 'item'}: {err['msg']}" for err in exc.errors()]


def parse_parameters(data: Mapping[str, Any]) -> QuotationParameters:
    try:
        return QuotationParametersSchema(**data).to_domain()
    except ValidationError as exc:
        raise InvalidInputError("Invalid quotation parameters: " + "; ".join(_messages(exc))) from exc


def parse_item(data: Mapping[str, Any]) -> QuotationItem:
    try:
        return QuotationItemSchema(**data).to_domain()
    except ValidationError as exc:
        raise InvalidInputError("Invalid quotation item: " + "; ".join(_messages(exc))) from exc


def parameter_errors(params: QuotationParameters) -> List[str]:
    """Human-readable validation errors for an already built parameter set."""
    try:
        QuotationParametersSchema.from_domain(params)
    except ValidationError as exc:
        return _messages(exc)
    return []


def item_to_row(item: QuotationItem) -> Dict[str, Any]:
    """Flatten a domain item back into the persisted row shape."""
    source = item.source
    return {
        "id": item.id,
        "system_id": item.system_id,
        "item_order": item.item_order,
        "name": item.name,
        "item_type": item.kind.item_type.value,
        "labor_subtype": item.kind.labor_subtype.value if item.kind.labor_subtype else None,
        "component_id": source.component_id if isinstance(source, ComponentRef) else None,
        "assembly_id": source.assembly_id if isinstance(source, AssemblyRef) else None,
        "is_custom_item": isinstance(source, CustomCost),
        "is_internal_labor": isinstance(source, InternalLabor),
        "unit_cost": source.unit_cost if isinstance(source, CustomCost) else None,
        "currency": source.currency if isinstance(source, CustomCost) else None,
        "quantity": item.quantity,
        "margin_percentage": item.margin_percentage,
        "use_msrp_pricing": item.use_msrp_pricing,
        "notes": item.notes,
    }
