"""
Quotation statistics: read-only breakdowns for reporting.

Everything here is derived from an already computed QuotationCalculations
snapshot. Nothing produced here is fed back into totals.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from quoter import config
from quoter.models.domain import ItemType, LaborSubtype, QuotationProject
from quoter.services.errors import InvalidInputError

logger = logging.getLogger("quoter-stats")


@dataclass(frozen=True)
class TypeProfit:
    cost: float
    price: float
    profit: float
    markup_percent: float      # profit / cost
    margin_percent: float      # profit / price


@dataclass(frozen=True)
class QuotationStatistics:
    hardware_percent: float
    software_percent: float
    labor_percent: float
    engineering_percent: float
    commissioning_percent: float
    installation_percent: float
    programming_percent: float
    material_percent: float
    hw_eng_comm_ratio: str
    component_counts: Mapping[str, int]
    profit_by_type: Mapping[ItemType, TypeProfit]
    profit_target_percent: float = 0.0
    meets_profit_target: bool = True

    @property
    def labor_only_percent(self) -> float:
        return self.labor_percent


def safe_percent(value: float, total: float) -> float:
    return round(value / total * 100.0, 1) if total > 0 else 0.0


def _type_profit(cost: float, price: float) -> TypeProfit:
    profit = price - cost
    return TypeProfit(
        cost=round(cost, 2),
        price=round(price, 2),
        profit=round(profit, 2),
        markup_percent=round(profit / cost * 100.0, 1) if cost > 0 else 0.0,
        margin_percent=round(profit / price * 100.0, 1) if price > 0 else 0.0,
    )


def calculate_statistics(project: QuotationProject) -> QuotationStatistics:
    calcs = project.calculations
    if calcs is None:
        raise InvalidInputError("Quotation must be calculated before generating statistics")

    total = calcs.subtotal
    hardware = safe_percent(calcs.type_price(ItemType.HARDWARE), total)
    software = safe_percent(calcs.type_price(ItemType.SOFTWARE), total)
    labor = safe_percent(calcs.type_price(ItemType.LABOR), total)
    engineering = safe_percent(calcs.labor_price(LaborSubtype.ENGINEERING), total)
    commissioning = safe_percent(calcs.labor_price(LaborSubtype.COMMISSIONING), total)

    # Shares cover priced lines only, so the counts do too
    counts = {t.value: 0 for t in ItemType}
    for item in project.materialized_items:
        counts[item.kind.item_type.value] += 1
    counts["total"] = len(project.materialized_items)
    counts["unpriced"] = len(calcs.unpriced_items)

    profit_by_type = {
        t: _type_profit(c.cost, c.price) for t, c in calcs.by_type.items()
    }

    stats = QuotationStatistics(
        hardware_percent=hardware,
        software_percent=software,
        labor_percent=labor,
        engineering_percent=engineering,
        commissioning_percent=commissioning,
        installation_percent=safe_percent(calcs.labor_price(LaborSubtype.INSTALLATION), total),
        programming_percent=safe_percent(calcs.labor_price(LaborSubtype.PROGRAMMING), total),
        material_percent=safe_percent(
            calcs.type_price(ItemType.HARDWARE) + calcs.type_price(ItemType.SOFTWARE), total
        ),
        hw_eng_comm_ratio=format_ratio([hardware, engineering, commissioning]),
        component_counts=counts,
        profit_by_type=profit_by_type,
        profit_target_percent=project.parameters.profit_percent,
        meets_profit_target=calcs.profit_margin_percent >= project.parameters.profit_percent,
    )
    logger.debug(f"Statistics for {project.id}: ratio {stats.hw_eng_comm_ratio}, {counts['total']} lines")
    return stats


# ---------------------------------------------------------------------------
# Ratio helpers
# ---------------------------------------------------------------------------

def format_ratio(values: Sequence[float]) -> str:
    return ":".join(f"{v:.1f}" for v in values)


def parse_ratio(ratio: str) -> List[float]:
    try:
        return [float(part) for part in ratio.split(":")]
    except ValueError:
        raise InvalidInputError(f"Malformed ratio: {ratio!r}") from None


# ---------------------------------------------------------------------------
# Comparison & classification
# ---------------------------------------------------------------------------

def compare_statistics(current: QuotationStatistics, previous: QuotationStatistics) -> Dict[str, float]:
    return {
        "hardware_percent_delta": round(current.hardware_percent - previous.hardware_percent, 1),
        "labor_percent_delta": round(current.labor_percent - previous.labor_percent, 1),
        "total_components_delta": current.component_counts["total"] - previous.component_counts["total"],
    }


def dominant_category(stats: QuotationStatistics) -> Tuple[str, float]:
    """Category with the largest share; ties go to the first listed."""
    categories = [
        ("hardware", stats.hardware_percent),
        ("software", stats.software_percent),
        ("engineering", stats.engineering_percent),
        ("commissioning", stats.commissioning_percent),
        ("installation", stats.installation_percent),
        ("programming", stats.programming_percent),
    ]
    best = categories[0]
    for cat in categories[1:]:
        if cat[1] > best[1]:
            best = cat
    return best


def quotation_profile(stats: QuotationStatistics,
                      threshold: float = config.PROFILE_THRESHOLD_PCT) -> str:
    if stats.material_percent > stats.labor_only_percent + threshold:
        return "material-heavy"
    if stats.labor_only_percent > stats.material_percent + threshold:
        return "labor-heavy"
    return "balanced"


def validate_statistics(stats: QuotationStatistics,
                        tolerance: float = config.PERCENT_SUM_TOLERANCE) -> Tuple[bool, List[str]]:
    errors: List[str] = []
    type_sum = stats.hardware_percent + stats.software_percent + stats.labor_percent

    # An empty or zero-priced quotation has no shares to check
    if type_sum > 0:
        if abs(type_sum - 100.0) > tolerance:
            errors.append(f"Type percentages don't add to 100% ({type_sum:.1f}%)")
        material_labor = stats.material_percent + stats.labor_only_percent
        if abs(material_labor - 100.0) > tolerance:
            errors.append(f"Material + labor don't add to 100% ({material_labor:.1f}%)")

    counts = stats.component_counts
    parts = counts["hardware"] + counts["software"] + counts["labor"]
    if parts != counts["total"]:
        errors.append(
            f"Component counts don't match total "
            f"({counts['hardware']}+{counts['software']}+{counts['labor']} != {counts['total']})"
        )
    return not errors, errors


def statistics_for_export(stats: QuotationStatistics) -> Dict[str, Any]:
    def margin(t: ItemType) -> float:
        profit = stats.profit_by_type.get(t)
        return profit.margin_percent if profit else 0.0

    return {
        "Hardware %": stats.hardware_percent,
        "Software %": stats.software_percent,
        "Labor %": stats.labor_percent,
        "Engineering %": stats.engineering_percent,
        "Commissioning %": stats.commissioning_percent,
        "Installation %": stats.installation_percent,
        "Programming %": stats.programming_percent,
        "Material %": stats.material_percent,
        "HW:Eng:Comm Ratio": stats.hw_eng_comm_ratio,
        "Total Components": stats.component_counts["total"],
        "Hardware Items": stats.component_counts["hardware"],
        "Software Items": stats.component_counts["software"],
        "Labor Items": stats.component_counts["labor"],
        "Unpriced Items": stats.component_counts.get("unpriced", 0),
        "Hardware Profit Margin": margin(ItemType.HARDWARE),
        "Software Profit Margin": margin(ItemType.SOFTWARE),
        "Labor Profit Margin": margin(ItemType.LABOR),
        "Profit Target %": stats.profit_target_percent,
        "Profit Target Met": stats.meets_profit_target,
    }
