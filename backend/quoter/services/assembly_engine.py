"""
Assembly cost roll-up.

An assembly's unit cost is the quantity-weighted sum of its members: leaf
components priced through the traceability resolver, sub-assemblies rolled
up recursively (depth first, so a child is fully resolved before its parent
sums). Cycles are a hard failure; a truncated cost is never returned.

One AssemblyRollupEngine instance serves one computation pass. Its memo is
discarded with it, so no roll-up survives a price change.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Set, Tuple

from quoter.models.domain import Assembly, PriceTrace, ReferenceData
from quoter.services.currency_engine import CurrencyNormalizer, RateTable, normalize_code
from quoter.services.errors import CircularAssemblyError
from quoter.services.price_resolver import resolve_active_price

logger = logging.getLogger("quoter-assembly")


@dataclass(frozen=True)
class CurrencyBucket:
    """Leaf lines priced in one original currency: line count and weighted total in that currency."""
    count: int = 0
    total: float = 0.0


@dataclass(frozen=True)
class AssemblyRollup:
    assembly_id: str
    name: str
    unit_cost_base: float
    rates: RateTable
    line_count: int = 0                  # leaf component lines, unweighted
    unit_count: float = 0.0              # leaf component units, quantity weighted
    breakdown: Mapping[str, CurrencyBucket] = field(default_factory=dict)
    traces: Tuple[PriceTrace, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def base_currency(self) -> str:
        return self.rates.base_currency

    def unit_cost_in(self, currency: str) -> float:
        return self.unit_cost_base / self.rates.rate_for(currency)


class AssemblyRollupEngine:
    """Per-pass roll-up with memoisation of already resolved sub-assemblies."""

    def __init__(self, reference: ReferenceData, normalizer: CurrencyNormalizer, as_of: datetime) -> None:
        self.reference = reference
        self.normalizer = normalizer
        self.as_of = as_of
        self._memo: Dict[Tuple[str, datetime], AssemblyRollup] = {}

    def rollup(self, assembly_id: str, visited: Optional[Set[str]] = None) -> AssemblyRollup:
        """
        Roll up ``assembly_id``.

        ``visited`` holds the assemblies on the current descent path. Entering
        an id already on the path raises CircularAssemblyError.
        """
        return self._rollup(assembly_id, visited if visited is not None else set(), ())

    def rollup_cost(self, assembly_id: str, visited: Optional[Set[str]] = None) -> float:
        return self.rollup(assembly_id, visited).unit_cost_base

    # ------------------------------------------------------------------

    def _rollup(self, assembly_id: str, visited: Set[str], path: Tuple[str, ...]) -> AssemblyRollup:
        if assembly_id in visited:
            start = path.index(assembly_id) if assembly_id in path else 0
            cycle = list(path[start:]) + [assembly_id]
            logger.error(f"Circular assembly detected: {' -> '.join(cycle)}")
            raise CircularAssemblyError(cycle)

        key = (assembly_id, self.as_of)
        cached = self._memo.get(key)
        if cached is not None:
            return cached

        assembly = self.reference.assembly(assembly_id)
        visited.add(assembly_id)
        try:
            result = self._sum_members(assembly, visited, path + (assembly_id,))
        finally:
            visited.discard(assembly_id)

        self._memo[key] = result
        return result

    def _sum_members(self, assembly: Assembly, visited: Set[str], path: Tuple[str, ...]) -> AssemblyRollup:
        cost = 0.0
        line_count = 0
        unit_count = 0.0
        buckets: Dict[str, CurrencyBucket] = {}
        traces: List[PriceTrace] = []
        warnings: List[str] = []

        if not assembly.members:
            msg = f"Assembly {assembly.id} ({assembly.name}) has no members; rolled-up cost is 0"
            logger.warning(msg)
            warnings.append(msg)

        for member in assembly.members:
            qty = member.quantity
            if member.is_assembly:
                sub = self._rollup(member.assembly_id, visited, path)
                cost += qty * sub.unit_cost_base
                line_count += sub.line_count
                unit_count += qty * sub.unit_count
                for ccy, bucket in sub.breakdown.items():
                    prev = buckets.get(ccy, CurrencyBucket())
                    buckets[ccy] = CurrencyBucket(prev.count + bucket.count, prev.total + qty * bucket.total)
                traces.extend(
                    PriceTrace(t.component_id, t.record, t.quantity * qty, t.cost_base) for t in sub.traces
                )
                warnings.extend(sub.warnings)
                continue

            component = self.reference.component(member.component_id)
            if not component.is_active:
                msg = f"Assembly {assembly.id}: component {component.id} ({component.name}) is inactive"
                logger.warning(msg)
                warnings.append(msg)

            resolution = resolve_active_price(component.price_history, self.as_of, component.id)
            warnings.extend(resolution.warnings)
            unit_base = self.normalizer.to_base(resolution.cost, resolution.currency)

            cost += qty * unit_base
            line_count += 1
            unit_count += qty
            ccy = normalize_code(resolution.currency)
            prev = buckets.get(ccy, CurrencyBucket())
            buckets[ccy] = CurrencyBucket(prev.count + 1, prev.total + qty * resolution.cost)
            traces.append(PriceTrace(component.id, resolution.record, qty, unit_base))

        logger.debug(f"Assembly {assembly.id} rolled up: {cost:.4f} {self.normalizer.base_currency} "
                     f"({line_count} leaf lines)")
        return AssemblyRollup(
            assembly_id=assembly.id,
            name=assembly.name,
            unit_cost_base=cost,
            rates=self.normalizer.rates,
            line_count=line_count,
            unit_count=unit_count,
            breakdown=buckets,
            traces=tuple(traces),
            warnings=tuple(warnings),
        )


def rollup_cost(assembly_id: str, member_resolver: ReferenceData, visited: Optional[Set[str]] = None,
                *, as_of: datetime, rates: RateTable) -> float:
    """Rolled-up unit cost of ``assembly_id`` in the rate table's base currency."""
    engine = AssemblyRollupEngine(member_resolver, CurrencyNormalizer(rates, rates.base_currency), as_of)
    return engine.rollup_cost(assembly_id, visited)


def find_assembly_cycles(assemblies: Mapping[str, Assembly]) -> List[List[str]]:
    """
    Every cycle in the assembly library, each as a closed path
    (first id repeated at the end). Members pointing outside the library
    are ignored here.
    """
    WHITE, GRAY, BLACK = 0, 1, 2
    state: Dict[str, int] = {aid: WHITE for aid in assemblies}
    cycles: List[List[str]] = []
    path: List[str] = []

    def visit(aid: str) -> None:
        state[aid] = GRAY
        path.append(aid)
        for member in assemblies[aid].members:
            child = member.assembly_id
            if child is None or child not in assemblies:
                continue
            if state[child] == GRAY:
                cycles.append(path[path.index(child):] + [child])
            elif state[child] == WHITE:
                visit(child)
        path.pop()
        state[aid] = BLACK

    for aid in assemblies:
        if state[aid] == WHITE:
            visit(aid)
    return cycles
