"""
test_assembly_engine.py: Unit tests for recursive assembly cost roll-up.

Tests cover:
  - Flat and nested roll-ups (Panel-A = 500 USD, Rack-R = 2 x Panel-A + 3 x Cable-EU)
  - Per-currency breakdown and leaf counts
  - Cycle detection (hard failure, path reported)
  - Shared sub-assemblies reached through two branches (not a cycle)
  - Empty and inactive-member warnings
  - Library-wide cycle scan
"""

import math
from datetime import datetime, timezone

import pytest

from quoter.models.domain import Assembly, AssemblyMember, ReferenceData
from quoter.services.assembly_engine import AssemblyRollupEngine, find_assembly_cycles, rollup_cost
from quoter.services.errors import (
    CircularAssemblyError,
    InvalidInputError,
    NoActivePriceError,
    UnknownReferenceError,
)

AS_OF = datetime(2024, 7, 1, tzinfo=timezone.utc)


@pytest.fixture
def rollup_engine(reference, normalizer):
    return AssemblyRollupEngine(reference, normalizer, AS_OF)


class TestRollup:

    def test_panel_a_is_500_usd(self, rollup_engine):
        """2 x 100 USD + 1 x 300 USD = 500 USD = 1850 ILS."""
        result = rollup_engine.rollup("Panel-A")
        assert math.isclose(result.unit_cost_base, 1850.0)
        assert math.isclose(result.unit_cost_in("USD"), 500.0)
        assert result.base_currency == "ILS"

    def test_panel_a_counts_and_breakdown(self, rollup_engine):
        result = rollup_engine.rollup("Panel-A")
        assert result.line_count == 2
        assert math.isclose(result.unit_count, 3.0)
        assert result.breakdown["USD"].count == 2
        assert math.isclose(result.breakdown["USD"].total, 500.0)

    def test_nested_rack(self, rollup_engine):
        """2 x 1850 ILS + 3 x (10 EUR x 4.0) = 3700 + 120 = 3820 ILS."""
        result = rollup_engine.rollup("Rack-R")
        assert math.isclose(result.unit_cost_base, 3820.0)
        assert result.line_count == 3
        assert math.isclose(result.unit_count, 9.0)
        assert math.isclose(result.breakdown["USD"].total, 1000.0)
        assert math.isclose(result.breakdown["EUR"].total, 30.0)

    def test_traces_weighted_by_path_quantity(self, rollup_engine):
        traces = {t.component_id: t for t in rollup_engine.rollup("Rack-R").traces
                  if t.component_id == "Sensor-100"}
        assert math.isclose(traces["Sensor-100"].quantity, 4.0)
        assert math.isclose(traces["Sensor-100"].cost_base, 370.0)

    def test_rollup_cost_function(self, reference, rates):
        assert math.isclose(rollup_cost("Panel-A", reference, as_of=AS_OF, rates=rates), 1850.0)

    def test_repeated_rollup_is_identical(self, rollup_engine, reference, normalizer):
        fresh = AssemblyRollupEngine(reference, normalizer, AS_OF)
        assert rollup_engine.rollup("Rack-R").unit_cost_base == fresh.rollup("Rack-R").unit_cost_base

    def test_fractional_member_quantity(self, reference, normalizer):
        lib = ReferenceData.build(
            reference.components.values(),
            [Assembly("Half", "Half sensor", (AssemblyMember(component_id="Sensor-100", quantity=0.5),))],
        )
        assert math.isclose(AssemblyRollupEngine(lib, normalizer, AS_OF).rollup_cost("Half"), 185.0)


class TestRollupFailures:

    def test_cycle_raises_with_path(self, rollup_engine):
        with pytest.raises(CircularAssemblyError) as exc:
            rollup_engine.rollup("Loop-1")
        assert exc.value.path == ["Loop-1", "Loop-2", "Loop-1"]

    def test_self_reference_raises(self, reference, normalizer):
        lib = ReferenceData.build(
            reference.components.values(),
            [Assembly("Self", "Self kit", (AssemblyMember(assembly_id="Self"),))],
        )
        with pytest.raises(CircularAssemblyError):
            AssemblyRollupEngine(lib, normalizer, AS_OF).rollup("Self")

    def test_shared_subassembly_is_not_a_cycle(self, reference, normalizer):
        """Top -> Panel-A and Top -> Rack-R -> Panel-A reuse Panel-A without looping."""
        lib = ReferenceData.build(
            reference.components.values(),
            list(reference.assemblies.values()) + [
                Assembly("Top", "Diamond", (
                    AssemblyMember(assembly_id="Panel-A"),
                    AssemblyMember(assembly_id="Rack-R"),
                )),
            ],
        )
        cost = AssemblyRollupEngine(lib, normalizer, AS_OF).rollup_cost("Top")
        assert math.isclose(cost, 1850.0 + 3820.0)

    def test_unpriced_member_propagates(self, rollup_engine):
        with pytest.raises(NoActivePriceError) as exc:
            rollup_engine.rollup("Unpriced-K")
        assert exc.value.component_id == "Orphan-0"

    def test_unknown_assembly(self, rollup_engine):
        with pytest.raises(UnknownReferenceError) as exc:
            rollup_engine.rollup("Nope")
        assert exc.value.kind == "assembly"

    def test_unknown_component_member(self, reference, normalizer):
        lib = ReferenceData.build([], [Assembly("A", "A", (AssemblyMember(component_id="Ghost"),))])
        with pytest.raises(UnknownReferenceError):
            AssemblyRollupEngine(lib, normalizer, AS_OF).rollup("A")

    def test_member_needs_exactly_one_reference(self):
        with pytest.raises(InvalidInputError):
            AssemblyMember(component_id="A", assembly_id="B")
        with pytest.raises(InvalidInputError):
            AssemblyMember()

    def test_member_quantity_positive(self):
        with pytest.raises(InvalidInputError):
            AssemblyMember(component_id="A", quantity=0)


class TestRollupWarnings:

    def test_empty_assembly_costs_zero_with_warning(self, rollup_engine):
        result = rollup_engine.rollup("Empty-E")
        assert result.unit_cost_base == 0.0
        assert any("no members" in w for w in result.warnings)

    def test_inactive_member_warns(self, reference, normalizer):
        lib = ReferenceData.build(
            reference.components.values(),
            [Assembly("Old", "Old kit", (AssemblyMember(component_id="Legacy-9"),))],
        )
        result = AssemblyRollupEngine(lib, normalizer, AS_OF).rollup("Old")
        assert math.isclose(result.unit_cost_base, 148.0)
        assert any("inactive" in w for w in result.warnings)


class TestFindAssemblyCycles:

    def test_finds_loop(self, reference):
        cycles = find_assembly_cycles(reference.assemblies)
        assert cycles == [["Loop-1", "Loop-2", "Loop-1"]]

    def test_acyclic_library(self, reference):
        acyclic = {k: v for k, v in reference.assemblies.items() if not k.startswith("Loop")}
        assert find_assembly_cycles(acyclic) == []
