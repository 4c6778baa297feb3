"""
conftest.py: Shared pytest fixtures for the quotation engine test suite.

No database or external service fixtures are defined here.  All tests in this
suite are pure unit tests that exercise computation classes in isolation.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``quoter.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
from datetime import datetime, timezone

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any quoter imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


AS_OF = datetime(2024, 7, 1, tzinfo=timezone.utc)
JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
JUN_1 = datetime(2024, 6, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Parameters and engines
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def params():
    """
    Deterministic quotation parameters.

      USD -> ILS = 3.7, EUR -> ILS = 4.0, markup = 25%, day labor = 1200 ILS,
      risk = 10%, VAT = 18% included, as_of = 2024-07-01 UTC.
    """
    from quoter.models.domain import QuotationParameters
    return QuotationParameters(
        usd_to_base_rate=3.7,
        eur_to_base_rate=4.0,
        markup_percent=25.0,
        day_labor_cost=1200.0,
        profit_percent=20.0,
        risk_percent=10.0,
        include_vat=True,
        vat_rate=18.0,
        as_of=AS_OF,
    )


@pytest.fixture(scope="session")
def rates():
    """RateTable with ILS base: 1 USD = 3.7 ILS, 1 EUR = 4.0 ILS."""
    from quoter.services.currency_engine import RateTable
    return RateTable("ILS", {"USD": 3.7, "EUR": 4.0})


@pytest.fixture(scope="session")
def normalizer(rates):
    from quoter.services.currency_engine import CurrencyNormalizer
    return CurrencyNormalizer(rates, "USD")


@pytest.fixture(scope="session")
def engine():
    """QuotationEngine is stateless; one instance serves the whole session."""
    from quoter.services.quotation_engine import QuotationEngine
    return QuotationEngine()


# ---------------------------------------------------------------------------
# Shared sample library
# ---------------------------------------------------------------------------

def _component(cid, name, cost, currency="USD", **kwargs):
    from quoter.models.domain import Component, PriceHistoryRecord
    history = kwargs.pop("history", None)
    if history is None:
        history = (PriceHistoryRecord(cid, cost, currency, JAN_1, None, "supplier quote"),)
    return Component(id=cid, name=name, unit_cost=cost, currency=currency,
                     price_history=tuple(history), **kwargs)


@pytest.fixture(scope="session")
def reference():
    """
    Component and assembly library.

    Components:
      Sensor-100     100 USD
      Controller-B   300 USD
      Cable-EU        10 EUR
      Valve-50        50 USD until 2024-06-01, 60 USD from then on
      Display-X      200 USD cost, MSRP 300 USD
      Legacy-9        40 USD, inactive
      Orphan-0       no price history
    Assemblies:
      Panel-A   2 x Sensor-100 + 1 x Controller-B           = 500 USD
      Rack-R    2 x Panel-A + 3 x Cable-EU                   = 1000 USD + 30 EUR
      Empty-E   no members
      Loop-1 -> Loop-2 -> Loop-1                            (cycle)
    """
    from quoter.models.domain import Assembly, AssemblyMember, PriceHistoryRecord, ReferenceData

    components = [
        _component("Sensor-100", "Temperature sensor", 100.0),
        _component("Controller-B", "PLC controller", 300.0),
        _component("Cable-EU", "Shielded cable", 10.0, "EUR"),
        _component(
            "Valve-50", "Control valve", 60.0,
            history=(
                PriceHistoryRecord("Valve-50", 50.0, "USD", JAN_1, JUN_1),
                PriceHistoryRecord("Valve-50", 60.0, "USD", JUN_1, None),
            ),
        ),
        _component("Display-X", "HMI display", 200.0, msrp_price=300.0, msrp_currency="USD",
                   partner_discount_percent=33.33),
        _component("Legacy-9", "Discontinued relay", 40.0, is_active=False),
        _component("Orphan-0", "Unpriced part", 0.0, history=()),
    ]
    assemblies = [
        Assembly("Panel-A", "Sensor panel", (
            AssemblyMember(component_id="Sensor-100", quantity=2),
            AssemblyMember(component_id="Controller-B", quantity=1),
        )),
        Assembly("Rack-R", "Control rack", (
            AssemblyMember(assembly_id="Panel-A", quantity=2),
            AssemblyMember(component_id="Cable-EU", quantity=3),
        )),
        Assembly("Empty-E", "Placeholder kit"),
        Assembly("Loop-1", "Cyclic kit 1", (AssemblyMember(assembly_id="Loop-2"),)),
        Assembly("Loop-2", "Cyclic kit 2", (AssemblyMember(assembly_id="Loop-1"),)),
        Assembly("Unpriced-K", "Kit with unpriced part", (AssemblyMember(component_id="Orphan-0"),)),
    ]
    return ReferenceData.build(components, assemblies)


@pytest.fixture
def make_item():
    """Factory for QuotationItem with sensible defaults."""
    from quoter.models.domain import ComponentRef, ItemKind, QuotationItem

    def _make(item_id="i1", system_id="s1", item_order=1, source=None, kind=ItemKind.HARDWARE, **kwargs):
        return QuotationItem(
            id=item_id,
            system_id=system_id,
            item_order=item_order,
            name=kwargs.pop("name", item_id),
            kind=kind,
            source=source or ComponentRef("Sensor-100"),
            **kwargs,
        )
    return _make


@pytest.fixture
def sample_project(params):
    """
    Two systems, mixed item sources.

      System 1 (x1): 2 x Sensor-100, 1 x Panel-A, 2 engineering days (internal)
      System 2 (x2): 1 x custom software licence at 1000 ILS, 1 commissioning day at 500 USD custom
    """
    from quoter.models.domain import (
        AssemblyRef, ComponentRef, CustomCost, InternalLabor, ItemKind,
        QuotationItem, QuotationProject, QuotationSystem,
    )
    systems = (
        QuotationSystem("s1", "Control panel", order=1, quantity=1),
        QuotationSystem("s2", "SCADA", order=2, quantity=2),
    )
    items = (
        QuotationItem("i1", "s1", 1, "Sensors", ItemKind.HARDWARE, ComponentRef("Sensor-100"), quantity=2),
        QuotationItem("i2", "s1", 2, "Panel", ItemKind.HARDWARE, AssemblyRef("Panel-A")),
        QuotationItem("i3", "s1", 3, "Engineering", ItemKind.LABOR_ENGINEERING, InternalLabor(), quantity=2),
        QuotationItem("i4", "s2", 1, "SCADA licence", ItemKind.SOFTWARE, CustomCost(1000.0, "ILS")),
        QuotationItem("i5", "s2", 2, "Commissioning", ItemKind.LABOR_COMMISSIONING,
                      CustomCost(500.0, "USD"), margin_percentage=0.0),
    )
    return QuotationProject("q1", "Plant upgrade", "Acme", params, systems, items)
