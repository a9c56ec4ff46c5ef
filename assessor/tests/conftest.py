"""
Root-level pytest fixtures for the assessor test suite.

Fixture Hierarchy:
- make_plan: Factory for SavingPlanItem values
- engine: Stateless AssessorEngine
- engine_input: Factory for AssessorEngineInput with explicit minimums
- settings: Settings with the documented defaults (no environment lookup)
"""

from collections.abc import Callable
from decimal import Decimal
from typing import Any

import pytest

from assessor.domain.plans import SavingPlanItem
from assessor.services.rebalancing.dataclasses import AssessorEngineInput
from assessor.services.rebalancing.engine import AssessorEngine
from config.settings import Settings


@pytest.fixture
def make_plan() -> Callable[..., SavingPlanItem]:
    """Build a plan; amounts may be given as int, str or Decimal."""

    def _make(isin: str, amount: Any, layer: int, depot_id: int | None = 1) -> SavingPlanItem:
        return SavingPlanItem(isin=isin, depot_id=depot_id, amount=Decimal(str(amount)), layer=layer)

    return _make


@pytest.fixture
def engine() -> AssessorEngine:
    return AssessorEngine()


@pytest.fixture
def engine_input() -> Callable[..., AssessorEngineInput]:
    """Build an engine input with the common minimums (plan 15, rebalance 10, instrument 25)."""

    def _make(**overrides: Any) -> AssessorEngineInput:
        values: dict[str, Any] = {
            "selected_profile": "BALANCED",
            "acceptable_variance_pct": Decimal("0"),
            "minimum_saving_plan_size": 15,
            "minimum_rebalancing_amount": 10,
            "minimum_instrument_amount": 25,
            "holdings_by_layer": {},
        }
        values.update(overrides)
        return AssessorEngineInput(**values)

    return _make


@pytest.fixture
def settings() -> Settings:
    return Settings()
