"""
Tests for saving plan value objects.

Tests: assessor/domain/plans.py
"""

from decimal import Decimal

import pytest

from assessor.domain.plans import PlanKey, SavingPlanItem, group_by_layer, plan_amount_order, total_amount


@pytest.mark.domain
@pytest.mark.unit
class TestSavingPlanItem:
    """Tests for the SavingPlanItem value object."""

    def test_layer_outside_range_raises(self) -> None:
        """Layer must be between 1 and 5."""
        with pytest.raises(ValueError, match="between 1 and 5"):
            SavingPlanItem(isin="AAA111", depot_id=1, amount=Decimal("10"), layer=6)

    def test_none_amount_counts_as_zero(self) -> None:
        plan = SavingPlanItem(isin="AAA111", depot_id=1, amount=None, layer=1)
        assert plan.safe_amount == Decimal("0")

    def test_key_includes_depot(self) -> None:
        """The same ISIN in two depots is two different plans."""
        first = SavingPlanItem(isin="AAA111", depot_id=1, amount=Decimal("10"), layer=1)
        second = SavingPlanItem(isin="AAA111", depot_id=2, amount=Decimal("10"), layer=1)
        assert first.key != second.key
        assert first.key == PlanKey("AAA111", 1)

    def test_none_isin_sorts_as_empty(self) -> None:
        plan = SavingPlanItem(isin=None, depot_id=None, amount=Decimal("1"), layer=2)
        assert plan.sort_isin == ""
        assert plan.key.sort_isin == ""


@pytest.mark.domain
@pytest.mark.unit
class TestPlanHelpers:
    """Tests for plan grouping and ordering."""

    def test_amount_order_is_descending_then_isin(self, make_plan) -> None:
        plans = [make_plan("CCC333", 10, 1), make_plan("BBB222", 80, 1), make_plan("AAA111", 10, 1)]
        ordered = sorted(plans, key=plan_amount_order)
        assert [p.isin for p in ordered] == ["BBB222", "AAA111", "CCC333"]

    def test_group_by_layer_has_every_layer(self, make_plan) -> None:
        grouped = group_by_layer([make_plan("AAA111", 10, 2)])
        assert set(grouped) == {1, 2, 3, 4, 5}
        assert [p.isin for p in grouped[2]] == ["AAA111"]
        assert grouped[1] == []

    def test_total_amount(self, make_plan) -> None:
        plans = [make_plan("AAA111", "10.5", 1), make_plan("BBB222", 4, 3)]
        assert total_amount(plans) == Decimal("14.5")
