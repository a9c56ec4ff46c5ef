"""
Tests for the weight-driven plan allocator.

Tests: assessor/services/rebalancing/delta_allocator.py
"""

from decimal import Decimal

import pytest

from assessor.domain.plans import PlanKey
from assessor.services.rebalancing.delta_allocator import (
    Allocation,
    PlanInput,
    SavingPlanDeltaAllocator,
    allocate_deltas_by_weight,
)

TEN = Decimal("10")
FIFTEEN = Decimal("15")
A = PlanKey("AAA111", 1)
B = PlanKey("BBB222", 1)


def _plan(key: PlanKey, amount: int, weight: str | None = None) -> PlanInput:
    return PlanInput(key=key, current_amount=Decimal(amount), weight=None if weight is None else Decimal(weight))


@pytest.fixture
def allocator() -> SavingPlanDeltaAllocator:
    return SavingPlanDeltaAllocator()


@pytest.mark.services
@pytest.mark.unit
class TestAllocateDeltasByWeight:
    """Tests for allocate_deltas_by_weight."""

    def test_remainder_goes_to_lowest_index(self) -> None:
        split = allocate_deltas_by_weight([Decimal("1")] * 3, Decimal("10"))
        assert split == {0: Decimal("4"), 1: Decimal("3"), 2: Decimal("3")}

    def test_zero_weights_split_equally(self) -> None:
        split = allocate_deltas_by_weight([Decimal("0"), Decimal("0")], Decimal("10"))
        assert split == {0: Decimal("5"), 1: Decimal("5")}

    def test_non_positive_target(self) -> None:
        assert allocate_deltas_by_weight([Decimal("1")], Decimal("0")) == {}


@pytest.mark.services
@pytest.mark.unit
class TestSavingPlanDeltaAllocator:
    """Tests for SavingPlanDeltaAllocator.allocate_to_target."""

    def test_increase_follows_weights(self, allocator) -> None:
        """Weight 2:1 splits +30 as 20 / 10."""
        allocation = allocator.allocate_to_target(
            [_plan(A, 100, "2"), _plan(B, 100, "1")], Decimal("230"), TEN, FIFTEEN
        )

        assert allocation.deltas == {A: Decimal("20"), B: Decimal("10")}
        assert allocation.proposed_amounts == {A: Decimal("120"), B: Decimal("110")}
        assert allocation.discarded_plans == frozenset()
        assert allocation.min_rebalance_suppressed is False

    def test_soft_pass_used_when_strict_finds_nothing(self, allocator) -> None:
        """A +1 change cannot clear the minimum, so the soft pass places it."""
        allocation = allocator.allocate_to_target([_plan(A, 50), _plan(B, 50)], Decimal("101"), TEN, FIFTEEN)

        assert allocation.proposed_amounts == {A: Decimal("51"), B: Decimal("50")}
        assert sum(allocation.proposed_amounts.values()) == Decimal("101")
        assert allocation.min_rebalance_suppressed is True

    def test_decrease_split_without_discard(self, allocator) -> None:
        allocation = allocator.allocate_to_target([_plan(A, 100), _plan(B, 100)], Decimal("160"), TEN, FIFTEEN)

        assert allocation.deltas == {A: Decimal("-20"), B: Decimal("-20")}
        assert allocation.discarded_plans == frozenset()

    def test_decrease_avoids_plan_without_room(self, allocator) -> None:
        """A has only 5 above the minimum plan size, so B takes the whole cut."""
        allocation = allocator.allocate_to_target([_plan(A, 20), _plan(B, 100)], Decimal("100"), TEN, FIFTEEN)

        assert allocation.proposed_amounts == {A: Decimal("20"), B: Decimal("80")}

    def test_discards_lowest_weight_plan(self, allocator) -> None:
        """Neither plan can shrink by 20 and stay above 15; the lighter one goes."""
        allocation = allocator.allocate_to_target(
            [_plan(A, 20, "3"), _plan(B, 20, "1")], Decimal("20"), TEN, FIFTEEN
        )

        assert allocation.proposed_amounts == {A: Decimal("20"), B: Decimal("0")}
        assert allocation.discarded_plans == frozenset({B})

    def test_negative_target_treated_as_zero(self, allocator) -> None:
        allocation = allocator.allocate_to_target([_plan(A, 30)], Decimal("-5"), TEN, FIFTEEN)

        assert allocation.proposed_amounts == {A: Decimal("0")}
        assert allocation.discarded_plans == frozenset({A})

    def test_target_already_met(self, allocator) -> None:
        allocation = allocator.allocate_to_target([_plan(A, 30)], Decimal("30"), TEN, FIFTEEN)

        assert allocation.proposed_amounts == {A: Decimal("30")}
        assert allocation.deltas == {}

    def test_no_plans(self, allocator) -> None:
        assert allocator.allocate_to_target(None, Decimal("30"), TEN, FIFTEEN) == Allocation()
        assert allocator.allocate_to_target([None], Decimal("30"), TEN, FIFTEEN) == Allocation()

    def test_allocation_maps_are_read_only(self, allocator) -> None:
        allocation = allocator.allocate_to_target([_plan(A, 30), _plan(B, 30)], Decimal("80"), TEN, FIFTEEN)

        with pytest.raises(TypeError):
            allocation.deltas[A] = Decimal("0")
        with pytest.raises(TypeError):
            allocation.proposed_amounts[B] = Decimal("0")
