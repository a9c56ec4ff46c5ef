from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from assessor.domain.layers import LAYERS, ZERO, check_layer, safe_amount


@dataclass(frozen=True)
class PlanKey:
    """Identity of a recurring plan for allocation bookkeeping.

    An ISIN may be saved into from several depots, so both fields take part
    in equality.
    """

    isin: str | None
    depot_id: int | None = None

    @property
    def sort_isin(self) -> str:
        return self.isin or ""


@dataclass(frozen=True)
class SavingPlanItem:
    """One recurring contribution instruction to a single instrument.

    Attributes:
        isin: Instrument identifier
        depot_id: Depot holding the plan
        amount: Current monthly contribution (None is treated as 0)
        layer: Portfolio layer 1-5 the instrument belongs to
    """

    isin: str | None
    depot_id: int | None
    amount: Decimal | None
    layer: int

    def __post_init__(self) -> None:
        check_layer(self.layer)

    @property
    def key(self) -> PlanKey:
        return PlanKey(self.isin, self.depot_id)

    @property
    def safe_amount(self) -> Decimal:
        return safe_amount(self.amount)

    @property
    def sort_isin(self) -> str:
        return self.isin or ""


def plan_amount_order(plan: SavingPlanItem) -> tuple[Decimal, str]:
    """Sort key: amount descending, then ISIN ascending."""

    return (-plan.safe_amount, plan.sort_isin)


def group_by_layer(plans: list[SavingPlanItem]) -> dict[int, list[SavingPlanItem]]:
    grouped: dict[int, list[SavingPlanItem]] = {layer: [] for layer in LAYERS}
    for plan in plans:
        grouped[plan.layer].append(plan)
    return grouped


def total_amount(plans: list[SavingPlanItem]) -> Decimal:
    return sum((plan.safe_amount for plan in plans), ZERO)
