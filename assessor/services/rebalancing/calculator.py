"""Translate layer-level deltas into per-plan saving plan suggestions."""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal

import structlog

from assessor.domain.layers import LAYERS, ZERO, LayerAmounts, divide_ratio
from assessor.domain.plans import (
    PlanKey,
    SavingPlanItem,
    group_by_layer,
    plan_amount_order,
    total_amount,
)
from assessor.services.rebalancing.dataclasses import SavingPlanSuggestion, SuggestionType
from assessor.services.rebalancing.rounding import round_by_fraction

logger = structlog.get_logger(__name__)

MAX_PLAN_ITERATIONS = 18

PlanMap = dict[PlanKey, SavingPlanItem]
PlanDeltas = dict[PlanKey, Decimal]

RATIONALES: dict[str, str] = {
    "discard": "Discard to avoid sub-minimum saving plan size.",
    "increase": "Increase to align with target layer allocation.",
    "decrease": "Decrease to align with target layer allocation.",
    "create": "Create to align with target layer allocation.",
}


def _below_minimum(value: Decimal, minimum: Decimal | None) -> bool:
    return minimum is not None and abs(value) < minimum


def plan_delta_order(plans: PlanMap, deltas: PlanDeltas) -> Callable[[PlanKey], tuple]:
    """Sort key: smallest absolute delta first, then layer, then ISIN."""

    def key(plan_key: PlanKey) -> tuple:
        plan = plans.get(plan_key)
        return (
            abs(deltas.get(plan_key, ZERO)),
            plan.layer if plan is not None else 0,
            plan_key.sort_isin,
        )

    return key


def allocate_proportional(plans: list[SavingPlanItem], target: Decimal) -> PlanDeltas:
    if not plans or target == 0:
        return {}
    total = total_amount(plans)
    raw: PlanDeltas = {}
    if total == 0:
        per_plan = divide_ratio(target, Decimal(len(plans)))
        for plan in plans:
            raw[plan.key] = per_plan
    else:
        for plan in plans:
            raw[plan.key] = target * divide_ratio(plan.safe_amount, total)
    return round_by_fraction(raw, target, tie_key=lambda k: k.sort_isin)


def allocate_layer_delta(
    plans: list[SavingPlanItem],
    layer_delta: Decimal,
    minimum_rebalancing: Decimal | None,
) -> PlanDeltas:
    """Split one layer's delta across its plans proportionally to their size.

    Plans are ordered by amount descending (ISIN ascending on ties). If any
    non-zero share falls below the rebalance minimum the smallest plan is
    dropped and the split retried. Decreases never exceed a plan's amount.

    Args:
        plans: Plans of the layer
        layer_delta: Signed amount to distribute
        minimum_rebalancing: Smallest per-plan change worth proposing

    Returns:
        PlanKey -> signed delta; empty when no candidate set clears the minimum
    """
    if not plans or layer_delta == 0:
        return {}
    candidates = sorted(plans, key=plan_amount_order)
    negative = layer_delta < 0
    target = abs(layer_delta)

    while candidates:
        allocations = allocate_proportional(candidates, target)
        if not any(value != 0 and _below_minimum(value, minimum_rebalancing) for value in allocations.values()):
            if not negative:
                return allocations
            capped: PlanDeltas = {}
            for plan in candidates:
                delta = -allocations.get(plan.key, ZERO)
                if delta < 0 and abs(delta) > plan.safe_amount:
                    delta = -plan.safe_amount
                capped[plan.key] = delta
            return capped
        candidates = candidates[:-1]
    return {}


def apply_minimum_plan_size(
    plans: PlanMap,
    deltas: PlanDeltas,
    minimum_saving_plan_size: Decimal | None,
    minimum_rebalancing: Decimal | None,
) -> PlanDeltas:
    """Avoid leaving a plan with a positive amount below the plan minimum.

    A large enough decrease becomes a full discard; anything else is dropped.
    """
    if not plans or not deltas or minimum_saving_plan_size is None or minimum_saving_plan_size <= 0:
        return dict(deltas)
    adjusted = dict(deltas)
    for key, delta in deltas.items():
        plan = plans.get(key)
        if plan is None or delta == 0:
            continue
        new_amount = plan.safe_amount + delta
        if 0 < new_amount < minimum_saving_plan_size:
            if delta < 0 and not _below_minimum(delta, minimum_rebalancing):
                adjusted[key] = -plan.safe_amount
            else:
                adjusted[key] = ZERO
    return adjusted


def _reduce_plan_deltas(
    plans: PlanMap,
    adjusted: PlanDeltas,
    minimum_rebalancing: Decimal | None,
    residual: Decimal,
    sign: int,
) -> Decimal:
    candidates = [key for key, value in adjusted.items() if value * sign > 0]
    candidates.sort(key=plan_delta_order(plans, adjusted))
    remaining = residual
    for key in candidates:
        if remaining <= 0:
            break
        magnitude = abs(adjusted[key])
        reduction = min(magnitude, remaining)
        updated = magnitude - reduction
        if updated > 0 and _below_minimum(updated, minimum_rebalancing):
            reduction = magnitude
            updated = ZERO
        adjusted[key] = updated * sign if updated else ZERO
        remaining -= reduction
    return residual - remaining


def _grow_plan_delta(
    plans: PlanMap,
    adjusted: PlanDeltas,
    residual: Decimal,
    sign: int,
) -> Decimal:
    if sign > 0:
        candidates = [key for key, value in adjusted.items() if value >= 0]
    else:
        candidates = [key for key, value in adjusted.items() if value < 0]
    if not candidates:
        return ZERO
    candidates.sort(key=plan_delta_order(plans, adjusted), reverse=True)
    adjusted[candidates[0]] += residual * sign
    return residual


def balance_plan_deltas(
    plans: PlanMap,
    deltas: PlanDeltas,
    minimum_rebalancing: Decimal | None,
    target_total: Decimal | None,
) -> PlanDeltas:
    """Pull the sum of plan deltas back to ``target_total``.

    Same-signed deltas are trimmed smallest first; when none can absorb the
    residual, the largest opposite-signed delta grows instead. Bounded, so
    the result may be left short when nothing can move.
    """
    if not deltas:
        return dict(deltas)
    adjusted = dict(deltas)
    desired = target_total if target_total is not None else ZERO
    residual = sum(adjusted.values(), ZERO) - desired
    guard = 0
    while residual != 0 and guard < MAX_PLAN_ITERATIONS:
        guard += 1
        if residual > 0:
            moved = _reduce_plan_deltas(plans, adjusted, minimum_rebalancing, residual, sign=1)
            if moved == 0 and _grow_plan_delta(plans, adjusted, residual, sign=-1) == 0:
                break
        else:
            moved = _reduce_plan_deltas(plans, adjusted, minimum_rebalancing, abs(residual), sign=-1)
            if moved == 0 and _grow_plan_delta(plans, adjusted, abs(residual), sign=1) == 0:
                break
        residual = sum(adjusted.values(), ZERO) - desired
    if residual != 0:
        logger.debug("plan_deltas_unbalanced", residual=str(residual), iterations=guard)
    return adjusted


def apply_residual_delta(
    plans: PlanMap,
    deltas: PlanDeltas,
    target_total: Decimal | None,
    minimum_saving_plan_size: Decimal | None,
) -> PlanDeltas:
    """Put whatever the per-layer passes could not place onto a single plan.

    Prefers the largest delta sharing the residual's sign whose plan stays
    non-negative and does not end up below the plan minimum.
    """
    if not plans or not deltas:
        return dict(deltas)
    desired = target_total if target_total is not None else ZERO
    residual = desired - sum(deltas.values(), ZERO)
    if residual == 0:
        return dict(deltas)

    candidates = [key for key, value in deltas.items() if value != 0 and (value > 0) == (residual > 0)]
    if not candidates:
        candidates = list(deltas)
    candidates.sort(key=plan_delta_order(plans, deltas), reverse=True)

    selected = None
    for key in candidates:
        plan = plans.get(key)
        if plan is None:
            continue
        updated = deltas.get(key, ZERO) + residual
        if updated < -plan.safe_amount:
            continue
        new_amount = plan.safe_amount + updated
        if (
            new_amount > 0
            and minimum_saving_plan_size is not None
            and minimum_saving_plan_size > 0
            and new_amount < minimum_saving_plan_size
        ):
            continue
        selected = key
        break
    if selected is None:
        selected = candidates[0]

    adjusted = dict(deltas)
    adjusted[selected] = adjusted.get(selected, ZERO) + residual
    return adjusted


def determine_type(old_amount: Decimal, new_amount: Decimal) -> SuggestionType:
    if new_amount == 0 and old_amount > 0:
        return "discard"
    if old_amount == 0 and new_amount > 0:
        return "create"
    if new_amount < old_amount:
        return "decrease"
    return "increase"


def build_saving_plan_suggestions(
    plans: list[SavingPlanItem | None] | None,
    layer_deltas: LayerAmounts | None,
    minimum_rebalancing: Decimal | None,
    minimum_saving_plan_size: Decimal | None,
) -> list[SavingPlanSuggestion]:
    """Build per-plan suggestions that realize the layer deltas.

    Each layer's delta is split across that layer's plans, cleaned of
    sub-minimum plan sizes and re-balanced to the layer total (twice, since
    the minimum pass can reopen a gap). A final residual pass restores the
    overall sum. Deltas below the rebalance minimum are not reported.

    Args:
        plans: Current recurring plans; None entries are skipped
        layer_deltas: Signed change per layer
        minimum_rebalancing: Smallest change worth proposing
        minimum_saving_plan_size: Smallest allowed plan amount

    Returns:
        Suggestions sorted by type, then ISIN
    """
    if not plans or layer_deltas is None:
        return []
    active = [plan for plan in plans if plan is not None]
    plan_map: PlanMap = {plan.key: plan for plan in active}
    by_layer = group_by_layer(active)

    deltas: PlanDeltas = {}
    for layer in LAYERS:
        layer_delta = layer_deltas[layer]
        if layer_delta == 0:
            continue
        allocations = allocate_layer_delta(by_layer[layer], layer_delta, minimum_rebalancing)
        if not allocations:
            continue
        layer_total = sum(allocations.values(), ZERO)
        for _ in range(2):
            allocations = apply_minimum_plan_size(
                plan_map, allocations, minimum_saving_plan_size, minimum_rebalancing
            )
            allocations = balance_plan_deltas(plan_map, allocations, minimum_rebalancing, layer_total)
        deltas.update(allocations)

    deltas = apply_residual_delta(plan_map, deltas, layer_deltas.total(), minimum_saving_plan_size)

    suggestions: list[SavingPlanSuggestion] = []
    for key, delta in deltas.items():
        if delta == 0 or _below_minimum(delta, minimum_rebalancing):
            continue
        plan = plan_map.get(key)
        if plan is None:
            continue
        old_amount = plan.safe_amount
        new_amount = old_amount + delta
        if new_amount < 0:
            new_amount = ZERO
            delta = new_amount - old_amount
        suggestion_type = determine_type(old_amount, new_amount)
        suggestions.append(
            SavingPlanSuggestion(
                type=suggestion_type,
                isin=plan.isin,
                depot_id=plan.depot_id,
                old_amount=old_amount,
                new_amount=new_amount,
                delta=delta,
                rationale=RATIONALES[suggestion_type],
            )
        )
    suggestions.sort(key=lambda s: (s.type, s.isin or ""))
    return suggestions
