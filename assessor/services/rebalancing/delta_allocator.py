"""Weight-driven allocator that moves a group of plans to an exact target total."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType

import structlog

from assessor.domain.layers import ONE, ZERO, divide_ratio, safe_amount
from assessor.domain.plans import PlanKey
from assessor.services.rebalancing.rounding import round_by_fraction

logger = structlog.get_logger(__name__)

MAX_CANDIDATE_ROUNDS = 12

Amounts = dict[PlanKey, Decimal]


@dataclass(frozen=True)
class PlanInput:
    """A plan taking part in a target-driven allocation.

    Attributes:
        key: Plan identity
        current_amount: Current recurring amount (None counts as 0)
        weight: Relative preference; non-positive or missing weights count as 1
    """

    key: PlanKey
    current_amount: Decimal | None
    weight: Decimal | None = None


@dataclass(frozen=True)
class Allocation:
    """Outcome of moving a plan group to a target total."""

    proposed_amounts: Mapping[PlanKey, Decimal] = field(default_factory=dict)
    deltas: Mapping[PlanKey, Decimal] = field(default_factory=dict)
    discarded_plans: frozenset[PlanKey] = frozenset()
    min_rebalance_suppressed: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "proposed_amounts", MappingProxyType(dict(self.proposed_amounts)))
        object.__setattr__(self, "deltas", MappingProxyType(dict(self.deltas)))
        object.__setattr__(self, "discarded_plans", frozenset(self.discarded_plans))


@dataclass(frozen=True)
class _Candidate:
    key: PlanKey
    weight: Decimal
    amount: Decimal


@dataclass(frozen=True)
class _ReductionCandidate:
    key: PlanKey
    weight: Decimal
    amount: Decimal
    capacity: Decimal
    eligible_capacity: Decimal


def _minimum(value: Decimal | None) -> Decimal:
    if value is None or value <= 0:
        return ZERO
    return value


def _weight(value: Decimal | None) -> Decimal:
    if value is None or value <= 0:
        return ONE
    return value


def _total(values: Iterable[Decimal]) -> Decimal:
    return sum((safe_amount(v) for v in values), ZERO)


def allocate_deltas_by_weight(weights: list[Decimal], target: Decimal) -> dict[int, Decimal]:
    """Split ``target`` by ``weights`` into whole units keyed by list index.

    Equal split when all weights are zero. Remainder units go to the largest
    fractions, lower index first on ties.
    """
    if not weights or target <= 0:
        return {}
    total_weight = sum(weights, ZERO)
    if total_weight == 0:
        per_candidate = divide_ratio(target, Decimal(len(weights)))
        raw = {index: per_candidate for index in range(len(weights))}
    else:
        raw = {index: target * divide_ratio(weight, total_weight) for index, weight in enumerate(weights)}
    return round_by_fraction(raw, target, tie_key=lambda index: index)


class SavingPlanDeltaAllocator:
    """Moves a set of plans to a target total, preferring high-weight plans.

    Unlike the layer-driven plan allocator this one works from explicit
    per-plan weights and tries hard to avoid discards: decreases are capped
    at each plan's room above the minimum plan size, and only when that room
    is insufficient does it search for the smallest set of plans to drop.
    """

    def allocate_to_target(
        self,
        plans: list[PlanInput | None] | None,
        target_total: Decimal | None,
        minimum_rebalancing: Decimal | None,
        minimum_saving_plan_size: Decimal | None,
    ) -> Allocation:
        """Propose new amounts for ``plans`` summing exactly to ``target_total``.

        A strict pass honours the rebalance minimum and a soft pass ignores
        it; the soft proposal wins when the strict one found nothing or
        discards more plans.

        Args:
            plans: Plans to adjust; None entries are skipped
            target_total: Desired total (negative is treated as 0)
            minimum_rebalancing: Smallest per-plan change worth proposing
            minimum_saving_plan_size: Smallest allowed plan amount

        Returns:
            Allocation with proposed amounts, deltas and discarded plans
        """
        active = [plan for plan in plans or [] if plan is not None and plan.key is not None]
        if not active:
            return Allocation()
        target = target_total if target_total is not None and target_total > 0 else ZERO

        current: Amounts = {plan.key: safe_amount(plan.current_amount) for plan in active}
        delta = target - _total(current.values())
        if delta == 0:
            return Allocation(proposed_amounts=dict(current))

        min_rebalance = _minimum(minimum_rebalancing)
        min_saving = _minimum(minimum_saving_plan_size)

        strict_deltas = self._allocate_by_weights(active, delta, min_rebalance, min_saving)
        strict = self._finalize(current, strict_deltas, target, active, min_saving) if strict_deltas else None
        strict_discards = self._discards(current, strict) if strict is not None else frozenset()

        soft = None
        soft_discards: frozenset[PlanKey] = frozenset()
        if min_rebalance > 0:
            soft_deltas = self._allocate_by_weights(active, delta, ZERO, min_saving)
            if soft_deltas:
                soft = self._finalize(current, soft_deltas, target, active, min_saving)
                soft_discards = self._discards(current, soft)

        suppressed = False
        proposed, discarded = strict, strict_discards
        if soft is not None and (proposed is None or len(soft_discards) < len(strict_discards)):
            proposed, discarded = soft, soft_discards
            suppressed = True
        if proposed is None:
            proposed = self._enforce_target_sum(dict(current), target, active, min_saving)
            discarded = self._discards(current, proposed)
            suppressed = min_rebalance > 0

        deltas: Amounts = {}
        for key, amount in current.items():
            change = proposed.get(key, ZERO) - amount
            deltas[key] = change
            if not suppressed and min_rebalance > 0 and change != 0 and abs(change) < min_rebalance:
                suppressed = True

        logger.debug(
            "plan_group_allocated",
            plan_count=len(active),
            target_total=str(target),
            discarded=len(discarded),
            min_rebalance_suppressed=suppressed,
        )
        return Allocation(
            proposed_amounts=proposed,
            deltas=deltas,
            discarded_plans=frozenset(discarded),
            min_rebalance_suppressed=suppressed,
        )

    def _finalize(
        self,
        current: Amounts,
        deltas: Amounts,
        target: Decimal,
        plans: list[PlanInput],
        min_saving: Decimal,
    ) -> Amounts:
        proposed = {key: max(amount + deltas.get(key, ZERO), ZERO) for key, amount in current.items()}
        return self._enforce_target_sum(proposed, target, plans, min_saving)

    @staticmethod
    def _discards(current: Amounts, proposed: Amounts) -> frozenset[PlanKey]:
        return frozenset(
            key for key, amount in current.items() if amount > 0 and proposed.get(key, ZERO) == 0
        )

    def _enforce_target_sum(
        self,
        proposed: Amounts,
        target: Decimal,
        plans: list[PlanInput],
        min_saving: Decimal,
    ) -> Amounts:
        """Close any remaining gap to ``target`` on a single plan when possible."""
        if not proposed:
            return proposed
        residual = target - _total(proposed.values())
        if residual == 0:
            return proposed
        weights = {plan.key: _weight(plan.weight) for plan in plans}
        adjusted = dict(proposed)

        if residual > 0:
            self._increase(adjusted, weights, residual)
            return adjusted

        reduction = abs(residual)
        chosen = self._select_reduction_target(adjusted, weights, min_saving, reduction)
        if chosen is not None:
            adjusted[chosen] -= reduction
            return adjusted

        capped = self._allocate_reductions_with_caps(
            self._reduction_candidates(adjusted, weights, min_saving, ZERO), reduction, ZERO
        )
        if capped:
            for key, value in capped.items():
                adjusted[key] -= value
        else:
            candidates = [_Candidate(key, weights.get(key, ONE), safe_amount(v)) for key, v in adjusted.items()]
            for key, value in self._allocate_negative(candidates, reduction, ZERO, min_saving).items():
                adjusted[key] += value

        shortfall = target - _total(adjusted.values())
        if shortfall > 0:
            self._increase(adjusted, weights, shortfall)
        return adjusted

    @staticmethod
    def _increase(adjusted: Amounts, weights: Mapping[PlanKey, Decimal], amount: Decimal) -> None:
        chosen = max(adjusted, key=lambda key: (weights.get(key, ZERO), key.sort_isin))
        adjusted[chosen] += amount

    @staticmethod
    def _select_reduction_target(
        amounts: Amounts,
        weights: Mapping[PlanKey, Decimal],
        min_saving: Decimal,
        reduction: Decimal,
    ) -> PlanKey | None:
        eligible = [key for key, amount in amounts.items() if safe_amount(amount) - min_saving >= reduction]
        if not eligible:
            return None
        return min(eligible, key=lambda key: (weights.get(key, ZERO), key.sort_isin))

    @staticmethod
    def _reduction_candidates(
        amounts: Amounts,
        weights: Mapping[PlanKey, Decimal],
        min_saving: Decimal,
        min_rebalance: Decimal,
    ) -> list[_ReductionCandidate]:
        candidates = []
        for key, value in amounts.items():
            amount = safe_amount(value)
            capacity = max(amount - min_saving, ZERO)
            eligible = capacity
            if min_rebalance > 0 and eligible < min_rebalance:
                eligible = ZERO
            candidates.append(_ReductionCandidate(key, _weight(weights.get(key)), amount, capacity, eligible))
        return candidates

    def _allocate_by_weights(
        self,
        plans: list[PlanInput],
        delta: Decimal,
        min_rebalance: Decimal,
        min_saving: Decimal,
    ) -> Amounts:
        if delta == 0:
            return {}
        candidates = [_Candidate(plan.key, _weight(plan.weight), safe_amount(plan.current_amount)) for plan in plans]
        candidates.sort(key=lambda c: c.key.sort_isin)
        candidates.sort(key=lambda c: c.weight, reverse=True)
        if delta > 0:
            return self._allocate_positive(candidates, delta, min_rebalance)
        return self._allocate_negative(candidates, abs(delta), min_rebalance, min_saving)

    @staticmethod
    def _allocate_positive(candidates: list[_Candidate], total: Decimal, min_rebalance: Decimal) -> Amounts:
        remaining = list(candidates)
        for _ in range(MAX_CANDIDATE_ROUNDS):
            if not remaining:
                break
            split = allocate_deltas_by_weight([c.weight for c in remaining], total)
            allocations = {c.key: split.get(i, ZERO) for i, c in enumerate(remaining)}
            offenders = [
                c for c in remaining if min_rebalance > 0 and 0 < allocations[c.key] < min_rebalance
            ]
            if not offenders:
                return allocations
            remaining.remove(offenders[-1])
        return {}

    def _allocate_negative(
        self,
        candidates: list[_Candidate],
        total: Decimal,
        min_rebalance: Decimal,
        min_saving: Decimal,
    ) -> Amounts:
        if not candidates or total <= 0:
            return {}
        reduction_candidates = []
        for candidate in candidates:
            capacity = max(candidate.amount - min_saving, ZERO)
            eligible = ZERO if min_rebalance > 0 and capacity < min_rebalance else capacity
            reduction_candidates.append(
                _ReductionCandidate(candidate.key, candidate.weight, candidate.amount, capacity, eligible)
            )
        max_reduction = sum((c.eligible_capacity for c in reduction_candidates), ZERO)

        discards = self._select_discards(reduction_candidates, total, max_reduction, min_rebalance)
        discard_keys = {c.key for c in discards}
        reductions: Amounts = {c.key: c.amount for c in discards}
        remaining_total = max(total - sum((c.amount for c in discards), ZERO), ZERO)
        if remaining_total > 0:
            rest = [c for c in reduction_candidates if c.key not in discard_keys]
            reductions.update(self._allocate_reductions_with_caps(rest, remaining_total, min_rebalance))
        return {key: -value for key, value in reductions.items() if value != 0}

    def _allocate_reductions_with_caps(
        self,
        candidates: list[_ReductionCandidate],
        total: Decimal,
        min_rebalance: Decimal,
    ) -> Amounts:
        if not candidates or total <= 0:
            return {}
        remaining = sorted(candidates, key=lambda c: c.key.sort_isin)
        remaining.sort(key=lambda c: c.weight, reverse=True)

        def violates(candidate: _ReductionCandidate, allocation: Decimal) -> bool:
            if allocation == 0:
                return False
            return allocation > candidate.capacity or (min_rebalance > 0 and allocation < min_rebalance)

        for _ in range(MAX_CANDIDATE_ROUNDS):
            if not remaining:
                break
            split = allocate_deltas_by_weight([c.weight for c in remaining], total)
            allocations = {c.key: split.get(i, ZERO) for i, c in enumerate(remaining)}
            offenders = [c for c in remaining if violates(c, allocations[c.key])]
            if not offenders:
                return allocations
            remaining.remove(offenders[-1])

        if min_rebalance <= 0 and sum((c.capacity for c in candidates), ZERO) >= total:
            return self._allocate_greedy(candidates, total)
        return {}

    @staticmethod
    def _allocate_greedy(candidates: list[_ReductionCandidate], total: Decimal) -> Amounts:
        """Drain capacity from the lowest-weight plans first."""
        ordered = sorted(candidates, key=lambda c: (c.weight, c.key.sort_isin))
        reductions: Amounts = {}
        remaining = total
        for candidate in ordered:
            if remaining <= 0:
                break
            if candidate.capacity <= 0:
                continue
            reduction = min(candidate.capacity, remaining)
            reductions[candidate.key] = reduction
            remaining -= reduction
        return reductions if remaining == 0 else {}

    def _select_discards(
        self,
        candidates: list[_ReductionCandidate],
        total: Decimal,
        max_reduction: Decimal,
        min_rebalance: Decimal,
    ) -> list[_ReductionCandidate]:
        """Find the cheapest set of plans to discard so the decrease fits.

        Every subset of plans that would free up more than their eligible
        capacity is tried. Ranking: fewest plans, lowest weight sum, smallest
        overshoot beyond ``total``, then the lexical ISIN key.
        """
        excess = total - max_reduction
        if not candidates or total <= 0 or excess <= 0:
            return []
        ordered = sorted(
            (c for c in candidates if c.amount - c.eligible_capacity > 0),
            key=lambda c: c.key.sort_isin,
        )
        if not ordered:
            return []

        best: tuple | None = None
        best_subset: list[_ReductionCandidate] = []
        for mask in range(1, 1 << len(ordered)):
            subset = [c for i, c in enumerate(ordered) if mask & (1 << i)]
            if best is not None and len(subset) > best[0]:
                continue
            gain = sum((c.amount - c.eligible_capacity for c in subset), ZERO)
            if gain < excess:
                continue
            discard_total = sum((c.amount for c in subset), ZERO)
            remaining_total = max(total - discard_total, ZERO)
            if remaining_total > 0:
                subset_keys = {c.key for c in subset}
                rest = [c for c in candidates if c.key not in subset_keys]
                if not self._allocate_reductions_with_caps(rest, remaining_total, min_rebalance):
                    continue
            rank = (
                len(subset),
                sum((c.weight for c in subset), ZERO),
                max(discard_total - total, ZERO),
                "|".join(c.key.sort_isin for c in subset),
            )
            if best is None or rank < best:
                best = rank
                best_subset = subset
        return best_subset
