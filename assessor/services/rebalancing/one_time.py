"""Split a one-time lump sum across layers and, optionally, instruments."""

from __future__ import annotations

from decimal import Decimal

import structlog

from assessor.domain.layers import ONE_TIME_LAYERS, ZERO, LayerAmounts, divide_ratio
from assessor.domain.plans import SavingPlanItem, group_by_layer, total_amount
from assessor.services.rebalancing.dataclasses import OneTimeAllocation
from assessor.services.rebalancing.rounding import round_by_fraction
from assessor.services.rebalancing.targets import compute_distribution

logger = structlog.get_logger(__name__)


def _empty_layers() -> dict[int, Decimal]:
    return {layer: ZERO for layer in ONE_TIME_LAYERS}


def compute_gap_weights(normalized_targets: LayerAmounts, holdings: LayerAmounts) -> dict[int, Decimal]:
    """Return normalized positive target-minus-holdings gaps for layers 1-4."""

    distribution = compute_distribution(holdings, holdings.total())
    gaps = {}
    for layer in ONE_TIME_LAYERS:
        gap = normalized_targets[layer] - distribution[layer]
        if gap > 0:
            gaps[layer] = gap
    gap_total = sum(gaps.values(), ZERO)
    if gap_total <= 0:
        return {}
    return {layer: divide_ratio(gap, gap_total) for layer, gap in gaps.items()}


def compute_target_weights(normalized_targets: LayerAmounts) -> dict[int, Decimal]:
    """Renormalize the target weights of layers 1-4; empty when they sum to 0."""

    total = sum((normalized_targets[layer] for layer in ONE_TIME_LAYERS), ZERO)
    if total == 0:
        return {}
    return {layer: divide_ratio(normalized_targets[layer], total) for layer in ONE_TIME_LAYERS}


def allocate_by_weights(total: Decimal, weights: dict[int, Decimal]) -> dict[int, Decimal]:
    if not weights or total <= 0:
        return {}
    raw = {layer: total * weight for layer, weight in weights.items()}
    return round_by_fraction(raw, total, tie_key=lambda layer: layer)


def compute_one_time_layers(
    amount: Decimal,
    normalized_targets: LayerAmounts,
    holdings_by_layer: LayerAmounts | None,
) -> dict[int, Decimal]:
    """Split ``amount`` toward the layers furthest below target.

    Falls back to the plain target weights when no holdings are given or no
    layer in 1-4 is under target.
    """
    if holdings_by_layer is not None and holdings_by_layer.total() != 0:
        gap_weights = compute_gap_weights(normalized_targets, holdings_by_layer)
        if gap_weights:
            return allocate_by_weights(amount, gap_weights)
    return allocate_by_weights(amount, compute_target_weights(normalized_targets))


def fold_below_minimum_rebalancing(
    allocations: dict[int, Decimal],
    minimum_rebalancing: Decimal | None,
) -> dict[int, Decimal]:
    """Pool every layer amount below the minimum into the first positive layer."""

    if not allocations or minimum_rebalancing is None or minimum_rebalancing <= 0:
        return dict(allocations)
    adjusted = _empty_layers()
    pooled = ZERO
    for layer in ONE_TIME_LAYERS:
        amount = allocations.get(layer, ZERO)
        if 0 < amount < minimum_rebalancing:
            pooled += amount
        else:
            adjusted[layer] = amount
    if pooled > 0:
        receiver = next((layer for layer in ONE_TIME_LAYERS if adjusted[layer] > 0), ONE_TIME_LAYERS[0])
        adjusted[receiver] += pooled
    return adjusted


def fold_below_minimum_instrument(
    allocations: dict[int, Decimal],
    minimum_instrument_amount: Decimal | None,
) -> dict[int, Decimal]:
    """Fold layers 4 down to 2 into the next lower layer while below the minimum."""

    if not allocations or minimum_instrument_amount is None or minimum_instrument_amount <= 0:
        return dict(allocations)
    adjusted = _empty_layers()
    adjusted.update(allocations)
    for layer in reversed(ONE_TIME_LAYERS[1:]):
        amount = adjusted[layer]
        if 0 < amount < minimum_instrument_amount:
            adjusted[layer] = ZERO
            adjusted[layer - 1] += amount
    return adjusted


def resolve_minimum_allocation(
    minimum_rebalancing: Decimal | None,
    minimum_instrument_amount: Decimal | None,
) -> Decimal | None:
    candidates = [value for value in (minimum_rebalancing, minimum_instrument_amount) if value is not None]
    return max(candidates) if candidates else None


def allocate_instrument_layer(plans: list[SavingPlanItem], layer_amount: Decimal) -> dict[str, Decimal]:
    total = total_amount(plans)
    if total == 0:
        per_plan = divide_ratio(layer_amount, Decimal(len(plans)))
        raw = {plan.sort_isin: per_plan for plan in plans}
    else:
        raw = {plan.sort_isin: layer_amount * divide_ratio(plan.safe_amount, total) for plan in plans}
    return round_by_fraction(raw, layer_amount, tie_key=lambda isin: isin)


def suppress_instrument_allocations(
    allocations: dict[str, Decimal],
    plans: list[SavingPlanItem],
    minimum_allocation: Decimal | None,
) -> dict[str, Decimal]:
    """Move instrument amounts below the minimum onto the smallest holder.

    The receiver is the smallest plan (amount ascending, ISIN ascending)
    that still holds a positive allocation, else the smallest plan overall.
    """
    if not allocations or minimum_allocation is None or minimum_allocation <= 0:
        return dict(allocations)
    adjusted = dict(allocations)
    pooled = ZERO
    for isin, value in allocations.items():
        if 0 < value < minimum_allocation:
            pooled += value
            adjusted[isin] = ZERO
    if pooled > 0 and plans:
        ordered = sorted(plans, key=lambda plan: (plan.safe_amount, plan.sort_isin))
        receiver = next(
            (plan.sort_isin for plan in ordered if adjusted.get(plan.sort_isin, ZERO) > 0),
            ordered[0].sort_isin,
        )
        adjusted[receiver] = adjusted.get(receiver, ZERO) + pooled
    return adjusted


def allocate_instruments(
    layer_allocations: dict[int, Decimal],
    plans: list[SavingPlanItem],
    minimum_rebalancing: Decimal | None,
    minimum_instrument_amount: Decimal | None,
) -> dict[str, Decimal]:
    minimum_allocation = resolve_minimum_allocation(minimum_rebalancing, minimum_instrument_amount)
    by_layer = group_by_layer(plans)
    buckets: dict[str, Decimal] = {}
    for layer in ONE_TIME_LAYERS:
        layer_amount = layer_allocations.get(layer, ZERO)
        if layer_amount <= 0:
            continue
        if minimum_allocation is not None and minimum_allocation > 0 and layer_amount < minimum_allocation:
            continue
        layer_plans = by_layer[layer]
        if not layer_plans:
            continue
        allocations = allocate_instrument_layer(layer_plans, layer_amount)
        allocations = suppress_instrument_allocations(allocations, layer_plans, minimum_allocation)
        for isin, value in allocations.items():
            if value > 0:
                buckets[isin] = value
    return buckets


def build_one_time_allocation(
    one_time_amount: Decimal | None,
    normalized_targets: LayerAmounts,
    holdings_by_layer: LayerAmounts | None,
    plans: list[SavingPlanItem],
    minimum_rebalancing: Decimal | None,
    minimum_instrument_amount: Decimal | None,
    instrument_allocation_enabled: bool,
) -> OneTimeAllocation | None:
    """Split a lump sum across layers 1-4 and optionally per instrument.

    Args:
        one_time_amount: Lump sum to invest
        normalized_targets: Normalized target weights for layers 1-5
        holdings_by_layer: Current market value per layer, if known
        plans: Active saving plans used as the instrument universe
        minimum_rebalancing: Smallest amount worth allocating
        minimum_instrument_amount: Smallest amount per single instrument
        instrument_allocation_enabled: Whether to produce instrument buckets

    Returns:
        None when there is no lump sum, an empty allocation when it is below
        the rebalance minimum, otherwise the layer (and instrument) split
    """
    if one_time_amount is None or one_time_amount <= 0:
        return None
    if minimum_rebalancing is not None and one_time_amount < minimum_rebalancing:
        logger.info(
            "one_time_amount_below_minimum",
            amount=str(one_time_amount),
            minimum=str(minimum_rebalancing),
        )
        return OneTimeAllocation(layer_buckets={}, instrument_buckets=None)

    layers = compute_one_time_layers(one_time_amount, normalized_targets, holdings_by_layer)
    layers = fold_below_minimum_rebalancing(layers, minimum_rebalancing)
    layers = fold_below_minimum_instrument(layers, minimum_instrument_amount)
    if layers:
        complete = _empty_layers()
        complete.update(layers)
        layers = complete

    instrument_buckets = None
    if instrument_allocation_enabled and plans:
        instrument_buckets = allocate_instruments(layers, plans, minimum_rebalancing, minimum_instrument_amount)
    return OneTimeAllocation(layer_buckets=layers, instrument_buckets=instrument_buckets)
