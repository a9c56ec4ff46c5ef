"""Fold layers whose target is too small for a saving plan into the layer below."""

from __future__ import annotations

from decimal import Decimal

from assessor.domain.layers import LAYERS, ZERO, LayerAmounts
from assessor.services.rebalancing.dataclasses import MinimumSavingPlanAdjustment


def apply_minimum_saving_plan_size(
    proposal_amounts: LayerAmounts,
    minimum_saving_plan_size: Decimal | None,
) -> MinimumSavingPlanAdjustment:
    """Move sub-minimum layer targets down one layer at a time.

    Layers 5 to 2 are scanned top-down; a positive amount below the minimum
    is zeroed and added to ``layer - 1``. If layer 1 then holds the only
    positive amount and it is still below the minimum, it is raised to the
    minimum. That bump is the only place the monthly total can grow.

    Args:
        proposal_amounts: Target amount per layer
        minimum_saving_plan_size: Smallest allowed plan size

    Returns:
        MinimumSavingPlanAdjustment with the folded amounts and what changed
    """
    if minimum_saving_plan_size is None or minimum_saving_plan_size <= 0:
        return MinimumSavingPlanAdjustment(adjusted_amounts=proposal_amounts)

    adjusted = proposal_amounts.to_list()
    zeroed_layers: list[int] = []
    for layer in range(LAYERS[-1], LAYERS[0], -1):
        amount = adjusted[layer - 1]
        if 0 < amount < minimum_saving_plan_size:
            adjusted[layer - 1] = ZERO
            adjusted[layer - 2] += amount
            zeroed_layers.append(layer)

    increased_layer_one = False
    positive_layers = [layer for layer in LAYERS if adjusted[layer - 1] > 0]
    if positive_layers == [1] and adjusted[0] < minimum_saving_plan_size:
        adjusted[0] = minimum_saving_plan_size
        increased_layer_one = True

    result = LayerAmounts.of(adjusted)
    return MinimumSavingPlanAdjustment(
        adjusted_amounts=result,
        zeroed_layers=tuple(zeroed_layers),
        rebalanced=result != proposal_amounts,
        increased_layer_one_to_minimum=increased_layer_one,
    )
