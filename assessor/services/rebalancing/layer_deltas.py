"""Suppress sub-minimum layer deltas and redistribute what they leave behind."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

import structlog

from assessor.domain.layers import LAYERS, ZERO, LayerAmounts
from assessor.services.rebalancing.dataclasses import LayerDeltaResult

logger = structlog.get_logger(__name__)

MAX_LAYER_ITERATIONS = 12
NOTE_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class RedistributionStep:
    amount: Decimal
    note: str


def format_eur(amount: Decimal) -> str:
    return f"{amount.quantize(NOTE_QUANTUM, rounding=ROUND_HALF_UP)} EUR"


def _largest_first(deltas: list[Decimal], layers: list[int]) -> list[int]:
    return sorted(layers, key=lambda layer: (-abs(deltas[layer - 1]), layer))


def reduce_positive_deltas(
    deltas: list[Decimal], minimum_rebalancing: Decimal, residual: Decimal
) -> RedistributionStep:
    candidates = _largest_first(deltas, [layer for layer in LAYERS if deltas[layer - 1] > 0])
    remaining = residual
    touched: list[int] = []
    for layer in candidates:
        if remaining <= 0:
            break
        delta = deltas[layer - 1]
        reduction = min(delta, remaining)
        updated = delta - reduction
        if 0 < updated < minimum_rebalancing:
            reduction = delta
            updated = ZERO
        deltas[layer - 1] = updated
        remaining -= reduction
        touched.append(layer)
    reduced = residual - remaining
    return RedistributionStep(reduced, f"Reduced increases by {format_eur(reduced)} in layers {touched}")


def reduce_negative_deltas(
    deltas: list[Decimal], minimum_rebalancing: Decimal, residual: Decimal
) -> RedistributionStep:
    candidates = _largest_first(deltas, [layer for layer in LAYERS if deltas[layer - 1] < 0])
    remaining = residual
    touched: list[int] = []
    for layer in candidates:
        if remaining <= 0:
            break
        delta = deltas[layer - 1]
        reduction = min(abs(delta), remaining)
        updated = delta + reduction
        if updated < 0 and abs(updated) < minimum_rebalancing:
            reduction = abs(delta)
            updated = ZERO
        deltas[layer - 1] = updated
        remaining -= reduction
        touched.append(layer)
    reduced = residual - remaining
    return RedistributionStep(reduced, f"Reduced decreases by {format_eur(reduced)} in layers {touched}")


def increase_positive_deltas(deltas: list[Decimal], residual: Decimal) -> RedistributionStep:
    candidates = _largest_first(deltas, [layer for layer in LAYERS if deltas[layer - 1] >= 0])
    if not candidates:
        return RedistributionStep(ZERO, "No positive layers available to increase.")
    layer = candidates[0]
    deltas[layer - 1] += residual
    return RedistributionStep(residual, f"Increased increases by {format_eur(residual)} in layers [{layer}]")


def increase_negative_deltas(deltas: list[Decimal], residual: Decimal) -> RedistributionStep:
    candidates = _largest_first(deltas, [layer for layer in LAYERS if deltas[layer - 1] < 0])
    if not candidates:
        return RedistributionStep(ZERO, "No negative layers available to increase.")
    layer = candidates[0]
    deltas[layer - 1] -= residual
    return RedistributionStep(residual, f"Increased decreases by {format_eur(residual)} in layers [{layer}]")


def adjust_layer_deltas(
    deltas: LayerAmounts | None,
    minimum_rebalancing: Decimal | None,
) -> LayerDeltaResult:
    """Suppress layer deltas below the minimum and keep their total intact.

    Deltas with ``0 < |delta| < minimum_rebalancing`` are zeroed. The
    resulting gap to the original total is then closed by trimming the
    largest same-signed deltas first, or, when nothing can be trimmed, by
    growing the largest delta of the opposite sign. The loop is bounded; if
    it cannot close the gap the best effort is returned with
    ``converged=False``.

    Args:
        deltas: Target minus current amount per layer
        minimum_rebalancing: Smallest layer change worth proposing

    Returns:
        LayerDeltaResult with adjusted deltas, suppression stats and notes
    """
    if deltas is None:
        return LayerDeltaResult(adjusted_deltas=LayerAmounts.zeros())
    if minimum_rebalancing is None or minimum_rebalancing <= 0:
        return LayerDeltaResult(adjusted_deltas=deltas)

    target_total = deltas.total()
    adjusted = deltas.to_list()
    suppressed_layers: list[int] = []
    suppressed_total = ZERO
    for layer, delta in deltas.items():
        if delta != 0 and abs(delta) < minimum_rebalancing:
            adjusted[layer - 1] = ZERO
            suppressed_layers.append(layer)
            suppressed_total += abs(delta)

    notes: list[str] = []
    if suppressed_layers:
        notes.append(f"Suppressed layer deltas below minimum: {suppressed_layers}")

    residual = sum(adjusted, ZERO) - target_total
    guard = 0
    while residual != 0 and guard < MAX_LAYER_ITERATIONS:
        guard += 1
        if residual > 0:
            step = reduce_positive_deltas(adjusted, minimum_rebalancing, residual)
        else:
            step = reduce_negative_deltas(adjusted, minimum_rebalancing, abs(residual))
        if step.amount == 0:
            if residual > 0:
                step = increase_negative_deltas(adjusted, residual)
            else:
                step = increase_positive_deltas(adjusted, abs(residual))
            if step.amount == 0:
                break
        notes.append(step.note)
        residual = sum(adjusted, ZERO) - target_total

    converged = residual == 0
    if not converged:
        logger.warning(
            "layer_deltas_not_converged",
            residual=str(residual),
            iterations=guard,
        )
    return LayerDeltaResult(
        adjusted_deltas=LayerAmounts.of(adjusted),
        suppressed_count=len(suppressed_layers),
        suppressed_amount=suppressed_total,
        redistribution_notes=tuple(notes),
        converged=converged,
    )
