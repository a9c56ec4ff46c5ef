"""Target normalization, target amounts and tolerance checks per layer."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal

from assessor.domain.layers import (
    LAYERS,
    ONE_HUNDRED,
    ZERO,
    LayerAmounts,
    divide_ratio,
    safe_amount,
)
from assessor.services.rebalancing.rounding import round_layer_targets

DEFAULT_VARIANCE_PCT = Decimal("3.0")
TOLERANCE_QUANTUM = Decimal("0.000001")


def _weight_for(raw: Mapping[int, Decimal | None], layer: int) -> Decimal:
    value = safe_amount(raw.get(layer))
    return value if value > 0 else ZERO


def normalize_targets(raw: Mapping[int, Decimal | None] | LayerAmounts | None) -> LayerAmounts:
    """Normalize raw layer weights to fractions summing to 1.

    Absent and negative weights count as zero. When the weights add up to
    zero or less every layer gets zero.
    """
    if raw is None:
        return LayerAmounts.zeros()
    if isinstance(raw, LayerAmounts):
        raw = raw.as_dict()
    weights = [_weight_for(raw, layer) for layer in LAYERS]
    total = sum(weights, ZERO)
    if total <= 0:
        return LayerAmounts.zeros()
    return LayerAmounts.of([divide_ratio(weight, total) for weight in weights])


def build_target_amounts(normalized: LayerAmounts, total: Decimal | None) -> LayerAmounts:
    """Convert normalized weights into whole-unit target amounts for ``total``."""

    if total is None:
        return LayerAmounts.zeros()
    desired = LayerAmounts.of([weight * total for weight in normalized])
    return round_layer_targets(desired, total)


def compute_distribution(values: LayerAmounts, total: Decimal | None) -> LayerAmounts:
    """Return each layer's share of ``total`` (all zero for an empty total)."""

    if total is None or total == 0:
        return LayerAmounts.zeros()
    return LayerAmounts.of([divide_ratio(value, total) for value in values])


def resolve_variance_pct(variance_pct: Decimal | None) -> Decimal:
    if variance_pct is None or variance_pct < 0:
        return DEFAULT_VARIANCE_PCT
    return variance_pct


def is_within_tolerance(
    actual: LayerAmounts,
    target: LayerAmounts,
    variance_pct: Decimal | None = None,
) -> bool:
    """Check every layer's share is within ``variance_pct`` points of its target."""

    tolerance = (resolve_variance_pct(variance_pct) / ONE_HUNDRED).quantize(
        TOLERANCE_QUANTUM, rounding=ROUND_HALF_UP
    )
    for actual_value, target_value in zip(actual, target):
        if abs(actual_value - target_value) > tolerance:
            return False
    return True


def compute_deltas(targets: LayerAmounts, current: LayerAmounts) -> LayerAmounts:
    return LayerAmounts.of([target - value for target, value in zip(targets, current)])
