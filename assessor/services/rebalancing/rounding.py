"""Largest-remainder rounding shared by every allocation stage."""

from __future__ import annotations

from collections.abc import Callable, Hashable, Mapping
from decimal import Decimal
from typing import Any, TypeVar

from assessor.domain.layers import LAYERS, ONE, ZERO, LayerAmounts, floor_amount, round_half_up

K = TypeVar("K", bound=Hashable)


def round_by_fraction(
    raw: Mapping[K, Decimal],
    total: Decimal,
    tie_key: Callable[[K], Any],
) -> dict[K, Decimal]:
    """Round a weighted split so the parts sum to ``round_half_up(total)``.

    Every value is floored; the shortfall is handed out one unit at a time to
    the largest fractional remainders, cycling through the ordered keys when
    the shortfall exceeds the key count. Units are never taken away.

    Args:
        raw: Key -> unrounded amount (negative values are treated as 0)
        total: Amount the rounded parts must add up to
        tie_key: Deterministic secondary ordering for equal remainders

    Returns:
        Key -> whole-unit Decimal, in the insertion order of ``raw``
    """
    if not raw:
        return {}
    rounded: dict[K, Decimal] = {}
    fractions: dict[K, Decimal] = {}
    for key, value in raw.items():
        value = value if value is not None and value > 0 else ZERO
        floor = floor_amount(value)
        rounded[key] = floor
        fractions[key] = value - floor

    steps = int(round_half_up(total) - sum(rounded.values(), ZERO))
    if steps > 0:
        order = sorted(fractions, key=lambda k: (-fractions[k], tie_key(k)))
        index = 0
        while steps > 0:
            key = order[index % len(order)]
            rounded[key] += ONE
            steps -= 1
            index += 1
    return rounded


def round_layer_targets(desired: LayerAmounts, total: Decimal) -> LayerAmounts:
    """Round per-layer target amounts so they sum to ``round_half_up(total)``.

    Shortfalls go to the largest remainders (lowest layer first on ties).
    An overshoot is removed from positive layers with the smallest remainder,
    highest layer first on ties.
    """
    rounded = [ZERO] * len(LAYERS)
    fractions = [ZERO] * len(LAYERS)
    for index, value in enumerate(desired):
        value = value if value > 0 else ZERO
        floor = floor_amount(value)
        rounded[index] = floor
        fractions[index] = value - floor

    diff = int(round_half_up(total) - sum(rounded, ZERO))
    if diff > 0:
        order = sorted(range(len(LAYERS)), key=lambda i: (-fractions[i], i))
        position = 0
        while diff > 0:
            index = order[position % len(order)]
            rounded[index] += ONE
            diff -= 1
            position += 1
    elif diff < 0:
        order = sorted(range(len(LAYERS)), key=lambda i: (fractions[i], -i))
        while diff < 0 and any(rounded[i] > 0 for i in order):
            for index in order:
                if diff == 0:
                    break
                if rounded[index] > 0:
                    rounded[index] -= ONE
                    diff += 1
    return LayerAmounts.of(rounded)
