from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

from assessor.exceptions import AllocationError

ZERO = Decimal("0")
ONE = Decimal("1")
ONE_HUNDRED = Decimal("100")

LAYERS: tuple[int, ...] = (1, 2, 3, 4, 5)
ONE_TIME_LAYERS: tuple[int, ...] = (1, 2, 3, 4)

RATIO_QUANTUM = Decimal("0.00000001")
WHOLE_UNIT = Decimal("1")


def round_half_up(value: Decimal) -> Decimal:
    """Round to whole currency units, half away from zero."""

    return value.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


def floor_amount(value: Decimal) -> Decimal:
    return value.quantize(WHOLE_UNIT, rounding=ROUND_FLOOR)


def divide_ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Divide at the 8-digit precision used for weights and distributions."""

    return (numerator / denominator).quantize(RATIO_QUANTUM, rounding=ROUND_HALF_UP)


def safe_amount(value: Decimal | int | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(value)


def check_layer(layer: int) -> int:
    if layer not in LAYERS:
        raise AllocationError(f"Layer must be between 1 and 5, got {layer}")
    return layer


@dataclass(frozen=True)
class LayerAmounts:
    """Fixed five-slot amounts keyed by layer.

    Every layer is always present; slot ``layer - 1`` holds the value for
    ``layer``. Missing layers in a source mapping are materialized as zero.
    """

    values: tuple[Decimal, ...] = (ZERO, ZERO, ZERO, ZERO, ZERO)

    def __post_init__(self) -> None:
        if len(self.values) != len(LAYERS):
            raise AllocationError(f"Expected {len(LAYERS)} layer slots, got {len(self.values)}")

    @classmethod
    def zeros(cls) -> LayerAmounts:
        return cls()

    @classmethod
    def of(cls, values: list[Decimal] | tuple[Decimal, ...]) -> LayerAmounts:
        return cls(tuple(safe_amount(v) for v in values))

    @classmethod
    def from_mapping(cls, raw: Mapping[int, Decimal | None] | None) -> LayerAmounts:
        """Build from a layer -> amount mapping; layers outside 1-5 are rejected."""

        slots = [ZERO] * len(LAYERS)
        if not raw:
            return cls(tuple(slots))
        for layer, value in raw.items():
            slots[check_layer(int(layer)) - 1] = safe_amount(value)
        return cls(tuple(slots))

    def __getitem__(self, layer: int) -> Decimal:
        return self.values[check_layer(layer) - 1]

    def __iter__(self) -> Iterator[Decimal]:
        return iter(self.values)

    def items(self) -> Iterator[tuple[int, Decimal]]:
        return zip(LAYERS, self.values)

    def total(self) -> Decimal:
        return sum(self.values, ZERO)

    def replace(self, layer: int, value: Decimal) -> LayerAmounts:
        slots = list(self.values)
        slots[check_layer(layer) - 1] = value
        return LayerAmounts(tuple(slots))

    def to_list(self) -> list[Decimal]:
        return list(self.values)

    def as_dict(self) -> dict[int, Decimal]:
        return dict(self.items())

    def non_zero_layers(self) -> list[int]:
        return [layer for layer, value in self.items() if value != 0]
