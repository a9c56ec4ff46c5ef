"""Data structures for assessment calculations."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Literal

from assessor.domain.layers import ZERO, LayerAmounts
from assessor.domain.plans import SavingPlanItem

SuggestionType = Literal["create", "increase", "decrease", "discard"]
SUGGESTION_TYPES: frozenset[str] = frozenset({"create", "increase", "decrease", "discard"})


@dataclass(frozen=True)
class AssessorEngineInput:
    """Snapshot of everything one assessment needs.

    Attributes:
        target_weights: Layer -> non-negative weight (need not be normalized)
        acceptable_variance_pct: Allowed drift per layer in percent points
        minimum_saving_plan_size: Smallest allowed recurring plan amount
        minimum_rebalancing_amount: Smallest change ever proposed
        minimum_instrument_amount: Smallest one-time amount per instrument
        saving_plans: Current recurring plans (None entries are ignored)
        saving_plan_amount_delta: Pending budget increase not yet in the plans
        one_time_amount: Lump sum to split across layers
        holdings_by_layer: Current market value per layer
        instrument_allocation_enabled: Split one-time layer buckets per instrument
        selected_profile: Caller's profile name, passed through untouched
    """

    target_weights: Mapping[int, Decimal] | None = None
    acceptable_variance_pct: Decimal | None = None
    minimum_saving_plan_size: int | None = None
    minimum_rebalancing_amount: int | None = None
    minimum_instrument_amount: int | None = None
    saving_plans: list[SavingPlanItem | None] | None = None
    saving_plan_amount_delta: Decimal | None = None
    one_time_amount: Decimal | None = None
    holdings_by_layer: Mapping[int, Decimal] | None = None
    instrument_allocation_enabled: bool = False
    selected_profile: str | None = None


@dataclass(frozen=True)
class SavingPlanSuggestion:
    """A proposed change to one recurring plan."""

    type: SuggestionType
    isin: str | None
    depot_id: int | None
    old_amount: Decimal
    new_amount: Decimal
    delta: Decimal
    rationale: str

    def __post_init__(self) -> None:
        """Validate suggestion data."""
        if self.type not in SUGGESTION_TYPES:
            raise ValueError(f"Unknown suggestion type {self.type!r}")
        if self.new_amount < 0:
            raise ValueError(f"Amount must be non-negative, got {self.new_amount}")


@dataclass(frozen=True)
class OneTimeAllocation:
    """Split of a lump sum per layer and, optionally, per instrument ISIN."""

    layer_buckets: Mapping[int, Decimal] = field(default_factory=dict)
    instrument_buckets: Mapping[str, Decimal] | None = None

    def __post_init__(self) -> None:
        """Freeze the bucket maps so the allocation cannot change after the fact."""
        object.__setattr__(self, "layer_buckets", MappingProxyType(dict(self.layer_buckets)))
        if self.instrument_buckets is not None:
            object.__setattr__(self, "instrument_buckets", MappingProxyType(dict(self.instrument_buckets)))

    @property
    def total(self) -> Decimal:
        return sum(self.layer_buckets.values(), ZERO)


@dataclass(frozen=True)
class Diagnostics:
    """Trace of what the engine decided and why.

    Attributes:
        within_tolerance: Current distribution was within the variance band
        suppressed_deltas_count: Layers whose delta fell below the rebalance minimum
        suppressed_amount_total: Absolute sum of those suppressed deltas
        redistribution_notes: Human-readable log of every fold and redistribution
        layer_deltas_converged: False when the residual loop ran out of iterations
    """

    within_tolerance: bool
    suppressed_deltas_count: int = 0
    suppressed_amount_total: Decimal = ZERO
    redistribution_notes: tuple[str, ...] = ()
    layer_deltas_converged: bool = True


@dataclass(frozen=True)
class AssessorEngineResult:
    """Complete proposal for one assessment.

    Attributes:
        selected_profile: Profile name from the input
        monthly_total: Sum of current plans plus a positive pending delta
        current_layer_amounts: Current monthly amount per layer
        current_layer_distribution: Current share per layer (fractions)
        target_layer_amounts: Effective target amount per layer after folding
        target_layer_distribution: Normalized target weights
        saving_plan_suggestions: Per-plan changes sorted by (type, isin)
        one_time_allocation: Lump-sum split, None when no lump sum was given
        diagnostics: Tolerance result and redistribution trace
    """

    selected_profile: str | None
    monthly_total: Decimal
    current_layer_amounts: LayerAmounts
    current_layer_distribution: LayerAmounts
    target_layer_amounts: LayerAmounts
    target_layer_distribution: LayerAmounts
    saving_plan_suggestions: tuple[SavingPlanSuggestion, ...] = ()
    one_time_allocation: OneTimeAllocation | None = None
    diagnostics: Diagnostics = field(default_factory=lambda: Diagnostics(within_tolerance=True))

    @property
    def total_suggested_delta(self) -> Decimal:
        return sum((s.delta for s in self.saving_plan_suggestions), ZERO)

    def suggestions_of_type(self, suggestion_type: SuggestionType) -> list[SavingPlanSuggestion]:
        return [s for s in self.saving_plan_suggestions if s.type == suggestion_type]


@dataclass(frozen=True)
class LayerDeltaResult:
    adjusted_deltas: LayerAmounts
    suppressed_count: int = 0
    suppressed_amount: Decimal = ZERO
    redistribution_notes: tuple[str, ...] = ()
    converged: bool = True


@dataclass(frozen=True)
class MinimumSavingPlanAdjustment:
    adjusted_amounts: LayerAmounts
    zeroed_layers: tuple[int, ...] = ()
    rebalanced: bool = False
    increased_layer_one_to_minimum: bool = False
