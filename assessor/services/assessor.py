"""
Assessment service wrapping the layer engine.

The service is the boundary between callers (CLI, jobs, tests) and the pure
engine: it validates request values, fills in configured defaults, decides
whether one-time money is split per instrument, and adds a second set of
suggestions computed with the weight-driven plan allocator.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal

import structlog

from assessor.domain.layers import LAYERS, ZERO, LayerAmounts, safe_amount
from assessor.domain.plans import SavingPlanItem, group_by_layer
from assessor.exceptions import ValidationError
from assessor.services.rebalancing.calculator import RATIONALES, determine_type
from assessor.services.rebalancing.dataclasses import (
    AssessorEngineInput,
    AssessorEngineResult,
    SavingPlanSuggestion,
)
from assessor.services.rebalancing.delta_allocator import PlanInput, SavingPlanDeltaAllocator
from assessor.services.rebalancing.engine import (
    DEFAULT_MIN_REBALANCING_AMOUNT,
    DEFAULT_MIN_SAVING_PLAN_SIZE,
    AssessorEngine,
    normalize_minimum,
)
from config.settings import Settings, load_settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AssessmentRequest:
    """What a caller asks the service to assess.

    Unset minimums and variance fall back to the configured settings.
    ``plan_weights`` maps ISIN to a preference weight for the target-driven
    suggestions; plans without a weight count as 1.
    """

    saving_plans: list[SavingPlanItem] = field(default_factory=list)
    target_weights: Mapping[int, Decimal] | None = None
    acceptable_variance_pct: Decimal | None = None
    minimum_saving_plan_size: int | None = None
    minimum_rebalancing_amount: int | None = None
    minimum_instrument_amount: int | None = None
    saving_plan_amount_delta: Decimal | None = None
    one_time_amount: Decimal | None = None
    holdings_by_layer: Mapping[int, Decimal] | None = None
    instrument_allocation_enabled: bool | None = None
    plan_weights: Mapping[str, Decimal] | None = None
    selected_profile: str | None = None


@dataclass(frozen=True)
class AssessmentResponse:
    assessment_id: str
    result: AssessorEngineResult
    target_suggestions: tuple[SavingPlanSuggestion, ...] = ()


def build_target_suggestions(
    plans: list[SavingPlanItem],
    target_layer_amounts: LayerAmounts,
    minimum_rebalancing: Decimal,
    minimum_saving_plan_size: Decimal,
    plan_weights: Mapping[str, Decimal] | None = None,
    allocator: SavingPlanDeltaAllocator | None = None,
) -> list[SavingPlanSuggestion]:
    """Move each layer's plans straight to that layer's target amount.

    Layers without plans are skipped since there is no instrument to create
    a plan for.

    Args:
        plans: Current recurring plans
        target_layer_amounts: Effective target amount per layer
        minimum_rebalancing: Smallest per-plan change worth proposing
        minimum_saving_plan_size: Smallest allowed plan amount
        plan_weights: ISIN -> preference weight
        allocator: Allocator to use; a fresh one by default

    Returns:
        Suggestions sorted by type, then ISIN
    """
    allocator = allocator or SavingPlanDeltaAllocator()
    weights = plan_weights or {}
    plan_map = {plan.key: plan for plan in plans}
    suggestions: list[SavingPlanSuggestion] = []

    for layer, layer_plans in group_by_layer(plans).items():
        if not layer_plans:
            if target_layer_amounts[layer] > 0:
                logger.debug("layer_target_without_plans", layer=layer, target=str(target_layer_amounts[layer]))
            continue
        inputs = [
            PlanInput(key=plan.key, current_amount=plan.safe_amount, weight=weights.get(plan.sort_isin))
            for plan in layer_plans
        ]
        allocation = allocator.allocate_to_target(
            inputs,
            max(target_layer_amounts[layer], ZERO),
            minimum_rebalancing,
            minimum_saving_plan_size,
        )
        for key, delta in allocation.deltas.items():
            if delta == 0:
                continue
            plan = plan_map[key]
            old_amount = plan.safe_amount
            new_amount = allocation.proposed_amounts.get(key, old_amount)
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


class AssessorService:
    """Validates assessment requests and runs them through the engine."""

    def __init__(
        self,
        engine: AssessorEngine | None = None,
        allocator: SavingPlanDeltaAllocator | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._engine = engine or AssessorEngine()
        self._allocator = allocator or SavingPlanDeltaAllocator()
        self._settings = settings or load_settings()

    def run(self, request: AssessmentRequest) -> AssessmentResponse:
        """
        Validate and assess a request.

        The run is tagged with an ``assessment_id`` bound into the structlog
        context, so every engine log line carries it.

        Args:
            request: Plans, targets and constraints to assess

        Returns:
            AssessmentResponse with the engine result and target suggestions

        Raises:
            ValidationError: If a request value is rejected
        """
        engine_input = self.build_engine_input(request)
        assessment_id = str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(assessment_id=assessment_id)
        try:
            logger.info(
                "assessment_started",
                plans=len(engine_input.saving_plans or []),
                profile=engine_input.selected_profile,
            )
            result = self._engine.assess(engine_input)
            target_suggestions = build_target_suggestions(
                list(engine_input.saving_plans or []),
                result.target_layer_amounts,
                normalize_minimum(engine_input.minimum_rebalancing_amount, DEFAULT_MIN_REBALANCING_AMOUNT),
                normalize_minimum(engine_input.minimum_saving_plan_size, DEFAULT_MIN_SAVING_PLAN_SIZE),
                plan_weights=request.plan_weights,
                allocator=self._allocator,
            )
            if not result.diagnostics.layer_deltas_converged:
                logger.warning("assessment_layer_deltas_unbalanced")
            return AssessmentResponse(
                assessment_id=assessment_id,
                result=result,
                target_suggestions=tuple(target_suggestions),
            )
        finally:
            structlog.contextvars.unbind_contextvars("assessment_id")

    def build_engine_input(self, request: AssessmentRequest) -> AssessorEngineInput:
        """Resolve defaults and validate ``request`` into an engine input.

        Raises:
            ValidationError: If a request value is rejected
        """
        minimum_saving_plan_size = self._resolve_minimum(
            request.minimum_saving_plan_size, self._settings.min_saving_plan_size
        )
        minimum_rebalancing = self._resolve_minimum(
            request.minimum_rebalancing_amount, self._settings.min_rebalancing_amount
        )
        minimum_instrument = self._resolve_minimum(
            request.minimum_instrument_amount, self._settings.min_instrument_amount
        )
        variance = request.acceptable_variance_pct
        if variance is None:
            variance = self._settings.default_variance_pct

        self._check_finite("acceptable_variance_pct", variance)
        self._check_finite("saving_plan_amount_delta", request.saving_plan_amount_delta)
        self._check_finite("one_time_amount", request.one_time_amount)
        for name, mapping in (
            ("target_weights", request.target_weights),
            ("holdings_by_layer", request.holdings_by_layer),
        ):
            for value in (mapping or {}).values():
                self._check_finite(name, value)

        delta = request.saving_plan_amount_delta
        if delta is not None and delta < 0:
            raise ValidationError("Saving plan amount delta must be zero or positive.")
        if delta is not None and 0 < delta < minimum_saving_plan_size:
            raise ValidationError("Saving plan amount delta must be at least the minimum saving plan size.")

        one_time = request.one_time_amount
        if one_time is not None and 0 < one_time < minimum_instrument:
            raise ValidationError("One-time amount must be at least the minimum amount per instrument.")

        self._check_layer_keys("target_weights", request.target_weights)
        self._check_layer_keys("holdings_by_layer", request.holdings_by_layer)

        instrument_allocation = request.instrument_allocation_enabled
        if instrument_allocation is None:
            instrument_allocation = safe_amount(one_time) > 0 and bool(request.saving_plans)

        return AssessorEngineInput(
            target_weights=request.target_weights,
            acceptable_variance_pct=variance,
            minimum_saving_plan_size=minimum_saving_plan_size,
            minimum_rebalancing_amount=minimum_rebalancing,
            minimum_instrument_amount=minimum_instrument,
            saving_plans=list(request.saving_plans),
            saving_plan_amount_delta=delta,
            one_time_amount=one_time,
            holdings_by_layer=request.holdings_by_layer,
            instrument_allocation_enabled=instrument_allocation,
            selected_profile=request.selected_profile,
        )

    @staticmethod
    def _resolve_minimum(value: int | None, configured: int) -> int:
        if value is None or value < 1:
            return configured
        return value

    @staticmethod
    def _check_finite(name: str, value: Decimal | None) -> None:
        if value is not None and not Decimal(value).is_finite():
            raise ValidationError(f"{name} must be a finite number, got {value}")

    @staticmethod
    def _check_layer_keys(name: str, mapping: Mapping[int, Decimal] | None) -> None:
        if not mapping:
            return
        unknown = sorted(layer for layer in mapping if layer not in LAYERS)
        if unknown:
            raise ValidationError(f"{name} has layers outside 1-5: {unknown}")
