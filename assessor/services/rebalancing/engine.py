"""High-level orchestration for layer assessments."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal

import structlog

from assessor.domain.layers import LAYERS, ZERO, LayerAmounts, safe_amount
from assessor.domain.plans import SavingPlanItem
from assessor.services.rebalancing.calculator import build_saving_plan_suggestions
from assessor.services.rebalancing.dataclasses import (
    AssessorEngineInput,
    AssessorEngineResult,
    Diagnostics,
)
from assessor.services.rebalancing.folding import apply_minimum_saving_plan_size
from assessor.services.rebalancing.layer_deltas import adjust_layer_deltas
from assessor.services.rebalancing.one_time import build_one_time_allocation
from assessor.services.rebalancing.targets import (
    build_target_amounts,
    compute_deltas,
    compute_distribution,
    is_within_tolerance,
    normalize_targets,
)

logger = structlog.get_logger(__name__)

DEFAULT_MIN_REBALANCING_AMOUNT = 10
DEFAULT_MIN_SAVING_PLAN_SIZE = 15
DEFAULT_MIN_INSTRUMENT_AMOUNT = 25

NOTE_BUDGET_EMPTY = "No active monthly saving plans to rebalance."
NOTE_WITHIN_TOLERANCE = "Within tolerance; no saving plan changes proposed."
NOTE_LAYER_ONE_RAISED = "Increased Layer 1 to the minimum saving plan size."


def normalize_minimum(raw: int | None, fallback: int) -> Decimal:
    """Return ``raw`` as Decimal, or ``fallback`` when absent or below 1."""

    if raw is None or raw < 1:
        return Decimal(fallback)
    return Decimal(raw)


def known_layers(raw: Mapping[int, Decimal | None]) -> dict[int, Decimal | None]:
    """Drop entries keyed by anything other than layers 1-5."""

    return {layer: value for layer, value in raw.items() if layer in LAYERS}


class AssessorEngine:
    """Turns a snapshot of plans and targets into a rebalancing proposal.

    Stateless; one instance may serve any number of assessments.
    """

    def assess(self, engine_input: AssessorEngineInput | None) -> AssessorEngineResult | None:
        """Run a complete assessment.

        Args:
            engine_input: Plans, targets and constraints to assess

        Returns:
            AssessorEngineResult, or None when no input was given
        """
        if engine_input is None:
            return None

        minimum_rebalancing = normalize_minimum(
            engine_input.minimum_rebalancing_amount, DEFAULT_MIN_REBALANCING_AMOUNT
        )
        minimum_saving_plan_size = normalize_minimum(
            engine_input.minimum_saving_plan_size, DEFAULT_MIN_SAVING_PLAN_SIZE
        )
        minimum_instrument_amount = normalize_minimum(
            engine_input.minimum_instrument_amount, DEFAULT_MIN_INSTRUMENT_AMOUNT
        )

        plans: list[SavingPlanItem] = [p for p in engine_input.saving_plans or [] if p is not None]
        current = LayerAmounts.zeros()
        monthly_total = ZERO
        for plan in plans:
            current = current.replace(plan.layer, current[plan.layer] + plan.safe_amount)
            monthly_total += plan.safe_amount
        pending_delta = safe_amount(engine_input.saving_plan_amount_delta)
        if pending_delta > 0:
            monthly_total += pending_delta

        normalized_targets = normalize_targets(engine_input.target_weights)
        target_amounts = build_target_amounts(normalized_targets, monthly_total)
        effective_targets = target_amounts
        current_distribution = compute_distribution(current, monthly_total)
        budget_empty = monthly_total <= 0
        within_tolerance = budget_empty or is_within_tolerance(
            current_distribution, normalized_targets, engine_input.acceptable_variance_pct
        )

        suggestions = []
        notes: list[str] = []
        if budget_empty:
            diagnostics = Diagnostics(within_tolerance=True, redistribution_notes=(NOTE_BUDGET_EMPTY,))
        else:
            adjustment = apply_minimum_saving_plan_size(target_amounts, minimum_saving_plan_size)
            effective_targets = adjustment.adjusted_amounts
            if adjustment.zeroed_layers:
                notes.append(
                    f"Adjusted layers below minimum saving plan size: {list(adjustment.zeroed_layers)}"
                )
            if adjustment.increased_layer_one_to_minimum:
                notes.append(NOTE_LAYER_ONE_RAISED)

            if within_tolerance and not adjustment.rebalanced and pending_delta <= 0:
                notes.append(NOTE_WITHIN_TOLERANCE)
                diagnostics = Diagnostics(within_tolerance=True, redistribution_notes=tuple(notes))
            else:
                deltas = compute_deltas(effective_targets, current)
                layer_result = adjust_layer_deltas(deltas, minimum_rebalancing)
                notes.extend(layer_result.redistribution_notes)
                diagnostics = Diagnostics(
                    within_tolerance=within_tolerance,
                    suppressed_deltas_count=layer_result.suppressed_count,
                    suppressed_amount_total=layer_result.suppressed_amount,
                    redistribution_notes=tuple(notes),
                    layer_deltas_converged=layer_result.converged,
                )
                suggestions = build_saving_plan_suggestions(
                    plans,
                    layer_result.adjusted_deltas,
                    minimum_rebalancing,
                    minimum_saving_plan_size,
                )

        one_time_allocation = None
        if engine_input.one_time_amount is not None and engine_input.one_time_amount > 0:
            holdings = (
                LayerAmounts.from_mapping(known_layers(engine_input.holdings_by_layer))
                if engine_input.holdings_by_layer
                else None
            )
            one_time_allocation = build_one_time_allocation(
                engine_input.one_time_amount,
                normalized_targets,
                holdings,
                plans,
                minimum_rebalancing,
                minimum_instrument_amount,
                engine_input.instrument_allocation_enabled,
            )

        logger.info(
            "assessment_completed",
            monthly_total=str(monthly_total),
            within_tolerance=diagnostics.within_tolerance,
            suggestions=len(suggestions),
            suppressed_deltas=diagnostics.suppressed_deltas_count,
            one_time=one_time_allocation is not None,
        )

        return AssessorEngineResult(
            selected_profile=engine_input.selected_profile,
            monthly_total=monthly_total,
            current_layer_amounts=current,
            current_layer_distribution=current_distribution,
            target_layer_amounts=effective_targets,
            target_layer_distribution=normalized_targets,
            saving_plan_suggestions=tuple(suggestions),
            one_time_allocation=one_time_allocation,
            diagnostics=diagnostics,
        )
