"""Conversion between JSON-like payloads and assessment requests/results."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from assessor.domain.layers import LayerAmounts
from assessor.domain.plans import SavingPlanItem
from assessor.exceptions import AllocationError, ValidationError
from assessor.services.assessor import AssessmentRequest, AssessmentResponse
from assessor.services.rebalancing.dataclasses import (
    AssessorEngineResult,
    Diagnostics,
    OneTimeAllocation,
    SavingPlanSuggestion,
)


def to_decimal(value: Any, name: str) -> Decimal | None:
    if value is None:
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(f"{name} must be a number, got {value!r}") from exc
    if not number.is_finite():
        raise ValidationError(f"{name} must be a finite number, got {value!r}")
    return number


def to_int(value: Any, name: str) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be an integer, got {value!r}") from exc


def to_layer_mapping(raw: Mapping[Any, Any] | None, name: str) -> dict[int, Decimal] | None:
    """Accept ``{"1": 0.5}`` or ``{1: 0.5}`` and return int layer keys."""
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{name} must be an object keyed by layer")
    mapping: dict[int, Decimal] = {}
    for key, value in raw.items():
        layer = to_int(key, f"{name} layer")
        mapping[layer] = to_decimal(value, f"{name}[{key}]")
    return mapping


def parse_plan(raw: Mapping[str, Any], index: int) -> SavingPlanItem:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"saving_plans[{index}] must be an object")
    if "layer" not in raw:
        raise ValidationError(f"saving_plans[{index}] is missing 'layer'")
    amount = to_decimal(raw.get("amount"), f"saving_plans[{index}].amount")
    if amount is not None and amount < 0:
        raise ValidationError(f"saving_plans[{index}].amount must be zero or positive, got {amount}")
    try:
        return SavingPlanItem(
            isin=raw.get("isin"),
            depot_id=to_int(raw.get("depot_id"), f"saving_plans[{index}].depot_id"),
            amount=amount,
            layer=to_int(raw["layer"], f"saving_plans[{index}].layer"),
        )
    except AllocationError as exc:
        raise ValidationError(f"saving_plans[{index}]: {exc}") from exc


def parse_request(payload: Mapping[str, Any]) -> AssessmentRequest:
    """Build an AssessmentRequest from decoded JSON.

    Numbers may be given as JSON numbers or strings; they are converted with
    ``Decimal(str(x))`` so floats keep their printed value.

    Raises:
        ValidationError: If the payload is structurally invalid
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Request must be a JSON object")
    plans = payload.get("saving_plans") or []
    if not isinstance(plans, list):
        raise ValidationError("saving_plans must be a list")
    plan_weights = payload.get("plan_weights")
    enabled = payload.get("instrument_allocation_enabled")
    return AssessmentRequest(
        saving_plans=[parse_plan(raw, index) for index, raw in enumerate(plans)],
        target_weights=to_layer_mapping(payload.get("target_weights"), "target_weights"),
        acceptable_variance_pct=to_decimal(payload.get("acceptable_variance_pct"), "acceptable_variance_pct"),
        minimum_saving_plan_size=to_int(payload.get("minimum_saving_plan_size"), "minimum_saving_plan_size"),
        minimum_rebalancing_amount=to_int(
            payload.get("minimum_rebalancing_amount"), "minimum_rebalancing_amount"
        ),
        minimum_instrument_amount=to_int(payload.get("minimum_instrument_amount"), "minimum_instrument_amount"),
        saving_plan_amount_delta=to_decimal(payload.get("saving_plan_amount_delta"), "saving_plan_amount_delta"),
        one_time_amount=to_decimal(payload.get("one_time_amount"), "one_time_amount"),
        holdings_by_layer=to_layer_mapping(payload.get("holdings_by_layer"), "holdings_by_layer"),
        instrument_allocation_enabled=None if enabled is None else bool(enabled),
        plan_weights=(
            {str(isin): to_decimal(weight, f"plan_weights[{isin}]") for isin, weight in plan_weights.items()}
            if plan_weights
            else None
        ),
        selected_profile=payload.get("selected_profile"),
    )


def _layers_to_dict(amounts: LayerAmounts) -> dict[str, str]:
    return {str(layer): str(value) for layer, value in amounts.items()}


def suggestion_to_dict(suggestion: SavingPlanSuggestion) -> dict[str, Any]:
    return {
        "type": suggestion.type,
        "isin": suggestion.isin,
        "depot_id": suggestion.depot_id,
        "old_amount": str(suggestion.old_amount),
        "new_amount": str(suggestion.new_amount),
        "delta": str(suggestion.delta),
        "rationale": suggestion.rationale,
    }


def one_time_to_dict(allocation: OneTimeAllocation | None) -> dict[str, Any] | None:
    if allocation is None:
        return None
    return {
        "layer_buckets": {str(layer): str(value) for layer, value in allocation.layer_buckets.items()},
        "instrument_buckets": (
            None
            if allocation.instrument_buckets is None
            else {isin: str(value) for isin, value in allocation.instrument_buckets.items()}
        ),
    }


def diagnostics_to_dict(diagnostics: Diagnostics) -> dict[str, Any]:
    return {
        "within_tolerance": diagnostics.within_tolerance,
        "suppressed_deltas_count": diagnostics.suppressed_deltas_count,
        "suppressed_amount_total": str(diagnostics.suppressed_amount_total),
        "redistribution_notes": list(diagnostics.redistribution_notes),
        "layer_deltas_converged": diagnostics.layer_deltas_converged,
    }


def result_to_dict(result: AssessorEngineResult) -> dict[str, Any]:
    """Serialize an engine result; Decimals become strings."""
    return {
        "selected_profile": result.selected_profile,
        "monthly_total": str(result.monthly_total),
        "current_layer_amounts": _layers_to_dict(result.current_layer_amounts),
        "current_layer_distribution": _layers_to_dict(result.current_layer_distribution),
        "target_layer_amounts": _layers_to_dict(result.target_layer_amounts),
        "target_layer_distribution": _layers_to_dict(result.target_layer_distribution),
        "saving_plan_suggestions": [suggestion_to_dict(s) for s in result.saving_plan_suggestions],
        "one_time_allocation": one_time_to_dict(result.one_time_allocation),
        "diagnostics": diagnostics_to_dict(result.diagnostics),
    }


def response_to_dict(response: AssessmentResponse) -> dict[str, Any]:
    payload = result_to_dict(response.result)
    payload["assessment_id"] = response.assessment_id
    payload["target_suggestions"] = [suggestion_to_dict(s) for s in response.target_suggestions]
    return payload
