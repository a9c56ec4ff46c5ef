from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import pandas as pd

from assessor.domain.layers import LAYERS, ONE_HUNDRED
from assessor.services.assessor import AssessmentResponse
from assessor.services.rebalancing.dataclasses import AssessorEngineResult, SavingPlanSuggestion

LAYER_COLUMNS = [
    "layer",
    "current_amount",
    "current_pct",
    "target_amount",
    "target_pct",
    "delta",
]


def _format_accounting(value: Any, decimals: int = 0, prefix: str = "", suffix: str = "") -> str:
    try:
        val_d = Decimal(str(value))
    except (ValueError, TypeError, ArithmeticError):
        return "-"
    formatted = f"{abs(val_d):,.{decimals}f}"
    result = f"{prefix}{formatted}{suffix}"
    return f"({result})" if val_d < 0 else result


def accounting_amount(value: Any, decimals: int = 0) -> str:
    """Format an amount in accounting style: (1,234) for negative."""
    return _format_accounting(value, decimals)


def accounting_percent(value: Any, decimals: int = 1) -> str:
    """Format a percent in accounting style: (12.5%)."""
    return _format_accounting(value, decimals, suffix="%")


@dataclass(frozen=True)
class SuggestionRow:
    type: str
    isin: str
    depot_id: int | None
    old_amount: str
    new_amount: str
    delta: str
    rationale: str


def layer_summary_frame(result: AssessorEngineResult) -> pd.DataFrame:
    """One row per layer with current vs. effective target amounts and shares.

    Percentages are in points (0-100); ``delta`` is target minus current.
    """
    rows = []
    for layer in LAYERS:
        current = result.current_layer_amounts[layer]
        target = result.target_layer_amounts[layer]
        rows.append(
            {
                "layer": layer,
                "current_amount": current,
                "current_pct": result.current_layer_distribution[layer] * ONE_HUNDRED,
                "target_amount": target,
                "target_pct": result.target_layer_distribution[layer] * ONE_HUNDRED,
                "delta": target - current,
            }
        )
    return pd.DataFrame(rows, columns=LAYER_COLUMNS).set_index("layer")


def format_layer_summary(frame: pd.DataFrame) -> pd.DataFrame:
    """Return a display copy of ``layer_summary_frame`` with formatted strings."""
    display = frame.copy()
    for column in ("current_amount", "target_amount", "delta"):
        display[column] = display[column].map(accounting_amount)
    for column in ("current_pct", "target_pct"):
        display[column] = display[column].map(accounting_percent)
    return display


def rows_from_suggestions(suggestions: Iterable[SavingPlanSuggestion]) -> list[SuggestionRow]:
    return [
        SuggestionRow(
            type=suggestion.type,
            isin=suggestion.isin or "",
            depot_id=suggestion.depot_id,
            old_amount=accounting_amount(suggestion.old_amount),
            new_amount=accounting_amount(suggestion.new_amount),
            delta=accounting_amount(suggestion.delta),
            rationale=suggestion.rationale,
        )
        for suggestion in suggestions
    ]


def suggestion_rows(result: AssessorEngineResult) -> list[SuggestionRow]:
    return rows_from_suggestions(result.saving_plan_suggestions)


def _rows_frame(rows: list[SuggestionRow]) -> pd.DataFrame:
    columns = list(SuggestionRow.__dataclass_fields__)
    return pd.DataFrame([row.__dict__ for row in rows], columns=columns)


def suggestion_frame(result: AssessorEngineResult) -> pd.DataFrame:
    return _rows_frame(suggestion_rows(result))


def target_suggestion_frame(response: AssessmentResponse) -> pd.DataFrame:
    """Weight-driven suggestions from the plan allocator, same columns as ``suggestion_frame``."""
    return _rows_frame(rows_from_suggestions(response.target_suggestions))
