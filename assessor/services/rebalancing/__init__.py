"""Layer assessment engine for recurring saving plans and lump sums.

This module turns current saving plans, target layer weights and minimum
transaction sizes into per-plan change suggestions and a one-time split.

Usage:
    from assessor.services.rebalancing import AssessorEngine, AssessorEngineInput

    result = AssessorEngine().assess(AssessorEngineInput(...))

    for suggestion in result.saving_plan_suggestions:
        print(f"{suggestion.type} {suggestion.isin} {suggestion.delta}")
"""

from assessor.services.rebalancing.dataclasses import (
    AssessorEngineInput,
    AssessorEngineResult,
    Diagnostics,
    OneTimeAllocation,
    SavingPlanSuggestion,
)
from assessor.services.rebalancing.delta_allocator import (
    Allocation,
    PlanInput,
    SavingPlanDeltaAllocator,
)
from assessor.services.rebalancing.engine import AssessorEngine

__all__ = [
    "Allocation",
    "AssessorEngine",
    "AssessorEngineInput",
    "AssessorEngineResult",
    "Diagnostics",
    "OneTimeAllocation",
    "PlanInput",
    "SavingPlanDeltaAllocator",
    "SavingPlanSuggestion",
]
