from __future__ import annotations

from .layers import LAYERS, ONE_TIME_LAYERS, LayerAmounts
from .plans import PlanKey, SavingPlanItem

__all__ = ["LAYERS", "ONE_TIME_LAYERS", "LayerAmounts", "PlanKey", "SavingPlanItem"]
