"""
Assessor settings read from the environment.

A ``.env`` file in the working directory is loaded first; real environment
variables win over it. Values feed the service-level request defaults, the
engine keeps its own fallbacks for anything left unset.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv

from assessor.exceptions import ValidationError


@dataclass(frozen=True)
class Settings:
    debug: bool = False
    default_variance_pct: Decimal = Decimal("3.0")
    min_saving_plan_size: int = 15
    min_rebalancing_amount: int = 10
    min_instrument_amount: int = 25


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from exc


def _decimal_env(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from exc


def load_settings(dotenv: bool = True) -> Settings:
    """
    Build settings from ``ASSESSOR_*`` environment variables.

    Args:
        dotenv: Load a ``.env`` file before reading the environment.

    Raises:
        ValidationError: If a numeric variable cannot be parsed.
    """
    if dotenv:
        load_dotenv()
    return Settings(
        debug=os.getenv("ASSESSOR_DEBUG", "False") == "True",
        default_variance_pct=_decimal_env("ASSESSOR_DEFAULT_VARIANCE_PCT", Decimal("3.0")),
        min_saving_plan_size=_int_env("ASSESSOR_MIN_SAVING_PLAN_SIZE", 15),
        min_rebalancing_amount=_int_env("ASSESSOR_MIN_REBALANCING_AMOUNT", 10),
        min_instrument_amount=_int_env("ASSESSOR_MIN_INSTRUMENT_AMOUNT", 25),
    )
