"""Condition trees and their evaluation.

The evaluation pipeline:
  1. JSON / dict -> ConditionGroup (pydantic, immutable)
  2. compile_program() -> ConditionProgram (flat arena, shareable)
  3. SignalRun / scan_signals() -> per-bar booleans, with a fresh
     EvaluationState and IndicatorCache per run
"""

from .compiler import ConditionProgram, EvaluationState, compile_program
from .errors import ConditionStructureError
from .evaluator import (
    ConditionEvaluator,
    EvalContext,
    GroupEvaluator,
    SignalRun,
    scan_signals,
)
from .indicators import IndicatorCache, SeriesKey
from .ir import ConditionGroup, IndicatorCondition, parse_condition_tree

__all__ = [
    "ConditionGroup",
    "IndicatorCondition",
    "parse_condition_tree",
    "ConditionStructureError",
    "ConditionProgram",
    "EvaluationState",
    "compile_program",
    "IndicatorCache",
    "SeriesKey",
    "ConditionEvaluator",
    "GroupEvaluator",
    "EvalContext",
    "SignalRun",
    "scan_signals",
]
