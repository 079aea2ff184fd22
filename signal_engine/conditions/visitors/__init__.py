"""Visitor implementations for condition tree traversal."""

from .base import ConditionVisitor, sub_expressions
from .indicator_collector import IndicatorCollector, collect_indicators, required_warmup

__all__ = [
    "ConditionVisitor",
    "IndicatorCollector",
    "collect_indicators",
    "required_warmup",
    "sub_expressions",
]
