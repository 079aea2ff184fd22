"""IndicatorCollector visitor for extracting indicator references from condition trees.

Used to size the warm-up period of a backtest: entries are not considered
before every referenced indicator has enough history.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from signal_engine.conditions.indicators import series_key, warmup_bars
from signal_engine.conditions.ir import IndicatorRef, IndicatorTarget
from signal_engine.conditions.visitors.base import ConditionVisitor

if TYPE_CHECKING:
    from signal_engine.conditions.ir import ConditionGroup, IndicatorCondition

logger = logging.getLogger(__name__)


class IndicatorCollector(ConditionVisitor[None]):
    """Visitor that collects the indicator references of a tree.

    Usage:
        collector = IndicatorCollector()
        collector.visit(tree)
        collector.refs          # unique references, in first-seen order
        collector.warmup_bars() # first index where all are available
    """

    def __init__(self) -> None:
        self.refs: list[IndicatorRef] = []

    def _add(self, ref: IndicatorRef) -> None:
        if ref not in self.refs:
            self.refs.append(ref)

    def visit_condition(self, cond: IndicatorCondition) -> None:
        self._add(cond.left)
        if isinstance(cond.right, IndicatorTarget):
            self._add(cond.right.ref)

    def combine(self, group: ConditionGroup, children: list[None]) -> None:
        return None

    def warmup_bars(self) -> int:
        """Largest warm-up over all supported references (0 if none)."""
        warmup = 0
        for ref in self.refs:
            key = series_key(ref)
            if key is None:
                continue
            warmup = max(warmup, warmup_bars(key.kind, key.params))
        return warmup


def collect_indicators(tree: ConditionGroup) -> list[IndicatorRef]:
    """Convenience wrapper returning the unique references of a tree."""
    collector = IndicatorCollector()
    collector.visit(tree)
    return collector.refs


def required_warmup(tree: ConditionGroup) -> int:
    """First bar index at which every indicator in the tree can be evaluated."""
    collector = IndicatorCollector()
    collector.visit(tree)
    warmup = collector.warmup_bars()
    logger.debug(f"Collected {len(collector.refs)} indicator refs, warmup={warmup}")
    return warmup
