"""Runtime evaluator for condition trees.

Evaluates a compiled ``ConditionProgram`` one bar at a time. Leaves compare
indicator values resolved through the per-run ``IndicatorCache``; groups
combine results, and IF_THEN / SEQUENCE groups advance their run-scoped state.

Evaluation never raises for missing data or misconfigured leaves: an
unavailable operand or unsupported indicator makes the leaf non-matching.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from signal_engine.conditions.compiler.program import (
    ConditionProgram,
    EvaluationState,
    GroupNode,
    LeafNode,
)
from signal_engine.conditions.indicators import IndicatorCache
from signal_engine.conditions.ir import (
    ComparisonOperator,
    CompareTarget,
    FixedTarget,
    IndicatorCondition,
    IndicatorTarget,
    LogicalOperator,
    PriceField,
    PriceTarget,
)

logger = logging.getLogger(__name__)

EQUALITY_TOLERANCE = 1e-4


# =============================================================================
# Protocols
# =============================================================================


class PriceBarProtocol(Protocol):
    """Anything with OHLC prices."""

    @property
    def open(self) -> float: ...

    @property
    def high(self) -> float: ...

    @property
    def low(self) -> float: ...

    @property
    def close(self) -> float: ...


# =============================================================================
# Evaluation Context
# =============================================================================


@dataclass
class EvalContext:
    """Context for evaluating conditions at one bar.

    Owns the indicator cache for the run; ``index`` is moved forward by the
    caller as bars are consumed.
    """

    bars: Sequence[PriceBarProtocol]
    cache: IndicatorCache
    index: int = 0

    @classmethod
    def for_bars(cls, bars: Sequence[PriceBarProtocol]) -> EvalContext:
        """New context with a fresh cache built from the bars' closes."""
        return cls(bars=bars, cache=IndicatorCache([bar.close for bar in bars]))

    def get_price(self, field: PriceField, index: int | None = None) -> float:
        """Get a price field from the current (or given) bar."""
        bar = self.bars[self.index if index is None else index]
        match field:
            case PriceField.OPEN:
                return bar.open
            case PriceField.HIGH:
                return bar.high
            case PriceField.LOW:
                return bar.low
            case PriceField.CLOSE:
                return bar.close


# =============================================================================
# Comparisons
# =============================================================================


def compare_values(
    operator: ComparisonOperator,
    left: float,
    right: float,
    prev_left: float | None = None,
    prev_right: float | None = None,
) -> bool:
    """Apply a comparison operator.

    Crossing operators need both previous values and are strict on both bars.
    """
    match operator:
        case ComparisonOperator.LT:
            return left < right
        case ComparisonOperator.LTE:
            return left <= right
        case ComparisonOperator.EQ:
            return abs(left - right) < EQUALITY_TOLERANCE
        case ComparisonOperator.GTE:
            return left >= right
        case ComparisonOperator.GT:
            return left > right
        case ComparisonOperator.CROSS_ABOVE:
            if prev_left is None or prev_right is None:
                return False
            return prev_left < prev_right and left > right
        case ComparisonOperator.CROSS_BELOW:
            if prev_left is None or prev_right is None:
                return False
            return prev_left > prev_right and left < right
        case _:
            return False


# =============================================================================
# Leaf evaluator
# =============================================================================


class ConditionEvaluator:
    """Evaluates a single leaf condition at the context's current bar."""

    def resolve_target(self, target: CompareTarget, ctx: EvalContext, index: int) -> float | None:
        """Resolve the right-hand operand at ``index``."""
        match target:
            case FixedTarget(value=value):
                return value
            case IndicatorTarget(ref=ref):
                return ctx.cache.value_at(ref, index)
            case PriceTarget(price_type=price_type):
                return ctx.get_price(price_type, index)
            case _:
                raise ValueError(f"Unknown compare target type: {type(target)}")

    def evaluate(self, condition: IndicatorCondition, ctx: EvalContext) -> bool:
        """Evaluate a leaf; unavailable operands make it non-matching."""
        index = ctx.index
        left = ctx.cache.value_at(condition.left, index)
        if left is None:
            return False
        right = self.resolve_target(condition.right, ctx, index)
        if right is None:
            return False

        if not condition.operator.is_cross:
            return compare_values(condition.operator, left, right)

        if index == 0:
            return False
        prev_left = ctx.cache.value_at(condition.left, index - 1)
        prev_right = self.resolve_target(condition.right, ctx, index - 1)
        return compare_values(condition.operator, left, right, prev_left, prev_right)


# =============================================================================
# Group evaluator
# =============================================================================


class GroupEvaluator:
    """Evaluates a compiled program, advancing stateful nodes.

    The state is passed in explicitly and must belong to exactly one run
    over one bar series.
    """

    def __init__(self, condition_evaluator: ConditionEvaluator | None = None):
        self.conditions = condition_evaluator or ConditionEvaluator()

    def evaluate(
        self,
        program: ConditionProgram,
        state: EvaluationState,
        ctx: EvalContext,
        node_index: int | None = None,
    ) -> bool:
        """Evaluate a node (the root by default) at the current bar."""
        index = program.root if node_index is None else node_index
        match program.nodes[index]:
            case LeafNode(condition=condition):
                return self.conditions.evaluate(condition, ctx)

            case GroupNode(operator=LogicalOperator.AND, children=children):
                # Every child runs so nested stateful nodes keep advancing.
                results = [self.evaluate(program, state, ctx, c) for c in children]
                return all(results)

            case GroupNode(operator=LogicalOperator.OR, children=children):
                results = [self.evaluate(program, state, ctx, c) for c in children]
                return any(results)

            case GroupNode(operator=LogicalOperator.NOT, children=(child,)):
                return not self.evaluate(program, state, ctx, child)

            case GroupNode(operator=LogicalOperator.IF_THEN) as node:
                return self._evaluate_if_then(program, state, ctx, index, node)

            case GroupNode(operator=LogicalOperator.SEQUENCE) as node:
                return self._evaluate_sequence(program, state, ctx, index, node)

            case node:
                raise ValueError(f"Unknown program node: {node!r}")

    def _evaluate_if_then(
        self,
        program: ConditionProgram,
        state: EvaluationState,
        ctx: EvalContext,
        index: int,
        node: GroupNode,
    ) -> bool:
        """Two-stage trigger: idle -> armed on trigger, fires on confirm within the window."""
        if node.is_malformed:
            return False

        st = state.if_then(index)
        triggered = self.evaluate(program, state, ctx, node.trigger)
        if triggered and not st.armed:
            st.armed = True
            st.triggered_at = ctx.index

        if not st.armed:
            return False

        if ctx.index - st.triggered_at > node.max_bars_to_wait:
            st.armed = False
            st.triggered_at = -1
            return False

        if self.evaluate(program, state, ctx, node.confirm):
            st.armed = False
            st.triggered_at = -1
            return True
        return False

    def _evaluate_sequence(
        self,
        program: ConditionProgram,
        state: EvaluationState,
        ctx: EvalContext,
        index: int,
        node: GroupNode,
    ) -> bool:
        """Ordered steps, each within ``max_bars_between_steps`` of the previous."""
        st = state.sequence(index)

        # Only an in-progress cycle is gap-checked; a fresh cycle starts anywhere.
        if st.next_step > 0 and ctx.index - st.last_step_index > node.max_bars_between_steps:
            st.next_step = 0
            st.last_step_index = -1

        if st.next_step >= len(node.steps):
            return False

        if not self.evaluate(program, state, ctx, node.steps[st.next_step]):
            return False

        st.next_step += 1
        st.last_step_index = ctx.index
        if st.next_step == len(node.steps):
            st.next_step = 0
            st.last_step_index = -1
            return True
        return False


# =============================================================================
# Signal scan
# =============================================================================


class SignalRun:
    """One independent evaluation run of a program over a bar series.

    Owns a fresh ``EvaluationState`` and indicator cache. Bars must be fed in
    ascending index order.
    """

    def __init__(
        self,
        program: ConditionProgram,
        bars: Sequence[PriceBarProtocol],
        evaluator: GroupEvaluator | None = None,
    ):
        self.program = program
        self.state = program.new_state()
        self.ctx = EvalContext.for_bars(bars)
        self.evaluator = evaluator or GroupEvaluator()
        self._last_index = -1

    def evaluate_at(self, index: int) -> bool:
        """Evaluate the root at ``index``."""
        if index <= self._last_index:
            raise ValueError(
                f"Bars must be evaluated in ascending order (got {index} after {self._last_index})"
            )
        self._last_index = index
        self.ctx.index = index
        return self.evaluator.evaluate(self.program, self.state, self.ctx)


def scan_signals(
    program: ConditionProgram,
    bars: Sequence[PriceBarProtocol],
    start_index: int = 0,
) -> list[int]:
    """Indices of every bar where the program evaluates true."""
    run = SignalRun(program, bars)
    signals = [i for i in range(start_index, len(bars)) if run.evaluate_at(i)]
    logger.debug(f"Scanned {len(bars) - start_index} bars, {len(signals)} signals")
    return signals
