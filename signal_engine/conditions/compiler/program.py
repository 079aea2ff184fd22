"""Compile a condition tree into an immutable arena program.

The tree is flattened into a tuple of nodes that reference their children by
index. Stateful operators (IF_THEN, SEQUENCE) get their mutable progress from
a separate ``EvaluationState`` keyed by node index, so one compiled program can
be evaluated by any number of independent runs.

    program = compile_program(tree)
    state = program.new_state()   # fresh per run
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from signal_engine.conditions.errors import ConditionStructureError
from signal_engine.conditions.ir import (
    ConditionGroup,
    ConditionNode,
    IndicatorCondition,
    LogicalOperator,
)
from signal_engine.conditions.visitors.base import ConditionVisitor

logger = logging.getLogger(__name__)


# =============================================================================
# Arena nodes
# =============================================================================


@dataclass(frozen=True)
class LeafNode:
    """A leaf comparison."""

    condition: IndicatorCondition


@dataclass(frozen=True)
class GroupNode:
    """A group; children are arena indices.

    ``children`` holds AND/OR/NOT operands. IF_THEN uses ``trigger`` and
    ``confirm`` (None when missing). SEQUENCE uses ``steps``.
    """

    operator: LogicalOperator
    group_id: str | None = None
    children: tuple[int, ...] = ()
    trigger: int | None = None
    confirm: int | None = None
    max_bars_to_wait: int = 0
    steps: tuple[int, ...] = ()
    max_bars_between_steps: int = 0

    @property
    def is_malformed(self) -> bool:
        return self.operator == LogicalOperator.IF_THEN and (
            self.trigger is None or self.confirm is None
        )


ProgramNode = LeafNode | GroupNode


# =============================================================================
# Run-scoped state
# =============================================================================


@dataclass
class IfThenState:
    """Idle when ``armed`` is False; otherwise armed since ``triggered_at``."""

    armed: bool = False
    triggered_at: int = -1


@dataclass
class SequenceState:
    """Next step to satisfy and the bar where the previous step completed."""

    next_step: int = 0
    last_step_index: int = -1


@dataclass
class EvaluationState:
    """Mutable progress of every stateful node, for one run over one series."""

    nodes: dict[int, IfThenState | SequenceState] = field(default_factory=dict)

    def if_then(self, index: int) -> IfThenState:
        return self.nodes[index]

    def sequence(self, index: int) -> SequenceState:
        return self.nodes[index]


# =============================================================================
# Program
# =============================================================================


@dataclass(frozen=True)
class ConditionProgram:
    """Immutable compiled condition tree."""

    nodes: tuple[ProgramNode, ...]
    root: int
    source: ConditionGroup

    def new_state(self) -> EvaluationState:
        """Fresh zero state for a new, independent run."""
        state = EvaluationState()
        for index, node in enumerate(self.nodes):
            if not isinstance(node, GroupNode):
                continue
            if node.operator == LogicalOperator.IF_THEN:
                state.nodes[index] = IfThenState()
            elif node.operator == LogicalOperator.SEQUENCE:
                state.nodes[index] = SequenceState()
        return state

    @property
    def stateful_nodes(self) -> list[int]:
        return [
            i
            for i, node in enumerate(self.nodes)
            if isinstance(node, GroupNode)
            and node.operator in (LogicalOperator.IF_THEN, LogicalOperator.SEQUENCE)
        ]


class _ArenaBuilder(ConditionVisitor[int]):
    """Visitor that appends nodes post-order and returns each node's index."""

    def __init__(self) -> None:
        self.nodes: list[ProgramNode] = []

    def _append(self, node: ProgramNode) -> int:
        self.nodes.append(node)
        return len(self.nodes) - 1

    def visit_condition(self, cond: IndicatorCondition) -> int:
        return self._append(LeafNode(condition=cond))

    def visit_ConditionGroup(self, group: ConditionGroup) -> int:
        # Children are visited per operator so IF_THEN parts keep their roles.
        match group.operator:
            case LogicalOperator.IF_THEN:
                trigger_node = group.trigger()
                confirm_node = group.confirm()
                trigger = self.visit(trigger_node) if trigger_node is not None else None
                confirm = self.visit(confirm_node) if confirm_node is not None else None
                node = GroupNode(
                    operator=group.operator,
                    group_id=group.group_id,
                    trigger=trigger,
                    confirm=confirm,
                    max_bars_to_wait=group.max_bars_to_wait,
                )
                if node.is_malformed:
                    logger.warning(
                        f"IF_THEN group {group.group_id or '<unnamed>'} is missing its "
                        f"{'trigger' if trigger is None else 'confirm'} condition and will never fire"
                    )
                return self._append(node)

            case LogicalOperator.SEQUENCE:
                steps = tuple(self.visit(step) for step in group.steps())
                if not steps:
                    raise ConditionStructureError("SEQUENCE group must have at least one step")
                return self._append(
                    GroupNode(
                        operator=group.operator,
                        group_id=group.group_id,
                        steps=steps,
                        max_bars_between_steps=group.max_bars_between_steps,
                    )
                )

            case LogicalOperator.NOT:
                if len(group.conditions) != 1:
                    raise ConditionStructureError(
                        f"NOT group must have exactly one child, got {len(group.conditions)}"
                    )

        children = tuple(self.visit(child) for child in group.conditions)
        if not children:
            raise ConditionStructureError(
                f"{group.operator.value} group must have at least one child"
            )
        return self._append(
            GroupNode(operator=group.operator, group_id=group.group_id, children=children)
        )

    def combine(self, group: ConditionGroup, children: list[int]) -> int:
        raise NotImplementedError("groups are handled by visit_ConditionGroup")


def compile_program(tree: ConditionNode) -> ConditionProgram:
    """Compile a condition tree (group or bare leaf) into an arena program.

    Raises:
        ConditionStructureError: If the tree violates a structural rule.
    """
    if isinstance(tree, IndicatorCondition):
        tree = ConditionGroup(operator=LogicalOperator.AND, conditions=[tree])
    builder = _ArenaBuilder()
    root = builder.visit(tree)
    return ConditionProgram(nodes=tuple(builder.nodes), root=root, source=tree)
