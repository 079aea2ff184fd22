"""Base visitor class for typed condition tree traversal."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Generic, TypeVar

from signal_engine.conditions.ir import LogicalOperator

if TYPE_CHECKING:
    from signal_engine.conditions.ir import ConditionGroup, ConditionNode, IndicatorCondition

T = TypeVar("T")


class ConditionVisitor(ABC, Generic[T]):
    """Abstract visitor for condition trees.

    Subclasses implement ``visit_condition`` for leaves and ``combine`` for
    groups. The base class handles traversal, visiting every sub-expression
    a group refers to (children, IF_THEN parts, SEQUENCE steps).

    Type parameter T is the return type of visit methods.

    Usage:
        class LeafCounter(ConditionVisitor[int]):
            def visit_condition(self, cond):
                return 1

            def combine(self, group, children):
                return sum(children)
    """

    def visit(self, node: ConditionNode) -> T:
        """Dispatch to the appropriate visit method.

        Looks for visit_{ClassName} method, falls back to visit_default.
        """
        method_name = f"visit_{type(node).__name__}"
        visitor = getattr(self, method_name, self.visit_default)
        return visitor(node)

    def visit_default(self, node: ConditionNode) -> T:
        raise TypeError(f"Unknown condition node type: {type(node).__name__}")

    def visit_IndicatorCondition(self, cond: IndicatorCondition) -> T:
        return self.visit_condition(cond)

    def visit_ConditionGroup(self, group: ConditionGroup) -> T:
        """Visit every sub-expression of the group, then combine."""
        children = [self.visit(child) for child in sub_expressions(group)]
        return self.combine(group, children)

    @abstractmethod
    def visit_condition(self, cond: IndicatorCondition) -> T:
        """Handle a leaf condition."""
        ...

    @abstractmethod
    def combine(self, group: ConditionGroup, children: list[T]) -> T:
        """Combine results from a group's sub-expressions."""
        ...


def sub_expressions(group: ConditionGroup) -> list[ConditionNode]:
    """All sub-expressions a group evaluates, in evaluation order."""
    match group.operator:
        case LogicalOperator.IF_THEN:
            return [node for node in (group.trigger(), group.confirm()) if node is not None]
        case LogicalOperator.SEQUENCE:
            return list(group.steps())
        case _:
            return list(group.conditions)
