"""Compiler package for condition trees.

Flattens an immutable ConditionGroup into an index-addressed program and
allocates the run-scoped state its IF_THEN / SEQUENCE nodes need.
"""

from signal_engine.conditions.compiler.program import (
    ConditionProgram,
    EvaluationState,
    GroupNode,
    IfThenState,
    LeafNode,
    SequenceState,
    compile_program,
)

__all__ = [
    "ConditionProgram",
    "EvaluationState",
    "GroupNode",
    "IfThenState",
    "LeafNode",
    "SequenceState",
    "compile_program",
]
