"""Condition tree errors."""


class ConditionStructureError(ValueError):
    """A condition tree violates a structural rule.

    Raised while building or compiling the tree, never from the per-bar loop.
    """
