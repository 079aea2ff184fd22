"""Condition tree definitions for strategy entry rules.

The tree is an immutable, serializable description of what a strategy looks
for. It never holds evaluation state: IF_THEN and SEQUENCE progress is kept
in a run-scoped ``EvaluationState`` (see ``compiler.program``).

Uses Pydantic for serialization and discriminated unions for polymorphism:
- Leaves are ``IndicatorCondition`` (type="condition")
- Nodes are ``ConditionGroup`` (type="group")
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

# =============================================================================
# Enums
# =============================================================================


class IndicatorKind(str, Enum):
    """Supported indicator kinds."""

    SMA = "sma"
    EMA = "ema"
    RSI = "rsi"
    MACD = "macd"
    BB = "bb"

    @classmethod
    def parse(cls, name: str) -> IndicatorKind | None:
        """Resolve a user-supplied indicator name, or None if unsupported."""
        key = name.strip().lower()
        if key == "bollinger":
            return cls.BB
        try:
            return cls(key)
        except ValueError:
            return None


class IndicatorField(str, Enum):
    """Named outputs of an indicator."""

    VALUE = "value"
    MACD = "macd"
    SIGNAL = "signal"
    HISTOGRAM = "histogram"
    UPPER = "upper"
    MIDDLE = "middle"
    LOWER = "lower"


class ComparisonOperator(str, Enum):
    """Leaf comparison operators."""

    LT = "<"
    LTE = "<="
    EQ = "="
    GTE = ">="
    GT = ">"
    CROSS_ABOVE = "cross_above"
    CROSS_BELOW = "cross_below"

    @property
    def is_cross(self) -> bool:
        return self in (ComparisonOperator.CROSS_ABOVE, ComparisonOperator.CROSS_BELOW)


class LogicalOperator(str, Enum):
    """Group operators."""

    AND = "AND"
    OR = "OR"
    NOT = "NOT"
    IF_THEN = "IF_THEN"
    SEQUENCE = "SEQUENCE"


class PriceField(str, Enum):
    """Price bar fields."""

    OPEN = "open"
    HIGH = "high"
    LOW = "low"
    CLOSE = "close"


DEFAULT_MAX_BARS_TO_WAIT = 5
DEFAULT_MAX_BARS_BETWEEN_STEPS = 10


# =============================================================================
# Indicator references
# =============================================================================


class IndicatorParams(BaseModel):
    """Indicator parameters.

    Frozen so it can take part in the indicator cache key. Unset values are
    filled with per-kind defaults by the indicator engine.
    """

    model_config = ConfigDict(frozen=True)

    period: int | None = Field(default=None, ge=1)
    fast_period: int | None = Field(default=None, ge=1)
    slow_period: int | None = Field(default=None, ge=1)
    signal_period: int | None = Field(default=None, ge=1)
    std_dev: float | None = Field(default=None, gt=0)


class IndicatorRef(BaseModel):
    """Reference to one output field of a parameterized indicator."""

    model_config = ConfigDict(frozen=True)

    indicator: str  # kept as text so an unsupported kind degrades at runtime
    params: IndicatorParams = Field(default_factory=IndicatorParams)
    field: IndicatorField = IndicatorField.VALUE


# =============================================================================
# Compare targets (right-hand side of a leaf)
# =============================================================================


class FixedTarget(BaseModel):
    """A constant right-hand operand."""

    type: Literal["fixed"] = "fixed"
    value: float = 0.0


class IndicatorTarget(BaseModel):
    """Another indicator as the right-hand operand."""

    type: Literal["indicator"] = "indicator"
    ref: IndicatorRef


class PriceTarget(BaseModel):
    """A price field of the current bar as the right-hand operand."""

    type: Literal["price"] = "price"
    price_type: PriceField = PriceField.CLOSE


CompareTarget = Annotated[
    FixedTarget | IndicatorTarget | PriceTarget,
    Field(discriminator="type"),
]


# =============================================================================
# Conditions
# =============================================================================


class IndicatorCondition(BaseModel):
    """Leaf: compare an indicator field against a target."""

    type: Literal["condition"] = "condition"
    condition_id: str | None = None
    left: IndicatorRef
    operator: ComparisonOperator
    right: CompareTarget


class ConditionGroup(BaseModel):
    """Logical combination of leaves and nested groups.

    AND/OR/NOT use ``conditions``. IF_THEN uses ``if_condition`` and
    ``then_condition`` (falling back to ``conditions[0]`` and
    ``conditions[1]``). SEQUENCE uses ``sequence`` (falling back to
    ``conditions``).
    """

    type: Literal["group"] = "group"
    group_id: str | None = None
    operator: LogicalOperator
    conditions: list[ConditionNode] = Field(default_factory=list)

    # IF_THEN
    if_condition: ConditionNode | None = None
    then_condition: ConditionNode | None = None
    max_bars_to_wait: int = Field(default=DEFAULT_MAX_BARS_TO_WAIT, ge=0)

    # SEQUENCE
    sequence: list[ConditionNode] | None = None
    max_bars_between_steps: int = Field(default=DEFAULT_MAX_BARS_BETWEEN_STEPS, ge=0)

    @model_validator(mode="after")
    def check_structure(self) -> Self:
        # Missing IF_THEN parts are tolerated here; they degrade to "never fires".
        match self.operator:
            case LogicalOperator.NOT:
                if len(self.conditions) != 1:
                    raise ValueError(
                        f"NOT group must have exactly one child, got {len(self.conditions)}"
                    )
            case LogicalOperator.AND | LogicalOperator.OR:
                if not self.conditions:
                    raise ValueError(f"{self.operator.value} group must have at least one child")
            case LogicalOperator.SEQUENCE:
                if not self.steps():
                    raise ValueError("SEQUENCE group must have at least one step")
        return self

    def trigger(self) -> ConditionNode | None:
        """IF_THEN trigger sub-expression."""
        if self.if_condition is not None:
            return self.if_condition
        return self.conditions[0] if len(self.conditions) > 0 else None

    def confirm(self) -> ConditionNode | None:
        """IF_THEN confirm sub-expression."""
        if self.then_condition is not None:
            return self.then_condition
        return self.conditions[1] if len(self.conditions) > 1 else None

    def steps(self) -> list[ConditionNode]:
        """SEQUENCE steps in order."""
        return self.sequence if self.sequence is not None else self.conditions


# Discriminated union of tree nodes
ConditionNode = Annotated[
    IndicatorCondition | ConditionGroup,
    Field(discriminator="type"),
]

# Update forward refs for recursive types
ConditionGroup.model_rebuild()


def parse_condition_tree(data: dict) -> ConditionGroup:
    """Validate a JSON-like dict into a condition tree.

    Raises:
        pydantic.ValidationError: If the tree is structurally invalid.
    """
    return ConditionGroup.model_validate(data)
