"""Tests for condition tree models."""

import pytest
from pydantic import ValidationError

from signal_engine.conditions.ir import (
    ComparisonOperator,
    ConditionGroup,
    FixedTarget,
    IndicatorCondition,
    IndicatorField,
    IndicatorTarget,
    LogicalOperator,
    PriceTarget,
    parse_condition_tree,
)
from tests.conftest import close_above, close_is


class TestParsing:
    """Tests for building trees from JSON-like dicts."""

    def test_parse_nested_tree(self):
        tree = parse_condition_tree(
            {
                "type": "group",
                "operator": "AND",
                "conditions": [
                    {
                        "type": "condition",
                        "condition_id": "rsi_low",
                        "left": {"indicator": "rsi", "params": {"period": 14}},
                        "operator": "<",
                        "right": {"type": "fixed", "value": 30},
                    },
                    {
                        "type": "group",
                        "operator": "NOT",
                        "conditions": [
                            {
                                "type": "condition",
                                "left": {"indicator": "bb", "field": "upper"},
                                "operator": "cross_below",
                                "right": {"type": "price", "price_type": "close"},
                            }
                        ],
                    },
                ],
            }
        )
        leaf, group = tree.conditions
        assert isinstance(leaf, IndicatorCondition)
        assert leaf.operator == ComparisonOperator.LT
        assert isinstance(leaf.right, FixedTarget) and leaf.right.value == 30
        assert isinstance(group, ConditionGroup) and group.operator == LogicalOperator.NOT
        inner = group.conditions[0]
        assert inner.left.field == IndicatorField.UPPER
        assert isinstance(inner.right, PriceTarget)

    def test_indicator_target(self):
        cond = IndicatorCondition.model_validate(
            {
                "left": {"indicator": "ema", "params": {"period": 9}},
                "operator": "cross_above",
                "right": {"type": "indicator", "ref": {"indicator": "ema", "params": {"period": 21}}},
            }
        )
        assert isinstance(cond.right, IndicatorTarget)
        assert cond.right.ref.params.period == 21

    def test_unknown_indicator_name_is_accepted(self):
        cond = IndicatorCondition.model_validate(
            {"left": {"indicator": "vwap"}, "operator": ">", "right": {"type": "fixed", "value": 1}}
        )
        assert cond.left.indicator == "vwap"

    def test_round_trip_json(self):
        tree = ConditionGroup(operator=LogicalOperator.OR, conditions=[close_is(1.0), close_above(2.0)])
        assert ConditionGroup.model_validate_json(tree.model_dump_json()) == tree


class TestStructure:
    """Structure rules are enforced at construction."""

    def test_not_requires_exactly_one_child(self):
        with pytest.raises(ValidationError, match="exactly one child"):
            ConditionGroup(operator=LogicalOperator.NOT, conditions=[close_is(1.0), close_is(2.0)])
        with pytest.raises(ValidationError):
            ConditionGroup(operator=LogicalOperator.NOT)

    def test_empty_and_or_rejected(self):
        with pytest.raises(ValidationError, match="at least one child"):
            ConditionGroup(operator=LogicalOperator.AND)
        with pytest.raises(ValidationError):
            ConditionGroup(operator=LogicalOperator.OR, conditions=[])

    def test_empty_sequence_rejected(self):
        with pytest.raises(ValidationError, match="at least one step"):
            ConditionGroup(operator=LogicalOperator.SEQUENCE, sequence=[])

    def test_negative_windows_rejected(self):
        with pytest.raises(ValidationError):
            ConditionGroup(
                operator=LogicalOperator.IF_THEN,
                if_condition=close_is(1.0),
                then_condition=close_is(2.0),
                max_bars_to_wait=-1,
            )
        with pytest.raises(ValidationError):
            ConditionGroup(
                operator=LogicalOperator.SEQUENCE,
                sequence=[close_is(1.0)],
                max_bars_between_steps=-1,
            )

    def test_invalid_params_rejected(self):
        with pytest.raises(ValidationError):
            IndicatorCondition.model_validate(
                {
                    "left": {"indicator": "sma", "params": {"period": 0}},
                    "operator": ">",
                    "right": {"type": "fixed", "value": 1},
                }
            )

    def test_defaults(self):
        group = ConditionGroup(
            operator=LogicalOperator.IF_THEN, if_condition=close_is(1.0), then_condition=close_is(2.0)
        )
        assert group.max_bars_to_wait == 5
        assert group.max_bars_between_steps == 10

    def test_incomplete_if_then_allowed(self):
        group = ConditionGroup(operator=LogicalOperator.IF_THEN, if_condition=close_is(1.0))
        assert group.confirm() is None


class TestSubExpressions:
    """IF_THEN and SEQUENCE fall back to ``conditions``."""

    def test_if_then_explicit_fields(self):
        a, b = close_is(1.0), close_is(2.0)
        group = ConditionGroup(operator=LogicalOperator.IF_THEN, if_condition=a, then_condition=b)
        assert group.trigger() == a
        assert group.confirm() == b

    def test_if_then_falls_back_to_conditions(self):
        a, b = close_is(1.0), close_is(2.0)
        group = ConditionGroup(operator=LogicalOperator.IF_THEN, conditions=[a, b])
        assert group.trigger() == a
        assert group.confirm() == b

    def test_sequence_falls_back_to_conditions(self):
        steps = [close_is(1.0), close_is(2.0), close_is(3.0)]
        group = ConditionGroup(operator=LogicalOperator.SEQUENCE, conditions=steps)
        assert group.steps() == steps
