"""
Condition evaluator for field mappings.

Decides whether a mapping applies to a source record. Conditions are
either simple ({field, operator, value}) or compound (and/or over nested
conditions). Pure, no I/O.

Malformed conditions (type "simple" without a rule, type "compound"
without rules, or an unknown type) evaluate to True and log a warning,
so a broken condition never silently drops data.
"""

import re
from typing import Any, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from models.field_mapping import (
    ConditionOperator,
    FieldMappingCondition,
    SimpleCondition,
    CompoundCondition,
)
from services.transform_engine import is_number
from utils.dot_path import get_path, MISSING

logger = structlog.get_logger(__name__)

Op = ConditionOperator


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality that does not treat True as 1."""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def is_empty(value: Any) -> bool:
    """None, missing, empty string or empty list."""
    if value is None or value is MISSING:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _contains(value: Any, compare: Any) -> bool:
    if isinstance(value, str) and isinstance(compare, str):
        return compare in value
    if isinstance(value, (list, tuple)):
        return any(_strict_equals(item, compare) for item in value)
    return False


def _matches(value: Any, pattern: Any) -> bool:
    if not isinstance(value, str) or not isinstance(pattern, str):
        return False
    try:
        return re.search(pattern, value) is not None
    except re.error:
        return False


def _compare_numbers(value: Any, compare: Any, op: str) -> bool:
    if not (is_number(value) and is_number(compare)):
        return False
    if op == Op.GREATER_THAN:
        return value > compare
    if op == Op.LESS_THAN:
        return value < compare
    if op == Op.GREATER_THAN_OR_EQUAL:
        return value >= compare
    return value <= compare


def _in(value: Any, options: Any) -> bool:
    return any(_strict_equals(value, option) for option in options)


def evaluate_operator(value: Any, operator: str, compare: Any = None) -> bool:
    """
    Apply one operator.

    Args:
        value: Value read from the source record (may be MISSING)
        operator: ConditionOperator value
        compare: Rule value

    Returns:
        Whether the rule holds. Unknown operators return False.
    """
    if value is MISSING:
        value = None

    if operator == Op.EQUALS:
        return _strict_equals(value, compare)
    if operator == Op.NOT_EQUALS:
        return not _strict_equals(value, compare)
    if operator == Op.CONTAINS:
        return _contains(value, compare)
    if operator == Op.NOT_CONTAINS:
        return not _contains(value, compare)
    if operator == Op.STARTS_WITH:
        return isinstance(value, str) and isinstance(compare, str) and value.startswith(compare)
    if operator == Op.ENDS_WITH:
        return isinstance(value, str) and isinstance(compare, str) and value.endswith(compare)
    if operator == Op.MATCHES:
        return _matches(value, compare)
    if operator == Op.IS_EMPTY:
        return is_empty(value)
    if operator == Op.IS_NOT_EMPTY:
        return not is_empty(value)
    if operator in (
        Op.GREATER_THAN,
        Op.LESS_THAN,
        Op.GREATER_THAN_OR_EQUAL,
        Op.LESS_THAN_OR_EQUAL,
    ):
        return _compare_numbers(value, compare, operator)
    if operator == Op.IN:
        return isinstance(compare, (list, tuple)) and _in(value, compare)
    if operator == Op.NOT_IN:
        return isinstance(compare, (list, tuple)) and not _in(value, compare)

    logger.debug("unknown_condition_operator", operator=operator)
    return False


def evaluate_simple(source: Any, rule: SimpleCondition) -> bool:
    return evaluate_operator(get_path(source, rule.field), rule.operator, rule.value)


def evaluate_compound(source: Any, compound: CompoundCondition) -> bool:
    """AND requires every nested condition, anything else is OR."""
    results = (_evaluate_node(source, node) for node in compound.conditions)
    if str(compound.operator).lower() == "and":
        return all(results)
    return any(results)


def _evaluate_node(source: Any, node: Union[SimpleCondition, CompoundCondition]) -> bool:
    if isinstance(node, CompoundCondition):
        return evaluate_compound(source, node)
    return evaluate_simple(source, node)


def evaluate_condition(source: Any, condition: Union[FieldMappingCondition, dict, None]) -> bool:
    """
    Evaluate a mapping condition against a source record.

    Args:
        source: Source record (JSON-like tree)
        condition: FieldMappingCondition, or its dict form

    Returns:
        True when the mapping should apply
    """
    if condition is None:
        return True

    if isinstance(condition, dict):
        try:
            condition = FieldMappingCondition.model_validate(condition)
        except PydanticValidationError as e:
            logger.warning("malformed_condition_treated_as_true", error=str(e))
            return True

    if condition.type == "simple" and condition.rule is not None:
        return evaluate_simple(source, condition.rule)

    if condition.type == "compound" and condition.rules is not None:
        return evaluate_compound(source, condition.rules)

    logger.warning(
        "malformed_condition_treated_as_true",
        condition_type=condition.type,
        has_rule=condition.rule is not None,
        has_rules=condition.rules is not None
    )
    return True
