"""
approval_engines.conditions -- Pure condition evaluator.

Responsibility:
    Evaluate one rule condition, or a rule's whole condition set, against
    a submission's entity data.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - Fail closed: a missing field, a value of the wrong type, or an
      operator that does not apply to the operands yields ``False``; the
      evaluator never raises for entity data it cannot use.  This holds
      for ``neq`` too: a missing field does not "differ" from anything.
    - Booleans are never numbers.  Numeric comparison is done in Decimal
      so ``1000`` and ``1000.0`` compare equal.
    - An empty condition list never matches, under either logic.
    - Exhaustive dispatch over the closed condition variants.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

from approval_kernel.domain.conditions import (
    AMOUNT_KEY,
    ENTITY_TYPE_KEY,
    USER_ROLE_KEY,
    AmountCondition,
    Condition,
    ConditionOperator,
    EntityTypeCondition,
    FieldCondition,
    ManualCondition,
    RuleLogic,
    UserRoleCondition,
)

_MISSING = object()


def evaluate_condition(condition: Condition, entity_data: Mapping[str, Any]) -> bool:
    """Evaluate a single condition against entity data."""
    match condition:
        case AmountCondition(operator=operator, value=threshold):
            amount = _as_decimal(entity_data.get(AMOUNT_KEY, _MISSING))
            if amount is None:
                return False
            return _compare_numbers(amount, operator, threshold)

        case EntityTypeCondition(value=expected):
            return _string_equals(entity_data.get(ENTITY_TYPE_KEY, _MISSING), expected)

        case UserRoleCondition(value=expected):
            return _string_equals(entity_data.get(USER_ROLE_KEY, _MISSING), expected)

        case FieldCondition(field=field_name, operator=operator, value=expected):
            actual = resolve_field(field_name, entity_data)
            if actual is _MISSING:
                return False
            return _compare_field(actual, operator, expected)

        case ManualCondition():
            return True

    raise TypeError(f"Unknown condition variant: {type(condition).__name__}")


def evaluate_rule_conditions(
    conditions: Sequence[Condition],
    logic: RuleLogic,
    entity_data: Mapping[str, Any],
) -> bool:
    """Combine a rule's conditions with AND / OR.

    An empty list never matches: a rule without conditions must not
    silently route every submission.
    """
    if not conditions:
        return False
    results = (evaluate_condition(c, entity_data) for c in conditions)
    if RuleLogic(logic) is RuleLogic.OR:
        return any(results)
    return all(results)


def resolve_field(field_path: str, entity_data: Mapping[str, Any]) -> Any:
    """Look up a field by literal key, then by dotted path.

    ``customer.tier`` -> entity_data["customer"]["tier"] unless
    entity_data has a literal "customer.tier" key.  Returns a private
    sentinel (not None) when absent so that an explicit ``None`` value
    stays distinguishable from a missing one.
    """
    if field_path in entity_data:
        return entity_data[field_path]
    if "." not in field_path:
        return _MISSING
    current: Any = entity_data
    for part in field_path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def is_missing(value: Any) -> bool:
    return value is _MISSING


# ---------------------------------------------------------------------------
# Comparison helpers
# ---------------------------------------------------------------------------


def _as_decimal(value: Any) -> Decimal | None:
    """Numeric entity value as Decimal; None for anything non-numeric."""
    if value is _MISSING or value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        try:
            return Decimal(repr(value))
        except InvalidOperation:
            return None
    return None


def _compare_numbers(actual: Decimal, operator: ConditionOperator, expected: Decimal) -> bool:
    match operator:
        case ConditionOperator.GT:
            return actual > expected
        case ConditionOperator.GTE:
            return actual >= expected
        case ConditionOperator.LT:
            return actual < expected
        case ConditionOperator.LTE:
            return actual <= expected
        case ConditionOperator.EQ:
            return actual == expected
        case ConditionOperator.NEQ:
            return actual != expected
    return False


def _string_equals(actual: Any, expected: str) -> bool:
    return isinstance(actual, str) and actual == expected


def _strict_equals(actual: Any, expected: Any) -> bool:
    """Type-aware equality: bools only equal bools, numbers compare by value."""
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    actual_num = _as_decimal(actual)
    expected_num = _as_decimal(expected)
    if actual_num is not None and expected_num is not None:
        return actual_num == expected_num
    if isinstance(actual, str) and isinstance(expected, str):
        return actual == expected
    return False


def _compare_field(actual: Any, operator: ConditionOperator, expected: Any) -> bool:
    match operator:
        case ConditionOperator.EQ:
            return _strict_equals(actual, expected)
        case ConditionOperator.NEQ:
            if actual is None:
                return False
            return not _strict_equals(actual, expected)
        case ConditionOperator.CONTAINS:
            if isinstance(actual, str) and isinstance(expected, str):
                return expected in actual
            return False
        case ConditionOperator.GT | ConditionOperator.GTE | ConditionOperator.LT | ConditionOperator.LTE:
            actual_num = _as_decimal(actual)
            expected_num = _as_decimal(expected)
            if actual_num is None or expected_num is None:
                return False
            return _compare_numbers(actual_num, operator, expected_num)
    return False
