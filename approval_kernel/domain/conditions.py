"""
Rule condition variants (``approval_kernel.domain.conditions``).

Responsibility
--------------
Closed set of condition value objects that an approval rule is built
from, plus the parser that turns the stored / YAML dict form into those
variants and the inverse serializer.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* The condition set is closed: every stored condition parses into exactly
  one of ``AmountCondition``, ``EntityTypeCondition``,
  ``UserRoleCondition``, ``FieldCondition`` or ``ManualCondition``.
  Anything else is rejected with ``InvalidConditionError`` at write time.
* ``contains`` is only accepted on ``field`` conditions.
* ``amount`` values are numeric (never booleans) and stored as ``Decimal``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from approval_kernel.exceptions import InvalidConditionError


class ConditionType(str, Enum):
    """Discriminator for the condition variants (stored as ``type``)."""

    AMOUNT = "amount"
    ENTITY_TYPE = "entityType"
    USER_ROLE = "userRole"
    FIELD = "field"
    MANUAL = "manual"


class ConditionOperator(str, Enum):
    """Comparison operators available to conditions."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NEQ = "neq"
    CONTAINS = "contains"


class RuleLogic(str, Enum):
    """How a rule combines its conditions."""

    AND = "AND"
    OR = "OR"


ORDERING_OPERATORS: frozenset[ConditionOperator] = frozenset({
    ConditionOperator.GT,
    ConditionOperator.GTE,
    ConditionOperator.LT,
    ConditionOperator.LTE,
})

AMOUNT_OPERATORS: frozenset[ConditionOperator] = ORDERING_OPERATORS | {
    ConditionOperator.EQ,
    ConditionOperator.NEQ,
}

# Entity data keys read by the typed conditions.
AMOUNT_KEY = "amount"
ENTITY_TYPE_KEY = "entityType"
USER_ROLE_KEY = "userRole"


FieldValue = str | int | float | bool | Decimal


@dataclass(frozen=True)
class AmountCondition:
    """Compare ``entityData["amount"]`` against a numeric threshold."""

    operator: ConditionOperator
    value: Decimal


@dataclass(frozen=True)
class EntityTypeCondition:
    """Equality against ``entityData["entityType"]``."""

    value: str


@dataclass(frozen=True)
class UserRoleCondition:
    """Equality against ``entityData["userRole"]``."""

    value: str


@dataclass(frozen=True)
class FieldCondition:
    """Generic comparison of a named entity field."""

    field: str
    operator: ConditionOperator
    value: FieldValue


@dataclass(frozen=True)
class ManualCondition:
    """Always matches."""


Condition = (
    AmountCondition
    | EntityTypeCondition
    | UserRoleCondition
    | FieldCondition
    | ManualCondition
)


# =========================================================================
# Parsing
# =========================================================================


def _parse_operator(raw: dict[str, Any], default: ConditionOperator | None = None) -> ConditionOperator:
    op = raw.get("operator")
    if op is None:
        if default is not None:
            return default
        raise InvalidConditionError(raw, "operator is required")
    try:
        return ConditionOperator(op)
    except ValueError:
        raise InvalidConditionError(raw, f"unknown operator '{op}'") from None


def _parse_number(raw: dict[str, Any]) -> Decimal:
    value = raw.get("value")
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str)):
        raise InvalidConditionError(raw, "amount value must be a number")
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise InvalidConditionError(raw, "amount value must be a number") from None
    if not number.is_finite():
        raise InvalidConditionError(raw, "amount value must be finite")
    return number


def _parse_string(raw: dict[str, Any], key: str = "value") -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidConditionError(raw, f"'{key}' must be a non-empty string")
    return value


def parse_condition(raw: dict[str, Any]) -> Condition:
    """Parse one stored condition dict into its typed variant.

    Raises:
        InvalidConditionError: unknown ``type``, unknown or misplaced
            operator, or a value of the wrong shape.
    """
    if not isinstance(raw, dict):
        raise InvalidConditionError(raw, "condition must be a mapping")

    try:
        kind = ConditionType(raw.get("type"))
    except ValueError:
        raise InvalidConditionError(
            raw, f"unknown condition type '{raw.get('type')}'"
        ) from None

    match kind:
        case ConditionType.AMOUNT:
            operator = _parse_operator(raw)
            if operator not in AMOUNT_OPERATORS:
                raise InvalidConditionError(
                    raw, f"operator '{operator.value}' is not valid for amount"
                )
            return AmountCondition(operator=operator, value=_parse_number(raw))

        case ConditionType.ENTITY_TYPE | ConditionType.USER_ROLE:
            operator = _parse_operator(raw, default=ConditionOperator.EQ)
            if operator is not ConditionOperator.EQ:
                raise InvalidConditionError(
                    raw, f"{kind.value} conditions only support 'eq'"
                )
            value = _parse_string(raw)
            if kind is ConditionType.ENTITY_TYPE:
                return EntityTypeCondition(value=value)
            return UserRoleCondition(value=value)

        case ConditionType.FIELD:
            field_name = _parse_string(raw, "field")
            operator = _parse_operator(raw)
            if "value" not in raw:
                raise InvalidConditionError(raw, "field conditions need a value")
            value = raw["value"]
            if not isinstance(value, (str, int, float, bool, Decimal)):
                raise InvalidConditionError(
                    raw, "field value must be a string, number or boolean"
                )
            if operator is ConditionOperator.CONTAINS and not isinstance(value, str):
                raise InvalidConditionError(raw, "'contains' needs a string value")
            if operator in ORDERING_OPERATORS and (
                isinstance(value, bool) or not isinstance(value, (int, float, Decimal))
            ):
                raise InvalidConditionError(
                    raw, f"'{operator.value}' needs a numeric value"
                )
            return FieldCondition(field=field_name, operator=operator, value=value)

        case ConditionType.MANUAL:
            return ManualCondition()

    raise InvalidConditionError(raw, f"unhandled condition type '{kind.value}'")


def parse_conditions(raw: list[dict[str, Any]] | tuple[dict[str, Any], ...]) -> tuple[Condition, ...]:
    """Parse an ordered list of stored conditions."""
    if not isinstance(raw, (list, tuple)):
        raise InvalidConditionError(raw, "conditions must be a list")
    return tuple(parse_condition(item) for item in raw)


def condition_to_dict(condition: Condition) -> dict[str, Any]:
    """Serialize a condition back to its JSON-safe stored form."""
    match condition:
        case AmountCondition(operator=operator, value=value):
            # Keep integral thresholds as ints for readable storage.
            number: int | float = int(value) if value == value.to_integral_value() else float(value)
            return {"type": ConditionType.AMOUNT.value, "operator": operator.value, "value": number}
        case EntityTypeCondition(value=value):
            return {"type": ConditionType.ENTITY_TYPE.value, "value": value}
        case UserRoleCondition(value=value):
            return {"type": ConditionType.USER_ROLE.value, "value": value}
        case FieldCondition(field=field_name, operator=operator, value=value):
            if isinstance(value, Decimal):
                value = float(value)
            return {
                "type": ConditionType.FIELD.value,
                "field": field_name,
                "operator": operator.value,
                "value": value,
            }
        case ManualCondition():
            return {"type": ConditionType.MANUAL.value}
    raise InvalidConditionError(condition, "unknown condition variant")
