"""
Tests for condition parsing and canonical serialization.
"""

from decimal import Decimal

import pytest

from approval_kernel.domain.conditions import (
    AmountCondition,
    ConditionOperator,
    EntityTypeCondition,
    FieldCondition,
    ManualCondition,
    UserRoleCondition,
    condition_to_dict,
    parse_condition,
    parse_conditions,
)
from approval_kernel.exceptions import InvalidConditionError


class TestParseCondition:
    def test_amount(self):
        condition = parse_condition({"type": "amount", "operator": "gte", "value": 10000})
        assert condition == AmountCondition(ConditionOperator.GTE, Decimal("10000"))

    def test_amount_from_string_number(self):
        condition = parse_condition({"type": "amount", "operator": "lt", "value": "99.5"})
        assert condition.value == Decimal("99.5")

    def test_entity_type_defaults_to_eq(self):
        assert parse_condition({"type": "entityType", "value": "invoice"}) == EntityTypeCondition("invoice")

    def test_user_role(self):
        condition = parse_condition({"type": "userRole", "operator": "eq", "value": "intern"})
        assert condition == UserRoleCondition("intern")

    def test_field(self):
        condition = parse_condition(
            {"type": "field", "field": "vendor.country", "operator": "neq", "value": "US"}
        )
        assert condition == FieldCondition("vendor.country", ConditionOperator.NEQ, "US")

    def test_field_boolean_value(self):
        condition = parse_condition({"type": "field", "field": "urgent", "operator": "eq", "value": True})
        assert condition.value is True

    def test_manual(self):
        assert parse_condition({"type": "manual"}) == ManualCondition()

    @pytest.mark.parametrize(
        "raw,reason",
        [
            ({"type": "unknown"}, "unknown condition type"),
            ({"operator": "eq", "value": 1}, "unknown condition type"),
            ({"type": "amount", "value": 1}, "operator is required"),
            ({"type": "amount", "operator": "between", "value": 1}, "unknown operator"),
            ({"type": "amount", "operator": "contains", "value": 1}, "not valid for amount"),
            ({"type": "amount", "operator": "gt", "value": True}, "must be a number"),
            ({"type": "amount", "operator": "gt", "value": "lots"}, "must be a number"),
            ({"type": "amount", "operator": "gt", "value": "Infinity"}, "must be finite"),
            ({"type": "entityType", "operator": "neq", "value": "x"}, "only support 'eq'"),
            ({"type": "userRole", "value": ""}, "non-empty string"),
            ({"type": "field", "operator": "eq", "value": 1}, "'field' must be"),
            ({"type": "field", "field": "a", "operator": "eq"}, "need a value"),
            ({"type": "field", "field": "a", "operator": "eq", "value": [1]}, "string, number or boolean"),
            ({"type": "field", "field": "a", "operator": "contains", "value": 5}, "needs a string"),
            ({"type": "field", "field": "a", "operator": "gt", "value": "5"}, "needs a numeric"),
            ({"type": "field", "field": "a", "operator": "lte", "value": False}, "needs a numeric"),
        ],
    )
    def test_rejects_malformed(self, raw, reason):
        with pytest.raises(InvalidConditionError, match=reason) as exc_info:
            parse_condition(raw)
        assert exc_info.value.code == "INVALID_CONDITION"

    def test_rejects_non_mapping(self):
        with pytest.raises(InvalidConditionError):
            parse_condition(["amount"])

    def test_parse_conditions_requires_list(self):
        with pytest.raises(InvalidConditionError):
            parse_conditions({"type": "manual"})

    def test_parse_conditions_keeps_order(self):
        parsed = parse_conditions([{"type": "manual"}, {"type": "entityType", "value": "invoice"}])
        assert parsed == (ManualCondition(), EntityTypeCondition("invoice"))


class TestConditionToDict:
    def test_integral_amount_stored_as_int(self):
        stored = condition_to_dict(AmountCondition(ConditionOperator.GT, Decimal("10000")))
        assert stored == {"type": "amount", "operator": "gt", "value": 10000}
        assert isinstance(stored["value"], int)

    def test_fractional_amount_stored_as_float(self):
        stored = condition_to_dict(AmountCondition(ConditionOperator.GT, Decimal("10.5")))
        assert stored["value"] == 10.5

    def test_equality_conditions_drop_operator(self):
        assert condition_to_dict(EntityTypeCondition("invoice")) == {
            "type": "entityType",
            "value": "invoice",
        }

    def test_field(self):
        stored = condition_to_dict(FieldCondition("a.b", ConditionOperator.CONTAINS, "x"))
        assert stored == {"type": "field", "field": "a.b", "operator": "contains", "value": "x"}

    def test_parse_of_stored_form_is_stable(self):
        raw = {"type": "field", "field": "score", "operator": "gte", "value": 7}
        assert condition_to_dict(parse_condition(raw)) == raw
