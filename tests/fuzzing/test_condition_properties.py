"""
Hypothesis-based fuzzing for condition parsing and evaluation.

Property-based tests that verify:
1. The evaluator never raises for arbitrary entity data
2. Missing fields fail closed under every operator
3. An empty condition list never matches
4. AND / OR agree with all() / any() over the single results
5. Stored conditions survive parse -> serialize -> parse
"""

from decimal import Decimal

from hypothesis import HealthCheck, given, settings, strategies as st
from hypothesis.strategies import composite

from approval_engines.conditions import evaluate_condition, evaluate_rule_conditions
from approval_kernel.domain.conditions import (
    AmountCondition,
    ConditionOperator,
    EntityTypeCondition,
    FieldCondition,
    ManualCondition,
    RuleLogic,
    UserRoleCondition,
    condition_to_dict,
    parse_condition,
)
from approval_kernel.exceptions import InvalidConditionError

# =============================================================================
# Strategies
# =============================================================================

keys = st.sampled_from(["amount", "entityType", "userRole", "vendor", "customer", "tier", "x.y"])

scalars = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(min_value=-10**12, max_value=10**12),
    st.floats(width=32),
    st.decimals(min_value=-10**9, max_value=10**9, places=2),
    st.text(max_size=8),
)

entity_values = st.recursive(
    scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=2),
        st.dictionaries(keys, children, max_size=2),
    ),
    max_leaves=4,
)

entity_data = st.dictionaries(keys, entity_values, max_size=4)

amount_operators = st.sampled_from([
    ConditionOperator.GT,
    ConditionOperator.GTE,
    ConditionOperator.LT,
    ConditionOperator.LTE,
    ConditionOperator.EQ,
    ConditionOperator.NEQ,
])


@composite
def conditions(draw):
    kind = draw(st.sampled_from(["amount", "entityType", "userRole", "field", "manual"]))
    if kind == "amount":
        value = draw(st.decimals(min_value=-10**9, max_value=10**9, places=2))
        return AmountCondition(operator=draw(amount_operators), value=value)
    if kind == "entityType":
        return EntityTypeCondition(value=draw(st.text(min_size=1, max_size=8)))
    if kind == "userRole":
        return UserRoleCondition(value=draw(st.text(min_size=1, max_size=8)))
    if kind == "field":
        operator = draw(st.sampled_from(list(ConditionOperator)))
        if operator is ConditionOperator.CONTAINS:
            value = draw(st.text(max_size=4))
        elif operator in (ConditionOperator.EQ, ConditionOperator.NEQ):
            value = draw(st.one_of(st.text(max_size=4), st.integers(), st.booleans()))
        else:
            value = draw(st.integers(min_value=-1000, max_value=1000))
        field_name = draw(st.sampled_from(["vendor", "customer.tier", "x.y"]))
        return FieldCondition(field=field_name, operator=operator, value=value)
    return ManualCondition()


# =============================================================================
# Properties
# =============================================================================


@given(condition=conditions(), data=entity_data)
@settings(max_examples=200, deadline=None, suppress_health_check=[HealthCheck.too_slow])
def test_evaluator_never_raises(condition, data):
    assert evaluate_condition(condition, data) in (True, False)


@given(condition=conditions())
def test_missing_fields_fail_closed(condition):
    result = evaluate_condition(condition, {})
    assert result is isinstance(condition, ManualCondition)


@given(data=entity_data, logic=st.sampled_from(list(RuleLogic)))
def test_empty_condition_list_never_matches(data, logic):
    assert evaluate_rule_conditions([], logic, data) is False


@given(items=st.lists(conditions(), min_size=1, max_size=4), data=entity_data)
@settings(deadline=None, suppress_health_check=[HealthCheck.too_slow])
def test_logic_agrees_with_single_results(items, data):
    singles = [evaluate_condition(c, data) for c in items]
    assert evaluate_rule_conditions(items, RuleLogic.AND, data) is all(singles)
    assert evaluate_rule_conditions(items, RuleLogic.OR, data) is any(singles)


@given(threshold=st.integers(min_value=-10**9, max_value=10**9), amount=st.integers(min_value=-10**9, max_value=10**9))
def test_int_and_decimal_amounts_agree(threshold, amount):
    condition = AmountCondition(ConditionOperator.GTE, Decimal(threshold))
    assert evaluate_condition(condition, {"amount": amount}) is (amount >= threshold)
    assert evaluate_condition(condition, {"amount": Decimal(amount)}) is (amount >= threshold)


@given(condition=conditions())
def test_stored_form_round_trips(condition):
    assert parse_condition(condition_to_dict(condition)) == condition


@given(raw=st.dictionaries(st.sampled_from(["type", "operator", "value", "field"]), scalars, max_size=4))
@settings(max_examples=300)
def test_parser_rejects_or_accepts_but_never_crashes(raw):
    try:
        parse_condition(raw)
    except InvalidConditionError as exc:
        assert exc.code == "INVALID_CONDITION"
