from sealdesk.fields.resolution import (
    evaluate_condition, index_by_id, propagate_linked_values, resolve_field_state,
)
from sealdesk.fields.schemas import ConditionalRule, FieldDefinition


def _field(field_id, field_type="text", **extra):
    return FieldDefinition(id=field_id, type=field_type, **extra)


def _rule(source, operator, action, value=None):
    return ConditionalRule.model_validate(
        {"sourceFieldId": source, "operator": operator, "value": value, "action": action}
    )


def test_hide_rule_hides_field_when_condition_matches():
    fields = [
        _field("has_spouse", "checkbox"),
        _field("spouse_name", conditional_rules=[_rule("has_spouse", "neq", "hide", "true")]),
    ]
    hidden = index_by_id(resolve_field_state(fields, {"has_spouse": "false"}))
    shown = index_by_id(resolve_field_state(fields, {"has_spouse": "true"}))

    assert hidden["spouse_name"].visible is False
    assert shown["spouse_name"].visible is True


def test_require_rule_makes_field_required():
    fields = [
        _field("amount", "number"),
        _field("approval", required=False, conditional_rules=[_rule("amount", "gt", "require", "1000")]),
    ]
    small = index_by_id(resolve_field_state(fields, {"amount": "500"}))
    large = index_by_id(resolve_field_state(fields, {"amount": "1500"}))

    assert small["approval"].required is False
    assert large["approval"].required is True


def test_later_rule_overrides_earlier_rule():
    fields = [
        _field("plan"),
        _field("notes", conditional_rules=[
            _rule("plan", "contains", "hide", "basic"),
            _rule("plan", "eq", "show", "basic-plus"),
        ]),
    ]
    resolved = index_by_id(resolve_field_state(fields, {"plan": "basic-plus"}))
    assert resolved["notes"].visible is True


def test_missing_source_only_satisfies_empty():
    assert evaluate_condition(_rule("x", "empty", "hide"), {}) is True
    assert evaluate_condition(_rule("x", "eq", "hide", ""), {}) is False
    assert evaluate_condition(_rule("x", "neq", "hide", "a"), {}) is False
    assert evaluate_condition(_rule("x", "empty", "hide"), {"x": ""}) is True


def test_numeric_comparison_with_unparseable_value_is_false():
    assert evaluate_condition(_rule("x", "gt", "hide", "10"), {"x": "lots"}) is False
    assert evaluate_condition(_rule("x", "lt", "hide", "10"), {"x": ""}) is True


def test_calculated_field_gets_formula_result():
    fields = [
        _field("qty", "number"),
        _field("price", "currency"),
        _field("total", "calculated", formula="{qty} * {price}"),
    ]
    resolved = index_by_id(resolve_field_state(fields, {"qty": "4", "price": "2.5"}))

    assert resolved["total"].calculated_value == 10.0
    assert resolved["total"].value == "10"


def test_linked_fields_inherit_group_value():
    fields = [
        _field("name_p1", linked_group_id="name"),
        _field("name_p2", linked_group_id="name"),
        _field("other"),
    ]
    values = {"name_p1": "Alice"}
    propagated = propagate_linked_values(fields, values)

    assert propagated["name_p2"] == "Alice"
    assert "other" not in propagated
    # Caller's mapping is left alone
    assert values == {"name_p1": "Alice"}


def test_resolution_does_not_mutate_input_and_keeps_stored_values():
    fields = [_field("company", value="Acme Corp"), _field("title")]
    values = {"title": "CEO"}
    resolved = index_by_id(resolve_field_state(fields, values))

    assert resolved["company"].value == "Acme Corp"
    assert resolved["title"].value == "CEO"
    assert values == {"title": "CEO"}
