# sealdesk/fields/resolution.py

"""
Field resolution engine.

Given every field of a document and the values entered so far, compute
which fields are visible, which are required and what calculated fields
evaluate to. This is a pure function: the caller's value mapping is not
mutated and nothing is persisted.
"""

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sealdesk.fields.formula import evaluate_formula, format_number
from sealdesk.fields.schemas import (
    ConditionAction, ConditionalRule, ConditionOperator, FieldDefinition,
    FieldType, ResolvedField,
)


def stringify(value: Any) -> Optional[str]:
    """Render a raw value the way rules compare it"""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return format_number(value) if math.isfinite(value) else str(value)
    return str(value)


def _as_number(text: str) -> float:
    # Empty compares as 0, anything unparseable never satisfies gt/lt
    if text.strip() == "":
        return 0.0
    try:
        return float(text)
    except ValueError:
        return math.nan


def evaluate_condition(rule: ConditionalRule, current_values: Mapping[str, Any]) -> bool:
    """
    Check one conditional rule against the current values.

    A missing or null source value only satisfies the ``empty`` operator.
    """
    source = stringify(current_values.get(rule.source_field_id))
    if source is None:
        return rule.operator == ConditionOperator.EMPTY

    expected = rule.value or ""
    operator = rule.operator
    if operator == ConditionOperator.EQ:
        return source == expected
    if operator == ConditionOperator.NEQ:
        return source != expected
    if operator == ConditionOperator.GT:
        return _as_number(source) > _as_number(expected)
    if operator == ConditionOperator.LT:
        return _as_number(source) < _as_number(expected)
    if operator == ConditionOperator.CONTAINS:
        return expected in source
    if operator == ConditionOperator.EMPTY:
        return source in ("", "null")
    return False


def propagate_linked_values(
    fields: Iterable[FieldDefinition], current_values: Mapping[str, Any]
) -> Dict[str, Any]:
    """
    First pass: fields sharing a linked group inherit the group's value when
    they are unfilled. Returns a new mapping.
    """
    values: Dict[str, Any] = dict(current_values)
    fields = list(fields)

    group_values: Dict[str, str] = {}
    for field in fields:
        if field.linked_group_id and values.get(field.id) is not None:
            group_values[field.linked_group_id] = stringify(values[field.id])

    for field in fields:
        if field.linked_group_id in group_values and values.get(field.id) is None:
            values[field.id] = group_values[field.linked_group_id]
    return values


def resolve_field_state(
    fields: Iterable[FieldDefinition], current_values: Mapping[str, Any]
) -> List[ResolvedField]:
    """
    Resolve visibility, required flag and value for every field.

    Rules are applied in declaration order; a later matching rule overrides
    an earlier one. Calculated fields get the stringified formula result.
    """
    fields = list(fields)
    values = propagate_linked_values(fields, current_values)

    resolved: List[ResolvedField] = []
    for field in fields:
        visible = True
        required = field.required
        raw = values.get(field.id)
        value = stringify(raw) if raw is not None else field.value
        calculated_value = None

        for rule in field.conditional_rules:
            if not evaluate_condition(rule, values):
                continue
            if rule.action == ConditionAction.SHOW:
                visible = True
            elif rule.action == ConditionAction.HIDE:
                visible = False
            elif rule.action == ConditionAction.REQUIRE:
                required = True

        if field.type == FieldType.CALCULATED and field.formula:
            calculated_value = evaluate_formula(field.formula, values)
            value = format_number(calculated_value)

        resolved.append(
            ResolvedField(
                id=field.id,
                type=field.type,
                visible=visible,
                required=required,
                value=value,
                calculated_value=calculated_value,
            )
        )
    return resolved


def index_by_id(resolved: Iterable[ResolvedField]) -> Dict[str, ResolvedField]:
    return {field.id: field for field in resolved}
