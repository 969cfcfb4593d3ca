# sealdesk/fields/validation.py

"""
Field value validation.

Type checks run first, then every attached rule; errors accumulate. An
empty string means "not provided yet" and passes every format rule.
Rejecting an empty required field is a separate check (``check_required``)
because whether a field is required depends on conditional resolution.
"""

# Standard library imports
import math
import re
from typing import Iterable, List, Optional, Union
from urllib.parse import urlparse

# Third party imports
from dateutil import parser as date_parser

# Local imports
from sealdesk.fields.schemas import (
    FieldType, ResolvedField, ValidationResult, ValidationRule, ValidationRuleType,
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")
ZIP5_PATTERN = re.compile(r"^\d{5}$")
ZIP9_PATTERN = re.compile(r"^\d{5}-\d{4}$")
SSN_PATTERN = re.compile(r"^\d{3}-\d{2}-\d{4}$")
URL_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")

CHECKBOX_VALUES = ("true", "false", "")


def is_number(value: str) -> bool:
    try:
        return not math.isnan(float(value))
    except ValueError:
        return False


def is_date(value: str) -> bool:
    try:
        date_parser.parse(value)
    except (ValueError, OverflowError):
        return False
    return True


def is_url(value: str) -> bool:
    parsed = urlparse(value)
    if not parsed.scheme or not URL_SCHEME_PATTERN.match(parsed.scheme):
        return False
    return bool(parsed.netloc or parsed.path)


def _check_type(value: str, field_type: str) -> Optional[str]:
    if value == "":
        return None
    if field_type in (FieldType.NUMBER, FieldType.CURRENCY, FieldType.CALCULATED):
        if not is_number(value):
            return "Value must be a valid number"
    elif field_type == FieldType.CHECKBOX:
        if value not in CHECKBOX_VALUES:
            return "Checkbox value must be true or false"
    elif field_type == FieldType.DATE:
        if not is_date(value):
            return "Invalid date format"
    return None


def _check_rule(value: str, rule: ValidationRule) -> List[str]:
    errors: List[str] = []
    rule_type = rule.type
    if value == "":
        return errors

    if rule_type == ValidationRuleType.TEXT:
        if rule.min is not None and len(value) < rule.min:
            errors.append(rule.message or f"Minimum length is {rule.min} characters")
        if rule.max is not None and len(value) > rule.max:
            errors.append(rule.message or f"Maximum length is {rule.max} characters")
        return errors

    if rule_type == ValidationRuleType.EMAIL and not EMAIL_PATTERN.match(value):
        errors.append(rule.message or "Invalid email address")
    elif rule_type == ValidationRuleType.DATE and not is_date(value):
        errors.append(rule.message or "Invalid date format")
    elif rule_type == ValidationRuleType.PHONE and not PHONE_PATTERN.match(value):
        errors.append(rule.message or "Invalid phone number (expected E.164 format, e.g., +12125551234)")
    elif rule_type == ValidationRuleType.ZIP_CODE_5 and not ZIP5_PATTERN.match(value):
        errors.append(rule.message or "Invalid ZIP code (expected 5 digits, e.g., 10001)")
    elif rule_type == ValidationRuleType.ZIP_CODE_9 and not ZIP9_PATTERN.match(value):
        errors.append(rule.message or "Invalid ZIP+4 code (expected format: 12345-6789)")
    elif rule_type == ValidationRuleType.SSN and not SSN_PATTERN.match(value):
        errors.append(rule.message or "Invalid SSN format (expected XXX-XX-XXXX)")
    elif rule_type == ValidationRuleType.URL and not is_url(value):
        errors.append(rule.message or "Invalid URL")
    elif rule_type == ValidationRuleType.REGEX and rule.pattern:
        try:
            matched = re.search(rule.pattern, value) is not None
        except re.error:
            errors.append(f"Invalid validation pattern: {rule.pattern}")
        else:
            if not matched:
                errors.append(rule.message or "Value does not match required pattern")
    return errors


def validate_field_value(
    value: str,
    field_type: Union[FieldType, str],
    validation_rules: Optional[Iterable[Union[ValidationRule, dict]]] = None,
) -> ValidationResult:
    """
    Validate a value against its field type and every attached rule.

    Args:
        value: The raw string entered by the signer
        field_type: Type of the field the value belongs to
        validation_rules: Rules as models or plain dicts

    Returns:
        ValidationResult with every error message collected
    """
    value = "" if value is None else str(value)
    field_type = field_type.value if isinstance(field_type, FieldType) else field_type

    errors: List[str] = []
    type_error = _check_type(value, field_type)
    if type_error:
        errors.append(type_error)

    for rule in validation_rules or []:
        if isinstance(rule, dict):
            rule = ValidationRule.model_validate(rule)
        errors.extend(_check_rule(value, rule))

    return ValidationResult(valid=not errors, errors=errors)


def check_required(resolved: ResolvedField, value: Optional[str]) -> Optional[str]:
    """Error message when a visible required field has no value"""
    if resolved.visible and resolved.required and (value is None or str(value).strip() == ""):
        return "This field is required"
    return None


def mask_ssn(ssn: str) -> str:
    """Show only the last four digits of a well-formed SSN"""
    if not SSN_PATTERN.match(ssn or ""):
        return ssn
    return f"***-**-{ssn[-4:]}"
