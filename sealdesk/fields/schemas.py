# sealdesk/fields/schemas.py

"""
Pydantic schemas for field definitions, conditional rules and validation rules.
"""

from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# === Enums ===

class FieldType(str, Enum):
    """Kinds of field that can be placed on a document"""
    SIGNATURE = "signature"
    INITIAL = "initial"
    DATE = "date"
    TEXT = "text"
    NUMBER = "number"
    CURRENCY = "currency"
    CHECKBOX = "checkbox"
    DROPDOWN = "dropdown"
    RADIO = "radio"
    CALCULATED = "calculated"
    ATTACHMENT = "attachment"


class ConditionOperator(str, Enum):
    """Comparison applied by a conditional rule"""
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    LT = "lt"
    CONTAINS = "contains"
    EMPTY = "empty"


class ConditionAction(str, Enum):
    """Effect of a conditional rule that matched"""
    SHOW = "show"
    HIDE = "hide"
    REQUIRE = "require"


class ValidationRuleType(str, Enum):
    """Format checks that can be attached to a field"""
    TEXT = "text"
    EMAIL = "email"
    DATE = "date"
    PHONE = "phone"
    ZIP_CODE_5 = "zipCode5"
    ZIP_CODE_9 = "zipCode9"
    SSN = "ssn"
    URL = "url"
    REGEX = "regex"


IMAGE_FIELD_TYPES = (FieldType.SIGNATURE, FieldType.INITIAL)
NUMERIC_FIELD_TYPES = (FieldType.NUMBER, FieldType.CURRENCY, FieldType.CALCULATED)


# === Rules ===

class ConditionalRule(BaseModel):
    """Show, hide or require a field depending on another field's value"""
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    source_field_id: str = Field(..., alias="sourceFieldId")
    operator: ConditionOperator
    value: Optional[str] = None
    action: ConditionAction


class ValidationRule(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    type: ValidationRuleType
    # Length bounds for text rules
    min: Optional[int] = Field(None, ge=0)
    max: Optional[int] = Field(None, ge=0)
    # Pattern for regex rules
    pattern: Optional[str] = None
    message: Optional[str] = None


# === Definitions and results ===

class FieldDefinition(BaseModel):
    """Engine view of a field, independent of the ORM row"""
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    # Rows carry the caller-chosen id as field_key
    id: str = Field(validation_alias=AliasChoices("field_key", "id"))
    type: FieldType
    signer_id: Optional[str] = None
    label: Optional[str] = None
    required: bool = False
    value: Optional[str] = None
    formula: Optional[str] = None
    conditional_rules: List[ConditionalRule] = Field(default_factory=list)
    validation_rules: List[ValidationRule] = Field(default_factory=list)
    linked_group_id: Optional[str] = None


class ResolvedField(BaseModel):
    id: str
    type: FieldType
    visible: bool = True
    required: bool = False
    value: Optional[str] = None
    calculated_value: Optional[float] = None

    model_config = ConfigDict(use_enum_values=True)


class ValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)


class FieldCreate(BaseModel):
    """Field placement supplied when an envelope is created"""
    model_config = ConfigDict(use_enum_values=True)

    id: Optional[str] = None
    type: FieldType
    page: int = Field(1, ge=1)
    x: float = Field(..., ge=0, le=100)
    y: float = Field(..., ge=0, le=100)
    width: float = Field(..., gt=0, le=100)
    height: float = Field(..., gt=0, le=100)
    # Index into the envelope's signer list
    signer_index: Optional[int] = Field(None, ge=0)
    label: Optional[str] = None
    required: bool = False
    value: Optional[str] = None
    formula: Optional[str] = None
    options: Optional[List[str]] = None
    conditional_rules: List[ConditionalRule] = Field(default_factory=list)
    validation_rules: List[ValidationRule] = Field(default_factory=list)
    linked_group_id: Optional[str] = None


class FieldResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    field_key: str
    document_id: str
    signer_id: Optional[str] = None
    type: str
    page: int
    x: float
    y: float
    width: float
    height: float
    label: Optional[str] = None
    required: bool
    value: Optional[str] = None
    linked_group_id: Optional[str] = None
