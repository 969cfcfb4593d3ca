# sealdesk/workflow/schemas.py

"""
Pydantic schemas for the envelope workflow.

Routing rules are a tagged union keyed on ``condition`` and are validated
when the envelope is created, so a malformed rule never reaches the
signing order resolver.
"""

from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import (
    BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, ValidationError,
    model_validator,
)

from sealdesk.fields.schemas import FieldCreate, FieldResponse, ResolvedField
from sealdesk.workflow.exceptions import InvalidRoutingRuleException
from sealdesk.workflow.models import (
    EnvelopeStatus, SigningMode, SigningOrder, VerificationLevel,
)


# === Routing rules ===

class _RuleBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class FieldValueRule(_RuleBase):
    """Redirect the flow when a completed field matches a comparison"""
    condition: Literal["field_value"]
    field_id: str = Field(..., alias="fieldId")
    operator: Literal["eq", "neq", "gt", "lt", "contains"]
    value: str
    action: Literal["skip_to", "route_to", "add_signer", "complete"]
    target_signer_order: Optional[int] = Field(None, alias="targetSignerOrder", ge=1)
    signer_email: Optional[EmailStr] = Field(None, alias="signerEmail")
    signer_name: Optional[str] = Field(None, alias="signerName")

    @model_validator(mode="after")
    def check_action_target(self):
        _check_action_target(self.action, self.target_signer_order, self.signer_email)
        return self


class SignerDeclinedRule(_RuleBase):
    """What to do instead of voiding when a signer declines"""
    condition: Literal["signer_declined"]
    action: Literal["skip_to", "route_to", "add_signer", "complete"]
    target_signer_order: Optional[int] = Field(None, alias="targetSignerOrder", ge=1)
    signer_email: Optional[EmailStr] = Field(None, alias="signerEmail")
    signer_name: Optional[str] = Field(None, alias="signerName")

    @model_validator(mode="after")
    def check_action_target(self):
        _check_action_target(self.action, self.target_signer_order, self.signer_email)
        return self


class DelayRule(_RuleBase):
    """Cooling-off period before the next order may sign"""
    condition: Literal["after_signer_completes"]
    action: Literal["delay"]
    signer_order: int = Field(..., alias="signerOrder", ge=1)
    delay_hours: float = Field(..., alias="delayHours", gt=0)


def _check_action_target(action: str, target_order: Optional[int], email: Optional[str]) -> None:
    if action == "skip_to" and target_order is None:
        raise ValueError("skip_to requires targetSignerOrder")
    if action in ("route_to", "add_signer") and not email:
        raise ValueError(f"{action} requires signerEmail")


RoutingRule = Annotated[
    Union[FieldValueRule, SignerDeclinedRule, DelayRule],
    Field(discriminator="condition"),
]

_routing_rules_adapter = TypeAdapter(List[RoutingRule])


def parse_routing_rules(raw: Optional[List[Any]]) -> List[Union[FieldValueRule, SignerDeclinedRule, DelayRule]]:
    """
    Validate raw routing rules.

    Raises:
        InvalidRoutingRuleException: when any rule is malformed
    """
    if not raw:
        return []
    try:
        return _routing_rules_adapter.validate_python(raw)
    except ValidationError as e:
        raise InvalidRoutingRuleException(
            e.errors(include_url=False, include_context=False, include_input=False)
        ) from e


def dump_routing_rules(rules) -> List[dict]:
    return [rule.model_dump(exclude_none=True) for rule in rules]


class RoutingDecision(BaseModel):
    action: Literal["continue", "skip_to", "route_to", "add_signer", "complete"] = "continue"
    target_signer_order: Optional[int] = None
    signer_email: Optional[str] = None
    signer_name: Optional[str] = None
    reason: Optional[str] = None


# === Resolver state ===

class SignerState(BaseModel):
    """Snapshot of the signer attributes the resolver reads"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str = ""
    email: str = ""
    order: int = 1
    signing_group: Optional[int] = None
    status: str = "pending"


class EnvelopeState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: str
    signing_order: str = SigningOrder.SEQUENTIAL.value
    routing_rules: Optional[List[dict]] = None
    signers: List[SignerState] = Field(default_factory=list)


class DelayedSigner(BaseModel):
    signer_id: str
    delayed_until: datetime
    delay_hours: float


class SignerCompletionResult(BaseModel):
    is_complete: bool
    next_wave: List[SignerState] = Field(default_factory=list)
    delayed_signers: List[DelayedSigner] = Field(default_factory=list)


# === Envelope input ===

class SignerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = None
    role: str = "signer"
    # Defaults to position in the list, starting at 1
    order: Optional[int] = Field(None, ge=1)
    signing_group: Optional[int] = Field(None, ge=1)


class DocumentCreate(BaseModel):
    filename: str = Field(..., min_length=1)
    content_base64: str = Field(..., min_length=1)
    content_type: str = "application/pdf"
    visibility: Optional[List[str]] = None
    fields: List[FieldCreate] = Field(default_factory=list)


class EnvelopeCreate(BaseModel):
    """Request to create a draft envelope"""
    subject: str = Field(..., min_length=1, max_length=255)
    message: Optional[str] = None
    signing_mode: SigningMode = SigningMode.REMOTE
    signing_order: SigningOrder = SigningOrder.SEQUENTIAL
    verification_level: VerificationLevel = VerificationLevel.SIMPLE
    routing_rules: Optional[List[dict]] = None
    created_by: str = "system"
    expires_at: Optional[datetime] = None
    metadata: Optional[dict] = None
    signers: List[SignerCreate] = Field(default_factory=list)
    documents: List[DocumentCreate] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_field_signers(self):
        for doc in self.documents:
            for field in doc.fields:
                if field.signer_index is not None and field.signer_index >= len(self.signers):
                    raise ValueError(
                        f"Field references signer_index {field.signer_index} "
                        f"but the envelope has {len(self.signers)} signer(s)"
                    )
        return self


class EnvelopeFilters(BaseModel):
    status: Optional[EnvelopeStatus] = None
    created_by: Optional[str] = None
    search: Optional[str] = None
    limit: int = Field(50, ge=1, le=200)
    offset: int = Field(0, ge=0)


# === Signing input ===

class SignRequest(BaseModel):
    field_values: dict[str, str] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    geolocation: Optional[str] = None


class DeclineRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=512)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class DelegateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    reason: Optional[str] = None


class ConsentRequest(BaseModel):
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class VoidRequest(BaseModel):
    reason: Optional[str] = None


class ResolveFieldsRequest(BaseModel):
    values: dict[str, Any] = Field(default_factory=dict)


# === Responses ===

class SignerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    role: str
    order: int
    signing_group: Optional[int] = None
    status: str
    signed_at: Optional[datetime] = None
    declined_reason: Optional[str] = None
    delayed_until: Optional[datetime] = None
    delegated_from: Optional[str] = None


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    filename: str
    content_type: str
    document_hash: str
    sealed_hash: Optional[str] = None
    sealed_at: Optional[datetime] = None
    fields: List[FieldResponse] = Field(default_factory=list)


class EnvelopeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    subject: str
    message: Optional[str] = None
    status: str
    signing_mode: str
    signing_order: str
    verification_level: str
    created_by: str
    created_on: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    completion_cert_key: Optional[str] = None
    signers: List[SignerResponse] = Field(default_factory=list)
    documents: List[DocumentResponse] = Field(default_factory=list)


class EnvelopeListResponse(BaseModel):
    items: List[EnvelopeResponse]
    total: int


class SignResult(BaseModel):
    envelope_id: str
    signer_id: str
    envelope_status: str
    is_complete: bool
    next_signer_ids: List[str] = Field(default_factory=list)
    delayed_signer_ids: List[str] = Field(default_factory=list)


class SigningSessionResponse(BaseModel):
    """What a signer sees when opening their signing link"""
    envelope: EnvelopeResponse
    signer: SignerResponse
    can_sign: bool
    fields: List[ResolvedField] = Field(default_factory=list)
