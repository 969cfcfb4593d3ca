# sealdesk/workflow/exceptions.py

"""
Custom exceptions for the envelope workflow.
"""

from typing import List, Optional

from fastapi import status

from sealdesk.core.exceptions import SealdeskBaseException


class WorkflowBaseException(SealdeskBaseException):
    """Base exception for all workflow errors"""


class EnvelopeNotFoundException(WorkflowBaseException):
    """Envelope not found"""
    def __init__(self, envelope_id: str):
        super().__init__(
            f"Envelope not found: {envelope_id}",
            status.HTTP_404_NOT_FOUND,
            {"entity": "envelope", "envelope_id": envelope_id},
        )


class SignerNotFoundException(WorkflowBaseException):
    """Signer not found"""
    def __init__(self, signer_id: str):
        super().__init__(
            f"Signer not found: {signer_id}",
            status.HTTP_404_NOT_FOUND,
            {"entity": "signer", "signer_id": signer_id},
        )


class InvalidEnvelopeException(WorkflowBaseException):
    """Envelope input is malformed or incomplete"""
    def __init__(self, message: str, errors: Optional[List[dict]] = None):
        super().__init__(
            message,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            {"entity": "envelope", "errors": errors or []},
        )


class InvalidRoutingRuleException(InvalidEnvelopeException):
    """Routing rule configuration rejected at creation time"""
    def __init__(self, errors: List[dict]):
        super().__init__("Invalid routing rules", errors)
        self.details["rule"] = "routing_rules"


class InvalidEnvelopeStateException(WorkflowBaseException):
    """Operation not allowed in the envelope's current status"""
    def __init__(self, envelope_id: str, current_status: str, operation: str, allowed: Optional[List[str]] = None):
        message = f"Cannot {operation} envelope {envelope_id} in status '{current_status}'"
        super().__init__(
            message,
            status.HTTP_409_CONFLICT,
            {
                "entity": "envelope",
                "envelope_id": envelope_id,
                "status": current_status,
                "operation": operation,
                "allowed_statuses": allowed or [],
            },
        )


class SignerNotEligibleException(WorkflowBaseException):
    """Signer acted outside the current wave or after finishing"""
    def __init__(self, signer_id: str, reason: str):
        super().__init__(
            f"Signer {signer_id} cannot act: {reason}",
            status.HTTP_409_CONFLICT,
            {"entity": "signer", "signer_id": signer_id, "rule": reason},
        )


class InvalidSigningTokenException(WorkflowBaseException):
    """Signing token unknown, expired or already used"""
    def __init__(self, reason: str = "Invalid or expired signing token"):
        super().__init__(reason, status.HTTP_401_UNAUTHORIZED, {"entity": "signing_token"})


class FieldValidationException(WorkflowBaseException):
    """Submitted field values failed validation"""
    def __init__(self, errors: dict):
        super().__init__(
            "Field validation failed",
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            {"entity": "field", "errors": errors},
        )
