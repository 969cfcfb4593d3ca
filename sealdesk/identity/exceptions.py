# sealdesk/identity/exceptions.py

"""
Custom exceptions for identity verification and qualified signatures.
"""

from fastapi import status

from sealdesk.core.exceptions import SealdeskBaseException


class IdentityVerificationException(SealdeskBaseException):
    """Base exception for identity and QES errors"""


class ProviderNotConfiguredException(IdentityVerificationException):
    """No provider configured and no safe fallback available"""
    def __init__(self, method: str, message: str = "No provider configured"):
        super().__init__(
            message,
            status.HTTP_424_FAILED_DEPENDENCY,
            {"entity": "identity_provider", "method": method, "rule": "no_provider_configured"},
        )


class ProviderUnavailableException(IdentityVerificationException):
    """Provider configured but unreachable or returned an error"""
    def __init__(self, provider: str, reason: str):
        super().__init__(
            f"Provider unavailable: {provider}",
            status.HTTP_503_SERVICE_UNAVAILABLE,
            {"entity": "identity_provider", "provider": provider, "reason": reason},
        )


class UnknownProviderException(IdentityVerificationException):
    def __init__(self, provider: str, supported):
        super().__init__(
            f"Unknown provider: {provider}",
            status.HTTP_400_BAD_REQUEST,
            {"entity": "identity_provider", "provider": provider, "supported": list(supported)},
        )


class QESSessionNotFoundException(IdentityVerificationException):
    def __init__(self, session_id: str):
        super().__init__(
            f"Session not found: {session_id}",
            status.HTTP_404_NOT_FOUND,
            {"entity": "qes_session", "session_id": session_id},
        )


class VerificationSessionNotFoundException(IdentityVerificationException):
    """No verification session with this reference was started for the signer"""
    def __init__(self, signer_id: str, session_id: str, method: str):
        super().__init__(
            f"Session not found for signer: {session_id}",
            status.HTTP_404_NOT_FOUND,
            {"entity": "verification_session", "signer_id": signer_id, "session_id": session_id, "method": method},
        )


class QESSessionExpiredException(IdentityVerificationException):
    """Session passed its expiry; the ceremony must be restarted"""
    def __init__(self, session_id: str):
        super().__init__(
            f"Session expired: {session_id}",
            status.HTTP_410_GONE,
            {"entity": "qes_session", "session_id": session_id, "rule": "session_expired"},
        )


class InvalidQESTransitionException(IdentityVerificationException):
    def __init__(self, session_id: str, current: str, target: str):
        super().__init__(
            f"Cannot move session {session_id} from '{current}' to '{target}'",
            status.HTTP_409_CONFLICT,
            {"entity": "qes_session", "session_id": session_id, "status": current, "target": target},
        )


class MissingContactException(IdentityVerificationException):
    """Signer lacks the contact channel a verification method needs"""
    def __init__(self, signer_id: str, channel: str):
        super().__init__(
            f"Signer {signer_id} has no {channel} on file",
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            {"entity": "signer", "signer_id": signer_id, "channel": channel, "rule": "contact_required"},
        )
