# sealdesk/identity/services.py

"""
Identity verification ceremony.

AES (advanced) verification is either two-factor, an email code plus an
SMS code, or a government-ID check run by an external provider. When no
provider is configured a government-ID request falls back to two-factor
if the signer has a phone; the fallback is written into the evidence so
the trust level is never lowered silently.

QES (qualified) signing is delegated to a Trust Service Provider adapter.

OTP codes are six digits, single use, stored hashed in a TTL store and
compared in constant time.
"""

# Standard library imports
import hashlib
import hmac
import json
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

# Third party imports
from fastapi import Depends
from sqlalchemy.orm import Session

# Local imports
from sealdesk.audit.schemas import AuditEventType
from sealdesk.audit.services import AuditLedger
from sealdesk.core.config import settings
from sealdesk.core.db import get_db
from sealdesk.core.redis import TTLStore, get_ttl_store
from sealdesk.identity.exceptions import (
    MissingContactException, ProviderNotConfiguredException, VerificationSessionNotFoundException,
)
from sealdesk.identity.models import IdentityVerification
from sealdesk.identity.providers import IdentityProvider, get_identity_provider
from sealdesk.identity.repository import IdentityVerificationRepository
from sealdesk.identity.schemas import (
    AESVerificationResult, GovernmentIdResult, QESAvailability, QESEvidence, QESSession,
    QESStatus, SignerInfo, TwoFactorChallenge, VerificationEvidence, VerificationMethod,
    VerificationStatus,
)
from sealdesk.identity.tsp import TSP_REGISTRY, configured_tsp, get_tsp
from sealdesk.identity.tsp.base import TrustServiceProvider
from sealdesk.utils.logger import get_logger
from sealdesk.utils.notifications import NotificationDispatcher, get_notification_dispatcher
from sealdesk.workflow.exceptions import SignerNotFoundException
from sealdesk.workflow.models import Signer
from sealdesk.workflow.repository import EnvelopeRepository

logger = get_logger(__name__)

OTP_PREFIX = "otp:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code() -> str:
    """Six-digit one-time code"""
    return f"{secrets.randbelow(900000) + 100000}"


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def build_verification_evidence(result: AESVerificationResult) -> VerificationEvidence:
    """Evidence summary of an AES result for the audit trail and certificate"""
    details = result.details or {}
    government_id = details.get("government_id_result")
    return VerificationEvidence(
        method=result.method,
        provider=result.provider,
        verified_at=result.verified_at,
        evidence_ref=result.evidence_ref or None,
        email_verified=details.get("email_verified"),
        sms_verified=details.get("sms_verified"),
        government_id_result=GovernmentIdResult(**government_id) if government_id else None,
        fallback_from=details.get("fallback_from"),
        fallback_reason=details.get("fallback_reason"),
    )


class IdentityCeremony:
    """Service for AES and QES verification of signers"""

    def __init__(
        self,
        db: Session,
        store: TTLStore,
        notifier: NotificationDispatcher,
        audit: Optional[AuditLedger] = None,
        id_provider: Optional[IdentityProvider] = None,
        tsp: Optional[TrustServiceProvider] = None,
        clock=_utcnow,
    ):
        self.db = db
        self.store = store
        self.notifier = notifier
        self.audit = audit or AuditLedger(db, clock=clock)
        self.id_provider = id_provider
        self.tsp = tsp
        self.clock = clock
        self.envelopes = EnvelopeRepository(db)
        self.repository = IdentityVerificationRepository(db)

    # === Helpers ===

    def _get_signer(self, signer_id: str) -> Signer:
        signer = self.envelopes.get_signer(signer_id)
        if signer is None:
            raise SignerNotFoundException(signer_id)
        return signer

    def _owned_session(self, signer: Signer, session_id: str, method: str) -> IdentityVerification:
        """Record of a session this signer started with ``method``"""
        record = self.repository.get_by_reference(signer.id, session_id)
        if record is None or record.method != method:
            logger.warning(
                "Verification session not started by signer",
                signer_id=signer.id, session_id=session_id, method=method,
            )
            raise VerificationSessionNotFoundException(signer.id, session_id, method)
        return record

    def _record(
        self,
        signer: Signer,
        method: str,
        status: str,
        provider: Optional[str],
        evidence_ref: Optional[str],
        evidence: Dict,
        verified_at: Optional[datetime] = None,
    ) -> IdentityVerification:
        record = IdentityVerification(
            signer_id=signer.id,
            envelope_id=signer.envelope_id,
            method=method,
            provider=provider,
            status=status,
            evidence_ref=evidence_ref,
            evidence=json.loads(json.dumps(evidence, default=str)),
            verified_at=verified_at,
        )
        return self.repository.add(record)

    # === Two-factor ===

    def _otp_key(self, signer_id: str, channel: str) -> str:
        return f"{OTP_PREFIX}{signer_id}:{channel}"

    def _issue_code(self, signer_id: str, channel: str) -> Tuple[str, datetime]:
        code = generate_code()
        expires_at = self.clock() + timedelta(minutes=settings.otp_ttl_minutes)
        self.store.set(
            self._otp_key(signer_id, channel),
            json.dumps({"hashed_code": hash_code(code), "expires_at": expires_at.isoformat()}),
            settings.otp_ttl_minutes * 60,
        )
        return code, expires_at

    def _verify_code(self, signer_id: str, channel: str, code: str) -> Tuple[bool, Optional[str]]:
        key = self._otp_key(signer_id, channel)
        raw = self.store.get(key)
        if raw is None:
            return False, "No verification code found"
        stored = json.loads(raw)
        if datetime.fromisoformat(stored["expires_at"]) <= self.clock():
            self.store.delete(key)
            return False, "Code expired"
        if not hmac.compare_digest(hash_code(code or ""), stored["hashed_code"]):
            return False, "Invalid code"
        # Single use
        self.store.delete(key)
        return True, None

    def start_two_factor(self, signer_id: str) -> TwoFactorChallenge:
        """Send an email code and an SMS code to the signer"""
        return self._send_two_factor(self._get_signer(signer_id), {"method": VerificationMethod.TWO_FACTOR.value})

    def _send_two_factor(self, signer: Signer, audit_payload: Dict) -> TwoFactorChallenge:
        signer_id = signer.id
        if not signer.phone:
            raise MissingContactException(signer_id, "phone")

        email_code, expires_at = self._issue_code(signer.id, "email")
        sms_code, _ = self._issue_code(signer.id, "sms")
        self.notifier.send_email_code(signer.email, email_code)
        self.notifier.send_sms_code(signer.phone, sms_code)

        self.audit.append(
            signer.envelope_id, AuditEventType.IDENTITY_INITIATED, signer_id=signer.id,
            payload=audit_payload,
        )
        self.db.commit()
        logger.info("Two-factor codes sent", signer_id=signer.id)
        return TwoFactorChallenge(signer_id=signer.id, email_sent=True, sms_sent=True, expires_at=expires_at)

    def complete_two_factor(self, signer_id: str, email_code: str, sms_code: str) -> AESVerificationResult:
        """
        Check both codes. Each channel is checked independently so the
        result names which one failed.
        """
        signer = self._get_signer(signer_id)
        email_ok, email_error = self._verify_code(signer.id, "email", email_code)
        sms_ok, sms_error = self._verify_code(signer.id, "sms", sms_code)
        now = self.clock()

        if not (email_ok and sms_ok):
            result = AESVerificationResult(
                verified=False,
                method=VerificationMethod.TWO_FACTOR,
                verified_at=now,
                details={
                    "email_verified": email_ok,
                    "email_error": email_error,
                    "sms_verified": sms_ok,
                    "sms_error": sms_error,
                },
            )
            self._record(signer, result.method.value, VerificationStatus.FAILED.value, result.provider, None, result.details)
            self.audit.append(
                signer.envelope_id, AuditEventType.IDENTITY_FAILED, signer_id=signer.id,
                payload={"method": result.method.value, **result.details},
            )
            self.db.commit()
            logger.warning("Two-factor verification failed", signer_id=signer.id, email_ok=email_ok, sms_ok=sms_ok)
            return result

        result = AESVerificationResult(
            verified=True,
            method=VerificationMethod.TWO_FACTOR,
            evidence_ref=str(uuid.uuid4()),
            verified_at=now,
            details={"email_verified": True, "sms_verified": True},
        )
        self._persist_verified(signer, result)
        return result

    def _persist_verified(self, signer: Signer, result: AESVerificationResult) -> None:
        evidence = build_verification_evidence(result).model_dump(mode="json", exclude_none=True)
        self._record(
            signer, result.method.value, VerificationStatus.VERIFIED.value, result.provider,
            result.evidence_ref, evidence, verified_at=result.verified_at,
        )
        self.audit.append(
            signer.envelope_id, AuditEventType.IDENTITY_VERIFIED, signer_id=signer.id, payload=evidence,
        )
        self.db.commit()
        logger.info("Identity verified", signer_id=signer.id, method=result.method.value, provider=result.provider)

    # === Government ID ===

    def start_government_id(self, signer_id: str) -> AESVerificationResult:
        """
        Open a government-ID session with the configured provider.

        Without a provider the signer is moved to two-factor if a phone
        number is on file, and the fallback is recorded. Otherwise
        ``ProviderNotConfiguredException`` is raised.
        """
        signer = self._get_signer(signer_id)

        if self.id_provider is None:
            if not signer.phone:
                logger.warning("No ID verification provider and no phone for fallback", signer_id=signer.id)
                raise ProviderNotConfiguredException(
                    VerificationMethod.GOVERNMENT_ID.value,
                    "No ID verification provider configured and no phone for fallback",
                )
            logger.warning(
                "No ID verification provider configured, falling back to two-factor",
                signer_id=signer.id,
            )
            fallback = {
                "fallback_from": VerificationMethod.GOVERNMENT_ID.value,
                "fallback_reason": "no_provider_configured",
            }
            challenge = self._send_two_factor(signer, {"method": VerificationMethod.TWO_FACTOR.value, **fallback})
            details = {
                "status": "codes_sent",
                "email_sent": challenge.email_sent,
                "sms_sent": challenge.sms_sent,
                **fallback,
            }
            self._record(
                signer, VerificationMethod.TWO_FACTOR.value, VerificationStatus.PENDING.value,
                "internal", None, details,
            )
            self.db.commit()
            return AESVerificationResult(verified=False, method=VerificationMethod.TWO_FACTOR, details=details)

        session = self.id_provider.initiate_session(signer.name, signer.email)
        details = {"status": "redirect_required", "redirect_url": session.redirect_url}
        self._record(
            signer, VerificationMethod.GOVERNMENT_ID.value, VerificationStatus.PENDING.value,
            session.provider, session.session_id, details,
        )
        self.audit.append(
            signer.envelope_id, AuditEventType.IDENTITY_INITIATED, signer_id=signer.id,
            payload={"method": VerificationMethod.GOVERNMENT_ID.value, "provider": session.provider},
        )
        self.db.commit()
        return AESVerificationResult(
            verified=False,
            method=VerificationMethod.GOVERNMENT_ID,
            provider=session.provider,
            evidence_ref=session.session_id,
            details=details,
        )

    def check_government_id(self, signer_id: str, session_id: str) -> AESVerificationResult:
        signer = self._get_signer(signer_id)
        if self.id_provider is None:
            raise ProviderNotConfiguredException(VerificationMethod.GOVERNMENT_ID.value)

        record = self._owned_session(signer, session_id, VerificationMethod.GOVERNMENT_ID.value)
        id_result = self.id_provider.check_status(session_id)
        result = AESVerificationResult(
            verified=id_result.verified,
            method=VerificationMethod.GOVERNMENT_ID,
            provider=id_result.provider,
            evidence_ref=session_id,
            verified_at=self.clock() if id_result.verified else None,
            details={"government_id_result": id_result.model_dump()},
        )

        record.status = (VerificationStatus.VERIFIED if result.verified else VerificationStatus.FAILED).value
        record.evidence = build_verification_evidence(result).model_dump(mode="json", exclude_none=True)
        record.verified_at = result.verified_at

        event_type = AuditEventType.IDENTITY_VERIFIED if result.verified else AuditEventType.IDENTITY_FAILED
        self.audit.append(
            signer.envelope_id, event_type, signer_id=signer.id,
            payload={"method": result.method.value, "provider": result.provider, "evidence_ref": session_id},
        )
        self.db.commit()
        return result

    def verify_bank_id(self, signer_id: str) -> AESVerificationResult:
        self._get_signer(signer_id)
        logger.info("Bank ID verification requested but not supported", signer_id=signer_id)
        return AESVerificationResult(
            verified=False,
            method=VerificationMethod.BANK_ID,
            provider="none",
            verified_at=self.clock(),
            details={"error": "Bank ID verification is not yet supported", "supported": False},
        )

    def verify_identity_aes(self, signer_id: str, method: VerificationMethod) -> AESVerificationResult:
        """Start AES verification with the requested method"""
        method = VerificationMethod(method)
        if method == VerificationMethod.TWO_FACTOR:
            challenge = self.start_two_factor(signer_id)
            return AESVerificationResult(
                verified=False,
                method=method,
                details={"status": "codes_sent", "email_sent": challenge.email_sent, "sms_sent": challenge.sms_sent},
            )
        if method == VerificationMethod.GOVERNMENT_ID:
            return self.start_government_id(signer_id)
        return self.verify_bank_id(signer_id)

    # === QES ===

    def _require_tsp(self) -> TrustServiceProvider:
        if self.tsp is None:
            raise ProviderNotConfiguredException("qes", "No trust service provider configured")
        return self.tsp

    def qes_availability(self) -> QESAvailability:
        return QESAvailability(
            available=self.tsp is not None,
            provider=self.tsp.provider_id if self.tsp else None,
            supported=list(TSP_REGISTRY.keys()),
        )

    def initiate_qes(self, signer_id: str, date_of_birth: Optional[str] = None,
                     nationality: Optional[str] = None) -> QESSession:
        tsp = self._require_tsp()
        signer = self._get_signer(signer_id)
        session = tsp.initiate_qes(SignerInfo(
            name=signer.name, email=signer.email, phone=signer.phone,
            date_of_birth=date_of_birth, nationality=nationality,
        ))
        status = VerificationStatus.FAILED if session.status == QESStatus.FAILED else VerificationStatus.PENDING
        self._record(
            signer, "qes", status.value, tsp.provider_id, session.session_id,
            {"qes_status": session.status.value, "tsp_name": tsp.name},
        )
        self.audit.append(
            signer.envelope_id, AuditEventType.QES_INITIATED, signer_id=signer.id,
            payload={"provider": tsp.provider_id, "session_id": session.session_id, "status": session.status.value},
        )
        self.db.commit()
        return session

    def qes_status(self, session_id: str) -> QESStatus:
        return self._require_tsp().check_status(session_id)

    def qes_sign(self, signer_id: str, session_id: str, document_hash: str) -> QESEvidence:
        """Sign a document hash on the TSP's QSCD and record the evidence"""
        tsp = self._require_tsp()
        signer = self._get_signer(signer_id)
        record = self._owned_session(signer, session_id, "qes")
        signature = tsp.sign_with_qscd(session_id, document_hash)
        evidence = QESEvidence(
            tsp_name=signature.tsp_name,
            provider=tsp.provider_id,
            session_id=session_id,
            certificate_serial=signature.certificate_serial,
            qscd_reference=signature.qscd_reference,
            timestamp=signature.timestamp,
            document_hash=document_hash,
        )
        payload = evidence.model_dump(mode="json")

        record.status = VerificationStatus.VERIFIED.value
        record.evidence = payload
        record.verified_at = signature.timestamp

        self.audit.append(signer.envelope_id, AuditEventType.QES_SIGNED, signer_id=signer.id, payload=payload)
        self.db.commit()
        return evidence

    def list_verifications(self, signer_id: str):
        self._get_signer(signer_id)
        return self.repository.list_for_signer(signer_id)

    # === Housekeeping ===

    def purge_expired(self) -> int:
        """Drop OTP entries past their expiry"""
        now = self.clock()
        removed = 0
        for key in self.store.keys(OTP_PREFIX):
            raw = self.store.get(key)
            if raw is None:
                continue
            if datetime.fromisoformat(json.loads(raw)["expires_at"]) <= now:
                self.store.delete(key)
                removed += 1
        purge = getattr(self.store, "purge_expired", None)
        if purge is not None:
            removed += purge()
        return removed


def get_identity_ceremony(
    db: Session = Depends(get_db),
    store: TTLStore = Depends(get_ttl_store),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> IdentityCeremony:
    """Dependency to get an IdentityCeremony wired from settings"""
    provider_name = configured_tsp()
    return IdentityCeremony(
        db,
        store,
        notifier,
        id_provider=get_identity_provider(),
        tsp=get_tsp(provider_name, store) if provider_name else None,
    )
