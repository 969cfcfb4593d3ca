# sealdesk/workflow/services.py

"""
Envelope orchestrator.

Top-level state machine: draft -> sent -> in_progress -> completed, with
voided and expired as the other terminal states. Every mutating
operation runs its read-decide-write cycle inside the envelope's
exclusive section and reloads the envelope row before deciding, so two
signers finishing at the same moment are applied one after the other.

Sealing, certificate generation, audit appends, notifications and
integration dispatch are best-effort: they are logged (and audited where
possible) but never abort the transition that triggered them.
"""

# Standard library imports
import base64
import binascii
from collections import Counter
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Any, Dict, List, Optional

# Third party imports
from dateutil.parser import isoparse
from fastapi import Depends
from pypdf import PdfReader
from pypdf.errors import PdfReadError
from sqlalchemy.orm import Session

# Local imports
from sealdesk.audit.schemas import AuditEventType
from sealdesk.audit.services import AuditLedger
from sealdesk.core.config import settings
from sealdesk.core.db import get_db
from sealdesk.core.locks import envelope_lock, envelope_locks
from sealdesk.core.mixins import new_id
from sealdesk.fields.models import Field
from sealdesk.fields.resolution import index_by_id, resolve_field_state
from sealdesk.fields.schemas import FieldDefinition, FieldType, ResolvedField
from sealdesk.fields.validation import check_required, validate_field_value
from sealdesk.identity.repository import IdentityVerificationRepository
from sealdesk.integrations.base import (
    ENVELOPE_COMPLETED, ENVELOPE_SENT, ENVELOPE_VOIDED, SIGNER_COMPLETED,
)
from sealdesk.integrations.registry import IntegrationRegistry, integration_registry
from sealdesk.sealing.certificate import CertificateGenerator, collect_certificate_data
from sealdesk.sealing.sealer import DocumentSealer, eidas_level_for, verify_sealed_document
from sealdesk.sealing.schemas import SealVerification
from sealdesk.utils.hashing import hash_document
from sealdesk.utils.logger import get_logger
from sealdesk.utils.notifications import NotificationDispatcher, get_notification_dispatcher
from sealdesk.utils.storage import DocumentStorage, get_document_storage
from sealdesk.workflow.exceptions import (
    EnvelopeNotFoundException, FieldValidationException, InvalidEnvelopeException,
    InvalidEnvelopeStateException, InvalidSigningTokenException, SignerNotEligibleException,
)
from sealdesk.workflow.models import (
    ACTIVE_ENVELOPE_STATUSES, TERMINAL_ENVELOPE_STATUSES, Document, Envelope,
    EnvelopeStatus, Signer, SignerStatus,
)
from sealdesk.workflow.repository import EnvelopeRepository
from sealdesk.workflow.schemas import (
    EnvelopeCreate, EnvelopeFilters, RoutingDecision, SignerCompletionResult,
    SignResult, dump_routing_rules, parse_routing_rules,
)
from sealdesk.workflow.signing_order import (
    can_signer_sign, evaluate_routing_rules, next_eligible_signers, on_signer_completed,
)
from sealdesk.workflow.tokens import as_aware, is_token_expired, issue_signing_token

logger = get_logger(__name__)

ACTIVE = [s.value for s in ACTIVE_ENVELOPE_STATUSES]
SKIPPED_BY_ROUTING = "skipped_by_routing"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def envelope_payload(envelope: Envelope) -> Dict[str, Any]:
    """Plain dict handed to integrations"""
    return {
        "id": envelope.id,
        "subject": envelope.subject,
        "status": envelope.status,
        "signing_order": envelope.signing_order,
        "created_by": envelope.created_by,
        "signer_count": len(envelope.signers),
        "sent_at": _iso(envelope.sent_at),
        "completed_at": _iso(envelope.completed_at),
        "void_reason": envelope.void_reason,
        "document_hashes": {
            d.filename: d.sealed_hash or d.document_hash for d in envelope.documents
        },
    }


def signer_payload(signer: Signer) -> Dict[str, Any]:
    return {
        "id": signer.id,
        "name": signer.name,
        "email": signer.email,
        "order": signer.order,
        "status": signer.status,
        "signed_at": _iso(signer.signed_at),
    }


def get_envelope_service(
    db: Session = Depends(get_db),
    storage: DocumentStorage = Depends(get_document_storage),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> "EnvelopeService":
    """Get envelope service"""
    return EnvelopeService(db, storage, notifier, integrations=integration_registry)


class EnvelopeService:
    """
    Business logic layer for envelopes, signers and the signing ceremony.
    """

    def __init__(
        self,
        db: Session,
        storage: DocumentStorage,
        notifier: NotificationDispatcher,
        audit: Optional[AuditLedger] = None,
        integrations: Optional[IntegrationRegistry] = None,
        sealer: Optional[DocumentSealer] = None,
        certificates: Optional[CertificateGenerator] = None,
        clock=_utcnow,
    ):
        self.db = db
        self.storage = storage
        self.notifier = notifier
        self.clock = clock
        self.audit = audit or AuditLedger(db, clock=clock)
        self.integrations = integrations
        self.sealer = sealer or DocumentSealer(storage, clock=clock)
        self.certificates = certificates or CertificateGenerator(storage)
        self.repository = EnvelopeRepository(db)
        self.verifications = IdentityVerificationRepository(db)

    # === Helpers ===

    def _load_for_update(self, envelope_id: str) -> Envelope:
        envelope = self.repository.get_for_update(envelope_id)
        if envelope is None:
            raise EnvelopeNotFoundException(envelope_id)
        return envelope

    def _signer_for_token(self, token: str) -> Signer:
        """Signer owning a live token; raises when unknown, expired or used"""
        signer = self.repository.get_signer_by_token(token) if token else None
        if signer is None:
            raise InvalidSigningTokenException()
        if is_token_expired(signer.token_expires_at, self.clock()):
            raise InvalidSigningTokenException("Signing token has expired")
        if signer.is_terminal:
            raise InvalidSigningTokenException("Signing token has already been used")
        return signer

    def _recheck_token(self, envelope: Envelope, signer_id: str, token: str) -> Signer:
        """Same checks against the freshly loaded row, inside the lock"""
        signer = next(s for s in envelope.signers if s.id == signer_id)
        if signer.signing_token != token or signer.is_terminal:
            raise InvalidSigningTokenException("Signing token has already been used")
        return signer

    def _require_active(self, envelope: Envelope, operation: str) -> None:
        if envelope.status not in ACTIVE:
            raise InvalidEnvelopeStateException(envelope.id, envelope.status, operation, ACTIVE)

    def _notify(self, signer: Signer) -> None:
        """Mark notified and send the signing link; delivery is fire-and-forget"""
        if not signer.signing_token:
            signer.signing_token, signer.token_expires_at = issue_signing_token(self.clock())
        signer.status = SignerStatus.NOTIFIED.value
        try:
            self.notifier.notify_signer(signer, signer.signing_token)
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Failed to notify signer", signer_id=signer.id, error=str(e), exc_info=True)

    def _notify_wave(self, envelope: Envelope) -> List[str]:
        by_id = {s.id: s for s in envelope.signers}
        notified = []
        for state in next_eligible_signers(envelope):
            signer = by_id[state.id]
            if signer.status != SignerStatus.NOTIFIED.value:
                self._notify(signer)
            notified.append(signer.id)
        return notified

    def _dispatch(self, event_name: str, envelope: Envelope, signer: Optional[Signer] = None) -> None:
        if self.integrations is None:
            return
        payload = {"envelope": envelope_payload(envelope)}
        if signer is not None:
            payload["signer"] = signer_payload(signer)
        results = self.integrations.dispatch(event_name, payload)
        if results:
            logger.debug("Integration dispatch finished", integration_event=event_name, envelope_id=envelope.id, results=results)

    def _current_values(self, fields: List[Field], overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        values: Dict[str, Any] = {f.field_key: f.value for f in fields if f.value is not None}
        values.update(overrides or {})
        return values

    # === Envelope Operations ===

    def create_envelope(self, data: EnvelopeCreate) -> Envelope:
        """
        Create a draft envelope with its signers, documents and fields.

        Input is fully validated (routing rules, document content, field
        pages) before anything is stored.

        Raises:
            InvalidRoutingRuleException: routing rules are malformed
            InvalidEnvelopeException: a document is not valid base64 or PDF, or a field id repeats
        """
        logger.info("Creating envelope", subject=data.subject, created_by=data.created_by)

        rules = parse_routing_rules(data.routing_rules)

        key_counts = Counter(f.id for doc in data.documents for f in doc.fields if f.id)
        duplicates = sorted(key for key, count in key_counts.items() if count > 1)
        if duplicates:
            raise InvalidEnvelopeException(
                "Field ids must be unique within an envelope",
                [{"rule": "unique_field_id", "field_ids": duplicates}],
            )

        contents = []
        for doc in data.documents:
            try:
                content = base64.b64decode(doc.content_base64, validate=True)
            except (binascii.Error, ValueError) as e:
                raise InvalidEnvelopeException(
                    "Document content is not valid base64",
                    [{"document": doc.filename, "rule": "base64"}],
                ) from e
            page_count = None
            if doc.content_type == "application/pdf":
                try:
                    page_count = len(PdfReader(BytesIO(content)).pages)
                except (PdfReadError, ValueError, OSError) as e:
                    raise InvalidEnvelopeException(
                        "Document is not a readable PDF",
                        [{"document": doc.filename, "rule": "pdf"}],
                    ) from e
                out_of_range = [f.page for f in doc.fields if f.page > page_count]
                if out_of_range:
                    raise InvalidEnvelopeException(
                        "Field placed beyond the last page",
                        [{"document": doc.filename, "pages": out_of_range, "page_count": page_count}],
                    )
            contents.append((content, page_count))

        envelope = Envelope(
            subject=data.subject,
            message=data.message,
            signing_mode=data.signing_mode.value,
            signing_order=data.signing_order.value,
            verification_level=data.verification_level.value,
            routing_rules=dump_routing_rules(rules) or None,
            created_by=data.created_by,
            expires_at=data.expires_at,
            meta_data=data.metadata or {},
        )
        signers = [
            Signer(
                name=s.name,
                email=s.email,
                phone=s.phone,
                role=s.role,
                order=s.order or position,
                signing_group=s.signing_group,
                status=SignerStatus.PENDING.value,
            )
            for position, s in enumerate(data.signers, start=1)
        ]
        envelope.signers = signers
        self.repository.add(envelope)

        for position, (doc, (content, page_count)) in enumerate(zip(data.documents, contents)):
            storage_key = self.storage.put(content, {
                "envelope_id": envelope.id,
                "filename": doc.filename,
                "content_type": doc.content_type,
            })
            document = Document(
                envelope_id=envelope.id,
                filename=doc.filename,
                content_type=doc.content_type,
                storage_key=storage_key,
                document_hash=hash_document(content),
                order=position,
                page_count=page_count,
                visibility=doc.visibility,
            )
            document.fields = [
                Field(
                    field_key=f.id or new_id(),
                    signer_id=signers[f.signer_index].id if f.signer_index is not None else None,
                    type=f.type,
                    label=f.label,
                    page=f.page,
                    x=f.x,
                    y=f.y,
                    width=f.width,
                    height=f.height,
                    required=f.required,
                    value=f.value,
                    formula=f.formula,
                    options=f.options,
                    conditional_rules=[r.model_dump(by_alias=True) for r in f.conditional_rules],
                    validation_rules=[r.model_dump(exclude_none=True) for r in f.validation_rules],
                    linked_group_id=f.linked_group_id,
                )
                for f in doc.fields
            ]
            envelope.documents.append(document)
        self.db.flush()

        self.audit.append(envelope.id, AuditEventType.CREATED, payload={
            "signer_count": len(signers),
            "document_count": len(data.documents),
            "signing_order": envelope.signing_order,
        })
        self.db.commit()

        logger.info("Envelope created", envelope_id=envelope.id, signers=len(signers))
        return envelope

    def get_envelope(self, envelope_id: str) -> Optional[Envelope]:
        return self.repository.get(envelope_id)

    def get_envelope_or_raise(self, envelope_id: str) -> Envelope:
        envelope = self.repository.get(envelope_id)
        if envelope is None:
            raise EnvelopeNotFoundException(envelope_id)
        return envelope

    def list_envelopes(self, filters: EnvelopeFilters) -> Dict[str, Any]:
        """Get envelopes with filters and pagination"""
        items, total = self.repository.list(filters)
        logger.info("Retrieved envelopes", count=len(items), total=total)
        return {"items": items, "total": total}

    def send_envelope(self, envelope_id: str) -> Envelope:
        """
        Issue signing tokens and notify the first wave.

        Raises:
            InvalidEnvelopeStateException: envelope is not a draft
            InvalidEnvelopeException: envelope has no signers
        """
        with envelope_lock(envelope_id):
            envelope = self._load_for_update(envelope_id)
            if envelope.status != EnvelopeStatus.DRAFT.value:
                raise InvalidEnvelopeStateException(
                    envelope_id, envelope.status, "send", [EnvelopeStatus.DRAFT.value]
                )
            if not envelope.signers:
                raise InvalidEnvelopeException(
                    "Envelope has no signers", [{"rule": "signers_required"}]
                )

            now = self.clock()
            for signer in envelope.signers:
                signer.signing_token, signer.token_expires_at = issue_signing_token(now)
                signer.status = SignerStatus.PENDING.value
            envelope.status = EnvelopeStatus.SENT.value
            envelope.sent_at = now

            first_wave = self._notify_wave(envelope)
            self.db.flush()
            self.audit.append(envelope.id, AuditEventType.SENT, payload={
                "signer_count": len(envelope.signers),
                "first_wave": first_wave,
            })
            self.db.commit()

        logger.info("Envelope sent", envelope_id=envelope_id, first_wave=first_wave)
        self._dispatch(ENVELOPE_SENT, envelope)
        return envelope

    def _void(self, envelope: Envelope, reason: Optional[str]) -> None:
        envelope.status = EnvelopeStatus.VOIDED.value
        envelope.voided_at = self.clock()
        envelope.void_reason = reason
        for signer in envelope.signers:
            signer.signing_token = None
        self.db.flush()
        self.audit.append(envelope.id, AuditEventType.VOIDED, payload={"reason": reason})

    def void_envelope(self, envelope_id: str, reason: Optional[str] = None) -> Envelope:
        """
        Void a draft or active envelope.

        Raises:
            InvalidEnvelopeStateException: envelope is already completed, voided or expired
        """
        with envelope_lock(envelope_id):
            envelope = self._load_for_update(envelope_id)
            if envelope.status in [s.value for s in TERMINAL_ENVELOPE_STATUSES]:
                raise InvalidEnvelopeStateException(
                    envelope_id, envelope.status, "void", [EnvelopeStatus.DRAFT.value, *ACTIVE]
                )
            self._void(envelope, reason)
            self.db.commit()
        envelope_locks.forget(envelope_id)

        logger.info("Envelope voided", envelope_id=envelope_id, reason=reason)
        self._dispatch(ENVELOPE_VOIDED, envelope)
        return envelope

    def _seal_documents(self, envelope: Envelope, evidence: List[Dict[str, Any]]) -> None:
        level = eidas_level_for(evidence)
        fields = self.repository.list_fields(envelope.id)
        for document in envelope.documents:
            doc_fields = [f for f in fields if f.document_id == document.id]
            try:
                result = self.sealer.seal_document(document, doc_fields, level, evidence)
            except Exception as e:  # pylint: disable=broad-except
                logger.error(
                    "Document sealing failed",
                    envelope_id=envelope.id, document_id=document.id, error=str(e), exc_info=True,
                )
                self.audit.append(envelope.id, AuditEventType.SEAL_FAILED, payload={
                    "document_id": document.id, "error": str(e),
                })
                continue
            document.sealed_key = result.sealed_key
            document.sealed_hash = result.sealed_hash
            document.sealed_at = result.sealed_at
            self.audit.append(envelope.id, AuditEventType.SEALED, payload={
                "document_id": document.id,
                "sealed_hash": result.sealed_hash,
                "merge_hash": result.merge_hash,
                "eidas_level": result.eidas_level.value,
                "fields_rendered": result.fields_rendered,
            })

    def _generate_certificate(self, envelope: Envelope, verifications: List) -> None:
        try:
            data = collect_certificate_data(
                envelope, self.audit.list_for_envelope(envelope.id), verifications
            )
            key = self.certificates.generate(data)
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Certificate generation failed", envelope_id=envelope.id, error=str(e), exc_info=True)
            self.audit.append(envelope.id, AuditEventType.CERTIFICATE_FAILED, payload={"error": str(e)})
            return
        envelope.completion_cert_key = key
        self.audit.append(envelope.id, AuditEventType.CERTIFICATE_GENERATED, payload={"key": key})

    def _complete(self, envelope: Envelope) -> None:
        """Seal, mark completed and generate the certificate; caller holds the lock"""
        self._require_active(envelope, "complete")
        pending = [s.id for s in envelope.signers if not s.is_terminal]
        if pending:
            raise InvalidEnvelopeStateException(
                envelope.id, envelope.status, "complete", ["all signers terminal"]
            )

        verifications = self.verifications.list_for_envelope(envelope.id)
        evidence = [
            {
                "signer_id": v.signer_id,
                "method": v.method,
                "provider": v.provider,
                "status": v.status,
                "evidence_ref": v.evidence_ref,
            }
            for v in verifications
        ]
        self._seal_documents(envelope, evidence)

        envelope.status = EnvelopeStatus.COMPLETED.value
        envelope.completed_at = self.clock()
        for signer in envelope.signers:
            signer.signing_token = None
        self.db.flush()
        self.audit.append(envelope.id, AuditEventType.COMPLETED, payload={
            "document_hashes": {d.id: d.sealed_hash or d.document_hash for d in envelope.documents},
            "eidas_level": eidas_level_for(evidence).value,
        })

        self._generate_certificate(envelope, verifications)
        self.db.flush()
        logger.info("Envelope completed", envelope_id=envelope.id)

    def complete_envelope(self, envelope_id: str) -> Envelope:
        """
        Complete an active envelope whose signers are all terminal.

        Raises:
            InvalidEnvelopeStateException: envelope not active or signers pending
        """
        with envelope_lock(envelope_id):
            envelope = self._load_for_update(envelope_id)
            self._complete(envelope)
            self.db.commit()
        envelope_locks.forget(envelope_id)

        self._dispatch(ENVELOPE_COMPLETED, envelope)
        return envelope

    # === Routing ===

    def _apply_routing(self, envelope: Envelope, signer: Signer, decision: RoutingDecision) -> None:
        """Apply a matched routing rule to the signer set"""
        if decision.action == "skip_to":
            for other in envelope.signers:
                if other.id != signer.id and not other.is_terminal and other.order < decision.target_signer_order:
                    other.status = SignerStatus.DECLINED.value
                    other.declined_reason = SKIPPED_BY_ROUTING
                    other.signing_token = None
        elif decision.action in ("route_to", "add_signer"):
            order = decision.target_signer_order or max(s.order for s in envelope.signers) + 1
            token, expires_at = issue_signing_token(self.clock())
            added = Signer(
                envelope_id=envelope.id,
                name=decision.signer_name or decision.signer_email,
                email=decision.signer_email,
                order=order,
                status=SignerStatus.PENDING.value,
                signing_token=token,
                token_expires_at=expires_at,
            )
            envelope.signers.append(added)
            self.repository.add_signer(added)
        elif decision.action == "complete":
            for other in envelope.signers:
                if other.id != signer.id and not other.is_terminal:
                    other.status = SignerStatus.DECLINED.value
                    other.declined_reason = SKIPPED_BY_ROUTING
                    other.signing_token = None
        self.db.flush()

        logger.info(
            "Routing rule applied",
            envelope_id=envelope.id, signer_id=signer.id, action=decision.action, reason=decision.reason,
        )
        self.audit.append(envelope.id, AuditEventType.ROUTED, signer_id=signer.id, payload={
            "action": decision.action,
            "reason": decision.reason,
            "target_signer_order": decision.target_signer_order,
            "email": decision.signer_email,
        })

    def _advance(self, envelope: Envelope, signer: Signer, decision: RoutingDecision) -> SignerCompletionResult:
        """
        Move the flow forward after a signer reached a terminal status.

        A matched routing rule is applied first, then delays and the next
        wave are worked out on the updated signer set.
        """
        if decision.action != "continue":
            self._apply_routing(envelope, signer, decision)

        outcome = on_signer_completed(envelope, signer.id, now=self.clock)
        if outcome.is_complete:
            return outcome

        by_id = {s.id: s for s in envelope.signers}
        for delayed in outcome.delayed_signers:
            held = by_id[delayed.signer_id]
            held.status = SignerStatus.DELAYED.value
            held.delayed_until = delayed.delayed_until
            self.audit.append(envelope.id, AuditEventType.DELAYED, signer_id=held.id, payload={
                "delayed_until": delayed.delayed_until.isoformat(),
                "delay_hours": delayed.delay_hours,
            })

        self._notify_wave(envelope)
        self.db.flush()
        return outcome

    # === Signing ceremony ===

    def _validate_values(self, envelope: Envelope, signer: Signer, fields: List[Field], submitted: Dict[str, str]) -> List[ResolvedField]:
        """
        Check submitted values against ownership, type, rules and the
        effective required flag.

        Raises:
            FieldValidationException: with error messages per field id
        """
        owned = {f.field_key: f for f in fields if f.signer_id == signer.id}
        errors: Dict[str, List[str]] = {}
        for field_id in submitted:
            if field_id not in owned:
                errors[field_id] = ["Field does not belong to this signer"]

        definitions = [FieldDefinition.model_validate(f) for f in fields]
        resolved = resolve_field_state(definitions, self._current_values(fields, submitted))
        states = index_by_id(resolved)

        for field in owned.values():
            if field.type == FieldType.CALCULATED.value:
                continue
            state = states[field.field_key]
            messages = []
            missing = check_required(state, state.value)
            if missing:
                messages.append(missing)
            elif state.visible and state.value not in (None, ""):
                messages.extend(
                    validate_field_value(state.value, field.type, field.validation_rules).errors
                )
            if messages:
                errors[field.field_key] = messages

        if errors:
            logger.warning("Field validation failed", envelope_id=envelope.id, signer_id=signer.id, fields=list(errors))
            raise FieldValidationException(errors)
        return resolved

    def sign(
        self,
        token: str,
        field_values: Optional[Dict[str, str]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        geolocation: Optional[str] = None,
    ) -> SignResult:
        """
        Fill the signer's fields and mark them signed.

        Raises:
            InvalidSigningTokenException: token unknown, expired or used
            SignerNotEligibleException: signer is not in the current wave
            FieldValidationException: submitted values are invalid
        """
        field_values = field_values or {}
        signer = self._signer_for_token(token)
        signer_id, envelope_id = signer.id, signer.envelope_id

        with envelope_lock(envelope_id):
            envelope = self._load_for_update(envelope_id)
            signer = self._recheck_token(envelope, signer_id, token)
            if not can_signer_sign(signer, envelope):
                raise SignerNotEligibleException(signer.id, "not_in_current_wave")

            fields = self.repository.list_fields(envelope_id)
            resolved = index_by_id(self._validate_values(envelope, signer, fields, field_values))

            now = self.clock()
            for field in fields:
                state = resolved[field.field_key]
                if field.signer_id == signer.id and field.type != FieldType.CALCULATED.value:
                    if state.value is not None and state.value != field.value:
                        field.value = state.value
                        field.filled_at = now
                        self.audit.append(envelope_id, AuditEventType.FIELD_FILLED, signer_id=signer.id, payload={
                            "field_id": field.field_key, "field_type": field.type,
                        })
                elif field.type == FieldType.CALCULATED.value:
                    field.value = state.value

            signer.status = SignerStatus.SIGNED.value
            signer.signed_at = now
            signer.signing_token = None
            signer.ip_address = ip_address or signer.ip_address
            signer.user_agent = user_agent or signer.user_agent
            signer.geolocation = geolocation or signer.geolocation
            if envelope.status == EnvelopeStatus.SENT.value:
                envelope.status = EnvelopeStatus.IN_PROGRESS.value
            self.db.flush()
            self.audit.append(
                envelope_id, AuditEventType.SIGNED, signer_id=signer.id,
                payload={"fields_filled": len(field_values)},
                ip_address=ip_address, user_agent=user_agent, geolocation=geolocation,
            )

            # Field rules look only at what this signer filled, so they fire once
            own_values = {f.field_key: f.value for f in fields if f.signer_id == signer.id and f.value is not None}
            decision = evaluate_routing_rules(envelope, signer, own_values)
            outcome = self._advance(envelope, signer, decision)
            completed = outcome.is_complete or decision.action == "complete"
            if completed:
                self._complete(envelope)
            self.db.commit()

        logger.info("Signer signed", envelope_id=envelope_id, signer_id=signer_id, completed=completed)
        self._dispatch(SIGNER_COMPLETED, envelope, signer)
        if completed:
            envelope_locks.forget(envelope_id)
            self._dispatch(ENVELOPE_COMPLETED, envelope)

        return SignResult(
            envelope_id=envelope_id,
            signer_id=signer_id,
            envelope_status=envelope.status,
            is_complete=completed,
            next_signer_ids=[s.id for s in outcome.next_wave] if not completed else [],
            delayed_signer_ids=[d.signer_id for d in outcome.delayed_signers],
        )

    def decline(
        self,
        token: str,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SignResult:
        """
        Decline to sign.

        A matching ``signer_declined`` routing rule decides what happens
        next; without one the envelope is voided.
        """
        signer = self._signer_for_token(token)
        signer_id, envelope_id = signer.id, signer.envelope_id

        with envelope_lock(envelope_id):
            envelope = self._load_for_update(envelope_id)
            signer = self._recheck_token(envelope, signer_id, token)
            self._require_active(envelope, "decline")

            signer.status = SignerStatus.DECLINED.value
            signer.declined_reason = reason
            signer.signing_token = None
            self.db.flush()
            self.audit.append(
                envelope_id, AuditEventType.DECLINED, signer_id=signer.id,
                payload={"reason": reason}, ip_address=ip_address, user_agent=user_agent,
            )

            # Only signer_declined rules can match a decline
            decision = evaluate_routing_rules(envelope, signer, {})
            outcome = SignerCompletionResult(is_complete=False)
            voided = completed = False
            if decision.action == "continue":
                self._void(envelope, f"Declined by signer: {reason}" if reason else "Declined by signer")
                voided = True
            else:
                outcome = self._advance(envelope, signer, decision)
                completed = outcome.is_complete or decision.action == "complete"
                if completed:
                    self._complete(envelope)
            self.db.commit()

        logger.info("Signer declined", envelope_id=envelope_id, signer_id=signer_id, voided=voided)
        if voided:
            envelope_locks.forget(envelope_id)
            self._dispatch(ENVELOPE_VOIDED, envelope)
        elif completed:
            envelope_locks.forget(envelope_id)
            self._dispatch(ENVELOPE_COMPLETED, envelope)

        return SignResult(
            envelope_id=envelope_id,
            signer_id=signer_id,
            envelope_status=envelope.status,
            is_complete=completed,
            next_signer_ids=[s.id for s in outcome.next_wave],
            delayed_signer_ids=[d.signer_id for d in outcome.delayed_signers],
        )

    def delegate(self, token: str, name: str, email: str, reason: Optional[str] = None) -> Signer:
        """
        Hand the signer's place to someone else.

        The delegate takes the same order and group and points back to
        the delegator, who becomes declined with reason ``delegated``.
        """
        signer = self._signer_for_token(token)
        signer_id, envelope_id = signer.id, signer.envelope_id

        with envelope_lock(envelope_id):
            envelope = self._load_for_update(envelope_id)
            signer = self._recheck_token(envelope, signer_id, token)
            if not can_signer_sign(signer, envelope):
                raise SignerNotEligibleException(signer.id, "not_in_current_wave")

            delegate = Signer(
                envelope_id=envelope_id,
                name=name,
                email=email,
                role=signer.role,
                order=signer.order,
                signing_group=signer.signing_group,
                status=SignerStatus.PENDING.value,
                delegated_from=signer.id,
            )
            envelope.signers.append(delegate)
            self.repository.add_signer(delegate)

            signer.status = SignerStatus.DECLINED.value
            signer.declined_reason = "delegated"
            signer.signing_token = None

            # Fields follow the signing duty
            for field in self.repository.list_fields(envelope_id):
                if field.signer_id == signer.id:
                    field.signer_id = delegate.id

            self._notify(delegate)
            self.db.flush()
            self.audit.append(envelope_id, AuditEventType.DELEGATED, signer_id=signer.id, payload={
                "delegated_to": delegate.id,
                "email": email,
                "name": name,
                "reason": reason,
            })
            self.db.commit()

        logger.info("Signer delegated", envelope_id=envelope_id, signer_id=signer_id, delegate_id=delegate.id)
        return delegate

    def record_consent(self, token: str, ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> Signer:
        """Store consent to sign electronically"""
        signer = self._signer_for_token(token)
        signer_id, envelope_id = signer.id, signer.envelope_id

        with envelope_lock(envelope_id):
            envelope = self._load_for_update(envelope_id)
            signer = self._recheck_token(envelope, signer_id, token)
            signer.consented_at = self.clock()
            signer.ip_address = ip_address or signer.ip_address
            signer.user_agent = user_agent or signer.user_agent
            self.db.flush()
            self.audit.append(
                envelope_id, AuditEventType.CONSENTED, signer_id=signer.id,
                payload={"ip": ip_address}, ip_address=ip_address, user_agent=user_agent,
            )
            self.db.commit()
        return signer

    def open_signing_session(self, token: str, ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> Dict[str, Any]:
        """Everything a signing page needs; records an ``opened`` event"""
        signer = self._signer_for_token(token)
        envelope = self.get_envelope_or_raise(signer.envelope_id)
        fields = self.repository.list_fields(envelope.id)
        resolved = resolve_field_state(
            [FieldDefinition.model_validate(f) for f in fields], self._current_values(fields)
        )
        self.audit.append(
            envelope.id, AuditEventType.OPENED, signer_id=signer.id,
            ip_address=ip_address, user_agent=user_agent,
        )
        self.db.commit()
        own = {f.field_key for f in fields if f.signer_id == signer.id}
        return {
            "envelope": envelope,
            "signer": signer,
            "can_sign": can_signer_sign(signer, envelope),
            "fields": [r for r in resolved if r.id in own],
        }

    def resolve_fields(self, envelope_id: str, values: Optional[Dict[str, Any]] = None) -> List[ResolvedField]:
        """Resolve visibility, required flags and calculated values for draft input"""
        envelope = self.get_envelope_or_raise(envelope_id)
        fields = self.repository.list_fields(envelope.id)
        return resolve_field_state(
            [FieldDefinition.model_validate(f) for f in fields], self._current_values(fields, values)
        )

    # === Sealed artifacts ===

    def _sealed_document(self, envelope_id: str, document_id: str) -> Document:
        envelope = self.get_envelope_or_raise(envelope_id)
        document = next((d for d in envelope.documents if d.id == document_id), None)
        if document is None or not document.sealed_key:
            raise InvalidEnvelopeStateException(
                envelope_id, envelope.status, "download sealed document from",
                [EnvelopeStatus.COMPLETED.value],
            )
        return document

    def download_sealed_document(self, envelope_id: str, document_id: str) -> bytes:
        document = self._sealed_document(envelope_id, document_id)
        data = self.storage.get(document.sealed_key)
        self.audit.append(envelope_id, AuditEventType.DOWNLOADED, payload={"document_id": document_id})
        self.db.commit()
        return data

    def verify_sealed_document(self, envelope_id: str, document_id: str) -> SealVerification:
        """Seal metadata of the stored artifact, plus a check of the stored hash"""
        document = self._sealed_document(envelope_id, document_id)
        data = self.storage.get(document.sealed_key)
        result = verify_sealed_document(data)
        if result.valid and hash_document(data) != document.sealed_hash:
            logger.warning("Sealed artifact hash mismatch", envelope_id=envelope_id, document_id=document_id)
            result.valid = False
        return result

    # === Background sweeps ===

    def expire_envelopes(self) -> int:
        """Move active envelopes past ``expires_at`` to expired"""
        now = self.clock()
        expired = 0
        for candidate in self.repository.list_expirable(now):
            with envelope_lock(candidate.id):
                envelope = self._load_for_update(candidate.id)
                if envelope.status not in ACTIVE or envelope.expires_at is None or as_aware(envelope.expires_at) > now:
                    continue
                envelope.status = EnvelopeStatus.EXPIRED.value
                for signer in envelope.signers:
                    signer.signing_token = None
                self.db.flush()
                self.audit.append(envelope.id, AuditEventType.EXPIRED, payload={
                    "expires_at": as_aware(envelope.expires_at).isoformat(),
                })
                self.db.commit()
            envelope_locks.forget(candidate.id)
            expired += 1

        if expired:
            logger.info("Envelopes expired", count=expired)
        return expired

    def process_delayed_signers(self) -> int:
        """Promote delayed signers whose waiting period has ended"""
        now = self.clock()
        promoted = 0
        for candidate in self.repository.list_due_delayed_signers(now):
            with envelope_lock(candidate.envelope_id):
                envelope = self._load_for_update(candidate.envelope_id)
                signer = next(s for s in envelope.signers if s.id == candidate.id)
                if envelope.status not in ACTIVE or signer.status != SignerStatus.DELAYED.value:
                    continue
                if signer.delayed_until is not None and as_aware(signer.delayed_until) > now:
                    continue
                signer.delayed_until = None
                self._notify(signer)
                self.db.flush()
                self.audit.append(envelope.id, AuditEventType.DELAY_COMPLETED, signer_id=signer.id)
                self.db.commit()
            promoted += 1

        if promoted:
            logger.info("Delayed signers promoted", count=promoted)
        return promoted

    def send_reminders(self) -> int:
        """Remind notified signers who have not acted within the reminder interval"""
        now = self.clock()
        interval = timedelta(hours=settings.reminder_interval_hours)
        reminded = 0
        for candidate in self.repository.list_awaiting_signers():
            last = self.audit.last_event_of_type(candidate.envelope_id, candidate.id, AuditEventType.REMINDED)
            if last is not None:
                since = isoparse(last.timestamp)
            else:
                since = as_aware(candidate.envelope.sent_at) or now
            if now - since < interval:
                continue

            with envelope_lock(candidate.envelope_id):
                try:
                    self.notifier.send_reminder(candidate)
                except Exception as e:  # pylint: disable=broad-except
                    logger.error("Failed to send reminder", signer_id=candidate.id, error=str(e), exc_info=True)
                    continue
                self.audit.append(candidate.envelope_id, AuditEventType.REMINDED, signer_id=candidate.id)
                self.db.commit()
            reminded += 1

        if reminded:
            logger.info("Reminders sent", count=reminded)
        return reminded
