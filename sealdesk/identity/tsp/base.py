### sealdesk/identity/tsp/base.py

"""
Trust Service Provider abstraction for qualified electronic signatures.

A QES needs a qualified certificate from a qualified TSP, a qualified
signature creation device (QSCD) and identity verification meeting eIDAS
requirements. Adapters talk to one TSP each; the session bookkeeping,
expiry and state-machine guards live here so every adapter behaves the
same way.

Session state is kept in a ``TTLStore`` handed in by the caller. A
session past its ``expires_at`` is reported as ``expired`` and can no
longer be advanced; the signer has to start over.
"""

# Standard library imports
import hashlib
import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

# Third party imports
import requests

# Local imports
from sealdesk.core.config import settings
from sealdesk.core.redis import TTLStore
from sealdesk.identity.exceptions import (
    InvalidQESTransitionException, ProviderUnavailableException, QESSessionExpiredException,
    QESSessionNotFoundException,
)
from sealdesk.identity.schemas import (
    QES_ABSORBING, QES_PROGRESSION, QESSession, QESSignatureResult, QESStatus, SignerInfo,
)
from sealdesk.utils.logger import get_logger

logger = get_logger(__name__)

REMOTE_ERRORS = (requests.RequestException, ProviderUnavailableException, ValueError, KeyError)

# Expired sessions stay readable for this long so callers see "expired"
EXPIRED_SESSION_GRACE = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: QESStatus, target: QESStatus) -> bool:
    """Forward-only progression; failed and expired are reachable from any live state"""
    if current in QES_ABSORBING:
        return False
    if target in (QESStatus.FAILED, QESStatus.EXPIRED):
        return True
    return QES_PROGRESSION.index(target) > QES_PROGRESSION.index(current)


class TrustServiceProvider(ABC):
    """Base class for TSP adapters"""

    name: str = "Trust Service Provider"
    provider_id: str = "tsp"

    def __init__(
        self,
        store: TTLStore,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        session_ttl_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
        timeout: Optional[int] = None,
    ):
        self.store = store
        self.api_url = (api_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.session_ttl = timedelta(minutes=session_ttl_minutes or settings.qes_session_ttl_minutes)
        self.clock = clock
        self.timeout = timeout or settings.integration_timeout_seconds
        if self.mock_mode:
            logger.warning(
                f"{self.provider_id} API key not configured, QES signing runs in mock mode",
                provider=self.provider_id,
            )

    @property
    def mock_mode(self) -> bool:
        return not self.api_key

    # === Session bookkeeping ===

    def _key(self, session_id: str) -> str:
        return f"qes:{self.provider_id}:{session_id}"

    def _save(self, record: Dict) -> None:
        expires_at = datetime.fromisoformat(record["expires_at"])
        remaining = (expires_at - self.clock()) + EXPIRED_SESSION_GRACE
        self.store.set(self._key(record["session_id"]), json.dumps(record), int(max(remaining.total_seconds(), 1)))

    def _load(self, session_id: str) -> Optional[Dict]:
        raw = self.store.get(self._key(session_id))
        if raw is None:
            return None
        record = json.loads(raw)
        status = QESStatus(record["status"])
        if status not in QES_ABSORBING and self.clock() >= datetime.fromisoformat(record["expires_at"]):
            record["status"] = QESStatus.EXPIRED.value
            self._save(record)
            logger.info("QES session expired", session_id=session_id, provider=self.provider_id)
        return record

    def _require_live(self, session_id: str) -> Dict:
        record = self._load(session_id)
        if record is None:
            raise QESSessionNotFoundException(session_id)
        if record["status"] == QESStatus.EXPIRED.value:
            raise QESSessionExpiredException(session_id)
        return record

    def _advance(self, record: Dict, target: QESStatus) -> Dict:
        current = QESStatus(record["status"])
        if current == target:
            return record
        if not can_transition(current, target):
            raise InvalidQESTransitionException(record["session_id"], current.value, target.value)
        record["status"] = target.value
        self._save(record)
        return record

    def _to_session(self, record: Dict) -> QESSession:
        return QESSession(
            session_id=record["session_id"],
            provider=self.provider_id,
            status=QESStatus(record["status"]),
            identity_verification_url=record.get("identity_verification_url"),
            expires_at=datetime.fromisoformat(record["expires_at"]),
        )

    # === Public operations ===

    def initiate_qes(self, signer: SignerInfo) -> QESSession:
        """Start a QES session for a signer"""
        session_id = str(uuid.uuid4())
        record = {
            "session_id": session_id,
            "status": QESStatus.INITIATED.value,
            "signer": signer.model_dump(),
            "created_at": self.clock().isoformat(),
            "expires_at": (self.clock() + self.session_ttl).isoformat(),
        }
        self._save(record)

        try:
            if self.mock_mode:
                record["identity_verification_url"] = self._mock_verification_url(session_id)
            else:
                record["identity_verification_url"] = self._remote_initiate(session_id, signer)
            self._advance(record, QESStatus.IDENTITY_PENDING)
        except REMOTE_ERRORS as e:
            logger.error("Error initiating QES", provider=self.provider_id, error=str(e), exc_info=True)
            self._advance(record, QESStatus.FAILED)

        logger.info("QES session initiated", session_id=session_id, provider=self.provider_id, status=record["status"])
        return self._to_session(record)

    def check_status(self, session_id: str) -> QESStatus:
        """
        Current status of a session. Unknown sessions report ``failed``
        instead of raising.
        """
        record = self._load(session_id)
        if record is None:
            return QESStatus.FAILED
        current = QESStatus(record["status"])
        if current in QES_ABSORBING:
            return current

        if self.mock_mode:
            target = {
                QESStatus.IDENTITY_PENDING: QESStatus.IDENTITY_VERIFIED,
                QESStatus.IDENTITY_VERIFIED: QESStatus.CERTIFICATE_ISSUED,
                QESStatus.CERTIFICATE_ISSUED: QESStatus.SIGNING_READY,
            }.get(current, current)
        else:
            try:
                target = self._remote_status(session_id)
            except REMOTE_ERRORS as e:
                logger.warning("QES status poll failed", session_id=session_id, error=str(e))
                return current

        if target != current and can_transition(current, target):
            self._advance(record, target)
        return QESStatus(record["status"])

    def get_qualified_certificate(self, session_id: str) -> bytes:
        """Certificate issued for the session's signer"""
        record = self._require_live(session_id)
        if record.get("certificate"):
            return record["certificate"].encode("latin-1")

        current = QESStatus(record["status"])
        if current not in (QESStatus.IDENTITY_VERIFIED, QESStatus.CERTIFICATE_ISSUED, QESStatus.SIGNING_READY):
            raise InvalidQESTransitionException(session_id, current.value, QESStatus.CERTIFICATE_ISSUED.value)

        if self.mock_mode:
            signer = record["signer"]
            certificate = (
                "-----BEGIN CERTIFICATE-----\n"
                f"MOCK_QUALIFIED_CERTIFICATE_{session_id}\n"
                f"Issuer: CN={self.name}\n"
                f"Subject: CN={signer['name']}, EMAIL={signer['email']}\n"
                "-----END CERTIFICATE-----"
            ).encode("utf-8")
        else:
            certificate = self._remote_certificate(session_id)

        record["certificate"] = certificate.decode("latin-1")
        if current == QESStatus.IDENTITY_VERIFIED:
            record["status"] = QESStatus.CERTIFICATE_ISSUED.value
        self._save(record)
        return certificate

    def sign_with_qscd(self, session_id: str, document_hash: str) -> QESSignatureResult:
        """Have the TSP's QSCD sign a document hash"""
        record = self._require_live(session_id)
        current = QESStatus(record["status"])
        if current != QESStatus.SIGNING_READY:
            raise InvalidQESTransitionException(session_id, current.value, QESStatus.SIGNED.value)

        certificate = self.get_qualified_certificate(session_id)
        if self.mock_mode:
            result = self._mock_sign(session_id, document_hash, certificate)
        else:
            result = self._remote_sign(session_id, document_hash, certificate)

        record = self._load(session_id)
        self._advance(record, QESStatus.SIGNED)
        logger.info("Document hash signed with QSCD", session_id=session_id, provider=self.provider_id)
        return result

    # === Mock mode ===

    def _mock_verification_url(self, session_id: str) -> str:
        return f"https://ident.example.invalid/{self.provider_id}/{session_id}"

    def _mock_sign(self, session_id: str, document_hash: str, certificate: bytes) -> QESSignatureResult:
        return QESSignatureResult(
            signature=hashlib.sha256(f"{session_id}:{document_hash}".encode("utf-8")).digest(),
            certificate=certificate,
            timestamp=self.clock(),
            tsp_name=self.name,
            certificate_serial=f"MOCK-{session_id[:8]}",
            qscd_reference=f"QSCD-{session_id[:8]}",
        )

    # === Provider specific ===

    @abstractmethod
    def _remote_initiate(self, session_id: str, signer: SignerInfo) -> Optional[str]:
        """Open the session at the TSP and return the identification URL"""

    @abstractmethod
    def _remote_status(self, session_id: str) -> QESStatus:
        """Poll the TSP for the session status"""

    @abstractmethod
    def _remote_certificate(self, session_id: str) -> bytes:
        """Download the qualified certificate"""

    @abstractmethod
    def _remote_sign(self, session_id: str, document_hash: str, certificate: bytes) -> QESSignatureResult:
        """Send the hash to the QSCD"""
