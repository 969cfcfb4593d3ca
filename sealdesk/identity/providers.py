### sealdesk/identity/providers.py

"""
Government-ID verification providers.

Each provider opens a hosted verification session for the signer and is
later polled for the outcome. Which one is used comes from
``settings.id_verification_provider``; without one the ceremony falls
back to two-factor.
"""

# Standard library imports
from abc import ABC, abstractmethod
from typing import Optional

# Third party imports
import requests

# Local imports
from sealdesk.core.config import settings
from sealdesk.identity.exceptions import ProviderUnavailableException, UnknownProviderException
from sealdesk.identity.schemas import GovernmentIdResult, GovernmentIdSession
from sealdesk.utils.logger import get_logger

logger = get_logger(__name__)


class IdentityProvider(ABC):
    """Base class for government-ID providers"""

    name: str = "provider"

    def __init__(self, api_url: str, api_key: str, timeout: Optional[int] = None):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout or settings.integration_timeout_seconds

    def _headers(self) -> dict:
        return {}

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            response = requests.request(
                method, f"{self.api_url}{path}", headers=self._headers(), timeout=self.timeout, **kwargs,
            )
        except requests.RequestException as e:
            logger.error("Identity provider unreachable", provider=self.name, error=str(e))
            raise ProviderUnavailableException(self.name, str(e)) from e
        if not response.ok:
            logger.error(
                "Identity provider request failed",
                provider=self.name, status_code=response.status_code, body=response.text[:200],
            )
            raise ProviderUnavailableException(self.name, f"{response.status_code} {response.reason}")
        return response

    @abstractmethod
    def initiate_session(self, signer_name: str, signer_email: str) -> GovernmentIdSession:
        """Open a hosted verification session"""

    @abstractmethod
    def check_status(self, session_id: str) -> GovernmentIdResult:
        """Fetch the outcome of a verification session"""


class JumioProvider(IdentityProvider):
    name = "jumio"

    def __init__(self, api_url: Optional[str] = None, api_key: Optional[str] = None, **kwargs):
        super().__init__(api_url or settings.jumio_api_url, api_key or settings.jumio_api_key or "", **kwargs)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
            "User-Agent": "Sealdesk Signing Engine",
        }

    def initiate_session(self, signer_name: str, signer_email: str) -> GovernmentIdSession:
        response = self._request("POST", "/initiate", json={
            "customerInternalReference": signer_email, "userReference": signer_name,
        })
        data = response.json()
        logger.info("Jumio session created", session_id=data["transactionReference"])
        return GovernmentIdSession(
            session_id=data["transactionReference"],
            redirect_url=data["redirectUrl"],
            provider=self.name,
        )

    def check_status(self, session_id: str) -> GovernmentIdResult:
        response = self._request("GET", f"/scans/{session_id}/data")
        data = response.json()
        document = data.get("document", {})
        return GovernmentIdResult(
            verified=document.get("status") == "APPROVED_VERIFIED",
            document_type=(document.get("type") or "").lower() or None,
            document_country=document.get("issuingCountry"),
            full_name=" ".join(filter(None, [document.get("firstName"), document.get("lastName")])) or None,
            date_of_birth=document.get("dob"),
            expiry_date=document.get("expiry"),
            verification_id=session_id,
            provider=self.name,
        )


class OnfidoProvider(IdentityProvider):
    name = "onfido"

    def __init__(self, api_url: Optional[str] = None, api_key: Optional[str] = None, **kwargs):
        super().__init__(api_url or settings.onfido_api_url, api_key or settings.onfido_api_token or "", **kwargs)

    def _headers(self) -> dict:
        return {"Authorization": f"Token token={self.api_key}", "Accept": "application/json"}

    def initiate_session(self, signer_name: str, signer_email: str) -> GovernmentIdSession:
        first_name, _, last_name = (signer_name or signer_email).partition(" ")
        applicant = self._request("POST", "/applicants", json={
            "first_name": first_name, "last_name": last_name or first_name, "email": signer_email,
        }).json()
        link = self._request("POST", "/workflow_runs", json={"applicant_id": applicant["id"]}).json()
        logger.info("Onfido session created", session_id=applicant["id"])
        return GovernmentIdSession(
            session_id=applicant["id"],
            redirect_url=link.get("link", {}).get("url") or f"https://id.onfido.com/verify/{applicant['id']}",
            provider=self.name,
        )

    def check_status(self, session_id: str) -> GovernmentIdResult:
        checks = self._request("GET", "/checks", params={"applicant_id": session_id}).json().get("checks", [])
        latest = checks[0] if checks else {}
        documents = self._request("GET", "/documents", params={"applicant_id": session_id}).json().get("documents", [])
        document = documents[0] if documents else {}
        return GovernmentIdResult(
            verified=latest.get("status") == "complete" and latest.get("result") == "clear",
            document_type=document.get("type"),
            document_country=document.get("issuing_country"),
            verification_id=session_id,
            provider=self.name,
        )


PROVIDERS = {
    JumioProvider.name: JumioProvider,
    OnfidoProvider.name: OnfidoProvider,
}


def get_identity_provider(name: Optional[str] = None) -> Optional[IdentityProvider]:
    """
    Provider named in settings, or ``None`` when government-ID verification
    is not configured.
    """
    name = name if name is not None else settings.id_verification_provider
    if not name:
        return None
    provider = PROVIDERS.get(name.lower())
    if provider is None:
        raise UnknownProviderException(name, PROVIDERS.keys())
    return provider()
