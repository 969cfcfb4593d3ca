### sealdesk/identity/tsp/swisscom.py

"""
Swisscom All-in Signing Service (AIS) adapter.

Qualified signatures under ZertES and eIDAS, with on-demand certificates
and step-up authorisation on the signer's phone.
"""

# Standard library imports
import base64
from datetime import datetime
from typing import Optional

# Third party imports
import requests

# Local imports
from sealdesk.core.config import settings
from sealdesk.identity.exceptions import ProviderUnavailableException
from sealdesk.identity.schemas import QESSignatureResult, QESStatus, SignerInfo
from sealdesk.identity.tsp.base import TrustServiceProvider

SWISSCOM_STATUS_MAP = {
    "PENDING": QESStatus.IDENTITY_PENDING,
    "VERIFIED": QESStatus.IDENTITY_VERIFIED,
    "READY": QESStatus.SIGNING_READY,
    "SIGNED": QESStatus.SIGNED,
    "EXPIRED": QESStatus.EXPIRED,
    "FAILED": QESStatus.FAILED,
}


class SwisscomTSP(TrustServiceProvider):
    """Swisscom AIS over its REST interface"""

    name = "Swisscom All-in Signing Service"
    provider_id = "swisscom"

    def __init__(self, store, api_url: Optional[str] = None, api_key: Optional[str] = None, **kwargs):
        super().__init__(
            store,
            api_url=api_url or settings.swisscom_ais_url,
            api_key=api_key if api_key is not None else settings.swisscom_ais_key,
            **kwargs,
        )

    def _headers(self) -> dict:
        return {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            response = requests.request(
                method, f"{self.api_url}{path}", headers=self._headers(), timeout=self.timeout, **kwargs,
            )
        except requests.RequestException as e:
            raise ProviderUnavailableException(self.provider_id, str(e)) from e
        if not response.ok:
            raise ProviderUnavailableException(self.provider_id, f"{response.status_code} {response.reason}")
        return response

    def _remote_initiate(self, session_id: str, signer: SignerInfo) -> Optional[str]:
        response = self._request("POST", "/sign", json={
            "requestId": session_id,
            "signer": {
                "distinguishedName": f"CN={signer.name}, EMAIL={signer.email}",
                "stepUpAuthorisation": {
                    "phone": {
                        "msisdn": signer.phone,
                        "message": "Please confirm your qualified signature.",
                        "language": "en",
                    },
                },
            },
        })
        return response.json().get("identityVerificationUrl")

    def _remote_status(self, session_id: str) -> QESStatus:
        response = self._request("GET", f"/pending/{session_id}")
        return SWISSCOM_STATUS_MAP.get(response.json().get("status"), QESStatus.INITIATED)

    def _remote_certificate(self, session_id: str) -> bytes:
        return self._request("GET", f"/certificate/{session_id}").content

    def _remote_sign(self, session_id: str, document_hash: str, certificate: bytes) -> QESSignatureResult:
        response = self._request("POST", "/sign", json={
            "requestId": session_id, "documentHash": document_hash, "hashAlgorithm": "SHA-256",
        })
        data = response.json()
        timestamp = data.get("timestamp")
        return QESSignatureResult(
            signature=base64.b64decode(data["signature"]),
            certificate=certificate,
            timestamp=datetime.fromisoformat(timestamp) if timestamp else self.clock(),
            tsp_name=self.name,
            certificate_serial=data.get("certificateSerial", ""),
            qscd_reference=data.get("qscdReference", ""),
        )
