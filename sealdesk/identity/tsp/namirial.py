### sealdesk/identity/tsp/namirial.py

"""
Namirial SignEngine adapter (EU qualified TSP).
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

NAMIRIAL_STATUS_MAP = {
    "IDENTIFICATION_PENDING": QESStatus.IDENTITY_PENDING,
    "IDENTIFIED": QESStatus.IDENTITY_VERIFIED,
    "CERTIFICATE_ISSUED": QESStatus.CERTIFICATE_ISSUED,
    "READY_TO_SIGN": QESStatus.SIGNING_READY,
    "SIGNED": QESStatus.SIGNED,
    "EXPIRED": QESStatus.EXPIRED,
    "FAILED": QESStatus.FAILED,
}


class NamirialTSP(TrustServiceProvider):
    name = "Namirial SignEngine"
    provider_id = "namirial"

    def __init__(self, store, api_url: Optional[str] = None, api_key: Optional[str] = None, **kwargs):
        super().__init__(
            store,
            api_url=api_url or settings.namirial_api_url,
            api_key=api_key if api_key is not None else settings.namirial_api_key,
            **kwargs,
        )

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            response = requests.request(
                method,
                f"{self.api_url}{path}",
                headers={"X-Api-Key": self.api_key, "Accept": "application/json"},
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise ProviderUnavailableException(self.provider_id, str(e)) from e
        if not response.ok:
            raise ProviderUnavailableException(self.provider_id, f"{response.status_code} {response.reason}")
        return response

    def _remote_initiate(self, session_id: str, signer: SignerInfo) -> Optional[str]:
        first_name, _, last_name = signer.name.partition(" ")
        response = self._request("POST", "/signing-sessions", json={
            "externalId": session_id,
            "signer": {
                "firstName": first_name,
                "lastName": last_name,
                "email": signer.email,
                "mobile": signer.phone,
                "dateOfBirth": signer.date_of_birth,
                "nationality": signer.nationality,
            },
            "certificateType": "QUALIFIED_ONE_SHOT",
        })
        return response.json().get("identificationUrl")

    def _remote_status(self, session_id: str) -> QESStatus:
        data = self._request("GET", f"/signing-sessions/{session_id}").json()
        return NAMIRIAL_STATUS_MAP.get(data.get("status"), QESStatus.INITIATED)

    def _remote_certificate(self, session_id: str) -> bytes:
        data = self._request("GET", f"/signing-sessions/{session_id}/certificate").json()
        return base64.b64decode(data["certificate"])

    def _remote_sign(self, session_id: str, document_hash: str, certificate: bytes) -> QESSignatureResult:
        data = self._request("POST", f"/signing-sessions/{session_id}/sign", json={
            "hash": document_hash,
            "hashAlgorithm": "SHA256",
            "signatureFormat": "PAdES",
        }).json()
        timestamp = data.get("signingTime")
        return QESSignatureResult(
            signature=base64.b64decode(data["signature"]),
            certificate=certificate,
            timestamp=datetime.fromisoformat(timestamp) if timestamp else self.clock(),
            tsp_name=self.name,
            certificate_serial=data.get("certificateSerialNumber", ""),
            qscd_reference=data.get("qscdId", ""),
        )
