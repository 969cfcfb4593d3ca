### sealdesk/integrations/webhook.py

"""
Outgoing webhooks signed with HMAC-SHA256.

The body is the JSON event envelope; ``X-Sealdesk-Signature`` carries the
hex HMAC of the exact body bytes under the shared secret.
"""

# Standard library imports
import hashlib
import hmac
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

# Third party imports
import requests

# Local imports
from sealdesk.core.config import settings
from sealdesk.integrations.base import (
    ENVELOPE_COMPLETED, ENVELOPE_SENT, ENVELOPE_VOIDED, SIGNER_COMPLETED, Integration,
    IntegrationError,
)
from sealdesk.utils.logger import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Sealdesk-Signature"
EVENT_HEADER = "X-Sealdesk-Event"
DELIVERY_HEADER = "X-Sealdesk-Delivery"


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    """Check an incoming signature in constant time"""
    if not signature or not secret:
        return False
    return hmac.compare_digest(signature, compute_signature(body, secret))


def send_webhook(url: str, body: str, headers: Dict[str, str]) -> int:
    """
    Single POST attempt.

    Raises:
        IntegrationError: connection failure or a non-2xx response
    """
    try:
        response = requests.post(
            url, data=body.encode("utf-8"), headers=headers, timeout=settings.integration_timeout_seconds,
        )
    except requests.RequestException as e:
        raise IntegrationError(WebhookIntegration.name, str(e)) from e
    if not response.ok:
        raise IntegrationError(WebhookIntegration.name, f"status {response.status_code}")
    return response.status_code


class WebhookIntegration(Integration):
    name = "webhook"
    display_name = "Webhook"
    description = "POST signed JSON events to an HTTPS endpoint"

    def initialize(self, config: Dict[str, str]) -> None:
        super().initialize(config)
        if not self.config.get("url"):
            raise ValueError("Webhook integration requires a url")
        events = self.config.get("events") or "*"
        self.events = {e.strip() for e in events.split(",") if e.strip()}

    def _wants(self, event_name: str) -> bool:
        return "*" in self.events or event_name in self.events

    def build_request(self, event_name: str, data: Dict[str, Any]) -> Tuple[str, Dict[str, str]]:
        """JSON body and headers; the signature covers the exact body text"""
        body = json.dumps(
            {"event": event_name, "data": data, "timestamp": datetime.now(timezone.utc).isoformat()},
            default=str,
        )
        headers = {
            "Content-Type": "application/json",
            EVENT_HEADER: event_name,
            DELIVERY_HEADER: str(uuid.uuid4()),
        }
        if self.config.get("secret"):
            headers[SIGNATURE_HEADER] = compute_signature(body.encode("utf-8"), self.config["secret"])
        return body, headers

    def deliver(self, event_name: str, data: Dict[str, Any]) -> None:
        """Queue the event for delivery; retries happen on the worker"""
        if not self._wants(event_name):
            return
        from sealdesk.integrations.tasks import deliver_webhook

        body, headers = self.build_request(event_name, data)
        deliver_webhook.delay(self.config["url"], body, headers)
        logger.debug("Webhook queued", integration_event=event_name, delivery_id=headers[DELIVERY_HEADER])

    def on_envelope_sent(self, envelope: Dict[str, Any]) -> None:
        self.deliver(ENVELOPE_SENT, {"envelope": envelope})

    def on_envelope_completed(self, envelope: Dict[str, Any]) -> None:
        self.deliver(ENVELOPE_COMPLETED, {"envelope": envelope})

    def on_envelope_voided(self, envelope: Dict[str, Any]) -> None:
        self.deliver(ENVELOPE_VOIDED, {"envelope": envelope})

    def on_signer_completed(self, signer: Dict[str, Any], envelope: Dict[str, Any]) -> None:
        self.deliver(SIGNER_COMPLETED, {"signer": signer, "envelope": envelope})
