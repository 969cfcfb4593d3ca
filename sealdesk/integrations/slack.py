# sealdesk/integrations/slack.py

# Third party imports
import requests

# Local imports
from sealdesk.core.config import settings
from sealdesk.integrations.base import Integration, IntegrationError
from sealdesk.utils.logger import get_logger

logger = get_logger(__name__)


class SlackIntegration(Integration):
    """Posts envelope progress to a Slack incoming webhook"""

    name = "slack"
    display_name = "Slack"
    description = "Send envelope notifications to a Slack channel"

    def initialize(self, config):
        super().initialize(config)
        if not self.config.get("webhook_url"):
            raise ValueError("Slack integration requires a webhook_url")

    def post(self, text: str) -> None:
        payload = {"text": text}
        if self.config.get("channel"):
            payload["channel"] = self.config["channel"]
        try:
            response = requests.post(
                self.config["webhook_url"], json=payload, timeout=settings.integration_timeout_seconds,
            )
        except requests.RequestException as e:
            raise IntegrationError(self.name, str(e)) from e
        if response.status_code not in (200, 204):
            logger.warning("Slack webhook rejected message", status_code=response.status_code, body=response.text[:200])
            raise IntegrationError(self.name, f"status {response.status_code}")

    def test_connection(self):
        try:
            self.post("Sealdesk connection test")
        except IntegrationError as e:
            return False, str(e)
        return True, "Connected"

    def on_envelope_sent(self, envelope):
        self.post(f":envelope: *{envelope.get('subject')}* was sent for signature ({envelope.get('signer_count', 0)} signers)")

    def on_envelope_completed(self, envelope):
        self.post(f":white_check_mark: *{envelope.get('subject')}* has been completed by all signers")

    def on_envelope_voided(self, envelope):
        reason = envelope.get("void_reason") or "no reason given"
        self.post(f":no_entry: *{envelope.get('subject')}* was voided: {reason}")

    def on_signer_completed(self, signer, envelope):
        self.post(f":pencil2: {signer.get('name')} ({signer.get('email')}) signed *{envelope.get('subject')}*")
