# sealdesk/integrations/base.py

"""
Capability interface for integrations.

The workflow fires four events; an adapter overrides only the hooks it
cares about. Hooks receive plain dicts, never ORM objects, so adapters
cannot reach back into the database session.
"""

from typing import Any, Dict, Optional, Tuple

ENVELOPE_SENT = "envelope_sent"
ENVELOPE_COMPLETED = "envelope_completed"
ENVELOPE_VOIDED = "envelope_voided"
SIGNER_COMPLETED = "signer_completed"

EVENTS = (ENVELOPE_SENT, ENVELOPE_COMPLETED, ENVELOPE_VOIDED, SIGNER_COMPLETED)


class IntegrationError(Exception):
    """Raised by an adapter when delivery fails"""

    def __init__(self, integration_name: str, message: str):
        self.integration_name = integration_name
        super().__init__(f"{integration_name}: {message}")


class Integration:
    """Base class for integration adapters"""

    name: str = "integration"
    display_name: str = "Integration"
    description: str = ""

    def __init__(self, config: Optional[Dict[str, str]] = None):
        self.config: Dict[str, str] = {}
        if config:
            self.initialize(config)

    def initialize(self, config: Dict[str, str]) -> None:
        self.config = dict(config)

    def test_connection(self) -> Tuple[bool, str]:
        return True, "No connection test available"

    def on_envelope_sent(self, envelope: Dict[str, Any]) -> None:
        pass

    def on_envelope_completed(self, envelope: Dict[str, Any]) -> None:
        pass

    def on_envelope_voided(self, envelope: Dict[str, Any]) -> None:
        pass

    def on_signer_completed(self, signer: Dict[str, Any], envelope: Dict[str, Any]) -> None:
        pass

    def handle(self, event_name: str, payload: Dict[str, Any]) -> None:
        """Route an event to the matching hook"""
        envelope = payload.get("envelope", {})
        if event_name == ENVELOPE_SENT:
            self.on_envelope_sent(envelope)
        elif event_name == ENVELOPE_COMPLETED:
            self.on_envelope_completed(envelope)
        elif event_name == ENVELOPE_VOIDED:
            self.on_envelope_voided(envelope)
        elif event_name == SIGNER_COMPLETED:
            self.on_signer_completed(payload.get("signer", {}), envelope)
