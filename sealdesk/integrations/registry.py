# sealdesk/integrations/registry.py

"""
Lookup table of integration adapters.

Adapters are registered by name and enabled with their configuration.
Dispatch calls every enabled adapter; a failing adapter is logged and
skipped so one broken integration never blocks the others or the
workflow.
"""

# Standard library imports
import threading
from typing import Any, Dict, List, Optional, Type

# Local imports
from sealdesk.core.config import settings
from sealdesk.integrations.base import EVENTS, Integration
from sealdesk.integrations.slack import SlackIntegration
from sealdesk.integrations.webhook import WebhookIntegration
from sealdesk.utils.logger import get_logger

logger = get_logger(__name__)


class IntegrationRegistry:
    """Registry and dispatcher for integrations"""

    def __init__(self):
        self._lock = threading.Lock()
        self._available: Dict[str, Type[Integration]] = {}
        self._enabled: Dict[str, Integration] = {}

    def register(self, adapter: Type[Integration]) -> None:
        with self._lock:
            self._available[adapter.name] = adapter

    def enable(self, name: str, config: Optional[Dict[str, str]] = None) -> Integration:
        """Instantiate and enable an adapter, or install an already built instance"""
        with self._lock:
            adapter = self._available.get(name)
            if adapter is None:
                raise KeyError(f"Integration not found: {name}")
            instance = adapter(config or {})
            self._enabled[name] = instance
        logger.info("Integration enabled", integration=name)
        return instance

    def add(self, instance: Integration) -> Integration:
        """Register and enable a configured instance in one step"""
        with self._lock:
            self._available.setdefault(instance.name, type(instance))
            self._enabled[instance.name] = instance
        return instance

    def disable(self, name: str) -> None:
        with self._lock:
            self._enabled.pop(name, None)
        logger.info("Integration disabled", integration=name)

    def get(self, name: str) -> Optional[Integration]:
        return self._enabled.get(name)

    def list_available(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {
                    "name": adapter.name,
                    "display_name": adapter.display_name,
                    "description": adapter.description,
                    "enabled": adapter.name in self._enabled,
                }
                for adapter in self._available.values()
            ]

    def dispatch(self, event_name: str, payload: Dict[str, Any]) -> Dict[str, bool]:
        """
        Fire an event on every enabled adapter.

        Returns:
            Delivery outcome per adapter name
        """
        if event_name not in EVENTS:
            raise ValueError(f"Unknown integration event: {event_name}")

        with self._lock:
            targets = list(self._enabled.values())

        results = {}
        for integration in targets:
            try:
                integration.handle(event_name, payload)
                results[integration.name] = True
            except Exception as e:  # pylint: disable=broad-except
                logger.error(
                    "Integration dispatch failed",
                    integration=integration.name, integration_event=event_name, error=str(e), exc_info=True,
                )
                results[integration.name] = False
        return results


def build_default_registry() -> IntegrationRegistry:
    """Registry with the built-in adapters, enabled from settings"""
    registry = IntegrationRegistry()
    registry.register(WebhookIntegration)
    registry.register(SlackIntegration)
    if settings.webhook_url:
        registry.enable(WebhookIntegration.name, {
            "url": settings.webhook_url,
            "secret": settings.webhook_secret or "",
        })
    if settings.slack_webhook_url:
        registry.enable(SlackIntegration.name, {"webhook_url": settings.slack_webhook_url})
    return registry


integration_registry = build_default_registry()
