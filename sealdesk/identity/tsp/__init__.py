# sealdesk/identity/tsp/__init__.py

from typing import Optional

from sealdesk.core.config import settings
from sealdesk.core.redis import TTLStore
from sealdesk.identity.exceptions import UnknownProviderException
from sealdesk.identity.tsp.base import TrustServiceProvider
from sealdesk.identity.tsp.namirial import NamirialTSP
from sealdesk.identity.tsp.swisscom import SwisscomTSP

TSP_REGISTRY = {
    SwisscomTSP.provider_id: SwisscomTSP,
    NamirialTSP.provider_id: NamirialTSP,
}


def get_tsp(provider: str, store: TTLStore, **kwargs) -> TrustServiceProvider:
    """Build the adapter for a provider name"""
    adapter = TSP_REGISTRY.get((provider or "").lower())
    if adapter is None:
        raise UnknownProviderException(provider, TSP_REGISTRY.keys())
    return adapter(store, **kwargs)


def configured_tsp() -> Optional[str]:
    return settings.qes_provider or None


def is_qes_available() -> bool:
    return configured_tsp() is not None
