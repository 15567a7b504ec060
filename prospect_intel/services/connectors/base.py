from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import httpx


class ConnectorResult(dict):
    """Normalised JSON-shaped provider payload."""


class BaseConnector(ABC):
    """
    One external provider behind the resilient client.

    ``credential_setting`` names the Settings attribute holding the API key;
    connectors without one are public and never NOT_CONFIGURED.
    ``breaker_preset`` picks a BREAKER_PRESETS entry for the provider's breaker.
    """

    name: str
    operations: Tuple[str, ...] = ()
    credential_setting: Optional[str] = None
    breaker_preset: Optional[str] = None

    @property
    def requires_credential(self) -> bool:
        return self.credential_setting is not None

    @abstractmethod
    async def invoke(
        self,
        client: httpx.AsyncClient,
        operation: str,
        params: Dict[str, Any],
        credential: Optional[str] = None,
    ) -> ConnectorResult:
        ...


class DiscoveryConnector(BaseConnector):
    """
    Provider speaking the discovery-job protocol: ``create``, ``get_status``
    and ``list_items``, plus one adapter from its native item shape.
    """

    operations = ("create", "get_status", "list_items")

    @abstractmethod
    def to_candidate(self, item: Dict[str, Any]) -> Any:
        ...
