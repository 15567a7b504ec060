from __future__ import annotations

from typing import Dict, List, Optional

from .base import BaseConnector, ConnectorResult, DiscoveryConnector
from .county_assessor import CountyAssessorConnector
from .exa_websets import ExaWebsetsConnector
from .fec import FECConnector
from .propublica import ProPublicaConnector
from .sec_edgar import SECEdgarConnector
from .wikidata import WikidataConnector


class ConnectorRegistry:
    """
    Registry of provider connectors, instantiated once per process.

    Connectors are stateless apart from configuration; the resilient client
    and breaker registry carry all call state.
    """

    def __init__(self, connectors: Optional[List[BaseConnector]] = None) -> None:
        if connectors is None:
            connectors = [
                ExaWebsetsConnector(),
                FECConnector(),
                ProPublicaConnector(),
                WikidataConnector(),
                SECEdgarConnector(),
                CountyAssessorConnector(),
            ]
        self._connectors: Dict[str, BaseConnector] = {c.name: c for c in connectors}

    def get(self, name: str) -> Optional[BaseConnector]:
        return self._connectors.get(name)

    def __getitem__(self, name: str) -> BaseConnector:
        return self._connectors[name]

    def __contains__(self, name: object) -> bool:
        return name in self._connectors

    def names(self) -> List[str]:
        return list(self._connectors)

    def discovery(self) -> Optional[DiscoveryConnector]:
        for connector in self._connectors.values():
            if isinstance(connector, DiscoveryConnector):
                return connector
        return None


def get_connectors() -> ConnectorRegistry:
    return ConnectorRegistry()


__all__ = [
    "BaseConnector",
    "ConnectorRegistry",
    "ConnectorResult",
    "DiscoveryConnector",
    "get_connectors",
]
