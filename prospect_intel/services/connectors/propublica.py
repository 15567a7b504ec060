# prospect_intel/services/connectors/propublica.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .base import BaseConnector, ConnectorResult
from ...core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

ORGANIZATION_URL = "https://projects.propublica.org/nonprofits/organizations/{ein}"


class ProPublicaConnector(BaseConnector):
    """
    ProPublica Nonprofit Explorer search (IRS Form 990 filers).

    Operation ``search_organizations`` params: {"query", "state"?}.
    A 404 from the search endpoint means "no organizations", not an error.
    """

    name = "propublica"
    operations = ("search_organizations",)
    breaker_preset = "registry"

    def __init__(self) -> None:
        self.base_url: str = getattr(
            settings,
            "PROPUBLICA_BASE_URL",
            "https://projects.propublica.org/nonprofits/api/v2",
        ).rstrip("/")
        self.max_results: int = int(getattr(settings, "PROPUBLICA_MAX_RESULTS", 10) or 10)

    async def invoke(
        self,
        client: httpx.AsyncClient,
        operation: str,
        params: Dict[str, Any],
        credential: Optional[str] = None,
    ) -> ConnectorResult:
        query = (params.get("query") or "").strip()
        if not query:
            return ConnectorResult({})

        search: Dict[str, Any] = {"q": query}
        if params.get("state"):
            search["state[id]"] = str(params["state"]).upper()

        resp = await client.get(f"{self.base_url}/search.json", params=search)
        if resp.status_code == 404:
            logger.debug("ProPublica returned 404 for %r (no results)", query, extra={"provider": self.name})
            return ConnectorResult({"organizations": [], "total_results": 0})
        resp.raise_for_status()
        body = resp.json() or {}

        organizations = []
        for org in (body.get("organizations") or [])[: self.max_results]:
            ein = org.get("strein") or org.get("ein")
            organizations.append(
                {
                    "ein": str(ein) if ein is not None else None,
                    "name": org.get("name"),
                    "city": org.get("city"),
                    "state": org.get("state"),
                    "ntee_code": org.get("ntee_code"),
                    "url": ORGANIZATION_URL.format(ein=org.get("ein")) if org.get("ein") else None,
                }
            )

        return ConnectorResult(
            {
                "organizations": organizations,
                "total_results": int(body.get("total_results") or len(organizations)),
            }
        )
