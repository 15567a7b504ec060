# prospect_intel/services/connectors/wikidata.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .base import BaseConnector, ConnectorResult
from ...core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

USER_AGENT = "prospect-intel/1.0 (donor research)"

# Wikidata property ids
P_DATE_OF_BIRTH = "P569"
P_EDUCATED_AT = "P69"
P_EMPLOYER = "P108"
P_OCCUPATION = "P106"


def _claim_item_ids(claims: Dict[str, Any], prop: str) -> List[str]:
    ids: List[str] = []
    for claim in claims.get(prop) or []:
        value = ((claim.get("mainsnak") or {}).get("datavalue") or {}).get("value")
        if isinstance(value, dict) and value.get("id"):
            ids.append(value["id"])
    return ids


def _birth_year(claims: Dict[str, Any]) -> Optional[int]:
    for claim in claims.get(P_DATE_OF_BIRTH) or []:
        value = ((claim.get("mainsnak") or {}).get("datavalue") or {}).get("value") or {}
        raw = str(value.get("time") or "")
        # "+1955-10-28T00:00:00Z"
        digits = raw.lstrip("+").split("-", 1)[0]
        if digits.isdigit():
            return int(digits)
    return None


class WikidataConnector(BaseConnector):
    """
    Wikidata person lookup.

    Operation ``person_profile`` params: {"name"}; resolves the best search hit
    and returns birth year, education, employers and occupations as labels.
    """

    name = "wikidata"
    operations = ("person_profile",)
    breaker_preset = "search"

    def __init__(self) -> None:
        self.api_url: str = getattr(settings, "WIKIDATA_API_URL", "https://www.wikidata.org/w/api.php")

    async def _get(self, client: httpx.AsyncClient, params: Dict[str, Any]) -> Dict[str, Any]:
        resp = await client.get(
            self.api_url,
            params={**params, "format": "json"},
            headers={"User-Agent": USER_AGENT, "accept": "application/json"},
        )
        resp.raise_for_status()
        return resp.json() or {}

    async def _labels(self, client: httpx.AsyncClient, ids: List[str]) -> Dict[str, str]:
        if not ids:
            return {}
        body = await self._get(
            client,
            {
                "action": "wbgetentities",
                "ids": "|".join(ids[:50]),
                "props": "labels",
                "languages": "en",
            },
        )
        labels: Dict[str, str] = {}
        for qid, entity in (body.get("entities") or {}).items():
            label = ((entity.get("labels") or {}).get("en") or {}).get("value")
            if label:
                labels[qid] = label
        return labels

    async def invoke(
        self,
        client: httpx.AsyncClient,
        operation: str,
        params: Dict[str, Any],
        credential: Optional[str] = None,
    ) -> ConnectorResult:
        name = (params.get("name") or "").strip()
        if not name:
            return ConnectorResult({})

        search = await self._get(
            client,
            {
                "action": "wbsearchentities",
                "search": name,
                "language": "en",
                "type": "item",
                "limit": 5,
            },
        )
        hits = search.get("search") or []
        if not hits:
            return ConnectorResult({})
        qid = hits[0].get("id")

        body = await self._get(
            client,
            {
                "action": "wbgetentities",
                "ids": qid,
                "props": "claims|labels|descriptions",
                "languages": "en",
            },
        )
        entity = (body.get("entities") or {}).get(qid) or {}
        claims = entity.get("claims") or {}

        education_ids = _claim_item_ids(claims, P_EDUCATED_AT)
        employer_ids = _claim_item_ids(claims, P_EMPLOYER)
        occupation_ids = _claim_item_ids(claims, P_OCCUPATION)
        labels = await self._labels(client, education_ids + employer_ids + occupation_ids)

        return ConnectorResult(
            {
                "entity_id": qid,
                "label": ((entity.get("labels") or {}).get("en") or {}).get("value") or hits[0].get("label"),
                "description": ((entity.get("descriptions") or {}).get("en") or {}).get("value")
                or hits[0].get("description"),
                "url": f"https://www.wikidata.org/wiki/{qid}",
                "birth_year": _birth_year(claims),
                "education": [labels[i] for i in education_ids if i in labels],
                "employers": [labels[i] for i in employer_ids if i in labels],
                "occupations": [labels[i] for i in occupation_ids if i in labels],
            }
        )
