# prospect_intel/services/connectors/exa_websets.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .base import ConnectorResult, DiscoveryConnector
from ..discovery_models import DiscoveredCandidate, JobStatus, MatchStatus, SourceExcerpt
from ...core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

MIN_SEARCH_COUNT = 5
MAX_SEARCH_COUNT = 100

_STATUS_MAP: Dict[str, JobStatus] = {
    "queued": JobStatus.QUEUED,
    "pending": JobStatus.PENDING,
    "running": JobStatus.RUNNING,
    "paused": JobStatus.PAUSED,
    "completed": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
    "idle": JobStatus.IDLE,
}

_FINISHED_SEARCH_STATUSES = {"completed", "canceled", "cancelled"}


class ExaWebsetsConnector(DiscoveryConnector):
    """
    Exa Websets: asynchronous entity discovery.

    Operations (the discovery-job protocol):
      - ``create``:     {"objective", "match_conditions": [{"name","description"}], "limit"}
                        -> {"job_id", "status"}
      - ``get_status``: {"job_id"} -> {"job_id", "status", "generated_count", "matched_count"}
      - ``list_items``: {"job_id", "cursor", "limit"} -> {"items", "has_more", "next_cursor"}

    ``status`` values are already mapped to JobStatus values; items stay raw and
    go through ``to_candidate``.
    """

    name = "exa_websets"
    credential_setting = "EXA_API_KEY"
    breaker_preset = "discovery"

    def __init__(self, base_url: Optional[str] = None) -> None:
        self.base_url: str = (
            base_url
            or getattr(settings, "EXA_BASE_URL", None)
            or "https://api.exa.ai/websets/v0"
        ).rstrip("/")

    def _headers(self, api_key: Optional[str]) -> Dict[str, str]:
        return {
            "x-api-key": api_key or "",
            "Content-Type": "application/json",
            "accept": "application/json",
        }

    async def invoke(
        self,
        client: httpx.AsyncClient,
        operation: str,
        params: Dict[str, Any],
        credential: Optional[str] = None,
    ) -> ConnectorResult:
        headers = self._headers(credential)

        if operation == "create":
            resp = await client.post(
                f"{self.base_url}/websets",
                json=self.build_create_payload(params),
                headers=headers,
            )
            resp.raise_for_status()
            webset = resp.json() or {}
            return ConnectorResult(
                {"job_id": str(webset.get("id") or ""), "status": map_status(webset).value}
            )

        job_id = params["job_id"]

        if operation == "get_status":
            resp = await client.get(f"{self.base_url}/websets/{job_id}", headers=headers)
            resp.raise_for_status()
            webset = resp.json() or {}
            counts = _search_counts(webset)
            return ConnectorResult(
                {
                    "job_id": str(webset.get("id") or job_id),
                    "status": map_status(webset).value,
                    "generated_count": counts["analyzed"],
                    "matched_count": counts["found"],
                }
            )

        query: Dict[str, Any] = {"limit": int(params.get("limit") or 100)}
        if params.get("cursor"):
            query["cursor"] = params["cursor"]
        resp = await client.get(
            f"{self.base_url}/websets/{job_id}/items", params=query, headers=headers
        )
        resp.raise_for_status()
        body = resp.json() or {}
        return ConnectorResult(
            {
                "items": body.get("data") or [],
                "has_more": bool(body.get("hasMore")),
                "next_cursor": body.get("nextCursor"),
            }
        )

    def to_candidate(self, item: Dict[str, Any]) -> DiscoveredCandidate:
        return to_candidate(item)

    @staticmethod
    def build_create_payload(params: Dict[str, Any]) -> Dict[str, Any]:
        conditions = params.get("match_conditions") or []
        described = [
            {"description": f"{c['name']}: {c['description']}"} for c in conditions
        ]
        limit = int(params.get("limit") or 10)
        return {
            "search": {
                "query": params["objective"],
                "count": min(max(limit, MIN_SEARCH_COUNT), MAX_SEARCH_COUNT),
                "criteria": described,
            },
            "enrichments": [dict(d, format="text") for d in described],
        }


def _search_counts(webset: Dict[str, Any]) -> Dict[str, int]:
    totals = {"found": 0, "analyzed": 0}
    for search in webset.get("searches") or []:
        progress = search.get("progress") or {}
        for key in totals:
            try:
                totals[key] += int(progress.get(key) or 0)
            except (TypeError, ValueError):
                continue
    return totals


def map_status(webset: Dict[str, Any]) -> JobStatus:
    """
    Websets report ``idle`` once all searches have stopped, and never emit
    ``completed`` themselves; idle with every search finished counts as done.
    """
    raw = str(webset.get("status") or "").lower()
    status = _STATUS_MAP.get(raw)
    if status is None:
        logger.warning(
            "Unknown Exa webset status '%s'; treating as running",
            raw,
            extra={"provider": ExaWebsetsConnector.name},
        )
        return JobStatus.RUNNING

    if status == JobStatus.IDLE:
        searches = webset.get("searches") or []
        if searches and all(
            str(s.get("status") or "").lower() in _FINISHED_SEARCH_STATUSES for s in searches
        ):
            return JobStatus.COMPLETED
    return status


def _evaluation_outcome(evaluation: Dict[str, Any]) -> Optional[bool]:
    if isinstance(evaluation.get("passed"), bool):
        return evaluation["passed"]
    satisfied = str(evaluation.get("satisfied") or "").lower()
    if satisfied == "yes":
        return True
    if satisfied == "no":
        return False
    return None


def match_status_for(evaluations: List[Dict[str, Any]]) -> MatchStatus:
    outcomes = [_evaluation_outcome(e) for e in evaluations or []]
    if outcomes and all(o is True for o in outcomes):
        return MatchStatus.MATCHED
    if any(o is False for o in outcomes):
        return MatchStatus.DISCARDED
    return MatchStatus.GENERATED


def to_candidate(item: Dict[str, Any]) -> DiscoveredCandidate:
    """Map one webset item onto a DiscoveredCandidate (person > company > article > generic)."""
    props = item.get("properties") or {}
    person = props.get("person") or {}
    company = props.get("company") or {}
    article = props.get("article") or {}

    name = (
        person.get("name")
        or company.get("name")
        or article.get("title")
        or props.get("name")
        or props.get("title")
        or "Unknown"
    )
    description = (
        person.get("description")
        or person.get("position")
        or company.get("description")
        or article.get("author")
        or props.get("description")
    )
    url = person.get("url") or company.get("url") or article.get("url") or props.get("url") or ""

    sources: List[SourceExcerpt] = []
    for enrichment in item.get("enrichments") or []:
        for ref in enrichment.get("references") or []:
            snippet = ref.get("snippet")
            sources.append(
                SourceExcerpt(
                    url=ref.get("url") or "",
                    title=ref.get("title") or None,
                    excerpts=(snippet,) if snippet else (),
                    reasoning=enrichment.get("reasoning") or None,
                )
            )

    return DiscoveredCandidate(
        candidate_id=str(item.get("id") or ""),
        name=str(name),
        description=str(description) if description else None,
        url=str(url),
        match_status=match_status_for(item.get("evaluations") or []),
        sources=tuple(sources),
    )
