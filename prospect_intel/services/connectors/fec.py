# prospect_intel/services/connectors/fec.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .base import BaseConnector, ConnectorResult
from ...core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class FECConnector(BaseConnector):
    """
    OpenFEC individual contributions (Schedule A).

    Operation ``contributions`` params: {"contributor_name", "state"?}.

    Returns:
        {
          "contributions": [{"committee", "amount", "date", "employer",
                             "occupation", "city", "state", "url"}],
          "total_amount": float,
          "contribution_count": int,
          "recipients": [committee names, de-duplicated],
          "party_counts": {"DEM": 3, ...},
        }
    """

    name = "fec"
    operations = ("contributions",)
    credential_setting = "FEC_API_KEY"
    breaker_preset = "registry"

    def __init__(self) -> None:
        self.base_url: str = getattr(settings, "FEC_BASE_URL", "https://api.open.fec.gov/v1").rstrip("/")
        self.max_results: int = int(getattr(settings, "FEC_MAX_RESULTS", 100) or 100)

    async def invoke(
        self,
        client: httpx.AsyncClient,
        operation: str,
        params: Dict[str, Any],
        credential: Optional[str] = None,
    ) -> ConnectorResult:
        name = (params.get("contributor_name") or "").strip()
        if not name:
            return ConnectorResult({})

        query: Dict[str, Any] = {
            "api_key": credential,
            "contributor_name": name,
            "per_page": self.max_results,
            "sort": "-contribution_receipt_date",
            "is_individual": "true",
        }
        if params.get("state"):
            query["contributor_state"] = str(params["state"]).upper()

        resp = await client.get(f"{self.base_url}/schedules/schedule_a/", params=query)
        resp.raise_for_status()
        rows = (resp.json() or {}).get("results") or []

        contributions: List[Dict[str, Any]] = []
        party_counts: Dict[str, int] = {}
        for row in rows:
            committee = row.get("committee") or {}
            party = committee.get("party")
            if party:
                party_counts[party] = party_counts.get(party, 0) + 1
            contributions.append(
                {
                    "committee": row.get("committee_name") or committee.get("name"),
                    "amount": float(row.get("contribution_receipt_amount") or 0.0),
                    "date": row.get("contribution_receipt_date"),
                    "employer": row.get("contributor_employer"),
                    "occupation": row.get("contributor_occupation"),
                    "city": row.get("contributor_city"),
                    "state": row.get("contributor_state"),
                    "party": party,
                    "url": row.get("pdf_url") or "https://www.fec.gov/data/receipts/individual-contributions/",
                }
            )

        recipients: List[str] = []
        for c in contributions:
            if c["committee"] and c["committee"] not in recipients:
                recipients.append(c["committee"])

        return ConnectorResult(
            {
                "contributions": contributions,
                "total_amount": round(sum(c["amount"] for c in contributions), 2),
                "contribution_count": len(contributions),
                "recipients": recipients,
                "party_counts": party_counts,
            }
        )
