# prospect_intel/services/connectors/sec_edgar.py
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from .base import BaseConnector, ConnectorResult
from ...core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

INSIDER_FORMS = "3,4,5"
_CIK_SUFFIX = re.compile(r"\s*\(CIK \d+\)\s*$")
_TICKER = re.compile(r"\s*\(([A-Z.\-, ]+)\)\s*$")


def _display_name(raw: str) -> Dict[str, Optional[str]]:
    """'Apple Inc. (AAPL) (CIK 0000320193)' -> {'name': 'Apple Inc.', 'ticker': 'AAPL'}"""
    name = _CIK_SUFFIX.sub("", raw or "").strip()
    ticker = None
    m = _TICKER.search(name)
    if m:
        ticker = m.group(1).split(",")[0].strip()
        name = name[: m.start()].strip()
    return {"name": name, "ticker": ticker}


def _is_reporting_person(name: str, person_tokens: List[str]) -> bool:
    upper = name.upper()
    return bool(person_tokens) and all(t in upper for t in person_tokens)


class SECEdgarConnector(BaseConnector):
    """
    SEC EDGAR full-text search for insider filings (Forms 3/4/5).

    Operation ``insider_filings`` params: {"person_name"}.

    Returns:
        {
          "filing_count": int,
          "companies": [{"name", "ticker"}],   # issuers the person filed about
          "filings": [{"form", "file_date", "company", "url"}],
        }
    """

    name = "sec_edgar"
    operations = ("insider_filings",)
    breaker_preset = "registry"

    def __init__(self) -> None:
        self.search_url: str = getattr(settings, "SEC_EFTS_URL", "https://efts.sec.gov/LATEST/search-index")
        self.user_agent: str = getattr(settings, "SEC_USER_AGENT", "")

    async def invoke(
        self,
        client: httpx.AsyncClient,
        operation: str,
        params: Dict[str, Any],
        credential: Optional[str] = None,
    ) -> ConnectorResult:
        person_name = (params.get("person_name") or "").strip()
        if not person_name:
            return ConnectorResult({})

        resp = await client.get(
            self.search_url,
            params={"q": f'"{person_name}"', "forms": INSIDER_FORMS},
            headers={"User-Agent": self.user_agent, "accept": "application/json"},
        )
        resp.raise_for_status()
        hits = ((resp.json() or {}).get("hits") or {}).get("hits") or []

        person_tokens = [t.upper() for t in re.split(r"\s+", person_name) if len(t) > 1]
        companies: Dict[str, Dict[str, Optional[str]]] = {}
        filings: List[Dict[str, Any]] = []

        for hit in hits:
            src = hit.get("_source") or {}
            issuer = None
            for raw in src.get("display_names") or []:
                parsed = _display_name(raw)
                if not parsed["name"] or _is_reporting_person(parsed["name"], person_tokens):
                    continue
                issuer = parsed
                companies.setdefault(parsed["name"].lower(), parsed)

            ciks = src.get("ciks") or []
            adsh = str(src.get("adsh") or "")
            url = None
            if ciks and adsh:
                url = (
                    f"https://www.sec.gov/Archives/edgar/data/{str(ciks[0]).lstrip('0')}/"
                    f"{adsh.replace('-', '')}/"
                )
            filings.append(
                {
                    "form": src.get("form") or src.get("file_type"),
                    "file_date": src.get("file_date"),
                    "company": issuer["name"] if issuer else None,
                    "url": url,
                }
            )

        return ConnectorResult(
            {
                "filing_count": len(filings),
                "companies": list(companies.values()),
                "filings": filings,
            }
        )
