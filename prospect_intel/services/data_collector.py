# prospect_intel/services/data_collector.py
"""
Collect phase of a report build.

Fans out every provider lookup for one prospect concurrently through the
ResilientProviderClient and stores the results in a ProspectDataCache. Section
builders only ever read this cache; they never call providers themselves.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..schemas.prospect import ProspectRequest
from .connectors import ConnectorRegistry
from .connectors.county_assessor import resolve_county
from .discovery import DiscoveryJobCoordinator
from .discovery_models import DiscoveryResult
from .errors import ProviderError
from .provider_client import ResilientProviderClient

logger = logging.getLogger(__name__)

# cache key -> field whose presence means the provider found something
EVIDENCE_FIELDS: Dict[str, str] = {
    "sec_insider": "filings",
    "fec_contributions": "contributions",
    "propublica_990": "organizations",
    "wikidata": "entity_id",
    "county_assessor": "properties",
}


@dataclass(frozen=True)
class CollectionStep:
    key: str
    connector: str
    operation: str
    params: Dict[str, Any]


@dataclass
class CachedDataSource:
    provider: str
    data: Dict[str, Any]
    retrieved_at: datetime


@dataclass
class ProspectDataCache:
    prospect: ProspectRequest
    sources: Dict[str, CachedDataSource] = field(default_factory=dict)
    failures: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    discovery: Optional[DiscoveryResult] = None
    collected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def get(self, key: str) -> Dict[str, Any]:
        entry = self.sources.get(key)
        return entry.data if entry else {}

    def found(self, key: str) -> bool:
        data = self.get(key)
        evidence = EVIDENCE_FIELDS.get(key)
        if evidence is None:
            return bool(data)
        return bool(data.get(evidence))

    def retrieved_at(self, key: str) -> Optional[datetime]:
        entry = self.sources.get(key)
        return entry.retrieved_at if entry else None

    @property
    def sec_insider(self) -> Dict[str, Any]:
        return self.get("sec_insider")

    @property
    def fec_contributions(self) -> Dict[str, Any]:
        return self.get("fec_contributions")

    @property
    def propublica(self) -> Dict[str, Any]:
        return self.get("propublica_990")

    @property
    def wikidata(self) -> Dict[str, Any]:
        return self.get("wikidata")

    @property
    def county_assessor(self) -> Dict[str, Any]:
        return self.get("county_assessor")

    @property
    def has_any_data(self) -> bool:
        if any(self.found(key) for key in self.sources):
            return True
        return bool(self.discovery and self.discovery.matched)

    def summary(self) -> Dict[str, Any]:
        return {
            "tools_run": len(self.sources) + len(self.failures),
            "tools_succeeded": len(self.sources),
            "tools_failed": len(self.failures),
            "tools_skipped": list(self.skipped),
            "found": sorted(k for k in self.sources if self.found(k)),
            "failures": dict(self.failures),
        }


def plan_collection(prospect: ProspectRequest) -> List[CollectionStep]:
    steps = [
        CollectionStep("sec_insider", "sec_edgar", "insider_filings", {"person_name": prospect.name}),
        CollectionStep(
            "fec_contributions",
            "fec",
            "contributions",
            {"contributor_name": prospect.name, "state": prospect.state},
        ),
        CollectionStep(
            "propublica_990",
            "propublica",
            "search_organizations",
            {"query": prospect.name, "state": prospect.state},
        ),
        CollectionStep("wikidata", "wikidata", "person_profile", {"name": prospect.name}),
    ]

    county_key = resolve_county(prospect.county, prospect.state)
    if county_key:
        steps.append(
            CollectionStep(
                "county_assessor",
                "county_assessor",
                "search_owner",
                {"owner_name": prospect.name, "county_key": county_key},
            )
        )
    return steps


def discovery_request(prospect: ProspectRequest) -> Dict[str, Any]:
    where = ", ".join(p for p in (prospect.city, prospect.state) if p)
    located = f" in {where}" if where else ""
    return {
        "objective": f"Find public profiles, biographies and news coverage of {prospect.name}{located}",
        "match_conditions": [
            {
                "name": "identity",
                "description": f"The page is specifically about {prospect.name}{located}",
            }
        ],
        "limit": 10,
    }


async def collect_prospect_data(
    prospect: ProspectRequest,
    client: ResilientProviderClient,
    connectors: ConnectorRegistry,
    *,
    coordinator: Optional[DiscoveryJobCoordinator] = None,
    request_id: Optional[str] = None,
) -> ProspectDataCache:
    cache = ProspectDataCache(prospect=prospect)
    steps = plan_collection(prospect)

    if prospect.county and not any(s.key == "county_assessor" for s in steps):
        cache.skipped.append("county_assessor")
        logger.info(
            "No supported assessor dataset for %s, %s",
            prospect.county,
            prospect.state,
            extra={"request_id": request_id, "step": "county_assessor"},
        )

    async def _run_step(step: CollectionStep) -> Any:
        connector = connectors.get(step.connector)
        if connector is None:
            logger.warning(
                "No connector registered for '%s'; skipping step '%s'",
                step.connector,
                step.key,
                extra={"provider": step.connector, "step": step.key, "request_id": request_id},
            )
            return None
        try:
            return await client.call(connector, step.operation, step.params)
        except ProviderError as err:
            return err

    async def _run_discovery() -> Any:
        try:
            return await coordinator.run(**discovery_request(prospect))
        except ProviderError as err:
            return err

    tasks = [asyncio.create_task(_run_step(s)) for s in steps]
    discovery_task = asyncio.create_task(_run_discovery()) if coordinator is not None else None

    results = await asyncio.gather(*tasks)
    for step, outcome in zip(steps, results):
        if outcome is None:
            cache.skipped.append(step.key)
        elif isinstance(outcome, ProviderError):
            cache.failures[step.key] = outcome.to_dict()
            logger.warning(
                "Collection step '%s' degraded: %s",
                step.key,
                outcome.code.value,
                extra={"provider": step.connector, "step": step.key, "request_id": request_id},
            )
        else:
            cache.sources[step.key] = CachedDataSource(
                provider=step.connector,
                data=dict(outcome),
                retrieved_at=datetime.now(timezone.utc),
            )

    if discovery_task is not None:
        outcome = await discovery_task
        if isinstance(outcome, ProviderError):
            cache.failures["web_discovery"] = outcome.to_dict()
            logger.warning(
                "Discovery step degraded: %s",
                outcome.code.value,
                extra={"job_id": outcome.job_id, "step": "web_discovery", "request_id": request_id},
            )
        else:
            cache.discovery = outcome

    logger.info(
        "Collected prospect data",
        extra={"request_id": request_id, "step": "collect"},
    )
    return cache
