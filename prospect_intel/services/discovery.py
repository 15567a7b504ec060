# prospect_intel/services/discovery.py
"""
Discovery job coordinator.

Drives the create -> poll -> list-items protocol of an asynchronous discovery
provider through the ResilientProviderClient, so every call respects the
provider's circuit breaker and timeout.

Progress callbacks are advisory: the authoritative result set is always the
paginated ``fetch_candidates`` read after the job completes.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ..core.config import get_settings
from .connectors.base import DiscoveryConnector
from .discovery_models import (
    DiscoveredCandidate,
    DiscoveryEvent,
    DiscoveryJob,
    DiscoveryResult,
    JobStatus,
    MatchCondition,
    MatchStatus,
)
from .errors import ErrorCode, ProviderError
from .provider_client import ResilientProviderClient

logger = logging.getLogger(__name__)

MAX_OBJECTIVE_LEN = 2000
MAX_MATCH_CONDITIONS = 10

ProgressCallback = Callable[[DiscoveryEvent], Union[None, Awaitable[None]]]


class DiscoveryValidationError(ValueError):
    """Objective or match conditions rejected before submission."""


def normalize_conditions(
    match_conditions: Sequence[Union[MatchCondition, Dict[str, Any]]],
) -> List[MatchCondition]:
    out: List[MatchCondition] = []
    for cond in match_conditions:
        if isinstance(cond, MatchCondition):
            name, description = cond.name, cond.description
        else:
            name = str(cond.get("name") or "")
            description = str(cond.get("description") or "")
        name, description = name.strip(), description.strip()
        if not name or not description:
            raise DiscoveryValidationError("Each match condition needs a name and a description")
        out.append(MatchCondition(name=name, description=description))
    return out


def validate_request(
    objective: str,
    match_conditions: Sequence[Union[MatchCondition, Dict[str, Any]]],
    limit: int,
) -> List[MatchCondition]:
    objective = (objective or "").strip()
    if not objective:
        raise DiscoveryValidationError("objective must not be empty")
    if len(objective) > MAX_OBJECTIVE_LEN:
        raise DiscoveryValidationError(
            f"objective must be at most {MAX_OBJECTIVE_LEN} characters"
        )
    if not match_conditions:
        raise DiscoveryValidationError("at least one match condition is required")
    if len(match_conditions) > MAX_MATCH_CONDITIONS:
        raise DiscoveryValidationError(
            f"at most {MAX_MATCH_CONDITIONS} match conditions are supported"
        )
    if limit < 1:
        raise DiscoveryValidationError("limit must be positive")
    return normalize_conditions(match_conditions)


class DiscoveryJobCoordinator:
    def __init__(
        self,
        client: ResilientProviderClient,
        connector: DiscoveryConnector,
        *,
        poll_interval_seconds: Optional[float] = None,
        max_wait_seconds: Optional[float] = None,
        page_size: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.client = client
        self.connector = connector
        self.poll_interval_seconds = float(
            poll_interval_seconds
            if poll_interval_seconds is not None
            else settings.DISCOVERY_POLL_INTERVAL_SECONDS
        )
        self.max_wait_seconds = float(
            max_wait_seconds if max_wait_seconds is not None else settings.DISCOVERY_MAX_WAIT_SECONDS
        )
        self.page_size = int(page_size or settings.DISCOVERY_PAGE_SIZE)

    # ------------------------------------------------------------------
    # single protocol steps
    # ------------------------------------------------------------------

    async def submit(
        self,
        objective: str,
        match_conditions: Sequence[Union[MatchCondition, Dict[str, Any]]],
        limit: int = 10,
    ) -> DiscoveryJob:
        conditions = validate_request(objective, match_conditions, limit)
        objective = objective.strip()

        created = await self.client.call(
            self.connector,
            "create",
            {
                "objective": objective,
                "match_conditions": [
                    {"name": c.name, "description": c.description} for c in conditions
                ],
                "limit": limit,
            },
        )
        job_id = str(created.get("job_id") or "")
        if not job_id:
            raise ProviderError(
                f"{self.connector.name} did not return a job id",
                ErrorCode.UNKNOWN_ERROR,
                provider=self.connector.name,
            )

        job = DiscoveryJob(
            job_id=job_id,
            objective=objective,
            match_conditions=tuple(conditions),
            status=_coerce_status(created.get("status"), JobStatus.QUEUED),
        )
        logger.info(
            "Discovery job submitted",
            extra={"job_id": job_id, "provider": self.connector.name, "step": "submit"},
        )
        return job

    async def refresh(self, job: DiscoveryJob) -> DiscoveryJob:
        """One status read; the only place job status changes."""
        body = await self.client.call(self.connector, "get_status", {"job_id": job.job_id})
        job.status = _coerce_status(body.get("status"), job.status)
        job.updated_at = datetime.now(timezone.utc)
        if body.get("generated_count") is not None:
            job.generated_count = int(body["generated_count"])
        if body.get("matched_count") is not None:
            job.matched_count = int(body["matched_count"])
        return job

    async def fetch_candidates(self, job_id: str) -> List[DiscoveredCandidate]:
        candidates: List[DiscoveredCandidate] = []
        cursor: Optional[str] = None
        seen_cursors = set()

        while True:
            page = await self.client.call(
                self.connector,
                "list_items",
                {"job_id": job_id, "cursor": cursor, "limit": self.page_size},
            )
            for item in page.get("items") or []:
                candidates.append(self.connector.to_candidate(item))

            if not page.get("has_more"):
                break
            next_cursor = page.get("next_cursor")
            if not next_cursor or next_cursor in seen_cursors:
                logger.warning(
                    "Discovery pagination reported more pages without a new cursor; stopping",
                    extra={"job_id": job_id, "provider": self.connector.name, "step": "list_items"},
                )
                break
            seen_cursors.add(next_cursor)
            cursor = next_cursor

        return candidates

    # ------------------------------------------------------------------
    # blocking flows
    # ------------------------------------------------------------------

    async def wait_for_completion(
        self,
        job: DiscoveryJob,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DiscoveryJob:
        started = time.monotonic()

        while True:
            await self.refresh(job)
            await _emit(on_progress, DiscoveryEvent(type="status", job_id=job.job_id, status=job.status))

            if job.status == JobStatus.COMPLETED:
                return job
            if job.status == JobStatus.FAILED:
                raise ProviderError(
                    f"Discovery job {job.job_id} failed",
                    ErrorCode.RUN_FAILED,
                    provider=self.connector.name,
                    job_id=job.job_id,
                )

            elapsed = time.monotonic() - started
            if elapsed + self.poll_interval_seconds > self.max_wait_seconds:
                logger.warning(
                    "Discovery job still %s after %.1fs; giving up",
                    job.status.value,
                    elapsed,
                    extra={"job_id": job.job_id, "provider": self.connector.name, "step": "poll"},
                )
                raise ProviderError(
                    f"Discovery job {job.job_id} did not complete within "
                    f"{self.max_wait_seconds:g}s",
                    ErrorCode.TIMEOUT,
                    provider=self.connector.name,
                    job_id=job.job_id,
                    retryable=True,
                )
            await asyncio.sleep(self.poll_interval_seconds)

    async def run(
        self,
        objective: str,
        match_conditions: Sequence[Union[MatchCondition, Dict[str, Any]]],
        limit: int = 10,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DiscoveryResult:
        started = time.monotonic()
        job = await self.submit(objective, match_conditions, limit)
        await self.wait_for_completion(job, on_progress)

        candidates = await self.fetch_candidates(job.job_id)
        job.generated_count = len(candidates)
        job.matched_count = sum(1 for c in candidates if c.match_status == MatchStatus.MATCHED)

        for candidate in candidates:
            if candidate.match_status == MatchStatus.MATCHED:
                await _emit(
                    on_progress,
                    DiscoveryEvent(type="candidate_matched", job_id=job.job_id, candidate=candidate),
                )

        logger.info(
            "Discovery job finished: %d candidates, %d matched",
            job.generated_count,
            job.matched_count,
            extra={"job_id": job.job_id, "provider": self.connector.name, "step": "results"},
        )
        return DiscoveryResult(
            job=job,
            candidates=candidates,
            duration_seconds=time.monotonic() - started,
        )


def _coerce_status(raw: Any, fallback: JobStatus) -> JobStatus:
    if isinstance(raw, JobStatus):
        return raw
    try:
        return JobStatus(str(raw).lower())
    except ValueError:
        logger.warning("Ignoring unknown discovery status %r", raw)
        return fallback


async def _emit(callback: Optional[ProgressCallback], event: DiscoveryEvent) -> None:
    if callback is None:
        return
    try:
        maybe = callback(event)
        if inspect.isawaitable(maybe):
            await maybe
    except Exception:
        logger.exception(
            "Discovery progress callback failed",
            extra={"job_id": event.job_id, "step": f"event:{event.type}"},
        )


# ---------------------------------------------------------------------------
# Preset searches
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DiscoveryTemplate:
    key: str
    objective: str
    match_conditions: tuple
    match_limit: int

    def for_location(self, location: Optional[str] = None) -> Dict[str, Any]:
        suffix = f" in {location.strip()}" if location and location.strip() else ""
        return {
            "objective": f"{self.objective}{suffix}",
            "match_conditions": list(self.match_conditions),
            "limit": self.match_limit,
        }


DISCOVERY_TEMPLATES: Dict[str, DiscoveryTemplate] = {
    t.key: t
    for t in (
        DiscoveryTemplate(
            key="tech_philanthropists",
            objective="Find technology entrepreneurs and executives who are active philanthropists",
            match_conditions=(
                MatchCondition(
                    "tech_background",
                    "Must be a founder, CEO, or senior executive at a technology company "
                    "(software, internet, AI, biotech, etc.)",
                ),
                MatchCondition(
                    "philanthropic_activity",
                    "Must have demonstrated philanthropic activity: founded a foundation, sits on "
                    "nonprofit boards, or made significant charitable gifts ($100K+)",
                ),
                MatchCondition(
                    "wealth_indicator",
                    "Must have indicators of significant wealth: successful exit, public company "
                    "executive, or verified high net worth",
                ),
            ),
            match_limit=20,
        ),
        DiscoveryTemplate(
            key="real_estate_investors",
            objective="Find real estate investors and developers who support nonprofits",
            match_conditions=(
                MatchCondition(
                    "real_estate",
                    "Must own or have developed significant commercial or residential real estate "
                    "($5M+ portfolio)",
                ),
                MatchCondition(
                    "nonprofit_connection",
                    "Must have connection to nonprofits: board membership, foundation involvement, "
                    "or documented charitable giving",
                ),
            ),
            match_limit=15,
        ),
        DiscoveryTemplate(
            key="healthcare_executives",
            objective="Find healthcare industry executives who are philanthropic donors",
            match_conditions=(
                MatchCondition(
                    "healthcare_role",
                    "Must be a senior executive (C-suite, VP+, or founder) at a healthcare company "
                    "(hospitals, biotech, pharma, medical devices, healthcare services)",
                ),
                MatchCondition(
                    "giving_history",
                    "Must have documented charitable giving or foundation involvement",
                ),
            ),
            match_limit=15,
        ),
        DiscoveryTemplate(
            key="finance_philanthropists",
            objective="Find finance and investment professionals who are active in philanthropy",
            match_conditions=(
                MatchCondition(
                    "finance_background",
                    "Must work or have worked in finance: hedge funds, private equity, venture "
                    "capital, investment banking, or asset management",
                ),
                MatchCondition(
                    "philanthropic_activity",
                    "Must be involved in philanthropy: personal foundation, donor-advised fund, "
                    "major gifts, or nonprofit board service",
                ),
            ),
            match_limit=20,
        ),
    )
}
