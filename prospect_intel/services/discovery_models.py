"""
Canonical records for long-running discovery jobs.

Provider adapters translate their native payloads into these types; nothing
downstream of an adapter sees a provider-specific shape.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    IDLE = "idle"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class MatchStatus(str, enum.Enum):
    GENERATED = "generated"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class MatchCondition:
    name: str
    description: str


@dataclass(frozen=True)
class SourceExcerpt:
    url: str
    title: Optional[str] = None
    excerpts: Tuple[str, ...] = ()
    reasoning: Optional[str] = None


@dataclass(frozen=True)
class DiscoveredCandidate:
    candidate_id: str
    name: str
    description: Optional[str]
    url: str
    match_status: MatchStatus
    sources: Tuple[SourceExcerpt, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["match_status"] = self.match_status.value
        return out


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DiscoveryJob:
    """
    A provider-side search. Only polling reads mutate ``status``, timestamps
    and metrics.
    """

    job_id: str
    objective: str
    match_conditions: Tuple[MatchCondition, ...]
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    generated_count: int = 0
    matched_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "objective": self.objective,
            "match_conditions": [asdict(c) for c in self.match_conditions],
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "generated_count": self.generated_count,
            "matched_count": self.matched_count,
        }


@dataclass(frozen=True)
class DiscoveryEvent:
    type: str  # "status" | "candidate_matched"
    job_id: str
    status: Optional[JobStatus] = None
    candidate: Optional[DiscoveredCandidate] = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class DiscoveryResult:
    job: DiscoveryJob
    candidates: List[DiscoveredCandidate]
    duration_seconds: float

    @property
    def matched(self) -> List[DiscoveredCandidate]:
        return [c for c in self.candidates if c.match_status == MatchStatus.MATCHED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job.to_dict(),
            "candidates": [c.to_dict() for c in self.candidates],
            "matched_count": len(self.matched),
            "duration_seconds": round(self.duration_seconds, 3),
        }
