# prospect_intel/services/source_tracker.py
"""
Claim ledger with per-claim provenance and confidence.

Every fact a report asserts is appended here as a SourcedClaim. Confidence is
derived from the rank of the claim's sources, which is fixed by the source's
SourceKind when the reference is created; estimates are always ``low``.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union


class SourceKind(str, enum.Enum):
    SEC_EDGAR = "sec_edgar"
    FEC = "fec"
    COUNTY_ASSESSOR = "county_assessor"
    STATE_REGISTRY = "state_registry"
    VOTER_REGISTRATION = "voter_registration"
    PROPUBLICA_990 = "propublica_990"
    IRS_990 = "irs_990"
    GLEIF = "gleif"
    OPENCORPORATES = "opencorporates"
    WIKIDATA = "wikidata"
    PROPERTY_PORTAL = "property_portal"
    LINKEDIN = "linkedin"
    COMPANY_WEBSITE = "company_website"
    NEWS_ARTICLE = "news_article"
    WEB_SEARCH = "web_search"
    DISCOVERY = "discovery"
    INDUSTRY_BENCHMARK = "industry_benchmark"
    CALCULATED_ESTIMATE = "calculated_estimate"
    CLIENT_PROVIDED = "client_provided"
    INFERRED = "inferred"


SOURCE_RANK: Dict[SourceKind, int] = {
    # official government records
    SourceKind.SEC_EDGAR: 100,
    SourceKind.FEC: 100,
    SourceKind.COUNTY_ASSESSOR: 95,
    SourceKind.STATE_REGISTRY: 90,
    SourceKind.VOTER_REGISTRATION: 90,
    # IRS data via intermediaries
    SourceKind.PROPUBLICA_990: 85,
    SourceKind.IRS_990: 85,
    # structured data APIs
    SourceKind.GLEIF: 80,
    SourceKind.OPENCORPORATES: 75,
    SourceKind.WIKIDATA: 70,
    # web sources
    SourceKind.PROPERTY_PORTAL: 60,
    SourceKind.LINKEDIN: 55,
    SourceKind.COMPANY_WEBSITE: 50,
    SourceKind.NEWS_ARTICLE: 45,
    SourceKind.WEB_SEARCH: 40,
    SourceKind.DISCOVERY: 40,
    # derived
    SourceKind.INDUSTRY_BENCHMARK: 35,
    SourceKind.CALCULATED_ESTIMATE: 30,
    SourceKind.CLIENT_PROVIDED: 30,
    SourceKind.INFERRED: 20,
}

# Legacy free-text names, checked exactly first and then as substrings (in order).
_NAME_TO_KIND: Tuple[Tuple[str, SourceKind], ...] = (
    ("SEC EDGAR", SourceKind.SEC_EDGAR),
    ("SEC.gov", SourceKind.SEC_EDGAR),
    ("FEC.gov", SourceKind.FEC),
    ("FEC", SourceKind.FEC),
    ("County Assessor", SourceKind.COUNTY_ASSESSOR),
    ("County Tax Records", SourceKind.COUNTY_ASSESSOR),
    ("Secretary of State", SourceKind.STATE_REGISTRY),
    ("Florida Sunbiz", SourceKind.STATE_REGISTRY),
    ("California bizfile", SourceKind.STATE_REGISTRY),
    ("Delaware ICIS", SourceKind.STATE_REGISTRY),
    ("New York DOS", SourceKind.STATE_REGISTRY),
    ("Voter Registration", SourceKind.VOTER_REGISTRATION),
    ("ProPublica", SourceKind.PROPUBLICA_990),
    ("IRS Form 990", SourceKind.IRS_990),
    ("GLEIF", SourceKind.GLEIF),
    ("OpenCorporates", SourceKind.OPENCORPORATES),
    ("Wikidata", SourceKind.WIKIDATA),
    ("Zillow", SourceKind.PROPERTY_PORTAL),
    ("Redfin", SourceKind.PROPERTY_PORTAL),
    ("Realtor.com", SourceKind.PROPERTY_PORTAL),
    ("LinkedIn", SourceKind.LINKEDIN),
    ("Company Website", SourceKind.COMPANY_WEBSITE),
    ("News Article", SourceKind.NEWS_ARTICLE),
    ("Web Search", SourceKind.WEB_SEARCH),
    ("Linkup", SourceKind.WEB_SEARCH),
    ("Exa Websets", SourceKind.DISCOVERY),
    ("Industry Benchmark", SourceKind.INDUSTRY_BENCHMARK),
    ("Calculated Estimate", SourceKind.CALCULATED_ESTIMATE),
    ("Inferred", SourceKind.INFERRED),
)


def source_kind_for_name(name: str) -> SourceKind:
    """Resolve a free-text source name; unknown names rank as a calculated estimate."""
    for key, kind in _NAME_TO_KIND:
        if name == key:
            return kind
    lowered = (name or "").lower()
    for key, kind in _NAME_TO_KIND:
        if key.lower() in lowered:
            return kind
    return SourceKind.CALCULATED_ESTIMATE


class DataType(str, enum.Enum):
    OFFICIAL_RECORD = "official_record"
    API_RESPONSE = "api_response"
    WEB_SEARCH = "web_search"
    ESTIMATE = "estimate"


class ConfidenceLevel(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very_low"


class SectionRating(str, enum.Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class DataQuality(str, enum.Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    LIMITED = "limited"


VERIFIED_RANK = 80
SECONDARY_RANK = 50


def tier_for_rank(rank: int) -> str:
    if rank >= VERIFIED_RANK:
        return "high"
    if rank >= SECONDARY_RANK:
        return "medium"
    return "low"


@dataclass(frozen=True)
class SourceReference:
    name: str
    url: str
    kind: SourceKind
    data_type: DataType
    retrieved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def rank(self) -> int:
        return SOURCE_RANK[self.kind]

    @property
    def confidence(self) -> str:
        return tier_for_rank(self.rank)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.name, self.url)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "confidence": self.confidence,
            "rank": self.rank,
            "data_type": self.data_type.value,
            "retrieved_at": self.retrieved_at.isoformat(),
        }


def create_source(
    name: str,
    url: str = "",
    data_type: DataType = DataType.WEB_SEARCH,
    kind: Optional[SourceKind] = None,
) -> SourceReference:
    return SourceReference(
        name=name,
        url=url or "",
        kind=kind or source_kind_for_name(name),
        data_type=data_type,
    )


class Sources:
    """Constructors for the source families the collectors use."""

    @staticmethod
    def sec(url: str = "") -> SourceReference:
        return create_source("SEC EDGAR", url, DataType.OFFICIAL_RECORD, SourceKind.SEC_EDGAR)

    @staticmethod
    def fec(url: str = "") -> SourceReference:
        return create_source("FEC.gov", url, DataType.OFFICIAL_RECORD, SourceKind.FEC)

    @staticmethod
    def propublica(url: str = "") -> SourceReference:
        return create_source("ProPublica 990", url, DataType.OFFICIAL_RECORD, SourceKind.PROPUBLICA_990)

    @staticmethod
    def county_assessor(county: str, url: str = "") -> SourceReference:
        label = county if county.lower().endswith("county") else f"{county} County"
        return create_source(
            f"{label} Assessor", url, DataType.OFFICIAL_RECORD, SourceKind.COUNTY_ASSESSOR
        )

    @staticmethod
    def wikidata(url: str = "") -> SourceReference:
        return create_source("Wikidata", url, DataType.API_RESPONSE, SourceKind.WIKIDATA)

    @staticmethod
    def web_search(url: str = "", name: str = "Web Search") -> SourceReference:
        return create_source(name, url, DataType.WEB_SEARCH, SourceKind.WEB_SEARCH)

    @staticmethod
    def discovery(url: str = "") -> SourceReference:
        return create_source("Exa Websets", url, DataType.WEB_SEARCH, SourceKind.DISCOVERY)

    @staticmethod
    def client_provided(name: str = "Client CRM Records") -> SourceReference:
        return create_source(name, "", DataType.API_RESPONSE, SourceKind.CLIENT_PROVIDED)

    @staticmethod
    def estimate() -> SourceReference:
        return create_source("Calculated Estimate", "", DataType.ESTIMATE, SourceKind.CALCULATED_ESTIMATE)


def confidence_from_sources(sources: Sequence[SourceReference]) -> ConfidenceLevel:
    if not sources:
        return ConfidenceLevel.VERY_LOW
    best = max(s.rank for s in sources)
    if best >= 80:
        return ConfidenceLevel.HIGH
    if best >= 50:
        return ConfidenceLevel.MEDIUM
    if best >= 30:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.VERY_LOW


@dataclass(frozen=True)
class SourcedClaim:
    section: str
    label: str
    value: Union[str, int, float]
    sources: Tuple[SourceReference, ...]
    is_verified: bool
    is_estimated: bool
    confidence: ConfidenceLevel
    methodology: Optional[str] = None

    def __post_init__(self) -> None:
        if self.is_estimated and not self.methodology:
            raise ValueError("estimated claims require a methodology")
        if self.is_estimated and self.is_verified:
            raise ValueError("a claim cannot be both verified and estimated")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section": self.section,
            "label": self.label,
            "value": self.value,
            "sources": [s.to_dict() for s in self.sources],
            "is_verified": self.is_verified,
            "is_estimated": self.is_estimated,
            "methodology": self.methodology,
            "confidence": self.confidence.value,
        }


@dataclass(frozen=True)
class SectionConfidence:
    section: str
    claim_count: int
    verified_count: int
    estimated_count: int
    unverified_count: int
    overall: SectionRating
    sources: Tuple[SourceReference, ...]


@dataclass(frozen=True)
class DataQualitySummary:
    quality: DataQuality
    verified_sources: int
    total_claims: int
    verified_claims: int
    estimated_claims: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quality": self.quality.value,
            "verified_sources": self.verified_sources,
            "total_claims": self.total_claims,
            "verified_claims": self.verified_claims,
            "estimated_claims": self.estimated_claims,
        }


def _unique_sources(sources: Iterable[SourceReference]) -> List[SourceReference]:
    seen = set()
    out: List[SourceReference] = []
    for s in sources:
        if s.key in seen:
            continue
        seen.add(s.key)
        out.append(s)
    return out


class SourceConfidenceTracker:
    """
    Append-only ledger of SourcedClaims for one report build.

    Writes are serialized so concurrently running section builders can share
    one tracker.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._claims: List[SourcedClaim] = []

    def _append(self, claim: SourcedClaim) -> SourcedClaim:
        with self._lock:
            self._claims.append(claim)
        return claim

    def add_verified_claim(
        self, section: str, label: str, value: Union[str, int, float], source: SourceReference
    ) -> SourcedClaim:
        return self._append(
            SourcedClaim(
                section=section,
                label=label,
                value=value,
                sources=(source,),
                is_verified=True,
                is_estimated=False,
                confidence=confidence_from_sources([source]),
            )
        )

    def add_estimated_claim(
        self,
        section: str,
        label: str,
        value: Union[str, int, float],
        methodology: str,
        sources: Sequence[SourceReference] = (),
    ) -> SourcedClaim:
        # The derivation, not the source, is the weak link.
        return self._append(
            SourcedClaim(
                section=section,
                label=label,
                value=value,
                sources=tuple(sources) or (Sources.estimate(),),
                is_verified=False,
                is_estimated=True,
                confidence=ConfidenceLevel.LOW,
                methodology=methodology,
            )
        )

    def add_unverified_claim(
        self,
        section: str,
        label: str,
        value: Union[str, int, float],
        sources: Sequence[SourceReference] = (),
    ) -> SourcedClaim:
        return self._append(
            SourcedClaim(
                section=section,
                label=label,
                value=value,
                sources=tuple(sources),
                is_verified=False,
                is_estimated=False,
                confidence=confidence_from_sources(sources),
            )
        )

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def claims(self, section: Optional[str] = None) -> List[SourcedClaim]:
        with self._lock:
            snapshot = list(self._claims)
        if section is None:
            return snapshot
        return [c for c in snapshot if c.section == section]

    def sections(self) -> List[str]:
        ordered: List[str] = []
        for claim in self.claims():
            if claim.section not in ordered:
                ordered.append(claim.section)
        return ordered

    def all_sources(self) -> List[SourceReference]:
        return _unique_sources(s for c in self.claims() for s in c.sources)

    def section_confidence(self, section: str) -> SectionConfidence:
        claims = self.claims(section)
        total = len(claims)
        verified = sum(1 for c in claims if c.is_verified)
        estimated = sum(1 for c in claims if c.is_estimated)

        if total == 0:
            rating = SectionRating.LOW
        elif verified / total >= 0.7:
            rating = SectionRating.HIGH
        elif verified / total >= 0.3 or estimated / total <= 0.5:
            rating = SectionRating.MEDIUM
        else:
            rating = SectionRating.LOW

        return SectionConfidence(
            section=section,
            claim_count=total,
            verified_count=verified,
            estimated_count=estimated,
            unverified_count=total - verified - estimated,
            overall=rating,
            sources=tuple(_unique_sources(s for c in claims for s in c.sources)),
        )

    def overall_confidence(self) -> SectionRating:
        claims = self.claims()
        if not claims:
            return SectionRating.LOW
        ratio = sum(1 for c in claims if c.is_verified) / len(claims)
        if ratio >= 0.6:
            return SectionRating.HIGH
        if ratio >= 0.3:
            return SectionRating.MEDIUM
        return SectionRating.LOW

    def confidence_explanation(self) -> str:
        claims = self.claims()
        verified = sum(1 for c in claims if c.is_verified)
        estimated = sum(1 for c in claims if c.is_estimated)
        rating = self.overall_confidence()

        if rating == SectionRating.HIGH:
            return (
                f"This report has HIGH confidence. {verified} of {len(claims)} claims are "
                "verified from official sources such as SEC EDGAR, FEC, and county property records."
            )
        if rating == SectionRating.MEDIUM:
            return (
                f"This report has MEDIUM confidence. {verified} of {len(claims)} claims are "
                f"verified from official sources. {estimated} claims are estimates based on "
                "available indicators."
            )
        return (
            "This report has LOW confidence. Limited official records were found. Many values "
            "are estimates or from web sources that could not be independently verified. "
            "Additional research recommended."
        )

    def data_quality_summary(self) -> DataQualitySummary:
        claims = self.claims()
        verified_claims = sum(1 for c in claims if c.is_verified)
        estimated_claims = sum(1 for c in claims if c.is_estimated)
        verified_sources = sum(1 for s in self.all_sources() if s.rank >= VERIFIED_RANK)
        ratio = verified_claims / len(claims) if claims else 0.0

        if verified_sources >= 3 and ratio >= 0.5:
            quality = DataQuality.COMPLETE
        elif verified_sources >= 1 or verified_claims > 0:
            quality = DataQuality.PARTIAL
        else:
            quality = DataQuality.LIMITED

        return DataQualitySummary(
            quality=quality,
            verified_sources=verified_sources,
            total_claims=len(claims),
            verified_claims=verified_claims,
            estimated_claims=estimated_claims,
        )

    # ------------------------------------------------------------------
    # rendering
    # ------------------------------------------------------------------

    @staticmethod
    def format_claim(claim: SourcedClaim) -> str:
        if claim.is_verified:
            marker = "[Verified]"
        elif claim.is_estimated:
            marker = f"[Estimated - {claim.methodology or 'See methodology'}]"
        elif claim.confidence in (ConfidenceLevel.LOW, ConfidenceLevel.VERY_LOW):
            marker = "[Unverified]"
        else:
            marker = "[Corroborated]"

        names = ", ".join(s.name for s in claim.sources)
        source_ref = f"[Source: {names}]" if names else ""
        return f"{claim.label}: {claim.value} {marker} {source_ref}".strip()

    def format_sources_section(self) -> str:
        sources = self.all_sources()
        primary = [s for s in sources if s.rank >= VERIFIED_RANK]
        secondary = [s for s in sources if SECONDARY_RANK <= s.rank < VERIFIED_RANK]
        web = [s for s in sources if s.rank < SECONDARY_RANK]

        lines: List[str] = [
            "## Sources and Research Methodology",
            "",
            "### Primary Sources Verified",
        ]
        if primary:
            for s in primary:
                lines.append(f"- **{s.name}**: Official government or institutional record")
                if s.url:
                    lines.append(f"  - URL: {s.url}")
        else:
            lines.append("- No primary records were found for this prospect.")

        if secondary:
            lines += ["", "### Secondary Sources (Corroborated)"]
            for s in secondary:
                lines.append(f"- **{s.name}**")
                if s.url:
                    lines.append(f"  - URL: {s.url}")

        if web:
            lines += ["", "### Web Sources (Lower Confidence)"]
            lines += [f"- {s.name}" for s in web]

        lines += ["", "### Information Corroboration"]
        for section in self.sections():
            conf = self.section_confidence(section)
            lines.append(
                f"- **{section}**: {conf.verified_count}/{conf.claim_count} claims verified "
                f"({conf.overall.value} confidence)"
            )

        lines += [
            "",
            f"### Research Confidence Level: {self.overall_confidence().value}",
            "",
            self.confidence_explanation(),
        ]
        return "\n".join(lines)
