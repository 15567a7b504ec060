# prospect_intel/services/report.py
"""
Report synthesis (narrate phase).

Each section builder is a pure function of (ProspectDataCache, tracker): it
reads collected data, registers every asserted fact as a claim, and returns
the section text with its own sources and confidence. Builders never touch
providers; ``build_prospect_report`` runs the collect phase first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..core.config import get_settings
from ..schemas.prospect import CapacityInput
from .capacity import (
    CapacityConstants,
    GivingCapacityResult,
    calculate_giving_capacity,
    format_capacity_markdown,
    format_currency,
    load_constants,
)
from .connectors import ConnectorRegistry
from .data_collector import ProspectDataCache, collect_prospect_data
from .discovery import DiscoveryJobCoordinator
from .provider_client import ResilientProviderClient
from .source_tracker import (
    DataQuality,
    DataQualitySummary,
    SectionRating,
    SourceConfidenceTracker,
    SourceReference,
    Sources,
)

logger = logging.getLogger(__name__)

NOT_FOUND = "Not found in public records"

PERSONAL = "Personal Background"
PROFESSIONAL = "Professional Background"
REAL_ESTATE = "Real Estate"
PHILANTHROPY = "Philanthropic History"
CAPACITY = "Giving Capacity"

GENEROSITY_ORG_THRESHOLD = 3
RECENT_GIVING_YEARS = 5


@dataclass
class ReportSection:
    title: str
    content: str
    sources: List[SourceReference] = field(default_factory=list)
    confidence: SectionRating = SectionRating.LOW

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "content": self.content,
            "sources": [s.to_dict() for s in self.sources],
            "confidence": self.confidence.value,
        }


@dataclass(frozen=True)
class ReportContext:
    organization_name: str
    report_date: date


@dataclass
class GeneratedReport:
    prospect_name: str
    sections: List[ReportSection]
    tracker: SourceConfidenceTracker
    data_quality: DataQualitySummary
    capacity: Optional[GivingCapacityResult]
    insufficient_data: bool = False
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # collect-phase summary (succeeded, failed, skipped) when built from live providers
    collection: Optional[Dict[str, Any]] = None

    @property
    def markdown(self) -> str:
        return "\n\n---\n\n".join(s.content for s in self.sections)

    def summary(self) -> Dict[str, Any]:
        cap = self.capacity
        return {
            "prospect_name": self.prospect_name,
            "recommended_capacity": cap.recommended if cap else None,
            "capacity_rating": cap.rating if cap else None,
            "capacity_range": cap.range_description if cap else None,
            "data_quality": self.data_quality.quality.value,
            "overall_confidence": self.tracker.overall_confidence().value,
            "insufficient_data": self.insufficient_data,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary(),
            "sections": [s.to_dict() for s in self.sections],
            "claims": [c.to_dict() for c in self.tracker.claims()],
            "data_quality": self.data_quality.to_dict(),
            "capacity": self.capacity.to_dict() if self.capacity else None,
            "markdown": self.markdown,
            "generated_at": self.generated_at.isoformat(),
            "collection": self.collection,
        }


def _section(title: str, lines: List[str], tracker: SourceConfidenceTracker, claim_section: str) -> ReportSection:
    conf = tracker.section_confidence(claim_section)
    return ReportSection(
        title=title,
        content="\n".join(lines).rstrip(),
        sources=list(conf.sources),
        confidence=conf.overall,
    )


def _claim_line(tracker: SourceConfidenceTracker, claim) -> str:
    return f"- {tracker.format_claim(claim)}"


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


def age_from_birth_year(birth_year: Any, today: date) -> Optional[int]:
    if not birth_year:
        return None
    return max(0, today.year - int(birth_year))


def derived_age(data: ProspectDataCache, today: date) -> Optional[int]:
    """CRM age when supplied, else the age implied by the Wikidata birth year."""
    if data.prospect.age is not None:
        return data.prospect.age
    return age_from_birth_year(data.wikidata.get("birth_year"), today)


def giving_organizations(data: ProspectDataCache) -> List[str]:
    orgs = list(data.fec_contributions.get("recipients") or [])
    for org in data.propublica.get("organizations") or []:
        if org.get("name") and org["name"] not in orgs:
            orgs.append(org["name"])
    return orgs


def demonstrated_generosity(data: ProspectDataCache) -> Optional[bool]:
    """Gives to 3+ organizations; unknown unless both giving sources were searched."""
    if data.prospect.has_demonstrated_generosity is not None:
        return data.prospect.has_demonstrated_generosity
    orgs = giving_organizations(data)
    if len(orgs) >= GENEROSITY_ORG_THRESHOLD:
        return True
    if "fec_contributions" in data.sources and "propublica_990" in data.sources:
        return False
    return None


def capacity_signals(data: ProspectDataCache, today: date) -> CapacityInput:
    p = data.prospect
    real_estate_value = None
    property_count = None
    if "county_assessor" in data.sources:
        assessor = data.county_assessor
        property_count = int(assessor.get("property_count") or 0)
        real_estate_value = float(assessor.get("total_assessed_value") or 0.0)

    return CapacityInput(
        real_estate_value=real_estate_value,
        property_count=property_count,
        estimated_salary=p.estimated_salary,
        age=derived_age(data, today),
        lifetime_giving=p.lifetime_giving or 0.0,
        recent_giving=p.recent_giving,
        business_revenue=p.business_revenue,
        has_business_ownership=bool(p.has_business_ownership),
        has_sec_filings=bool(data.sec_insider.get("filing_count")),
        is_entrepreneur=p.is_entrepreneur,
        is_multiple_business_owner=bool(p.is_multiple_business_owner),
        has_demonstrated_generosity=demonstrated_generosity(data),
        largest_known_gift=p.largest_known_gift,
    )


# ---------------------------------------------------------------------------
# Section builders
# ---------------------------------------------------------------------------


def build_header(data: ProspectDataCache, context: ReportContext) -> ReportSection:
    p = data.prospect
    address = ", ".join(x for x in (p.address, p.city, p.state) if x)
    lines = [f"# Donor Profile: {p.name}", "", f"**Report Date:** {context.report_date.isoformat()}"]
    if address:
        lines.append(f"**Address:** {address}")
    lines.append(f"**Prepared For:** {context.organization_name}")
    return ReportSection(title="Header", content="\n".join(lines), confidence=SectionRating.HIGH)


def build_personal_background(
    data: ProspectDataCache, tracker: SourceConfidenceTracker, context: ReportContext
) -> ReportSection:
    p = data.prospect
    lines = ["## Personal Background", "", "### Full Name", p.name, ""]

    if data.wikidata.get("description"):
        lines += [f"*{data.wikidata['description']}*", ""]

    lines.append("### Age")
    birth_year = data.wikidata.get("birth_year")
    if birth_year:
        age = age_from_birth_year(birth_year, context.report_date)
        claim = tracker.add_verified_claim(
            PERSONAL, "Age", f"{age} (born {birth_year})", Sources.wikidata(data.wikidata.get("url") or "")
        )
        if p.age is not None and p.age != age:
            lines.append(_claim_line(tracker, claim))
            claim = tracker.add_unverified_claim(
                PERSONAL, "Age (client records)", p.age, [Sources.client_provided()]
            )
    elif p.age is not None:
        claim = tracker.add_unverified_claim(PERSONAL, "Age", p.age, [Sources.client_provided()])
    else:
        claim = tracker.add_unverified_claim(PERSONAL, "Age", NOT_FOUND)
    lines += [_claim_line(tracker, claim), ""]

    if p.address or p.city:
        lines.append("### Residence")
        lines.append(", ".join(x for x in (p.address, p.city, p.state) if x))
        lines.append("")

    lines.append("### Political Affiliation")
    party_counts: Dict[str, int] = data.fec_contributions.get("party_counts") or {}
    if party_counts:
        party, count = max(party_counts.items(), key=lambda kv: kv[1])
        total = sum(party_counts.values())
        claim = tracker.add_verified_claim(
            PERSONAL,
            "Political Affiliation",
            f"Contributes primarily to {party}-affiliated committees ({count} of {total} contributions)",
            Sources.fec("https://www.fec.gov/data/receipts/individual-contributions/"),
        )
    else:
        claim = tracker.add_unverified_claim(PERSONAL, "Political Affiliation", NOT_FOUND)
    lines.append(_claim_line(tracker, claim))

    return _section("Personal Background", lines, tracker, PERSONAL)


def build_professional_background(
    data: ProspectDataCache, tracker: SourceConfidenceTracker, context: ReportContext
) -> ReportSection:
    p = data.prospect
    lines = ["## Professional Background", "", f"### {p.name} - Career Profile", ""]
    found = False

    companies = data.sec_insider.get("companies") or []
    if companies:
        found = True
        lines.append("**Public Company Insider Filings (Forms 3/4/5):**")
        filing_url = next((f.get("url") for f in data.sec_insider.get("filings") or [] if f.get("url")), "")
        for company in companies:
            label = company["name"] + (f" ({company['ticker']})" if company.get("ticker") else "")
            claim = tracker.add_verified_claim(PROFESSIONAL, "Insider filings at", label, Sources.sec(filing_url or ""))
            lines.append(_claim_line(tracker, claim))
        lines.append("")

    wiki_url = data.wikidata.get("url") or ""
    for label, key in (("Employer", "employers"), ("Education", "education"), ("Occupation", "occupations")):
        values = data.wikidata.get(key) or []
        if not values:
            continue
        found = True
        claim = tracker.add_verified_claim(PROFESSIONAL, label, ", ".join(values), Sources.wikidata(wiki_url))
        lines.append(_claim_line(tracker, claim))

    contributions = data.fec_contributions.get("contributions") or []
    latest = next((c for c in contributions if c.get("employer") or c.get("occupation")), None)
    if latest:
        found = True
        value = " / ".join(x for x in (latest.get("occupation"), latest.get("employer")) if x)
        claim = tracker.add_verified_claim(
            PROFESSIONAL, "Self-reported occupation (FEC)", value, Sources.fec(latest.get("url") or "")
        )
        lines.append(_claim_line(tracker, claim))

    if data.discovery and data.discovery.matched:
        found = True
        lines += ["", "**Web Profiles (discovery search):**"]
        for candidate in data.discovery.matched[:5]:
            value = candidate.name + (f" - {candidate.description}" if candidate.description else "")
            claim = tracker.add_unverified_claim(
                PROFESSIONAL, "Web profile", value, [Sources.discovery(candidate.url)]
            )
            lines.append(_claim_line(tracker, claim))

    if not found:
        claim = tracker.add_unverified_claim(PROFESSIONAL, "Professional background", NOT_FOUND)
        lines += ["No professional background found in public records.", _claim_line(tracker, claim)]

    return _section("Professional Background", lines, tracker, PROFESSIONAL)


def build_real_estate_holdings(
    data: ProspectDataCache, tracker: SourceConfidenceTracker, context: ReportContext
) -> ReportSection:
    lines = ["## Real Estate Holdings", ""]
    assessor = data.county_assessor
    properties = assessor.get("properties") or []

    if properties:
        county = assessor.get("county") or "County"
        lines += ["| Property | Parcel | Estimated Value | Source |", "|----------|--------|-----------------|--------|"]
        total = 0.0
        for prop in properties:
            value = prop.get("market_value") or prop.get("assessed_value") or 0.0
            total += value
            address = prop.get("address") or "Property"
            lines.append(
                f"| {address} | {prop.get('parcel_id') or 'N/A'} | ${value:,.0f} | {county} Assessor [Verified] |"
            )
        lines.append("")
        for prop in properties:
            value = prop.get("market_value") or prop.get("assessed_value") or 0.0
            if value > 0:
                claim = tracker.add_verified_claim(
                    REAL_ESTATE,
                    f"Property at {prop.get('address') or 'address on file'}",
                    f"${value:,.0f}",
                    Sources.county_assessor(county, prop.get("url") or ""),
                )
                lines.append(_claim_line(tracker, claim))
        claim = tracker.add_verified_claim(
            REAL_ESTATE,
            "Total Real Estate",
            f"${total:,.0f} across {len(properties)} propert{'y' if len(properties) == 1 else 'ies'}",
            Sources.county_assessor(county, properties[0].get("url") or ""),
        )
        lines += ["", f"**{tracker.format_claim(claim)}**"]
    else:
        claim = tracker.add_unverified_claim(REAL_ESTATE, "Real estate holdings", NOT_FOUND)
        lines += ["No real estate holdings found in public records.", _claim_line(tracker, claim)]
        if "county_assessor" not in data.sources:
            lines += ["", "*Note: provide a supported county and state to search property records.*"]

    return _section("Real Estate Holdings", lines, tracker, REAL_ESTATE)


def build_philanthropic_history(
    data: ProspectDataCache, tracker: SourceConfidenceTracker, context: ReportContext
) -> ReportSection:
    lines = ["## Philanthropic History", ""]

    lines.append("### Nonprofit Affiliations")
    orgs = data.propublica.get("organizations") or []
    if orgs:
        for org in orgs:
            value = org.get("name") or "Unnamed organization"
            if org.get("ein"):
                value += f" (EIN {org['ein']})"
            claim = tracker.add_verified_claim(
                PHILANTHROPY, "Nonprofit affiliation", value, Sources.propublica(org.get("url") or "")
            )
            lines.append(_claim_line(tracker, claim))
    else:
        claim = tracker.add_unverified_claim(PHILANTHROPY, "Nonprofit affiliations", NOT_FOUND)
        lines.append(_claim_line(tracker, claim))
    lines.append("")

    lines.append("### Political Giving")
    fec = data.fec_contributions
    if fec.get("contributions"):
        claim = tracker.add_verified_claim(
            PHILANTHROPY,
            "Political contributions",
            f"${fec.get('total_amount') or 0:,.0f} across {fec.get('contribution_count') or 0} contributions",
            Sources.fec("https://www.fec.gov/data/receipts/individual-contributions/"),
        )
        lines.append(_claim_line(tracker, claim))
        recipients = fec.get("recipients") or []
        if recipients:
            lines.append(f"  - Recipients: {', '.join(recipients[:10])}")
    else:
        claim = tracker.add_unverified_claim(PHILANTHROPY, "Political contributions", NOT_FOUND)
        lines.append(_claim_line(tracker, claim))

    orgs_total = len(giving_organizations(data))
    if orgs_total:
        lines += ["", f"Gives to or is affiliated with {orgs_total} distinct organizations on record."]

    return _section("Philanthropic History", lines, tracker, PHILANTHROPY)


def build_giving_capacity(
    capacity: GivingCapacityResult, tracker: SourceConfidenceTracker
) -> ReportSection:
    lines = ["## Giving Capacity", ""]

    if capacity.insufficient_data:
        claim = tracker.add_unverified_claim(CAPACITY, "Giving capacity", "Insufficient data")
        lines += [format_capacity_markdown(capacity), "", _claim_line(tracker, claim)]
        return _section("Giving Capacity", lines, tracker, CAPACITY)

    for label, value, breakdown in (
        ("Basic capacity", capacity.basic, capacity.basic_breakdown),
        ("Enhanced capacity", capacity.enhanced, capacity.enhanced_breakdown),
        ("Thorough capacity", capacity.thorough, capacity.thorough_breakdown),
    ):
        if value is None or breakdown is None:
            continue
        tracker.add_estimated_claim(CAPACITY, label, format_currency(value), breakdown.formula)

    claim = tracker.add_estimated_claim(
        CAPACITY,
        "Recommended capacity",
        f"{format_currency(capacity.recommended or 0)} (Rating {capacity.rating})",
        "Most complete available formula",
    )
    lines += [_claim_line(tracker, claim), "", format_capacity_markdown(capacity)]
    return _section("Giving Capacity", lines, tracker, CAPACITY)


def build_executive_summary(
    data: ProspectDataCache,
    tracker: SourceConfidenceTracker,
    capacity: Optional[GivingCapacityResult],
) -> ReportSection:
    p = data.prospect
    findings: List[str] = []
    if data.sec_insider.get("filing_count"):
        findings.append("Has SEC insider filings indicating officer, director or major holder positions at public companies.")
    if data.found("propublica_990"):
        findings.append("Has nonprofit affiliations discovered through 990 filings.")
    if data.found("county_assessor"):
        findings.append("Property ownership records available for wealth assessment.")
    if data.found("fec_contributions"):
        findings.append("Political contribution history available from FEC records.")
    if data.found("wikidata"):
        findings.append("Public biographical record available.")

    lines = ["## Executive Summary", ""]
    if findings:
        lines.append(f"{p.name} is a prospect with the following key indicators:")
        lines.append("")
        lines += [f"- {f}" for f in findings]
    else:
        lines.append(
            f"Limited public data available for {p.name}. Additional research may be needed "
            "through personal contact or referral networks."
        )
    lines.append("")

    if capacity is not None and not capacity.insufficient_data:
        lines.append(
            f"**Estimated Giving Capacity:** {format_currency(capacity.recommended or 0)} "
            f"(Rating {capacity.rating}, {capacity.range_description})"
        )

    quality = tracker.data_quality_summary()
    lines.append(
        f"**Research Confidence:** {quality.quality.value.upper()} - Based on "
        f"{quality.verified_sources} verified sources."
    )

    rating = {
        DataQuality.COMPLETE: SectionRating.HIGH,
        DataQuality.PARTIAL: SectionRating.MEDIUM,
    }.get(quality.quality, SectionRating.LOW)
    primary = [s for s in tracker.all_sources() if s.confidence == "high"]
    return ReportSection(
        title="Executive Summary",
        content="\n".join(lines).rstrip(),
        sources=primary[:5],
        confidence=rating,
    )


def build_sources_section(tracker: SourceConfidenceTracker) -> ReportSection:
    return ReportSection(
        title="Sources & Methodology",
        content=tracker.format_sources_section(),
        sources=tracker.all_sources(),
        confidence=tracker.overall_confidence(),
    )


def _insufficient_report(
    data: ProspectDataCache, context: ReportContext, tracker: SourceConfidenceTracker
) -> GeneratedReport:
    lines = [
        "## Insufficient Data",
        "",
        f"No public records were found for {data.prospect.name}, and no client data was supplied.",
        "No profile has been generated. Verify the name and location, or provide known details.",
    ]
    failed = sorted(data.failures)
    if failed:
        lines += ["", f"Sources unavailable during this run: {', '.join(failed)}."]
    return GeneratedReport(
        prospect_name=data.prospect.name,
        sections=[
            build_header(data, context),
            ReportSection(title="Insufficient Data", content="\n".join(lines)),
        ],
        tracker=tracker,
        data_quality=tracker.data_quality_summary(),
        capacity=None,
        insufficient_data=True,
    )


DataSectionBuilder = Callable[[ProspectDataCache, SourceConfidenceTracker, ReportContext], ReportSection]

DATA_SECTION_BUILDERS: List[DataSectionBuilder] = [
    build_personal_background,
    build_professional_background,
    build_real_estate_holdings,
    build_philanthropic_history,
]


def generate_report(
    data: ProspectDataCache,
    *,
    organization_name: Optional[str] = None,
    report_date: Optional[date] = None,
    constants: Optional[CapacityConstants] = None,
) -> GeneratedReport:
    """
    Narrate a collected ProspectDataCache into a GeneratedReport.

    Output order: header, executive summary, personal background, professional
    background, real estate, philanthropy, giving capacity, sources.
    """
    context = ReportContext(
        organization_name=organization_name or get_settings().REPORT_ORGANIZATION_NAME,
        report_date=report_date or date.today(),
    )
    tracker = SourceConfidenceTracker()

    if not data.has_any_data and not data.prospect.has_crm_signals:
        logger.info("No data for subject; returning insufficient-data report", extra={"step": "report"})
        return _insufficient_report(data, context, tracker)

    data_sections = [builder(data, tracker, context) for builder in DATA_SECTION_BUILDERS]

    capacity = calculate_giving_capacity(
        capacity_signals(data, context.report_date),
        constants if constants is not None else load_constants(),
    )
    capacity_section = build_giving_capacity(capacity, tracker)
    summary_section = build_executive_summary(data, tracker, capacity)
    sources_section = build_sources_section(tracker)

    sections = [
        build_header(data, context),
        summary_section,
        *data_sections,
        capacity_section,
        sources_section,
    ]
    report = GeneratedReport(
        prospect_name=data.prospect.name,
        sections=sections,
        tracker=tracker,
        data_quality=tracker.data_quality_summary(),
        capacity=capacity,
    )
    logger.info(
        "Report generated: %d sections, %d claims, quality=%s",
        len(sections),
        len(tracker.claims()),
        report.data_quality.quality.value,
        extra={"step": "report"},
    )
    return report


async def build_prospect_report(
    prospect,
    client: ResilientProviderClient,
    connectors: ConnectorRegistry,
    *,
    coordinator: Optional[DiscoveryJobCoordinator] = None,
    request_id: Optional[str] = None,
) -> GeneratedReport:
    """Collect then narrate."""
    data = await collect_prospect_data(
        prospect, client, connectors, coordinator=coordinator, request_id=request_id
    )
    report = generate_report(data, organization_name=prospect.prepared_for)
    report.collection = data.summary()
    return report
