# prospect_intel/services/capacity.py
"""
Giving capacity engine.

Three independent formulas over the same signals:

- Basic:    (RE x reFactor + lifetime) x donationFactor x businessFactor
- Enhanced: salary x years working x 0.01 + RE x reFactor + revenue x 0.05 + lifetime
- Thorough: (L1 + L2 + L3) x (1 + DIF) + L4, where L1..L3 are the enhanced
            salary / real estate / business terms and L4 is recent giving

All functions are pure; every factor lives in CapacityConstants so the
empirically asserted values (DIF magnitudes, the salary proxy ratio, the
enhanced uplift heuristic) can be overridden without code changes.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Tuple

from ..core.config import get_settings
from ..schemas.prospect import CalculationType, CapacityInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapacityConstants:
    re_factor_one: float = 0.05
    re_factor_two: float = 0.10
    re_factor_three_plus: float = 0.15

    donation_mid_threshold: float = 100_000
    donation_mid_factor: float = 1.1
    donation_high_threshold: float = 1_000_000
    donation_high_factor: float = 1.15

    business_factor: float = 1.1

    salary_age_multiplier: float = 0.01
    working_start_age: int = 22
    business_revenue_multiplier: float = 0.05
    # $1M home ~ $150K salary
    salary_to_real_estate_ratio: float = 0.15

    dif_no_generosity: float = -0.25
    dif_limited_real_estate: float = -0.10
    limited_real_estate_value: float = 1_000_000
    limited_real_estate_count: int = 3
    dif_employee: float = -0.10
    dif_multiple_businesses: float = 0.10
    dif_six_figure_gift: float = 0.10
    dif_seven_figure_gift: float = 0.15
    six_figure_gift: float = 100_000
    seven_figure_gift: float = 1_000_000

    # Only used in methodology notes; not part of any formula.
    enhanced_typical_uplift: float = 0.25


DEFAULT_CONSTANTS = CapacityConstants()


def load_constants(raw: Optional[str] = None) -> CapacityConstants:
    """Defaults overlaid with CAPACITY_CONSTANTS_JSON (unknown keys are ignored)."""
    if raw is None:
        raw = get_settings().CAPACITY_CONSTANTS_JSON
    if not raw:
        return DEFAULT_CONSTANTS

    try:
        override = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("CAPACITY_CONSTANTS_JSON is not valid JSON; using defaults")
        return DEFAULT_CONSTANTS
    if not isinstance(override, dict):
        return DEFAULT_CONSTANTS

    known = {f.name for f in fields(CapacityConstants)}
    updates: Dict[str, Any] = {}
    for key, value in override.items():
        if key not in known or not isinstance(value, (int, float)) or isinstance(value, bool):
            continue
        updates[key] = int(value) if key in ("working_start_age", "limited_real_estate_count") else float(value)
    return replace(DEFAULT_CONSTANTS, **updates)


# ---------------------------------------------------------------------------
# Result records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CapacityComponent:
    name: str
    value: float
    description: str


@dataclass(frozen=True)
class CapacityBreakdown:
    formula: str
    result: int
    components: Tuple[CapacityComponent, ...]


@dataclass(frozen=True)
class DIFModifier:
    factor: str
    value: float
    reason: str
    is_increase: bool


@dataclass
class GivingCapacityResult:
    real_estate_value: Optional[float]
    property_count: Optional[int]
    estimated_salary: float
    salary_source: str  # provided | estimated_from_real_estate | unknown
    age: Optional[int]
    lifetime_giving: float
    recent_giving: float
    business_revenue: float

    basic: Optional[int] = None
    enhanced: Optional[int] = None
    thorough: Optional[int] = None
    recommended: Optional[int] = None

    basic_breakdown: Optional[CapacityBreakdown] = None
    enhanced_breakdown: Optional[CapacityBreakdown] = None
    thorough_breakdown: Optional[CapacityBreakdown] = None

    dif_modifiers: List[DIFModifier] = field(default_factory=list)
    total_dif: float = 0.0

    rating: Optional[str] = None
    range_description: str = "Insufficient data"
    data_quality: str = "low"
    methodology_notes: List[str] = field(default_factory=list)
    missing_data_points: List[str] = field(default_factory=list)
    insufficient_data: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Factors
# ---------------------------------------------------------------------------


def _round_dollars(value: float) -> int:
    return int(math.floor(value + 0.5))


def re_factor(property_count: int, c: CapacityConstants = DEFAULT_CONSTANTS) -> float:
    if property_count <= 0:
        return 0.0
    if property_count == 1:
        return c.re_factor_one
    if property_count == 2:
        return c.re_factor_two
    return c.re_factor_three_plus


def donation_factor(lifetime_giving: float, c: CapacityConstants = DEFAULT_CONSTANTS) -> float:
    if lifetime_giving >= c.donation_high_threshold:
        return c.donation_high_factor
    if lifetime_giving >= c.donation_mid_threshold:
        return c.donation_mid_factor
    return 1.0


def business_factor(
    has_business: bool, has_sec_filings: bool, c: CapacityConstants = DEFAULT_CONSTANTS
) -> float:
    return c.business_factor if (has_business or has_sec_filings) else 1.0


def years_working(age: int, c: CapacityConstants = DEFAULT_CONSTANTS) -> int:
    return max(0, age - c.working_start_age)


def salary_from_real_estate(real_estate_value: float, c: CapacityConstants = DEFAULT_CONSTANTS) -> int:
    return _round_dollars(real_estate_value * c.salary_to_real_estate_ratio)


def calculate_dif(
    *,
    has_demonstrated_generosity: Optional[bool],
    real_estate_value: float,
    property_count: int,
    is_entrepreneur: bool,
    is_multiple_business_owner: bool,
    largest_known_gift: Optional[float],
    c: CapacityConstants = DEFAULT_CONSTANTS,
) -> Tuple[float, List[DIFModifier]]:
    modifiers: List[DIFModifier] = []

    # Unknown generosity is not penalised; only an explicit "no" is.
    if has_demonstrated_generosity is False:
        modifiers.append(
            DIFModifier(
                factor="No demonstrated generosity",
                value=c.dif_no_generosity,
                reason="Does not give to 3+ philanthropic or political organizations other than client",
                is_increase=False,
            )
        )

    if real_estate_value < c.limited_real_estate_value or property_count < c.limited_real_estate_count:
        modifiers.append(
            DIFModifier(
                factor="Limited real estate",
                value=c.dif_limited_real_estate,
                reason=(
                    f"Less than {format_currency(c.limited_real_estate_value)} in real estate "
                    f"(${real_estate_value:,.0f}) or fewer than {c.limited_real_estate_count} "
                    f"properties ({property_count})"
                ),
                is_increase=False,
            )
        )

    if not is_entrepreneur:
        modifiers.append(
            DIFModifier(
                factor="Employee status",
                value=c.dif_employee,
                reason="Identified as employee rather than business owner/entrepreneur",
                is_increase=False,
            )
        )

    if is_multiple_business_owner:
        modifiers.append(
            DIFModifier(
                factor="Multiple business owner",
                value=c.dif_multiple_businesses,
                reason="Owns multiple businesses - indicates entrepreneurial wealth",
                is_increase=True,
            )
        )

    if largest_known_gift is not None:
        if largest_known_gift >= c.seven_figure_gift:
            modifiers.append(
                DIFModifier(
                    factor="Seven-figure gift",
                    value=c.dif_seven_figure_gift,
                    reason=f"Largest known gift: ${largest_known_gift:,.0f}",
                    is_increase=True,
                )
            )
        elif largest_known_gift >= c.six_figure_gift:
            modifiers.append(
                DIFModifier(
                    factor="Six-figure gift",
                    value=c.dif_six_figure_gift,
                    reason=f"Largest known gift: ${largest_known_gift:,.0f}",
                    is_increase=True,
                )
            )

    total = round(sum(m.value for m in modifiers), 4)
    return total, modifiers


# ---------------------------------------------------------------------------
# Formulas
# ---------------------------------------------------------------------------


def _properties(count: int) -> str:
    return f"{count} property" if count == 1 else f"{count} properties"


def basic_capacity(
    real_estate_value: float,
    property_count: int,
    lifetime_giving: float,
    has_business: bool,
    has_sec_filings: bool,
    c: CapacityConstants = DEFAULT_CONSTANTS,
) -> CapacityBreakdown:
    ref = re_factor(property_count, c)
    don = donation_factor(lifetime_giving, c)
    biz = business_factor(has_business, has_sec_filings, c)
    re_term = real_estate_value * ref
    result = _round_dollars((re_term + lifetime_giving) * don * biz)

    if don == c.donation_high_factor:
        don_desc = f"{don:g} (lifetime giving >= {format_currency(c.donation_high_threshold)})"
    elif don == c.donation_mid_factor:
        don_desc = f"{don:g} (lifetime giving >= {format_currency(c.donation_mid_threshold)})"
    else:
        don_desc = f"1.0 (lifetime giving < {format_currency(c.donation_mid_threshold)})"

    return CapacityBreakdown(
        formula="(RE Value × RE Factor + Lifetime Giving) × Donation Factor × Business/SEC Factor",
        result=result,
        components=(
            CapacityComponent(
                "RE Value × RE Factor",
                _round_dollars(re_term),
                f"${real_estate_value:,.0f} × {ref:g} ({_properties(property_count)})",
            ),
            CapacityComponent(
                "Lifetime Giving", lifetime_giving, f"${lifetime_giving:,.0f} (provided by client)"
            ),
            CapacityComponent("Donation Factor", don, don_desc),
            CapacityComponent(
                "Business/SEC Factor",
                biz,
                f"{biz:g} (has business ownership or SEC filings)"
                if biz != 1.0
                else "1.0 (no business or SEC indicators)",
            ),
        ),
    )


def _salary_term(salary: float, age: int, c: CapacityConstants) -> Tuple[float, int]:
    years = years_working(age, c)
    return salary * years * c.salary_age_multiplier, years


def enhanced_capacity(
    salary: float,
    age: int,
    real_estate_value: float,
    property_count: int,
    business_revenue: float,
    lifetime_giving: float,
    c: CapacityConstants = DEFAULT_CONSTANTS,
) -> CapacityBreakdown:
    salary_term, years = _salary_term(salary, age, c)
    ref = re_factor(property_count, c)
    re_term = real_estate_value * ref
    biz_term = business_revenue * c.business_revenue_multiplier
    result = _round_dollars(salary_term + re_term + biz_term + lifetime_giving)

    return CapacityBreakdown(
        formula="(Salary × Years Working × 0.01) + (RE Value × RE Factor) + (Business Revenue × 0.05) + Lifetime Giving",
        result=result,
        components=(
            CapacityComponent(
                "Salary/Age Component",
                _round_dollars(salary_term),
                f"${salary:,.0f} × {years} years × {c.salary_age_multiplier:g}",
            ),
            CapacityComponent(
                "Real Estate Component", _round_dollars(re_term), f"${real_estate_value:,.0f} × {ref:g}"
            ),
            CapacityComponent(
                "Business Value Component",
                _round_dollars(biz_term),
                f"${business_revenue:,.0f} × {c.business_revenue_multiplier:g}",
            ),
            CapacityComponent("Lifetime Giving", lifetime_giving, f"${lifetime_giving:,.0f}"),
        ),
    )


def thorough_capacity(
    salary: float,
    age: int,
    real_estate_value: float,
    property_count: int,
    business_revenue: float,
    recent_giving: float,
    total_dif: float,
    c: CapacityConstants = DEFAULT_CONSTANTS,
) -> CapacityBreakdown:
    l1, years = _salary_term(salary, age, c)
    ref = re_factor(property_count, c)
    l2 = real_estate_value * ref
    l3 = business_revenue * c.business_revenue_multiplier
    base = l1 + l2 + l3
    adjustment = base * total_dif
    result = _round_dollars(base + adjustment + recent_giving)

    direction = "increase" if total_dif >= 0 else "decrease"
    return CapacityBreakdown(
        formula="[(L1 + L2 + L3) × (1 + DIF)] + L4",
        result=result,
        components=(
            CapacityComponent(
                "L1: Salary/Age", _round_dollars(l1), f"${salary:,.0f} × {years} × {c.salary_age_multiplier:g}"
            ),
            CapacityComponent("L2: Real Estate", _round_dollars(l2), f"${real_estate_value:,.0f} × {ref:g}"),
            CapacityComponent(
                "L3: Business", _round_dollars(l3), f"${business_revenue:,.0f} × {c.business_revenue_multiplier:g}"
            ),
            CapacityComponent(
                "DIF Adjustment",
                _round_dollars(adjustment),
                f"(L1+L2+L3) × {total_dif * 100:.0f}% = {format_currency(abs(adjustment))} {direction}",
            ),
            CapacityComponent(
                "L4: Last 5 Years Giving", recent_giving, f"${recent_giving:,.0f} (100% of last 5 years)"
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Rating helpers
# ---------------------------------------------------------------------------


def format_currency(value: float) -> str:
    if value >= 1e9:
        return f"${value / 1e9:.1f}B"
    if value >= 1e6:
        return f"${value / 1e6:.1f}M"
    if value >= 1e3:
        return f"${value / 1e3:.0f}K"
    return f"${value:,.0f}"


def capacity_rating(capacity: float) -> str:
    if capacity >= 1_000_000:
        return "A"
    if capacity >= 100_000:
        return "B"
    if capacity >= 25_000:
        return "C"
    return "D"


_RANGES = (
    (10_000_000, "$10M+ major gift capacity"),
    (1_000_000, "$1M-$10M gift capacity"),
    (500_000, "$500K-$1M gift capacity"),
    (100_000, "$100K-$500K gift capacity"),
    (50_000, "$50K-$100K gift capacity"),
    (25_000, "$25K-$50K gift capacity"),
    (10_000, "$10K-$25K gift capacity"),
    (5_000, "$5K-$10K gift capacity"),
)


def capacity_range(capacity: float) -> str:
    for floor, label in _RANGES:
        if capacity >= floor:
            return label
    return "Under $5K capacity"


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def calculate_giving_capacity(
    inputs: CapacityInput,
    constants: Optional[CapacityConstants] = None,
) -> GivingCapacityResult:
    """
    Run the formulas selected by ``inputs.calculation_type`` and reconcile.

    Never raises for missing optional inputs; formulas that cannot run stay
    None and the reason is listed in ``missing_data_points``.
    """
    c = constants or DEFAULT_CONSTANTS
    missing: List[str] = []
    notes: List[str] = []

    if inputs.age is None:
        missing.append("Age (required for enhanced and thorough calculations)")
    if inputs.has_business_ownership and inputs.business_revenue is None:
        missing.append("Business revenue (would improve accuracy)")
    if inputs.recent_giving is None:
        missing.append("Recent (last 5 years) giving history (for thorough calculation)")
    if inputs.has_demonstrated_generosity is None:
        missing.append("Demonstrated generosity indicator (gives to 3+ organizations)")

    if inputs.real_estate_value is None or inputs.property_count is None:
        missing.insert(0, "Real estate value and property count (required for every formula)")
        return GivingCapacityResult(
            real_estate_value=inputs.real_estate_value,
            property_count=inputs.property_count,
            estimated_salary=inputs.estimated_salary or 0.0,
            salary_source="provided" if inputs.estimated_salary else "unknown",
            age=inputs.age,
            lifetime_giving=inputs.lifetime_giving,
            recent_giving=inputs.recent_giving if inputs.recent_giving is not None else inputs.lifetime_giving,
            business_revenue=inputs.business_revenue or 0.0,
            methodology_notes=["Insufficient data: no real estate record to anchor any formula"],
            missing_data_points=missing,
            insufficient_data=True,
        )

    re_value = float(inputs.real_estate_value)
    count = int(inputs.property_count)
    revenue = float(inputs.business_revenue or 0.0)

    if inputs.estimated_salary:
        salary = float(inputs.estimated_salary)
        salary_source = "provided"
    elif re_value > 0:
        salary = float(salary_from_real_estate(re_value, c))
        salary_source = "estimated_from_real_estate"
        notes.append(
            f"Salary estimated from real estate value: ${re_value:,.0f} × "
            f"{c.salary_to_real_estate_ratio:g} = ${salary:,.0f}/year"
        )
    else:
        salary = 0.0
        salary_source = "unknown"
        missing.append("Salary or income data")

    if count == 0:
        missing.append("Real estate holdings (no properties on record)")
        notes.append("No property data - capacity calculation may be significantly underestimated")

    is_entrepreneur = (
        inputs.is_entrepreneur if inputs.is_entrepreneur is not None else inputs.has_business_ownership
    )
    total_dif, modifiers = calculate_dif(
        has_demonstrated_generosity=inputs.has_demonstrated_generosity,
        real_estate_value=re_value,
        property_count=count,
        is_entrepreneur=is_entrepreneur,
        is_multiple_business_owner=inputs.is_multiple_business_owner,
        largest_known_gift=inputs.largest_known_gift,
        c=c,
    )

    if inputs.recent_giving is not None:
        recent = float(inputs.recent_giving)
    else:
        recent = float(inputs.lifetime_giving)

    kind = inputs.calculation_type
    result = GivingCapacityResult(
        real_estate_value=re_value,
        property_count=count,
        estimated_salary=salary,
        salary_source=salary_source,
        age=inputs.age,
        lifetime_giving=inputs.lifetime_giving,
        recent_giving=recent,
        business_revenue=revenue,
        dif_modifiers=modifiers,
        total_dif=total_dif,
        missing_data_points=missing,
        methodology_notes=notes,
    )

    if kind in (CalculationType.BASIC, CalculationType.ALL):
        result.basic_breakdown = basic_capacity(
            re_value,
            count,
            inputs.lifetime_giving,
            inputs.has_business_ownership,
            inputs.has_sec_filings,
            c,
        )
        result.basic = result.basic_breakdown.result

    if inputs.age is not None and kind in (CalculationType.ENHANCED, CalculationType.ALL):
        result.enhanced_breakdown = enhanced_capacity(
            salary, inputs.age, re_value, count, revenue, inputs.lifetime_giving, c
        )
        result.enhanced = result.enhanced_breakdown.result
        notes.append(
            f"Enhanced averages about {c.enhanced_typical_uplift * 100:.0f}% higher than basic "
            "due to age and salary consideration"
        )

    if inputs.age is not None and kind in (CalculationType.THOROUGH, CalculationType.ALL):
        result.thorough_breakdown = thorough_capacity(
            salary, inputs.age, re_value, count, revenue, recent, total_dif, c
        )
        result.thorough = result.thorough_breakdown.result
        notes.append("Thorough is the most complete analysis, incorporating DIF modifiers")
        if inputs.recent_giving is None:
            notes.append("Recent giving not supplied; lifetime giving used for L4")

    for candidate in (result.thorough, result.enhanced, result.basic):
        if candidate is not None:
            result.recommended = candidate
            break

    if result.recommended is None:
        result.insufficient_data = True
    else:
        result.rating = capacity_rating(result.recommended)
        result.range_description = capacity_range(result.recommended)

    if result.thorough is not None and inputs.business_revenue is not None:
        result.data_quality = "high"
    elif result.enhanced is not None or (result.basic is not None and count > 0):
        result.data_quality = "medium"
    else:
        result.data_quality = "low"

    logger.info(
        "Capacity calculated: basic=%s enhanced=%s thorough=%s recommended=%s",
        result.basic,
        result.enhanced,
        result.thorough,
        result.recommended,
        extra={"step": "capacity"},
    )
    return result


def format_capacity_markdown(result: GivingCapacityResult) -> str:
    if result.insufficient_data:
        lines = [
            "**Insufficient data** to estimate giving capacity.",
            "",
            "Missing inputs:",
        ]
        lines += [f"- {m}" for m in result.missing_data_points]
        return "\n".join(lines)

    lines = [
        "| Metric | Value |",
        "|--------|-------|",
        f"| **Recommended Capacity** | {format_currency(result.recommended or 0)} |",
        f"| **Capacity Rating** | {result.rating} |",
        f"| **Capacity Range** | {result.range_description} |",
        f"| **Data Quality** | {result.data_quality.upper()} |",
        "",
    ]

    for title, value, breakdown in (
        ("Basic", result.basic, result.basic_breakdown),
        ("Enhanced", result.enhanced, result.enhanced_breakdown),
        ("Thorough", result.thorough, result.thorough_breakdown),
    ):
        if breakdown is None:
            continue
        lines.append(f"### {title}: {format_currency(value or 0)}")
        lines.append(f"Formula: `{breakdown.formula}`")
        lines.append("")
        for comp in breakdown.components:
            shown = format_currency(comp.value) if comp.value >= 1000 else f"{comp.value:g}"
            lines.append(f"- **{comp.name}**: {shown}")
            lines.append(f"  - {comp.description}")
        lines.append("")

    if result.dif_modifiers:
        lines.append(f"**Total DIF: {result.total_dif * 100:.0f}%**")
        lines.append("")
        for m in result.dif_modifiers:
            sign = "+" if m.is_increase else ""
            lines.append(f"- {m.factor} ({sign}{m.value * 100:.0f}%): {m.reason}")
        lines.append("")

    if result.methodology_notes:
        lines.append("**Methodology notes:**")
        lines += [f"- {n}" for n in result.methodology_notes]
        lines.append("")

    if result.missing_data_points:
        lines.append("**Missing data that would improve accuracy:**")
        lines += [f"- {m}" for m in result.missing_data_points]

    return "\n".join(lines).rstrip()
