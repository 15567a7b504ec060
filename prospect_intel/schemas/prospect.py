# prospect_intel/schemas/prospect.py
import enum
from typing import List

from pydantic import BaseModel, Field, field_validator, model_validator

MAX_PERSON_NAME_LEN = 200
MAX_LOCATION_LEN = 200
MAX_OBJECTIVE_LEN = 2000


class CalculationType(str, enum.Enum):
    BASIC = "basic"
    ENHANCED = "enhanced"
    THOROUGH = "thorough"
    ALL = "all"


def _strip_or_none(v):
    if v is None:
        return None
    if isinstance(v, str):
        stripped = v.strip()
        return stripped or None
    return v


class CapacityInput(BaseModel):
    """Flat signal record consumed by the capacity engine."""

    real_estate_value: float | None = Field(default=None, ge=0)
    property_count: int | None = Field(default=None, ge=0)
    estimated_salary: float | None = Field(default=None, ge=0)
    age: int | None = Field(default=None, ge=0, le=120)
    lifetime_giving: float = Field(default=0.0, ge=0)
    recent_giving: float | None = Field(default=None, ge=0)
    business_revenue: float | None = Field(default=None, ge=0)
    has_business_ownership: bool = False
    has_sec_filings: bool = False
    is_entrepreneur: bool | None = None
    is_multiple_business_owner: bool = False
    has_demonstrated_generosity: bool | None = None
    largest_known_gift: float | None = Field(default=None, ge=0)
    calculation_type: CalculationType = CalculationType.ALL


class ProspectRequest(BaseModel):
    """A named subject plus optional CRM signals the client already holds."""

    name: str
    address: str | None = None
    city: str | None = None
    state: str | None = None
    county: str | None = None
    prepared_for: str | None = None
    include_discovery: bool | None = None

    age: int | None = Field(default=None, ge=0, le=120)
    estimated_salary: float | None = Field(default=None, ge=0)
    lifetime_giving: float | None = Field(default=None, ge=0)
    recent_giving: float | None = Field(default=None, ge=0)
    business_revenue: float | None = Field(default=None, ge=0)
    has_business_ownership: bool | None = None
    is_entrepreneur: bool | None = None
    is_multiple_business_owner: bool | None = None
    has_demonstrated_generosity: bool | None = None
    largest_known_gift: float | None = Field(default=None, ge=0)

    @field_validator("name", "address", "city", "state", "county", "prepared_for", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return _strip_or_none(v)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str | None) -> str:
        if not v:
            raise ValueError("name must not be empty")
        if len(v) > MAX_PERSON_NAME_LEN:
            raise ValueError(f"name must be at most {MAX_PERSON_NAME_LEN} characters")
        return v

    @field_validator("state")
    @classmethod
    def validate_state(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if len(v) != 2 or not v.isalpha():
            raise ValueError("state must be a two-letter code")
        return v.upper()

    @field_validator("city", "county", "address")
    @classmethod
    def validate_location(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_LOCATION_LEN:
            raise ValueError(f"location fields must be at most {MAX_LOCATION_LEN} characters")
        return v

    @property
    def has_crm_signals(self) -> bool:
        return any(
            getattr(self, f) is not None
            for f in (
                "age",
                "estimated_salary",
                "lifetime_giving",
                "recent_giving",
                "business_revenue",
                "largest_known_gift",
            )
        )


class MatchConditionIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=1000)


class DiscoveryRequest(BaseModel):
    template: str | None = None
    location: str | None = None
    objective: str | None = None
    match_conditions: List[MatchConditionIn] = Field(default_factory=list)
    limit: int = Field(default=10, ge=1, le=100)

    @field_validator("template", "location", "objective", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return _strip_or_none(v)

    @model_validator(mode="after")
    def validate_target(self) -> "DiscoveryRequest":
        if self.template:
            return self
        if not self.objective:
            raise ValueError("Either template or objective is required")
        if len(self.objective) > MAX_OBJECTIVE_LEN:
            raise ValueError(f"objective must be at most {MAX_OBJECTIVE_LEN} characters")
        if not self.match_conditions:
            raise ValueError("match_conditions must not be empty when no template is used")
        return self
