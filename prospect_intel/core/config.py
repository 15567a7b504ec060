from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"
    SERVICE_NAME: str = "prospect_intel"
    LOG_LEVEL: str = "INFO"

    # auth / security
    API_AUTH_KEY: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # external providers
    EXA_API_KEY: str | None = None
    EXA_BASE_URL: str = "https://api.exa.ai/websets/v0"

    FEC_API_KEY: str | None = None
    FEC_BASE_URL: str = "https://api.open.fec.gov/v1"
    FEC_MAX_RESULTS: int = 100

    PROPUBLICA_BASE_URL: str = "https://projects.propublica.org/nonprofits/api/v2"
    PROPUBLICA_MAX_RESULTS: int = 10

    WIKIDATA_API_URL: str = "https://www.wikidata.org/w/api.php"

    SEC_EFTS_URL: str = "https://efts.sec.gov/LATEST/search-index"
    # SEC rejects anonymous clients; a contact string is mandatory
    SEC_USER_AGENT: str = "ProspectIntel research@example.org"

    SOCRATA_APP_TOKEN: str | None = None
    SOCRATA_MAX_RESULTS: int = 25

    # provider call policy
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    PROVIDER_MAX_ATTEMPTS: int = 2
    # token bucket defaults for providers without a published limit
    PROVIDER_RATE_LIMIT_BURST: int = 10
    PROVIDER_RATE_LIMIT_PER_SECOND: float = 5.0

    # circuit breaker defaults (presets override per connector)
    BREAKER_FAILURE_THRESHOLD: int = 5
    BREAKER_COOLDOWN_SECONDS: float = 60.0

    # discovery jobs
    DISCOVERY_POLL_INTERVAL_SECONDS: float = 3.0
    DISCOVERY_MAX_WAIT_SECONDS: float = 600.0
    DISCOVERY_PAGE_SIZE: int = 100
    DISCOVERY_IN_REPORTS: bool = False

    # reports & capacity
    REPORT_ORGANIZATION_NAME: str = "Your Organization"
    # JSON object overriding CapacityConstants fields, e.g. {"dif_no_generosity": -0.2}
    CAPACITY_CONSTANTS_JSON: str | None = None

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
