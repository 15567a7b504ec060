from uuid import uuid4
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Security
from fastapi.security.api_key import APIKeyHeader

from ..core.config import get_settings
from ..schemas.prospect import CapacityInput, DiscoveryRequest, ProspectRequest
from ..services.capacity import calculate_giving_capacity, load_constants
from ..services.connectors import ConnectorRegistry
from ..services.discovery import (
    DISCOVERY_TEMPLATES,
    DiscoveryJobCoordinator,
    DiscoveryValidationError,
)
from ..services.discovery_models import DiscoveryJob, JobStatus
from ..services.errors import ErrorCode, ProviderError
from ..services.provider_client import ResilientProviderClient
from ..services.report import build_prospect_report

router = APIRouter(tags=["prospects"])

settings = get_settings()
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
logger = logging.getLogger(__name__)

# ProviderError code -> HTTP status
ERROR_STATUS = {
    ErrorCode.NOT_CONFIGURED: 503,
    ErrorCode.CIRCUIT_OPEN: 503,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.TIMEOUT: 504,
}


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Header-based API key authentication.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    expected = settings.API_AUTH_KEY

    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_connector_registry(request: Request) -> ConnectorRegistry:
    return request.app.state.connectors


def get_provider_client(request: Request) -> ResilientProviderClient:
    return ResilientProviderClient(
        request.app.state.breakers, limiters=request.app.state.limiters
    )


def _provider_http_error(err: ProviderError) -> HTTPException:
    headers = None
    if err.retry_after:
        headers = {"Retry-After": str(int(err.retry_after + 0.999))}
    return HTTPException(
        status_code=ERROR_STATUS.get(err.code, 502),
        detail=err.to_dict(),
        headers=headers,
    )


def _discovery_coordinator(
    client: ResilientProviderClient, connectors: ConnectorRegistry
) -> DiscoveryJobCoordinator:
    connector = connectors.discovery()
    if connector is None:
        raise HTTPException(status_code=503, detail="No discovery provider registered")
    return DiscoveryJobCoordinator(client, connector)


@router.post("/capacity")
def estimate_capacity(
    payload: CapacityInput,
    _: None = Depends(verify_api_key),
):
    result = calculate_giving_capacity(payload, load_constants())
    return result.to_dict()


@router.post("/reports")
async def create_report(
    payload: ProspectRequest,
    client: ResilientProviderClient = Depends(get_provider_client),
    connectors: ConnectorRegistry = Depends(get_connector_registry),
    _: None = Depends(verify_api_key),
):
    request_id = str(uuid4())
    logger.info(
        "Building prospect report",
        extra={"request_id": request_id, "step": "create_report"},
    )

    include_discovery = (
        payload.include_discovery
        if payload.include_discovery is not None
        else settings.DISCOVERY_IN_REPORTS
    )
    coordinator = None
    if include_discovery and connectors.discovery() is not None:
        coordinator = DiscoveryJobCoordinator(client, connectors.discovery())

    report = await build_prospect_report(
        payload, client, connectors, coordinator=coordinator, request_id=request_id
    )

    logger.info(
        "Prospect report built",
        extra={"request_id": request_id, "step": "report_built"},
    )
    body = report.to_dict()
    body["request_id"] = request_id
    return body


@router.get("/discovery/templates")
def list_discovery_templates(_: None = Depends(verify_api_key)):
    return [
        {
            "key": t.key,
            "objective": t.objective,
            "match_conditions": [
                {"name": c.name, "description": c.description} for c in t.match_conditions
            ],
            "limit": t.match_limit,
        }
        for t in DISCOVERY_TEMPLATES.values()
    ]


@router.post("/discovery", status_code=202)
async def submit_discovery(
    payload: DiscoveryRequest,
    client: ResilientProviderClient = Depends(get_provider_client),
    connectors: ConnectorRegistry = Depends(get_connector_registry),
    _: None = Depends(verify_api_key),
):
    if payload.template:
        template = DISCOVERY_TEMPLATES.get(payload.template)
        if template is None:
            raise HTTPException(status_code=422, detail=f"Unknown template '{payload.template}'")
        search = template.for_location(payload.location)
    else:
        search = {
            "objective": payload.objective,
            "match_conditions": [c.model_dump() for c in payload.match_conditions],
            "limit": payload.limit,
        }

    coordinator = _discovery_coordinator(client, connectors)
    try:
        job = await coordinator.submit(**search)
    except DiscoveryValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ProviderError as err:
        logger.warning(
            "Discovery submit failed: %s",
            err.code.value,
            extra={"provider": err.provider, "step": "submit_discovery"},
        )
        raise _provider_http_error(err)

    return job.to_dict()


@router.get("/discovery/{job_id}")
async def get_discovery_job(
    job_id: str,
    client: ResilientProviderClient = Depends(get_provider_client),
    connectors: ConnectorRegistry = Depends(get_connector_registry),
    _: None = Depends(verify_api_key),
):
    coordinator = _discovery_coordinator(client, connectors)
    job = DiscoveryJob(job_id=job_id, objective="", match_conditions=())
    try:
        await coordinator.refresh(job)
        candidates = []
        if job.status == JobStatus.COMPLETED:
            candidates = await coordinator.fetch_candidates(job_id)
    except ProviderError as err:
        logger.warning(
            "Discovery status read failed: %s",
            err.code.value,
            extra={"job_id": job_id, "provider": err.provider, "step": "get_discovery"},
        )
        raise _provider_http_error(err)

    return {
        "job": job.to_dict(),
        "candidates": [c.to_dict() for c in candidates],
    }


@router.get("/health/providers")
def provider_health(
    request: Request,
    connectors: ConnectorRegistry = Depends(get_connector_registry),
):
    breakers = request.app.state.breakers
    return {
        "status": "degraded" if breakers.has_open_circuits() else "ok",
        "open_circuits": breakers.open_circuits(),
        "circuits": breakers.snapshot(),
        "rate_limits": request.app.state.limiters.snapshot(),
        "connectors": connectors.names(),
    }
