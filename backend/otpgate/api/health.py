"""Health check endpoints with database connectivity and blacklist statistics."""

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from otpgate.api.deps import get_services
from otpgate.core import check_db_connection
from otpgate.core.exceptions import StorageError
from otpgate.core.logging import get_logger
from otpgate.services import Services

logger = get_logger("api.health")

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str


class BlacklistStats(BaseModel):
    cache_entries: int
    cache_max_entries: int
    durable_entries: int | None = None


class HealthDetailResponse(HealthResponse):
    """Detailed health check response."""

    blacklist: BlacklistStats
    sweeper_running: bool


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Service is unhealthy"},
    },
)
async def health_check(
    response: Response, services: Services = Depends(get_services)
) -> HealthResponse:
    """
    Health check endpoint.

    Returns 503 if the database is unavailable.
    """
    db_healthy = await check_db_connection(services.session_factory)

    # Set appropriate status code for container orchestration
    if not db_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if db_healthy else "unhealthy",
        version=services.settings.app_version,
        database="connected" if db_healthy else "disconnected",
    )


@router.get(
    "/health/detail",
    response_model=HealthDetailResponse,
    responses={
        status.HTTP_200_OK: {"description": "Detailed health information"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Service is unhealthy"},
    },
)
async def health_detail(
    response: Response, services: Services = Depends(get_services)
) -> HealthDetailResponse:
    """
    Detailed health check endpoint.

    Adds blacklist cache and table sizes and the sweeper state.
    """
    db_healthy = await check_db_connection(services.session_factory)
    revocation = services.revocation

    blacklist = BlacklistStats(
        cache_entries=len(revocation.cache),
        cache_max_entries=revocation.cache.max_entries,
    )
    if db_healthy:
        try:
            stats = await revocation.stats()
            blacklist.durable_entries = stats.durable_entries
        except StorageError as e:
            logger.warning(f"Could not read blacklist stats: {e}")
    else:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthDetailResponse(
        status="healthy" if db_healthy else "unhealthy",
        version=services.settings.app_version,
        database="connected" if db_healthy else "disconnected",
        blacklist=blacklist,
        sweeper_running=services.sweeper.running,
    )
