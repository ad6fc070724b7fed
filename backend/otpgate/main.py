"""otpgate - FastAPI Application Factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from otpgate.api import auth_router, health_router, register_exception_handlers
from otpgate.core import async_session_maker, engine, settings, setup_logging
from otpgate.core.logging import get_logger

# Import all models to ensure they're registered with Base for Alembic
from otpgate.models import (  # noqa: F401
    Account,
    OTPRecord,
    TokenBlacklist,
    TokenRecord,
)
from otpgate.services import Services, build_services

logger = get_logger("main")


async def startup(app: FastAPI) -> tuple[Services, bool]:
    """Build the service graph unless one was injected, then start the sweeper.

    Returns the services and whether they run on the module-level engine.
    """
    setup_logging(
        level=settings.log_level,
        format_type="dev" if settings.debug else "structured",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    for warning in settings.check_security_configuration():
        logger.warning(warning)

    services: Services | None = getattr(app.state, "services", None)
    owns_engine = services is None
    if services is None:
        services = build_services(async_session_maker, settings)
        app.state.services = services

    if services.settings.sweeper_enabled:
        await services.sweeper.start()
    else:
        logger.info("Sweeper disabled; expired records are not purged in this process")

    return services, owns_engine


async def shutdown(services: Services, owns_engine: bool) -> None:
    logger.info("Shutting down...")
    if services.sweeper.running:
        await services.sweeper.stop()
    if owns_engine:
        await engine.dispose()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    services, owns_engine = await startup(app)
    try:
        yield
    finally:
        await shutdown(services, owns_engine)


def create_app(services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    ``services`` is normally built in the lifespan; passing it in wires the
    app to an existing service graph (tests, embedding in a larger app).
    """
    app = FastAPI(
        title=settings.app_name,
        description="One-time passcode and session token service",
        version=settings.app_version,
        lifespan=lifespan,
        # API docs only in debug mode
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    if services is not None:
        app.state.services = services

    # Bearer tokens travel in the Authorization header, never in cookies
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
    )

    register_exception_handlers(app)
    app.include_router(health_router)
    app.include_router(auth_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        return {"name": settings.app_name, "version": settings.app_version}

    return app


app = create_app()
