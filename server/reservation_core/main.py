"""FastAPI application initialization and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .core.config import settings
from .core.database import async_session_factory, close_db, engine, init_db
from .core.exceptions import (
    ProblemDetailsException,
    generic_exception_handler,
    problem_details_handler,
    validation_exception_handler,
)
from .core.middleware import setup_middleware
from .core.observability import (
    SERVICE_NAME,
    SERVICE_VERSION,
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_metrics,
    setup_structured_logging,
    setup_tracing,
)
from .routers import audit, booking, health, hold, inventory, metrics, payment
from .schemas.health import HealthStatus, ReadinessResponse
from .workers.manager import worker_manager

# Configure structured logging
setup_structured_logging()

# Configure traditional logging for compatibility
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Handles startup and shutdown events for the FastAPI application.
    """
    # Startup
    logger.info(
        "Starting reservation core",
        extra={"environment": settings.environment, "debug": settings.debug}
    )

    try:
        # Setup observability
        setup_tracing()
        setup_metrics()
        instrument_sqlalchemy(engine)
        logger.info("Observability setup completed")

        # Development databases are created on the fly; others are migrated with Alembic
        if not settings.is_production:
            await init_db()
            logger.info("Database initialized successfully")

        # Start background workers
        await worker_manager.start_all()
        logger.info("Background workers started successfully")
    except Exception as e:
        logger.error(f"Failed to initialize application: {e}")
        raise

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down reservation core")

    try:
        await worker_manager.stop_all()
        logger.info("Background workers stopped")

        await close_db()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error during application cleanup: {e}")

    logger.info("Application shutdown complete")


async def check_database() -> str:
    """Run a trivial query; returns "ok" or the error class name."""
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
        return "ok"
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Readiness database check failed", extra={"error": str(e)})
        return f"error: {type(e).__name__}"


def register_health_endpoints(app: FastAPI) -> None:
    """Attach /health and /ready to ``app``."""

    @app.get(
        "/health",
        status_code=status.HTTP_200_OK,
        tags=["Health"],
        summary="Health Check",
        description="Check if the service is healthy and responsive",
        response_model=dict,
    )
    async def health_check():
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "environment": settings.environment,
            "debug": settings.debug,
        }

    @app.get(
        "/ready",
        tags=["Health"],
        summary="Readiness Check",
        description="Check if the database answers and the background workers run",
        response_model=ReadinessResponse,
    )
    async def readiness_check():
        database = await check_database()
        ready = database == "ok"
        response_data = ReadinessResponse(
            status=HealthStatus.READY if ready else HealthStatus.DEGRADED,
            checks={"database": database},
            workers=worker_manager.get_worker_status(),
        )
        return JSONResponse(
            status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response_data.model_dump(mode="json"),
        )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


def include_routers(app: FastAPI) -> None:
    app.include_router(health.router)
    app.include_router(inventory.router)
    app.include_router(hold.router)
    app.include_router(booking.router)
    app.include_router(payment.router)
    app.include_router(audit.router)
    app.include_router(metrics.router)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title="Resort Reservation Core",
        description=(
            "Reservation holds with leases, payment lifecycle, provider "
            "reconciliation and a humanized audit trail"
        ),
        version=SERVICE_VERSION,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "traceparent", "tracestate"],
    )

    # Setup custom middleware
    setup_middleware(app, enable_logging=True)

    # Instrument FastAPI with OpenTelemetry
    instrument_fastapi(app)

    register_exception_handlers(app)
    register_health_endpoints(app)
    include_routers(app)

    logger.info("FastAPI application created and configured")

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reservation_core.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
