"""FastAPI application entry point for Card Provisioning Service."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from card_provisioning import __version__
from card_provisioning.api.dependencies import shutdown_services
from card_provisioning.api.models import rejected
from card_provisioning.api.routes import (
    auth_router,
    cards_router,
    payments_router,
    visa_router,
)
from card_provisioning.config import settings
from card_provisioning.infrastructure.database import close_engine, get_engine, init_db
from card_provisioning.logging_config import configure_logging
from card_provisioning.models.exceptions import (
    AuthorizationError,
    CardOperationRejected,
    ProviderError,
    StorageError,
    ValidationError,
)

# Configure logging at module level
configure_logging(settings.log_level, format_as_json=not settings.debug)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager.

    Handles startup and shutdown:
    - Create tables when auto-create is enabled
    - Verify the database connection
    - Stop polling loops and release connections on shutdown
    """
    logger.info("starting_card_provisioning", environment=settings.environment)

    try:
        if settings.database_auto_create:
            await init_db()
            logger.info("database_tables_created")

        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("database_connection_verified")
    except Exception as e:
        logger.error("failed_to_initialize_database", error=str(e))
        raise

    logger.info("card_provisioning_started")

    yield

    logger.info("shutting_down_card_provisioning")
    await shutdown_services()
    await close_engine()
    logger.info("card_provisioning_shutdown_complete")


app = FastAPI(
    title="Card Provisioning Service",
    description="Payment verification and idempotent virtual card provisioning",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

app.include_router(auth_router)
app.include_router(payments_router)
app.include_router(cards_router)
app.include_router(visa_router)


def _envelope(status_code: int, error: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=rejected(error), headers=headers)


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    return f"{location}: {message}" if location else message


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    message = _describe_validation_error(exc)
    logger.info("request_validation_failed", path=request.url.path, error=message)
    return _envelope(400, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 405:
        return _envelope(405, "Method not allowed", headers=exc.headers)
    return _envelope(exc.status_code, str(exc.detail), headers=exc.headers)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    logger.info("invalid_request", path=request.url.path, error=str(exc))
    return _envelope(400, str(exc))


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
    logger.warning("request_not_authorized", path=request.url.path, error=str(exc))
    return _envelope(401, str(exc), headers={"WWW-Authenticate": "Bearer"})


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
    logger.warning(
        "provider_error", path=request.url.path, error_kind=exc.error_kind, error=str(exc)
    )
    return _envelope(200, str(exc))


@app.exception_handler(CardOperationRejected)
async def card_operation_rejected_handler(
    request: Request, exc: CardOperationRejected
) -> JSONResponse:
    return _envelope(200, str(exc))


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("storage_error", path=request.url.path, error=str(exc))
    return _envelope(503, "Storage temporarily unavailable, please retry")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path, error_type=type(exc).__name__)
    return _envelope(500, "Internal server error")


@app.get("/health")
async def health_check() -> Response:
    """Health check endpoint.

    Returns:
        200 OK if service is healthy
        503 Service Unavailable if unhealthy
    """
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))

        return JSONResponse(
            status_code=200,
            content={
                "status": "healthy",
                "service": settings.service_name,
                "environment": settings.environment,
            },
        )
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "service": settings.service_name,
                "error": str(e),
            },
        )


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "Card Provisioning Service",
        "version": __version__,
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "card_provisioning.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
