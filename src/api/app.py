"""FastAPI application entry point with global error handling."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.exceptions import (
    ConfigurationError,
    ConflictError,
    ExternalDependencyError,
    NotFoundError,
    QuoteExpiredError,
    RateLimited,
    UnauthorizedError,
    ValidationError,
    WashlineError,
)
from core.logging_config import get_logger, setup_logging
from api.routes import appointments, contacts, crm, health, intake, outbox, public_quotes, quotes

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

# First match wins; subclasses must precede their bases.
STATUS_CODES = (
    (QuoteExpiredError, 410),
    (ValidationError, 400),
    (UnauthorizedError, 401),
    (NotFoundError, 404),
    (ConflictError, 409),
    (RateLimited, 429),
    (ExternalDependencyError, 502),
    (ConfigurationError, 500),
)


def error_body(exc: WashlineError) -> dict:
    body = {"error": exc.reason, "message": str(exc)}
    if exc.details:
        body["details"] = exc.details
    return body


def status_for(exc: WashlineError) -> int:
    for exc_type, status_code in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Sets up logging, validates database, and logs startup/shutdown events.
    Non-blocking startup - allows app to start even if database is not ready.
    """
    json_logging = SETTINGS.log_format == "json"
    setup_logging(level=SETTINGS.log_level, json_format=json_logging)

    if not SETTINGS.dry_run:
        LOGGER.warning("!!! LIVE MODE !!! DRY_RUN=false - Real SMS and calendar calls will be made!")
    else:
        LOGGER.info("DRY_RUN mode enabled - No real SMS or calendar calls")

    LOGGER.info(
        "API application starting",
        extra={"extra_data": {
            "environment": SETTINGS.environment,
            "dry_run": SETTINGS.dry_run,
            "enabled_services": SETTINGS.get_enabled_services(),
        }}
    )

    try:
        from core.db import init_db, validate_database
        db_status = validate_database()

        if db_status["status"] == "error":
            LOGGER.error(
                "Database validation failed - app will start without database",
                extra={"extra_data": {"errors": db_status["errors"], "database_url": db_status["database_url"]}}
            )
        elif db_status["status"] == "missing_tables":
            LOGGER.warning(
                "Missing database tables detected - attempting to create",
                extra={"extra_data": {"missing": db_status["tables_missing"]}}
            )
            init_result = init_db(create_missing_only=True)
            if init_result["status"] == "error":
                LOGGER.error(
                    "Failed to create missing tables",
                    extra={"extra_data": {"error": init_result.get("error")}}
                )
        else:
            LOGGER.info(
                "Database validation passed",
                extra={"extra_data": {"tables_found": len(db_status["tables_found"])}}
            )
    except Exception as e:
        LOGGER.error(f"Database validation error during startup: {e} - app will start anyway")

    yield
    LOGGER.info("API application shutting down")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance with:
        - CORS middleware
        - Global exception handlers
        - All API routes
    """
    application = FastAPI(
        title="Washline",
        description="Operations backend for an exterior cleaning business",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[SETTINGS.site_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # Global Exception Handlers
    # -------------------------------------------------------------------------

    @application.exception_handler(WashlineError)
    async def app_error_handler(request: Request, exc: WashlineError) -> JSONResponse:
        """Map the exception taxonomy onto status codes and {"error", "message"} bodies."""
        status_code = status_for(exc)
        extra = {"extra_data": {"path": request.url.path, "reason": exc.reason}}
        if status_code >= 500:
            LOGGER.error(f"Application error: {exc}", extra=extra, exc_info=True)
        else:
            LOGGER.warning(f"Request rejected ({status_code}): {exc}", extra=extra)
        return JSONResponse(status_code=status_code, content=error_body(exc))

    @application.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Body/query validation failures use the same error shape as domain validation."""
        problems = [
            {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_payload", "message": "Request validation failed", "details": {"errors": problems}},
        )

    # -------------------------------------------------------------------------
    # Include Routers
    # -------------------------------------------------------------------------
    application.include_router(health.router, prefix="/health", tags=["Health"])
    application.include_router(intake.router, prefix="/web", tags=["Intake"])
    application.include_router(public_quotes.router, prefix="/public/quotes", tags=["Public Quotes"])
    application.include_router(quotes.router, prefix="/quotes", tags=["Quotes"])
    application.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
    application.include_router(outbox.router, prefix="/admin/outbox", tags=["Outbox"])
    application.include_router(crm.router, prefix="/admin/crm", tags=["CRM"])
    application.include_router(contacts.router, prefix="/admin/contacts", tags=["Contacts"])

    return application


# Create the application instance
app = create_app()

LOGGER.info("API application initialized")
