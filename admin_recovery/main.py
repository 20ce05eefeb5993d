import asyncio
import contextlib
import socket
from contextlib import asynccontextmanager
from typing import Final

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .application.scheduler import SweepReport, run_forever
from .application.services import build_services
from .config import settings
from .domain.exceptions import DomainError
from .infrastructure.database.database import get_main_engine, init_db
from .logging_config import get_logger, setup_logging
from .logging_utils import log_startup
from .middleware import log_requests_middleware
from .presentation.api_routes import api_router
from .presentation.dependencies import get_email_sender
from .presentation.error_handlers import handle_domain_error, problem_response
from .presentation.problem_details import ProblemDetailFactory
from .rate_limiting import rate_limit_middleware
from .telemetry import setup_telemetry


def run_sweep() -> SweepReport:
    """One expiry pass with its own session, for the background loop."""
    with Session(get_main_engine()) as session:
        services = build_services(session, settings, email_sender=get_email_sender())
        return services.scheduler.sweep()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging()
    logger = get_logger(__name__)

    init_db(get_main_engine())
    logger.info("Database initialized successfully")

    log_startup(
        socket.gethostname(),
        get_main_engine().dialect.name,
        settings.endorsements_required,
        settings.cooling_off_days,
        settings.sweep_interval_seconds if settings.sweep_enabled else None,
    )

    stop_event = asyncio.Event()
    sweep_task: asyncio.Task | None = None
    if settings.sweep_enabled:
        sweep_task = asyncio.create_task(
            run_forever(run_sweep, settings.sweep_interval_seconds, stop_event)
        )

    yield

    stop_event.set()
    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    logger.info("Application shutdown completed")


app: Final = FastAPI(
    title=settings.app_name,
    version=settings.version,
    debug=settings.debug,
    lifespan=lifespan,
    description="""
Recovery of admin rights for families whose last admin is gone.

## Flow

1. A family member opens a **claim**, verified either by **endorsements** from
   other members or by an **email challenge** answered by the original owner.
2. An approved claim waits out a **cooling-off period** so objections can
   surface.
3. The claimant then **grants** themselves admin rights; the role change and
   the claim completion happen atomically.

Claims that are not completed in time expire. Every transition, and every
rejected attempt at one, is recorded in the claim's audit trail.

## Rate Limiting

- **Reads**: 100 requests per minute per IP
- **Writes**: 30 requests per minute per IP
- **Claim submission and challenge re-issue**: 5 requests per minute per IP

Rate limit headers (`X-RateLimit-*`) are included in all API responses.

## Authentication

Callers are identified by the user id in the path. Authentication is handled
by the gateway in front of this service.
    """.strip(),
    openapi_tags=[
        {"name": "claims", "description": "Admin claims, endorsements and grants"},
        {"name": "notifications", "description": "Claim notifications per user"},
    ],
)

setup_telemetry(app)

# Order matters: rate limiting before logging
app.middleware("http")(rate_limit_middleware)
app.middleware("http")(log_requests_middleware)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    """Global handler for domain-specific errors."""
    logger = get_logger(__name__)
    logger.warning(
        "Domain error occurred",
        error_type=type(exc).__name__,
        error_code=exc.code,
        error_message=str(exc),
        path=request.url.path,
        method=request.method,
    )
    return handle_domain_error(exc, request)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Global handler for Pydantic validation errors."""
    logger = get_logger(__name__)
    logger.warning(
        "Request validation error occurred",
        errors=exc.errors(),
        path=request.url.path,
        method=request.method,
    )

    field_errors = []
    for error in exc.errors():
        field_name = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        field_errors.append(
            {
                "field": field_name or "unknown",
                "code": error["type"],
                "message": error["msg"],
            }
        )

    return problem_response(
        ProblemDetailFactory.validation_failed(
            detail="Request validation failed",
            instance=str(request.url.path),
            field_errors=field_errors,
        )
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    """Global handler for database errors that escaped the use cases."""
    logger = get_logger(__name__)
    logger.error(
        "Database error occurred",
        error_type=type(exc).__name__,
        error_message=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    return problem_response(
        ProblemDetailFactory.internal_server_error(
            detail="A database error occurred. Please try again.",
            instance=str(request.url.path),
        )
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Global handler for unexpected errors."""
    logger = get_logger(__name__)
    logger.error(
        "Unexpected error occurred",
        error_type=type(exc).__name__,
        error_message=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    return problem_response(
        ProblemDetailFactory.internal_server_error(
            detail="An unexpected error occurred. Please try again.",
            instance=str(request.url.path),
        )
    )


app.include_router(api_router)
