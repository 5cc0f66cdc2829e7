"""ButtonHub Server - FastAPI Application Entry Point."""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from buttonhub.api.responses import ERROR_STATUS, SECURITY_HEADERS, error_body
from buttonhub.config import settings
from buttonhub.database import init_db
from buttonhub.services.errors import RegistrationError, RegistrationValidationError
from buttonhub.services.reset_cleanup import ResetEventError
from buttonhub.services.validation import field_errors

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and create tables on startup."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()
    logger.info("%s %s started (env=%s)", settings.server_name, settings.version, settings.environment)
    yield


app = FastAPI(
    title="ButtonHub",
    description="Registration and ownership service for ButtonHub receivers",
    version=settings.version,
    lifespan=lifespan,
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Attach a request id and the standard security headers."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers.update(SECURITY_HEADERS)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(RegistrationError)
async def registration_error_handler(request: Request, exc: RegistrationError):
    request_id = getattr(request.state, "request_id", "unknown")
    return JSONResponse(status_code=ERROR_STATUS[exc.kind], content=error_body(exc, request_id))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    request_id = getattr(request.state, "request_id", "unknown")
    error = RegistrationValidationError(field_errors(exc.errors()))
    return JSONResponse(status_code=ERROR_STATUS[error.kind], content=error_body(error, request_id))


@app.exception_handler(ResetEventError)
async def reset_event_error_handler(request: Request, exc: ResetEventError):
    request_id = getattr(request.state, "request_id", "unknown")
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_event", "message": str(exc), "request_id": request_id},
    )


# --- Register API routers ---
from buttonhub.api.devices import router as devices_router  # noqa: E402
from buttonhub.api.events import router as events_router  # noqa: E402
from buttonhub.api.system import router as system_router  # noqa: E402

API_PREFIX = "/api/v1"

app.include_router(devices_router, prefix=API_PREFIX)
app.include_router(events_router, prefix=API_PREFIX)
app.include_router(system_router, prefix=API_PREFIX)


@app.get("/")
def root():
    """Server info."""
    return {
        "name": settings.server_name,
        "environment": settings.environment,
        "version": settings.version,
        "status": "running",
    }
