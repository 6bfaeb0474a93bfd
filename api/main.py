"""Salon API: FastAPI entry point.

Registers middleware, error handlers, routers, and lifecycle hooks. Each
vertical adds its own router under /api/{vertical}/.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.middleware import RequestLoggingMiddleware
from core.database import close_db, init_db
from core.errors import DomainError, InternalError, ValidationError
from core.logging_setup import setup_logging
from core.settings import CORS_ORIGINS, CREATE_TABLES

setup_logging()
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown hooks."""
    # Startup: import renderer to auto-register with template engine
    import verticals.salon.renderer  # noqa: F401

    if CREATE_TABLES:
        await init_db()
    logger.info("Salon API started")
    yield
    await close_db()
    logger.info("Salon API shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Salon",
    description="Appointment booking, shop orders, stock and loyalty for salons",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request id + access log
app.add_middleware(RequestLoggingMiddleware)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.http_status >= 500:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "code": exc.code.value, "error": str(exc)},
        )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    field_errors = {
        ".".join(str(part) for part in err["loc"] if part != "body"): err["msg"]
        for err in exc.errors()
    }
    error = ValidationError(field_errors)
    return JSONResponse(status_code=422, content=error.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    # Details stay in the log; the caller only sees INTERNAL_ERROR
    logger.exception(
        "Unhandled error",
        extra={"path": request.url.path, "method": request.method},
    )
    error = InternalError()
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


# ---------------------------------------------------------------------------
# Routers (verticals register here)
# ---------------------------------------------------------------------------

from verticals.salon.router import router as salon_router  # noqa: E402

app.include_router(salon_router, prefix="/api/salon", tags=["Salon"])


# ---------------------------------------------------------------------------
# Health & root
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {"status": "healthy", "version": "0.1.0"}


@app.get("/")
async def root():
    return {
        "name": "Salon",
        "version": "0.1.0",
        "docs": "/docs",
        "verticals": ["salon"],
        "description": "Appointment booking and shop consistency core",
    }
