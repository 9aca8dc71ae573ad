import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse

from profileshot.api.v1.health import metrics_router
from profileshot.api.v1.router import api_router
from profileshot.config import settings
from profileshot.core.exceptions import AppError, app_error_handler
from profileshot.core.logging_config import configure_logging
from profileshot.middleware.request_id import RequestIDMiddleware
from profileshot.services.profile import build_profile_fetcher
from profileshot.services.storage import ensure_directory

# Configure structured logging (must happen before any logger is created)
configure_logging(log_format=settings.LOG_FORMAT, log_level=settings.LOG_LEVEL)

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        environment=settings.SENTRY_ENVIRONMENT,
        release=f"profileshot@{settings.APP_VERSION}",
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # The browser session is created lazily by the first screenshot request
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    for directory in (settings.SCREENSHOTS_DIR, settings.DEBUG_DIR, settings.USER_DATA_DIR):
        ensure_directory(directory)
    app.state.profile_fetcher = build_profile_fetcher(settings)

    yield

    logger.info("Shutting down...")
    await app.state.profile_fetcher.shutdown()


async def validation_error_handler(request: Request, exc: RequestValidationError):
    missing = any(err.get("type") == "missing" for err in exc.errors())
    return JSONResponse(
        status_code=400,
        content={
            "error": "Missing profile URL" if missing else "Invalid request",
            "message": "Request body must be JSON with a profileUrl string",
        },
    )


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="ProfileShot - full-page LinkedIn profile screenshots from one "
    "long-lived authenticated browser session, with operator hand-off for "
    "verification challenges.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

app.include_router(api_router)
app.include_router(metrics_router)


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "screenshot": "POST /api/profile/screenshot",
            "health": "GET /api/health",
            "readiness": "GET /api/health/ready",
            "docs": "/docs",
        },
    }
