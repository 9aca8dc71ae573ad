import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response

from profileshot.api.deps import get_session_manager
from profileshot.config import settings
from profileshot.core.metrics import get_metrics, get_metrics_content_type
from profileshot.schemas.profile import HealthResponse
from profileshot.services.session import SessionManager, SessionState

router = APIRouter()
metrics_router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Returns HTTP 200 while the service process is running. Does not touch the browser session.",
)
async def liveness():
    return {"status": "ok", "message": "LinkedIn Screenshot Service is running"}


@router.get(
    "/health/ready",
    summary="Readiness check",
    description="Reports the browser session state (uninitialized, initializing or ready), whether it is authenticated and how many browser contexts are open. The session is created lazily by the first screenshot request, so an uninitialized session is not an error and the endpoint always returns HTTP 200.",
)
async def readiness(session: SessionManager = Depends(get_session_manager)):
    """Readiness probe: session state and open browser contexts."""
    state = session.state
    return JSONResponse(
        content={
            "status": "ready" if state is SessionState.READY else "waiting",
            "checks": {
                "session": state.value,
                "authenticated": session.authenticated,
                "browser_contexts": session.provider.open_contexts,
            },
        },
    )


@metrics_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose application metrics in Prometheus exposition format. Returns HTTP 404 if metrics collection is disabled in the application configuration.",
)
async def metrics():
    if not settings.METRICS_ENABLED:
        return Response(content="Metrics disabled", status_code=404)

    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type(),
    )
