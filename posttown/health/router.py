"""Health check endpoints."""

from fastapi import APIRouter, Request

from posttown.config import Settings


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness check: the process is up."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request) -> dict[str, str | bool]:
    """Readiness check: reports whether each backend was initialized."""
    app_state = request.app.state
    settings: Settings = app_state.settings
    backends = {
        "store": getattr(app_state, "post_store", None) is not None,
        "sessions": getattr(app_state, "session_registry", None) is not None,
        "files": getattr(app_state, "file_store", None) is not None,
    }
    return {
        "status": "ready" if all(backends.values()) else "degraded",
        "environment": settings.environment,
        **backends,
    }


@router.get("")
async def health(request: Request) -> dict[str, str]:
    """General health check endpoint."""
    settings: Settings = request.app.state.settings
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
