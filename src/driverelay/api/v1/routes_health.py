"""Health check endpoint for the Drive relay."""

from fastapi import APIRouter

from driverelay.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns service status, name, and version information without touching
    the Drive API, so it stays fast during cold starts.
    """
    return {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
    }
