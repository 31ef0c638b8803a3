"""Health check endpoint."""

from fastapi import APIRouter, Request

from pairbridge import __version__
from pairbridge.config.settings import settings

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def health_check(request: Request) -> dict:
    service = getattr(request.app.state, "pairing_service", None)
    return {
        "status": "ok",
        "environment": settings.ENVIRONMENT,
        "version": __version__,
        "client_configured": service is not None,
        "active_sessions": len(service.active_sessions()) if service is not None else 0,
    }
