"""Health check endpoints."""

from fastapi import APIRouter

from kmsgate import __version__
from kmsgate.config import get_settings
from kmsgate.services.signing_service import get_signing_service

router = APIRouter()


@router.get("/")
async def hello():
    """Liveness probe."""
    return {"message": "hello world"}


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "kmsgate"}


@router.get("/health/detailed")
async def detailed_health():
    """Detailed health check with custody reachability and configuration info."""
    settings = get_settings()
    custody = get_signing_service().custody
    custody_healthy = await custody.health_check()
    return {
        "status": "healthy" if custody_healthy else "degraded",
        "service": "kmsgate",
        "version": __version__,
        "custody": {"type": custody.custody_type.value, "healthy": custody_healthy},
        "config": settings.get_safe_dict(),
    }
