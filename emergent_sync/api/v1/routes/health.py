"""
Health Check Routes
System status and diagnostics
"""
import logging
from fastapi import APIRouter

from emergent_sync.core.dependencies import client_status
from emergent_sync.models.schemas.health import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Reports whether the database and queue clients are up. Degraded without a database."""
    clients = client_status()
    database, queue = clients["database"], clients["queue"]

    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, database=database, queue=queue)


@router.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "EmergentOS Sync API",
        "version": VERSION,
        "description": "Calendar and Gmail sync with DLP redaction and conflict detection",
        "endpoints": {
            "health": "/health",
            "sync": "/sync/{provider}",
            "status": "/sync/status",
            "disconnect": "/sync/{provider}/disconnect",
            "events": "/calendar/events",
            "conflicts": "/calendar/recalculate-conflicts",
            "webhook": "/nango/webhook"
        }
    }
