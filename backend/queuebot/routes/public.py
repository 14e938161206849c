# /queuebot/routes/public.py

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest
from datetime import datetime, timezone

from queuebot.config.settings import settings
from queuebot.utils.dependencies import verify_api_key
from queuebot.services.db_service import db_service
from queuebot.services.cache_service import cache_service

# Unauthenticated probes plus the Prometheus endpoint, which is guarded by
# the API key when one is configured.

router = APIRouter()

@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Queuebot WhatsApp Conversation Engine",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.environment
    }

@router.get("/health", summary="Basic Health Check")
async def health_check():
    """Basic health check for load balancers."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc)}

@router.get("/health/ready", summary="Readiness Probe")
async def readiness_check():
    """Readiness probe: MongoDB must answer, Redis is reported but optional."""
    if not await db_service.health_check():
        raise HTTPException(status_code=503, detail="Service not ready: database unavailable")
    try:
        await cache_service.redis.ping()
        cache_status = "connected"
    except Exception:
        cache_status = "unavailable"
    return {
        "status": "ready",
        "services": {
            "database": "connected",
            "cache": cache_status,
            "whatsapp": "configured" if settings.ultramsg_configured else "not_configured",
        },
    }

@router.get("/health/live", summary="Liveness Probe")
async def liveness_check():
    """Liveness probe."""
    return {"status": "alive"}

@router.get("/metrics", tags=["Monitoring"])
async def metrics(_: None = Depends(verify_api_key)):
    """Secured Prometheus metrics endpoint."""
    return PlainTextResponse(generate_latest(), media_type="text/plain")
