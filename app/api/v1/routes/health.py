"""
Health Check Routes
System status and diagnostics
"""
import logging
from fastapi import APIRouter
from fastapi.responses import JSONResponse

import app.core.dependencies as deps

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Liveness: the process is up."""
    return {"status": "healthy"}


@router.get("/health/ready")
async def readiness_check():
    """
    Readiness: Supabase client initialized and, when configured, Redis
    answers a ping (the scheduled-sync queue depends on it).
    """
    checks = {"supabase": deps._supabase_client is not None}

    if deps._redis_client is not None:
        try:
            checks["redis"] = bool(deps._redis_client.ping())
        except Exception as e:
            logger.warning(f"⚠️  Redis ping failed: {e}")
            checks["redis"] = False

    ready = all(checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "degraded", "checks": checks}
    )


@router.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Container CRM Sync API",
        "version": "1.0.0",
        "description": "TeamLeader and Gmail sync with LLM customer analytics",
        "endpoints": {
            "health": "/health",
            "oauth": "/oauth/{provider}/authorize",
            "sync": {
                "teamleader": "/sync/teamleader",
                "teamleader_import": "/sync/teamleader/import",
                "gmail": "/sync/gmail",
                "gmail_backfill": "/sync/gmail/backfill"
            },
            "analysis": "/analysis/{kind}",
            "email": "/email/send"
        }
    }
