"""
Health check endpoints.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from services.credits import CreditService, get_credit_service

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns database and Redis reachability.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown",
    }

    try:
        from database import engine

        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    # Redis only carries alert and staging queues; the ledger works without it.
    try:
        r = redis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check(service: CreditService = Depends(get_credit_service)):
    """Kubernetes-style readiness probe."""
    missing = []
    if settings.BILLING_ENABLED and not service.packs.bundles():
        missing.append("PRICE_* / PACK_RULES_JSON")
    if settings.BILLING_ENABLED and not settings.PURCHASE_EVENTS_TOKEN:
        missing.append("PURCHASE_EVENTS_TOKEN")

    if missing:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
