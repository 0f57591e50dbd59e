"""Aggregate credit metrics, gated behind ENABLE_METRICS."""

import time

from fastapi import APIRouter, Depends, HTTPException

from config import settings
from services.credits import CreditService, get_credit_service

router = APIRouter()

_started_at = time.monotonic()


@router.get("/metrics")
async def credit_metrics(service: CreditService = Depends(get_credit_service)):
    if not settings.ENABLE_METRICS:
        raise HTTPException(status_code=404, detail="Not enabled")
    snapshot = await service.metrics()
    return {"uptime_s": int(time.monotonic() - _started_at), **snapshot}
