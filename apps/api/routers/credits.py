"""Credit balance, history and consumption endpoints."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field

from routers.auth_scope import AuthContext, ensure_user_scope, get_auth_context
from routers.rate_limit import rate_limit
from services.credits import CreditService, get_credit_service
from services.ledger_types import PHOTO_STAGED_REASON, ConsumptionRequest
from services.protocols import InsufficientCreditsError, TransactionFailureError

router = APIRouter()
logger = logging.getLogger(__name__)


class ConsumeRequest(BaseModel):
    job_id: str = Field(min_length=1, max_length=200)
    amount: int = Field(default=1, ge=1, le=1000)
    reason: str = Field(default=PHOTO_STAGED_REASON, min_length=1, max_length=64)


class CheckRequest(BaseModel):
    count: int = Field(default=1, ge=1, le=1000)


def _insufficient(exc: InsufficientCreditsError) -> HTTPException:
    return HTTPException(
        status_code=402,
        detail={
            "message": "Not enough credits. Buy a credit pack to continue.",
            "available": exc.available,
            "required": exc.required,
        },
    )


@router.get("/balance")
async def credit_balance(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    service: CreditService = Depends(get_credit_service),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    snapshot = await service.get_balance(scoped_user_id)
    return {"user_id": scoped_user_id, **snapshot.to_dict()}


@router.get("/transactions")
async def credit_transactions(
    limit: int = Query(default=50, ge=1, le=500),
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    service: CreditService = Depends(get_credit_service),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    entries = await service.get_transactions(scoped_user_id, limit)
    return {"transactions": [entry.to_dict() for entry in entries]}


@router.get("/ledger.csv")
async def credit_ledger_csv(
    start: Optional[datetime] = Query(default=None, alias="from"),
    end: Optional[datetime] = Query(default=None, alias="to"),
    auth: AuthContext = Depends(get_auth_context),
    service: CreditService = Depends(get_credit_service),
):
    body = await service.export_ledger_csv(auth.user_id, start, end)
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="credits_ledger.csv"'},
    )


@router.post("/check")
async def check_credits(
    request: CheckRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: CreditService = Depends(get_credit_service),
):
    """Pre-enqueue guard. Advisory only: the deduction itself re-checks under lock."""
    snapshot = await service.get_balance(auth.user_id)
    if snapshot.balance < request.count:
        raise HTTPException(status_code=402, detail="Not enough credits.")
    return {"ok": True, "balance": snapshot.balance}


@router.post("/consume")
async def consume_credits(
    request: ConsumeRequest,
    _rate_limit: None = Depends(rate_limit("credits_consume", limit=120, window_seconds=60)),
    auth: AuthContext = Depends(get_auth_context),
    service: CreditService = Depends(get_credit_service),
):
    try:
        result = await service.deduct(
            ConsumptionRequest(
                user_id=auth.user_id,
                amount=request.amount,
                reason=request.reason,
                source_id=request.job_id,
            )
        )
    except InsufficientCreditsError as exc:
        raise _insufficient(exc) from exc
    except TransactionFailureError as exc:
        logger.error("Credit consumption failed for user %s job %s: %s", auth.user_id, request.job_id, exc)
        raise HTTPException(status_code=503, detail="Credit ledger unavailable. Retry the request.") from exc

    return result.to_dict()
