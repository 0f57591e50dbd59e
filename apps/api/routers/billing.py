"""Credit pack catalog and purchase-event intake."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException

from config import settings
from routers.auth_scope import require_purchase_events_token
from routers.rate_limit import rate_limit
from services.credits import CreditService, get_credit_service
from services.protocols import TransactionFailureError
from services.purchase_events import purchase_event_from_payment_object, unwrap_event

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/bundles")
async def list_bundles(service: CreditService = Depends(get_credit_service)):
    return {"bundles": [rule.to_dict() for rule in service.packs.bundles()]}


@router.post("/purchase-events")
async def ingest_purchase_event(
    payload: Dict[str, Any] = Body(...),
    _rate_limit: None = Depends(rate_limit("billing_purchase_events", limit=600, window_seconds=60)),
    _token: None = Depends(require_purchase_events_token),
    service: CreditService = Depends(get_credit_service),
):
    """Grant credits for a completed, already-verified payment object.

    Redelivering the same payment is safe and reports the same credit total.
    """
    if not settings.BILLING_ENABLED:
        raise HTTPException(status_code=503, detail="Billing is disabled. Enable BILLING_ENABLED to accept purchases.")

    event = purchase_event_from_payment_object(unwrap_event(payload))
    if event is None:
        return {"received": True, "credits_granted": 0, "detail": "Unhandled object type."}
    if not event.source_id:
        raise HTTPException(status_code=422, detail="Payment object has no stable identifier.")

    try:
        credits = await service.grant(event)
    except TransactionFailureError as exc:
        logger.error("Credit grant failed for payment %s: %s", event.source_id, exc)
        raise HTTPException(status_code=503, detail="Credit ledger unavailable. Redeliver the event.") from exc

    return {"received": True, "credits_granted": credits, "source_id": event.source_id}
