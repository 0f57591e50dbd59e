"""RQ job entrypoints for credit consumption and expiry sweeps."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from config import settings
from database import build_engine, build_session_maker
from services.credits import CreditService, create_credit_service
from services.ledger_types import PHOTO_STAGED_REASON, ConsumptionRequest, DeductionResult
from services.protocols import InsufficientCreditsError


logger = logging.getLogger(__name__)


async def process_staging_job_async(
    job_id: str,
    user_id: str,
    photo_count: int = 1,
    service: Optional[CreditService] = None,
) -> Optional[DeductionResult]:
    """Deduct staging credits for a job. Restarts and retries deduct only once."""
    engine = None
    if service is None:
        # Each RQ job runs in a fresh event loop, so it needs its own engine.
        engine = build_engine()
        service = create_credit_service(build_session_maker(engine))

    try:
        amount = max(int(photo_count), 1) * max(int(settings.STAGING_CREDITS_PER_PHOTO), 1)
        try:
            result = await service.deduct(
                ConsumptionRequest(
                    user_id=user_id,
                    amount=amount,
                    reason=PHOTO_STAGED_REASON,
                    source_id=job_id,
                )
            )
        except InsufficientCreditsError as exc:
            logger.warning("[job %s] Insufficient credits for user %s: %s", job_id, user_id, exc)
            return None

        if result.replayed:
            logger.info("[job %s] Credits were already deducted. Balance: %d", job_id, result.balance.balance)
        else:
            logger.info("[job %s] Credits deducted. New balance: %d", job_id, result.balance.balance)
        if result.threshold_crossed is not None:
            logger.info("[job %s] Low balance threshold crossed: %d", job_id, result.threshold_crossed)
        return result
    finally:
        if engine is not None:
            await engine.dispose()


def process_staging_job(job_id: str, user_id: str, photo_count: int = 1) -> None:
    """RQ worker entrypoint for staging credit consumption."""
    asyncio.run(process_staging_job_async(job_id, user_id, photo_count))


async def run_expiry_sweep_async(service: Optional[CreditService] = None) -> int:
    engine = None
    if service is None:
        engine = build_engine()
        service = create_credit_service(build_session_maker(engine))
    try:
        expired = await service.sweep_expired()
        logger.info("[expiry sweep] Expired %d credit balances", expired)
        return expired
    finally:
        if engine is not None:
            await engine.dispose()


def run_expiry_sweep() -> int:
    """RQ worker entrypoint for a one-off expiry sweep."""
    return asyncio.run(run_expiry_sweep_async())
