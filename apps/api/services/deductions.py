"""Deduction processor: consumption request -> one idempotent credit deduction."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from services.alerts import DEFAULT_THRESHOLDS, normalize_thresholds
from services.ledger_types import ConsumptionRequest, DeductionResult
from services.protocols import BalanceMutator, DuplicateKeyError, LowBalanceNotifier


logger = logging.getLogger(__name__)


class DeductionProcessor:
    """Deducts credits for units of work and requests low-balance alerts after commit."""

    def __init__(
        self,
        balance_mutator: BalanceMutator,
        notifier: Optional[LowBalanceNotifier] = None,
        thresholds: Iterable[int] = DEFAULT_THRESHOLDS,
    ):
        self._mutator = balance_mutator
        self._notifier = notifier
        self._thresholds = normalize_thresholds(thresholds)

    @property
    def thresholds(self):
        return self._thresholds

    async def deduct(self, request: ConsumptionRequest) -> DeductionResult:
        result = await self.apply(request)
        await self.notify(request, result)
        return result

    async def apply(self, request: ConsumptionRequest) -> DeductionResult:
        """Run the deduction transaction without issuing any alert."""
        if int(request.amount) <= 0:
            raise ValueError("amount must be a positive integer")
        if not request.user_id:
            raise ValueError("user_id is required")

        try:
            result = await self._mutator.deduct_credits(
                request.user_id,
                int(request.amount),
                reason=request.reason,
                source_id=request.source_id,
                thresholds=self._thresholds,
            )
        except DuplicateKeyError:
            logger.info(
                "Deduction for %s already applied to user %s; returning current balance",
                request.source_id,
                request.user_id,
            )
            return await self._mutator.load_applied(request.user_id, request.source_id)
        return result

    async def notify(self, request: ConsumptionRequest, result: DeductionResult) -> None:
        """Request the low-balance alert owed by a committed deduction, if any."""
        if result.alert_pending and self._notifier is not None:
            await self._notifier.notify_low_balance(
                request.user_id,
                result.threshold_crossed,
                result.balance.balance,
            )
