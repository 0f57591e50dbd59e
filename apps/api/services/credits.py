"""Credit service facade: balance reads, grants, deductions and expiry."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from fastapi import Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from config import settings
from services.balance_store import BalanceStore
from services.credit_mutations import SqlBalanceMutator
from services.deductions import DeductionProcessor
from services.expiry import ExpirySweeper
from services.grants import GrantProcessor
from services.ledger_store import LedgerStore
from services.ledger_types import BalanceSnapshot, ConsumptionRequest, DeductionResult, LedgerEntry
from services.packs import PackRuleTable
from services.protocols import BalanceMutator, LowBalanceNotifier, TransactionFailureError, UserResolver
from services.purchase_events import PurchaseEvent
from services.reporting import credit_metrics, ledger_entries_to_csv
from services.users import EmailUserResolver


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CreditService:
    """Constructed once per process and handed to routers and jobs explicitly."""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        grants: GrantProcessor,
        deductions: DeductionProcessor,
        sweeper: ExpirySweeper,
        packs: PackRuleTable,
        *,
        timeout_seconds: float = 10.0,
    ):
        self._session_maker = session_maker
        self.grants = grants
        self.deductions = deductions
        self.sweeper = sweeper
        self.packs = packs
        self._timeout = float(timeout_seconds)

    async def _bounded(self, awaitable: Awaitable[T], label: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("%s timed out after %.1fs", label, self._timeout)
            raise TransactionFailureError(f"{label} timed out after {self._timeout}s") from exc

    async def get_balance(self, user_id: str) -> BalanceSnapshot:
        async with self._session_maker() as db:
            snapshot = await BalanceStore(db).get(user_id)
        return snapshot or BalanceSnapshot(user_id=user_id)

    async def get_transactions(self, user_id: str, limit: int = 50) -> List[LedgerEntry]:
        async with self._session_maker() as db:
            return await LedgerStore(db).list_recent(user_id, limit)

    async def ledger_sum(self, user_id: str) -> int:
        async with self._session_maker() as db:
            return await LedgerStore(db).sum_deltas(user_id)

    async def grant(self, event: PurchaseEvent) -> int:
        return await self._bounded(self.grants.grant(event), f"grant {event.source_id}")

    async def deduct(self, request: ConsumptionRequest) -> DeductionResult:
        result = await self._bounded(self.deductions.apply(request), f"deduct {request.source_id or request.user_id}")
        # Committed by now; the alert request is outside the transaction bound.
        await self.deductions.notify(request, result)
        return result

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        return await self.sweeper.sweep(now)

    async def export_ledger_csv(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> str:
        async with self._session_maker() as db:
            entries = await LedgerStore(db).list_between(user_id, start, end)
        return ledger_entries_to_csv(entries)

    async def metrics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        async with self._session_maker() as db:
            return await credit_metrics(db, now)


def create_credit_service(
    session_maker: Optional[async_sessionmaker] = None,
    *,
    user_resolver: Optional[UserResolver] = None,
    balance_mutator: Optional[BalanceMutator] = None,
    notifier: Optional[LowBalanceNotifier] = None,
    packs: Optional[PackRuleTable] = None,
    config=None,
) -> CreditService:
    """
    Create CreditService with real dependencies unless overrides are given.

    Args:
        session_maker: Session factory (defaults to the application's)
        user_resolver: Payer email -> user id (defaults to EmailUserResolver)
        balance_mutator: Transactional mutations (defaults to SqlBalanceMutator)
        notifier: Low-balance notifier (defaults to the RQ notifier)
        packs: Pack rule table (defaults to the configured table)
        config: Settings object (defaults to the module settings)
    """
    config = config or settings
    if session_maker is None:
        from database import async_session_maker

        session_maker = async_session_maker
    if notifier is None:
        from services.notifications import RqLowBalanceNotifier

        notifier = RqLowBalanceNotifier()

    if packs is None:
        packs = PackRuleTable.from_settings(config)
    user_resolver = user_resolver or EmailUserResolver(session_maker)
    balance_mutator = balance_mutator or SqlBalanceMutator(
        session_maker,
        auto_extend_days=config.AUTO_EXTEND_DAYS,
    )

    return CreditService(
        session_maker,
        GrantProcessor(user_resolver, balance_mutator, packs),
        DeductionProcessor(balance_mutator, notifier, thresholds=config.LOW_BALANCE_THRESHOLDS),
        ExpirySweeper(session_maker, write_ledger_entry=config.EXPIRY_WRITES_LEDGER_ENTRY),
        packs,
        timeout_seconds=config.CREDIT_TXN_TIMEOUT_SECONDS,
    )


def get_credit_service(request: Request) -> CreditService:
    """FastAPI dependency returning the process-wide CreditService."""
    service = getattr(request.app.state, "credit_service", None)
    if service is None:
        service = create_credit_service()
        request.app.state.credit_service = service
    return service
