"""Transactional ledger + balance mutations (the default BalanceMutator)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from services.alerts import AlertStore, highest_crossed_threshold
from services.balance_store import BalanceStore
from services.ledger_store import LedgerStore
from services.ledger_types import BalanceSnapshot, DeductionResult, GrantOutcome, LedgerEntry, PackGrant
from services.protocols import DuplicateKeyError, InsufficientCreditsError, TransactionFailureError


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _reject_other_kind(existing: LedgerEntry, *, deduction: bool) -> None:
    """A source id already used by a grant cannot replay as a deduction, and vice versa."""
    if (existing.delta < 0) != deduction:
        kind = "deduction" if deduction else "grant"
        raise TransactionFailureError(
            f"source_id {existing.source_id} for user {existing.user_id} is already used by a "
            f"{existing.reason} entry ({existing.delta:+d}) and cannot be applied as a {kind}"
        )


class SqlBalanceMutator:
    """Runs each grant/deduction as one short transaction on its own session.

    Every mutation starts by inserting the balance row if absent and locking it,
    so concurrent operations on one user serialize while other users proceed.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        *,
        auto_extend_days: int = 180,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._session_maker = session_maker
        self._auto_extend = timedelta(days=max(int(auto_extend_days), 0))
        self._clock = clock

    async def add_credits(
        self,
        user_id: str,
        credits: int,
        *,
        reason: str,
        source_id: Optional[str],
        pack: Optional[PackGrant] = None,
    ) -> GrantOutcome:
        async with self._session_maker() as db:
            try:
                balances = BalanceStore(db)
                await balances.ensure(user_id)
                row = await balances.lock(user_id)

                entry = await LedgerStore(db).append(user_id, int(credits), reason, source_id)

                row.balance = int(row.balance or 0) + int(credits)
                if pack is not None:
                    # Last purchased pack's policy replaces whatever was there.
                    row.expires_at = pack.expires_at
                    row.last_pack = pack.pack_key
                    row.auto_extend = bool(pack.auto_extend)
                snapshot = BalanceSnapshot.from_row(row)
                await db.commit()
            except DuplicateKeyError as exc:
                await db.rollback()
                if exc.existing is not None:
                    _reject_other_kind(exc.existing, deduction=False)
                raise
            except SQLAlchemyError as exc:
                await db.rollback()
                raise TransactionFailureError(f"Credit grant failed for user {user_id}: {exc}") from exc

        logger.info(
            "Ledger: user_id=%s delta=%+d reason=%s source=%s balance_after=%d",
            user_id, int(credits), reason, source_id, snapshot.balance,
        )
        return GrantOutcome(balance=snapshot, entry=entry)

    async def deduct_credits(
        self,
        user_id: str,
        amount: int,
        *,
        reason: str,
        source_id: Optional[str],
        thresholds: Sequence[int],
    ) -> DeductionResult:
        amount = int(amount)
        async with self._session_maker() as db:
            try:
                balances = BalanceStore(db)
                ledger = LedgerStore(db)
                await balances.ensure(user_id)
                row = await balances.lock(user_id)

                # A retried unit of work must replay even if the balance has since dropped.
                if source_id is not None:
                    existing = await ledger.get_by_source(user_id, source_id)
                    if existing is not None:
                        _reject_other_kind(existing, deduction=True)
                        raise DuplicateKeyError(user_id, source_id, existing=existing)

                before = int(row.balance or 0)
                if before < amount:
                    raise InsufficientCreditsError(
                        f"Insufficient credits. Required: {amount}, available: {before}.",
                        available=before,
                        required=amount,
                    )

                entry = await ledger.append(user_id, -amount, reason, source_id)

                after = before - amount
                row.balance = after
                if row.auto_extend:
                    row.expires_at = self._clock() + self._auto_extend

                threshold = highest_crossed_threshold(before, after, thresholds)
                alert_pending = False
                if threshold is not None:
                    alerts = AlertStore(db)
                    if await alerts.needs_alert(user_id, threshold):
                        await alerts.mark_sent(user_id, threshold)
                        alert_pending = True

                snapshot = BalanceSnapshot.from_row(row)
                await db.commit()
            except (DuplicateKeyError, InsufficientCreditsError, TransactionFailureError):
                await db.rollback()
                raise
            except SQLAlchemyError as exc:
                await db.rollback()
                raise TransactionFailureError(f"Credit deduction failed for user {user_id}: {exc}") from exc

        logger.info(
            "Ledger: user_id=%s delta=%+d reason=%s source=%s balance_after=%d threshold=%s",
            user_id, -amount, reason, source_id, snapshot.balance, threshold,
        )
        return DeductionResult(
            balance=snapshot,
            entry=entry,
            threshold_crossed=threshold,
            alert_pending=alert_pending,
        )

    async def load_applied(self, user_id: str, source_id: str) -> DeductionResult:
        async with self._session_maker() as db:
            try:
                entry = await LedgerStore(db).get_by_source(user_id, source_id)
                snapshot = await BalanceStore(db).get(user_id)
            except SQLAlchemyError as exc:
                raise TransactionFailureError(f"Could not load applied entry {source_id}: {exc}") from exc
        if entry is None:
            raise TransactionFailureError(f"No ledger entry for user={user_id} source_id={source_id}")
        _reject_other_kind(entry, deduction=True)
        return DeductionResult(
            balance=snapshot or BalanceSnapshot(user_id=user_id),
            entry=entry,
            replayed=True,
        )
