"""Expiry sweeper: zero balances whose pack validity has run out."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from services.balance_store import BalanceStore
from services.ledger_store import LedgerStore
from services.ledger_types import EXPIRED_REASON, as_utc
from services.protocols import DuplicateKeyError, TransactionFailureError


logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Periodic batch over the balance cache.

    By default the sweep only zeroes balances and writes no ledger row, so the
    ledger sum and the balance disagree for swept users until this is resolved.
    With write_ledger_entry=True each zeroing is paired with an "expired" entry.
    """

    def __init__(self, session_maker: async_sessionmaker, *, write_ledger_entry: bool = False):
        self._session_maker = session_maker
        self._write_ledger_entry = write_ledger_entry

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Zero every positive balance with expires_at in the past; returns the count."""
        now = now or datetime.now(timezone.utc)
        async with self._session_maker() as db:
            try:
                balances = BalanceStore(db)
                if not self._write_ledger_entry:
                    count = await balances.zero_expired(now)
                else:
                    ledger = LedgerStore(db)
                    rows = await balances.lock_expired(now)
                    for row in rows:
                        # One key per zeroing; a pack-less top-up keeps the old expires_at.
                        expired_at = as_utc(row.expires_at)
                        after_id = await ledger.latest_id(row.user_id)
                        await ledger.append(
                            row.user_id,
                            -int(row.balance),
                            EXPIRED_REASON,
                            source_id=f"expiry:{expired_at.isoformat()}:{after_id}",
                        )
                        row.balance = 0
                    count = len(rows)
                await db.commit()
            except (SQLAlchemyError, DuplicateKeyError) as exc:
                await db.rollback()
                raise TransactionFailureError(f"Expiry sweep failed: {exc}") from exc

        if count:
            logger.info("Expired %d credit balances (ledger entries: %s)", count, self._write_ledger_entry)
        return count
