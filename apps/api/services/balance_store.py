"""Per-user balance rows: lazy creation, row locking and expiry queries."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_balance import CreditBalance
from services.ledger_types import BalanceSnapshot


class BalanceStore:
    """Balance cache access bound to the caller's session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def ensure(self, user_id: str) -> None:
        """Insert a zero balance row unless one already exists."""
        dialect = self.db.get_bind().dialect.name
        values = {"user_id": user_id, "balance": 0, "auto_extend": False}
        if dialect == "postgresql":
            stmt = pg_insert(CreditBalance).values(**values).on_conflict_do_nothing(index_elements=["user_id"])
        elif dialect == "sqlite":
            stmt = sqlite_insert(CreditBalance).values(**values).on_conflict_do_nothing(index_elements=["user_id"])
        else:
            if await self._select(user_id) is None:
                self.db.add(CreditBalance(**values))
                await self.db.flush()
            return
        await self.db.execute(stmt)

    async def lock(self, user_id: str) -> CreditBalance:
        """Return the user's balance row under an exclusive row lock.

        The row must exist (see ensure). The lock lasts until the caller's
        transaction ends; other users' rows are untouched.
        """
        result = await self.db.execute(
            select(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def get(self, user_id: str) -> Optional[BalanceSnapshot]:
        row = await self._select(user_id)
        return BalanceSnapshot.from_row(row) if row is not None else None

    async def lock_expired(self, now: datetime) -> List[CreditBalance]:
        """Lock every positive balance whose expiry is in the past."""
        result = await self.db.execute(
            select(CreditBalance)
            .where(
                CreditBalance.expires_at.is_not(None),
                CreditBalance.expires_at < now,
                CreditBalance.balance > 0,
            )
            .order_by(CreditBalance.user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def zero_expired(self, now: datetime) -> int:
        """Set expired positive balances to 0 in one statement; returns rows affected."""
        result = await self.db.execute(
            update(CreditBalance)
            .where(
                CreditBalance.expires_at.is_not(None),
                CreditBalance.expires_at < now,
                CreditBalance.balance > 0,
            )
            .values(balance=0)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    async def _select(self, user_id: str) -> Optional[CreditBalance]:
        result = await self.db.execute(select(CreditBalance).where(CreditBalance.user_id == user_id))
        return result.scalar_one_or_none()
