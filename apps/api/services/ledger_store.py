"""Append-only credit ledger access for a single session/transaction."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_ledger import CreditLedger
from services.ledger_types import LedgerEntry
from services.protocols import DuplicateKeyError


class LedgerStore:
    """Ledger reads and appends bound to the caller's session.

    The caller owns the transaction: nothing here commits or rolls back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        user_id: str,
        delta: int,
        reason: str,
        source_id: Optional[str] = None,
    ) -> LedgerEntry:
        """Insert a ledger row, raising DuplicateKeyError if source_id was used before."""
        if source_id is not None:
            existing = await self.get_by_source(user_id, source_id)
            if existing is not None:
                raise DuplicateKeyError(user_id, source_id, existing=existing)

        row = CreditLedger(
            user_id=user_id,
            delta=int(delta),
            reason=reason,
            source_id=source_id,
        )
        self.db.add(row)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            # A concurrent writer slipped past the lookup; the unique index caught it.
            if source_id is None:
                raise
            raise DuplicateKeyError(user_id, source_id) from exc
        return LedgerEntry.from_row(row)

    async def get_by_source(self, user_id: str, source_id: str) -> Optional[LedgerEntry]:
        result = await self.db.execute(
            select(CreditLedger).where(
                CreditLedger.user_id == user_id,
                CreditLedger.source_id == source_id,
            )
        )
        row = result.scalar_one_or_none()
        return LedgerEntry.from_row(row) if row is not None else None

    async def list_recent(self, user_id: str, limit: int = 50) -> List[LedgerEntry]:
        """Newest-first entries for a user, capped at LEDGER_LIST_MAX."""
        capped = min(max(int(limit), 1), max(int(settings.LEDGER_LIST_MAX), 1))
        result = await self.db.execute(
            select(CreditLedger)
            .where(CreditLedger.user_id == user_id)
            .order_by(CreditLedger.id.desc())
            .limit(capped)
        )
        return [LedgerEntry.from_row(row) for row in result.scalars().all()]

    async def list_between(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[LedgerEntry]:
        """Entries in [start, end), newest first, for accounting exports."""
        stmt = select(CreditLedger).where(CreditLedger.user_id == user_id)
        if start is not None:
            stmt = stmt.where(CreditLedger.created_at >= start)
        if end is not None:
            stmt = stmt.where(CreditLedger.created_at < end)
        cap = int(limit or settings.LEDGER_EXPORT_MAX)
        result = await self.db.execute(stmt.order_by(CreditLedger.id.desc()).limit(max(cap, 1)))
        return [LedgerEntry.from_row(row) for row in result.scalars().all()]

    async def latest_id(self, user_id: str) -> int:
        """Id of the user's newest entry, 0 if there is none."""
        result = await self.db.execute(select(func.max(CreditLedger.id)).where(CreditLedger.user_id == user_id))
        return int(result.scalar() or 0)

    async def sum_deltas(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(CreditLedger.delta), 0)).where(CreditLedger.user_id == user_id)
        )
        return int(result.scalar() or 0)
