"""Low-balance threshold detection and the permanent alert dedup store."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_alert import CreditAlertSent


DEFAULT_THRESHOLDS: Tuple[int, ...] = (10, 5, 0)


def normalize_thresholds(thresholds: Iterable[int]) -> Tuple[int, ...]:
    """Deduplicate and order thresholds highest first."""
    return tuple(sorted({int(t) for t in thresholds}, reverse=True))


def highest_crossed_threshold(before: int, after: int, thresholds: Sequence[int]) -> Optional[int]:
    """Return the highest t with before > t >= after, or None.

    A large deduction can cross several thresholds; only the highest is reported.
    """
    for threshold in normalize_thresholds(thresholds):
        if before > threshold >= after:
            return threshold
    return None


class AlertStore:
    """Dedup records for (user, threshold) alerts. A record is never removed."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def needs_alert(self, user_id: str, threshold: int) -> bool:
        result = await self.db.execute(
            select(CreditAlertSent.user_id).where(
                CreditAlertSent.user_id == user_id,
                CreditAlertSent.threshold == int(threshold),
            )
        )
        return result.scalar_one_or_none() is None

    async def mark_sent(self, user_id: str, threshold: int) -> None:
        self.db.add(CreditAlertSent(user_id=user_id, threshold=int(threshold)))
        await self.db.flush()
