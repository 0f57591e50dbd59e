"""Plain value types returned by the credit engine.

ORM rows never leave a session; callers get these frozen snapshots instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


PURCHASE_REASON = "purchase"
CONSUMPTION_REASON = "consumption"
ADJUSTMENT_REASON = "adjustment"
EXPIRED_REASON = "expired"
PHOTO_STAGED_REASON = "photo_staged"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class LedgerEntry:
    id: int
    user_id: str
    delta: int
    reason: str
    source_id: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: Any) -> "LedgerEntry":
        return cls(
            id=int(row.id),
            user_id=row.user_id,
            delta=int(row.delta),
            reason=row.reason,
            source_id=row.source_id,
            created_at=as_utc(row.created_at),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "delta": self.delta,
            "reason": self.reason,
            "source_id": self.source_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class BalanceSnapshot:
    user_id: str
    balance: int = 0
    expires_at: Optional[datetime] = None
    last_pack: Optional[str] = None
    auto_extend: bool = False

    @classmethod
    def from_row(cls, row: Any) -> "BalanceSnapshot":
        return cls(
            user_id=row.user_id,
            balance=int(row.balance or 0),
            expires_at=as_utc(row.expires_at),
            last_pack=row.last_pack,
            auto_extend=bool(row.auto_extend),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": self.balance,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "last_pack": self.last_pack,
            "auto_extend": self.auto_extend,
        }


@dataclass(frozen=True)
class PackGrant:
    """Expiry policy carried onto the balance by a pack purchase."""

    pack_key: str
    expires_at: datetime
    auto_extend: bool = False


@dataclass(frozen=True)
class GrantOutcome:
    balance: BalanceSnapshot
    entry: LedgerEntry


@dataclass(frozen=True)
class DeductionResult:
    balance: BalanceSnapshot
    entry: LedgerEntry
    threshold_crossed: Optional[int] = None
    # True only when this call wrote the alert dedup record and a notification is owed.
    alert_pending: bool = False
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": self.balance.balance,
            "threshold_crossed": self.threshold_crossed,
            "replayed": self.replayed,
            "entry": self.entry.to_dict(),
        }


@dataclass(frozen=True)
class ConsumptionRequest:
    user_id: str
    amount: int
    reason: str = CONSUMPTION_REASON
    source_id: Optional[str] = None
