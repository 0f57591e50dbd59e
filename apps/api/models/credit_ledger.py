"""CreditLedger model: append-only log of signed credit movements."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditLedger(Base):
    """Immutable credit ledger entry. Positive delta grants, negative consumes."""

    __tablename__ = "credit_ledger"
    __table_args__ = (
        # NULL source ids never collide, so only keyed movements are deduplicated.
        UniqueConstraint("user_id", "source_id", name="uq_credit_ledger_user_source"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    source_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
