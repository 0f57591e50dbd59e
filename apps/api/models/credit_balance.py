"""CreditBalance model: materialized per-user balance and pack policy."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from database import Base


class CreditBalance(Base):
    """Current credit balance, mutated in the same transaction as a ledger insert."""

    __tablename__ = "credit_balances"

    user_id = Column(String, primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_pack = Column(String, nullable=True)
    auto_extend = Column(Boolean, nullable=False, default=False)
