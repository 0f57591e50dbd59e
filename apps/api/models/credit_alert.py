"""Low-balance alert dedup record."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from database import Base


class CreditAlertSent(Base):
    """One row per (user, threshold) ever alerted. Never deleted."""

    __tablename__ = "credit_alerts_sent"

    user_id = Column(String, primary_key=True)
    threshold = Column(Integer, primary_key=True, autoincrement=False)
    sent_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
