"""Ledger CSV export and aggregate credit metrics."""

from __future__ import annotations

import csv
import io
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_balance import CreditBalance
from models.credit_ledger import CreditLedger
from services.ledger_types import EXPIRED_REASON, LedgerEntry


CSV_HEADER = ("date", "delta", "reason", "source_id")


def ledger_entries_to_csv(entries: Iterable[LedgerEntry]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for entry in entries:
        created = entry.created_at.strftime("%Y-%m-%d %H:%M:%S") if entry.created_at else ""
        writer.writerow((created, entry.delta, entry.reason or "", entry.source_id or ""))
    return buffer.getvalue()


async def credit_metrics(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Totals across balances plus consumption over the trailing 24 hours."""
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(hours=24)

    totals_row = (
        await db.execute(
            select(
                func.count(CreditBalance.user_id),
                func.coalesce(func.sum(CreditBalance.balance), 0),
            )
        )
    ).one()

    consumption_filter = (
        CreditLedger.delta < 0,
        CreditLedger.reason != EXPIRED_REASON,
        CreditLedger.created_at >= since,
    )
    consumed_row = (
        await db.execute(
            select(
                func.count(CreditLedger.id),
                func.coalesce(func.sum(-CreditLedger.delta), 0),
            ).where(*consumption_filter)
        )
    ).one()

    consumed = func.sum(-CreditLedger.delta).label("consumed")
    top_rows = (
        await db.execute(
            select(CreditLedger.user_id, consumed)
            .where(*consumption_filter)
            .group_by(CreditLedger.user_id)
            .order_by(consumed.desc())
            .limit(10)
        )
    ).all()

    return {
        "totals": {
            "users_with_balance": int(totals_row[0] or 0),
            "total_credits": int(totals_row[1] or 0),
        },
        "consumed_24h": {
            "events": int(consumed_row[0] or 0),
            "credits_consumed": int(consumed_row[1] or 0),
        },
        "top_consumers_24h": [
            {"user_id": row[0], "consumed": int(row[1] or 0)} for row in top_rows
        ],
        "now": now.isoformat(),
    }
