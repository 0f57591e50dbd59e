from dataclasses import dataclass, field
from typing import List, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app
from routers import rate_limit
from services.credits import CreditService, create_credit_service
from services.packs import PackRule, PackRuleTable


TEST_PACKS = PackRuleTable(
    [
        PackRule("starter", 1, 6, "Starter", price_id="starter"),
        PackRule("bulk10", 10, 12, "10 Credits", auto_extend=True, price_id="bulk10"),
        PackRule("bulk50", 50, 24, "50 Credits", auto_extend=True, grace_days=30, price_id="bulk50"),
    ]
)


class RecordingNotifier:
    def __init__(self):
        self.calls: List[Tuple[str, int, int]] = []

    async def notify_low_balance(self, user_id: str, threshold: int, balance: int) -> None:
        self.calls.append((user_id, threshold, balance))


@dataclass
class CreditEnv:
    service: CreditService
    session_maker: async_sessionmaker
    notifier: RecordingNotifier
    engine: object = field(repr=False, default=None)

    async def assert_ledger_matches_balance(self, user_id: str) -> None:
        balance = await self.service.get_balance(user_id)
        assert await self.service.ledger_sum(user_id) == balance.balance


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def credit_env(tmp_path):
    db_path = tmp_path / "credits.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    notifier = RecordingNotifier()
    service = create_credit_service(session_maker, notifier=notifier, packs=TEST_PACKS)
    yield CreditEnv(service=service, session_maker=session_maker, notifier=notifier, engine=engine)

    await engine.dispose()

