from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.future import select

from models.credit_ledger import CreditLedger
from models.user import User
from services.grants import GrantProcessor
from services.packs import PackRule, PackRuleTable
from services.ledger_types import PURCHASE_REASON
from services.protocols import BalanceMutator, DuplicateKeyError, UserResolver
from services.purchase_events import LineItem, PurchaseEvent


FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
PACKS = PackRuleTable(
    [
        PackRule("starter", 1, 6, "Starter", price_id="starter"),
        PackRule("bulk10", 10, 12, "10 Credits", auto_extend=True, price_id="bulk10"),
        PackRule("bulk50", 50, 24, "50 Credits", auto_extend=True, grace_days=30, price_id="bulk50"),
    ]
)


class FakeUserResolver:
    def __init__(self):
        self.emails = []

    async def resolve(self, email: str) -> str:
        self.emails.append(email)
        return f"user-for-{email.lower()}"


class FakeBalanceMutator:
    def __init__(self, duplicate=False):
        self.duplicate = duplicate
        self.calls = []

    async def add_credits(self, user_id, credits, *, reason, source_id, pack=None):
        self.calls.append((user_id, credits, reason, source_id, pack))
        if self.duplicate:
            raise DuplicateKeyError(user_id, source_id)

    async def deduct_credits(self, user_id, amount, *, reason, source_id, thresholds):
        raise AssertionError("grants never deduct")

    async def load_applied(self, user_id, source_id):
        raise AssertionError("grants never replay deductions")


def _processor(mutator, resolver=None):
    return GrantProcessor(resolver or FakeUserResolver(), mutator, PACKS, clock=lambda: FIXED_NOW)


def test_fakes_satisfy_protocols():
    assert isinstance(FakeUserResolver(), UserResolver)
    assert isinstance(FakeBalanceMutator(), BalanceMutator)


@pytest.mark.asyncio
async def test_grant_maps_pack_policy():
    mutator = FakeBalanceMutator()
    resolver = FakeUserResolver()
    processor = _processor(mutator, resolver)

    credits = await processor.grant(
        PurchaseEvent(source_id="pi_1", payer_email="Buyer@Example.com", line_items=[LineItem("bulk10")])
    )

    assert credits == 10
    assert resolver.emails == ["Buyer@Example.com"]
    user_id, granted, reason, source_id, pack = mutator.calls[0]
    assert (user_id, granted, reason, source_id) == ("user-for-buyer@example.com", 10, PURCHASE_REASON, "pi_1")
    assert pack.pack_key == "bulk10"
    assert pack.auto_extend is True
    assert pack.expires_at == FIXED_NOW + timedelta(days=360)


@pytest.mark.asyncio
async def test_last_matched_pack_supplies_policy():
    mutator = FakeBalanceMutator()
    credits = await _processor(mutator).grant(
        PurchaseEvent(
            source_id="pi_2",
            payer_email="a@example.com",
            line_items=[LineItem("bulk10"), LineItem("bulk50")],
        )
    )

    assert credits == 60
    pack = mutator.calls[0][4]
    assert pack.pack_key == "bulk50"
    assert pack.expires_at == FIXED_NOW + timedelta(days=24 * 30 + 30)


@pytest.mark.asyncio
async def test_metadata_only_purchase_has_no_pack_policy():
    mutator = FakeBalanceMutator()
    credits = await _processor(mutator).grant(
        PurchaseEvent(
            source_id="pi_3",
            payer_email="a@example.com",
            line_items=[LineItem("custom", quantity=4, credits_per_unit=2)],
        )
    )
    assert credits == 8
    assert mutator.calls[0][4] is None


@pytest.mark.asyncio
async def test_zero_credit_purchase_is_a_no_op():
    mutator = FakeBalanceMutator()
    credits = await _processor(mutator).grant(
        PurchaseEvent(source_id="pi_4", payer_email="a@example.com", line_items=[LineItem("poster")])
    )
    assert credits == 0
    assert mutator.calls == []


@pytest.mark.asyncio
async def test_missing_email_is_a_no_op():
    mutator = FakeBalanceMutator()
    resolver = FakeUserResolver()
    credits = await _processor(mutator, resolver).grant(
        PurchaseEvent(source_id="pi_5", payer_email="", line_items=[LineItem("bulk10")])
    )
    assert credits == 0
    assert resolver.emails == []
    assert mutator.calls == []


@pytest.mark.asyncio
async def test_duplicate_grant_reports_same_credits():
    mutator = FakeBalanceMutator(duplicate=True)
    credits = await _processor(mutator).grant(
        PurchaseEvent(source_id="pi_6", user_id="user-1", line_items=[LineItem("starter", quantity=3)])
    )
    assert credits == 3


@pytest.mark.asyncio
async def test_blank_source_id_is_rejected():
    with pytest.raises(ValueError):
        await _processor(FakeBalanceMutator()).grant(
            PurchaseEvent(source_id="  ", payer_email="a@example.com", line_items=[LineItem("bulk10")])
        )


@pytest.mark.asyncio
async def test_redelivered_purchase_grants_once(credit_env):
    service = credit_env.service
    event = PurchaseEvent(source_id="pi_dup", payer_email="Repeat@Example.com", line_items=[LineItem("bulk10")])

    assert await service.grant(event) == 10
    assert await service.grant(event) == 10

    async with credit_env.session_maker() as db:
        users = (await db.execute(select(User))).scalars().all()
        rows = (await db.execute(select(CreditLedger).where(CreditLedger.source_id == "pi_dup"))).scalars().all()

    assert len(users) == 1
    assert users[0].email == "repeat@example.com"
    assert len(rows) == 1

    balance = await service.get_balance(users[0].id)
    assert balance.balance == 10
    assert balance.last_pack == "bulk10"
    assert balance.auto_extend is True
    await credit_env.assert_ledger_matches_balance(users[0].id)


@pytest.mark.asyncio
async def test_payer_email_match_is_case_insensitive(credit_env):
    service = credit_env.service
    await service.grant(PurchaseEvent(source_id="pi_a", payer_email="Mixed@Example.com", line_items=[LineItem("starter")]))
    await service.grant(PurchaseEvent(source_id="pi_b", payer_email="mixed@example.COM", line_items=[LineItem("starter")]))

    async with credit_env.session_maker() as db:
        users = (await db.execute(select(User))).scalars().all()

    assert len(users) == 1
    assert (await service.get_balance(users[0].id)).balance == 2


@pytest.mark.asyncio
async def test_later_pack_replaces_expiry(credit_env):
    service = credit_env.service
    user_id = "user-packs"

    await service.grant(PurchaseEvent(source_id="pi_long", user_id=user_id, line_items=[LineItem("bulk50")]))
    long_expiry = (await service.get_balance(user_id)).expires_at

    await service.grant(PurchaseEvent(source_id="pi_short", user_id=user_id, line_items=[LineItem("starter")]))
    balance = await service.get_balance(user_id)

    assert balance.balance == 51
    assert balance.last_pack == "starter"
    assert balance.auto_extend is False
    # Policy is replaced, not maxed.
    assert balance.expires_at < long_expiry
    expected = datetime.now(timezone.utc) + timedelta(days=180)
    assert abs((balance.expires_at - expected).total_seconds()) < 120
