import asyncio

import pytest

from services.ledger_types import ConsumptionRequest
from services.protocols import InsufficientCreditsError
from services.purchase_events import LineItem, PurchaseEvent


@pytest.mark.asyncio
async def test_concurrent_deductions_all_apply(credit_env):
    service = credit_env.service
    await service.grant(PurchaseEvent(source_id="pi_c", user_id="user-c", line_items=[LineItem("bulk10")]))

    results = await asyncio.gather(
        *[service.deduct(ConsumptionRequest("user-c", 1, source_id=f"job-{i}")) for i in range(10)]
    )

    assert sorted(result.balance.balance for result in results) == list(range(10))
    assert (await service.get_balance("user-c")).balance == 0
    assert len(await service.get_transactions("user-c", 50)) == 11
    await credit_env.assert_ledger_matches_balance("user-c")


@pytest.mark.asyncio
async def test_contended_last_credit_goes_to_one_caller(credit_env):
    service = credit_env.service
    await service.grant(PurchaseEvent(source_id="pi_one", user_id="user-one", line_items=[LineItem("starter")]))

    results = await asyncio.gather(
        service.deduct(ConsumptionRequest("user-one", 1, source_id="job-a")),
        service.deduct(ConsumptionRequest("user-one", 1, source_id="job-b")),
        return_exceptions=True,
    )

    failures = [result for result in results if isinstance(result, InsufficientCreditsError)]
    successes = [result for result in results if not isinstance(result, Exception)]
    assert len(failures) == 1
    assert len(successes) == 1
    assert (await service.get_balance("user-one")).balance == 0
    await credit_env.assert_ledger_matches_balance("user-one")


@pytest.mark.asyncio
async def test_concurrent_duplicate_grants_apply_once(credit_env):
    service = credit_env.service
    event = PurchaseEvent(source_id="pi_race", user_id="user-race", line_items=[LineItem("bulk10")])

    credits = await asyncio.gather(*[service.grant(event) for _ in range(4)])

    assert credits == [10, 10, 10, 10]
    assert (await service.get_balance("user-race")).balance == 10
    await credit_env.assert_ledger_matches_balance("user-race")
