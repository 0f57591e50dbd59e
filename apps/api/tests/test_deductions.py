from datetime import datetime, timedelta, timezone

import pytest

from services.ledger_types import ConsumptionRequest
from services.protocols import InsufficientCreditsError
from services.purchase_events import LineItem, PurchaseEvent


async def _grant(service, user_id, source_id, credits):
    await service.grant(
        PurchaseEvent(
            source_id=source_id,
            user_id=user_id,
            line_items=[LineItem("custom", quantity=credits, credits_per_unit=1)],
        )
    )


@pytest.mark.asyncio
async def test_deduction_is_idempotent(credit_env):
    service = credit_env.service
    await _grant(service, "user-1", "pi_1", 5)

    first = await service.deduct(ConsumptionRequest("user-1", 2, source_id="job-1"))
    second = await service.deduct(ConsumptionRequest("user-1", 2, source_id="job-1"))

    assert first.balance.balance == 3
    assert first.replayed is False
    assert second.balance.balance == 3
    assert second.replayed is True
    assert second.entry.id == first.entry.id

    entries = await service.get_transactions("user-1")
    assert [entry.source_id for entry in entries] == ["job-1", "pi_1"]
    await credit_env.assert_ledger_matches_balance("user-1")


@pytest.mark.asyncio
async def test_replay_succeeds_after_balance_dropped(credit_env):
    service = credit_env.service
    await _grant(service, "user-2", "pi_2", 3)

    await service.deduct(ConsumptionRequest("user-2", 2, source_id="job-a"))
    await service.deduct(ConsumptionRequest("user-2", 1, source_id="job-b"))

    replay = await service.deduct(ConsumptionRequest("user-2", 2, source_id="job-a"))
    assert replay.replayed is True
    assert replay.balance.balance == 0


@pytest.mark.asyncio
async def test_insufficient_credits_changes_nothing(credit_env):
    service = credit_env.service
    await _grant(service, "user-3", "pi_3", 1)

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await service.deduct(ConsumptionRequest("user-3", 2, source_id="job-big"))

    assert exc_info.value.available == 1
    assert exc_info.value.required == 2
    assert (await service.get_balance("user-3")).balance == 1
    assert len(await service.get_transactions("user-3")) == 1
    assert credit_env.notifier.calls == []


@pytest.mark.asyncio
async def test_unknown_user_has_no_credits(credit_env):
    with pytest.raises(InsufficientCreditsError):
        await credit_env.service.deduct(ConsumptionRequest("nobody", 1, source_id="job-x"))
    assert (await credit_env.service.get_balance("nobody")).balance == 0


@pytest.mark.asyncio
async def test_invalid_amount_is_rejected(credit_env):
    with pytest.raises(ValueError):
        await credit_env.service.deduct(ConsumptionRequest("user-4", 0, source_id="job-0"))


@pytest.mark.asyncio
async def test_crossing_two_thresholds_alerts_highest_once(credit_env):
    service = credit_env.service
    await _grant(service, "user-5", "pi_5", 12)

    result = await service.deduct(ConsumptionRequest("user-5", 8, source_id="job-8"))

    assert result.balance.balance == 4
    assert result.threshold_crossed == 10
    assert credit_env.notifier.calls == [("user-5", 10, 4)]

    repeat = await service.deduct(ConsumptionRequest("user-5", 8, source_id="job-8"))
    assert repeat.replayed is True
    assert credit_env.notifier.calls == [("user-5", 10, 4)]


@pytest.mark.asyncio
async def test_threshold_alerts_at_most_once(credit_env):
    service = credit_env.service
    await _grant(service, "user-6", "pi_6a", 6)

    await service.deduct(ConsumptionRequest("user-6", 2, source_id="job-1"))
    assert credit_env.notifier.calls == [("user-6", 5, 4)]

    await _grant(service, "user-6", "pi_6b", 3)
    again = await service.deduct(ConsumptionRequest("user-6", 3, source_id="job-2"))

    assert again.threshold_crossed == 5
    assert again.alert_pending is False
    assert credit_env.notifier.calls == [("user-6", 5, 4)]


@pytest.mark.asyncio
async def test_reaching_zero_crosses_zero_threshold(credit_env):
    service = credit_env.service
    await _grant(service, "user-7", "pi_7", 1)

    result = await service.deduct(ConsumptionRequest("user-7", 1, source_id="job-last"))

    assert result.balance.balance == 0
    assert result.threshold_crossed == 0
    assert credit_env.notifier.calls == [("user-7", 0, 0)]


@pytest.mark.asyncio
async def test_auto_extend_pushes_expiry_on_use(credit_env):
    service = credit_env.service
    await service.grant(PurchaseEvent(source_id="pi_ext", user_id="user-8", line_items=[LineItem("bulk10")]))

    result = await service.deduct(ConsumptionRequest("user-8", 1, source_id="job-ext"))

    expected = datetime.now(timezone.utc) + timedelta(days=180)
    assert abs((result.balance.expires_at - expected).total_seconds()) < 120


@pytest.mark.asyncio
async def test_no_auto_extend_keeps_expiry(credit_env):
    service = credit_env.service
    await service.grant(PurchaseEvent(source_id="pi_fixed", user_id="user-9", line_items=[LineItem("starter")]))
    before = (await service.get_balance("user-9")).expires_at

    result = await service.deduct(ConsumptionRequest("user-9", 1, source_id="job-fixed"))

    assert result.balance.expires_at == before


@pytest.mark.asyncio
async def test_purchase_redelivery_after_use_keeps_balance(credit_env):
    service = credit_env.service
    user_id = "user-flow"
    purchase = PurchaseEvent(source_id="pay_1", user_id=user_id, line_items=[LineItem("bulk10")])

    assert await service.grant(purchase) == 10
    assert (await service.get_balance(user_id)).balance == 10
    assert len(await service.get_transactions(user_id)) == 1

    first = await service.deduct(ConsumptionRequest(user_id, 1, source_id="job_1"))
    assert first.balance.balance == 9
    # 10 -> 9 does not cross 10 (before must be strictly above).
    assert first.threshold_crossed is None
    assert len(await service.get_transactions(user_id)) == 2

    assert await service.grant(purchase) == 10
    assert (await service.get_balance(user_id)).balance == 9

    with pytest.raises(InsufficientCreditsError):
        await service.deduct(ConsumptionRequest(user_id, 20, source_id="job_2"))
    assert (await service.get_balance(user_id)).balance == 9
    await credit_env.assert_ledger_matches_balance(user_id)


@pytest.mark.asyncio
async def test_draining_a_pack_alerts_each_threshold_once(credit_env):
    service = credit_env.service
    user_id = "user-drain"
    await service.grant(PurchaseEvent(source_id="pi_drain", user_id=user_id, line_items=[LineItem("bulk10")]))

    for index in range(10):
        await service.deduct(ConsumptionRequest(user_id, 1, source_id=f"job-{index}"))
    await service.deduct(ConsumptionRequest(user_id, 1, source_id="job-3"))

    assert (await service.get_balance(user_id)).balance == 0
    assert credit_env.notifier.calls == [(user_id, 5, 5), (user_id, 0, 0)]
