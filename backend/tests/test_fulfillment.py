import asyncio
import uuid

import pytest

from conftest import stay
from skyhotel.errors import CancelFailed, InvariantViolation, ProviderTransient
from skyhotel.models.enums import ExecutionStatus
from skyhotel.schemas.order import CreateOrderRequest
from skyhotel.services.admission_gate import ChannelConfigSnapshot
from skyhotel.services.fulfillment_driver import FulfillmentDriver
from skyhotel.services.order_service import order_service
from skyhotel.services.pool_service import pool_service


async def place_order(db, agent, rooms: list[str], submit_now: bool = True, account_id=None) -> tuple[uuid.UUID, dict]:
    """Admit a NEW_USER order with one split item per room type. Returns (group id, {room type: item id})."""
    check_in, check_out = stay()
    req = CreateOrderRequest(
        chain_id="ATOUR",
        hotel_name="Atour Hangzhou West Lake",
        channel="NEW_USER",
        customer_name="Li Si",
        contact_phone="13700000000",
        check_in_date=check_in,
        check_out_date=check_out,
        submit_now=submit_now,
        items=[{"room_type": room, "amount": "399.00", "account_id": account_id} for room in rooms],
    )
    group = await order_service.create_order(db, agent, req, ChannelConfigSnapshot())
    return group.id, {item.room_type: item.id for item in group.items}


async def load_item(session_factory, item_id):
    async with session_factory() as s:
        return await order_service.get_item(s, item_id)


async def load_group(session_factory, group_id):
    async with session_factory() as s:
        return await order_service.get_group(s, group_id)


async def slots_left(session_factory, account_id) -> int:
    async with session_factory() as s:
        return (await pool_service.get_account(s, account_id)).daily_orders_left


@pytest.fixture
async def agent(make_agent):
    return await make_agent()


@pytest.fixture
async def account(make_account):
    return await make_account(daily_orders_left=5)


@pytest.mark.anyio
async def test_timeout_leaves_item_in_doubt_and_group_processing(
    db, agent, account, driver, fake_provider, session_factory
):
    fake_provider.submit_behaviors = {"Room A": "done", "Room B": "hang"}
    group_id, items = await place_order(db, agent, ["Room A", "Room B"])

    outcomes = await driver.process_group(group_id)

    by_item = {o.item_id: o for o in outcomes}
    assert by_item[items["Room A"]].outcome == "submitted"
    assert by_item[items["Room A"]].execution_status == "DONE"
    assert by_item[items["Room B"]].outcome == "in_doubt"
    assert by_item[items["Room B"]].execution_status == "SUBMITTING"

    item_a = await load_item(session_factory, items["Room A"])
    assert item_a.status == "COMPLETED"
    assert item_a.provider_order_id
    assert item_a.account_phone == account.phone

    item_b = await load_item(session_factory, items["Room B"])
    assert item_b.execution_status == "SUBMITTING"
    assert item_b.provider_order_id is None
    assert item_b.last_error == "Provider call timed out"
    assert item_b.submit_attempts == 1

    group = await load_group(session_factory, group_id)
    assert group.status == "PROCESSING"
    # Both items hold a slot; B's outcome is unknown
    assert await slots_left(session_factory, account.id) == 3


@pytest.mark.anyio
async def test_second_submit_is_a_noop(db, agent, account, driver, fake_provider):
    group_id, items = await place_order(db, agent, ["Room A"])
    await driver.process_group(group_id)
    assert len(fake_provider.submitted) == 1

    outcome = await driver.submit_item(items["Room A"])

    assert outcome.outcome == "no_op"
    assert outcome.execution_status == "DONE"
    assert len(fake_provider.submitted) == 1


@pytest.mark.anyio
async def test_submit_while_submitting_is_a_noop(db, agent, account, driver, fake_provider):
    fake_provider.default_submit = "hang"
    group_id, items = await place_order(db, agent, ["Room A"])
    await driver.process_group(group_id)

    outcome = await driver.submit_item(items["Room A"])

    assert outcome.outcome == "no_op"
    assert outcome.execution_status == "SUBMITTING"
    assert len(fake_provider.submitted) == 1


@pytest.mark.anyio
async def test_concurrent_submits_claim_the_item_once(db, agent, account, fake_provider, session_factory):
    racing_driver = FulfillmentDriver(
        provider=fake_provider,
        session_factory=session_factory,
        max_concurrency=3,
        timeout_seconds=0.2,
    )
    group_id, items = await place_order(db, agent, ["Room A"])
    item_id = items["Room A"]

    outcomes = await asyncio.gather(*[racing_driver.submit_item(item_id) for _ in range(3)])

    assert sorted(o.outcome for o in outcomes) == ["no_op", "no_op", "submitted"]
    assert len(fake_provider.submitted) == 1
    item = await load_item(session_factory, item_id)
    assert item.execution_status == "DONE"
    assert item.submit_attempts == 1
    assert await slots_left(session_factory, account.id) == 4


@pytest.mark.anyio
async def test_provider_rejection_fails_item_and_releases_slot(
    db, agent, account, driver, fake_provider, session_factory
):
    fake_provider.default_submit = "reject"
    group_id, items = await place_order(db, agent, ["Room A"])

    [outcome] = await driver.process_group(group_id)

    assert outcome.outcome == "failed"
    assert outcome.error_code == "PROVIDER_REJECTED"
    item = await load_item(session_factory, items["Room A"])
    assert item.execution_status == "FAILED"
    assert item.failure_code == "PROVIDER_REJECTED"
    assert item.failure_reason == "Room sold out"
    assert await slots_left(session_factory, account.id) == 5
    assert (await load_group(session_factory, group_id)).status == "FAILED"

    # Retry is explicit and re-enters QUEUED
    fake_provider.default_submit = "done"
    retry = await driver.confirm_submit(items["Room A"])

    assert retry.outcome == "submitted"
    item = await load_item(session_factory, items["Room A"])
    assert item.execution_status == "DONE"
    assert item.failure_code is None
    assert item.submit_attempts == 2
    assert await slots_left(session_factory, account.id) == 4
    assert (await load_group(session_factory, group_id)).status == "COMPLETED"


@pytest.mark.anyio
async def test_transient_submit_error_is_not_retried(db, agent, account, driver, fake_provider, session_factory):
    fake_provider.default_submit = "transient"
    group_id, items = await place_order(db, agent, ["Room A"])

    [outcome] = await driver.process_group(group_id)

    assert outcome.outcome == "in_doubt"
    assert len(fake_provider.submitted) == 1
    item = await load_item(session_factory, items["Room A"])
    assert item.execution_status == "SUBMITTING"
    assert "timed out" in item.last_error


@pytest.mark.anyio
async def test_plan_waits_for_confirm_submit(db, agent, account, driver, fake_provider, session_factory):
    group_id, items = await place_order(db, agent, ["Room A"], submit_now=False)

    assert await driver.process_group(group_id) == []
    assert (await load_item(session_factory, items["Room A"])).execution_status == "PLAN_PENDING"
    assert fake_provider.submitted == []

    outcome = await driver.confirm_submit(items["Room A"])

    assert outcome.execution_status == "DONE"
    assert len(fake_provider.submitted) == 1


@pytest.mark.anyio
async def test_no_eligible_account_fails_item(db, agent, driver, fake_provider, session_factory):
    group_id, items = await place_order(db, agent, ["Room A"])

    [outcome] = await driver.process_group(group_id)

    assert outcome.error_code == "NO_ELIGIBLE_ACCOUNT"
    item = await load_item(session_factory, items["Room A"])
    assert item.execution_status == "FAILED"
    assert item.failure_code == "NO_ELIGIBLE_ACCOUNT"
    assert fake_provider.submitted == []


@pytest.mark.anyio
async def test_bound_account_must_serve_the_channel(db, agent, make_account, driver, fake_provider, session_factory):
    platinum_only = await make_account(phone="13800000009", is_new_user=False, is_platinum=True)
    group_id, items = await place_order(db, agent, ["Room A"], account_id=platinum_only.id)

    [outcome] = await driver.process_group(group_id)

    assert outcome.error_code == "ACCOUNT_INELIGIBLE"
    item = await load_item(session_factory, items["Room A"])
    assert item.failure_reason == "account tier PLATINUM does not serve NEW_USER"
    assert await slots_left(session_factory, platinum_only.id) == 5
    assert fake_provider.submitted == []


@pytest.mark.anyio
async def test_offline_accounts_are_skipped(db, agent, make_account, driver, session_factory):
    offline = await make_account(phone="13800000002", is_online=False, daily_orders_left=9)
    online = await make_account(phone="13800000003", daily_orders_left=1)
    group_id, items = await place_order(db, agent, ["Room A"])

    await driver.process_group(group_id)

    item = await load_item(session_factory, items["Room A"])
    assert item.account_id == online.id
    assert await slots_left(session_factory, online.id) == 0
    assert await slots_left(session_factory, offline.id) == 9


@pytest.mark.anyio
async def test_cancel_ordered_with_failing_provider_keeps_state(
    db, agent, account, driver, fake_provider, session_factory
):
    fake_provider.default_submit = "ordered"
    group_id, items = await place_order(db, agent, ["Room A"])
    await driver.process_group(group_id)
    item_id = items["Room A"]
    assert (await load_item(session_factory, item_id)).execution_status == "ORDERED"

    fake_provider.cancel_error = ProviderTransient("Provider call /order/cancel timed out")
    with pytest.raises(CancelFailed) as exc:
        await driver.cancel_item(item_id)
    assert exc.value.details["execution_status"] == "ORDERED"
    assert (await load_item(session_factory, item_id)).execution_status == "ORDERED"

    fake_provider.cancel_error = None
    fake_provider.cancel_result = False
    with pytest.raises(CancelFailed):
        await driver.cancel_item(item_id)
    assert (await load_item(session_factory, item_id)).execution_status == "ORDERED"
    assert (await load_group(session_factory, group_id)).status == "COMPLETED"

    fake_provider.cancel_result = True
    outcome = await driver.cancel_item(item_id)

    assert outcome.outcome == "cancelled"
    item = await load_item(session_factory, item_id)
    assert item.status == "CANCELLED"
    # The slot stays spent, and the item no longer claims to hold it
    assert item.daily_slot_reserved is False
    assert await slots_left(session_factory, account.id) == 4
    assert (await load_group(session_factory, group_id)).status == "CANCELLED"

    again = await driver.cancel_item(item_id)
    assert again.outcome == "no_op"


@pytest.mark.anyio
async def test_cancel_while_submitting_is_refused(db, agent, account, driver, fake_provider):
    fake_provider.default_submit = "hang"
    group_id, items = await place_order(db, agent, ["Room A"])
    await driver.process_group(group_id)

    with pytest.raises(InvariantViolation) as exc:
        await driver.cancel_item(items["Room A"])
    assert exc.value.code == "SUBMISSION_IN_FLIGHT"
    assert fake_provider.cancelled == []


@pytest.mark.anyio
async def test_cancel_queued_item_is_local(db, agent, account, driver, fake_provider, session_factory):
    group_id, items = await place_order(db, agent, ["Room A", "Room B"], submit_now=False)

    outcome = await driver.cancel_item(items["Room A"])

    assert outcome.outcome == "cancelled"
    assert fake_provider.cancelled == []
    group = await load_group(session_factory, group_id)
    assert [i.execution_status for i in group.items] == ["CANCELLED", "PLAN_PENDING"]
    assert group.status == "PROCESSING"


@pytest.mark.anyio
async def test_cancel_group_tolerates_partial_failure(db, agent, account, driver, fake_provider, session_factory):
    fake_provider.submit_behaviors = {"Room A": "done", "Room B": "reject"}
    group_id, items = await place_order(db, agent, ["Room A", "Room B"])
    await driver.process_group(group_id)
    fake_provider.cancel_result = False

    outcomes = await driver.cancel_group(group_id)

    by_item = {o.item_id: o for o in outcomes}
    assert by_item[items["Room A"]].outcome == "error"
    assert by_item[items["Room A"]].error_code == "CANCEL_FAILED"
    assert by_item[items["Room B"]].outcome == "cancelled"
    group = await load_group(session_factory, group_id)
    assert [i.execution_status for i in group.items] == ["DONE", "CANCELLED"]
    assert group.status == "PROCESSING"


@pytest.mark.anyio
async def test_refresh_resolves_missing_order_to_failed(
    db, agent, account, driver, fake_provider, session_factory
):
    fake_provider.submit_behaviors = {"Room A": "done", "Room B": "hang"}
    group_id, items = await place_order(db, agent, ["Room A", "Room B"])
    await driver.process_group(group_id)

    outcome = await driver.refresh_item(items["Room B"])

    assert outcome.outcome == "failed"
    assert outcome.error_code == "PROVIDER_NO_RECORD"
    item = await load_item(session_factory, items["Room B"])
    assert item.execution_status == "FAILED"
    assert item.daily_slot_reserved is False
    assert await slots_left(session_factory, account.id) == 4
    assert (await load_group(session_factory, group_id)).status == "FAILED"


@pytest.mark.anyio
async def test_refresh_adopts_order_found_by_reference(
    db, agent, account, driver, fake_provider, session_factory
):
    fake_provider.default_submit = "hang"
    group_id, items = await place_order(db, agent, ["Room A"])
    await driver.process_group(group_id)
    item_id = items["Room A"]

    fake_provider.found[str(item_id)] = "P-ADOPTED"
    fake_provider.orders["P-ADOPTED"] = {"state": ExecutionStatus.DONE, "paid": True}
    outcome = await driver.refresh_item(item_id)

    assert outcome.outcome == "refreshed"
    item = await load_item(session_factory, item_id)
    assert item.execution_status == "DONE"
    assert item.provider_order_id == "P-ADOPTED"
    assert item.payment_status == "PAID"
    assert item.last_error is None
    group = await load_group(session_factory, group_id)
    assert (group.status, group.payment_status) == ("COMPLETED", "PAID")


@pytest.mark.anyio
async def test_refresh_read_failure_changes_nothing(db, agent, account, driver, fake_provider, session_factory):
    fake_provider.default_submit = "hang"
    group_id, items = await place_order(db, agent, ["Room A"])
    await driver.process_group(group_id)

    fake_provider.find_error = ProviderTransient("Provider call /order/queryByClientReference failed")
    outcome = await driver.refresh_item(items["Room A"])

    assert outcome.outcome == "in_doubt"
    item = await load_item(session_factory, items["Room A"])
    assert item.execution_status == "SUBMITTING"
    assert item.last_error == "Provider call /order/queryByClientReference failed"


@pytest.mark.anyio
async def test_refresh_moves_wait_confirm_forward(db, agent, account, driver, fake_provider, session_factory):
    fake_provider.default_submit = "wait_confirm"
    group_id, items = await place_order(db, agent, ["Room A"])
    await driver.process_group(group_id)
    item = await load_item(session_factory, items["Room A"])
    assert item.execution_status == "WAIT_CONFIRM"

    fake_provider.orders[item.provider_order_id]["state"] = ExecutionStatus.ORDERED
    await driver.refresh_group(group_id)
    assert (await load_item(session_factory, items["Room A"])).execution_status == "ORDERED"

    # Refresh is idempotent
    await driver.refresh_item(items["Room A"])
    item = await load_item(session_factory, items["Room A"])
    assert (item.execution_status, item.status) == ("ORDERED", "CONFIRMED")


@pytest.mark.anyio
async def test_links_need_a_placed_order(db, agent, account, driver, fake_provider):
    fake_provider.submit_behaviors = {"Room A": "ordered", "Room B": "reject"}
    group_id, items = await place_order(db, agent, ["Room A", "Room B"])
    await driver.process_group(group_id)

    assert (await driver.payment_link(items["Room A"])).startswith("https://pay.test/")
    assert (await driver.detail_link(items["Room A"])).startswith("https://orders.test/")

    with pytest.raises(InvariantViolation) as exc:
        await driver.payment_link(items["Room B"])
    assert exc.value.code == "LINK_UNAVAILABLE"


@pytest.mark.anyio
async def test_sweep_submits_queued_and_refreshes_unconfirmed(
    db, agent, account, driver, fake_provider, session_factory
):
    fake_provider.default_submit = "wait_confirm"
    first_group, first_items = await place_order(db, agent, ["Room A"])
    await driver.process_group(first_group)
    item = await load_item(session_factory, first_items["Room A"])
    fake_provider.orders[item.provider_order_id] = {"state": ExecutionStatus.DONE, "paid": True}

    fake_provider.default_submit = "done"
    second_group, second_items = await place_order(db, agent, ["Room B"])

    counts = await driver.sweep()

    assert counts == {"submitted": 1, "refreshed": 1, "errors": 0}
    assert (await load_item(session_factory, first_items["Room A"])).execution_status == "DONE"
    assert (await load_item(session_factory, second_items["Room B"])).execution_status == "DONE"
