import pytest

from conftest import PASSWORD, auth_headers, stay


def order_payload(channel: str = "NEW_USER", submit_now: bool = True, rooms: tuple[str, ...] = ("Deluxe King",)) -> dict:
    check_in, check_out = stay()
    return {
        "chain_id": "ATOUR",
        "hotel_name": "Atour Chengdu Taikoo Li",
        "channel": channel,
        "customer_name": "Wang Wu",
        "contact_phone": "13600000000",
        "check_in_date": check_in.isoformat(),
        "check_out_date": check_out.isoformat(),
        "submit_now": submit_now,
        "items": [{"room_type": room, "amount": "459.00"} for room in rooms],
    }


@pytest.fixture
async def agent(make_agent):
    return await make_agent()


@pytest.fixture
async def admin(make_agent):
    return await make_agent(username="admin", role="ADMIN")


@pytest.mark.anyio
async def test_health(async_client):
    response = await async_client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "skyhotel"}


# ─── Auth ───────────────────────────────────────────────────────────────────────


@pytest.mark.anyio
async def test_login_and_me(async_client, agent):
    response = await async_client.post("/api/auth/login", json={"username": "agent", "password": PASSWORD})
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["username"] == "agent"
    assert body["user"]["permissions"]["NEW_USER"] == {"allowed": True, "daily_limit": -1, "quota_balance": -1}

    me = await async_client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.status_code == 200
    assert me.json()["id"] == body["user"]["id"]


@pytest.mark.anyio
async def test_login_with_wrong_password(async_client, agent):
    response = await async_client.post("/api/auth/login", json={"username": "agent", "password": "nope"})
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid username or password"


@pytest.mark.anyio
async def test_requests_without_token_are_unauthorized(async_client):
    response = await async_client.get("/api/orders")
    assert response.status_code == 401


# ─── Orders ─────────────────────────────────────────────────────────────────────


@pytest.mark.anyio
async def test_create_order_is_fulfilled_in_background(async_client, agent, make_account, fake_provider):
    await make_account()
    headers = auth_headers(agent)

    response = await async_client.post("/api/orders", json=order_payload(), headers=headers)

    assert response.status_code == 201
    created = response.json()
    assert created["channel"] == "NEW_USER"
    assert created["creator_name"] == "Agent"
    assert created["total_nights"] == 2
    assert created["items"][0]["execution_status"] == "QUEUED"
    assert len(fake_provider.submitted) == 1

    detail = await async_client.get(f"/api/orders/{created['id']}", headers=headers)
    group = detail.json()
    assert group["status"] == "COMPLETED"
    assert group["items"][0]["execution_status"] == "DONE"
    assert group["items"][0]["account_phone"] == "13800000001"

    listing = await async_client.get("/api/orders", headers=headers)
    assert [g["id"] for g in listing.json()] == [created["id"]]


@pytest.mark.anyio
async def test_rejected_admission_returns_error_envelope(async_client, agent):
    response = await async_client.post("/api/orders", json=order_payload("PLATINUM"), headers=auth_headers(agent))

    assert response.status_code == 403
    error = response.json()["error"]
    assert error["code"] == "CHANNEL_FORBIDDEN"
    assert error["message"] == "You are not permitted to book through this channel"


@pytest.mark.anyio
async def test_maintenance_mode_blocks_orders(async_client, agent, admin):
    update = await async_client.patch(
        "/api/system/config",
        json={"maintenance_mode": True, "maintenance_message": "Upgrading until 02:00"},
        headers=auth_headers(admin),
    )
    assert update.status_code == 200
    assert update.json()["maintenance_mode"] is True

    response = await async_client.post("/api/orders", json=order_payload(), headers=auth_headers(agent))

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "MAINTENANCE_MODE"
    assert response.json()["error"]["details"] == {"message": "Upgrading until 02:00"}


@pytest.mark.anyio
async def test_invalid_order_is_a_validation_error(async_client, agent):
    payload = order_payload()
    payload["items"] = []
    response = await async_client.post("/api/orders", json=payload, headers=auth_headers(agent))

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.anyio
async def test_plan_then_confirm_submit(async_client, agent, make_account, fake_provider):
    await make_account()
    headers = auth_headers(agent)
    created = (await async_client.post("/api/orders", json=order_payload(submit_now=False), headers=headers)).json()
    item_id = created["items"][0]["id"]
    assert created["items"][0]["execution_status"] == "PLAN_PENDING"
    assert fake_provider.submitted == []

    response = await async_client.post(f"/api/orders/items/{item_id}/confirm-submit", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"]["outcome"] == "submitted"
    assert body["item"]["execution_status"] == "DONE"


@pytest.mark.anyio
async def test_cancel_in_flight_item_conflicts(async_client, agent, make_account, fake_provider):
    await make_account()
    fake_provider.default_submit = "hang"
    headers = auth_headers(agent)
    created = (await async_client.post("/api/orders", json=order_payload(), headers=headers)).json()
    item_id = created["items"][0]["id"]

    response = await async_client.post(f"/api/orders/items/{item_id}/cancel", headers=headers)

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "SUBMISSION_IN_FLIGHT"


@pytest.mark.anyio
async def test_group_actions_report_each_item(async_client, agent, make_account, fake_provider):
    await make_account()
    fake_provider.submit_behaviors = {"Twin": "reject"}
    headers = auth_headers(agent)
    created = (await async_client.post(
        "/api/orders", json=order_payload(rooms=("Deluxe King", "Twin")), headers=headers
    )).json()

    detail = (await async_client.get(f"/api/orders/{created['id']}", headers=headers)).json()
    assert detail["status"] == "FAILED"

    fake_provider.submit_behaviors = {}
    response = await async_client.post(f"/api/orders/{created['id']}/submit", headers=headers)

    body = response.json()
    assert [o["outcome"] for o in body["outcomes"]] == ["submitted"]
    assert body["group"]["status"] == "COMPLETED"

    link = await async_client.get(f"/api/orders/items/{created['items'][0]['id']}/detail-link", headers=headers)
    assert link.json()["url"].startswith("https://orders.test/")


@pytest.mark.anyio
async def test_payment_link_needs_a_placed_order(async_client, agent, fake_provider):
    headers = auth_headers(agent)
    created = (await async_client.post("/api/orders", json=order_payload(), headers=headers)).json()
    item_id = created["items"][0]["id"]

    # No pool account: the item failed with NO_ELIGIBLE_ACCOUNT
    response = await async_client.get(f"/api/orders/items/{item_id}/payment-link", headers=headers)

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "LINK_UNAVAILABLE"


@pytest.mark.anyio
async def test_agents_only_see_their_own_orders(async_client, agent, make_agent, admin):
    other = await make_agent(username="other")
    created = (await async_client.post(
        "/api/orders", json=order_payload(submit_now=False), headers=auth_headers(agent)
    )).json()

    response = await async_client.get(f"/api/orders/{created['id']}", headers=auth_headers(other))
    assert response.status_code == 403
    assert (await async_client.get("/api/orders", headers=auth_headers(other))).json() == []

    as_admin = await async_client.get(f"/api/orders/{created['id']}", headers=auth_headers(admin))
    assert as_admin.status_code == 200


@pytest.mark.anyio
async def test_update_order_details(async_client, agent, make_agent):
    headers = auth_headers(agent)
    created = (await async_client.post("/api/orders", json=order_payload(submit_now=False), headers=headers)).json()
    url = f"/api/orders/{created['id']}"

    response = await async_client.patch(
        url, json={"remark": "Late arrival", "contact_phone": "13511112222", "status": "CANCELLED"}, headers=headers
    )

    assert response.status_code == 200
    group = response.json()
    assert (group["remark"], group["contact_phone"]) == ("Late arrival", "13511112222")
    assert group["customer_name"] == "Wang Wu"
    # State is never writable through the edit
    assert group["status"] == "PROCESSING"
    assert group["items"][0]["execution_status"] == "PLAN_PENDING"

    assert (await async_client.patch(url, json={}, headers=headers)).status_code == 422
    other = await make_agent(username="other")
    assert (await async_client.patch(url, json={"remark": "x"}, headers=auth_headers(other))).status_code == 403


@pytest.mark.anyio
async def test_marking_items_paid_updates_order_payment(async_client, agent, make_account, fake_provider):
    await make_account()
    fake_provider.default_submit = "ordered"
    headers = auth_headers(agent)
    created = (await async_client.post(
        "/api/orders", json=order_payload(rooms=("Deluxe King", "Twin")), headers=headers
    )).json()
    first, second = (item["id"] for item in created["items"])

    response = await async_client.patch(f"/api/orders/items/{first}", json={"payment_status": "PAID"}, headers=headers)

    assert response.status_code == 200
    assert response.json()["payment_status"] == "PAID"
    assert response.json()["execution_status"] == "ORDERED"
    group = (await async_client.get(f"/api/orders/{created['id']}", headers=headers)).json()
    assert group["payment_status"] == "PARTIAL"

    await async_client.patch(f"/api/orders/items/{second}", json={"payment_status": "PAID"}, headers=headers)
    group = (await async_client.get(f"/api/orders/{created['id']}", headers=headers)).json()
    assert group["payment_status"] == "PAID"

    invalid = await async_client.patch(f"/api/orders/items/{first}", json={"payment_status": "PARTIAL"}, headers=headers)
    assert invalid.status_code == 422


@pytest.mark.anyio
async def test_unplaced_item_cannot_be_marked_paid(async_client, agent):
    headers = auth_headers(agent)
    created = (await async_client.post("/api/orders", json=order_payload(submit_now=False), headers=headers)).json()
    item_id = created["items"][0]["id"]

    response = await async_client.patch(f"/api/orders/items/{item_id}", json={"payment_status": "PAID"}, headers=headers)

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "ITEM_NOT_PLACED"
    detail = (await async_client.get(f"/api/orders/{created['id']}", headers=headers)).json()
    assert detail["items"][0]["payment_status"] == "UNPAID"


# ─── Hotels and price monitors ──────────────────────────────────────────────────


@pytest.mark.anyio
async def test_room_search(async_client, agent, fake_provider):
    fake_provider.set_price("Deluxe King", "599")
    check_in, check_out = stay()

    response = await async_client.get(
        "/api/hotels/ATOUR/rooms",
        params={"check_in": check_in.isoformat(), "check_out": check_out.isoformat()},
        headers=auth_headers(agent),
    )

    body = response.json()
    assert body["cached"] is False
    assert body["rooms"][0]["room_type"] == "Deluxe King"
    assert body["rooms"][0]["price"] == 599.0
    assert body["blacklist"] == {"count": 0, "max_severity": None}


@pytest.mark.anyio
async def test_price_monitor_lifecycle(async_client, agent, fake_provider):
    headers = auth_headers(agent)
    check_in, check_out = stay()
    created = await async_client.post("/api/price-monitors", json={
        "chain_id": "ATOUR",
        "hotel_name": "Atour Chengdu Taikoo Li",
        "room_type": "Deluxe King",
        "check_in": check_in.isoformat(),
        "check_out": check_out.isoformat(),
        "target_price": 2800,
    }, headers=headers)
    assert created.status_code == 201
    task_id = created.json()["id"]
    assert created.json()["status"] == "MONITORING"

    fake_provider.set_price("Deluxe King", "2750")
    checked = (await async_client.post(f"/api/price-monitors/{task_id}/check", headers=headers)).json()
    assert checked["status"] == "REACHED"
    assert checked["current_price"] == 2750.0
    assert checked["reached_count"] == 1

    paused = (await async_client.post(f"/api/price-monitors/{task_id}/pause", headers=headers)).json()
    assert paused["status"] == "PAUSED"

    listing = (await async_client.get("/api/price-monitors", headers=headers)).json()
    assert listing["count"] == 1

    deleted = await async_client.delete(f"/api/price-monitors/{task_id}", headers=headers)
    assert deleted.json() == {"deleted": True}
    missing = await async_client.get(f"/api/price-monitors/{task_id}", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.anyio
async def test_price_monitor_rejects_non_positive_target(async_client, agent):
    check_in, check_out = stay()
    response = await async_client.post("/api/price-monitors", json={
        "chain_id": "ATOUR",
        "hotel_name": "Atour",
        "room_type": "Deluxe King",
        "check_in": check_in.isoformat(),
        "check_out": check_out.isoformat(),
        "target_price": 0,
    }, headers=auth_headers(agent))
    assert response.status_code == 422


# ─── Admin ──────────────────────────────────────────────────────────────────────


@pytest.mark.anyio
async def test_admin_endpoints_require_admin(async_client, agent):
    headers = auth_headers(agent)
    for method, url in [
        ("GET", "/api/users"),
        ("GET", "/api/pool-accounts"),
        ("PATCH", "/api/system/config"),
        ("POST", "/api/corporate-agreements"),
    ]:
        response = await async_client.request(method, url, headers=headers, json={"name": "x"})
        assert response.status_code == 403, url


@pytest.mark.anyio
async def test_pool_accounts_resolve_agreement_names(async_client, admin):
    headers = auth_headers(admin)

    unknown = await async_client.post(
        "/api/pool-accounts",
        json={"phone": "13811112222", "corporate_agreements": ["Initech"]},
        headers=headers,
    )
    assert unknown.status_code == 409
    assert unknown.json()["error"]["code"] == "UNKNOWN_CORPORATE_AGREEMENT"

    agreement = await async_client.post("/api/corporate-agreements", json={"name": "Initech"}, headers=headers)
    assert agreement.status_code == 201

    created = await async_client.post(
        "/api/pool-accounts",
        json={"phone": "13811112222", "corporate_agreements": ["Initech"], "daily_orders_left": 3},
        headers=headers,
    )
    assert created.status_code == 201
    account = created.json()
    assert account["tier"] == "CORPORATE"
    assert account["corporate_agreements"] == ["Initech"]

    updated = await async_client.patch(
        f"/api/pool-accounts/{account['id']}", json={"is_online": False}, headers=headers
    )
    assert updated.json()["is_online"] is False
    assert updated.json()["daily_orders_left"] == 3

    listing = (await async_client.get("/api/pool-accounts", headers=headers)).json()
    assert listing["count"] == 1


@pytest.mark.anyio
async def test_permissions_credit_and_ledger(async_client, admin, agent):
    headers = auth_headers(admin)
    agent_id = str(agent.id)

    response = await async_client.put(f"/api/users/{agent_id}/permissions", json={
        "channels": {"PLATINUM": {"allowed": True, "daily_limit": 2, "quota_balance": 0}},
    }, headers=headers)
    assert response.status_code == 200
    assert response.json()["permissions"]["PLATINUM"] == {"allowed": True, "daily_limit": 2, "quota_balance": 0}

    rejected = await async_client.post("/api/orders", json=order_payload("PLATINUM"), headers=auth_headers(agent))
    assert rejected.json()["error"]["code"] == "QUOTA_EXHAUSTED"

    credit = await async_client.post(
        f"/api/users/{agent_id}/quota-credit",
        json={"channel": "PLATINUM", "amount": 2, "note": "monthly top-up"},
        headers=headers,
    )
    assert credit.json()["quota_balance"] == 2

    accepted = await async_client.post(
        "/api/orders", json=order_payload("PLATINUM", submit_now=False), headers=auth_headers(agent)
    )
    assert accepted.status_code == 201

    ledger = (await async_client.get(f"/api/users/{agent_id}/quota-ledger", headers=headers)).json()
    assert sorted((e["reason"], e["delta"]) for e in ledger) == [("ADJUST", 0), ("ADMIT", -1), ("CREDIT", 2)]


@pytest.mark.anyio
async def test_grants_must_name_known_agreements(async_client, admin, agent):
    response = await async_client.put(f"/api/users/{agent.id}/permissions", json={
        "corporate_grants": [{"name": "Nobody Inc"}],
    }, headers=auth_headers(admin))

    assert response.status_code == 409
    assert response.json()["error"]["details"] == {"names": ["Nobody Inc"]}


@pytest.mark.anyio
async def test_create_user_gets_default_permissions(async_client, admin):
    response = await async_client.post("/api/users", json={
        "username": "newagent",
        "name": "New Agent",
        "password": "secret123",
    }, headers=auth_headers(admin))

    assert response.status_code == 201
    assert set(response.json()["permissions"]) == {"NEW_USER", "PLATINUM", "CORPORATE"}

    login = await async_client.post("/api/auth/login", json={"username": "newagent", "password": "secret123"})
    assert login.status_code == 200


@pytest.mark.anyio
async def test_disabled_corporate_names_must_exist(async_client, admin, make_agreement):
    await make_agreement("Globex")
    headers = auth_headers(admin)

    ok = await async_client.patch("/api/system/config", json={"disabled_corporate_names": [" Globex "]}, headers=headers)
    assert ok.json()["disabled_corporate_names"] == ["Globex"]

    bad = await async_client.patch("/api/system/config", json={"disabled_corporate_names": ["Umbrella"]}, headers=headers)
    assert bad.status_code == 409
