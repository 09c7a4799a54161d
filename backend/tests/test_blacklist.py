import pytest

from conftest import auth_headers, stay


def report(chain_id: str = "ATOUR-1001", hotel_name: str = "Atour Xi'an Bell Tower", severity: str = "HIGH", **extra) -> dict:
    return {
        "chain_id": chain_id,
        "hotel_name": hotel_name,
        "severity": severity,
        "reason": "Guests charged twice at check-out",
        **extra,
    }


@pytest.fixture
async def agent(make_agent):
    return await make_agent()


@pytest.fixture
async def other(make_agent):
    return await make_agent(username="other")


@pytest.fixture
async def admin(make_agent):
    return await make_agent(username="admin", role="ADMIN")


@pytest.mark.anyio
async def test_report_and_hotel_check(async_client, agent):
    headers = auth_headers(agent)

    response = await async_client.post(
        "/api/blacklist/records", json=report(tags="overcharge, rude staff, overcharge"), headers=headers
    )

    assert response.status_code == 201
    record = response.json()
    assert record["tags"] == ["overcharge", "rude staff"]
    assert record["status"] == "ACTIVE"
    assert record["reported_by"] == "Agent"
    assert record["reporter_id"] == str(agent.id)

    by_chain = await async_client.get("/api/blacklist/hotel-check", params={"chain_id": "atour-1001"}, headers=headers)
    check = by_chain.json()
    assert (check["blacklisted"], check["count"], check["max_severity"]) == (True, 1, "HIGH")

    by_name = await async_client.get(
        "/api/blacklist/hotel-check", params={"hotel_name": "ATOUR XI'AN BELL TOWER"}, headers=headers
    )
    assert by_name.json()["count"] == 1

    clean = await async_client.get("/api/blacklist/hotel-check", params={"chain_id": "ATOUR-2002"}, headers=headers)
    assert clean.json() == {"blacklisted": False, "count": 0, "max_severity": "LOW", "records": []}


@pytest.mark.anyio
async def test_hotel_check_needs_a_hotel(async_client, agent):
    response = await async_client.get("/api/blacklist/hotel-check", headers=auth_headers(agent))
    assert response.status_code == 422


@pytest.mark.anyio
async def test_invalid_severity_is_rejected(async_client, agent):
    response = await async_client.post(
        "/api/blacklist/records", json=report(severity="CRITICAL"), headers=auth_headers(agent)
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.anyio
async def test_resolved_reports_no_longer_flag_the_hotel(async_client, agent):
    headers = auth_headers(agent)
    record = (await async_client.post("/api/blacklist/records", json=report(), headers=headers)).json()

    response = await async_client.patch(
        f"/api/blacklist/records/{record['id']}", json={"status": "RESOLVED"}, headers=headers
    )

    assert response.status_code == 200
    assert response.json()["status"] == "RESOLVED"
    check = await async_client.get("/api/blacklist/hotel-check", params={"chain_id": "ATOUR-1001"}, headers=headers)
    assert check.json()["blacklisted"] is False

    empty = await async_client.patch(f"/api/blacklist/records/{record['id']}", json={}, headers=headers)
    assert empty.status_code == 422


@pytest.mark.anyio
async def test_only_reporter_or_admin_can_change_a_report(async_client, agent, other, admin):
    record = (await async_client.post("/api/blacklist/records", json=report(), headers=auth_headers(agent))).json()
    url = f"/api/blacklist/records/{record['id']}"

    assert (await async_client.patch(url, json={"severity": "LOW"}, headers=auth_headers(other))).status_code == 403
    assert (await async_client.delete(url, headers=auth_headers(other))).status_code == 403

    patched = await async_client.patch(url, json={"severity": "LOW", "tags": ["noise"]}, headers=auth_headers(admin))
    assert patched.status_code == 200
    assert (patched.json()["severity"], patched.json()["tags"]) == ("LOW", ["noise"])

    assert (await async_client.delete(url, headers=auth_headers(admin))).status_code == 204
    missing = await async_client.get(url, headers=auth_headers(agent))
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.anyio
async def test_records_filter_and_hotels_group(async_client, agent, other):
    await async_client.post("/api/blacklist/records", json=report(
        chain_id="ATOUR-3003", hotel_name="Atour Qingdao", severity="LOW", tags=["noise"],
    ), headers=auth_headers(agent))
    await async_client.post("/api/blacklist/records", json=report(
        chain_id="ATOUR-3003", hotel_name="Atour Qingdao", severity="LOW", tags=["old carpets"],
    ), headers=auth_headers(other))
    await async_client.post("/api/blacklist/records", json=report(tags=["overcharge"]), headers=auth_headers(agent))
    headers = auth_headers(agent)

    by_tag = (await async_client.get("/api/blacklist/records", params={"search": "CARPET"}, headers=headers)).json()
    assert [r["reported_by"] for r in by_tag["records"]] == ["Other"]

    high = (await async_client.get("/api/blacklist/records", params={"severity": "HIGH"}, headers=headers)).json()
    assert [r["chain_id"] for r in high["records"]] == ["ATOUR-1001"]

    hotels = (await async_client.get("/api/blacklist/hotels", headers=headers)).json()["hotels"]
    assert [(h["chain_id"], h["count"], h["max_severity"]) for h in hotels] == [
        ("ATOUR-1001", 1, "HIGH"),
        ("ATOUR-3003", 2, "LOW"),
    ]
    assert sorted(hotels[1]["tags"]) == ["noise", "old carpets"]


@pytest.mark.anyio
async def test_room_search_carries_blacklist_summary(async_client, agent, fake_provider):
    headers = auth_headers(agent)
    await async_client.post("/api/blacklist/records", json=report(severity="MEDIUM"), headers=headers)
    fake_provider.set_price("Deluxe King", "599")
    check_in, check_out = stay()

    response = await async_client.get(
        "/api/hotels/ATOUR-1001/rooms",
        params={"check_in": check_in.isoformat(), "check_out": check_out.isoformat()},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.json()["blacklist"] == {"count": 1, "max_severity": "MEDIUM"}
