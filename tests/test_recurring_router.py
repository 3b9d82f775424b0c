"""Recurring series API tests."""

import pytest
from httpx import AsyncClient


async def _create_account(client: AsyncClient, name: str = "Checking", currency: str = "USD") -> str:
    response = await client.post("/accounts", json={"name": name, "currency": currency})
    assert response.status_code == 201
    return response.json()["id"]


async def _create_series(client: AsyncClient, account_id: str, **overrides) -> dict:
    payload = {
        "account_id": account_id,
        "description": "Netflix",
        "amount": "50.00",
        "frequency": "monthly",
        "day_of_month": 15,
        "start_date": "2025-01-01",
        "import_patterns": ["netflix*"],
    }
    payload.update(overrides)
    response = await client.post("/recurring/series", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
async def test_create_and_get_series(client: AsyncClient):
    account_id = await _create_account(client)
    series = await _create_series(client, account_id)

    assert series["schedule"] == "Monthly on day 15"
    assert series["next_occurrence"] == "2025-01-15"
    assert series["import_patterns"] == ["NETFLIX*"]

    response = await client.get(f"/recurring/series/{series['id']}")
    assert response.status_code == 200
    assert response.json()["description"] == "Netflix"

    listed = await client.get("/recurring/series", params={"account_id": account_id})
    assert listed.json()["total"] == 1


@pytest.mark.asyncio
async def test_invalid_pattern_is_400(client: AsyncClient):
    account_id = await _create_account(client)
    response = await client.post(
        "/recurring/series",
        json={
            "account_id": account_id,
            "description": "Gym",
            "amount": "30.00",
            "frequency": "weekly",
            "start_date": "2025-01-01",
        },
    )
    assert response.status_code == 400
    assert "day_of_week" in response.json()["detail"]


@pytest.mark.asyncio
async def test_unknown_series_is_404(client: AsyncClient):
    response = await client.get("/recurring/series/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_instances_and_single_instance_edits(client: AsyncClient):
    account_id = await _create_account(client)
    series = await _create_series(client, account_id)
    base = f"/recurring/series/{series['id']}/instances"

    modified = await client.put(f"{base}/2025-02-15", json={"amount": "55.00", "effective_date": "2025-02-17"})
    assert modified.status_code == 200
    assert modified.json()["exception_type"] == "modified"

    skipped = await client.post(f"{base}/2025-03-15/skip")
    assert skipped.status_code == 200

    response = await client.get("/recurring/instances", params={"from": "2025-01-01", "to": "2025-03-31"})
    assert response.status_code == 200
    items = response.json()["items"]
    assert [item["scheduled_date"] for item in items] == ["2025-01-15", "2025-02-15"]
    assert items[1]["effective_date"] == "2025-02-17"
    assert items[1]["amount"] == "55.00"

    restored = await client.delete(f"{base}/2025-03-15/exception")
    assert restored.status_code == 204
    response = await client.get("/recurring/instances", params={"from": "2025-03-01", "to": "2025-03-31"})
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_realize_twice_conflicts(client: AsyncClient):
    account_id = await _create_account(client)
    series = await _create_series(client, account_id)
    url = f"/recurring/series/{series['id']}/instances/2025-01-15/realize"

    first = await client.post(url, json={"description": "Netflix January"})
    assert first.status_code == 201
    [txn] = first.json()["transactions"]
    assert txn["description"] == "Netflix January"
    assert txn["source"] == "recurring"

    second = await client.post(url)
    assert second.status_code == 409

    unscheduled = await client.post(f"/recurring/series/{series['id']}/instances/2025-01-16/realize")
    assert unscheduled.status_code == 400


@pytest.mark.asyncio
async def test_realize_batch_reports_failures(client: AsyncClient):
    account_id = await _create_account(client)
    series = await _create_series(client, account_id)

    response = await client.post(
        "/recurring/realize-batch",
        json={
            "items": [
                {"series_id": series["id"], "instance_date": "2025-01-15"},
                {"series_id": series["id"], "instance_date": "2025-01-15"},
            ]
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert len(body["realized"]) == 1
    assert body["failures"][0]["error_type"] == "AlreadyRealizedError"
    assert body["failures"][0]["instance_date"] == "2025-01-15"


@pytest.mark.asyncio
async def test_transfer_realization_creates_both_legs(client: AsyncClient):
    checking = await _create_account(client, "Checking")
    savings = await _create_account(client, "Savings")
    series = await _create_series(
        client,
        checking,
        kind="transfer",
        destination_account_id=savings,
        description="Savings sweep",
        amount="200.00",
        import_patterns=[],
    )

    response = await client.post(f"/recurring/series/{series['id']}/instances/2025-01-15/realize")

    assert response.status_code == 201
    legs = response.json()["transactions"]
    assert sorted(leg["amount"] for leg in legs) == ["-200.00", "200.00"]
    assert legs[0]["transfer_id"] == legs[1]["transfer_id"]


@pytest.mark.asyncio
async def test_pause_resume_and_skip_next(client: AsyncClient):
    account_id = await _create_account(client)
    series = await _create_series(
        client, account_id, frequency="biweekly", day_of_week=0, day_of_month=None, start_date="2025-01-06"
    )

    paused = await client.post(f"/recurring/series/{series['id']}/pause")
    assert paused.json()["is_active"] is False
    realize = await client.post(f"/recurring/series/{series['id']}/instances/2025-01-06/realize")
    assert realize.status_code == 400

    resumed = await client.post(f"/recurring/series/{series['id']}/resume")
    assert resumed.json()["is_active"] is True

    skipped = await client.post(f"/recurring/series/{series['id']}/skip-next")
    assert skipped.status_code == 200
    assert skipped.json()["skipped_date"] == "2025-01-06"
    assert skipped.json()["series"]["next_occurrence"] == "2025-01-20"


@pytest.mark.asyncio
async def test_import_patterns_endpoints(client: AsyncClient):
    account_id = await _create_account(client)
    series = await _create_series(client, account_id)

    replaced = await client.put(f"/recurring/series/{series['id']}/import-patterns", json={"patterns": ["*flix*"]})
    assert replaced.json()["import_patterns"] == ["*FLIX*"]

    learned = await client.post(
        f"/recurring/series/{series['id']}/import-patterns/learn", json={"description": "Netflix.com 123"}
    )
    assert learned.json()["import_patterns"] == ["*FLIX*", "NETFLIX.COM 123"]

    invalid = await client.put(f"/recurring/series/{series['id']}/import-patterns", json={"patterns": ["*"]})
    assert invalid.status_code == 400


@pytest.mark.asyncio
async def test_settings_and_auto_realize_run(client: AsyncClient):
    account_id = await _create_account(client)
    await _create_series(client, account_id)

    defaults = await client.get("/settings/auto-realize")
    assert defaults.json()["auto_realize_past_due_items"] is False

    disabled = await client.post("/recurring/auto-realize/run", json={"today": "2025-03-01"})
    assert disabled.json()["enabled"] is False

    updated = await client.put(
        "/settings/auto-realize",
        json={"auto_realize_past_due_items": True, "past_due_lookback_days": 45},
    )
    assert updated.status_code == 200
    assert updated.json()["past_due_lookback_days"] == 45

    run = await client.post("/recurring/auto-realize/run", json={"today": "2025-03-01"})
    body = run.json()
    assert body["enabled"] is True
    assert body["window_start"] == "2025-01-15"
    assert body["window_end"] == "2025-02-28"
    assert body["realized_count"] == 2

    bad_profile = await client.put("/settings/auto-realize", json={"reconciliation_profile": "reckless"})
    assert bad_profile.status_code == 400
