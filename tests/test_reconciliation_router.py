"""Reconciliation and transaction import API tests."""

import pytest
import pytest_asyncio
from httpx import AsyncClient


@pytest_asyncio.fixture
async def netflix(client: AsyncClient) -> dict:
    account = await client.post("/accounts", json={"name": "Checking"})
    account_id = account.json()["id"]
    series = await client.post(
        "/recurring/series",
        json={
            "account_id": account_id,
            "description": "Netflix",
            "amount": "50.00",
            "frequency": "monthly",
            "day_of_month": 15,
            "start_date": "2025-01-01",
            "import_patterns": ["NETFLIX*"],
        },
    )
    return {"account_id": account_id, "series_id": series.json()["id"]}


async def _import(client: AsyncClient, account_id: str, *rows: tuple[str, str, str]) -> list[str]:
    response = await client.post(
        "/transactions/import",
        json={
            "transactions": [
                {"account_id": account_id, "txn_date": txn_date, "amount": amount, "description": description}
                for txn_date, amount, description in rows
            ]
        },
    )
    assert response.status_code == 201, response.text
    return [item["id"] for item in response.json()["items"]]


@pytest.mark.asyncio
async def test_import_and_list_transactions(client: AsyncClient, netflix: dict):
    await _import(client, netflix["account_id"], ("2025-01-15", "-50.00", "NETFLIX.COM"))

    response = await client.get("/transactions", params={"account_id": netflix["account_id"], "source": "import"})

    assert response.status_code == 200
    assert response.json()["total"] == 1
    assert response.json()["items"][0]["source"] == "import"


@pytest.mark.asyncio
async def test_import_rejects_currency_mismatch(client: AsyncClient, netflix: dict):
    response = await client.post(
        "/transactions/import",
        json={
            "transactions": [
                {"account_id": netflix["account_id"], "txn_date": "2025-01-15", "amount": "-5.00", "currency": "EUR"}
            ]
        },
    )
    assert response.status_code == 400
    listed = await client.get("/transactions")
    assert listed.json()["total"] == 0


@pytest.mark.asyncio
async def test_analyze_exact_match(client: AsyncClient, netflix: dict):
    [txn_id] = await _import(client, netflix["account_id"], ("2025-01-15", "-50.00", "NETFLIX.COM 866-579"))

    response = await client.post(f"/reconciliation/transactions/{txn_id}/analyze")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "matched"
    assert body["match"]["confidence_level"] == "high"
    assert body["match"]["confidence_score"] == 1.0
    assert body["match"]["date_offset_days"] == 0

    instances = await client.get("/recurring/instances", params={"from": "2025-01-15", "to": "2025-01-15"})
    assert instances.json()["items"][0]["generated_transaction_id"] == txn_id


@pytest.mark.asyncio
async def test_review_flow_accept(client: AsyncClient, netflix: dict):
    [txn_id] = await _import(client, netflix["account_id"], ("2025-01-17", "-51.00", "NETFLIX.COM"))

    analyzed = await client.post(f"/reconciliation/transactions/{txn_id}/analyze", json={"profile": "moderate"})
    assert analyzed.json()["status"] == "pending"
    match_id = analyzed.json()["match"]["id"]

    pending = await client.get("/reconciliation/matches", params={"status": "pending"})
    assert [m["id"] for m in pending.json()["items"]] == [match_id]

    accepted = await client.post(f"/reconciliation/matches/{match_id}/accept")
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "matched"

    again = await client.post(f"/reconciliation/matches/{match_id}/accept")
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_strict_profile_disqualifies_late_payment(client: AsyncClient, netflix: dict):
    [txn_id] = await _import(client, netflix["account_id"], ("2025-01-17", "-51.00", "NETFLIX.COM"))

    response = await client.post(f"/reconciliation/transactions/{txn_id}/analyze", json={"profile": "strict"})

    assert response.json() == {"transaction_id": txn_id, "status": "missing", "match": None}


@pytest.mark.asyncio
async def test_unknown_profile_is_400(client: AsyncClient, netflix: dict):
    [txn_id] = await _import(client, netflix["account_id"], ("2025-01-15", "-50.00", "NETFLIX.COM"))
    response = await client.post(f"/reconciliation/transactions/{txn_id}/analyze", json={"profile": "reckless"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_analyze_batch(client: AsyncClient, netflix: dict):
    await _import(
        client,
        netflix["account_id"],
        ("2025-01-15", "-50.00", "NETFLIX.COM"),
        ("2025-02-17", "-51.00", "NETFLIX.COM"),
        ("2025-02-20", "-4.50", "COFFEE"),
    )

    response = await client.post("/reconciliation/analyze-batch", json={})

    assert response.status_code == 200
    body = response.json()
    assert body["profile"] == "moderate"
    assert (body["matched"], body["pending"], body["missing"]) == (1, 1, 1)
    assert body["failures"] == []


@pytest.mark.asyncio
async def test_manual_link_and_unlink(client: AsyncClient, netflix: dict):
    [txn_id] = await _import(client, netflix["account_id"], ("2025-01-20", "-50.00", "NFLX DIGITAL"))

    linked = await client.post(
        "/reconciliation/links",
        json={
            "transaction_id": txn_id,
            "series_id": netflix["series_id"],
            "instance_date": "2025-01-15",
            "remember_description": True,
        },
    )
    assert linked.status_code == 201
    assert linked.json()["source"] == "manual"
    series = await client.get(f"/recurring/series/{netflix['series_id']}")
    assert "NFLX DIGITAL" in series.json()["import_patterns"]

    realize = await client.post(f"/recurring/series/{netflix['series_id']}/instances/2025-01-15/realize")
    assert realize.status_code == 409

    removed = await client.delete(f"/reconciliation/matches/{linked.json()['id']}")
    assert removed.status_code == 204
    missing = await client.delete(f"/reconciliation/matches/{linked.json()['id']}")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_status_report(client: AsyncClient, netflix: dict):
    [txn_id] = await _import(client, netflix["account_id"], ("2025-01-15", "-50.00", "NETFLIX.COM"))
    await client.post(f"/reconciliation/transactions/{txn_id}/analyze")
    await client.post(f"/recurring/series/{netflix['series_id']}/instances/2025-02-15/skip")

    january = await client.get("/reconciliation/status", params={"year": 2025, "month": 1})
    february = await client.get("/reconciliation/status", params={"year": 2025, "month": 2})
    march = await client.get("/reconciliation/status", params={"year": 2025, "month": 3})

    assert january.json()["counts"]["matched"] == 1
    assert february.json()["counts"]["skipped"] == 1
    assert march.json()["counts"]["missing"] == 1
    assert march.json()["items"][0]["instance"]["scheduled_date"] == "2025-03-15"


@pytest.mark.asyncio
async def test_rejected_suggestion_is_not_offered_again(client: AsyncClient, netflix: dict):
    [txn_id] = await _import(client, netflix["account_id"], ("2025-01-17", "-51.00", "NETFLIX.COM"))
    analyzed = await client.post(f"/reconciliation/transactions/{txn_id}/analyze")
    match_id = analyzed.json()["match"]["id"]

    rejected = await client.post(f"/reconciliation/matches/{match_id}/reject")
    assert rejected.json()["status"] == "rejected"

    again = await client.post(f"/reconciliation/transactions/{txn_id}/analyze")
    assert again.json()["status"] == "missing"


@pytest.mark.asyncio
async def test_status_rejects_bad_month(client: AsyncClient):
    response = await client.get("/reconciliation/status", params={"year": 2025, "month": 13})
    assert response.status_code == 422
