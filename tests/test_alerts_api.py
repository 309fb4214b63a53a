from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

PAYLOAD = {
    "alert": {
        "tenantId": "t1",
        "source": "cpu",
        "sourceId": "host1",
        "name": "HighCPU",
        "message": "cpu>90%",
        "severity": "critical",
        "metrics": [{"name": "cpu", "value": 93.5, "unit": "%", "threshold": 90, "operator": "greater_than"}],
    },
    "rule": {"id": "rule-cpu"},
}


async def _create(client: httpx.AsyncClient, payload=None) -> dict:
    res = await client.post("/api/alerts", json=payload or PAYLOAD)
    assert res.status_code == 201, res.text
    return res.json()


@pytest.mark.anyio
async def test_alert_lifecycle_over_http(async_client: httpx.AsyncClient):
    first = await _create(async_client)
    second = await _create(async_client)
    assert second["id"] == first["id"]
    assert second["count"] == 2
    assert second["status"] == "open"
    assert second["ruleId"] == "rule-cpu"
    assert second["metrics"][0]["value"] == 93.5
    alert_id = first["id"]

    res = await async_client.post(f"/api/alerts/{alert_id}/acknowledge", json={"userId": "u1"})
    assert res.status_code == 200
    assert res.json()["status"] == "acknowledged"
    assert res.json()["acknowledgedBy"] == "u1"

    res = await async_client.post(f"/api/alerts/{alert_id}/resolve", json={})
    assert res.status_code == 200
    assert res.json()["status"] == "resolved"

    res = await async_client.post(f"/api/alerts/{alert_id}/close")
    assert res.status_code == 200
    assert res.json()["status"] == "closed"

    res = await async_client.post(f"/api/alerts/{alert_id}/acknowledge", json={"userId": "u2"})
    assert res.status_code == 409
    assert "closed" in res.json()["detail"]

    res = await async_client.get(f"/api/alerts/{alert_id}")
    assert res.status_code == 200
    assert res.json()["acknowledgedBy"] == "u1"


@pytest.mark.anyio
async def test_unknown_alert_returns_404(async_client: httpx.AsyncClient):
    res = await async_client.get("/api/alerts/nope")
    assert res.status_code == 404

    res = await async_client.post("/api/alerts/nope/resolve", json={"userId": "u1"})
    assert res.status_code == 404
    assert res.json()["detail"] == "alert not found"

    res = await async_client.post("/api/alerts/nope/assign", json={"userId": "u1"})
    assert res.status_code == 404


@pytest.mark.anyio
async def test_create_validation(async_client: httpx.AsyncClient):
    res = await async_client.post("/api/alerts", json={"alert": {"name": "   "}})
    assert res.status_code == 400

    res = await async_client.post("/api/alerts", json={"alert": {"name": "x", "severity": "apocalyptic"}})
    assert res.status_code == 422


@pytest.mark.anyio
async def test_assign_suppress_and_unsuppress(async_client: httpx.AsyncClient):
    alert_id = (await _create(async_client))["id"]

    res = await async_client.post(f"/api/alerts/{alert_id}/assign", json={"userId": "alice"})
    assert res.status_code == 200
    assert res.json()["status"] == "in_progress"
    assert res.json()["assignedTo"] == "alice"

    until = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
    res = await async_client.post(
        f"/api/alerts/{alert_id}/suppress", json={"suppressUntil": until, "reason": "maintenance"}
    )
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "suppressed"
    assert body["suppressionReason"] == "maintenance"

    res = await async_client.post(f"/api/alerts/{alert_id}/resolve", json={"userId": "alice"})
    assert res.status_code == 409

    res = await async_client.post(f"/api/alerts/{alert_id}/unsuppress")
    assert res.status_code == 200
    assert res.json()["status"] == "open"

    res = await async_client.post(f"/api/alerts/{alert_id}/unsuppress")
    assert res.status_code == 409


@pytest.mark.anyio
async def test_list_filters_and_pagination(async_client: httpx.AsyncClient):
    ids = []
    for i in range(4):
        payload = {"alert": {**PAYLOAD["alert"], "name": f"alert-{i}", "severity": "info" if i % 2 else "error"}}
        ids.append((await _create(async_client, payload))["id"])
    await async_client.post(f"/api/alerts/{ids[0]}/resolve", json={"userId": "u1"})

    res = await async_client.get("/api/alerts", params={"status": "open"})
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 3
    assert [a["id"] for a in body["items"]] == [ids[3], ids[2], ids[1]]

    res = await async_client.get("/api/alerts", params=[("status", "open"), ("status", "resolved")])
    assert res.json()["total"] == 4

    res = await async_client.get("/api/alerts", params={"severity": "error"})
    assert {a["id"] for a in res.json()["items"]} == {ids[0], ids[2]}

    res = await async_client.get("/api/alerts", params={"limit": 2, "offset": 1})
    body = res.json()
    assert body["total"] == 4
    assert [a["id"] for a in body["items"]] == [ids[2], ids[1]]

    future = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
    res = await async_client.get("/api/alerts", params={"start": future})
    assert res.json()["total"] == 0


@pytest.mark.anyio
async def test_stats_rule_listing_and_clear_resolved(async_client: httpx.AsyncClient):
    a = (await _create(async_client))["id"]
    b = (await _create(async_client, {**PAYLOAD, "alert": {**PAYLOAD["alert"], "name": "Other"}}))["id"]
    await async_client.post(f"/api/alerts/{a}/resolve", json={})

    res = await async_client.get("/api/alerts/stats")
    assert res.status_code == 200
    stats = res.json()
    assert stats["total"] == 2
    assert stats["byStatus"]["open"] == 1
    assert stats["byStatus"]["resolved"] == 1
    assert stats["bySeverity"]["critical"] == 2
    assert stats["bySeverity"]["fatal"] == 0

    res = await async_client.get("/api/alerts/rules/rule-cpu")
    assert [x["id"] for x in res.json()["items"]] == [a, b]

    res = await async_client.post("/api/alerts/clear-resolved", json={})
    assert res.status_code == 200
    assert res.json() == {"cleared": 1}

    res = await async_client.get("/api/alerts/rules/rule-cpu")
    assert [x["id"] for x in res.json()["items"]] == [b]


@pytest.mark.anyio
async def test_events_feed(async_client: httpx.AsyncClient):
    alert_id = (await _create(async_client))["id"]
    await _create(async_client)
    await async_client.post(f"/api/alerts/{alert_id}/acknowledge", json={"userId": "u1"})

    res = await async_client.get("/api/alerts/events", params={"alertId": alert_id})
    assert res.status_code == 200
    body = res.json()
    assert [e["eventType"] for e in body["items"]] == ["alert:acknowledged", "alert:updated", "alert:created"]
    assert body["items"][0]["alert"]["status"] == "acknowledged"
    assert body["items"][2]["alert"]["status"] == "open"

    res = await async_client.get("/api/alerts/events", params={"eventType": "alert:created"})
    assert res.json()["total"] == 1


@pytest.mark.anyio
async def test_auto_resolve_over_http(async_client: httpx.AsyncClient):
    payload = {**PAYLOAD, "rule": {"id": "rule-cpu", "autoResolve": True, "autoResolveAfter": 0.1}}
    alert_id = (await _create(async_client, payload))["id"]

    resolved = None
    for _ in range(40):
        res = await async_client.get(f"/api/alerts/{alert_id}")
        if res.json()["status"] == "resolved":
            resolved = res.json()
            break
        await asyncio.sleep(0.05)

    assert resolved is not None, "Expected auto-resolve to fire"
    assert resolved["resolvedBy"] == "system"
