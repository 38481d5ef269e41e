"""Orders REST API tests — ASGI client against the in-memory engine."""

from httpx import AsyncClient

CLIENT = {"X-Actor-Id": "c1"}
WORKER = {"X-Actor-Id": "w1"}
STRANGER = {"X-Actor-Id": "mallory"}

_CREATE_BODY = {
    "type": "job",
    "title": "Landing page",
    "description": "Marketing site",
    "worker_type": "freelancer",
    "total_amount_cents": 10000,
    "worker_id": "w1",
    "milestones": [
        {"title": "Design", "amount_cents": 6000},
        {"title": "Build", "amount_cents": 4000},
    ],
}


async def _create(client: AsyncClient, **overrides) -> dict:
    resp = await client.post("/api/v1/orders", json={**_CREATE_BODY, **overrides}, headers=CLIENT)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


class TestAuth:
    async def test_missing_actor_is_401(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/orders")
        assert resp.status_code == 401
        body = resp.json()
        assert body["code"] == 9001
        assert body["data"] is None

    async def test_blank_actor_is_401(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/orders", headers={"X-Actor-Id": "  "})
        assert resp.status_code == 401

    async def test_request_id_echoed(self, client: AsyncClient) -> None:
        resp = await client.get(
            "/api/v1/orders", headers={**CLIENT, "X-Request-Id": "req_upstream"}
        )
        assert resp.headers["X-Request-Id"] == "req_upstream"
        assert resp.json()["request_id"] == "req_upstream"


class TestCreateAndRead:
    async def test_create_returns_full_order(self, client: AsyncClient) -> None:
        data = await _create(client)
        assert data["status"] == "pending"
        assert data["client_id"] == "c1"
        assert data["total_amount_display"] == "100.00 USD"
        assert [m["amount_cents"] for m in data["milestones"]] == [6000, 4000]
        assert sum(p["amount_cents"] for p in data["payments"]) == 10000
        assert all(p["escrow_status"] == "held" for p in data["payments"])

    async def test_invalid_body_is_422(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/orders", json={**_CREATE_BODY, "total_amount_cents": 0}, headers=CLIENT
        )
        assert resp.status_code == 422

    async def test_milestones_must_cover_total(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/orders",
            json={**_CREATE_BODY, "milestones": [{"title": "Only", "amount_cents": 10}]},
            headers=CLIENT,
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == 1001

    async def test_parties_can_read(self, client: AsyncClient) -> None:
        order_id = (await _create(client))["order_id"]
        for headers in (CLIENT, WORKER):
            resp = await client.get(f"/api/v1/orders/{order_id}", headers=headers)
            assert resp.status_code == 200
            assert resp.json()["data"]["order_id"] == order_id

    async def test_stranger_cannot_read(self, client: AsyncClient) -> None:
        order_id = (await _create(client))["order_id"]
        resp = await client.get(f"/api/v1/orders/{order_id}", headers=STRANGER)
        assert resp.status_code == 403
        assert resp.json()["code"] == 3002

    async def test_unknown_order_is_404(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/orders/JOB-404", headers=CLIENT)
        assert resp.status_code == 404
        assert resp.json()["code"] == 2001

    async def test_timeline(self, client: AsyncClient) -> None:
        order_id = (await _create(client))["order_id"]
        resp = await client.get(f"/api/v1/orders/{order_id}/timeline", headers=WORKER)
        events = resp.json()["data"]["events"]
        assert [e["type"] for e in events] == ["created"]
        assert events[0]["actor_role"] == "client"


class TestListing:
    async def test_cursor_pagination(self, client: AsyncClient) -> None:
        created = [(await _create(client, title=f"Order {i}"))["order_id"] for i in range(3)]

        first = (await client.get("/api/v1/orders?limit=2", headers=CLIENT)).json()["data"]
        assert first["has_more"] is True
        second = (
            await client.get(
                "/api/v1/orders",
                params={"limit": 2, "cursor": first["next_cursor"]},
                headers=CLIENT,
            )
        ).json()["data"]
        assert second["has_more"] is False
        assert second["next_cursor"] is None

        seen = [o["order_id"] for o in first["items"] + second["items"]]
        assert seen == list(reversed(created))

    async def test_worker_role_listing(self, client: AsyncClient) -> None:
        await _create(client)
        await _create(client, worker_id=None)
        resp = await client.get("/api/v1/orders?role=worker", headers=WORKER)
        assert len(resp.json()["data"]["items"]) == 1

    async def test_stats(self, client: AsyncClient) -> None:
        await _create(client)
        await _create(client, total_amount_cents=5000, milestones=None)
        resp = await client.get("/api/v1/orders/stats", headers=CLIENT)
        data = resp.json()["data"]
        assert data["total"] == 2
        assert data["pending"] == 2
        assert data["total_value_cents"] == 15000
        assert data["average_value_display"] == "75.00 USD"


class TestLifecycle:
    async def test_complete_approve_to_completed(self, client: AsyncClient) -> None:
        order = await _create(client)
        base = f"/api/v1/orders/{order['order_id']}"
        m1, m2 = (m["id"] for m in order["milestones"])

        resp = await client.post(
            f"{base}/milestones/{m1}/complete",
            json={"deliverables": [{"name": "Figma", "locator": "https://figma/x"}]},
            headers=WORKER,
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["progress"] == 50
        assert resp.json()["data"]["milestones"][0]["deliverables"][0]["kind"] == "link"

        await client.post(f"{base}/milestones/{m2}/complete", json={}, headers=WORKER)
        resp = await client.post(
            f"{base}/milestones/{m1}/approve", json={"rating": 5}, headers=CLIENT
        )
        assert resp.json()["data"]["status"] == "review"

        resp = await client.post(f"{base}/release-final", headers=CLIENT)
        data = resp.json()["data"]
        assert data["status"] == "completed"
        assert all(p["status"] == "processing" for p in data["payments"])

    async def test_worker_cannot_approve(self, client: AsyncClient) -> None:
        order = await _create(client)
        base = f"/api/v1/orders/{order['order_id']}"
        mid = order["milestones"][0]["id"]
        await client.post(f"{base}/milestones/{mid}/complete", json={}, headers=WORKER)
        resp = await client.post(f"{base}/milestones/{mid}/approve", json={}, headers=WORKER)
        assert resp.status_code == 403

    async def test_reject_requires_reason(self, client: AsyncClient) -> None:
        order = await _create(client)
        mid = order["milestones"][0]["id"]
        resp = await client.post(
            f"/api/v1/orders/{order['order_id']}/milestones/{mid}/reject",
            json={"reason": ""},
            headers=CLIENT,
        )
        assert resp.status_code == 422

    async def test_illegal_transition_is_409(self, client: AsyncClient) -> None:
        order = await _create(client)
        resp = await client.patch(
            f"/api/v1/orders/{order['order_id']}", json={"status": "review"}, headers=CLIENT
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == 3001

    async def test_patch_rejects_unknown_fields(self, client: AsyncClient) -> None:
        order = await _create(client)
        resp = await client.patch(
            f"/api/v1/orders/{order['order_id']}", json={"title": "New"}, headers=CLIENT
        )
        assert resp.status_code == 422

    async def test_cancel_refunds(self, client: AsyncClient) -> None:
        order = await _create(client)
        resp = await client.patch(
            f"/api/v1/orders/{order['order_id']}", json={"status": "cancelled"}, headers=CLIENT
        )
        data = resp.json()["data"]
        assert data["status"] == "cancelled"
        assert all(p["status"] == "refunded" for p in data["payments"])

    async def test_assign_worker(self, client: AsyncClient) -> None:
        order = await _create(client, worker_id=None)
        resp = await client.post(
            f"/api/v1/orders/{order['order_id']}/assign", json={"worker_id": "w2"}, headers=CLIENT
        )
        assert resp.json()["data"]["worker_id"] == "w2"


class TestPayments:
    async def test_release_refund_dispute(self, client: AsyncClient) -> None:
        order = await _create(client)
        base = f"/api/v1/orders/{order['order_id']}/payments"
        p1, p2 = (p["id"] for p in order["payments"])

        resp = await client.post(f"{base}/{p1}/release", headers=CLIENT)
        assert resp.json()["data"]["payments"][0]["status"] == "processing"

        resp = await client.post(f"{base}/{p2}/refund", json={"amount_cents": 1000}, headers=CLIENT)
        assert resp.json()["data"]["payments"][1]["refunded_cents"] == 1000

        resp = await client.post(
            f"{base}/{p2}/dispute", json={"reason": "Work not delivered"}, headers=WORKER
        )
        payment = resp.json()["data"]["payments"][1]
        assert payment["status"] == "disputed"
        assert payment["escrow_status"] == "disputed"

    async def test_worker_cannot_release(self, client: AsyncClient) -> None:
        order = await _create(client)
        pid = order["payments"][0]["id"]
        resp = await client.post(
            f"/api/v1/orders/{order['order_id']}/payments/{pid}/release", headers=WORKER
        )
        assert resp.status_code == 403

    async def test_unknown_payment_is_404(self, client: AsyncClient) -> None:
        order = await _create(client)
        resp = await client.post(
            f"/api/v1/orders/{order['order_id']}/payments/nope/refund", json={}, headers=CLIENT
        )
        assert resp.status_code == 404
        assert resp.json()["code"] == 2003
