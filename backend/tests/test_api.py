"""HTTP endpoint tests: auth, error envelope and the happy paths."""

import json

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.requests import Request

from app.middleware.exceptions import database_exception_handler, operational_exception_handler

RUN = {
    "round_number": 1,
    "payment_date": "2025-08-05",
    "cutoff_date": "2025-07-31",
    "crop_year": 2025,
}


@pytest.mark.api
@pytest.mark.asyncio
class TestAuth:

    async def test_health_is_public(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_runs_require_auth(self, client: AsyncClient):
        resp = await client.post("/api/payment-runs/test", json=RUN)
        assert resp.status_code == 401

    async def test_batches_require_auth(self, client: AsyncClient):
        resp = await client.get("/api/payment-batches")
        assert resp.status_code == 401

    async def test_garbage_token(self, client: AsyncClient):
        resp = await client.get(
            "/api/payment-batches", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert resp.status_code == 401

    async def test_viewer_cannot_run(self, client: AsyncClient, seed, viewer_headers):
        resp = await client.post("/api/payment-runs/actual", json=RUN, headers=viewer_headers)
        assert resp.status_code == 403

    async def test_viewer_can_simulate(self, client: AsyncClient, seed, viewer_headers):
        resp = await client.post("/api/payment-runs/test", json=RUN, headers=viewer_headers)
        assert resp.status_code == 200


@pytest.mark.api
@pytest.mark.asyncio
class TestPaymentRunEndpoints:

    async def test_simulate(self, client: AsyncClient, seed, auth_headers):
        resp = await client.post("/api/payment-runs/test", json=RUN, headers=auth_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["test_run"] is True
        assert body["receipt_count"] == 3
        assert body["created_batch"] is None

    async def test_round_out_of_range(self, client: AsyncClient, seed, auth_headers):
        resp = await client.post(
            "/api/payment-runs/test", json={**RUN, "round_number": 4}, headers=auth_headers
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_actual_then_lifecycle(self, client: AsyncClient, seed, auth_headers):
        resp = await client.post("/api/payment-runs/actual", json=RUN, headers=auth_headers)
        assert resp.status_code == 200
        batch = resp.json()["created_batch"]
        assert batch["batch_number"] == "ADV1-2025-001"
        batch_id = batch["id"]

        resp = await client.get(f"/api/payment-batches/{batch_id}", headers=auth_headers)
        assert resp.status_code == 200
        detail = resp.json()
        assert detail["type_code"] == "ADV1"
        assert [g["grower_number"] for g in detail["growers"]] == ["G001", "G002"]

        # Posting a Draft batch is a conflict
        resp = await client.post(f"/api/payment-batches/{batch_id}/post", headers=auth_headers)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_TRANSITION"

        resp = await client.post(f"/api/payment-batches/{batch_id}/approve", headers=auth_headers)
        assert resp.json()["success"] is True

        resp = await client.post(
            f"/api/payment-batches/{batch_id}/post",
            json={"cheque_date": "2025-08-06"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert len(resp.json()["cheques"]) == 2

        resp = await client.post(f"/api/payment-batches/{batch_id}/finalize", headers=auth_headers)
        assert resp.json()["status"] == "Finalized"


@pytest.mark.api
@pytest.mark.asyncio
class TestVoidEndpoints:

    async def test_void_refused_with_remediation(self, client: AsyncClient, seed, auth_headers, run_round):
        first = (await run_round(1)).created_batch.id
        second = (await run_round(2)).created_batch.id

        resp = await client.get(f"/api/payment-batches/{first}/void-check", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["allowed"] is False

        resp = await client.post(
            f"/api/payment-batches/{first}/void", json={"reason": "bad"}, headers=auth_headers
        )
        assert resp.status_code == 409
        error = resp.json()["error"]
        assert error["code"] == "SEQUENCE_INTEGRITY_VIOLATION"
        assert [s["batch_id"] for s in error["details"]["remediation"]] == [second, first]

    async def test_void_needs_reason(self, client: AsyncClient, seed, auth_headers, run_round):
        first = (await run_round(1)).created_batch.id
        resp = await client.post(
            f"/api/payment-batches/{first}/void", json={"reason": "  "}, headers=auth_headers
        )
        assert resp.status_code == 422

    async def test_void(self, client: AsyncClient, seed, auth_headers, run_round):
        first = (await run_round(1)).created_batch.id
        resp = await client.post(
            f"/api/payment-batches/{first}/void", json={"reason": "redo"}, headers=auth_headers
        )
        assert resp.status_code == 200
        assert resp.json()["allocations_voided"] == 3

    async def test_unknown_batch(self, client: AsyncClient, seed, auth_headers):
        resp = await client.get("/api/payment-batches/999", headers=auth_headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "RESOURCE_NOT_FOUND"


@pytest.mark.api
@pytest.mark.asyncio
class TestAdvanceEndpoints:

    async def test_issue_preview_apply_reverse(self, client: AsyncClient, seed, auth_headers):
        grower_id = seed.growers["G001"].id
        for amount, when in (("100", "2025-05-01"), ("50", "2025-06-01")):
            resp = await client.post(
                "/api/advances",
                json={"grower_id": grower_id, "amount": amount, "advance_date": when},
                headers=auth_headers,
            )
            assert resp.status_code == 201

        resp = await client.post(
            "/api/advances/preview",
            json={"grower_id": grower_id, "payment_amount": "120"},
            headers=auth_headers,
        )
        assert [line["amount"] for line in resp.json()["lines"]] == ["100.00", "20.00"]

        resp = await client.post(
            "/api/advances/apply",
            json={"grower_id": grower_id, "payment_amount": "120"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        applied = resp.json()
        assert applied["deduction_count"] == 2
        assert applied["fully_applied"] is True

        resp = await client.get(f"/api/advances/grower/{grower_id}", headers=auth_headers)
        outstanding = resp.json()
        assert [a["status"] for a in outstanding] == ["PartiallyDeducted"]
        advance_id = outstanding[0]["id"]

        deduction_id = applied["lines"][1]["deduction_id"]
        resp = await client.post(
            f"/api/advances/deductions/{deduction_id}/reverse",
            json={"reason": "Keyed twice"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "Reversed"

        resp = await client.get(f"/api/advances/{advance_id}/deductions", headers=auth_headers)
        assert [d["status"] for d in resp.json()] == ["Reversed"]

    async def test_issue_unknown_grower(self, client: AsyncClient, seed, auth_headers):
        resp = await client.post(
            "/api/advances",
            json={"grower_id": "missing", "amount": "10", "advance_date": "2025-05-01"},
            headers=auth_headers,
        )
        assert resp.status_code == 404


def _request(path: str) -> Request:
    return Request({
        "type": "http",
        "method": "POST",
        "path": path,
        "query_string": b"",
        "headers": [],
        "scheme": "http",
        "server": ("test", 80),
    })


@pytest.mark.unit
@pytest.mark.asyncio
class TestDatabaseErrorEnvelope:

    async def test_unique_collision_is_retryable_conflict(self):
        exc = IntegrityError(
            "INSERT INTO cheques", {}, Exception("UNIQUE constraint failed: cheques.cheque_number")
        )
        resp = await database_exception_handler(_request("/api/payment-batches/1/post"), exc)

        assert resp.status_code == 409
        error = json.loads(resp.body)["error"]
        assert error["code"] == "WRITE_CONFLICT"
        assert error["details"] == {"retryable": True}

    async def test_lost_connection_is_unavailable(self):
        exc = OperationalError("SELECT 1", {}, Exception("server closed the connection"))
        resp = await operational_exception_handler(_request("/api/payment-runs/actual"), exc)

        assert resp.status_code == 503
        assert json.loads(resp.body)["error"]["code"] == "DATABASE_UNAVAILABLE"
