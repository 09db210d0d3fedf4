"""Tests for the /data ingestion endpoints."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from receiver.api.app import create_app
from receiver.api.dependencies import get_ingestion_service
from receiver.config.settings import get_settings

API_KEY = "key_live_abc123"
RATE_LIMIT = 10

AUTH = {"X-API-Key": API_KEY}
READING = {
    "id": "reading-1",
    "sensorId": "s-1",
    "temperature": 21.5,
    "timestamp": "2025-03-01T10:00:00Z",
}


class TestSubmitData:
    def test_success(self, client: TestClient, tmp_path) -> None:
        response = client.post("/data", json=READING, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Data received successfully"
        assert body["data"] == {
            "id": "reading-1",
            "sensorId": "s-1",
            "temperature": 21.5,
            "timestamp": "2025-03-01T10:00:00.000Z",
            "sourceId": "src_1",
        }
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["x-ratelimit-limit"] == str(RATE_LIMIT)
        assert response.headers["x-ratelimit-remaining"] == str(RATE_LIMIT - 1)
        assert "x-request-id" in response.headers
        assert (tmp_path / "blobs" / "src_1" / "2025-03-01T10-00-00-000Z_reading-1.json").exists()

    def test_generated_id(self, client: TestClient) -> None:
        response = client.post("/data", json={"value": 1}, headers=AUTH)

        data = response.json()["data"]
        assert data["id"]
        assert data["timestamp"].endswith("Z")

    def test_numeric_id_round_trips(self, client: TestClient) -> None:
        response = client.post("/data", json={"id": 123, "value": 1}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["data"]["id"] == 123

    def test_path_like_id_archived_under_own_source(self, client: TestClient, tmp_path) -> None:
        response = client.post("/data", json={"id": "../../../victim_src/planted", "value": 1}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["data"]["id"] == "../../../victim_src/planted"
        written = [p.relative_to(tmp_path / "blobs") for p in (tmp_path / "blobs").rglob("*.json")]
        assert len(written) == 1
        assert written[0].parts[0] == "src_1"
        assert len(written[0].parts) == 2

    def test_bearer_token(self, client: TestClient) -> None:
        response = client.post("/data", json={"value": 1}, headers={"Authorization": f"Bearer {API_KEY}"})
        assert response.status_code == 200

    def test_request_id_echoed(self, client: TestClient) -> None:
        response = client.post("/data", json={"value": 1}, headers={**AUTH, "X-Request-ID": "req-42"})
        assert response.headers["x-request-id"] == "req-42"


class TestAuthFailures:
    def test_missing_key_is_401(self, client: TestClient) -> None:
        response = client.post("/data", json=READING)

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "AUTH_FAILED"
        assert body["message"] == "API key is required"

    def test_unknown_key_is_403(self, client: TestClient) -> None:
        response = client.post("/data", json=READING, headers={"X-API-Key": "wrong"})

        assert response.status_code == 403
        assert response.json() == {
            "success": False,
            "message": "Invalid API key or inactive source",
            "code": "AUTH_FAILED",
        }

    def test_lookup_failure_looks_like_unknown_key(self, client: TestClient, api_database: AsyncMock) -> None:
        api_database.fetch.side_effect = ConnectionError("db down")

        response = client.post("/data", json=READING, headers=AUTH)

        assert response.status_code == 403
        assert response.json()["message"] == "Invalid API key or inactive source"


class TestValidationFailures:
    def test_invalid_json(self, client: TestClient) -> None:
        response = client.post(
            "/data",
            content=b"{not json",
            headers={**AUTH, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert response.json()["message"] == "Invalid JSON format"
        assert "x-ratelimit-limit" in response.headers

    @pytest.mark.parametrize("token", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_number_is_400(self, client: TestClient, api_database: AsyncMock, token: str) -> None:
        response = client.post(
            "/data",
            content=f'{{"sensorId": "s1", "temperature": {token}}}'.encode(),
            headers={**AUTH, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        inserts = [c for c in api_database.execute.call_args_list if "INSERT INTO data_entries" in c[0][0]]
        assert inserts == []

    def test_array_body_rejected(self, client: TestClient) -> None:
        response = client.post("/data", json=[READING], headers=AUTH)
        assert response.status_code == 400

    def test_schema_errors(self, client: TestClient, api_database: AsyncMock) -> None:
        api_database.fetchrow.return_value = {
            "required_fields": ["sensorId", "temperature"],
            "field_types": {"temperature": "number"},
            "legacy_schema": None,
        }

        response = client.post("/data", json={"sensorId": "s-1", "temperature": "hot"}, headers=AUTH)

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Data validation failed"
        assert body["errors"] == ["Field temperature should be type number, got string"]


class TestDuplicateSubmission:
    def test_409_with_previous_submission(self, client: TestClient, api_database: AsyncMock) -> None:
        api_database.fetchval.return_value = datetime(2025, 3, 1, 9, 15, tzinfo=timezone.utc)

        response = client.post("/data", json={"email": "a@example.com"}, headers=AUTH)

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "DUPLICATE_EMAIL"
        assert body["details"] == {
            "email": "a@example.com",
            "previousSubmission": "2025-03-01T09:15:00.000Z",
        }


class TestPersistenceFailures:
    def test_relational_failure_is_500(self, client: TestClient, api_database: AsyncMock) -> None:
        async def execute(query, *args):
            if "INSERT INTO data_entries" in query:
                raise ConnectionError("db down")
            return "UPDATE 1"

        api_database.execute.side_effect = execute

        response = client.post("/data", json=READING, headers=AUTH)

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "message": "An internal server error occurred",
            "code": "SERVER_ERROR",
            "details": "Failed to store data in database",
        }

    def test_blob_failure_still_succeeds(self, client: TestClient, api_database: AsyncMock) -> None:
        # Same id and timestamp map to the same object path, which is never overwritten
        first = client.post("/data", json=READING, headers=AUTH)
        second = client.post("/data", json=READING, headers=AUTH)

        assert first.status_code == 200
        assert second.status_code == 200
        inserts = [c for c in api_database.execute.call_args_list if "INSERT INTO data_entries" in c[0][0]]
        assert len(inserts) == 2


class TestRateLimiting:
    def test_429_after_limit(self, client: TestClient) -> None:
        for _ in range(RATE_LIMIT):
            assert client.post("/data", json={"value": 1}, headers=AUTH).status_code == 200

        response = client.post("/data", json={"value": 1}, headers=AUTH)

        assert response.status_code == 429
        body = response.json()
        assert body["code"] == "RATE_LIMIT_EXCEEDED"
        assert body["message"].startswith("Rate limit exceeded. Try again in ")
        assert 0 < int(response.headers["retry-after"]) <= 60
        assert response.headers["x-ratelimit-remaining"] == "0"

    def test_rejected_auth_counts_against_quota(self, client: TestClient) -> None:
        for _ in range(RATE_LIMIT):
            client.post("/data", json={"value": 1})

        assert client.post("/data", json={"value": 1}, headers=AUTH).status_code == 429

    def test_spoofed_forwarded_header_still_limited(self, client: TestClient) -> None:
        statuses = [
            client.post("/data", json={"value": 1}, headers={**AUTH, "X-Forwarded-For": f"10.0.0.{i}"}).status_code
            for i in range(RATE_LIMIT + 5)
        ]

        assert statuses[:RATE_LIMIT] == [200] * RATE_LIMIT
        assert statuses[RATE_LIMIT:] == [429] * 5

    def test_keyed_by_forwarded_address_behind_proxy(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setenv("TRUST_FORWARDED_FOR", "true")
        get_settings.cache_clear()

        for _ in range(RATE_LIMIT):
            client.post("/data", json={"value": 1}, headers={**AUTH, "X-Forwarded-For": "1.1.1.1"})

        response = client.post("/data", json={"value": 1}, headers={**AUTH, "X-Forwarded-For": "2.2.2.2, 10.0.0.1"})

        assert response.status_code == 200
        assert response.headers["x-ratelimit-remaining"] == str(RATE_LIMIT - 1)


class TestMethods:
    @pytest.mark.parametrize("method", ["GET", "PUT", "PATCH", "DELETE"])
    def test_non_post_is_405(self, client: TestClient, method: str) -> None:
        response = client.request(method, "/data")

        assert response.status_code == 405
        assert response.json() == {"error": "Method not allowed. Only POST requests are accepted."}
        assert response.headers["access-control-allow-origin"] == "*"

    @pytest.mark.parametrize("path", ["/data", "/data/batch"])
    def test_preflight(self, client: TestClient, path: str) -> None:
        response = client.options(path)

        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == "*"
        assert "x-api-key" in response.headers["access-control-allow-headers"]
        assert "POST" in response.headers["access-control-allow-methods"]


class TestBatch:
    def test_mixed_batch(self, client: TestClient, api_database: AsyncMock) -> None:
        api_database.fetchrow.return_value = {
            "required_fields": ["value"],
            "field_types": {"value": "number"},
            "legacy_schema": None,
        }
        body = {"data": [{"id": "a", "value": 1}, {"value": "x"}, {"id": "c", "value": 3}]}

        response = client.post("/data/batch", json=body, headers=AUTH)

        assert response.status_code == 200
        payload = response.json()
        assert payload["message"] == "Batch data received successfully"
        data = payload["data"]
        assert data["receivedCount"] == 2
        assert data["failedCount"] == 1
        assert [e["id"] for e in data["entries"]] == ["a", "c"]
        assert data["errors"] == [
            {
                "index": 1,
                "message": "Data validation failed",
                "code": "VALIDATION_ERROR",
                "errors": ["Field value should be type number, got string"],
            }
        ]

    def test_envelope_required(self, client: TestClient) -> None:
        response = client.post("/data/batch", json={"value": 1}, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_too_many_items(self, client: TestClient) -> None:
        body = {"data": [{"value": i} for i in range(6)]}

        response = client.post("/data/batch", json=body, headers=AUTH)

        assert response.status_code == 400

    def test_requires_auth(self, client: TestClient) -> None:
        response = client.post("/data/batch", json={"data": [{"value": 1}]})
        assert response.status_code == 401


def test_unexpected_error_is_500(api_settings) -> None:
    service = MagicMock()
    service.ingest = AsyncMock(side_effect=RuntimeError("boom"))
    app = create_app()
    app.dependency_overrides[get_ingestion_service] = lambda: service

    with TestClient(app) as client:
        response = client.post("/data", json=READING, headers=AUTH)

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "message": "An internal server error occurred",
        "code": "SERVER_ERROR",
    }
    assert response.headers["access-control-allow-origin"] == "*"
