"""
Integration tests for the JSON task API.
"""

import pytest

from portfolion.config import Config
from portfolion.testing import TestClient
from taskapp.main import create_app


def new_task(client, **fields):
    payload = {"title": "Write tests", "status": "pending"}
    payload.update(fields)
    return client.post("/api/tasks", json=payload)


class TestApiCrud:
    """Create, read, update, delete through /api/tasks."""

    def test_create_returns_201_with_location(self, client):
        response = new_task(client, priority="high", due_date="2026-12-31")

        assert response.status == 201
        assert response.headers["Location"] == "/api/tasks/1"
        data = response.json()["data"]
        assert data["id"] == 1
        assert data["title"] == "Write tests"
        assert data["priority"] == "high"
        assert data["due_date"] == "2026-12-31"
        assert data["description"] is None
        assert data["created_at"]

    def test_list_and_count(self, client):
        new_task(client, title="A")
        new_task(client, title="B", status="completed")

        body = client.get("/api/tasks").json()
        assert body["count"] == 2
        assert [task["title"] for task in body["data"]] == ["B", "A"]

        filtered = client.get("/api/tasks?status=completed").json()
        assert [task["title"] for task in filtered["data"]] == ["B"]

    def test_show(self, client):
        new_task(client)
        assert client.get("/api/tasks/1").json()["data"]["title"] == "Write tests"

    def test_missing_task_is_json_404(self, client):
        response = client.get("/api/tasks/999")

        assert response.status == 404
        assert response.headers["Content-Type"] == "application/json"
        assert response.json()["message"] == "Task 999 not found."

    def test_put_requires_full_payload(self, client):
        new_task(client)

        response = client.put("/api/tasks/1", json={"status": "completed"})

        assert response.status == 422
        assert "title" in response.json()["errors"]

    def test_put_replaces(self, client):
        new_task(client)

        response = client.put("/api/tasks/1", json={"title": "Rewritten", "status": "in_progress"})

        assert response.status == 200
        assert response.json()["data"]["title"] == "Rewritten"
        assert response.json()["data"]["status"] == "in_progress"

    def test_patch_is_partial(self, client):
        new_task(client, description="keep me")

        response = client.patch("/api/tasks/1", json={"status": "completed"})

        data = response.json()["data"]
        assert response.status == 200
        assert data["status"] == "completed"
        assert data["title"] == "Write tests"
        assert data["description"] == "keep me"

    def test_patch_validates_sent_fields(self, client):
        new_task(client)

        response = client.patch("/api/tasks/1", json={"status": "archived"})

        assert response.status == 422
        assert response.json()["errors"] == {"status": ["The selected status is invalid."]}

    def test_delete(self, client):
        new_task(client)

        assert client.delete("/api/tasks/1").status == 204
        assert client.get("/api/tasks/1").status == 404
        assert client.delete("/api/tasks/1").status == 404

    def test_no_csrf_needed(self, client):
        assert client.post("/api/tasks", json={"title": "x", "status": "pending"}).status == 201


class TestApiErrors:
    """Validation and request errors come back as JSON."""

    def test_validation_errors(self, client):
        response = client.post("/api/tasks", json={"title": "", "status": "nope", "due_date": "tomorrow"})

        assert response.status == 422
        body = response.json()
        assert body["status"] == "error"
        assert body["message"] == "The given data was invalid."
        assert body["errors"] == {
            "title": ["The title field is required."],
            "status": ["The selected status is invalid."],
            "due_date": ["The due date is not a valid date."],
        }

    def test_body_must_be_object(self, client):
        response = client.post("/api/tasks", json=["not", "an", "object"])

        assert response.status == 422
        assert "body" in response.json()["errors"]

    def test_malformed_json_is_400(self, client):
        response = client.post(
            "/api/tasks",
            body=b"{broken",
            headers={"Content-Type": "application/json"},
        )

        assert response.status == 400
        assert response.json()["code"] == 400

    def test_errors_are_json_without_accept_header(self, client):
        response = client.get("/api/tasks/999", headers={"Accept": "*/*"})
        assert response.headers["Content-Type"] == "application/json"

    def test_wrong_method(self, client):
        response = client.request("OPTIONS", "/api/tasks", headers={"Accept": "application/json"})

        assert response.status == 405
        assert response.headers["Allow"] == "GET, HEAD, POST"


class TestApiThrottling:
    """The api group is rate limited per client and endpoint."""

    def test_rate_limit_headers(self, client):
        response = client.get("/api/tasks")

        assert response.headers["X-RateLimit-Limit"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "59"

    @pytest.fixture
    def strict_client(self, config: Config) -> TestClient:
        config.set("api.rate_limiting.limiters.default.max_attempts", 2)
        return TestClient(create_app(config))

    def test_limit_exceeded(self, strict_client):
        assert strict_client.get("/api/tasks").headers["X-RateLimit-Remaining"] == "1"

        last = strict_client.get("/api/tasks")
        assert last.headers["X-RateLimit-Remaining"] == "0"
        assert "Retry-After" in last.headers

        blocked = strict_client.get("/api/tasks")
        assert blocked.status == 429
        assert blocked.json()["error"] == "Too Many Attempts."
        assert int(blocked.headers["Retry-After"]) > 0

    def test_other_clients_unaffected(self, strict_client):
        for _ in range(3):
            strict_client.get("/api/tasks")

        other = TestClient(strict_client.app, client_address=("10.9.9.9", 1234))
        assert other.get("/api/tasks").status == 200

    def test_switch_off_at_runtime(self, strict_client):
        for _ in range(3):
            strict_client.get("/api/tasks")

        strict_client.app.config.set("api.rate_limiting.enabled", False)
        assert strict_client.get("/api/tasks").status == 200

    def test_web_routes_not_throttled(self, strict_client):
        for _ in range(5):
            assert strict_client.get("/tasks").status == 200


class TestCorsOnApi:
    def test_preflight(self, client):
        response = client.options("/api/tasks", headers={
            "Origin": "https://spa.example.com",
            "Access-Control-Request-Method": "POST",
        })

        assert response.status == 204
        assert response.headers["Access-Control-Allow-Origin"] == "https://spa.example.com"
        assert "X-CSRF-TOKEN" in response.headers["Access-Control-Allow-Headers"]

    def test_simple_request_exposes_rate_limit_headers(self, client):
        response = client.get("/api/tasks", headers={"Origin": "https://spa.example.com"})

        assert response.headers["Access-Control-Allow-Origin"] == "https://spa.example.com"
        assert "X-RateLimit-Limit" in response.headers["Access-Control-Expose-Headers"]


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        body = response.json()

        assert response.status == 200
        assert body["status"] == "healthy"
        assert body["checks"]["cache"]["status"] == "healthy"
        assert "no-store" in response.headers["Cache-Control"]

    def test_liveness_and_readiness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}
        assert client.get("/health/ready").json() == {"status": "ready"}


class TestOutOfRangeIds:
    """Ids sqlite cannot store are simply not found."""

    HUGE = "99999999999999999999999"

    def test_show(self, client):
        response = client.get(f"/api/tasks/{self.HUGE}")

        assert response.status == 404
        assert response.json()["message"] == f"Task {self.HUGE} not found."

    def test_update_and_delete(self, client):
        assert client.put(f"/api/tasks/{self.HUGE}", json={"title": "x", "status": "pending"}).status == 404
        assert client.patch(f"/api/tasks/{self.HUGE}", json={"status": "completed"}).status == 404
        assert client.delete(f"/api/tasks/{self.HUGE}").status == 404

    def test_largest_storable_id_is_looked_up(self, client):
        assert client.get(f"/api/tasks/{2 ** 63 - 1}").status == 404
