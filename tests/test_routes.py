"""
Socius Sync — Reference Server Route Tests
============================================

What:  The collection REST API through the full FastAPI stack.
How:   httpx.AsyncClient over ASGITransport against a file-backed SQLite
       database created per test (see conftest.py).

What we test:
    ✅ POST is idempotent on client_id
    ✅ GET returns newest first
    ✅ PUT patches, 404 for unknown ids, 400 for unknown fields
    ✅ DELETE is 204 whether or not the record existed
    ✅ Stats document and health endpoint
    ✅ Access log lines, one per non-health request
"""

import logging

import pytest

from socius_sync.exceptions import CircuitBreakerOpenError, DatabaseError, ValidationError
from socius_sync.middleware.logging import level_for_status


def calorie(client_id: str, day: str = "2024-01-01", timestamp: int = 1, **fields):
    body = {"client_id": client_id, "food": "Apple", "calories": 95, "date": day, "timestamp": timestamp}
    body.update(fields)
    return body


class TestCollectionRoutes:

    @pytest.mark.asyncio
    async def test_post_then_list(self, api_client):
        response = await api_client.post("/calories", json=calorie("1-a"))
        assert response.status_code == 200
        assert response.json() == calorie("1-a")

        listed = await api_client.get("/calories")
        assert listed.status_code == 200
        assert listed.json() == [calorie("1-a")]

    @pytest.mark.asyncio
    async def test_repeated_post_keeps_one_record(self, api_client):
        await api_client.post("/calories", json=calorie("1-a"))
        response = await api_client.post("/calories", json=calorie("1-a", calories=120))

        assert response.status_code == 200
        listed = (await api_client.get("/calories")).json()
        assert len(listed) == 1
        assert listed[0]["calories"] == 120

    @pytest.mark.asyncio
    async def test_collections_are_separate(self, api_client):
        await api_client.post("/calories", json=calorie("shared"))
        await api_client.post(
            "/workouts/activities",
            json={"client_id": "shared", "name": "Swim", "duration": 20, "calories": 200,
                  "date": "2024-01-01", "timestamp": 1},
        )

        assert len((await api_client.get("/calories")).json()) == 1
        workouts = (await api_client.get("/workouts/activities")).json()
        assert [w["name"] for w in workouts] == ["Swim"]

    @pytest.mark.asyncio
    async def test_list_is_newest_first(self, api_client):
        await api_client.post("/calories", json=calorie("a", "2024-01-02", 10))
        await api_client.post("/calories", json=calorie("b", "2024-01-03", 5))
        await api_client.post("/calories", json=calorie("c", "2024-01-03", 20))
        await api_client.post("/calories", json=calorie("d", "2024-01-01", 99))

        listed = (await api_client.get("/calories")).json()
        assert [r["client_id"] for r in listed] == ["c", "b", "a", "d"]

    @pytest.mark.asyncio
    async def test_post_without_client_id_is_rejected(self, api_client):
        body = calorie("x")
        del body["client_id"]
        response = await api_client.post("/calories", json=body)

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_post_with_invalid_field_is_rejected(self, api_client):
        response = await api_client.post("/calories", json=calorie("x", calories=-1))
        assert response.status_code == 400
        assert response.json()["details"]["field"] == "calories"

    @pytest.mark.asyncio
    async def test_put_patches_fields(self, api_client):
        await api_client.post("/calories", json=calorie("1-a"))
        response = await api_client.put("/calories/1-a", json={"calories": 60})

        assert response.status_code == 200
        assert response.json()["calories"] == 60
        assert response.json()["food"] == "Apple"

    @pytest.mark.asyncio
    async def test_put_unknown_id_is_404(self, api_client):
        response = await api_client.put("/calories/missing", json={"calories": 60})
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_put_unknown_field_is_400(self, api_client):
        await api_client.post("/calories", json=calorie("1-a"))
        response = await api_client.put("/calories/1-a", json={"colour": "red"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_delete_is_204_even_when_absent(self, api_client):
        await api_client.post("/calories", json=calorie("1-a"))

        first = await api_client.delete("/calories/1-a")
        second = await api_client.delete("/calories/1-a")
        assert (first.status_code, second.status_code) == (204, 204)
        assert (await api_client.get("/calories")).json() == []

    @pytest.mark.asyncio
    async def test_passwords_use_updated_at(self, api_client):
        body = {"client_id": "p1", "service": "Mail", "username": "ana", "password": "pw",
                "group": "", "date": "2024-01-01", "updated_at": 1000}
        await api_client.post("/passwords", json=body)
        response = await api_client.put("/passwords/p1", json={"password": "new", "updated_at": 2000})

        stored = response.json()
        assert stored["updated_at"] == 2000
        assert "timestamp" not in stored
        assert stored["password"] == "new"


class TestStatsRoutes:

    @pytest.mark.asyncio
    async def test_missing_stats_is_404(self, api_client):
        response = await api_client.get("/workouts/stats")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_post_then_get(self, api_client):
        stats = {"weight": 70.0, "height": 175.0, "age": 30, "gender": "male", "activity_level": "light"}
        assert (await api_client.post("/workouts/stats", json=stats)).status_code == 200

        stats["weight"] = 69.5
        await api_client.post("/workouts/stats", json=stats)
        response = await api_client.get("/workouts/stats")
        assert response.json() == stats

    @pytest.mark.asyncio
    async def test_invalid_stats_rejected(self, api_client):
        response = await api_client.post(
            "/workouts/stats",
            json={"weight": 0, "height": 175, "age": 30, "gender": "male"},
        )
        assert response.status_code == 422


class TestHealthAndMiddleware:

    @pytest.mark.asyncio
    async def test_health(self, api_client):
        response = await api_client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, api_client):
        response = await api_client.get("/calories", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, api_client):
        response = await api_client.get("/calories")
        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.asyncio
    async def test_access_log_line(self, api_client, caplog):
        caplog.set_level(logging.INFO, logger="socius_sync.access")
        await api_client.get("/calories", headers={"X-Request-ID": "log12345"})
        await api_client.put("/calories/missing", json={"calories": 1})
        await api_client.get("/health")

        lines = [(r.levelno, r.getMessage()) for r in caplog.records if r.name == "socius_sync.access"]
        assert len(lines) == 2
        assert lines[0][0] == logging.INFO
        assert lines[0][1].startswith("[log12345] GET /calories -> 200")
        assert lines[1][0] == logging.WARNING
        assert "PUT /calories/missing -> 404" in lines[1][1]

    def test_status_levels(self):
        assert level_for_status(204) == logging.INFO
        assert level_for_status(404) == logging.WARNING
        assert level_for_status(500) == logging.ERROR

    @pytest.mark.asyncio
    async def test_server_handlers_cover_server_errors_only(self, app):
        assert ValidationError in app.exception_handlers
        assert DatabaseError in app.exception_handlers
        assert CircuitBreakerOpenError not in app.exception_handlers
