"""
Socius Sync — End-to-End Tests
================================

What:  SociusClient (device side) against the reference FastAPI server,
       wired in-process through httpx.ASGITransport.

What we test:
    ✅ Records created offline reach the server exactly once after reconnect
    ✅ Two devices converge on the same collection
    ✅ Physical stats round trip and the derived figures
"""

import httpx
import pytest
from httpx import ASGITransport

from socius_sync.client import SociusClient
from socius_sync.services.local_store import FileBlobBackend


def offline_transport() -> httpx.MockTransport:
    def handler(request):
        raise httpx.ConnectError("network unreachable", request=request)

    return httpx.MockTransport(handler)


class TestSociusClient:

    @pytest.mark.asyncio
    async def test_online_add_is_stored_once(self, app, api_client, blob_backend):
        async with SociusClient(transport=ASGITransport(app=app), backend=blob_backend) as client:
            await client.initialize()
            record = await client.calories.add({"food": "Apple", "calories": 95})
            await client.wait_idle()
            await client.calories.refresh()

            assert [(r.id, r.synced) for r in client.calories.collection] == [(record.id, True)]

        listed = (await api_client.get("/calories")).json()
        assert [r["client_id"] for r in listed] == [record.id]

    @pytest.mark.asyncio
    async def test_offline_records_converge_after_reconnect(self, app, api_client, blob_backend):
        async with SociusClient(transport=offline_transport(), backend=blob_backend) as offline:
            await offline.initialize()
            assert offline.calories.loading is False
            entry = await offline.calories.add({"food": "Soup", "calories": 180})
            run = await offline.workouts.add({"name": "Run", "duration": 25, "calories": 250})

        assert offline.calories.get(entry.id).synced is False
        assert offline.workouts.get(run.id).synced is False

        async with SociusClient(transport=ASGITransport(app=app), backend=blob_backend) as online:
            await online.initialize()
            assert [(r.id, r.synced) for r in online.calories.collection] == [(entry.id, True)]
            assert [(r.id, r.synced) for r in online.workouts.collection] == [(run.id, True)]

            # A second pass must not create a duplicate
            await online.initialize()

        calories = (await api_client.get("/calories")).json()
        assert [c["client_id"] for c in calories] == [entry.id]

    @pytest.mark.asyncio
    async def test_two_devices_converge(self, app, tmp_path):
        phone = SociusClient(transport=ASGITransport(app=app), backend=FileBlobBackend(str(tmp_path / "phone")))
        tablet = SociusClient(transport=ASGITransport(app=app), backend=FileBlobBackend(str(tmp_path / "tablet")))
        async with phone, tablet:
            await phone.initialize()
            await tablet.initialize()

            account = await phone.passwords.add({"service": "Mail", "username": "ana", "password": "pw"})
            await phone.wait_idle()
            await tablet.passwords.refresh()
            assert [a.service for a in tablet.passwords.collection] == ["Mail"]

            await tablet.passwords.update(account.id, {"password": "rotated"})
            await tablet.wait_idle()
            await phone.passwords.refresh()
            assert phone.passwords.get(account.id).password == "rotated"

            await phone.passwords.delete(account.id)
            await phone.wait_idle()
            await tablet.passwords.refresh()
            assert tablet.passwords.collection == []

    @pytest.mark.asyncio
    async def test_stats_and_summaries(self, app, blob_backend):
        async with SociusClient(transport=ASGITransport(app=app), backend=blob_backend) as client:
            await client.initialize()
            assert client.stats.stats is None

            await client.stats.save(
                {"weight": 70, "height": 175, "age": 30, "gender": "male", "activity_level": "moderate"}
            )
            await client.workouts.add({"name": "Bike", "duration": 60, "calories": 400}, date="2024-03-02")
            await client.workouts.add({"name": "Walk", "duration": 30, "calories": 100}, date="2024-03-01")
            await client.calories.add({"food": "Oats", "calories": 300}, date="2024-03-02")
            await client.wait_idle()

            workouts = client.workout_summary(today="2024-03-02")
            assert (workouts.bmr, workouts.tdee) == (1649, 2556)
            assert workouts.today_active == 400
            assert workouts.total_today == 2049
            assert workouts.daily_average == 250

            calories = client.calorie_summary(today="2024-03-03")
            assert calories.today_total == 0
            assert calories.daily_average == 150

        async with SociusClient(transport=ASGITransport(app=app), backend=blob_backend) as again:
            await again.stats.initialize()
            assert again.stats.stats.weight == 70
            assert again.stats.pending is False

    @pytest.mark.asyncio
    async def test_health_check(self, app, blob_backend):
        async with SociusClient(transport=ASGITransport(app=app), backend=blob_backend) as client:
            assert await client.health_check() is True

        async with SociusClient(transport=offline_transport(), backend=blob_backend) as client:
            assert await client.health_check() is False
