"""
Socius Sync — Physical Stats Sync Tests
=========================================

What we test:
    ✅ save() persists locally and pushes; a failed push stays pending
    ✅ Pending documents are pushed on the next initialize
    ✅ Server copy is pulled only when nothing local is pending
    ✅ A save made while a pull is in flight is not overwritten
    ✅ Invalid measurements raise ValidationError
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from socius_sync.exceptions import RemoteUnavailableError, ValidationError
from socius_sync.schemas.records import PhysicalStats
from socius_sync.services.stats_service import STATS_STORAGE_KEY, PhysicalStatsSync


STATS = {"weight": 70, "height": 175, "age": 30, "gender": "male", "activity_level": "active"}


@pytest.fixture
def document_gateway():
    gateway = MagicMock()
    gateway.fetch = AsyncMock(return_value=None)
    gateway.store = AsyncMock(side_effect=lambda body: body)
    return gateway


class TestPhysicalStatsSync:

    @pytest.mark.asyncio
    async def test_initialize_without_any_document(self, document_gateway, blob_backend):
        sync = PhysicalStatsSync(document_gateway, blob_backend)
        assert await sync.initialize() is None
        assert sync.pending is False

    @pytest.mark.asyncio
    async def test_save_pushes_and_persists(self, document_gateway, blob_backend):
        sync = PhysicalStatsSync(document_gateway, blob_backend)
        saved = await sync.save(STATS)

        assert isinstance(saved, PhysicalStats)
        assert sync.pending is False
        document_gateway.store.assert_awaited_once_with(saved.model_dump(mode="json"))

        stored = await sync.store.load()
        assert stored == [{"stats": saved.model_dump(mode="json"), "pending": False}]

    @pytest.mark.asyncio
    async def test_failed_push_stays_pending(self, document_gateway, blob_backend):
        document_gateway.store.side_effect = RemoteUnavailableError()
        sync = PhysicalStatsSync(document_gateway, blob_backend)

        await sync.save(STATS)
        assert sync.pending is True
        assert sync.stats.weight == 70

    @pytest.mark.asyncio
    async def test_pending_document_pushed_before_pull(self, document_gateway, blob_backend):
        document_gateway.store.side_effect = RemoteUnavailableError()
        await PhysicalStatsSync(document_gateway, blob_backend).save(STATS)

        document_gateway.store.side_effect = lambda body: body
        document_gateway.fetch.return_value = {**STATS, "weight": 68}
        sync = PhysicalStatsSync(document_gateway, blob_backend)
        await sync.initialize()

        assert sync.pending is False
        assert document_gateway.store.await_count == 2
        assert sync.stats.weight == 68

    @pytest.mark.asyncio
    async def test_pending_document_not_overwritten(self, document_gateway, blob_backend):
        document_gateway.store.side_effect = RemoteUnavailableError()
        document_gateway.fetch.return_value = {**STATS, "weight": 90}
        sync = PhysicalStatsSync(document_gateway, blob_backend)
        await sync.save(STATS)

        await sync.initialize()
        assert sync.pending is True
        assert sync.stats.weight == 70

    @pytest.mark.asyncio
    async def test_save_during_pull_is_not_overwritten(self, document_gateway, blob_backend):
        fetch_started = asyncio.Event()
        release = asyncio.Event()

        async def slow_fetch():
            fetch_started.set()
            await release.wait()
            return {**STATS, "weight": 70}

        document_gateway.fetch = slow_fetch
        sync = PhysicalStatsSync(document_gateway, blob_backend)
        init = asyncio.ensure_future(sync.initialize())
        await fetch_started.wait()

        await sync.save({**STATS, "weight": 80})
        release.set()
        await init

        assert sync.stats.weight == 80
        assert sync.pending is False
        assert (await sync.store.load())[0]["stats"]["weight"] == 80

    @pytest.mark.asyncio
    async def test_server_document_is_pulled(self, document_gateway, blob_backend):
        document_gateway.fetch.return_value = STATS
        sync = PhysicalStatsSync(document_gateway, blob_backend)
        stats = await sync.initialize()

        assert stats.activity_level == "active"
        assert (await sync.store.load())[0]["pending"] is False

    @pytest.mark.asyncio
    async def test_offline_keeps_local_copy(self, document_gateway, blob_backend):
        await PhysicalStatsSync(document_gateway, blob_backend).save(STATS)

        document_gateway.fetch.side_effect = RemoteUnavailableError()
        sync = PhysicalStatsSync(document_gateway, blob_backend)
        assert (await sync.initialize()).age == 30

    @pytest.mark.asyncio
    async def test_malformed_local_copy_ignored(self, document_gateway, blob_backend):
        await blob_backend.write(STATS_STORAGE_KEY, '[{"stats": {"weight": -1}, "pending": true}]')
        sync = PhysicalStatsSync(document_gateway, blob_backend)

        assert await sync.initialize() is None
        document_gateway.store.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_stats_rejected(self, document_gateway, blob_backend):
        sync = PhysicalStatsSync(document_gateway, blob_backend)
        with pytest.raises(ValidationError) as exc_info:
            await sync.save({**STATS, "gender": "other"})

        assert exc_info.value.field == "gender"
        assert sync.stats is None
        document_gateway.store.assert_not_awaited()
