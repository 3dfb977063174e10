"""
Socius Sync — Client Facade
=============================

What:  Everything a device needs in one object: the three synced
       collections, the physical stats document and the derived figures.
How:   One httpx.AsyncClient and one circuit breaker shared by every
       gateway, one blob backend shared by every LocalStore.
Who:   The presentation layer; integration tests.

Usage:
    async with SociusClient(base_url="https://api.example.com", token=token) as client:
        await client.initialize()
        await client.calories.add({"food": "Apple", "calories": 95})
        client.calorie_summary().today_total
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from socius_sync.services.collections import (
    CALORIES,
    PASSWORDS,
    WORKOUTS,
    day_from_timestamp,
    now_ms,
)
from socius_sync.services.http_gateway import (
    HttpDocumentGateway,
    HttpRemoteGateway,
    create_circuit_breaker,
    create_http_client,
)
from socius_sync.services.local_store import BlobBackend, create_blob_backend
from socius_sync.services.stats_service import PhysicalStatsSync
from socius_sync.services.summaries import (
    CalorieSummary,
    WorkoutSummary,
    summarize_calories,
    summarize_workouts,
)
from socius_sync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

STATS_PATH = "/workouts/stats"


class SociusClient:
    """
    Args:
        base_url:     Remote API base URL (settings.api_base_url when omitted)
        token:        Bearer token (settings.api_token when omitted)
        backend:      Blob backend; built from settings when omitted and then
                      closed by close()
        http_client:  Pre-built AsyncClient; closed by close() only if built here
        transport:    httpx transport for a client built here (tests)
        tombstones:   Override settings.sync_delete_tombstones
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        backend: Optional[BlobBackend] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        tombstones: Optional[bool] = None,
    ):
        self._owns_http = http_client is None
        self.http = http_client or create_http_client(base_url, token, transport=transport)
        self._owns_backend = backend is None
        self.backend = backend or create_blob_backend()
        self.circuit_breaker = create_circuit_breaker()

        def gateway(path: str) -> HttpRemoteGateway:
            return HttpRemoteGateway(self.http, path, self.circuit_breaker)

        self.calories = SyncEngine(CALORIES, gateway(CALORIES.path), self.backend, tombstones)
        self.workouts = SyncEngine(WORKOUTS, gateway(WORKOUTS.path), self.backend, tombstones)
        self.passwords = SyncEngine(PASSWORDS, gateway(PASSWORDS.path), self.backend, tombstones)
        self.stats = PhysicalStatsSync(
            HttpDocumentGateway(self.http, STATS_PATH, self.circuit_breaker),
            self.backend,
        )

    @property
    def engines(self) -> Dict[str, SyncEngine[Any]]:
        return {
            "calories": self.calories,
            "workouts": self.workouts,
            "passwords": self.passwords,
        }

    async def initialize(self) -> None:
        """Initialize every collection and the stats document concurrently."""
        await asyncio.gather(
            *(engine.initialize() for engine in self.engines.values()),
            self.stats.initialize(),
        )

    async def health_check(self) -> bool:
        return await self.calories.gateway.health_check()

    def calorie_summary(self, today: Optional[str] = None) -> CalorieSummary:
        return summarize_calories(self.calories.collection, today or day_from_timestamp(now_ms()))

    def workout_summary(self, today: Optional[str] = None) -> WorkoutSummary:
        return summarize_workouts(
            self.workouts.collection,
            self.stats.stats,
            today or day_from_timestamp(now_ms()),
        )

    async def wait_idle(self) -> None:
        await asyncio.gather(*(engine.wait_idle() for engine in self.engines.values()))

    async def close(self) -> None:
        """Let background pushes finish, then release the HTTP client and backend."""
        await self.wait_idle()
        if self._owns_http:
            await self.http.aclose()
        if self._owns_backend:
            await self.backend.close()
        logger.debug("SociusClient closed")

    async def __aenter__(self) -> "SociusClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
