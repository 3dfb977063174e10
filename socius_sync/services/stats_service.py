"""
Socius Sync — Physical Stats Document
=======================================

What:  Keeps the single PhysicalStats document of the workouts screen on the
       device and on the remote (/workouts/stats).
How:   Same local-first shape as SyncEngine, for one document instead of a
       collection: save locally first, push best-effort, pull on initialize.
       A save whose push failed is flagged pending, pushed before the next
       pull, and never overwritten by the server copy while pending or by
       a pull that was already in flight when the save happened.
Who:   SociusClient.stats

Local layout:
    key `user_physical_stats` holds a one-element JSON array:
    [{"stats": {...PhysicalStats...}, "pending": false}]
"""

import logging
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from socius_sync.exceptions import LocalStoreError, RemoteGatewayError, ValidationError
from socius_sync.schemas.records import PhysicalStats
from socius_sync.services.http_gateway import HttpDocumentGateway
from socius_sync.services.local_store import BlobBackend, LocalStore

logger = logging.getLogger(__name__)

STATS_STORAGE_KEY = "user_physical_stats"


def _parse(data: Any) -> PhysicalStats:
    try:
        return PhysicalStats.model_validate(data)
    except PydanticValidationError as e:
        error = e.errors()[0]
        location = ".".join(str(part) for part in error.get("loc", ())) or "stats"
        raise ValidationError(
            message=f"Invalid physical stats: {location}: {error.get('msg', 'invalid value')}",
            field=location,
        )


class PhysicalStatsSync:
    """Local-first sync of the physical stats document."""

    def __init__(self, gateway: HttpDocumentGateway, backend: BlobBackend):
        self.gateway = gateway
        self.store = LocalStore(backend, STATS_STORAGE_KEY)
        self._stats: Optional[PhysicalStats] = None
        self._pending = False
        # Bumped by every save(); a load or pull that started before a save
        # must not replace the saved document
        self._generation = 0

    @property
    def stats(self) -> Optional[PhysicalStats]:
        return self._stats

    @property
    def pending(self) -> bool:
        return self._pending

    async def initialize(self) -> Optional[PhysicalStats]:
        """Load the local copy, push it if pending, then pull the server copy."""
        await self._load()
        if self._pending:
            await self._push()
        await self._pull()
        return self._stats

    async def save(self, stats: Union[PhysicalStats, Mapping[str, Any]]) -> PhysicalStats:
        """
        Replace the document locally, then push it.

        Returns the validated document. A failed push is logged and the
        document stays pending.

        Raises:
            ValidationError: invalid measurements
        """
        document = stats if isinstance(stats, PhysicalStats) else _parse(stats)
        self._stats = document
        self._pending = True
        self._generation += 1
        await self._persist()
        await self._push()
        return document

    async def _load(self) -> None:
        generation = self._generation
        items = await self.store.load()
        if self._generation != generation:
            logger.info("Physical stats saved during load, snapshot ignored")
            return
        if not items or not isinstance(items[0], dict):
            return
        envelope = items[0]
        try:
            self._stats = _parse(envelope.get("stats"))
        except ValidationError as e:
            logger.warning("Dropping malformed local physical stats: %s", e.message)
            return
        self._pending = bool(envelope.get("pending", False))

    async def _push(self) -> bool:
        if self._stats is None:
            return False
        try:
            await self.gateway.store(self._stats.model_dump(mode="json"))
        except RemoteGatewayError as e:
            logger.warning("Physical stats push failed, kept pending: %s", e.message)
            return False
        except Exception:
            logger.error("Physical stats push failed unexpectedly", exc_info=True)
            return False
        self._pending = False
        await self._persist()
        return True

    async def _pull(self) -> bool:
        generation = self._generation
        try:
            document = await self.gateway.fetch()
        except RemoteGatewayError as e:
            logger.warning("Physical stats pull failed, keeping local copy: %s", e.message)
            return False
        except Exception:
            logger.error("Physical stats pull failed unexpectedly", exc_info=True)
            return False

        if document is None:
            return False
        if self._pending:
            logger.info("Local physical stats still pending, server copy ignored")
            return False
        if self._generation != generation:
            logger.info("Physical stats saved during pull, server copy ignored")
            return False
        try:
            self._stats = _parse(document)
        except ValidationError as e:
            logger.warning("Ignoring malformed remote physical stats: %s", e.message)
            return False
        await self._persist()
        return True

    async def _persist(self) -> None:
        envelope: Dict[str, Any] = {
            "stats": self._stats.model_dump(mode="json") if self._stats else None,
            "pending": self._pending,
        }
        try:
            await self.store.save([envelope])
        except LocalStoreError as e:
            logger.error("Physical stats not persisted: %s", e.message)
