"""
Socius Sync — Sync Engine
===========================

What:  Local-first synchronization of one collection: optimistic local
       writes, background push to the remote store, and a merge pass that
       combines the authoritative remote list with unacknowledged local
       records.
How:   One generic engine parameterized by a CollectionAdapter. It owns the
       in-memory collection, persists the full snapshot through a LocalStore
       after every change, and talks to the remote only through a
       RemoteGateway.
Who:   SociusClient builds one engine per collection; the presentation layer
       reads `collection` / `loading` and calls add/update/delete/refresh.
When:  initialize() on mount or focus; mutations on user action.

Initialize Pass:
    ┌────────────┐    ┌─────────────┐    ┌──────────────┐    ┌─────────┐
    │ Load local │───▶│ Push pending│───▶│ Pull + merge │───▶│  READY  │
    │ (publish)  │    │ (create)    │    │ (server wins)│    │         │
    └────────────┘    └─────────────┘    └──────────────┘    └─────────┘

    Offline at any step: the step is skipped, the pass still ends READY.

Merge Rule:
    final = server records ∪ (local records whose id the server lacks and
    that were not already synced when the pull started), sorted by
    (date desc, timestamp desc). A server record always replaces a
    local record with the same id; no field-level merge.

Background Pushes:
    add/update/delete change memory first, persist, then spawn a push task.
    A push can only move a record from unsynced to synced, and only if the
    record still exists and has not been edited since the push started.
    Remote calls for the same id run one at a time in call order.

Error Policy:
    Remote failures are logged and absorbed: the record stays synced=False
    until a later initialize() pushes it. Local write failures are logged and
    the engine keeps serving its in-memory collection. Only caller mistakes
    (unknown id on update, invalid payload) raise.
"""

import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    Set,
)

from socius_sync.config import settings
from socius_sync.exceptions import (
    LocalStoreError,
    RecordNotFoundError,
    RemoteGatewayError,
    RemoteNotFoundError,
    ValidationError,
)
from socius_sync.services.collections import (
    CollectionAdapter,
    RecordT,
    day_from_timestamp,
    now_ms,
    sort_records,
)
from socius_sync.services.confirmations import ConfirmationLookup
from socius_sync.services.gateway_base import RemoteGateway
from socius_sync.services.local_store import BlobBackend, LocalStore

logger = logging.getLogger(__name__)

Listener = Callable[[List[Any]], None]


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


class SyncEngine(Generic[RecordT]):
    """
    Owns one collection on the device and keeps it converging with the remote.

    Args:
        adapter:     Record type, REST path and storage key of the collection
        gateway:     Remote store of the collection
        backend:     Blob backend shared by every LocalStore of the engine
        tombstones:  Remember deleted ids until the remote confirms the
                     delete (defaults to settings.sync_delete_tombstones)
        clock:       Epoch-millisecond clock, injectable for tests
    """

    def __init__(
        self,
        adapter: CollectionAdapter[RecordT],
        gateway: RemoteGateway,
        backend: BlobBackend,
        tombstones: Optional[bool] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.adapter = adapter
        self.gateway = gateway
        self.store = LocalStore(backend, adapter.storage_key)
        self.tombstones_enabled = (
            settings.sync_delete_tombstones if tombstones is None else tombstones
        )
        self._tombstone_store = LocalStore(backend, f"{adapter.storage_key}_tombstones")
        self.confirmations = ConfirmationLookup(
            LocalStore(backend, f"{adapter.storage_key}_confirmed")
        )
        self._clock = clock or now_ms

        self._records: List[RecordT] = []
        self._revisions: Dict[str, int] = {}
        self._tombstones: Dict[str, None] = {}
        self._issued_ids: Set[str] = set()
        self._remote_locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []

        self._state = SyncState.UNINITIALIZED
        self._loaded = False
        self._load_task: Optional[asyncio.Future] = None
        self._pass: Optional[asyncio.Task] = None

    # ══════════════════════════════════════════════════════════════════════
    # Observable state
    # ══════════════════════════════════════════════════════════════════════

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._state != SyncState.READY

    @property
    def collection(self) -> List[RecordT]:
        """Snapshot of the collection, newest first."""
        return list(self._records)

    @property
    def pending(self) -> List[RecordT]:
        return [r for r in self._records if not r.synced]

    @property
    def tombstones(self) -> List[str]:
        return list(self._tombstones)

    def get(self, record_id: str) -> Optional[RecordT]:
        index = self._index_of(record_id)
        return None if index is None else self._records[index]

    def is_confirmed(self, source_ref: str) -> bool:
        """True once add(..., source_ref=source_ref) has run for this reference."""
        return source_ref in self.confirmations

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Call `listener(collection)` after every published change.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = self.collection
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.error("%s listener failed", self.adapter.name, exc_info=True)

    # ══════════════════════════════════════════════════════════════════════
    # Initialize / refresh
    # ══════════════════════════════════════════════════════════════════════

    async def initialize(self) -> List[RecordT]:
        """
        Run the load → push pending → pull and merge pass.

        A call made while a pass is running waits for that pass instead of
        starting another. Always ends in READY, online or not.
        """
        if self._pass is None or self._pass.done():
            self._pass = asyncio.create_task(self._run_pass())
        await asyncio.shield(self._pass)
        return self.collection

    async def refresh(self) -> List[RecordT]:
        return await self.initialize()

    async def _run_pass(self) -> None:
        self._state = SyncState.LOADING
        started = time.perf_counter()
        try:
            await self._ensure_loaded()
            if self.tombstones_enabled and self._tombstones:
                await self._flush_tombstones()
            await self.sync_pending()
            await self.fetch_remote()
        finally:
            self._state = SyncState.READY
            self._publish()
            logger.info(
                "%s ready: %d records (%d pending) in %.0fms",
                self.adapter.name,
                len(self._records),
                len(self.pending),
                (time.perf_counter() - started) * 1000,
            )

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if self._load_task is None or self._load_task.cancelled():
            self._load_task = asyncio.ensure_future(self._load())
        await asyncio.shield(self._load_task)

    async def _load(self) -> None:
        """
        Read the persisted snapshot, tombstones and confirmations.

        Runs once per engine: afterwards memory is the source of truth and
        every change is written through. Mutations issued before the first
        initialize() wait for this load so they never overwrite the stored
        snapshot with a partial collection.
        """
        records: List[RecordT] = []
        seen: Set[str] = set()
        for item in await self.store.load():
            try:
                record = self.adapter.from_local(item)
            except ValidationError as e:
                logger.warning("Dropping malformed %s snapshot item: %s", self.adapter.name, e.message)
                continue
            if record.id in seen:
                continue
            seen.add(record.id)
            records.append(record)

        if self.tombstones_enabled:
            for item in await self._tombstone_store.load():
                if isinstance(item, str):
                    self._tombstones[item] = None
        await self.confirmations.load()

        self._records = sort_records(records)
        self._loaded = True
        self._publish()
        logger.debug("%s loaded %d records from local store", self.adapter.name, len(records))

    async def sync_pending(self) -> int:
        """
        Push every unsynced record with create(); returns how many flipped.

        Records are pushed one at a time. The snapshot is persisted once at
        the end, and only when at least one record changed.
        """
        flipped = 0
        for record_id in [r.id for r in self._records if not r.synced]:
            if await self._push_create(record_id, persist=False):
                flipped += 1
        if flipped:
            await self._persist()
            self._publish()
            logger.info("%s pushed %d pending records", self.adapter.name, flipped)
        return flipped

    async def fetch_remote(self) -> bool:
        """
        Pull the remote list and merge it into the collection.

        Returns False when the remote could not be listed; the collection is
        then left exactly as it was.

        A local record missing from the remote list is kept when it is
        unsynced, or when it was unsynced or absent at the moment the list
        was requested: its create may have landed after the remote took its
        snapshot. Only records that were already synced before the pull and
        are gone from the remote are dropped.
        """
        synced_before = {r.id for r in self._records if r.synced}
        try:
            items = await self.gateway.list()
        except RemoteGatewayError as e:
            logger.warning("%s pull failed, keeping local state: %s", self.adapter.name, e.message)
            return False
        except Exception:
            logger.error("%s pull failed unexpectedly", self.adapter.name, exc_info=True)
            return False

        server: Dict[str, RecordT] = {}
        for item in items:
            try:
                record = self.adapter.from_wire(item)
            except ValidationError as e:
                logger.warning("Skipping malformed remote %s item: %s", self.adapter.name, e.message)
                continue
            if record.id in self._tombstones:
                continue
            server[record.id] = record

        # Read the collection after the await: local writes made while the
        # list call was in flight are part of the merge
        kept_local = [
            r
            for r in self._records
            if r.id not in server and (not r.synced or r.id not in synced_before)
        ]
        self._records = sort_records(list(server.values()) + kept_local)

        present = {r.id for r in self._records}
        self._revisions = {k: v for k, v in self._revisions.items() if k in present}
        self._remote_locks = {
            k: lock for k, lock in self._remote_locks.items() if k in present or lock.locked()
        }

        await self._persist()
        self._publish()
        logger.info(
            "%s merged %d remote + %d local-only records",
            self.adapter.name,
            len(server),
            len(kept_local),
        )
        return True

    # ══════════════════════════════════════════════════════════════════════
    # Mutations
    # ══════════════════════════════════════════════════════════════════════

    async def add(
        self,
        payload: Mapping[str, Any],
        date: Optional[str] = None,
        source_ref: Optional[str] = None,
    ) -> RecordT:
        """
        Create a record locally and push it in the background.

        The record is in `collection` and persisted when this returns; the
        remote create runs afterwards.

        Args:
            payload:     Domain fields of the record
            date:        Calendar day (YYYY-MM-DD); today (UTC) when omitted
            source_ref:  External reference (e.g. chat message id) to mark as
                         confirmed

        Raises:
            ValidationError: the payload is incomplete or invalid
        """
        await self._ensure_loaded()
        timestamp = self._clock()
        record_id = self._new_id(timestamp)
        record = self.adapter.build(
            record_id,
            date or day_from_timestamp(timestamp),
            timestamp,
            payload,
        )

        self._records = sort_records([record] + self._records)
        self._bump(record_id)
        self._publish()
        await self._persist()
        if source_ref is not None:
            await self.confirmations.confirm(source_ref)

        self._spawn(self._push_create(record_id))
        logger.debug("%s added %s", self.adapter.name, record_id)
        return record

    async def update(self, record_id: str, patch: Mapping[str, Any]) -> RecordT:
        """
        Edit a record locally and push the patch in the background.

        Any edit clears `synced`, including on records the server already has.

        Raises:
            RecordNotFoundError: no record with this id
            ValidationError: the patch names an unknown field or is invalid
        """
        await self._ensure_loaded()
        index = self._index_of(record_id)
        if index is None:
            raise RecordNotFoundError(collection=self.adapter.name, record_id=record_id)

        updated = self.adapter.apply_patch(self._records[index], patch, self._clock())
        wire_patch = dict(patch)
        if self.adapter.touch_on_update:
            wire_patch["timestamp"] = updated.timestamp

        self._records[index] = updated
        self._records = sort_records(self._records)
        self._bump(record_id)
        self._publish()
        await self._persist()

        self._spawn(self._push_update(record_id, self.adapter.patch_to_wire(wire_patch)))
        return updated

    async def delete(self, record_id: str) -> bool:
        """
        Remove a record locally and delete it remotely in the background.

        Returns False when the id is unknown (nothing happens).
        """
        await self._ensure_loaded()
        index = self._index_of(record_id)
        if index is None:
            logger.debug("%s delete of unknown id %s ignored", self.adapter.name, record_id)
            return False

        del self._records[index]
        self._revisions.pop(record_id, None)
        if self.tombstones_enabled:
            self._tombstones[record_id] = None
        self._publish()
        await self._persist()
        if self.tombstones_enabled:
            await self._persist_tombstones()

        self._spawn(self._push_delete(record_id))
        return True

    # ══════════════════════════════════════════════════════════════════════
    # Remote pushes
    # ══════════════════════════════════════════════════════════════════════

    async def _push_create(self, record_id: str, persist: bool = True) -> bool:
        async with self._lock_for(record_id):
            record = self.get(record_id)
            if record is None or record.synced:
                return False
            revision = self._revisions.get(record_id, 0)
            if not await self._call_remote("create", record_id, self.gateway.create(self.adapter.to_wire(record))):
                return False
            return await self._mark_synced(record_id, revision, persist=persist)

    async def _push_update(self, record_id: str, wire_patch: Dict[str, Any]) -> bool:
        async with self._lock_for(record_id):
            record = self.get(record_id)
            if record is None:
                return False
            revision = self._revisions.get(record_id, 0)
            try:
                await self.gateway.update(record_id, wire_patch)
            except RemoteNotFoundError:
                logger.info("%s %s unknown to remote, creating it", self.adapter.name, record_id)
                if not await self._call_remote("create", record_id, self.gateway.create(self.adapter.to_wire(record))):
                    return False
            except RemoteGatewayError as e:
                logger.warning("%s update of %s failed: %s", self.adapter.name, record_id, e.message)
                return False
            except Exception:
                logger.error("%s update of %s failed unexpectedly", self.adapter.name, record_id, exc_info=True)
                return False
            return await self._mark_synced(record_id, revision)

    async def _push_delete(self, record_id: str) -> bool:
        async with self._lock_for(record_id):
            if not await self._call_remote("delete", record_id, self.gateway.delete(record_id)):
                return False
            if record_id in self._tombstones:
                del self._tombstones[record_id]
                await self._persist_tombstones()
            return True

    async def _flush_tombstones(self) -> None:
        for record_id in list(self._tombstones):
            await self._push_delete(record_id)

    async def _call_remote(self, action: str, record_id: str, call: Awaitable[Any]) -> bool:
        try:
            await call
        except RemoteGatewayError as e:
            logger.warning("%s %s of %s failed: %s", self.adapter.name, action, record_id, e.message)
            return False
        except Exception:
            logger.error(
                "%s %s of %s failed unexpectedly", self.adapter.name, action, record_id, exc_info=True
            )
            return False
        return True

    async def _mark_synced(self, record_id: str, revision: int, persist: bool = True) -> bool:
        """Flip synced=True unless the record was deleted or edited meanwhile."""
        index = self._index_of(record_id)
        if index is None:
            logger.debug("%s %s deleted while its push was in flight", self.adapter.name, record_id)
            return False
        if self._revisions.get(record_id, 0) != revision:
            logger.debug("%s %s edited while its push was in flight", self.adapter.name, record_id)
            return False
        record = self._records[index]
        if record.synced:
            return False

        self._records[index] = record.model_copy(update={"synced": True})
        if persist:
            await self._persist()
            self._publish()
        return True

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait until every background push started so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ══════════════════════════════════════════════════════════════════════
    # Helpers
    # ══════════════════════════════════════════════════════════════════════

    def _index_of(self, record_id: str) -> Optional[int]:
        for index, record in enumerate(self._records):
            if record.id == record_id:
                return index
        return None

    def _new_id(self, timestamp: int) -> str:
        while True:
            candidate = f"{timestamp}-{uuid.uuid4().hex[:6]}"
            if candidate not in self._issued_ids and self._index_of(candidate) is None:
                self._issued_ids.add(candidate)
                return candidate

    def _bump(self, record_id: str) -> None:
        self._revisions[record_id] = self._revisions.get(record_id, 0) + 1

    def _lock_for(self, record_id: str) -> asyncio.Lock:
        lock = self._remote_locks.get(record_id)
        if lock is None:
            lock = self._remote_locks[record_id] = asyncio.Lock()
        return lock

    async def _persist(self) -> None:
        try:
            await self.store.save([self.adapter.to_local(r) for r in self._records])
        except LocalStoreError as e:
            logger.error(
                "%s snapshot not persisted, serving in-memory state: %s",
                self.adapter.name,
                e.message,
            )

    async def _persist_tombstones(self) -> None:
        try:
            await self._tombstone_store.save(list(self._tombstones))
        except LocalStoreError as e:
            logger.error("%s tombstones not persisted: %s", self.adapter.name, e.message)
