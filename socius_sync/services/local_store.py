"""
Socius Sync — Local Store
===========================

What:  Durable on-device persistence of serialized collections.
How:   A LocalStore is bound to one storage key and reads/writes the whole
       collection as a JSON array through a BlobBackend. There is no
       append-only log: every save rewrites the full snapshot.
Who:   SyncEngine (collection snapshot, tombstones, confirmations) and
       PhysicalStatsSync (stats document).
When:  load() once per initialize(); save() after every in-memory mutation.

Backends:
    FileBlobBackend  one `<key>.json` file per key, written to a temporary
                     file and renamed over the old one (aiofiles)
    SqlBlobBackend   one row per key in an async SQLAlchemy database

Write ordering:
    save() serializes its argument before its first suspension point, so the
    snapshot always reflects the in-memory state at the moment of the call.
    Writes then run one at a time in call order; a snapshot that has already
    been superseded by a newer queued one is skipped, so an older snapshot
    can never overwrite a newer one.
"""

import asyncio
import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional

import aiofiles
import aiofiles.os
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine

from socius_sync.config import settings
from socius_sync.database import DeviceBase, build_engine, build_session_factory
from socius_sync.exceptions import LocalStoreError, ValidationError
from socius_sync.models.local_blob import LocalBlob

logger = logging.getLogger(__name__)

# Storage keys double as file names
_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


def _check_key(key: str) -> str:
    if not _KEY_PATTERN.match(key) or key.startswith("."):
        raise ValidationError(message=f"Invalid storage key '{key}'", field="key")
    return key


# ══════════════════════════════════════════════════════════════════════════
# Blob Backends
# ══════════════════════════════════════════════════════════════════════════


class BlobBackend(ABC):
    """
    Key/value persistence of opaque strings.

    Contract:
        - read() returns None when nothing is stored under the key
        - write() replaces the stored value atomically or raises LocalStoreError
        - close() releases held resources; the backend is unusable afterwards
    """

    @abstractmethod
    async def read(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def write(self, key: str, value: str) -> None:
        ...

    async def close(self) -> None:
        return None


class FileBlobBackend(BlobBackend):
    """
    Stores each key as `<root>/<key>.json`.

    A write goes to `<key>.json.<random>.tmp` first and is renamed over the
    target, so a crash mid-write leaves the previous snapshot intact.
    """

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.local_store_root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info("FileBlobBackend initialized with root=%s", self.root)

    def _path_for(self, key: str) -> Path:
        return self.root / f"{_check_key(key)}.json"

    async def read(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return await f.read()
        except FileNotFoundError:
            return None

    async def write(self, key: str, value: str) -> None:
        path = self._path_for(key)
        tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(value)
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            logger.error("Failed to write snapshot %s: %s", path.name, str(e))
            try:
                await aiofiles.os.remove(tmp_path)
            except OSError:
                logger.debug("No temporary file left to remove for %s", path.name)
            raise LocalStoreError(
                message="Failed to persist local snapshot",
                context={"key": key, "os_error": str(e)},
            )


class SqlBlobBackend(BlobBackend):
    """
    Stores each key as a row of the `local_blobs` table.

    The table is created on first use. Pass `engine` to share an existing
    engine (tests use an in-memory SQLite engine); otherwise one is built
    from settings.local_store_url and disposed by close().
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        self._owns_engine = engine is None
        self._engine = engine or build_engine(url or settings.local_store_url)
        self._session_factory = build_session_factory(self._engine)
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self._schema_lock:
            if not self._schema_ready:
                async with self._engine.begin() as conn:
                    await conn.run_sync(DeviceBase.metadata.create_all)
                self._schema_ready = True

    async def read(self, key: str) -> Optional[str]:
        await self._ensure_schema()
        async with self._session_factory() as session:
            result = await session.execute(
                select(LocalBlob.value).where(LocalBlob.key == _check_key(key))
            )
            return result.scalar_one_or_none()

    async def write(self, key: str, value: str) -> None:
        _check_key(key)
        try:
            await self._ensure_schema()
            async with self._session_factory() as session:
                blob = await session.get(LocalBlob, key)
                if blob is None:
                    session.add(LocalBlob(key=key, value=value))
                else:
                    blob.value = value
                await session.commit()
        except LocalStoreError:
            raise
        except Exception as e:
            logger.error("Failed to write snapshot row %s: %s", key, str(e))
            raise LocalStoreError(
                message="Failed to persist local snapshot",
                context={"key": key, "error_type": type(e).__name__},
            )

    async def close(self) -> None:
        if self._owns_engine:
            await self._engine.dispose()


def create_blob_backend() -> BlobBackend:
    """Backend selected by settings.local_store_backend."""
    if settings.local_store_backend == "sql":
        return SqlBlobBackend()
    return FileBlobBackend()


# ══════════════════════════════════════════════════════════════════════════
# LocalStore
# ══════════════════════════════════════════════════════════════════════════


class LocalStore:
    """
    The persisted snapshot of one collection.

    load() never raises: a missing, unreadable or corrupt snapshot loads as
    an empty list. save() raises LocalStoreError when the backend write
    fails; callers keep their in-memory state in that case.
    """

    def __init__(self, backend: BlobBackend, key: str):
        self.backend = backend
        self.key = _check_key(key)
        self._write_lock = asyncio.Lock()
        self._issued = 0

    async def load(self) -> List[Any]:
        try:
            raw = await self.backend.read(self.key)
        except Exception as e:
            logger.warning("Could not read local snapshot '%s': %s", self.key, str(e))
            return []

        if raw is None:
            return []

        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning("Local snapshot '%s' is corrupt, starting empty: %s", self.key, str(e))
            return []

        if not isinstance(data, list):
            logger.warning(
                "Local snapshot '%s' holds %s instead of a list, starting empty",
                self.key,
                type(data).__name__,
            )
            return []
        return data

    async def save(self, items: List[Any]) -> None:
        # Serialize before the first await: the snapshot is the state at call time
        try:
            payload = json.dumps(items, ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise LocalStoreError(
                message="Snapshot is not JSON serializable",
                context={"key": self.key, "error": str(e)},
            )
        self._issued += 1
        sequence = self._issued

        async with self._write_lock:
            if sequence < self._issued:
                # A newer snapshot is queued behind this one
                return
            await self.backend.write(self.key, payload)
            logger.debug("Saved snapshot '%s' (%d items, seq=%d)", self.key, len(items), sequence)

