"""
Socius Sync — Record Service (Reference Server)
=================================================

What:  Storage logic behind the collection REST API: idempotent create,
       ordered list, patch and delete of records keyed by client_id, plus
       the single physical stats document.
How:   Async SQLAlchemy against the `remote_records` and `physical_stats`
       tables. Domain fields live in a JSON payload column; identity and
       ordering columns are real columns.
Who:   Called by the record and stats route handlers.

Idempotency (POST):
    A POST whose client_id already exists in the collection updates that
    row instead of inserting a second one. The unique constraint on
    (collection, client_id) rejects a concurrent duplicate insert.

Design Decision:
    Like the route handlers, RecordService is stateless and receives the
    session per call; commit/rollback is owned by get_db_session().
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from socius_sync.exceptions import (
    DatabaseError,
    RecordNotFoundError,
    SociusSyncError,
    ValidationError,
)
from socius_sync.models.record import PhysicalStatsDocument, RemoteRecord
from socius_sync.schemas.records import PhysicalStats
from socius_sync.services.collections import CollectionAdapter

logger = logging.getLogger(__name__)

STATS_DOCUMENT_ID = 1


def serialize(adapter: CollectionAdapter[Any], row: RemoteRecord) -> Dict[str, Any]:
    """Wire representation of a stored row: {client_id, ...fields, date, timestamp}."""
    body: Dict[str, Any] = {"client_id": row.client_id}
    body.update(row.payload or {})
    body["date"] = row.date
    body[adapter.wire_aliases.get("timestamp", "timestamp")] = row.timestamp
    return body


class RecordService:
    """
    Business logic of the reference collection server.

    Error Handling Strategy:
        Validation problems raise ValidationError (400), unknown ids on PUT
        raise RecordNotFoundError (404); any other failure is logged and
        wrapped in DatabaseError (500) so SQL details never reach a client.
    """

    # ── Collections ───────────────────────────────────────────────────────

    async def upsert(
        self,
        db: AsyncSession,
        adapter: CollectionAdapter[Any],
        body: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """
        Store a posted record, creating it or replacing its fields.

        Raises:
            ValidationError: body has no client_id or invalid fields
            DatabaseError: the write failed
        """
        record = adapter.from_wire(dict(body))
        payload = {name: getattr(record, name) for name in adapter.domain_fields}

        try:
            row = await self._find(db, adapter.name, record.id)
            if row is None:
                row = RemoteRecord(
                    collection=adapter.name,
                    client_id=record.id,
                    date=record.date,
                    timestamp=record.timestamp,
                    payload=payload,
                )
                db.add(row)
                logger.info("Created %s record %s", adapter.name, record.id)
            else:
                self._assign(row, record.date, record.timestamp, payload)
                logger.info("Replaced %s record %s (repeated POST)", adapter.name, record.id)

            await db.flush()
            return serialize(adapter, row)

        except SociusSyncError:
            raise
        except Exception as e:
            logger.error("Database error storing %s/%s: %s", adapter.name, record.id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not store the record. Please try again.",
                context={"collection": adapter.name, "error_type": type(e).__name__},
            )

    async def list(self, db: AsyncSession, adapter: CollectionAdapter[Any]) -> List[Dict[str, Any]]:
        """
        Every record of the collection, newest first.

        Query plan:
            SELECT * FROM remote_records WHERE collection = :name
            ORDER BY date DESC, timestamp DESC
            → idx_remote_records_order
        """
        try:
            result = await db.execute(
                select(RemoteRecord)
                .where(RemoteRecord.collection == adapter.name)
                .order_by(RemoteRecord.date.desc(), RemoteRecord.timestamp.desc())
            )
            return [serialize(adapter, row) for row in result.scalars().all()]
        except Exception as e:
            logger.error("Database error listing %s: %s", adapter.name, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve records. Please try again.",
                context={"collection": adapter.name, "error_type": type(e).__name__},
            )

    async def update(
        self,
        db: AsyncSession,
        adapter: CollectionAdapter[Any],
        client_id: str,
        patch: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """
        Apply a partial update to an existing record.

        Raises:
            RecordNotFoundError: no record with this client_id
            ValidationError: unknown field or invalid resulting record
            DatabaseError: the write failed
        """
        allowed = {
            adapter.wire_aliases.get(name, name)
            for name in adapter.domain_fields + ("date", "timestamp")
        }
        unknown = sorted(set(patch) - allowed - {"client_id"})
        if unknown:
            raise ValidationError(
                message=f"Unknown {adapter.name} field(s): {', '.join(unknown)}",
                field=unknown[0],
            )

        try:
            row = await self._find(db, adapter.name, client_id)
            if row is None:
                raise RecordNotFoundError(collection=adapter.name, record_id=client_id)

            merged = serialize(adapter, row)
            merged.update({k: v for k, v in patch.items() if k != "client_id"})

            record = adapter.from_wire(merged)
            payload = {name: getattr(record, name) for name in adapter.domain_fields}
            self._assign(row, record.date, record.timestamp, payload)
            await db.flush()
            logger.info("Updated %s record %s (%s)", adapter.name, client_id, ", ".join(sorted(patch)))
            return serialize(adapter, row)

        except SociusSyncError:
            raise
        except Exception as e:
            logger.error("Database error updating %s/%s: %s", adapter.name, client_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not update the record. Please try again.",
                context={"collection": adapter.name, "error_type": type(e).__name__},
            )

    async def delete(self, db: AsyncSession, adapter: CollectionAdapter[Any], client_id: str) -> bool:
        """Remove a record; returns False when it did not exist (not an error)."""
        try:
            result = await db.execute(
                delete(RemoteRecord).where(
                    RemoteRecord.collection == adapter.name,
                    RemoteRecord.client_id == client_id,
                )
            )
            removed = (result.rowcount or 0) > 0
            logger.info(
                "Delete %s record %s: %s",
                adapter.name,
                client_id,
                "removed" if removed else "already absent",
            )
            return removed
        except Exception as e:
            logger.error("Database error deleting %s/%s: %s", adapter.name, client_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not delete the record. Please try again.",
                context={"collection": adapter.name, "error_type": type(e).__name__},
            )

    # ── Physical stats document ───────────────────────────────────────────

    async def get_stats(self, db: AsyncSession) -> Optional[Dict[str, Any]]:
        try:
            row = await db.get(PhysicalStatsDocument, STATS_DOCUMENT_ID)
        except Exception as e:
            logger.error("Database error reading physical stats: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve physical stats. Please try again.",
                context={"error_type": type(e).__name__},
            )
        return dict(row.payload) if row is not None else None

    async def put_stats(self, db: AsyncSession, stats: PhysicalStats) -> Dict[str, Any]:
        payload = stats.model_dump(mode="json")
        try:
            row = await db.get(PhysicalStatsDocument, STATS_DOCUMENT_ID)
            if row is None:
                db.add(PhysicalStatsDocument(id=STATS_DOCUMENT_ID, payload=payload))
            else:
                row.payload = payload
            await db.flush()
        except Exception as e:
            logger.error("Database error storing physical stats: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not store physical stats. Please try again.",
                context={"error_type": type(e).__name__},
            )
        return payload

    # ── Helpers ───────────────────────────────────────────────────────────

    @staticmethod
    async def _find(db: AsyncSession, collection: str, client_id: str) -> Optional[RemoteRecord]:
        result = await db.execute(
            select(RemoteRecord).where(
                RemoteRecord.collection == collection,
                RemoteRecord.client_id == client_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _assign(row: RemoteRecord, day: str, timestamp: int, payload: Dict[str, Any]) -> None:
        row.date = day
        row.timestamp = timestamp
        row.payload = payload


# ── Singleton Instance ────────────────────────────────────────────────────
record_service = RecordService()
