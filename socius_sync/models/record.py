"""
Socius Sync — Reference Server ORM Models
===========================================

What:  Tables of the reference collection server.
How:   SQLAlchemy 2.0 typed mappings on `Base`; Alembic migration 001 creates
       the same schema.
Who:   RecordService, for the collection routes and the stats routes.

Table Design:
    remote_records   one row per (collection, client_id). The unique
                     constraint is what makes POST idempotent: a repeated
                     client_id updates the existing row.
                     Domain fields are kept in a JSON `payload` column so
                     the three collections share one table.
    physical_stats   a single document row (id = 1).
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from socius_sync.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RemoteRecord(Base):
    """
    A record of one synced collection, as acknowledged by the server.

    Query Patterns:
        - List a collection: WHERE collection = :c ORDER BY date DESC, timestamp DESC
          → idx_remote_records_order
        - Upsert / update / delete by client id: WHERE collection = :c AND client_id = :id
          → uq_remote_records_collection_client_id
    """

    __tablename__ = "remote_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    collection: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Collection name: calories, workouts, passwords",
    )

    client_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Identifier minted on the device; idempotency key",
    )

    date: Mapped[str] = mapped_column(String(10), nullable=False, comment="YYYY-MM-DD")

    timestamp: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Client clock in epoch milliseconds",
    )

    payload: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Domain fields of the record",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("collection", "client_id", name="uq_remote_records_collection_client_id"),
    )

    def __repr__(self) -> str:
        return f"<RemoteRecord(collection='{self.collection}', client_id='{self.client_id}')>"


# Newest-first listing of one collection
Index(
    "idx_remote_records_order",
    RemoteRecord.collection,
    RemoteRecord.date.desc(),
    RemoteRecord.timestamp.desc(),
)


class PhysicalStatsDocument(Base):
    """The physical stats document of the workouts screen (single row)."""

    __tablename__ = "physical_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )
