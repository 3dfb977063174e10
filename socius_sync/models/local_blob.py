"""
Socius Sync — On-Device Blob Table
====================================

What:  Key/value table used by SqlBlobBackend to hold collection snapshots.
How:   One row per storage key; `value` is the serialized JSON snapshot.
       Created on first use by SqlBlobBackend (not part of the server's
       Alembic history).
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from socius_sync.database import DeviceBase


class LocalBlob(DeviceBase):
    """A serialized snapshot stored under a collection-specific key."""

    __tablename__ = "local_blobs"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)

    value: Mapped[str] = mapped_column(Text, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
