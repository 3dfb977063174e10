"""
Socius Sync — Collection Adapters
===================================

What:  Describes one synced collection: its record type, REST path, local
       storage key and the mapping between local records and wire bodies.
How:   SyncEngine is generic over the record type; everything that differs
       between calories, workouts and passwords lives in a CollectionAdapter.
Who:   Used by SyncEngine on the client and by the record routes on the
       reference server, so both sides validate bodies the same way.

Wire shape:
    POST /{path}        {client_id, ...domain fields, date, timestamp}
    GET  /{path}        [{client_id, ...domain fields, date, timestamp}, ...]
    PUT  /{path}/{id}   {...patch}
    DELETE /{path}/{id}

    `wire_aliases` renames local fields on the wire; passwords send their
    timestamp as `updated_at`.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generic, Iterable, List, Mapping, Tuple, Type, TypeVar

from pydantic import ValidationError as PydanticValidationError

from socius_sync.exceptions import ValidationError
from socius_sync.schemas.records import (
    CalorieEntry,
    PasswordAccount,
    SyncRecord,
    WorkoutActivity,
)


RecordT = TypeVar("RecordT", bound=SyncRecord)

# Fields the engine owns; callers may only patch the domain fields and `date`
ENGINE_FIELDS = frozenset(SyncRecord.model_fields)
PATCHABLE_BASE_FIELDS = frozenset({"date"})


def sort_records(records: Iterable[RecordT]) -> List[RecordT]:
    """Orders records newest first: date descending, then timestamp descending."""
    return sorted(records, key=lambda r: (r.date, r.timestamp), reverse=True)


def now_ms() -> int:
    return int(time.time() * 1000)


def day_from_timestamp(timestamp_ms: int) -> str:
    """UTC calendar day of an epoch-millisecond timestamp."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date().isoformat()


def _first_error(exc: PydanticValidationError) -> Tuple[str, str]:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ())) or "payload"
    return location, error.get("msg", "invalid value")


@dataclass(frozen=True)
class CollectionAdapter(Generic[RecordT]):
    """
    Per-collection parameters for the generic sync engine.

    Attributes:
        name:             Short collection name used in logs and errors
        path:             REST path of the collection, e.g. "/workouts/activities"
        storage_key:      Key of the collection snapshot in the LocalStore
        record_type:      Pydantic model of one record
        wire_aliases:     Local field name → wire field name
        touch_on_update:  Refresh the record timestamp on every edit
    """

    name: str
    path: str
    storage_key: str
    record_type: Type[RecordT]
    wire_aliases: Mapping[str, str] = field(default_factory=dict)
    touch_on_update: bool = False

    @property
    def domain_fields(self) -> Tuple[str, ...]:
        return tuple(f for f in self.record_type.model_fields if f not in ENGINE_FIELDS)

    # ── Local records ─────────────────────────────────────────────────────

    def build(
        self,
        record_id: str,
        day: str,
        timestamp: int,
        payload: Mapping[str, Any],
    ) -> RecordT:
        """
        Construct a new unsynced record from a caller payload.

        Raises:
            ValidationError: payload is missing a domain field, tries to set
                an engine-owned field, or holds an invalid value
        """
        reserved = ENGINE_FIELDS.intersection(payload)
        if reserved:
            raise ValidationError(
                message=f"{self.name} payload may not set {', '.join(sorted(reserved))}",
                field=sorted(reserved)[0],
            )
        data = dict(payload)
        data.update(id=record_id, date=day, timestamp=timestamp, synced=False)
        return self._validate(data)

    def apply_patch(self, record: RecordT, patch: Mapping[str, Any], now_ms: int) -> RecordT:
        """
        Return a copy of `record` with the patch applied and synced cleared.

        Raises:
            ValidationError: the patch names an unknown or engine-owned field,
                or produces an invalid record
        """
        self.validate_patch(patch)
        data = record.model_dump()
        data.update(patch)
        data["synced"] = False
        if self.touch_on_update:
            data["timestamp"] = now_ms
        return self._validate(data)

    def validate_patch(self, patch: Mapping[str, Any]) -> None:
        if not patch:
            raise ValidationError(message=f"{self.name} patch is empty")
        allowed = set(self.domain_fields) | PATCHABLE_BASE_FIELDS
        unknown = sorted(set(patch) - allowed)
        if unknown:
            raise ValidationError(
                message=(
                    f"Cannot patch {', '.join(unknown)} on {self.name}. "
                    f"Patchable fields: {', '.join(sorted(allowed))}"
                ),
                field=unknown[0],
            )

    def to_local(self, record: RecordT) -> Dict[str, Any]:
        return record.model_dump(mode="json")

    def from_local(self, item: Any) -> RecordT:
        """Validate one snapshot item; raises ValidationError when malformed."""
        if not isinstance(item, dict):
            raise ValidationError(message=f"{self.name} snapshot item is not an object")
        return self._validate(item)

    # ── Wire format ───────────────────────────────────────────────────────

    def to_wire(self, record: RecordT) -> Dict[str, Any]:
        """Full POST body for a record, keyed by client_id."""
        body: Dict[str, Any] = {"client_id": record.id}
        for name in self.domain_fields + ("date", "timestamp"):
            body[self.wire_aliases.get(name, name)] = getattr(record, name)
        return body

    def patch_to_wire(self, patch: Mapping[str, Any]) -> Dict[str, Any]:
        return {self.wire_aliases.get(k, k): v for k, v in patch.items()}

    def from_wire(self, item: Any) -> RecordT:
        """
        Turn one remote item into a synced local record.

        The remote echoes the client_id it was given, so the record keeps
        the id it was created with. A missing `date` is derived from the
        timestamp.
        """
        if not isinstance(item, dict):
            raise ValidationError(message=f"{self.name} remote item is not an object")
        client_id = item.get("client_id")
        if not client_id:
            raise ValidationError(message=f"{self.name} remote item has no client_id", field="client_id")

        data: Dict[str, Any] = {"id": str(client_id), "synced": True}
        for name in self.domain_fields + ("date", "timestamp"):
            wire_name = self.wire_aliases.get(name, name)
            if wire_name in item:
                data[name] = item[wire_name]
        if "date" not in data and isinstance(data.get("timestamp"), int):
            data["date"] = day_from_timestamp(data["timestamp"])
        return self._validate(data)

    def _validate(self, data: Mapping[str, Any]) -> RecordT:
        try:
            return self.record_type.model_validate(data)
        except PydanticValidationError as e:
            location, msg = _first_error(e)
            raise ValidationError(
                message=f"Invalid {self.name} record: {location}: {msg}",
                field=location,
                context={"errors": len(e.errors())},
            )


# ══════════════════════════════════════════════════════════════════════════
# The three synced collections
# ══════════════════════════════════════════════════════════════════════════

CALORIES: CollectionAdapter[CalorieEntry] = CollectionAdapter(
    name="calories",
    path="/calories",
    storage_key="calories_entries",
    record_type=CalorieEntry,
)

WORKOUTS: CollectionAdapter[WorkoutActivity] = CollectionAdapter(
    name="workouts",
    path="/workouts/activities",
    storage_key="workout_activities",
    record_type=WorkoutActivity,
)

PASSWORDS: CollectionAdapter[PasswordAccount] = CollectionAdapter(
    name="passwords",
    path="/passwords",
    storage_key="user_passwords",
    record_type=PasswordAccount,
    wire_aliases={"timestamp": "updated_at"},
    touch_on_update=True,
)

ADAPTERS: Dict[str, CollectionAdapter[Any]] = {
    adapter.name: adapter for adapter in (CALORIES, WORKOUTS, PASSWORDS)
}
