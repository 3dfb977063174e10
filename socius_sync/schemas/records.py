"""
Socius Sync — Record Schemas
==============================

What:  Pydantic models for the records kept in each synced collection and
       for the single physical-stats document.
How:   Every collection record extends SyncRecord, which carries the fields
       the engine itself relies on (id, date, timestamp, synced). The domain
       fields are the mutable payload.
Who:   Built and validated by CollectionAdapter; stored in the LocalStore
       snapshot as plain dicts; validated by the reference server on POST.

Record identity:
    id         client-generated once at creation, never changes; sent to the
               remote as `client_id` and used as the idempotency key
    date       local calendar day of the record (YYYY-MM-DD)
    timestamp  client clock in epoch milliseconds
    synced     True only once the remote acknowledged this exact id
"""

from datetime import date as date_type
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator


# ══════════════════════════════════════════════════════════════════════════
# Collection Records
# ══════════════════════════════════════════════════════════════════════════


class SyncRecord(BaseModel):
    """
    Fields shared by every synced record.

    A record with synced=True is the server's version and is replaced
    wholesale on the next pull. A record with synced=False is owned by the
    device until the remote acknowledges it.
    """

    id: str = Field(min_length=1, description="Client-generated identifier (client_id)")
    date: str = Field(description="Calendar day, YYYY-MM-DD")
    timestamp: int = Field(ge=0, description="Client clock at creation, epoch ms")
    synced: bool = Field(default=False, description="Acknowledged by the remote store")

    model_config = {"extra": "ignore"}

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        """Rejects anything that is not an ISO calendar day."""
        try:
            date_type.fromisoformat(v)
        except ValueError:
            raise ValueError(f"Invalid date '{v}'. Expected YYYY-MM-DD")
        return v


class CalorieEntry(SyncRecord):
    """A food logged on the calories screen or from a chat suggestion."""

    food: str = Field(min_length=1)
    calories: int = Field(ge=0)

    @field_validator("food")
    @classmethod
    def strip_food(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("food must not be blank")
        return stripped


class WorkoutActivity(SyncRecord):
    """A workout activity; duration in minutes, calories burned."""

    name: str = Field(min_length=1)
    duration: int = Field(default=0, ge=0)
    calories: int = Field(ge=0)


class PasswordAccount(SyncRecord):
    """
    A password vault entry.

    On the wire the record's timestamp travels as `updated_at` and is
    refreshed on every edit.
    """

    service: str = Field(min_length=1)
    username: str = ""
    password: str = ""
    group: str = ""


# ══════════════════════════════════════════════════════════════════════════
# Physical Stats Document
# ══════════════════════════════════════════════════════════════════════════


class ActivityLevel(str, Enum):
    """Daily activity level used for the TDEE multiplier."""

    SEDENTARY = "sedentary"
    LIGHT = "light"
    MODERATE = "moderate"
    ACTIVE = "active"
    VERY_ACTIVE = "very_active"


class PhysicalStats(BaseModel):
    """
    Body measurements for the workouts screen.

    weight in kg, height in cm. Stored as one document, not a collection.
    """

    weight: float = Field(gt=0, le=500)
    height: float = Field(gt=0, le=300)
    age: int = Field(gt=0, le=150)
    gender: Literal["male", "female"]
    activity_level: ActivityLevel = ActivityLevel.MODERATE

    model_config = {"extra": "ignore", "use_enum_values": True}
