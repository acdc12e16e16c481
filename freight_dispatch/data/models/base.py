"""
Shared model plumbing: UTC timestamps and the persisted-document base.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_age(delta_seconds: float) -> str:
    """
    Human-readable age of a posting.

    Returns the largest whole unit: "2y", "3mo", "5d", "4h", "10min", "20s".
    """
    seconds = int(delta_seconds)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    months = int(days // 30.44)
    years = int(days // 365.25)

    if years > 0:
        return f"{years}y"
    if months > 0:
        return f"{months}mo"
    if days > 0:
        return f"{days}d"
    if hours > 0:
        return f"{hours}h"
    if minutes > 0:
        return f"{minutes}min"
    if seconds > 0:
        return f"{seconds}s"
    return "0s"


def new_id() -> str:
    """Generate a store key."""
    return uuid.uuid4().hex


class WireModel(BaseModel):
    """Base for models exchanged with clients using the original camelCase names."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    def to_wire(self) -> dict:
        """Serialize with wire (alias) names, JSON-compatible values."""
        return self.model_dump(mode="json", by_alias=True)


class Document(WireModel):
    """A persisted record with a store key, timestamps and a freshness age."""

    id: str = Field(default_factory=new_id, description="Store key")
    age: Optional[datetime] = Field(None, description="Manually refreshed posting freshness")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")

    @field_validator("age", "created_at", "updated_at", mode="after")
    @classmethod
    def _normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @computed_field(alias="formattedAge")  # type: ignore[prop-decorator]
    @property
    def formatted_age(self) -> Optional[str]:
        """Age rendered as "2d", "3h", ...; None when age was never set."""
        if self.age is None:
            return None
        return format_age((utcnow() - self.age).total_seconds())
