"""
Truck data model - a carrier's capacity posting.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator, model_validator

from .base import Document, ensure_utc
from .enums import Equipment
from .geo import GeoPoint


class Truck(Document):
    """
    A truck posted by a carrier: lane, equipment and available capacity.

    A truck without a destination will go anywhere.
    """

    reference_number: Optional[int] = Field(None, alias="referenceNumber", ge=1)

    # Lane
    origin: GeoPoint = Field(..., description="Where the truck is empty")
    destination: Optional[GeoPoint] = Field(None, description="Preferred destination")

    # Availability
    available_date: datetime = Field(..., alias="availableDate")
    available_until: Optional[datetime] = Field(None, alias="availableUntil")

    # Capacity
    equipment: Equipment
    weight: Optional[float] = Field(None, ge=0, description="Capacity in pounds")
    length: Optional[float] = Field(None, ge=0, description="Deck length in feet")
    miles: Optional[float] = Field(None, ge=0)
    all_in_rate: Optional[Decimal] = Field(None, ge=0, alias="allInRate")
    comments: Optional[str] = None

    # References
    broker_id: Optional[str] = Field(None, alias="brokerId")
    posted_by: Optional[str] = Field(None, alias="postedBy")

    @field_validator("available_date", "available_until", mode="after")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _window_order(self) -> "Truck":
        if self.available_until is not None and self.available_until < self.available_date:
            raise ValueError("availableUntil must not be before availableDate")
        return self

    @property
    def availability_window(self) -> tuple[datetime, datetime]:
        """Inclusive availability window."""
        return self.available_date, self.available_until or self.available_date
