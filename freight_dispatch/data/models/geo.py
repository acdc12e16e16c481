"""
Geographic location model.
"""

from pydantic import Field

from .base import WireModel


class GeoPoint(WireModel):
    """A human-readable address plus coordinates."""

    label: str = Field(..., alias="str", description="Address as entered")
    lat: float = Field(..., ge=-90, le=90, description="Latitude")
    lng: float = Field(..., ge=-180, le=180, description="Longitude")

    def __str__(self) -> str:
        """String representation."""
        return self.label
