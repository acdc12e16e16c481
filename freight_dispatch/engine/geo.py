"""
Great-circle distance helpers.
"""

import math
from dataclasses import dataclass
from typing import Optional

from ..data.models import GeoPoint
from ..data.query import Predicate, Range

EARTH_RADIUS_MILES = 3958.8


def haversine_miles(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points in statute miles."""
    lat1, lng1 = math.radians(a.lat), math.radians(a.lng)
    lat2, lng2 = math.radians(b.lat), math.radians(b.lng)

    dlat = lat2 - lat1
    dlng = lng2 - lng1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(min(1.0, math.sqrt(h)))


@dataclass(frozen=True)
class BoundingBox:
    """
    Lat/lng rectangle containing every point within a radius of a center.

    min_lng/max_lng are None when the circle reaches a pole or crosses the
    antimeridian; the box then only bounds latitude.
    """

    min_lat: float
    max_lat: float
    min_lng: Optional[float] = None
    max_lng: Optional[float] = None

    def predicates(self, lat_path: str, lng_path: str) -> list[Predicate]:
        """Range predicates on the given coordinate paths."""
        found: list[Predicate] = [Range(lat_path, gte=self.min_lat, lte=self.max_lat)]
        if self.min_lng is not None and self.max_lng is not None:
            found.append(Range(lng_path, gte=self.min_lng, lte=self.max_lng))
        return found


def bounding_box(center: GeoPoint, radius_miles: float) -> BoundingBox:
    """
    Smallest lat/lng box that is guaranteed to contain the radius circle.

    Used only to narrow store queries; exact distances are always checked with
    haversine_miles afterwards.
    """
    angular = radius_miles / EARTH_RADIUS_MILES
    lat = math.radians(center.lat)
    min_lat = lat - angular
    max_lat = lat + angular

    if min_lat <= -math.pi / 2 or max_lat >= math.pi / 2:
        # A pole is inside the circle: every longitude qualifies.
        return BoundingBox(
            min_lat=math.degrees(max(min_lat, -math.pi / 2)),
            max_lat=math.degrees(min(max_lat, math.pi / 2)),
        )

    dlng = math.degrees(math.asin(math.sin(angular) / math.cos(lat)))
    min_lng = center.lng - dlng
    max_lng = center.lng + dlng
    if min_lng < -180 or max_lng > 180:
        return BoundingBox(min_lat=math.degrees(min_lat), max_lat=math.degrees(max_lat))

    return BoundingBox(
        min_lat=math.degrees(min_lat),
        max_lat=math.degrees(max_lat),
        min_lng=min_lng,
        max_lng=max_lng,
    )
