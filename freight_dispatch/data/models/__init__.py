"""
Pydantic data models for the dispatch engine.

Core models:
- GeoPoint: Address plus coordinates
- Dispatch: Load record moving from Draft to InvoicedPaid
- Truck: Carrier capacity posting
- Page / MatchedTruck / MatchedLoad: Query and matching results
"""

from .base import Document, WireModel, ensure_utc, format_age, utcnow
from .dispatch import (
    CarrierFee,
    CarrierFeeBreakdown,
    ChargeLine,
    Dispatch,
    FuelSurcharge,
    OtherCharges,
    StopDetails,
)
from .enums import DispatchLoadStatus, DispatchLoadType, Equipment, SequenceName
from .geo import GeoPoint
from .results import MatchedLoad, MatchedTruck, MatchPass, Page, ReservationResult
from .truck import Truck

__all__ = [
    "CarrierFee",
    "CarrierFeeBreakdown",
    "ChargeLine",
    "Dispatch",
    "DispatchLoadStatus",
    "DispatchLoadType",
    "Document",
    "Equipment",
    "FuelSurcharge",
    "GeoPoint",
    "MatchedLoad",
    "MatchedTruck",
    "MatchPass",
    "OtherCharges",
    "Page",
    "ReservationResult",
    "SequenceName",
    "StopDetails",
    "Truck",
    "WireModel",
    "ensure_utc",
    "format_age",
    "utcnow",
]
