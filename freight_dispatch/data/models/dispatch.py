"""
Dispatch data model - the operational record of a load from posting to paid invoice.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator, model_validator

from .base import Document, WireModel, ensure_utc
from .enums import DispatchLoadStatus, DispatchLoadType, Equipment
from .geo import GeoPoint


class StopDetails(WireModel):
    """Shipper (pickup) or consignee (delivery) side of a dispatch."""

    party_id: Optional[str] = Field(None, alias="partyId", description="Shipper/consignee id")
    address: GeoPoint = Field(..., description="Physical location")
    date: datetime = Field(..., description="Window start")
    late_date: Optional[datetime] = Field(None, alias="lateDate", description="Window end")
    time: Optional[str] = Field(None, description="Appointment time as entered")
    description: Optional[str] = None
    type: Optional[str] = None
    qty: Optional[int] = Field(None, ge=0)
    weight: Optional[float] = Field(None, ge=0, description="Weight in pounds")
    value: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None
    po: Optional[int] = Field(None, alias="PO")

    @field_validator("date", "late_date", mode="after")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _window_order(self) -> "StopDetails":
        if self.late_date is not None and self.late_date < self.date:
            raise ValueError("lateDate must not be before date")
        return self

    @property
    def window(self) -> tuple[datetime, datetime]:
        """Inclusive [start, end] window; a single date when no end is given."""
        return self.date, self.late_date or self.date


class ChargeLine(WireModel):
    """One line of an "other charges" breakdown."""

    description: str
    amount: Decimal
    is_advance: bool = Field(False, alias="isAdvance")
    date: Optional[datetime] = None


class FuelSurcharge(WireModel):
    """Fuel surcharge, either a flat value or a percentage."""

    is_percentage: bool = Field(False, alias="isPercentage")
    value: Decimal = Field(Decimal("0"), ge=0)


class CarrierFeeBreakdown(WireModel):
    """How the carrier fee was computed."""

    type: DispatchLoadType = DispatchLoadType.FLAT_RATE
    units: Decimal = Field(Decimal("0"), ge=0)
    rate: Decimal = Field(Decimal("0"), ge=0)
    pds: int = Field(0, ge=0, alias="PDs")
    fuel_service_charge: Optional[FuelSurcharge] = Field(None, alias="fuelServiceCharge")
    total_rate: Decimal = Field(Decimal("0"), ge=0, alias="totalRate")
    other_charges: list[ChargeLine] = Field(default_factory=list, alias="otherCharges")


class CarrierFee(WireModel):
    """Amount owed to the carrier."""

    total_amount: Decimal = Field(Decimal("0"), ge=0, alias="totalAmount")
    breakdown: Optional[CarrierFeeBreakdown] = None


class OtherCharges(WireModel):
    """Accessorials billed to the customer."""

    total_amount: Decimal = Field(Decimal("0"), ge=0, alias="totalAmount")
    breakdown: list[ChargeLine] = Field(default_factory=list)


class Dispatch(Document):
    """
    A dispatch (load) record.

    loadNumber and invoiceNumber are assigned by the sequence allocator and are
    immutable once set. Status is owned by the state machine.
    """

    # Identification
    load_number: Optional[int] = Field(None, alias="loadNumber", ge=1)
    invoice_number: Optional[int] = Field(None, alias="invoiceNumber", ge=1)
    invoice_date: Optional[datetime] = Field(None, alias="invoiceDate")
    wo_number: Optional[int] = Field(None, alias="WONumber", ge=1)

    # Status
    status: DispatchLoadStatus = Field(DispatchLoadStatus.DRAFT)

    # Requirements
    equipment: Equipment = Field(..., description="Equipment type needed")
    length: Optional[float] = Field(None, ge=0, description="Length in feet")
    special_instructions: Optional[str] = Field(None, alias="specialInstructions")

    # Stops
    shipper: StopDetails
    consignee: StopDetails

    # Financial
    carrier_fee: Optional[CarrierFee] = Field(None, alias="carrierFee")
    other_charges: Optional[OtherCharges] = Field(None, alias="otherCharges")
    all_in_rate: Optional[Decimal] = Field(None, ge=0, alias="allInRate")
    customer_rate: Optional[Decimal] = Field(None, ge=0, alias="customerRate")

    # References
    broker_id: Optional[str] = Field(None, alias="brokerId")
    customer_id: Optional[str] = Field(None, alias="customerId")
    carrier_id: Optional[str] = Field(None, alias="carrierId")
    sales_rep: Optional[str] = Field(None, alias="salesRep")
    posted_by: Optional[str] = Field(None, alias="postedBy")

    @field_validator("invoice_date", mode="after")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def origin(self) -> GeoPoint:
        """Pickup location."""
        return self.shipper.address

    @property
    def destination(self) -> GeoPoint:
        """Delivery location."""
        return self.consignee.address

    @property
    def pickup_window(self) -> tuple[datetime, datetime]:
        """Inclusive pickup window."""
        return self.shipper.window

    @property
    def required_weight(self) -> Optional[float]:
        """Heaviest weight stated on either stop; None when neither states one."""
        weights = [w for w in (self.shipper.weight, self.consignee.weight) if w is not None]
        return max(weights) if weights else None

    @property
    def notification_recipients(self) -> list[str]:
        """Broker first, then customer."""
        return [r for r in (self.broker_id, self.customer_id) if r]
