"""Closed enumerations shared by the dispatch models."""

from enum import Enum


class DispatchLoadStatus(str, Enum):
    """Dispatch lifecycle status. Only the state machine changes it."""

    DRAFT = "Draft"
    PUBLISHED = "Published"
    IN_TRANSIT = "InTransit"
    DELIVERED = "Delivered"
    COMPLETED = "Completed"
    INVOICED = "Invoiced"
    INVOICED_PAID = "InvoicedPaid"
    CANCELLED = "Cancelled"


class Equipment(str, Enum):
    """Trailer / equipment type."""

    VAN = "Van"
    REEFER = "Reefer"
    FLATBED = "Flatbed"
    STEP_DECK = "StepDeck"
    CONESTOGA = "Conestoga"
    LOWBOY = "Lowboy"
    HOTSHOT = "Hotshot"
    POWER_ONLY = "PowerOnly"
    TANKER = "Tanker"
    BOX_TRUCK = "BoxTruck"


class DispatchLoadType(str, Enum):
    """How the carrier fee is computed."""

    FLAT_RATE = "FlatRate"
    PER_MILE = "PerMile"
    PER_HOUR = "PerHour"
    PER_UNIT = "PerUnit"


class SequenceName(str, Enum):
    """Named counters issuing business identifiers."""

    LOAD_NUMBER = "loadNumber"
    INVOICE_NUMBER = "invoiceNumber"
    WO_NUMBER = "WONumber"
    REFERENCE_NUMBER = "referenceNumber"
