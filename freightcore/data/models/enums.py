"""
Enumerations shared by the entities and engines.
"""

from enum import Enum


class ProfileType(str, Enum):
    """Who a rate profile pays."""

    DRIVER = "DRIVER"
    CARRIER = "CARRIER"


class RuleCategory(str, Enum):
    """Rule grouping inside a profile."""

    BASE = "BASE"
    ACCESSORIAL = "ACCESSORIAL"
    DEDUCTION = "DEDUCTION"
    MANUAL_TEMPLATE = "MANUAL_TEMPLATE"


class TriggerEvent(str, Enum):
    """What a rate rule measures."""

    MILE_LOADED = "MILE_LOADED"
    MILE_EMPTY = "MILE_EMPTY"
    TIME_DURATION = "TIME_DURATION"
    TIME_WAITING = "TIME_WAITING"
    COUNT_STOPS = "COUNT_STOPS"
    FLAT_LOAD = "FLAT_LOAD"
    FLAT_LEG = "FLAT_LEG"
    ATTR_HAZMAT = "ATTR_HAZMAT"
    ATTR_TARP = "ATTR_TARP"
    PCT_OF_LOAD = "PCT_OF_LOAD"


class LoadType(str, Enum):
    """Billing classification of a load."""

    UNMAPPED = "UNMAPPED"
    CONTRACT = "CONTRACT"
    SPOT = "SPOT"


class LoadStatus(str, Enum):
    """Load workflow status."""

    OPEN = "Open"
    ASSIGNED = "Assigned"
    COMPLETED = "Completed"
    CANCELED = "Canceled"


class TrackingStatus(str, Enum):
    """Physical tracking status of a load."""

    PENDING = "Pending"
    IN_TRANSIT = "In Transit"
    COMPLETED = "Completed"
    DELAYED = "Delayed"
    CANCELED = "Canceled"


class LegStatus(str, Enum):
    """Dispatch leg status."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"


class StopType(str, Enum):
    """Stop kind."""

    PICKUP = "PICKUP"
    DELIVERY = "DELIVERY"


class PayableSource(str, Enum):
    """Origin of a payable line."""

    SYSTEM = "SYSTEM"
    MANUAL = "MANUAL"


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    MISSING_DATA = "MISSING_DATA"
    DRAFT = "DRAFT"
    BILLED = "BILLED"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    VOID = "VOID"


FINALIZED_INVOICE_STATUSES = frozenset(
    {InvoiceStatus.BILLED, InvoiceStatus.PENDING_PAYMENT, InvoiceStatus.PAID}
)


class LineItemType(str, Enum):
    """Invoice line item kind."""

    FREIGHT = "FREIGHT"
    FUEL = "FUEL"
    ACCESSORIAL = "ACCESSORIAL"
    TAX = "TAX"


class RateType(str, Enum):
    """How a contract lane prices a load."""

    PER_MILE = "Per Mile"
    FLAT_RATE = "Flat Rate"
    PER_STOP = "Per Stop"


class FuelSurchargeType(str, Enum):
    """How a contract lane adds fuel surcharge."""

    PERCENTAGE = "PERCENTAGE"
    FLAT = "FLAT"
    DOE_INDEX = "DOE_INDEX"


class PartnershipStatus(str, Enum):
    """Carrier partnership status."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


WILDCARD_TRIP = "*"
