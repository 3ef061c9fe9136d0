"""
SQLAlchemy data models for the settlement core.

Core models:
- Load, LoadStop, DispatchLeg: Shipments and their transport segments
- RateProfile, RateRule, ProfileAssignment: Driver and carrier pay policies
- ContractLane: Negotiated customer pricing per HCR/trip
- Invoice, InvoiceLineItem: Customer billing
- LoadPayable: Driver and carrier compensation lines
- CarrierPartnership, OrganizationStats, OrgIntegration: Organization records
"""

from .base import Base, to_money, utcnow
from .billing import Invoice, InvoiceLineItem, LoadPayable
from .lanes import ContractLane
from .load import DispatchLeg, Load, LoadStop
from .organization import CarrierPartnership, OrganizationStats, OrgIntegration
from .rates import ProfileAssignment, RateProfile, RateRule

__all__ = [
    "Base",
    "to_money",
    "utcnow",
    "Load",
    "LoadStop",
    "DispatchLeg",
    "RateProfile",
    "RateRule",
    "ProfileAssignment",
    "ContractLane",
    "Invoice",
    "InvoiceLineItem",
    "LoadPayable",
    "CarrierPartnership",
    "OrganizationStats",
    "OrgIntegration",
]
