"""
Integrations with external collaborators.

This module provides:
- Shipment source: FourKites shipments API client
- Audit sink: Fire-and-forget audit trail
"""

from .audit import AuditEntry, AuditSink, MemoryAuditSink, StructlogAuditSink
from .shipment_source import (
    HttpShipmentSource,
    Shipment,
    ShipmentCredentials,
    ShipmentSource,
    ShipmentStop,
    map_shipment_fields,
)

__all__ = [
    "AuditEntry",
    "AuditSink",
    "MemoryAuditSink",
    "StructlogAuditSink",
    "HttpShipmentSource",
    "Shipment",
    "ShipmentCredentials",
    "ShipmentSource",
    "ShipmentStop",
    "map_shipment_fields",
]
