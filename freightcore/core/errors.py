"""
Exception hierarchy for the settlement core.

Only hard failures are raised. Missing pay profiles, unmatched lanes and
rule-level data gaps are reported as warnings on result models instead.
"""


class FreightCoreError(Exception):
    """Base exception for settlement core errors"""
    pass


class ConfigurationError(FreightCoreError):
    """Raised when the configuration file cannot be loaded or parsed"""
    pass


class NotFoundError(FreightCoreError):
    """Raised when a referenced record does not exist"""

    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvariantViolation(FreightCoreError):
    """Raised when a direct mutation would break a data invariant"""
    pass


class ShipmentSourceError(FreightCoreError):
    """Raised when the external shipment source cannot be read"""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
