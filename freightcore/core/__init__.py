"""
Core infrastructure for the settlement core.

This module provides:
- Config: Configuration management
- Database: Engine and unit-of-work scopes
- Errors: Exception hierarchy
"""

from .config import ConfigManager, get_config
from .context import RequestContext
from .errors import (
    ConfigurationError,
    FreightCoreError,
    InvariantViolation,
    NotFoundError,
    ShipmentSourceError,
)

__all__ = [
    "ConfigManager",
    "get_config",
    "RequestContext",
    "FreightCoreError",
    "ConfigurationError",
    "NotFoundError",
    "InvariantViolation",
    "ShipmentSourceError",
]
