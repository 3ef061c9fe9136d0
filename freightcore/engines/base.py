"""
Base engine class for all settlement core engines.

Provides common functionality:
- Database and configuration access
- Structured logging
- Fire-and-forget audit writes
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog

from freightcore.core.config import ConfigManager, get_config
from freightcore.core.context import RequestContext
from freightcore.core.database import Database
from freightcore.tools.audit import AuditEntry, AuditSink, StructlogAuditSink


class BaseEngine(ABC):
    """
    Base class for all settlement core engines.

    Provides:
    - Database unit-of-work access
    - Configuration loading
    - Audit trail writes that never block the caller
    """

    def __init__(
        self,
        engine_name: str,
        db: Optional[Database] = None,
        config_manager: Optional[ConfigManager] = None,
        logger: Optional[structlog.BoundLogger] = None,
        audit_sink: Optional[AuditSink] = None,
    ) -> None:
        """
        Initialize the base engine.

        Args:
            engine_name: Name of the engine (e.g., "pay_calculation", "reconciliation")
            db: Optional database (defaults to DATABASE_URL)
            config_manager: Optional config manager (defaults to global instance)
            logger: Optional structured logger
            audit_sink: Optional audit destination (defaults to structlog events)
        """
        self.engine_name = engine_name
        self.config_manager = config_manager or get_config()
        self.db = db or Database()
        self.logger = logger or structlog.get_logger(engine_name=engine_name)
        self.audit_sink = audit_sink or StructlogAuditSink()

    def audit(
        self,
        ctx: RequestContext,
        entity_type: str,
        entity_id: Any,
        action: str,
        description: str,
        changed_fields: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Record an audit entry.

        Args:
            ctx: Caller identity
            entity_type: Audited entity kind (e.g., "loadPayable")
            entity_id: Audited entity id
            action: Short action name (e.g., "updated")
            description: Human-readable description
            changed_fields: Optional field diff
        """
        entry = AuditEntry(
            org_id=ctx.org_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            performed_by=ctx.user_id,
            performed_by_name=ctx.user_name,
            description=description,
            changed_fields=changed_fields,
        )
        try:
            self.audit_sink.log_action(entry)
        except Exception as e:
            self.logger.warning("audit_write_failed", action=action, entity_id=str(entity_id), error=str(e))

    @abstractmethod
    def execute(self, *args: Any, **kwargs: Any) -> Any:
        """
        Execute the engine's primary function.

        Each engine must implement this method with its specific logic.

        Returns:
            Engine-specific output
        """
        pass

    def __repr__(self) -> str:
        """String representation of the engine."""
        return f"{self.__class__.__name__}(engine_name='{self.engine_name}')"
