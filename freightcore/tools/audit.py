"""
Audit trail sink.

Audit writes are fire-and-forget: a failing sink is logged and never blocks
the workflow that produced the entry.
"""

from typing import Any, Optional, Protocol

import structlog
from pydantic import BaseModel


class AuditEntry(BaseModel):
    """One audited action."""

    org_id: str
    entity_type: str
    entity_id: str
    action: str
    performed_by: str
    performed_by_name: Optional[str] = None
    description: str
    changed_fields: Optional[dict[str, Any]] = None


class AuditSink(Protocol):
    """Destination for audit entries."""

    def log_action(self, entry: AuditEntry) -> None: ...


class StructlogAuditSink:
    """Writes each audit entry as one structured log event."""

    def __init__(self, logger: Optional[structlog.BoundLogger] = None) -> None:
        self.logger = logger or structlog.get_logger("audit")

    def log_action(self, entry: AuditEntry) -> None:
        self.logger.info("audit_action", **entry.model_dump(exclude_none=True))


class MemoryAuditSink:
    """Keeps audit entries in a list. Used by tests and dry runs."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    def log_action(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def actions(self) -> list[str]:
        return [entry.action for entry in self.entries]
