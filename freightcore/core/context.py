"""
Caller identity passed into every mutation.
"""

from pydantic import BaseModel


class RequestContext(BaseModel):
    """Organization and user performing an operation."""

    org_id: str
    user_id: str
    user_name: str | None = None


SYSTEM_SYNC_CONTEXT_USER = "shipment-sync"


def system_context(org_id: str) -> RequestContext:
    """Context used by scheduled jobs acting on behalf of an organization."""
    return RequestContext(org_id=org_id, user_id=SYSTEM_SYNC_CONTEXT_USER, user_name="Shipment Sync")
