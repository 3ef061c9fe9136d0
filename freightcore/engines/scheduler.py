"""
Sync Scheduler - decides which integrations are due and runs them.

Each enabled integration runs when its interval has elapsed since its last
sync. A run resumes from the integration's stored cursor; the reconciler
writes the next cursor and the run stats back to the integration record.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select

from freightcore.data.models.base import utcnow
from freightcore.data.models.organization import OrgIntegration
from freightcore.engines.base import BaseEngine
from freightcore.engines.reconciliation import ShipmentReconciler, SyncSummary


class DispatchReport(BaseModel):
    """What one scheduler tick did."""

    ran: list[SyncSummary] = Field(default_factory=list)
    not_due: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)


def minutes_since(last: Optional[datetime], now: datetime) -> Optional[float]:
    if last is None:
        return None
    return (now - last).total_seconds() / 60


class SyncScheduler(BaseEngine):
    """Sync Scheduler for shipment integrations."""

    def __init__(self, reconciler: Optional[ShipmentReconciler] = None, **kwargs: Any) -> None:
        """
        Initialize the scheduler.

        Args:
            reconciler: Optional reconciler (built from the same settings by default)
        """
        super().__init__(engine_name="scheduler", **kwargs)
        sync_config = self.config_manager.get_sync_config()
        self.default_interval = int(sync_config["default_interval_minutes"])
        self.default_lookback = int(sync_config["default_lookback_hours"])
        self.reconciler = reconciler or ShipmentReconciler(
            db=self.db, config_manager=self.config_manager, audit_sink=self.audit_sink
        )

    def is_due(self, integration: OrgIntegration, now: datetime) -> bool:
        """True if the integration has never synced or its interval has elapsed."""
        elapsed = minutes_since(integration.last_sync_time, now)
        interval = integration.interval_minutes or self.default_interval
        return elapsed is None or elapsed >= interval

    def dispatch(self, now: Optional[datetime] = None) -> DispatchReport:
        """
        Run every enabled integration that is due.

        Args:
            now: Tick time (naive UTC), defaults to the current time

        Returns:
            DispatchReport
        """
        now = now or utcnow()
        report = DispatchReport()

        with self.db.session() as session:
            integrations = session.scalars(
                select(OrgIntegration)
                .where(OrgIntegration.is_enabled.is_(True))
                .order_by(OrgIntegration.id)
            ).all()

        for integration in integrations:
            if not self.is_due(integration, now):
                report.not_due.append(integration.org_id)
                continue
            try:
                summary = self.reconciler.process_shipment_batch(
                    integration.org_id,
                    integration.credentials,
                    integration.lookback_hours or self.default_lookback,
                    cursor=integration.sync_cursor,
                    integration_id=integration.id,
                    now=now,
                )
            except Exception as e:
                self.logger.error("scheduled_sync_failed", org_id=integration.org_id, error=str(e))
                report.failed[integration.org_id] = str(e)
                continue
            report.ran.append(summary)

        self.logger.info(
            "sync_dispatch_complete",
            ran=len(report.ran),
            not_due=len(report.not_due),
            failed=len(report.failed),
        )
        return report

    def execute(self, now: Optional[datetime] = None) -> DispatchReport:
        """Run one scheduler tick."""
        return self.dispatch(now)
