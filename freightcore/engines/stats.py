"""
Stats Engine - per-organization load and invoice counters.

This engine:
- Maintains counters incrementally inside the same unit of work as the
  status change that moved them
- Recomputes counters from source rows on a schedule and logs any drift
- Isolates per-organization failures during a full recalculation
"""

from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from freightcore.data.models.base import utcnow
from freightcore.data.models.billing import Invoice
from freightcore.data.models.enums import InvoiceStatus, LoadStatus
from freightcore.data.models.load import Load
from freightcore.data.models.organization import OrganizationStats
from freightcore.engines.base import BaseEngine


def empty_load_counts() -> dict[str, int]:
    return {status.value: 0 for status in LoadStatus}


def empty_invoice_counts() -> dict[str, int]:
    return {status.value: 0 for status in InvoiceStatus}


def get_or_create_stats(session: Session, org_id: str) -> OrganizationStats:
    """Fetch the organization's stats row, creating a zeroed one if needed."""
    stats = session.scalars(
        select(OrganizationStats).where(OrganizationStats.org_id == org_id)
    ).first()
    if stats is None:
        stats = OrganizationStats(
            org_id=org_id,
            load_counts=empty_load_counts(),
            invoice_counts=empty_invoice_counts(),
            updated_at=utcnow(),
        )
        session.add(stats)
        session.flush()
    return stats


def _shift(
    counts: dict[str, int], old_status: Optional[str], new_status: Optional[str], amount: int
) -> dict[str, int]:
    shifted = dict(counts)
    if old_status and old_status in shifted:
        shifted[old_status] = max(0, shifted[old_status] - amount)
    if new_status and new_status in shifted:
        shifted[new_status] = shifted[new_status] + amount
    return shifted


def update_load_count(
    session: Session,
    org_id: str,
    old_status: Optional[LoadStatus],
    new_status: Optional[LoadStatus],
    amount: int = 1,
) -> None:
    """
    Move ``amount`` loads from ``old_status`` to ``new_status``.

    Pass ``old_status=None`` for a new load and ``new_status=None`` for a
    deleted one. Counters never drop below zero.
    """
    if old_status is new_status:
        return
    stats = get_or_create_stats(session, org_id)
    # Reassign so the JSON column is flagged dirty
    stats.load_counts = _shift(
        stats.load_counts,
        old_status.value if old_status else None,
        new_status.value if new_status else None,
        amount,
    )
    stats.updated_at = utcnow()


def update_invoice_count(
    session: Session,
    org_id: str,
    old_status: Optional[InvoiceStatus],
    new_status: Optional[InvoiceStatus],
    amount: int = 1,
) -> None:
    """Move ``amount`` invoices between statuses. See update_load_count."""
    if old_status is new_status:
        return
    stats = get_or_create_stats(session, org_id)
    stats.invoice_counts = _shift(
        stats.invoice_counts,
        old_status.value if old_status else None,
        new_status.value if new_status else None,
        amount,
    )
    stats.updated_at = utcnow()


class StatsRecalculation(BaseModel):
    """Outcome of recomputing one organization's counters."""

    org_id: str
    load_counts: dict[str, int]
    invoice_counts: dict[str, int]
    total_loads: int
    total_invoices: int
    drift_detected: bool
    load_drift: dict[str, int] = Field(default_factory=dict)
    invoice_drift: dict[str, int] = Field(default_factory=dict)


class AllOrgsRecalculation(BaseModel):
    """Outcome of a full recalculation pass."""

    results: list[StatsRecalculation] = Field(default_factory=list)
    failed_orgs: dict[str, str] = Field(default_factory=dict)

    @property
    def orgs_with_drift(self) -> list[str]:
        return [r.org_id for r in self.results if r.drift_detected]


def _drift(stored: dict[str, int], actual: dict[str, int]) -> dict[str, int]:
    """Per-status difference (actual - stored), nonzero entries only."""
    keys = set(stored) | set(actual)
    diff = {k: actual.get(k, 0) - stored.get(k, 0) for k in keys}
    return {k: v for k, v in sorted(diff.items()) if v}


class StatsEngine(BaseEngine):
    """
    Stats Engine for aggregate counter repair.

    The incremental counters can drift under partial failures; this engine
    is the repair path.
    """

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the stats engine."""
        super().__init__(engine_name="stats", **kwargs)
        self.chunk_size = int(self.config_manager.get_stats_config()["chunk_size"])

    def _count_loads(self, org_id: str) -> dict[str, int]:
        counts = empty_load_counts()
        last_id = 0
        while True:
            with self.db.session() as session:
                rows = session.execute(
                    select(Load.id, Load.status)
                    .where(Load.org_id == org_id, Load.id > last_id)
                    .order_by(Load.id)
                    .limit(self.chunk_size)
                ).all()
            if not rows:
                return counts
            for _, status in rows:
                counts[status.value] = counts.get(status.value, 0) + 1
            last_id = rows[-1][0]

    def _count_invoices(self, org_id: str) -> dict[str, int]:
        counts = empty_invoice_counts()
        last_id = 0
        while True:
            with self.db.session() as session:
                rows = session.execute(
                    select(Invoice.id, Invoice.status)
                    .where(Invoice.org_id == org_id, Invoice.id > last_id)
                    .order_by(Invoice.id)
                    .limit(self.chunk_size)
                ).all()
            if not rows:
                return counts
            for _, status in rows:
                counts[status.value] = counts.get(status.value, 0) + 1
            last_id = rows[-1][0]

    def recalculate_org_stats(self, org_id: str) -> StatsRecalculation:
        """
        Recompute an organization's counters from its loads and invoices.

        Args:
            org_id: Organization to repair

        Returns:
            StatsRecalculation with the fresh counts and any drift found
        """
        load_counts = self._count_loads(org_id)
        invoice_counts = self._count_invoices(org_id)

        with self.db.session() as session:
            stats = get_or_create_stats(session, org_id)
            load_drift = _drift(stats.load_counts or {}, load_counts)
            invoice_drift = _drift(stats.invoice_counts or {}, invoice_counts)

            stats.load_counts = load_counts
            stats.invoice_counts = invoice_counts
            stats.last_recalculated = utcnow()
            stats.updated_at = utcnow()

        drift_detected = bool(load_drift or invoice_drift)
        if drift_detected:
            self.logger.warning(
                "stats_drift_detected",
                org_id=org_id,
                load_drift=load_drift,
                invoice_drift=invoice_drift,
            )

        result = StatsRecalculation(
            org_id=org_id,
            load_counts=load_counts,
            invoice_counts=invoice_counts,
            total_loads=sum(load_counts.values()),
            total_invoices=sum(invoice_counts.values()),
            drift_detected=drift_detected,
            load_drift=load_drift,
            invoice_drift=invoice_drift,
        )
        self.logger.info(
            "stats_recalculated",
            org_id=org_id,
            loads=result.total_loads,
            invoices=result.total_invoices,
        )
        return result

    def _known_org_ids(self) -> list[str]:
        with self.db.session() as session:
            org_ids = set(session.scalars(select(OrganizationStats.org_id)).all())
            org_ids.update(session.scalars(select(Load.org_id).distinct()).all())
        return sorted(org_ids)

    def recalculate_all_orgs(self) -> AllOrgsRecalculation:
        """Recompute counters for every known organization, one at a time."""
        outcome = AllOrgsRecalculation()
        for org_id in self._known_org_ids():
            try:
                outcome.results.append(self.recalculate_org_stats(org_id))
            except Exception as e:
                self.logger.error("stats_recalculation_failed", org_id=org_id, error=str(e))
                outcome.failed_orgs[org_id] = str(e)

        self.logger.info(
            "stats_recalculation_complete",
            orgs=len(outcome.results),
            failed=len(outcome.failed_orgs),
            drifted=len(outcome.orgs_with_drift),
        )
        return outcome

    def get_stats(self, org_id: str) -> dict[str, dict[str, int]]:
        """Current (incremental) counters for an organization."""
        with self.db.session() as session:
            stats = get_or_create_stats(session, org_id)
            return {
                "load_counts": dict(stats.load_counts),
                "invoice_counts": dict(stats.invoice_counts),
            }

    def execute(self) -> AllOrgsRecalculation:
        """Run the scheduled repair pass."""
        return self.recalculate_all_orgs()
