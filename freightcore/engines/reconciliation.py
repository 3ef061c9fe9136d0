"""
Shipment Reconciler - pulls external shipments into loads.

This engine:
- Fetches shipments updated inside the lookback window
- Classifies new shipments through the Classification Engine
- Promotes UNMAPPED loads whose shipment now matches a lane
- Skips shipments whose external update marker has not changed
- Resumes chunked runs from an (updated_at, id) watermark
- Buckets per-shipment failures into an operator-facing report

No single shipment can abort the batch. A fetch failure ends the run early
but is reported the same way as any other failure.
"""

import re
from collections import Counter
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select

from freightcore.core.context import system_context
from freightcore.core.errors import ShipmentSourceError
from freightcore.data.models.base import utcnow
from freightcore.data.models.enums import LoadStatus, LoadType
from freightcore.data.models.load import Load, LoadStop
from freightcore.data.models.organization import OrgIntegration
from freightcore.engines.base import BaseEngine
from freightcore.engines.classification import (
    CANCELED_SHIPMENT_STATUSES,
    EXTERNAL_SOURCE,
    ClassificationEngine,
    map_tracking_status,
)
from freightcore.engines.stats import update_load_count
from freightcore.tools.shipment_source import (
    HttpShipmentSource,
    Shipment,
    ShipmentBatch,
    ShipmentCredentials,
    ShipmentSource,
    parse_timestamp,
)

FailureStage = Literal["fetch", "process"]

LONG_ID_PATTERN = re.compile(r"\b\d{6,}\b")
FAILURE_KEY_LENGTH = 160
SAMPLE_REASON_LENGTH = 240
TOP_REASON_COUNT = 3
MAX_SUGGESTED_ACTIONS = 3

ACTION_VERIFY_KEY = "Verify your FourKites API key and account permissions in Configure."
ACTION_REDUCE_LOOKBACK = "Reduce lookback window (for example 24-72 hours) and retry the sync."
ACTION_CONFIRM_CUSTOMERS = "Confirm all referenced customers exist and are active in your organization."
ACTION_REVIEW_MAPPINGS = "Review affected shipment IDs below and verify HCR/Trip lane mappings."
ACTION_RETRY = "Retry sync after updating configuration or mappings."

MISSING_API_KEY_MESSAGE = "Missing FourKites API key in integration credentials"
CURSOR_SEPARATOR = "|"


def extract_error_reason(error: BaseException | str) -> str:
    """First line of an error message."""
    message = error if isinstance(error, str) else str(error)
    first_line = message.strip().split("\n")[0]
    if first_line:
        return first_line
    if isinstance(error, BaseException):
        return type(error).__name__
    return "Unknown error"


def normalize_failure_key(reason: str) -> str:
    """Bucket key for a failure reason: long numeric ids masked, length capped."""
    return LONG_ID_PATTERN.sub("<id>", reason)[:FAILURE_KEY_LENGTH]


def shipment_sort_key(shipment: Shipment) -> tuple[datetime, str]:
    """Stable processing order: oldest update first, ties broken by id."""
    return parse_timestamp(shipment.updated_at) or datetime.min, shipment.id


def encode_cursor(key: tuple[datetime, str]) -> str:
    return f"{key[0].isoformat()}{CURSOR_SEPARATOR}{key[1]}"


def decode_cursor(cursor: Optional[str]) -> Optional[tuple[datetime, str]]:
    """Watermark from a stored cursor, or None if there is none or it is unreadable."""
    if not cursor:
        return None
    stamp, separator, shipment_id = cursor.partition(CURSOR_SEPARATOR)
    if not separator:
        return None
    try:
        return datetime.fromisoformat(stamp), shipment_id
    except ValueError:
        return None


def build_suggested_actions(top_reason: Optional[str]) -> list[str]:
    """Pick operator actions from keywords in the most common failure reason."""
    normalized = (top_reason or "").lower()
    actions: list[str] = []

    if any(word in normalized for word in ("unauthorized", "forbidden", "401", "403")):
        actions.append(ACTION_VERIFY_KEY)
    if "timeout" in normalized or "timed out" in normalized:
        actions.append(ACTION_REDUCE_LOOKBACK)
    if "customer not found" in normalized:
        actions.append(ACTION_CONFIRM_CUSTOMERS)

    actions.append(ACTION_REVIEW_MAPPINGS)
    actions.append(ACTION_RETRY)
    return actions[:MAX_SUGGESTED_ACTIONS]


class FailureSample(BaseModel):
    """One retained failure for diagnostics."""

    shipment_id: Optional[str] = None
    stage: FailureStage
    reason: str


class SyncSummary(BaseModel):
    """Counters and diagnostics for one reconciliation run."""

    org_id: str
    fetched: int = 0
    processed: int = 0
    skipped: int = 0
    quarantined: int = 0
    promoted: int = 0
    errors: int = 0
    failure_counts: dict[str, int] = Field(default_factory=dict)
    failure_samples: list[FailureSample] = Field(default_factory=list)
    report: Optional[str] = None
    next_cursor: Optional[str] = None

    @property
    def status(self) -> str:
        return "partial" if self.errors > 0 else "success"

    def top_reasons(self, limit: int = TOP_REASON_COUNT) -> list[tuple[str, int]]:
        return Counter(self.failure_counts).most_common(limit)

    @property
    def suggested_actions(self) -> list[str]:
        top = self.top_reasons(1)
        return build_suggested_actions(top[0][0] if top else None)


def build_failure_report(summary: SyncSummary, sample_limit: int = 5) -> str:
    """
    Human-readable failure report.

    Sections: counts, top reasons, sample failures, recommended actions.
    """
    sections = [
        f"{summary.errors} shipment{'' if summary.errors == 1 else 's'} failed to process.",
        f"Processed: {summary.processed} | Skipped: {summary.skipped} | "
        f"Quarantined: {summary.quarantined} | Promoted: {summary.promoted}",
    ]

    top_reasons = summary.top_reasons()
    if top_reasons:
        lines = "\n".join(f"- {reason} ({count})" for reason, count in top_reasons)
        sections.append(f"Top failure reasons:\n{lines}")

    if summary.failure_samples:
        lines = []
        for sample in summary.failure_samples[:sample_limit]:
            stage_label = "API fetch" if sample.stage == "fetch" else "shipment processing"
            shipment_label = f"Shipment {sample.shipment_id}" if sample.shipment_id else "Sync job"
            lines.append(f"- {shipment_label} ({stage_label}): {sample.reason}")
        sections.append("Sample failures:\n" + "\n".join(lines))

    actions = summary.suggested_actions
    if actions:
        lines = "\n".join(f"{i}. {action}" for i, action in enumerate(actions, start=1))
        sections.append(f"Recommended actions:\n{lines}")

    return "\n\n".join(sections)


class ShipmentReconciler(BaseEngine):
    """
    Shipment Reconciler for one organization at a time.

    Shipments are fetched outside any unit of work. Each database effect
    afterwards is its own unit of work, so a retry after a partial run
    only redoes what did not commit.
    """

    def __init__(
        self,
        source: Optional[ShipmentSource] = None,
        classifier: Optional[ClassificationEngine] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize the reconciler.

        Args:
            source: Shipment source (defaults to the FourKites HTTP client)
            classifier: Optional classification engine (built from the same settings by default)
        """
        super().__init__(engine_name="reconciliation", **kwargs)
        self.sync_config = self.config_manager.get_sync_config()
        self.chunk_size = int(self.sync_config["chunk_size"])
        self.sample_limit = int(self.sync_config["failure_sample_limit"])
        self.source = source or HttpShipmentSource(config_manager=self.config_manager)
        self.classifier = classifier or ClassificationEngine(
            db=self.db, config_manager=self.config_manager, audit_sink=self.audit_sink
        )

    def _record_failure(
        self,
        summary: SyncSummary,
        stage: FailureStage,
        error: BaseException | str,
        shipment_id: Optional[str] = None,
    ) -> None:
        reason = extract_error_reason(error)
        key = normalize_failure_key(reason)
        summary.failure_counts[key] = summary.failure_counts.get(key, 0) + 1
        if len(summary.failure_samples) < self.sample_limit:
            summary.failure_samples.append(
                FailureSample(shipment_id=shipment_id, stage=stage, reason=reason[:SAMPLE_REASON_LENGTH])
            )
        summary.errors += 1

    def _find_load(self, org_id: str, shipment_id: str) -> Optional[Load]:
        with self.db.session() as session:
            return session.scalars(
                select(Load).where(
                    Load.org_id == org_id,
                    Load.external_source == EXTERNAL_SOURCE,
                    Load.external_load_id == shipment_id,
                )
            ).first()

    def update_existing_load(self, load_id: int, shipment: Shipment) -> None:
        """
        Refresh an existing load from a changed shipment.

        Known stops get fresh appointment windows and location fields. A
        canceled or withdrawn shipment also cancels the load.
        """
        with self.db.session() as session:
            load = session.get(Load, load_id)
            load.last_external_updated_at = shipment.updated_at
            load.weight = Decimal(str(shipment.weight)) if shipment.weight is not None else None
            load.commodity_description = shipment.commodity
            load.tracking_status = map_tracking_status(shipment.status)

            if shipment.status.upper() in CANCELED_SHIPMENT_STATUSES and load.status is not LoadStatus.CANCELED:
                update_load_count(session, load.org_id, load.status, LoadStatus.CANCELED)
                load.status = LoadStatus.CANCELED

            stops = {
                stop.external_stop_id: stop
                for stop in session.scalars(select(LoadStop).where(LoadStop.load_id == load_id)).all()
                if stop.external_stop_id
            }
            for incoming in shipment.stops:
                stop = stops.get(incoming.external_stop_id)
                if stop is None:
                    continue
                appointment = parse_timestamp(incoming.appointment_time)
                if appointment is not None:
                    stop.window_begin = appointment
                    stop.window_end = appointment
                stop.city = incoming.city
                stop.latitude = incoming.latitude
                stop.longitude = incoming.longitude
                stop.time_zone = incoming.time_zone

    def _process_shipment(self, org_id: str, shipment: Shipment, summary: SyncSummary) -> None:
        ctx = system_context(org_id)

        if not shipment.hcr or not shipment.trip:
            self.logger.debug("shipment_skipped_unmatchable", shipment_id=shipment.id)
            summary.skipped += 1
            return

        existing = self._find_load(org_id, shipment.id)

        # Classified loads never need a lane again, only change detection
        if existing is not None and existing.load_type is not LoadType.UNMAPPED:
            if existing.last_external_updated_at == shipment.updated_at:
                summary.skipped += 1
                return
            self.update_existing_load(existing.id, shipment)
            summary.processed += 1
            return

        # Lane telemetry is stamped only when a write follows
        lane = self.classifier.resolve_lane(org_id, shipment.hcr, shipment.trip, record_match=existing is None)

        if lane is None:
            if existing is None:
                self.classifier.import_unmapped_load(ctx, shipment)
                summary.quarantined += 1
            else:
                # Promoted later by a lane backfill or on read
                summary.skipped += 1
            return

        if existing is not None:
            result = self.classifier.promote_unmapped_load(ctx, existing.id, lane.id)
            if result.promoted:
                summary.promoted += 1
            else:
                summary.skipped += 1
            return

        self.classifier.import_load_from_shipment(ctx, shipment, lane)
        summary.processed += 1

    def _record_integration_stats(self, integration_id: int, summary: SyncSummary, ran_at: datetime) -> None:
        with self.db.session() as session:
            integration = session.get(OrgIntegration, integration_id)
            if integration is None:
                self.logger.warning("integration_missing", integration_id=integration_id)
                return
            integration.last_sync_time = ran_at
            integration.sync_cursor = summary.next_cursor
            integration.last_sync_stats = {
                "lastSyncTime": ran_at.isoformat(),
                "lastSyncStatus": summary.status,
                "recordsProcessed": summary.processed,
                "errorMessage": summary.report,
            }

    def process_shipment_batch(
        self,
        org_id: str,
        credentials: Any,
        lookback_hours: int,
        cursor: Optional[str] = None,
        integration_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SyncSummary:
        """
        Reconcile one chunk of recently updated shipments for an organization.

        Shipments are processed in ``(updated_at, id)`` order. The cursor is a
        watermark of the last processed key, so shipments that leave or enter
        the lookback window between runs never shift the resume point.
        Payloads the source could not normalize are reported as per-shipment
        failures once per pass over the window.

        Args:
            org_id: Organization
            credentials: Raw integration credentials (string, JSON or dict)
            lookback_hours: How far back to fetch shipment updates
            cursor: Watermark returned by the previous chunk
            integration_id: Integration record to write the run result to
            now: Run time (naive UTC), defaults to the current time

        Returns:
            SyncSummary with counters, the failure report when anything
            failed, and the cursor for the next chunk (None when done)
        """
        now = now or utcnow()
        summary = SyncSummary(org_id=org_id)

        batch = ShipmentBatch()
        try:
            resolved = ShipmentCredentials.resolve(credentials)
            if resolved is None:
                raise ShipmentSourceError(MISSING_API_KEY_MESSAGE)
            since = now - timedelta(hours=lookback_hours)
            batch = self.source.fetch_shipments(resolved, since)
        except Exception as e:
            self.logger.error("shipment_fetch_failed", org_id=org_id, error=str(e))
            self._record_failure(summary, "fetch", e)

        summary.fetched = len(batch.shipments) + len(batch.rejected)
        ordered = sorted(batch.shipments, key=shipment_sort_key)

        watermark = decode_cursor(cursor)
        if cursor and watermark is None:
            self.logger.warning("sync_cursor_unreadable", org_id=org_id, cursor=cursor)
        pending = ordered
        if watermark is not None:
            pending = [shipment for shipment in ordered if shipment_sort_key(shipment) > watermark]
            if not pending:
                # Window exhausted, start the next pass
                watermark = None
                pending = ordered

        chunk = pending[: self.chunk_size]
        if len(pending) > len(chunk):
            summary.next_cursor = encode_cursor(shipment_sort_key(chunk[-1]))

        if watermark is None:
            for rejected in batch.rejected:
                self._record_failure(
                    summary, "process", f"Malformed shipment payload: {rejected.reason}", rejected.shipment_id
                )

        for shipment in chunk:
            try:
                self._process_shipment(org_id, shipment, summary)
            except Exception as e:
                self.logger.error("shipment_processing_failed", org_id=org_id, shipment_id=shipment.id, error=str(e))
                self._record_failure(summary, "process", e, shipment.id)

        if summary.errors > 0:
            summary.report = build_failure_report(summary, self.sample_limit)

        if integration_id is not None:
            self._record_integration_stats(integration_id, summary, now)

        self.logger.info(
            "sync_complete",
            org_id=org_id,
            fetched=summary.fetched,
            processed=summary.processed,
            quarantined=summary.quarantined,
            promoted=summary.promoted,
            skipped=summary.skipped,
            errors=summary.errors,
            next_cursor=summary.next_cursor,
        )
        return summary

    def execute(self, org_id: str, credentials: Any, lookback_hours: int = 24) -> SyncSummary:
        """Reconcile the first chunk of an organization's recent shipments."""
        return self.process_shipment_batch(org_id, credentials, lookback_hours)
