"""
Classification Engine - lane matching and load billing classification.

This engine:
- Matches an (org, HCR, trip) against contract lanes, exact lane first,
  then the HCR's wildcard lane
- Imports external shipments as CONTRACT, SPOT or UNMAPPED loads
- Promotes UNMAPPED loads once a lane exists (reconciliation, lane
  backfill, or lazily on read)
- Voids the invoices of an unmapped group that should never be billed

Classification only moves forward: UNMAPPED -> CONTRACT or SPOT, and a
reviewed SPOT load -> CONTRACT. Every promotion re-reads the load and is a
no-op if it has already moved on.
"""

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from freightcore.core.context import RequestContext
from freightcore.core.errors import NotFoundError
from freightcore.data.models.base import to_money, utcnow
from freightcore.data.models.billing import Invoice
from freightcore.data.models.enums import (
    WILDCARD_TRIP,
    FuelSurchargeType,
    InvoiceStatus,
    LoadStatus,
    LoadType,
    RateType,
    StopType,
    TrackingStatus,
)
from freightcore.data.models.lanes import ContractLane
from freightcore.data.models.load import Load, LoadStop
from freightcore.engines.base import BaseEngine
from freightcore.engines.invoicing import (
    LIVE_INVOICE_STATUSES,
    build_line_items,
    calculate_invoice_amounts,
    store_snapshot,
)
from freightcore.engines.stats import update_invoice_count, update_load_count
from freightcore.tools.shipment_source import Shipment, parse_timestamp

EXTERNAL_SOURCE = "FourKites"

TRACKING_STATUS_MAP: dict[str, TrackingStatus] = {
    "PLANNED": TrackingStatus.PENDING,
    "IN_TRANSIT": TrackingStatus.IN_TRANSIT,
    "ARRIVED": TrackingStatus.IN_TRANSIT,
    "DELIVERED": TrackingStatus.COMPLETED,
    "COMPLETED": TrackingStatus.COMPLETED,
    "CANCELLED": TrackingStatus.CANCELED,
    "CANCELED": TrackingStatus.CANCELED,
    "WITHDRAWN": TrackingStatus.CANCELED,
    "DELAYED": TrackingStatus.DELAYED,
}

CANCELED_SHIPMENT_STATUSES = frozenset({"CANCELED", "CANCELLED", "WITHDRAWN"})


def map_tracking_status(status: Optional[str]) -> TrackingStatus:
    """Provider shipment status to load tracking status. Unknown values are Pending."""
    return TRACKING_STATUS_MAP.get((status or "").upper(), TrackingStatus.PENDING)


def missing_lane_reason(hcr: Optional[str], trip: Optional[str]) -> str:
    return f"No contract lane found for HCR: {hcr}, Trip: {trip}"


def find_lane(session: Session, org_id: str, hcr: str, trip: str) -> Optional[ContractLane]:
    """
    Look up the lane for an HCR/trip without recording a match.

    An exact trip wins over the HCR's wildcard lane. Inactive and deleted
    lanes are ignored.
    """
    base = select(ContractLane).where(
        ContractLane.org_id == org_id,
        ContractLane.hcr == hcr,
        ContractLane.is_active.is_(True),
        ContractLane.is_deleted.is_(False),
    )
    exact = session.scalars(base.where(ContractLane.trip_number == trip).order_by(ContractLane.id)).first()
    if exact is not None:
        return exact
    if trip == WILDCARD_TRIP:
        return None
    return session.scalars(
        base.where(ContractLane.trip_number == WILDCARD_TRIP).order_by(ContractLane.id)
    ).first()


def find_exact_lane(session: Session, org_id: str, hcr: str, trip: str) -> Optional[ContractLane]:
    return session.scalars(
        select(ContractLane)
        .where(
            ContractLane.org_id == org_id,
            ContractLane.hcr == hcr,
            ContractLane.trip_number == trip,
            ContractLane.is_active.is_(True),
            ContractLane.is_deleted.is_(False),
        )
        .order_by(ContractLane.id)
    ).first()


def record_lane_match(lane: ContractLane) -> None:
    """Stamp import match telemetry on a lane."""
    lane.last_import_match_at = utcnow()
    lane.import_match_count = (lane.import_match_count or 0) + 1


def imported_miles_from_meters(meters: Optional[float], factor: float) -> Optional[Decimal]:
    """Provider distance in meters to miles, rounded to 2 places."""
    if not meters:
        return None
    return to_money(Decimal(str(meters)) * Decimal(str(factor)))


def _stop_type(raw: Optional[str], index: int) -> StopType:
    value = (raw or "").upper()
    if value in StopType.__members__:
        return StopType[value]
    return StopType.PICKUP if index == 0 else StopType.DELIVERY


def add_shipment_stops(session: Session, load: Load, shipment: Shipment) -> int:
    """Create the load's stops from the shipment. Each stop's window is its appointment time."""
    for index, stop in enumerate(shipment.stops):
        appointment = parse_timestamp(stop.appointment_time)
        session.add(
            LoadStop(
                org_id=load.org_id,
                load_id=load.id,
                external_stop_id=stop.external_stop_id,
                sequence_number=stop.sequence if stop.sequence is not None else index + 1,
                stop_type=_stop_type(stop.stop_type, index),
                city=stop.city,
                state=stop.state,
                postal_code=stop.postal_code,
                latitude=stop.latitude,
                longitude=stop.longitude,
                time_zone=stop.time_zone,
                window_begin=appointment,
                window_end=appointment,
            )
        )
    return len(shipment.stops)


class LaneDefinition(BaseModel):
    """Contract terms for a lane created from an unmapped group."""

    hcr: str
    trip_number: str
    contract_name: str
    rate: Decimal
    rate_type: RateType
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    currency: str = "USD"
    contract_period_start: Optional[date] = None
    contract_period_end: Optional[date] = None
    miles: Optional[Decimal] = None
    fuel_surcharge_type: Optional[FuelSurchargeType] = None
    fuel_surcharge_value: Optional[Decimal] = None
    stop_off_rate: Optional[Decimal] = None
    included_stops: Optional[int] = None
    notes: Optional[str] = None
    # Price the group as extra trips on the HCR's wildcard lane
    is_wildcard: bool = False


class PromotionResult(BaseModel):
    """Outcome of one promotion attempt."""

    load_id: int
    promoted: bool
    new_type: Optional[LoadType] = None
    lane_id: Optional[int] = None
    total_amount: Decimal = Decimal("0.00")
    reason: Optional[str] = None


class BackfillLoad(BaseModel):
    load_id: int
    internal_id: Optional[str] = None
    order_number: Optional[str] = None
    created_at: datetime
    status: LoadStatus


class BackfillPreview(BaseModel):
    """UNMAPPED loads a lane would promote, and the revenue already on their invoices."""

    affected_load_ids: list[int] = Field(default_factory=list)
    affected_loads: list[BackfillLoad] = Field(default_factory=list)
    count: int = 0
    estimated_revenue: Decimal = Decimal("0.00")


class BackfillResult(BaseModel):
    """Outcome of creating a lane and backfilling its unmapped group."""

    lane_id: int
    customer_id: Optional[str] = None
    loads_updated: int = 0
    total_revenue: Decimal = Decimal("0.00")
    failed_load_ids: list[int] = Field(default_factory=list)


class VoidGroupResult(BaseModel):
    voided_count: int = 0
    customer_id: Optional[str] = None


def _period_bounds(
    start: Optional[date], end: Optional[date]
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive contract period as created_at bounds. The end date covers the whole day."""
    lower = datetime.combine(start, time.min) if start else None
    upper = datetime.combine(end + timedelta(days=1), time.min) if end else None
    return lower, upper


def unmapped_group_loads(
    session: Session,
    org_id: str,
    hcr: str,
    trip: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> list[Load]:
    """UNMAPPED loads of one HCR/trip group, optionally limited to a created-at period."""
    query = select(Load).where(
        Load.org_id == org_id,
        Load.parsed_hcr == hcr,
        Load.parsed_trip_number == trip,
        Load.load_type == LoadType.UNMAPPED,
    )
    lower, upper = _period_bounds(start, end)
    if lower is not None:
        query = query.where(Load.created_at >= lower)
    if upper is not None:
        query = query.where(Load.created_at < upper)
    return list(session.scalars(query.order_by(Load.id)).all())


def _invoice_for_load(session: Session, load_id: int) -> Optional[Invoice]:
    return session.scalars(select(Invoice).where(Invoice.load_id == load_id)).first()


def price_invoice(session: Session, invoice: Invoice, load: Load, lane: ContractLane) -> Decimal:
    """
    Link an unbilled invoice to a lane and store its amounts and line items.

    MISSING_DATA invoices move to DRAFT. Returns the invoice total.
    """
    old_status = invoice.status
    amounts = calculate_invoice_amounts(load.effective_miles, load.stop_count, lane, invoice.tax_amount)
    items = build_line_items(load, lane, amounts)

    invoice.contract_lane_id = lane.id
    invoice.customer_id = lane.customer_id or invoice.customer_id
    invoice.missing_data_reason = None
    store_snapshot(session, invoice, amounts, items)

    if old_status is InvoiceStatus.MISSING_DATA:
        invoice.status = InvoiceStatus.DRAFT
        update_invoice_count(session, invoice.org_id, old_status, InvoiceStatus.DRAFT)
    return amounts.total_amount


class ClassificationEngine(BaseEngine):
    """
    Classification Engine for imports and promotions.

    Each public method is one unit of work. Workflows spanning several
    (reconciliation, backfill) call them in sequence.
    """

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the classification engine."""
        super().__init__(engine_name="classification", **kwargs)
        self.meters_to_miles = float(self.config_manager.get_invoicing_config()["meters_to_miles"])
        self.default_currency = self.config_manager.get_invoicing_config()["default_currency"]

    def resolve_lane(self, org_id: str, hcr: str, trip: str, record_match: bool = True) -> Optional[ContractLane]:
        """
        Match an HCR/trip to a contract lane and record the match on the lane.

        Args:
            org_id: Organization
            hcr: Highway contract route
            trip: Trip number
            record_match: Stamp match telemetry on the lane. Callers whose
                follow-up write stamps it itself (promotion) pass False.

        Returns:
            The exact lane, else the HCR's wildcard lane, else None
        """
        with self.db.session() as session:
            lane = find_lane(session, org_id, hcr, trip)
            if lane is None:
                self.logger.info("lane_not_found", org_id=org_id, hcr=hcr, trip=trip)
                return None
            if record_match:
                record_lane_match(lane)

        self.logger.info(
            "lane_matched",
            org_id=org_id,
            hcr=hcr,
            trip=trip,
            lane_id=lane.id,
            wildcard=lane.is_wildcard,
        )
        return lane

    def _new_load(self, ctx: RequestContext, shipment: Shipment) -> Load:
        reference = shipment.load_number or shipment.id
        return Load(
            org_id=ctx.org_id,
            internal_id=f"FK-{reference}",
            order_number=reference,
            external_source=EXTERNAL_SOURCE,
            external_load_id=shipment.id,
            last_external_updated_at=shipment.updated_at,
            status=LoadStatus.OPEN,
            tracking_status=map_tracking_status(shipment.status),
            is_tracking=True,
            parsed_hcr=shipment.hcr,
            parsed_trip_number=shipment.trip,
            commodity_description=shipment.commodity,
            weight=Decimal(str(shipment.weight)) if shipment.weight is not None else None,
            stop_count=len(shipment.stops),
            imported_miles=imported_miles_from_meters(shipment.total_distance_in_meters, self.meters_to_miles),
            created_by=ctx.user_id,
        )

    def import_load_from_shipment(self, ctx: RequestContext, shipment: Shipment, lane: ContractLane) -> Load:
        """
        Create a load, its stops and a DRAFT invoice for a shipment that matched a lane.

        A wildcard match makes the load SPOT and flags it for review.
        """
        with self.db.session() as session:
            load = self._new_load(ctx, shipment)
            load.customer_id = lane.customer_id
            load.customer_name = lane.customer_name
            load.load_type = LoadType.SPOT if lane.is_wildcard else LoadType.CONTRACT
            load.requires_manual_review = lane.is_wildcard
            load.contract_miles = lane.miles
            load.effective_miles = lane.miles if lane.miles is not None else load.imported_miles
            session.add(load)
            session.flush()
            update_load_count(session, ctx.org_id, None, LoadStatus.OPEN)

            add_shipment_stops(session, load, shipment)

            invoice = Invoice(
                org_id=ctx.org_id,
                load_id=load.id,
                customer_id=lane.customer_id,
                contract_lane_id=lane.id,
                status=InvoiceStatus.DRAFT,
                currency=lane.currency or self.default_currency,
                created_by=ctx.user_id,
            )
            session.add(invoice)
            session.flush()
            amounts = calculate_invoice_amounts(load.effective_miles, load.stop_count, lane)
            store_snapshot(session, invoice, amounts, build_line_items(load, lane, amounts))
            update_invoice_count(session, ctx.org_id, None, InvoiceStatus.DRAFT)

        self.logger.info(
            "load_imported",
            load_id=load.id,
            shipment_id=shipment.id,
            load_type=load.load_type.value,
            lane_id=lane.id,
        )
        return load

    def import_unmapped_load(self, ctx: RequestContext, shipment: Shipment) -> Load:
        """
        Quarantine a shipment no lane matches.

        The load is UNMAPPED, tracked and flagged for review. Its invoice is
        MISSING_DATA with no lane, so it prices at zero until promoted.
        """
        with self.db.session() as session:
            load = self._new_load(ctx, shipment)
            load.customer_name = shipment.shipper_name
            load.load_type = LoadType.UNMAPPED
            load.requires_manual_review = True
            load.effective_miles = load.imported_miles
            session.add(load)
            session.flush()
            update_load_count(session, ctx.org_id, None, LoadStatus.OPEN)

            add_shipment_stops(session, load, shipment)

            session.add(
                Invoice(
                    org_id=ctx.org_id,
                    load_id=load.id,
                    status=InvoiceStatus.MISSING_DATA,
                    currency=self.default_currency,
                    missing_data_reason=missing_lane_reason(shipment.hcr, shipment.trip),
                    created_by=ctx.user_id,
                )
            )
            update_invoice_count(session, ctx.org_id, None, InvoiceStatus.MISSING_DATA)

        self.logger.info(
            "load_quarantined",
            load_id=load.id,
            shipment_id=shipment.id,
            hcr=shipment.hcr,
            trip=shipment.trip,
        )
        return load

    def _promote(self, session: Session, ctx: RequestContext, load_id: int, lane: ContractLane) -> PromotionResult:
        load = session.get(Load, load_id)
        if load is None or load.org_id != ctx.org_id:
            raise NotFoundError("Load", load_id)
        if load.load_type is not LoadType.UNMAPPED:
            return PromotionResult(
                load_id=load_id,
                promoted=False,
                reason=f"Load is {load.load_type.value}, not UNMAPPED",
            )

        new_type = LoadType.SPOT if lane.is_wildcard else LoadType.CONTRACT
        load.load_type = new_type
        load.requires_manual_review = lane.is_wildcard
        if lane.customer_id is not None:
            load.customer_id = lane.customer_id
        if lane.customer_name is not None:
            load.customer_name = lane.customer_name
        if lane.miles is not None:
            load.contract_miles = lane.miles
            load.effective_miles = lane.miles
        elif load.effective_miles is None:
            load.effective_miles = load.imported_miles

        total = Decimal("0.00")
        invoice = _invoice_for_load(session, load_id)
        if invoice is None:
            invoice = Invoice(
                org_id=load.org_id,
                load_id=load_id,
                status=InvoiceStatus.DRAFT,
                currency=lane.currency or self.default_currency,
                created_by=ctx.user_id,
            )
            session.add(invoice)
            session.flush()
            update_invoice_count(session, load.org_id, None, InvoiceStatus.DRAFT)
        if invoice.status in LIVE_INVOICE_STATUSES:
            total = price_invoice(session, invoice, load, lane)

        record_lane_match(lane)
        return PromotionResult(
            load_id=load_id,
            promoted=True,
            new_type=new_type,
            lane_id=lane.id,
            total_amount=total,
        )

    def promote_unmapped_load(self, ctx: RequestContext, load_id: int, lane_id: int) -> PromotionResult:
        """
        Promote an UNMAPPED load onto a lane.

        Moves the load to CONTRACT (or SPOT for a wildcard lane), moves its
        invoice MISSING_DATA -> DRAFT with stored amounts and line items, and
        stamps the lane's match telemetry. A load that is no longer UNMAPPED
        is left alone.

        Raises:
            NotFoundError: If the load or lane is not in the caller's organization
        """
        with self.db.session() as session:
            lane = session.get(ContractLane, lane_id)
            if lane is None or lane.org_id != ctx.org_id:
                raise NotFoundError("Contract lane", lane_id)
            result = self._promote(session, ctx, load_id, lane)

        if result.promoted:
            self.logger.info(
                "load_promoted",
                load_id=load_id,
                new_type=result.new_type.value,
                lane_id=lane_id,
                total_amount=str(result.total_amount),
            )
            self.audit(
                ctx,
                "load",
                load_id,
                "promoted",
                f"Promoted load from UNMAPPED to {result.new_type.value}",
            )
        return result

    def check_and_promote_load(self, ctx: RequestContext, load_id: int) -> PromotionResult:
        """
        Re-check a load that needs review when it is read.

        UNMAPPED loads are promoted onto any lane that now matches. SPOT
        loads flagged for review become CONTRACT once an exact lane exists.
        Everything else is left as is.
        """
        with self.db.session() as session:
            load = session.get(Load, load_id)
            if load is None or load.org_id != ctx.org_id:
                raise NotFoundError("Load", load_id)
            if not load.parsed_hcr or not load.parsed_trip_number:
                return PromotionResult(load_id=load_id, promoted=False, reason="Load has no HCR/trip")

            if load.load_type is LoadType.UNMAPPED:
                lane = find_lane(session, load.org_id, load.parsed_hcr, load.parsed_trip_number)
                if lane is None:
                    return PromotionResult(load_id=load_id, promoted=False, reason="No matching lane")
                result = self._promote(session, ctx, load_id, lane)

            elif load.load_type is LoadType.SPOT and load.requires_manual_review:
                lane = find_exact_lane(session, load.org_id, load.parsed_hcr, load.parsed_trip_number)
                if lane is None:
                    return PromotionResult(load_id=load_id, promoted=False, reason="No exact lane")
                load.load_type = LoadType.CONTRACT
                load.requires_manual_review = False
                if lane.miles is not None:
                    load.contract_miles = lane.miles
                    load.effective_miles = lane.miles
                total = Decimal("0.00")
                invoice = _invoice_for_load(session, load_id)
                if invoice is not None and invoice.status in LIVE_INVOICE_STATUSES:
                    total = price_invoice(session, invoice, load, lane)
                record_lane_match(lane)
                result = PromotionResult(
                    load_id=load_id,
                    promoted=True,
                    new_type=LoadType.CONTRACT,
                    lane_id=lane.id,
                    total_amount=total,
                )

            else:
                return PromotionResult(load_id=load_id, promoted=False, reason="Load does not need review")

        if result.promoted:
            self.logger.info("load_promoted_on_read", load_id=load_id, new_type=result.new_type.value)
            self.audit(
                ctx,
                "load",
                load_id,
                "promoted",
                f"Promoted load to {result.new_type.value} on review",
            )
        return result

    def preview_backfill_impact(
        self,
        org_id: str,
        hcr: str,
        trip: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> BackfillPreview:
        """List the UNMAPPED loads a backfill for this group would promote. Writes nothing."""
        with self.db.session() as session:
            loads = unmapped_group_loads(session, org_id, hcr, trip, start, end)
            estimated = Decimal("0.00")
            for load in loads:
                invoice = _invoice_for_load(session, load.id)
                if invoice is not None:
                    estimated += to_money(invoice.subtotal)

        return BackfillPreview(
            affected_load_ids=[load.id for load in loads],
            affected_loads=[
                BackfillLoad(
                    load_id=load.id,
                    internal_id=load.internal_id,
                    order_number=load.order_number,
                    created_at=load.created_at,
                    status=load.status,
                )
                for load in loads
            ],
            count=len(loads),
            estimated_revenue=estimated,
        )

    def _create_or_reuse_lane(self, ctx: RequestContext, definition: LaneDefinition) -> int:
        trip = WILDCARD_TRIP if definition.is_wildcard else definition.trip_number
        with self.db.session() as session:
            if definition.is_wildcard:
                existing = find_exact_lane(session, ctx.org_id, definition.hcr, WILDCARD_TRIP)
                if existing is not None:
                    return existing.id

            lane = ContractLane(
                org_id=ctx.org_id,
                customer_id=definition.customer_id,
                customer_name=definition.customer_name,
                contract_name=definition.contract_name,
                contract_period_start=definition.contract_period_start,
                contract_period_end=definition.contract_period_end,
                hcr=definition.hcr,
                trip_number=trip,
                notes=definition.notes,
                miles=definition.miles,
                rate=definition.rate,
                rate_type=definition.rate_type,
                currency=definition.currency,
                fuel_surcharge_type=definition.fuel_surcharge_type,
                fuel_surcharge_value=definition.fuel_surcharge_value,
                stop_off_rate=definition.stop_off_rate,
                included_stops=definition.included_stops,
                created_by=ctx.user_id,
            )
            session.add(lane)
            session.flush()
            lane_id = lane.id

        self.audit(
            ctx,
            "contractLane",
            lane_id,
            "created",
            f"Created lane {definition.contract_name} for {definition.hcr}/{trip}",
        )
        return lane_id

    def create_lane_and_backfill(
        self,
        ctx: RequestContext,
        definition: LaneDefinition,
        selected_load_ids: Optional[list[int]] = None,
    ) -> BackfillResult:
        """
        Create a lane for an unmapped group and promote the group's loads.

        A wildcard definition reuses the HCR's wildcard lane if there is one.
        Each load is promoted in its own unit of work; a failing load is
        logged and skipped.

        Args:
            ctx: Caller identity
            definition: Lane terms; hcr/trip_number name the unmapped group
            selected_load_ids: Optional subset of the group to promote

        Returns:
            BackfillResult
        """
        lane_id = self._create_or_reuse_lane(ctx, definition)

        with self.db.session() as session:
            candidates = unmapped_group_loads(
                session,
                ctx.org_id,
                definition.hcr,
                definition.trip_number,
                definition.contract_period_start,
                definition.contract_period_end,
            )
            load_ids = [load.id for load in candidates]
        if selected_load_ids is not None:
            selected = set(selected_load_ids)
            load_ids = [load_id for load_id in load_ids if load_id in selected]

        result = BackfillResult(lane_id=lane_id, customer_id=definition.customer_id)
        for load_id in load_ids:
            try:
                promotion = self.promote_unmapped_load(ctx, load_id, lane_id)
            except Exception as e:
                self.logger.error("backfill_load_failed", load_id=load_id, lane_id=lane_id, error=str(e))
                result.failed_load_ids.append(load_id)
                continue
            if promotion.promoted:
                result.loads_updated += 1
                result.total_revenue += promotion.total_amount

        self.logger.info(
            "lane_backfill_complete",
            lane_id=lane_id,
            candidates=len(load_ids),
            loads_updated=result.loads_updated,
            failed=len(result.failed_load_ids),
            total_revenue=str(result.total_revenue),
        )
        return result

    def void_unmapped_group(
        self,
        ctx: RequestContext,
        hcr: str,
        trip: str,
        reason: str,
        customer_id: Optional[str] = None,
        customer_name: Optional[str] = None,
    ) -> VoidGroupResult:
        """
        Void the MISSING_DATA invoices of an unmapped group that should never be billed.

        Load types are left unchanged. An optional customer is recorded on
        the loads and invoices.
        """
        result = VoidGroupResult(customer_id=customer_id)
        with self.db.session() as session:
            load_ids = [load.id for load in unmapped_group_loads(session, ctx.org_id, hcr, trip)]

        for load_id in load_ids:
            try:
                with self.db.session() as session:
                    load = session.get(Load, load_id)
                    if load is None or load.load_type is not LoadType.UNMAPPED:
                        continue
                    if customer_id is not None:
                        load.customer_id = customer_id
                        load.customer_name = customer_name

                    invoice = _invoice_for_load(session, load_id)
                    if invoice is None or invoice.status is not InvoiceStatus.MISSING_DATA:
                        continue
                    invoice.status = InvoiceStatus.VOID
                    invoice.void_reason = reason
                    invoice.customer_id = customer_id or invoice.customer_id
                    update_invoice_count(session, ctx.org_id, InvoiceStatus.MISSING_DATA, InvoiceStatus.VOID)
                    result.voided_count += 1
            except Exception as e:
                self.logger.error("void_invoice_failed", load_id=load_id, error=str(e))

        self.logger.info("unmapped_group_voided", hcr=hcr, trip=trip, voided=result.voided_count)
        self.audit(
            ctx,
            "unmappedGroup",
            f"{hcr}/{trip}",
            "voided",
            f"Voided {result.voided_count} invoice{'' if result.voided_count == 1 else 's'}: {reason}",
        )
        return result

    def execute(self, ctx: RequestContext, load_id: int) -> PromotionResult:
        """Lazily re-check one load."""
        return self.check_and_promote_load(ctx, load_id)
