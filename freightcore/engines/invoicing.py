"""
Invoice Engine - customer-facing invoice amounts and lifecycle.

This engine:
- Computes invoice amounts from the load and its contract lane while the
  invoice is unbilled
- Returns the frozen snapshot once the invoice is finalized
- Synthesizes line items on read, and stores them when finalizing
- Moves invoices through their lifecycle and keeps the counters in step
"""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from freightcore.core.context import RequestContext
from freightcore.core.errors import InvariantViolation, NotFoundError
from freightcore.data.models.base import to_money, utcnow
from freightcore.data.models.billing import Invoice, InvoiceLineItem
from freightcore.data.models.enums import (
    FINALIZED_INVOICE_STATUSES,
    FuelSurchargeType,
    InvoiceStatus,
    LineItemType,
    RateType,
)
from freightcore.data.models.lanes import ContractLane
from freightcore.data.models.load import Load
from freightcore.engines.base import BaseEngine
from freightcore.engines.stats import update_invoice_count

DEFAULT_INCLUDED_STOPS = 2

# Statuses whose amounts are recomputed on every read
LIVE_INVOICE_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.MISSING_DATA})

ALLOWED_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.MISSING_DATA: frozenset({InvoiceStatus.DRAFT, InvoiceStatus.VOID}),
    InvoiceStatus.DRAFT: frozenset(
        {InvoiceStatus.BILLED, InvoiceStatus.PENDING_PAYMENT, InvoiceStatus.PAID, InvoiceStatus.VOID}
    ),
    InvoiceStatus.BILLED: frozenset(
        {InvoiceStatus.PENDING_PAYMENT, InvoiceStatus.PAID, InvoiceStatus.VOID}
    ),
    InvoiceStatus.PENDING_PAYMENT: frozenset(
        {InvoiceStatus.BILLED, InvoiceStatus.PAID, InvoiceStatus.VOID}
    ),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.VOID: frozenset(),
}


class InvoiceBreakdown(BaseModel):
    """How the subtotal and accessorials were derived."""

    base_rate: Decimal = Decimal("0.00")
    rate_type: str = "N/A"
    miles_used: Optional[Decimal] = None
    stop_count: int = 0
    extra_stops: int = 0
    stop_off_rate: Decimal = Decimal("0")


class InvoiceAmounts(BaseModel):
    """Invoice totals, rounded to cents."""

    subtotal: Decimal = Decimal("0.00")
    fuel_surcharge: Decimal = Decimal("0.00")
    accessorials_total: Decimal = Decimal("0.00")
    tax_amount: Decimal = Decimal("0.00")
    total_amount: Decimal = Decimal("0.00")
    breakdown: InvoiceBreakdown = Field(default_factory=InvoiceBreakdown)


class LineItem(BaseModel):
    """Invoice line item, stored or synthesized."""

    id: Optional[int] = None
    type: LineItemType
    description: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal


def _dec(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))


def calculate_invoice_amounts(
    effective_miles: Optional[Decimal],
    stop_count: Optional[int],
    lane: ContractLane,
    tax_amount: Optional[Decimal] = None,
) -> InvoiceAmounts:
    """
    Price a load against a contract lane.

    Args:
        effective_miles: Billing miles of the load
        stop_count: Number of stops on the load
        lane: Contract lane supplying the rate
        tax_amount: Pass-through tax, added to the total as-is

    Returns:
        InvoiceAmounts with a breakdown
    """
    stops = stop_count or 0
    rate = _dec(lane.rate)

    base = Decimal("0")
    miles_used: Optional[Decimal] = None
    if lane.rate_type is RateType.PER_MILE:
        if effective_miles:
            base = rate * _dec(effective_miles)
            miles_used = _dec(effective_miles)
    elif lane.rate_type is RateType.FLAT_RATE:
        base = rate
    elif lane.rate_type is RateType.PER_STOP:
        base = rate * stops

    included_stops = lane.included_stops or DEFAULT_INCLUDED_STOPS
    extra_stops = max(0, stops - included_stops)
    stop_off_rate = _dec(lane.stop_off_rate)
    accessorials = extra_stops * stop_off_rate

    fuel = Decimal("0")
    fuel_value = _dec(lane.fuel_surcharge_value)
    if lane.fuel_surcharge_type is FuelSurchargeType.PERCENTAGE and fuel_value:
        fuel = base * (fuel_value / Decimal("100"))
    elif lane.fuel_surcharge_type is FuelSurchargeType.FLAT and fuel_value:
        fuel = fuel_value
    # DOE_INDEX needs an external index feed and contributes nothing

    subtotal = to_money(base)
    fuel_surcharge = to_money(fuel)
    accessorials_total = to_money(accessorials)
    tax = to_money(tax_amount)

    return InvoiceAmounts(
        subtotal=subtotal,
        fuel_surcharge=fuel_surcharge,
        accessorials_total=accessorials_total,
        tax_amount=tax,
        total_amount=subtotal + fuel_surcharge + accessorials_total + tax,
        breakdown=InvoiceBreakdown(
            base_rate=subtotal,
            rate_type=lane.rate_type.value,
            miles_used=miles_used,
            stop_count=stops,
            extra_stops=extra_stops,
            stop_off_rate=stop_off_rate,
        ),
    )


def build_line_items(load: Load, lane: ContractLane, amounts: InvoiceAmounts) -> list[LineItem]:
    """Derive FREIGHT, FUEL and ACCESSORIAL lines from computed amounts."""
    items: list[LineItem] = []

    if amounts.subtotal > 0:
        hcr = load.parsed_hcr or "Unknown HCR"
        trip = load.parsed_trip_number or "Unknown Trip"
        if lane.is_wildcard:
            description = f"Extra Trips - {hcr} {trip}"
        else:
            description = lane.contract_name or f"{hcr} - {trip}"
        items.append(
            LineItem(
                type=LineItemType.FREIGHT,
                description=description,
                quantity=Decimal("1"),
                rate=amounts.subtotal,
                amount=amounts.subtotal,
            )
        )

    if amounts.fuel_surcharge > 0:
        fuel_type = lane.fuel_surcharge_type.value if lane.fuel_surcharge_type else "N/A"
        items.append(
            LineItem(
                type=LineItemType.FUEL,
                description=f"Fuel Surcharge ({fuel_type})",
                quantity=Decimal("1"),
                rate=amounts.fuel_surcharge,
                amount=amounts.fuel_surcharge,
            )
        )

    if amounts.accessorials_total > 0:
        extra_stops = amounts.breakdown.extra_stops
        items.append(
            LineItem(
                type=LineItemType.ACCESSORIAL,
                description=f"Stop-off charges ({extra_stops} extra stops)",
                quantity=Decimal(extra_stops),
                rate=_dec(lane.stop_off_rate),
                amount=amounts.accessorials_total,
            )
        )

    if amounts.tax_amount > 0:
        items.append(
            LineItem(
                type=LineItemType.TAX,
                description="Tax",
                quantity=Decimal("1"),
                rate=amounts.tax_amount,
                amount=amounts.tax_amount,
            )
        )

    return items


def stored_amounts(invoice: Invoice) -> InvoiceAmounts:
    return InvoiceAmounts(
        subtotal=to_money(invoice.subtotal),
        fuel_surcharge=to_money(invoice.fuel_surcharge),
        accessorials_total=to_money(invoice.accessorials_total),
        tax_amount=to_money(invoice.tax_amount),
        total_amount=to_money(invoice.total_amount),
    )


def _live_inputs(session: Session, invoice: Invoice) -> tuple[Optional[Load], Optional[ContractLane]]:
    load = session.get(Load, invoice.load_id)
    lane = session.get(ContractLane, invoice.contract_lane_id) if invoice.contract_lane_id else None
    return load, lane


def amounts_for_invoice(session: Session, invoice: Invoice) -> InvoiceAmounts:
    """
    Current amounts of an invoice.

    Finalized and VOID invoices return their stored amounts untouched.
    DRAFT and MISSING_DATA invoices are priced fresh, and are all zero
    when no lane or load is linked.
    """
    if invoice.status not in LIVE_INVOICE_STATUSES:
        return stored_amounts(invoice)

    load, lane = _live_inputs(session, invoice)
    if load is None or lane is None:
        return InvoiceAmounts()
    return calculate_invoice_amounts(load.effective_miles, load.stop_count, lane, invoice.tax_amount)


def line_items_for_invoice(session: Session, invoice: Invoice) -> list[LineItem]:
    """Stored line items for non-live invoices, synthesized ones otherwise."""
    if invoice.status not in LIVE_INVOICE_STATUSES:
        rows = session.scalars(
            select(InvoiceLineItem)
            .where(InvoiceLineItem.invoice_id == invoice.id)
            .order_by(InvoiceLineItem.id)
        ).all()
        return [
            LineItem(
                id=row.id,
                type=row.type,
                description=row.description,
                quantity=row.quantity,
                rate=row.rate,
                amount=row.amount,
            )
            for row in rows
        ]

    load, lane = _live_inputs(session, invoice)
    if load is None or lane is None:
        return []
    amounts = calculate_invoice_amounts(load.effective_miles, load.stop_count, lane, invoice.tax_amount)
    return build_line_items(load, lane, amounts)


def store_snapshot(session: Session, invoice: Invoice, amounts: InvoiceAmounts, items: list[LineItem]) -> None:
    """Write amounts onto the invoice and replace its stored line items."""
    invoice.subtotal = amounts.subtotal
    invoice.fuel_surcharge = amounts.fuel_surcharge
    invoice.accessorials_total = amounts.accessorials_total
    invoice.tax_amount = amounts.tax_amount
    invoice.total_amount = amounts.total_amount

    session.execute(delete(InvoiceLineItem).where(InvoiceLineItem.invoice_id == invoice.id))
    for item in items:
        session.add(
            InvoiceLineItem(
                invoice_id=invoice.id,
                type=item.type,
                description=item.description,
                quantity=item.quantity,
                rate=item.rate,
                amount=item.amount,
            )
        )


class BulkStatusResult(BaseModel):
    """Outcome of a bulk status change."""

    success: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)


class InvoiceEngine(BaseEngine):
    """Invoice Engine for amounts, line items and status changes."""

    def __init__(self, **kwargs: Any) -> None:
        """Initialize the invoice engine."""
        super().__init__(engine_name="invoicing", **kwargs)

    def _get_invoice(self, session: Session, invoice_id: int, org_id: Optional[str] = None) -> Invoice:
        invoice = session.get(Invoice, invoice_id)
        if invoice is None or (org_id is not None and invoice.org_id != org_id):
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    def get_invoice_amounts(self, invoice_id: int) -> InvoiceAmounts:
        """
        Amounts for an invoice: computed while unbilled, frozen once finalized.

        Raises:
            NotFoundError: If the invoice does not exist
        """
        with self.db.session() as session:
            invoice = self._get_invoice(session, invoice_id)
            return amounts_for_invoice(session, invoice)

    def get_invoice_for_load(self, load_id: int) -> Optional[Invoice]:
        with self.db.session() as session:
            return session.scalars(select(Invoice).where(Invoice.load_id == load_id)).first()

    def get_line_items(self, invoice_id: int) -> list[LineItem]:
        """Line items for an invoice (stored once finalized, synthesized before)."""
        with self.db.session() as session:
            invoice = self._get_invoice(session, invoice_id)
            return line_items_for_invoice(session, invoice)

    def update_invoice_status(
        self,
        ctx: RequestContext,
        invoice_id: int,
        new_status: InvoiceStatus,
        reason: Optional[str] = None,
    ) -> Invoice:
        """
        Move an invoice to a new lifecycle status.

        The first move into BILLED, PENDING_PAYMENT or PAID snapshots the
        computed amounts and line items onto the invoice.

        Args:
            ctx: Caller identity
            invoice_id: Invoice to update
            new_status: Target status
            reason: Optional note, stored as the void reason when voiding

        Returns:
            The updated invoice

        Raises:
            NotFoundError: If the invoice is not in the caller's organization
            InvariantViolation: If the transition is not allowed
        """
        with self.db.session() as session:
            invoice = self._get_invoice(session, invoice_id, ctx.org_id)
            old_status = invoice.status

            if old_status is new_status:
                return invoice

            if old_status is InvoiceStatus.PAID and new_status is InvoiceStatus.VOID:
                raise InvariantViolation("PAID invoices cannot be voided")
            if new_status not in ALLOWED_TRANSITIONS[old_status]:
                raise InvariantViolation(
                    f"Cannot move invoice {invoice_id} from {old_status.value} to {new_status.value}"
                )
            if new_status is InvoiceStatus.DRAFT and invoice.contract_lane_id is None:
                raise InvariantViolation("Invoice has no contract lane; promote the load instead")

            if new_status in FINALIZED_INVOICE_STATUSES and old_status not in FINALIZED_INVOICE_STATUSES:
                amounts = amounts_for_invoice(session, invoice)
                items = line_items_for_invoice(session, invoice)
                store_snapshot(session, invoice, amounts, items)
                self.logger.info(
                    "invoice_snapshot_stored",
                    invoice_id=invoice_id,
                    total_amount=str(amounts.total_amount),
                    line_items=len(items),
                )

            invoice.status = new_status
            if new_status is InvoiceStatus.VOID:
                invoice.void_reason = reason
            update_invoice_count(session, invoice.org_id, old_status, new_status)

        self.logger.info(
            "invoice_status_updated",
            invoice_id=invoice_id,
            old_status=old_status.value,
            new_status=new_status.value,
        )
        self.audit(
            ctx,
            "invoice",
            invoice_id,
            "status_changed",
            f"Invoice status changed from {old_status.value} to {new_status.value}",
            {"status": {"old": old_status.value, "new": new_status.value}},
        )
        return invoice

    def bulk_update_status(
        self,
        ctx: RequestContext,
        invoice_ids: list[int],
        new_status: InvoiceStatus,
        reason: Optional[str] = None,
    ) -> BulkStatusResult:
        """Apply update_invoice_status to each invoice independently."""
        result = BulkStatusResult()
        for invoice_id in invoice_ids:
            try:
                self.update_invoice_status(ctx, invoice_id, new_status, reason)
                result.success += 1
            except (NotFoundError, InvariantViolation) as e:
                result.failed += 1
                result.errors.append(f"Invoice {invoice_id}: {e}")
        return result

    def execute(self, invoice_id: int) -> InvoiceAmounts:
        """Return the amounts for an invoice."""
        return self.get_invoice_amounts(invoice_id)
