"""
Rule Evaluator - turns one rate rule into a pay quantity and amount.

This module:
- Selects the stops that belong to a dispatch leg
- Derives leg duration from actual or scheduled stop times
- Evaluates each trigger kind with its own quantity semantics
- Applies the minimum threshold gate, then the maximum cap

Everything here is pure: no database access and no side effects.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, assert_never

from pydantic import BaseModel

from freightcore.data.models.enums import TriggerEvent
from freightcore.data.models.load import DispatchLeg, Load, LoadStop
from freightcore.data.models.rates import RateRule

ZERO = Decimal("0")
HOURS = Decimal("0.01")


class RuleEvaluation(BaseModel):
    """Result of evaluating one rule against one leg."""

    quantity: Decimal = ZERO
    amount: Decimal = ZERO
    warning: Optional[str] = None


class DurationResult(BaseModel):
    """Leg duration in hours, or a warning explaining why it is zero."""

    hours: Decimal = ZERO
    warning: Optional[str] = None


def get_stops_for_leg(
    all_stops: list[LoadStop],
    start_stop_id: Optional[int],
    end_stop_id: Optional[int],
) -> list[LoadStop]:
    """
    Return the load's stops covered by a leg, ordered by sequence.

    A leg covers every stop whose sequence lies between its start and end
    stops, inclusive. An unknown start stop means "from the first stop" and
    an unknown end stop means "through the last stop".
    """
    ordered = sorted(all_stops, key=lambda s: s.sequence_number)
    start_seq = next((s.sequence_number for s in ordered if s.id == start_stop_id), 0)
    end_seq: float = next(
        (s.sequence_number for s in ordered if s.id == end_stop_id), float("inf")
    )
    return [s for s in ordered if start_seq <= s.sequence_number <= end_seq]


def calculate_hourly_duration(leg_stops: list[LoadStop]) -> DurationResult:
    """
    Hours between the first and last stop of a leg.

    The start prefers the first stop's check-in and falls back to its window
    begin. The end prefers the last stop's check-out and falls back to its
    window end.
    """
    if len(leg_stops) < 2:
        return DurationResult(warning="Insufficient stops for duration calculation")

    ordered = sorted(leg_stops, key=lambda s: s.sequence_number)
    first, last = ordered[0], ordered[-1]

    start_time = first.checked_in_at or first.window_begin
    end_time = last.checked_out_at or last.window_end

    if start_time is None or end_time is None:
        return DurationResult(warning="Missing stop times for hourly calculation")

    seconds = Decimal(str((end_time - start_time).total_seconds()))
    hours = seconds / Decimal("3600")
    if hours <= 0:
        return DurationResult(warning="Invalid time range (end before start)")

    return DurationResult(hours=hours.quantize(HOURS, rounding=ROUND_HALF_UP))


def _dec(value: Optional[Decimal | int | float]) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


def evaluate_rule(
    rule: RateRule,
    leg: DispatchLeg,
    load: Load,
    leg_stops: list[LoadStop],
    invoice_total: Optional[Decimal] = None,
) -> RuleEvaluation:
    """
    Evaluate a single rate rule.

    Args:
        rule: Rule to evaluate
        leg: Leg being paid
        load: Load the leg belongs to
        leg_stops: Stops covered by the leg (see get_stops_for_leg)
        invoice_total: Customer invoice total, used by PCT_OF_LOAD

    Returns:
        RuleEvaluation with quantity, amount and an optional data warning
    """
    rate = _dec(rule.rate_amount)
    quantity = ZERO
    amount = ZERO
    warning: Optional[str] = None

    trigger = rule.trigger_event
    if trigger is TriggerEvent.MILE_LOADED:
        quantity = _dec(leg.leg_loaded_miles)
        amount = quantity * rate
    elif trigger is TriggerEvent.MILE_EMPTY:
        quantity = _dec(leg.leg_empty_miles)
        amount = quantity * rate
    elif trigger is TriggerEvent.TIME_DURATION:
        duration = calculate_hourly_duration(leg_stops)
        quantity = duration.hours
        amount = quantity * rate
        warning = duration.warning
    elif trigger is TriggerEvent.TIME_WAITING:
        dwell_minutes = sum((s.dwell_minutes or 0) for s in leg_stops)
        quantity = Decimal(dwell_minutes) / Decimal("60")
        amount = quantity * rate
        if quantity == 0:
            warning = "No dwell time recorded for detention calculation"
    elif trigger is TriggerEvent.COUNT_STOPS:
        quantity = Decimal(len(leg_stops))
        amount = quantity * rate
    elif trigger is TriggerEvent.FLAT_LOAD or trigger is TriggerEvent.FLAT_LEG:
        quantity = Decimal("1")
        amount = rate
    elif trigger is TriggerEvent.ATTR_HAZMAT:
        if load.is_hazmat:
            quantity = Decimal("1")
            amount = rate
    elif trigger is TriggerEvent.ATTR_TARP:
        if load.requires_tarp:
            quantity = Decimal("1")
            amount = rate
    elif trigger is TriggerEvent.PCT_OF_LOAD:
        if invoice_total and invoice_total > 0:
            quantity = _dec(invoice_total)
            amount = quantity * (rate / Decimal("100"))
        else:
            warning = "No invoice total available for percentage calculation"
    else:
        assert_never(trigger)

    # No partial credit below the threshold
    if rule.min_threshold and quantity < _dec(rule.min_threshold):
        return RuleEvaluation()

    if rule.max_cap and amount > _dec(rule.max_cap):
        amount = _dec(rule.max_cap)

    return RuleEvaluation(quantity=quantity, amount=amount, warning=warning)
