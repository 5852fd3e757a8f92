"""
Cost calculator.

Turns a priced service selection into line items and a total. Pure: no
database, no network, safe to call speculatively before a transaction.
"""

import math
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence, Tuple

from smarttour.booking.details import DestinationFeeBreakdown
from smarttour.booking.states import ItemType
from smarttour.errors import CostValidationError, ValidationError


@dataclass(frozen=True)
class OfferingPrice:
    offering_id: int
    price: float


@dataclass(frozen=True)
class ActivityQuote:
    activity_id: int
    unit_price: float
    destination_id: int
    destination_name: str
    destination_cost_per_day: float = 0.0
    sessions: int = 1


@dataclass(frozen=True)
class TripQuote:
    start_date: date
    end_date: date
    transport: Optional[OfferingPrice] = None
    hotel: Optional[OfferingPrice] = None
    activities: Sequence[ActivityQuote] = field(default_factory=tuple)


@dataclass(frozen=True)
class PricedLine:
    item_type: ItemType
    ref_id: int
    cost: float
    sessions: Optional[int] = None
    nights: Optional[int] = None
    details: Optional[DestinationFeeBreakdown] = None


@dataclass(frozen=True)
class CostBreakdown:
    total: float
    lines: Tuple[PricedLine, ...]


def trip_days(start_date: date, end_date: date) -> int:
    """Whole days between the two dates; at least 1 for billing purposes."""
    return max(1, (end_date - start_date).days)


def _checked(label: str, amount: float) -> float:
    amount = float(amount)
    if math.isnan(amount) or math.isinf(amount) or amount < 0:
        raise CostValidationError(f"Invalid computed cost for {label}")
    return round(amount, 2)


def price_trip(quote: TripQuote) -> CostBreakdown:
    days = trip_days(quote.start_date, quote.end_date)
    lines: List[PricedLine] = []

    if quote.transport is not None:
        cost = _checked(f"transport {quote.transport.offering_id}", quote.transport.price)
        lines.append(PricedLine(ItemType.TRANSPORT, quote.transport.offering_id, cost))

    if quote.hotel is not None:
        cost = _checked(f"hotel {quote.hotel.offering_id}", quote.hotel.price * days)
        lines.append(PricedLine(ItemType.HOTEL, quote.hotel.offering_id, cost, nights=days))

    charged_destinations = set()
    for activity in quote.activities:
        if not isinstance(activity.sessions, int) or isinstance(activity.sessions, bool) or activity.sessions < 1:
            raise ValidationError(
                f"Invalid number of sessions for activity {activity.activity_id}. Must be a positive integer."
            )
        cost = _checked(f"activity {activity.activity_id}", activity.unit_price * activity.sessions)
        lines.append(PricedLine(ItemType.ACTIVITY, activity.activity_id, cost, sessions=activity.sessions))

        if activity.destination_id in charged_destinations:
            continue
        charged_destinations.add(activity.destination_id)
        per_day = _checked(f"destination {activity.destination_id}", activity.destination_cost_per_day)
        if per_day > 0:
            fee = _checked(f"destination {activity.destination_id}", per_day * days)
            lines.append(PricedLine(
                ItemType.DESTINATION_FEE,
                activity.destination_id,
                fee,
                details=DestinationFeeBreakdown(
                    destination_id=activity.destination_id,
                    destination_name=activity.destination_name,
                    cost_per_day=per_day,
                    days=days,
                ),
            ))

    total = _checked("booking total", sum(line.cost for line in lines))
    return CostBreakdown(total=total, lines=tuple(lines))
