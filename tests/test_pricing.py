from datetime import date

import pytest

from smarttour.booking.pricing import ActivityQuote, OfferingPrice, TripQuote, price_trip, trip_days
from smarttour.booking.states import ItemType
from smarttour.errors import CostValidationError, ValidationError

JUNE_1 = date(2025, 6, 1)
JUNE_4 = date(2025, 6, 4)


def _activity(activity_id, price, destination_id=1, per_day=10.0, sessions=1):
    return ActivityQuote(
        activity_id=activity_id,
        unit_price=price,
        destination_id=destination_id,
        destination_name=f"Destination {destination_id}",
        destination_cost_per_day=per_day,
        sessions=sessions,
    )


def test_hotel_is_priced_per_night():
    breakdown = price_trip(TripQuote(JUNE_1, JUNE_4, hotel=OfferingPrice(7, 50.0)))
    assert breakdown.total == 150.0
    (line,) = breakdown.lines
    assert line.item_type == ItemType.HOTEL
    assert line.ref_id == 7
    assert line.nights == 3


def test_transport_is_flat():
    breakdown = price_trip(TripQuote(JUNE_1, JUNE_4, transport=OfferingPrice(3, 120.0)))
    assert breakdown.total == 120.0


def test_destination_fee_charged_once_per_destination():
    quote = TripQuote(JUNE_1, JUNE_4, activities=(_activity(1, 20.0, sessions=3), _activity(2, 5.0)))
    breakdown = price_trip(quote)

    activity_costs = [l.cost for l in breakdown.lines if l.item_type == ItemType.ACTIVITY]
    fees = [l for l in breakdown.lines if l.item_type == ItemType.DESTINATION_FEE]
    assert activity_costs == [60.0, 5.0]
    assert len(fees) == 1
    assert fees[0].cost == 30.0
    assert fees[0].details.days == 3
    assert breakdown.total == 95.0


def test_fee_per_distinct_destination_and_skipped_when_free():
    quote = TripQuote(JUNE_1, JUNE_4, activities=(
        _activity(1, 20.0, destination_id=1, per_day=10.0),
        _activity(2, 20.0, destination_id=2, per_day=4.0),
        _activity(3, 20.0, destination_id=3, per_day=0.0),
    ))
    fees = {l.ref_id: l.cost for l in price_trip(quote).lines if l.item_type == ItemType.DESTINATION_FEE}
    assert fees == {1: 30.0, 2: 12.0}


def test_total_equals_sum_of_lines():
    quote = TripQuote(
        JUNE_1, JUNE_4,
        transport=OfferingPrice(1, 100.0),
        hotel=OfferingPrice(1, 33.33),
        activities=(_activity(1, 19.99, sessions=2),),
    )
    breakdown = price_trip(quote)
    assert breakdown.total == round(sum(l.cost for l in breakdown.lines), 2)
    assert breakdown.total >= 0


def test_same_day_trip_bills_one_day():
    assert trip_days(JUNE_1, JUNE_1) == 1
    breakdown = price_trip(TripQuote(JUNE_1, JUNE_1, hotel=OfferingPrice(1, 50.0)))
    assert breakdown.total == 50.0


@pytest.mark.parametrize("sessions", [0, -1, 1.5, True])
def test_invalid_sessions_rejected(sessions):
    with pytest.raises(ValidationError):
        price_trip(TripQuote(JUNE_1, JUNE_4, activities=(_activity(1, 20.0, sessions=sessions),)))


@pytest.mark.parametrize("price", [-1.0, float("nan"), float("inf")])
def test_invalid_prices_raise_cost_validation(price):
    with pytest.raises(CostValidationError):
        price_trip(TripQuote(JUNE_1, JUNE_4, transport=OfferingPrice(1, price)))
