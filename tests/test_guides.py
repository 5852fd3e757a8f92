import pytest
from sqlmodel import Session, select

from conftest import ADMIN, GUIDE, TOURIST
from smarttour.booking.models import BookingItem
from smarttour.booking.states import GUIDE_SLOT_TYPES
from smarttour.catalog.models import TourGuide
from smarttour.errors import InsufficientResourceError, NotFoundError, StateConflictError
from smarttour.payment.processor import PaymentRequest


@pytest.fixture(name="confirmed_booking")
def confirmed_booking_fixture(services, catalog, make_selection):
    booking = services.bookings.create_booking(TOURIST, make_selection(tourist_full_name="Neema Kileo"))
    services.payments.pay_booking(TOURIST, booking["id"], PaymentRequest(method="external"))
    return booking


def test_assign_guide_rewrites_placeholder(services, catalog, confirmed_booking):
    placeholder_id = confirmed_booking["items"][-1]["id"]

    view = services.guides.assign_guide(confirmed_booking["id"], GUIDE, ADMIN)

    slot = next(i for i in view["items"] if i["item_type"] == "tour_guide")
    assert slot["id"] == placeholder_id
    assert slot["ref_id"] == GUIDE
    assert slot["provider_status"] == "confirmed"
    assert slot["item_name"] == "Amani Mushi"
    assert slot["details"]["kind"] == "guide_assignment"
    assert slot["details"]["destination_name"] == "Serengeti"
    with Session(catalog) as session:
        assert session.get(TourGuide, GUIDE).available is False
        slots = session.exec(select(BookingItem).where(
            BookingItem.booking_id == confirmed_booking["id"], BookingItem.item_type.in_(GUIDE_SLOT_TYPES)
        )).all()
        assert len(slots) == 1


def test_second_assignment_conflicts(services, catalog, confirmed_booking):
    services.guides.assign_guide(confirmed_booking["id"], GUIDE, ADMIN)
    with pytest.raises(StateConflictError):
        services.guides.assign_guide(confirmed_booking["id"], GUIDE, ADMIN)


def test_unconfirmed_booking_conflicts(services, catalog, make_selection):
    booking = services.bookings.create_booking(TOURIST, make_selection(tourist_full_name="Neema Kileo"))
    with pytest.raises(StateConflictError):
        services.guides.assign_guide(booking["id"], GUIDE, ADMIN)


def test_assignment_failures(services, catalog, confirmed_booking):
    with pytest.raises(NotFoundError):
        services.guides.assign_guide(404, GUIDE, ADMIN)
    with pytest.raises(NotFoundError):
        services.guides.assign_guide(confirmed_booking["id"], 702, ADMIN)
    with pytest.raises(NotFoundError):
        services.guides.assign_guide(confirmed_booking["id"], 999, ADMIN)
    with pytest.raises(InsufficientResourceError):
        services.guides.assign_guide(confirmed_booking["id"], 703, ADMIN)


def test_guide_is_not_available_for_another_booking(services, catalog, make_selection, confirmed_booking):
    services.guides.assign_guide(confirmed_booking["id"], GUIDE, ADMIN)
    other = services.bookings.create_booking(
        TOURIST, make_selection(tourist_full_name="Neema Kileo", activity_ids=[], activity_sessions={})
    )
    services.payments.pay_booking(TOURIST, other["id"], PaymentRequest(method="external"))
    with pytest.raises(InsufficientResourceError):
        services.guides.assign_guide(other["id"], GUIDE, ADMIN)


def test_admin_and_guide_views(services, catalog, confirmed_booking):
    unassigned = services.guides.unassigned_bookings()
    assert [b["id"] for b in unassigned] == [confirmed_booking["id"]]
    eligible = services.guides.eligible_guides(confirmed_booking["id"])
    assert [g["user_id"] for g in eligible] == [GUIDE]

    services.guides.assign_guide(confirmed_booking["id"], GUIDE, ADMIN)
    assert services.guides.unassigned_bookings() == []
    assert services.guides.eligible_guides(confirmed_booking["id"]) == []
    assigned = services.guides.assigned_bookings(GUIDE)
    assert [b["id"] for b in assigned] == [confirmed_booking["id"]]
