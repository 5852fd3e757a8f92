import pytest
from sqlmodel import Session

from conftest import HOTEL_MANAGER, TOURIST, TRAVEL_AGENT
from smarttour.booking.models import Booking
from smarttour.booking.schemas import RoomConfirmationRequest, TicketAssignmentRequest
from smarttour.booking.states import ItemType, ProviderStatus, ensure_item_transition
from smarttour.errors import NotFoundError, StateConflictError, ValidationError
from smarttour.payment.processor import PaymentRequest


@pytest.fixture(name="booking")
def booking_fixture(services, catalog, make_selection):
    return services.bookings.create_booking(TOURIST, make_selection(tourist_full_name="Neema Kileo"))


def _item_id(booking, item_type):
    return next(i["id"] for i in booking["items"] if i["item_type"] == item_type)


def test_confirm_room(services, catalog, booking):
    item_id = _item_id(booking, "hotel")
    item = services.fulfillment.confirm_room(
        HOTEL_MANAGER, item_id, RoomConfirmationRequest(room_number="12B", room_type="Deluxe")
    )
    assert item["provider_status"] == "confirmed"
    assert item["details"]["kind"] == "room_confirmation"
    assert item["details"]["room_number"] == "12B"
    assert item["details"]["confirmed_by"] == f"hotel_manager:{HOTEL_MANAGER}"

    # booking-level state is untouched
    with Session(catalog) as session:
        assert session.get(Booking, booking["id"]).status.value == "pending_payment"

    with pytest.raises(NotFoundError):
        services.fulfillment.confirm_room(
            HOTEL_MANAGER, item_id, RoomConfirmationRequest(room_number="12B", room_type="Deluxe")
        )


def test_confirm_room_requires_ownership_and_category(services, booking):
    request = RoomConfirmationRequest(room_number="1", room_type="Single")
    with pytest.raises(NotFoundError):
        services.fulfillment.confirm_room(602, _item_id(booking, "hotel"), request)
    with pytest.raises(NotFoundError):
        services.fulfillment.confirm_room(HOTEL_MANAGER, _item_id(booking, "transport"), request)


def test_confirm_room_requires_room_details(services, booking):
    with pytest.raises(ValidationError):
        services.fulfillment.confirm_room(
            HOTEL_MANAGER, _item_id(booking, "hotel"), RoomConfirmationRequest(room_number="4", room_type="  ")
        )


def test_assign_ticket(services, booking):
    item_id = _item_id(booking, "transport")
    with pytest.raises(ValidationError):
        services.fulfillment.assign_ticket(TRAVEL_AGENT, item_id, TicketAssignmentRequest(ticket_pdf_url=" "))
    with pytest.raises(NotFoundError):
        services.fulfillment.assign_ticket(502, item_id, TicketAssignmentRequest(ticket_pdf_url="/t.pdf"))

    item = services.fulfillment.assign_ticket(
        TRAVEL_AGENT, item_id, TicketAssignmentRequest(ticket_pdf_url="/tickets/42.pdf", seat="3A")
    )
    assert item["provider_status"] == "confirmed"
    assert item["details"]["ticket_pdf_url"] == "/tickets/42.pdf"
    assert item["details"]["seat"] == "3A"


def test_dashboards_list_items_of_confirmed_bookings(services, booking):
    assert services.fulfillment.pending_items(ItemType.HOTEL, HOTEL_MANAGER) == []

    services.payments.pay_booking(TOURIST, booking["id"], PaymentRequest(method="external"))
    pending = services.fulfillment.pending_items(ItemType.HOTEL, HOTEL_MANAGER)
    assert [i["id"] for i in pending] == [_item_id(booking, "hotel")]
    assert pending[0]["tourist_full_name"] == "Neema Kileo"
    assert services.fulfillment.pending_items(ItemType.HOTEL, 602) == []

    services.fulfillment.confirm_room(
        HOTEL_MANAGER, pending[0]["id"], RoomConfirmationRequest(room_number="7", room_type="Twin")
    )
    assert services.fulfillment.pending_items(ItemType.HOTEL, HOTEL_MANAGER) == []
    completed = services.fulfillment.completed_items(ItemType.HOTEL, HOTEL_MANAGER)
    assert completed[0]["details"]["room_type"] == "Twin"

    transport = services.fulfillment.pending_items(ItemType.TRANSPORT, TRAVEL_AGENT)
    assert transport[0]["item_name"] == "Arusha to Serengeti"


def test_only_hotel_transport_and_guide_items_confirm():
    ensure_item_transition(ItemType.HOTEL, ProviderStatus.PENDING, ItemType.HOTEL, ProviderStatus.CONFIRMED)
    ensure_item_transition(ItemType.TRANSPORT, ProviderStatus.PENDING, ItemType.TRANSPORT, ProviderStatus.CONFIRMED)
    with pytest.raises(StateConflictError):
        ensure_item_transition(ItemType.ACTIVITY, ProviderStatus.PENDING, ItemType.ACTIVITY, ProviderStatus.CONFIRMED)
    with pytest.raises(StateConflictError):
        ensure_item_transition(ItemType.HOTEL, ProviderStatus.CONFIRMED, ItemType.HOTEL, ProviderStatus.CONFIRMED)
