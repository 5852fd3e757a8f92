"""
Provider fulfillment tracker.

Hotel managers confirm rooms and travel agencies issue tickets for the line
items that reference their own offerings. Each confirmation touches only the
one line item; booking-level state is never read or written here.
"""

from datetime import datetime
from typing import Dict, List

from loguru import logger
from sqlalchemy.engine import Engine
from sqlmodel import select

from smarttour.audit.store import record_event
from smarttour.booking.details import RoomConfirmation, TicketAssignment, dump_details
from smarttour.booking.models import Booking, BookingItem
from smarttour.booking.schemas import RoomConfirmationRequest, TicketAssignmentRequest
from smarttour.booking.states import BookingStatus, ItemType, ProviderStatus, ensure_item_transition
from smarttour.booking.views import item_view
from smarttour.catalog.models import Hotel, Transport
from smarttour.database import read_session, transaction
from smarttour.errors import NotFoundError, ValidationError

# item category -> (offering table, owner column)
_OWNERSHIP = {
    ItemType.HOTEL: (Hotel, Hotel.manager_id),
    ItemType.TRANSPORT: (Transport, Transport.agency_id),
}


def _owned_item_query(item_type: ItemType, owner_id: int):
    offering, owner_col = _OWNERSHIP[item_type]
    return (
        select(BookingItem)
        .join(offering, offering.id == BookingItem.ref_id)
        .where(BookingItem.item_type == item_type, owner_col == owner_id)
    )


class FulfillmentTracker:
    def __init__(self, engine: Engine):
        self.engine = engine

    def _confirm(self, item_type: ItemType, owner_id: int, item_id: int, details, action: str) -> Dict:
        with transaction(self.engine) as session:
            item = session.exec(
                _owned_item_query(item_type, owner_id)
                .where(BookingItem.id == item_id, BookingItem.provider_status == ProviderStatus.PENDING)
                .with_for_update()
            ).first()
            if item is None:
                raise NotFoundError(f"{item_type.value.capitalize()} item not found or already confirmed")
            ensure_item_transition(item.item_type, item.provider_status, item.item_type, ProviderStatus.CONFIRMED)
            item.provider_status = ProviderStatus.CONFIRMED
            item.details = dump_details(details)
            session.add(item)
            record_event(session, actor=owner_id, action=action, booking_id=item.booking_id,
                         details={"item_id": item.id})
            logger.bind(event=action.lower()).info("Item {} of booking {} confirmed by {}", item.id,
                                                   item.booking_id, owner_id)
            return item_view(session, item)

    def confirm_room(self, manager_id: int, item_id: int, request: RoomConfirmationRequest) -> Dict:
        room_number = request.room_number.strip()
        room_type = request.room_type.strip()
        if not room_number or not room_type:
            raise ValidationError("Room number and room type are required")
        details = RoomConfirmation(
            room_number=room_number,
            room_type=room_type,
            notes=request.notes,
            confirmed_at=datetime.utcnow(),
            confirmed_by=f"hotel_manager:{manager_id}",
        )
        return self._confirm(ItemType.HOTEL, manager_id, item_id, details, "ROOM_CONFIRMED")

    def assign_ticket(self, agency_id: int, item_id: int, request: TicketAssignmentRequest) -> Dict:
        ticket_url = request.ticket_pdf_url.strip()
        if not ticket_url:
            raise ValidationError("Ticket PDF URL is required")
        details = TicketAssignment(
            ticket_pdf_url=ticket_url,
            seat=request.seat,
            assigned_at=datetime.utcnow(),
            assigned_by=f"travel_agent:{agency_id}",
        )
        return self._confirm(ItemType.TRANSPORT, agency_id, item_id, details, "TICKET_ASSIGNED")

    def _items(self, item_type: ItemType, owner_id: int, status: ProviderStatus) -> List[Dict]:
        stmt = (
            _owned_item_query(item_type, owner_id)
            .join(Booking, Booking.id == BookingItem.booking_id)
            .where(BookingItem.provider_status == status, Booking.status == BookingStatus.CONFIRMED)
            .order_by(Booking.start_date, BookingItem.id)
        )
        with read_session(self.engine) as session:
            rows = []
            for item in session.exec(stmt):
                booking = session.get(Booking, item.booking_id)
                view = item_view(session, item)
                view.update({
                    "tourist_full_name": booking.tourist_full_name,
                    "start_date": booking.start_date.isoformat(),
                    "end_date": booking.end_date.isoformat(),
                })
                rows.append(view)
            return rows

    def pending_items(self, item_type: ItemType, owner_id: int) -> List[Dict]:
        return self._items(item_type, owner_id, ProviderStatus.PENDING)

    def completed_items(self, item_type: ItemType, owner_id: int) -> List[Dict]:
        return self._items(item_type, owner_id, ProviderStatus.CONFIRMED)
