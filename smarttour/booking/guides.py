"""
Tour guide assignment.

Every booking carries a single guide slot, created as a placeholder. An admin
binds a guide to the slot of a confirmed booking, which rewrites the slot in
place and marks the guide as unavailable. Guides are not released
automatically.
"""

from datetime import datetime
from typing import Dict, List

from loguru import logger
from sqlalchemy.engine import Engine
from sqlmodel import select

from smarttour.audit.store import record_event
from smarttour.booking.details import GuideAssignmentMeta, dump_details
from smarttour.booking.models import Booking, BookingItem
from smarttour.booking.states import (
    GUIDE_SLOT_TYPES,
    BookingStatus,
    ItemType,
    ProviderStatus,
    ensure_item_transition,
)
from smarttour.booking.views import booking_view
from smarttour.catalog import lookups
from smarttour.catalog.models import GuideStatus, TourGuide
from smarttour.database import read_session, transaction
from smarttour.errors import InsufficientResourceError, NotFoundError, StateConflictError


class GuideAssigner:
    def __init__(self, engine: Engine):
        self.engine = engine

    def assign_guide(self, booking_id: int, guide_id: int, assigned_by: int) -> Dict:
        with transaction(self.engine) as session:
            booking = session.exec(select(Booking).where(Booking.id == booking_id).with_for_update()).first()
            if booking is None:
                raise NotFoundError("Booking not found")
            if booking.status != BookingStatus.CONFIRMED:
                raise StateConflictError("Tour guides can only be assigned to confirmed bookings",
                                         details={"status": booking.status.value})

            slots = list(session.exec(
                select(BookingItem)
                .where(BookingItem.booking_id == booking_id, BookingItem.item_type.in_(GUIDE_SLOT_TYPES))
                .with_for_update()
            ))
            if len(slots) != 1:
                raise StateConflictError("Booking has no guide slot to assign")
            slot = slots[0]
            if slot.item_type != ItemType.PLACEHOLDER:
                raise StateConflictError("A tour guide is already assigned to this booking")

            guide = lookups.get_guide(session, guide_id, lock=True)
            if guide is None or guide.status != GuideStatus.ACTIVE:
                raise NotFoundError("Tour guide not found or not active")
            if not guide.available:
                raise InsufficientResourceError("Tour guide is not available")

            ensure_item_transition(slot.item_type, slot.provider_status, ItemType.TOUR_GUIDE, ProviderStatus.CONFIRMED)
            destination = lookups.get_destination(session, booking.destination_id)
            slot.item_type = ItemType.TOUR_GUIDE
            slot.ref_id = guide.user_id
            slot.provider_status = ProviderStatus.CONFIRMED
            slot.details = dump_details(GuideAssignmentMeta(
                guide_name=guide.full_name,
                destination_name=destination.name if destination else None,
                assigned_at=datetime.utcnow(),
                assigned_by=f"admin:{assigned_by}",
            ))
            guide.available = False
            session.add(slot)
            session.add(guide)
            record_event(session, actor=assigned_by, action="GUIDE_ASSIGNED", booking_id=booking_id,
                         details={"guide_id": guide.user_id, "item_id": slot.id})
            logger.bind(event="guide_assigned").info("Guide {} assigned to booking {}", guide.user_id, booking_id)
            return booking_view(session, booking)

    def unassigned_bookings(self) -> List[Dict]:
        with read_session(self.engine) as session:
            bookings = session.exec(
                select(Booking)
                .join(BookingItem, BookingItem.booking_id == Booking.id)
                .where(Booking.status == BookingStatus.CONFIRMED, BookingItem.item_type == ItemType.PLACEHOLDER)
                .order_by(Booking.start_date, Booking.id)
            )
            return [booking_view(session, b) for b in bookings]

    def eligible_guides(self, booking_id: int) -> List[Dict]:
        with read_session(self.engine) as session:
            booking = session.get(Booking, booking_id)
            if booking is None:
                raise NotFoundError("Booking not found")
            guides = session.exec(
                select(TourGuide)
                .where(
                    TourGuide.destination_id == booking.destination_id,
                    TourGuide.status == GuideStatus.ACTIVE,
                    TourGuide.available == True,  # noqa: E712
                )
                .order_by(TourGuide.full_name)
            )
            return [{"user_id": g.user_id, "full_name": g.full_name, "destination_id": g.destination_id}
                    for g in guides]

    def assigned_bookings(self, guide_id: int) -> List[Dict]:
        with read_session(self.engine) as session:
            bookings = session.exec(
                select(Booking)
                .join(BookingItem, BookingItem.booking_id == Booking.id)
                .where(BookingItem.item_type == ItemType.TOUR_GUIDE, BookingItem.ref_id == guide_id)
                .order_by(Booking.start_date, Booking.id)
            )
            return [booking_view(session, b) for b in bookings]
