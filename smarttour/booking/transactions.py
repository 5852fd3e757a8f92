"""
Booking transaction manager.

Materializes a booking and its full set of line items in one transaction.
Two entry paths share the same validation and costing:

- create_booking: legacy direct flow, the booking waits in pending_payment
- stage_booking: used by the cart manager, the booking sits in_cart
"""

from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from smarttour.audit.store import record_event
from smarttour.booking.details import GuidePlaceholder, dump_details
from smarttour.booking.models import Booking, BookingItem
from smarttour.booking.pricing import ActivityQuote, CostBreakdown, OfferingPrice, TripQuote, price_trip
from smarttour.booking.schemas import DirectBookingRequest, ServiceSelection
from smarttour.booking.states import BookingStatus, ItemType
from smarttour.booking.views import booking_view, load_items
from smarttour.catalog import lookups
from smarttour.config import Settings
from smarttour.database import read_session, transaction
from smarttour.errors import NotFoundError, ValidationError


class BookingTransactionManager:
    def __init__(self, engine: Engine, settings: Settings, today: Callable[[], date] = date.today):
        self.engine = engine
        self.settings = settings
        self._today = today

    # ----- validation (before any write) -----
    def validate_selection(self, selection: ServiceSelection) -> None:
        if not selection.start_date or not selection.end_date:
            raise ValidationError("Start date and end date are required")
        if not (selection.include_transport or selection.include_hotel or selection.include_activities):
            raise ValidationError("At least one service (transport, hotel, or activities) must be included")
        wants_transport = selection.include_transport and selection.transport_id is not None
        wants_hotel = selection.include_hotel and selection.hotel_id is not None
        wants_activities = selection.include_activities and bool(selection.activity_ids)
        if not (wants_transport or wants_hotel or wants_activities):
            raise ValidationError("Select at least one transport route, hotel or activity")
        if selection.start_date < self._today():
            raise ValidationError("Start date cannot be in the past")
        if selection.end_date <= selection.start_date:
            raise ValidationError("End date must be after start date")
        if (selection.end_date - selection.start_date).days > self.settings.max_trip_days:
            raise ValidationError(f"Booking duration cannot exceed {self.settings.max_trip_days} days")
        if wants_activities:
            if len(set(selection.activity_ids)) != len(selection.activity_ids):
                raise ValidationError("Each activity may only be selected once; use sessions to repeat it")
            for activity_id in selection.activity_ids:
                sessions = self._sessions_for(selection, activity_id)
                if isinstance(sessions, bool) or not isinstance(sessions, int) or sessions < 1:
                    raise ValidationError(
                        f"Invalid number of sessions for activity {activity_id}. Must be a positive integer."
                    )

    @staticmethod
    def _sessions_for(selection: ServiceSelection, activity_id: int):
        return selection.activity_sessions.get(activity_id, 1)

    # ----- costing (reads only) -----
    def price_selection(self, session: Session, selection: ServiceSelection) -> CostBreakdown:
        destination = lookups.get_destination(session, selection.destination_id)
        if destination is None:
            raise NotFoundError("Destination not found")

        transport_price = None
        if selection.include_transport and selection.transport_id is not None:
            transport = lookups.get_transport(session, selection.transport_id)
            if transport is None:
                raise NotFoundError("Transport route not found")
            if transport.destination_id != destination.id:
                raise ValidationError("Transport route does not serve the booking destination")
            transport_price = OfferingPrice(transport.id, transport.cost)

        hotel_price = None
        if selection.include_hotel and selection.hotel_id is not None:
            hotel = lookups.get_hotel(session, selection.hotel_id)
            if hotel is None:
                raise NotFoundError("Hotel not found")
            if hotel.destination_id != destination.id:
                raise ValidationError("Hotel is not located at the booking destination")
            hotel_price = OfferingPrice(hotel.id, hotel.base_price_per_night)

        activity_quotes: List[ActivityQuote] = []
        if selection.include_activities and selection.activity_ids:
            activities = lookups.get_activities(session, selection.activity_ids)
            if len(activities) != len(selection.activity_ids):
                raise NotFoundError("One or more activities not found")
            destinations = lookups.destinations_by_id(session, (a.destination_id for a in activities))
            by_id = {a.id: a for a in activities}
            for activity_id in selection.activity_ids:
                activity = by_id[activity_id]
                activity_destination = destinations.get(activity.destination_id)
                activity_quotes.append(ActivityQuote(
                    activity_id=activity.id,
                    unit_price=activity.price,
                    destination_id=activity.destination_id,
                    destination_name=activity_destination.name if activity_destination else "",
                    destination_cost_per_day=activity_destination.cost_per_day if activity_destination else 0.0,
                    sessions=self._sessions_for(selection, activity.id),
                ))

        return price_trip(TripQuote(
            start_date=selection.start_date,
            end_date=selection.end_date,
            transport=transport_price,
            hotel=hotel_price,
            activities=tuple(activity_quotes),
        ))

    # ----- materialization -----
    def stage_booking(self, session: Session, tourist_id: int, selection: ServiceSelection,
                      status: BookingStatus, cart_id: Optional[int] = None,
                      tourist_full_name: Optional[str] = None) -> Tuple[Booking, List[BookingItem]]:
        """Validate, price and insert a booking with its line items inside the caller's transaction."""
        self.validate_selection(selection)
        breakdown = self.price_selection(session, selection)

        booking = Booking(
            tourist_id=tourist_id,
            cart_id=cart_id,
            tourist_full_name=tourist_full_name,
            destination_id=selection.destination_id,
            start_date=selection.start_date,
            end_date=selection.end_date,
            total_cost=breakdown.total,
            include_transport=selection.include_transport,
            include_hotel=selection.include_hotel,
            include_activities=selection.include_activities,
            status=status,
        )
        session.add(booking)
        session.flush()

        items = [
            BookingItem(
                booking_id=booking.id,
                ref_id=line.ref_id,
                item_type=line.item_type,
                cost=line.cost,
                sessions=line.sessions,
                details=dump_details(line.details),
            )
            for line in breakdown.lines
        ]
        items.append(BookingItem(
            booking_id=booking.id,
            ref_id=0,
            item_type=ItemType.PLACEHOLDER,
            cost=0.0,
            details=dump_details(GuidePlaceholder()),
        ))
        session.add_all(items)
        session.flush()
        logger.bind(event="booking_staged").info(
            "Staged booking {} for tourist {} ({} items, total {})", booking.id, tourist_id, len(items), booking.total_cost
        )
        return booking, items

    def create_booking(self, tourist_id: int, request: DirectBookingRequest) -> Dict:
        full_name = (request.tourist_full_name or "").strip()
        if len(full_name) < 2:
            raise ValidationError("Tourist full name is required and must be at least 2 characters long")
        self.validate_selection(request)
        with transaction(self.engine) as session:
            booking, items = self.stage_booking(
                session, tourist_id, request, BookingStatus.PENDING_PAYMENT, tourist_full_name=full_name
            )
            record_event(session, actor=tourist_id, action="BOOKING_CREATED", booking_id=booking.id,
                         amount=booking.total_cost, currency=self.settings.local_currency)
            return booking_view(session, booking, load_items(session, booking.id))

    def list_bookings(self, tourist_id: int) -> List[Dict]:
        with read_session(self.engine) as session:
            bookings = session.exec(
                select(Booking)
                .where(Booking.tourist_id == tourist_id, Booking.status != BookingStatus.IN_CART)
                .order_by(Booking.id.desc())
            )
            return [booking_view(session, b) for b in bookings]
