"""Read-side projections of bookings and line items with human-readable names."""

from typing import Any, Dict, Iterable, List, Optional

from sqlmodel import Session, select

from smarttour.booking.models import Booking, BookingItem, Cart
from smarttour.booking.states import ItemType
from smarttour.catalog import lookups
from smarttour.catalog.models import Activity, Destination, Hotel, TourGuide

_ITEM_ORDER = {
    ItemType.TRANSPORT: 1,
    ItemType.HOTEL: 2,
    ItemType.ACTIVITY: 3,
    ItemType.DESTINATION_FEE: 4,
    ItemType.TOUR_GUIDE: 5,
    ItemType.PLACEHOLDER: 6,
}


def load_items(session: Session, booking_id: int) -> List[BookingItem]:
    items = session.exec(select(BookingItem).where(BookingItem.booking_id == booking_id))
    return sorted(items, key=lambda i: (_ITEM_ORDER.get(i.item_type, 99), i.id))


def item_name(session: Session, item: BookingItem) -> str:
    if item.item_type == ItemType.TRANSPORT:
        transport = lookups.get_transport(session, item.ref_id)
        return lookups.transport_label(session, transport) if transport else "Unknown Service"
    if item.item_type == ItemType.HOTEL:
        hotel = session.get(Hotel, item.ref_id)
        return hotel.name if hotel else "Unknown Service"
    if item.item_type == ItemType.ACTIVITY:
        activity = session.get(Activity, item.ref_id)
        return activity.name if activity else "Unknown Service"
    if item.item_type == ItemType.DESTINATION_FEE:
        destination = session.get(Destination, item.ref_id)
        return f"{destination.name} access fee" if destination else "Destination access fee"
    if item.item_type == ItemType.TOUR_GUIDE:
        guide = session.get(TourGuide, item.ref_id)
        return guide.full_name if guide else "Unknown Service"
    return "Tour Guide Assignment Pending"


def item_view(session: Session, item: BookingItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "booking_id": item.booking_id,
        "ref_id": item.ref_id,
        "item_type": item.item_type.value,
        "item_name": item_name(session, item),
        "cost": item.cost,
        "provider_status": item.provider_status.value,
        "sessions": item.sessions,
        "details": item.details,
    }


def booking_view(session: Session, booking: Booking, items: Optional[Iterable[BookingItem]] = None) -> Dict[str, Any]:
    if items is None:
        items = load_items(session, booking.id)
    destination = session.get(Destination, booking.destination_id)
    return {
        "id": booking.id,
        "tourist_id": booking.tourist_id,
        "cart_id": booking.cart_id,
        "tourist_full_name": booking.tourist_full_name,
        "destination_id": booking.destination_id,
        "destination_name": destination.name if destination else None,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "duration_days": booking.duration_days,
        "total_cost": booking.total_cost,
        "status": booking.status.value,
        "flexible_options": {
            "include_transport": booking.include_transport,
            "include_hotel": booking.include_hotel,
            "include_activities": booking.include_activities,
        },
        "items": [item_view(session, i) for i in items],
    }


def cart_view(session: Session, cart: Optional[Cart], bookings: Iterable[Booking] = ()) -> Dict[str, Any]:
    if cart is None:
        return {"id": None, "total_cost": 0.0, "status": None, "bookings": []}
    return {
        "id": cart.id,
        "tourist_id": cart.tourist_id,
        "total_cost": cart.total_cost,
        "status": cart.status.value,
        "bookings": [booking_view(session, b) for b in bookings],
    }
