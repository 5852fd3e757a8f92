from enum import Enum
from typing import Dict, Set

from smarttour.errors import StateConflictError


class CartStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class BookingStatus(str, Enum):
    IN_CART = "in_cart"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"


class ItemType(str, Enum):
    TRANSPORT = "transport"
    HOTEL = "hotel"
    ACTIVITY = "activity"
    DESTINATION_FEE = "destination_fee"
    PLACEHOLDER = "placeholder"
    TOUR_GUIDE = "tour_guide"


class ProviderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


GUIDE_SLOT_TYPES = (ItemType.PLACEHOLDER, ItemType.TOUR_GUIDE)


_BOOKING_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
    BookingStatus.IN_CART: {BookingStatus.CONFIRMED},
    BookingStatus.PENDING_PAYMENT: {BookingStatus.CONFIRMED},
    BookingStatus.CONFIRMED: set(),
}

_CART_TRANSITIONS: Dict[CartStatus, Set[CartStatus]] = {
    CartStatus.ACTIVE: {CartStatus.COMPLETED},
    CartStatus.COMPLETED: set(),
}

# (item_type, provider_status) pairs a line item may move between
_ITEM_TRANSITIONS = {
    (ItemType.PLACEHOLDER, ProviderStatus.PENDING): {
        (ItemType.TOUR_GUIDE, ProviderStatus.PENDING),
        (ItemType.TOUR_GUIDE, ProviderStatus.CONFIRMED),
    },
    (ItemType.TOUR_GUIDE, ProviderStatus.PENDING): {(ItemType.TOUR_GUIDE, ProviderStatus.CONFIRMED)},
    (ItemType.HOTEL, ProviderStatus.PENDING): {(ItemType.HOTEL, ProviderStatus.CONFIRMED)},
    (ItemType.TRANSPORT, ProviderStatus.PENDING): {(ItemType.TRANSPORT, ProviderStatus.CONFIRMED)},
}


def ensure_booking_transition(current: BookingStatus, target: BookingStatus) -> None:
    if target not in _BOOKING_TRANSITIONS.get(current, set()):
        raise StateConflictError(
            f"Booking cannot move from {current.value} to {target.value}",
            details={"status": current.value},
        )


def ensure_cart_transition(current: CartStatus, target: CartStatus) -> None:
    if target not in _CART_TRANSITIONS.get(current, set()):
        raise StateConflictError(f"Cart cannot move from {current.value} to {target.value}")


def ensure_item_transition(current_type: ItemType, current_status: ProviderStatus,
                           target_type: ItemType, target_status: ProviderStatus) -> None:
    allowed = _ITEM_TRANSITIONS.get((current_type, current_status), set())
    if (target_type, target_status) not in allowed:
        raise StateConflictError(
            f"Line item cannot move from {current_type.value}/{current_status.value} "
            f"to {target_type.value}/{target_status.value}"
        )
