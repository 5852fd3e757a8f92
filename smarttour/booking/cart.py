"""
Cart manager: one active cart per tourist, bundling draft bookings that are
paid together in a single checkout.
"""

from datetime import datetime
from typing import Dict, Optional

from loguru import logger
from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from smarttour.audit.store import record_event
from smarttour.booking.models import Booking, BookingItem, Cart
from smarttour.booking.schemas import ServiceSelection
from smarttour.booking.states import BookingStatus, CartStatus
from smarttour.booking.transactions import BookingTransactionManager
from smarttour.booking.views import booking_view, cart_view, load_items
from smarttour.database import read_session, transaction
from smarttour.errors import NotFoundError


def find_active_cart(session: Session, tourist_id: int, lock: bool = False) -> Optional[Cart]:
    stmt = select(Cart).where(Cart.tourist_id == tourist_id, Cart.status == CartStatus.ACTIVE)
    if lock:
        stmt = stmt.with_for_update()
    return session.exec(stmt).first()


def cart_bookings(session: Session, cart_id: int, lock: bool = False):
    stmt = (
        select(Booking)
        .where(Booking.cart_id == cart_id, Booking.status == BookingStatus.IN_CART)
        .order_by(Booking.id)
    )
    if lock:
        stmt = stmt.with_for_update()
    return list(session.exec(stmt))


class CartManager:
    def __init__(self, engine: Engine, bookings: BookingTransactionManager, processor=None):
        self.engine = engine
        self.bookings = bookings
        self.processor = processor

    def get_or_create_active_cart(self, session: Session, tourist_id: int) -> Cart:
        cart = find_active_cart(session, tourist_id, lock=True)
        if cart is not None:
            return cart
        try:
            with session.begin_nested():
                cart = Cart(tourist_id=tourist_id)
                session.add(cart)
        except IntegrityError:
            # another request created the cart between our read and insert
            cart = find_active_cart(session, tourist_id, lock=True)
            if cart is None:
                raise
            return cart
        logger.bind(event="cart_created").info("Created cart {} for tourist {}", cart.id, tourist_id)
        return cart

    def add_booking(self, tourist_id: int, selection: ServiceSelection) -> Dict:
        self.bookings.validate_selection(selection)
        with transaction(self.engine) as session:
            cart = self.get_or_create_active_cart(session, tourist_id)
            booking, items = self.bookings.stage_booking(
                session, tourist_id, selection, BookingStatus.IN_CART, cart_id=cart.id
            )
            cart.total_cost = round(cart.total_cost + booking.total_cost, 2)
            cart.updated_at = datetime.utcnow()
            session.add(cart)
            record_event(session, actor=tourist_id, action="CART_BOOKING_ADDED", booking_id=booking.id,
                         cart_id=cart.id, amount=booking.total_cost,
                         currency=self.bookings.settings.local_currency)
            return {
                "cart_id": cart.id,
                "cart_total": cart.total_cost,
                "booking": booking_view(session, booking, load_items(session, booking.id)),
            }

    def remove_booking(self, tourist_id: int, booking_id: int) -> Dict:
        with transaction(self.engine) as session:
            cart = find_active_cart(session, tourist_id, lock=True)
            if cart is None:
                raise NotFoundError("No active cart found")
            booking = session.exec(
                select(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.cart_id == cart.id,
                    Booking.tourist_id == tourist_id,
                    Booking.status == BookingStatus.IN_CART,
                )
                .with_for_update()
            ).first()
            if booking is None:
                raise NotFoundError("Booking not found in cart")

            session.execute(delete(BookingItem).where(BookingItem.booking_id == booking.id))
            session.delete(booking)
            cart.total_cost = max(0.0, round(cart.total_cost - booking.total_cost, 2))
            cart.updated_at = datetime.utcnow()
            session.add(cart)
            record_event(session, actor=tourist_id, action="CART_BOOKING_REMOVED", booking_id=booking_id,
                         cart_id=cart.id, amount=booking.total_cost)
            logger.bind(event="cart_booking_removed").info("Removed booking {} from cart {}", booking_id, cart.id)
            return {"cart_id": cart.id, "cart_total": cart.total_cost, "removed_booking_id": booking_id}

    def clear(self, tourist_id: int) -> Dict:
        with transaction(self.engine) as session:
            cart = find_active_cart(session, tourist_id, lock=True)
            if cart is None:
                raise NotFoundError("No active cart found")
            ids = [b.id for b in cart_bookings(session, cart.id, lock=True)]
            if ids:
                session.execute(delete(BookingItem).where(BookingItem.booking_id.in_(ids)))
                session.execute(delete(Booking).where(Booking.id.in_(ids)))
            cart.total_cost = 0.0
            cart.updated_at = datetime.utcnow()
            session.add(cart)
            record_event(session, actor=tourist_id, action="CART_CLEARED", cart_id=cart.id,
                         details={"removed_booking_ids": ids})
            return {"cart_id": cart.id, "cart_total": 0.0, "removed": len(ids)}

    def view(self, tourist_id: int) -> Dict:
        with read_session(self.engine) as session:
            cart = find_active_cart(session, tourist_id)
            if cart is None:
                return cart_view(session, None)
            return cart_view(session, cart, cart_bookings(session, cart.id))

    def checkout(self, tourist_id: int, request) -> Dict:
        return self.processor.checkout_cart(tourist_id, request)
