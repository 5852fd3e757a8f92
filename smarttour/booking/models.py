"""Persistence models for carts, bookings and their line items."""

from datetime import date, datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, Index, text
from sqlmodel import Field, SQLModel

from smarttour.booking.details import load_details
from smarttour.booking.states import BookingStatus, CartStatus, ItemType, ProviderStatus
from smarttour.catalog.models import enum_column

_ACTIVE_CART = text("status = 'active'")
_GUIDE_SLOT = text("item_type IN ('placeholder', 'tour_guide')")


class Cart(SQLModel, table=True):
    """Staging area bundling draft bookings before one checkout. One active cart per tourist."""

    __table_args__ = (
        Index("uq_cart_active_tourist", "tourist_id", unique=True,
              sqlite_where=_ACTIVE_CART, postgresql_where=_ACTIVE_CART),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tourist_id: int = Field(index=True)
    total_cost: float = 0.0
    status: CartStatus = Field(
        default=CartStatus.ACTIVE,
        sa_column=enum_column(CartStatus, nullable=False, default=CartStatus.ACTIVE),
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Booking(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tourist_id: int = Field(index=True)
    cart_id: Optional[int] = Field(default=None, foreign_key="cart.id", index=True)
    tourist_full_name: Optional[str] = None
    destination_id: int = Field(index=True)
    start_date: date
    end_date: date
    total_cost: float
    include_transport: bool = True
    include_hotel: bool = True
    include_activities: bool = True
    status: BookingStatus = Field(
        sa_column=enum_column(BookingStatus, nullable=False, index=True),
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days


class BookingItem(SQLModel, table=True):
    """
    One priced component of a booking.

    ref_id points at the offering for the item's category (transport, hotel,
    activity, destination or guide) and is 0 for an unbound guide slot.
    """

    __table_args__ = (
        Index("uq_booking_guide_slot", "booking_id", unique=True,
              sqlite_where=_GUIDE_SLOT, postgresql_where=_GUIDE_SLOT),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    booking_id: int = Field(foreign_key="booking.id", index=True)
    ref_id: int = Field(default=0, index=True)
    item_type: ItemType = Field(sa_column=enum_column(ItemType, nullable=False, index=True))
    cost: float = 0.0
    provider_status: ProviderStatus = Field(
        default=ProviderStatus.PENDING,
        sa_column=enum_column(ProviderStatus, nullable=False, default=ProviderStatus.PENDING),
    )
    sessions: Optional[int] = None
    details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    @property
    def typed_details(self):
        return load_details(self.details)
