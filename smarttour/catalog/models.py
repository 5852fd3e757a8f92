"""
Catalog offerings owned by provider accounts.

The booking engine only reads these rows, except for the activity reservation
status and the guide availability flag, which it guards.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import Column, Enum as SAEnum
from sqlmodel import Field, SQLModel


def enum_column(enum_cls, **kwargs) -> Column:
    """Store enum values (not names) as plain strings."""
    return Column(
        SAEnum(enum_cls, values_callable=lambda members: [m.value for m in members], native_enum=False, length=32),
        **kwargs,
    )


class ActivityStatus(str, Enum):
    PENDING = "pending"
    BOOKED = "booked"


class GuideStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    SUSPENDED = "suspended"


class Destination(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None
    cost_per_day: float = 0.0


class Transport(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    agency_id: int = Field(index=True)
    origin_name: str
    destination_id: int = Field(foreign_key="destination.id", index=True)
    transportation_type: str = "bus"
    cost: float


class Hotel(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    manager_id: int = Field(index=True)
    name: str
    destination_id: int = Field(foreign_key="destination.id", index=True)
    base_price_per_night: float


class Activity(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    destination_id: int = Field(foreign_key="destination.id", index=True)
    name: str
    description: Optional[str] = None
    price: float
    status: ActivityStatus = Field(
        default=ActivityStatus.PENDING,
        sa_column=enum_column(ActivityStatus, nullable=False, default=ActivityStatus.PENDING),
    )


class TourGuide(SQLModel, table=True):
    user_id: int = Field(primary_key=True)
    full_name: str
    destination_id: int = Field(foreign_key="destination.id", index=True)
    status: GuideStatus = Field(
        default=GuideStatus.ACTIVE,
        sa_column=enum_column(GuideStatus, nullable=False, default=GuideStatus.ACTIVE),
    )
    available: bool = True
