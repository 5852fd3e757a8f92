"""
Caller identity as asserted by the upstream authentication gateway.

Authentication itself lives outside this service; requests arrive with the
authenticated user id and role in trusted headers.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from fastapi import Depends, Header

from smarttour.errors import ForbiddenError, ValidationError


class Role(str, Enum):
    TOURIST = "tourist"
    HOTEL_MANAGER = "hotel_manager"
    TRAVEL_AGENT = "travel_agent"
    TOUR_GUIDE = "tour_guide"
    ADMIN = "admin"


@dataclass(frozen=True)
class Caller:
    user_id: int
    role: Role


def get_caller(x_user_id: Optional[str] = Header(default=None),
               x_user_role: Optional[str] = Header(default=None)) -> Caller:
    if not x_user_id or not x_user_role:
        raise ForbiddenError("Authenticated caller identity is required")
    try:
        user_id = int(x_user_id)
        role = Role(x_user_role.strip().lower())
    except ValueError:
        raise ValidationError("Malformed caller identity headers")
    return Caller(user_id=user_id, role=role)


def require_role(*roles: Role) -> Callable[..., Caller]:
    def check(caller: Caller = Depends(get_caller)) -> Caller:
        if caller.role not in roles:
            raise ForbiddenError("Your role is not allowed to perform this operation")
        return caller
    return check
