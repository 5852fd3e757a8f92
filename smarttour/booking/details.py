"""
Structured payloads carried by booking line items.

Each line item category stores exactly one variant, discriminated by `kind`.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class GuidePlaceholder(BaseModel):
    kind: Literal["tour_guide_placeholder"] = "tour_guide_placeholder"
    message: str = "Tour guide will be assigned by admin"


class DestinationFeeBreakdown(BaseModel):
    kind: Literal["destination_fee"] = "destination_fee"
    destination_id: int
    destination_name: str
    cost_per_day: float
    days: int

    @property
    def message(self) -> str:
        return f"Fee for access to {self.destination_name} ({self.cost_per_day:g}/day x {self.days} days)"


class RoomConfirmation(BaseModel):
    kind: Literal["room_confirmation"] = "room_confirmation"
    room_number: str
    room_type: str
    notes: Optional[str] = None
    confirmed_at: datetime
    confirmed_by: str = "hotel_manager"


class TicketAssignment(BaseModel):
    kind: Literal["ticket_assignment"] = "ticket_assignment"
    ticket_pdf_url: str
    seat: Optional[str] = None
    assigned_at: datetime
    assigned_by: str = "travel_agent"


class GuideAssignmentMeta(BaseModel):
    kind: Literal["guide_assignment"] = "guide_assignment"
    guide_name: str
    destination_name: Optional[str] = None
    assigned_at: datetime
    assigned_by: str = "admin"


LineItemDetails = Annotated[
    Union[GuidePlaceholder, DestinationFeeBreakdown, RoomConfirmation, TicketAssignment, GuideAssignmentMeta],
    Field(discriminator="kind"),
]

_details_adapter = TypeAdapter(LineItemDetails)


def dump_details(details: Optional[BaseModel]) -> Optional[Dict[str, Any]]:
    if details is None:
        return None
    return details.model_dump(mode="json")


def load_details(raw: Optional[Dict[str, Any]]):
    if not raw:
        return None
    return _details_adapter.validate_python(raw)
