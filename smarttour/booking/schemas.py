from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ServiceSelection(BaseModel):
    """
    A tourist's requested trip: the date range, the destination and the
    offerings to include.

    - activity_sessions maps an activity id to its session count (default 1)
    - include_* flags let a tourist drop a category without clearing its id
    """
    destination_id: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    transport_id: Optional[int] = None
    hotel_id: Optional[int] = None
    activity_ids: List[int] = Field(default_factory=list)
    activity_sessions: Dict[int, int] = Field(default_factory=dict)
    include_transport: bool = True
    include_hotel: bool = True
    include_activities: bool = True


class DirectBookingRequest(ServiceSelection):
    tourist_full_name: Optional[str] = None


class RoomConfirmationRequest(BaseModel):
    room_number: str
    room_type: str
    notes: Optional[str] = None


class TicketAssignmentRequest(BaseModel):
    ticket_pdf_url: str
    seat: Optional[str] = None


class GuideAssignmentRequest(BaseModel):
    guide_id: int
