"""Read-only catalog lookups used by the booking engine."""

from typing import Dict, Iterable, List, Optional

from sqlmodel import Session, select

from smarttour.catalog.models import Activity, Destination, Hotel, TourGuide, Transport


def get_destination(session: Session, destination_id: int) -> Optional[Destination]:
    return session.get(Destination, destination_id)


def get_transport(session: Session, transport_id: int) -> Optional[Transport]:
    return session.get(Transport, transport_id)


def get_hotel(session: Session, hotel_id: int) -> Optional[Hotel]:
    return session.get(Hotel, hotel_id)


def get_activities(session: Session, activity_ids: Iterable[int], lock: bool = False) -> List[Activity]:
    ids = list(activity_ids)
    if not ids:
        return []
    stmt = select(Activity).where(Activity.id.in_(ids)).order_by(Activity.id)
    if lock:
        stmt = stmt.with_for_update()
    return list(session.exec(stmt))


def get_guide(session: Session, guide_id: int, lock: bool = False) -> Optional[TourGuide]:
    stmt = select(TourGuide).where(TourGuide.user_id == guide_id)
    if lock:
        stmt = stmt.with_for_update()
    return session.exec(stmt).first()


def destinations_by_id(session: Session, destination_ids: Iterable[int]) -> Dict[int, Destination]:
    ids = set(destination_ids)
    if not ids:
        return {}
    rows = session.exec(select(Destination).where(Destination.id.in_(ids)))
    return {d.id: d for d in rows}


def transport_label(session: Session, transport: Transport) -> str:
    destination = session.get(Destination, transport.destination_id)
    destination_name = destination.name if destination else "Unknown destination"
    return f"{transport.origin_name} to {destination_name}"
