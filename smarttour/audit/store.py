import json
from typing import Optional, Dict, Any, List
from datetime import datetime

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Field, Session, select


class AuditEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    actor: str = Field(index=True)
    action: str = Field(index=True)  # e.g., BOOKING_CREATED, CART_CHECKOUT, PAYMENT, GUIDE_ASSIGNED, ROOM_CONFIRMED
    status: str  # ok, denied, error
    booking_id: Optional[int] = Field(default=None, index=True)
    cart_id: Optional[int] = Field(default=None, index=True)
    amount: Optional[float] = None
    currency: Optional[str] = None
    method: Optional[str] = None
    reasons: Optional[str] = None  # pipe-separated reasons for simplicity
    details: Optional[str] = None  # JSON string


def record_event(target, actor: str, action: str, status: str = "ok", booking_id: Optional[int] = None,
                 cart_id: Optional[int] = None, amount: Optional[float] = None, currency: Optional[str] = None,
                 method: Optional[str] = None, reasons: Optional[List[str]] = None,
                 details: Optional[Dict[str, Any]] = None) -> AuditEvent:
    """
    Append an audit event.

    `target` is either an open Session, in which case the event commits or rolls
    back together with the caller's unit of work, or an Engine, in which case the
    event is written in its own transaction (used for failures after a rollback).
    """
    evt = AuditEvent(
        actor=str(actor),
        action=action,
        status=status,
        booking_id=booking_id,
        cart_id=cart_id,
        amount=amount,
        currency=currency,
        method=method,
        reasons=("|".join(reasons) if reasons else None),
        details=(json.dumps(details, default=str) if details else None),
    )
    if isinstance(target, Session):
        target.add(evt)
        return evt
    with Session(target) as session:
        session.add(evt)
        session.commit()
        session.refresh(evt)
        return evt


def list_events(engine: Engine, limit: int = 50, actor: Optional[str] = None,
                action: Optional[str] = None) -> List[AuditEvent]:
    with Session(engine) as session:
        stmt = select(AuditEvent)
        if actor:
            stmt = stmt.where(AuditEvent.actor == actor)
        if action:
            stmt = stmt.where(AuditEvent.action == action)
        stmt = stmt.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit)
        return list(session.exec(stmt))
