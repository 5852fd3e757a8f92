from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from smarttour.audit.logger import configure_logging
from smarttour.audit.store import list_events
from smarttour.booking.schemas import (
    DirectBookingRequest,
    GuideAssignmentRequest,
    RoomConfirmationRequest,
    ServiceSelection,
    TicketAssignmentRequest,
)
from smarttour.booking.states import ItemType
from smarttour.config import Settings
from smarttour.errors import DomainError, ErrorCode, ValidationError
from smarttour.identity import Caller, Role, get_caller, require_role
from smarttour.payment.processor import PaymentRequest
from smarttour.services import Services, build_services

app = FastAPI(
    title="SmartTour API",
    description="Multi-vendor travel booking and payment orchestration.",
    version="0.1.0",
)

_services: Optional[Services] = None

_HTTP_STATUS = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.STATE_CONFLICT: 409,
    ErrorCode.INSUFFICIENT_RESOURCE: 422,
    ErrorCode.EXTERNAL_DEPENDENCY: 503,
    ErrorCode.INVARIANT_VIOLATION: 500,
}


@app.on_event("startup")
def _startup():
    global _services
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_file)
    if _services is None:
        _services = build_services(settings)


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services(Settings.from_env())
    return _services


@app.exception_handler(DomainError)
async def _domain_error(request: Request, exc: DomainError):
    return JSONResponse(exc.to_dict(), status_code=_HTTP_STATUS[exc.code])


@app.exception_handler(RequestValidationError)
async def _request_validation_error(request: Request, exc: RequestValidationError):
    fields = [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]
    body = ValidationError("Request body or parameters are invalid").to_dict()
    body["fields"] = fields
    return JSONResponse(body, status_code=400)


tourist_only = require_role(Role.TOURIST)


# ----- Bookings -----
@app.post("/api/bookings", tags=["Bookings"], status_code=201)
def create_booking(payload: DirectBookingRequest, caller: Caller = Depends(tourist_only),
                   services: Services = Depends(get_services)):
    """
    Books a trip directly, outside the cart. The booking waits in pending_payment.

    - **destination_id**, **start_date**, **end_date**: the trip frame
    - **transport_id**, **hotel_id**, **activity_ids**: offerings to include
    - **activity_sessions**: optional session count per activity id
    """
    return services.bookings.create_booking(caller.user_id, payload)


@app.get("/api/bookings", tags=["Bookings"])
def list_bookings(caller: Caller = Depends(tourist_only), services: Services = Depends(get_services)):
    return services.bookings.list_bookings(caller.user_id)


@app.post("/api/bookings/{booking_id}/pay", tags=["Payments"])
def pay_booking(booking_id: int, payload: PaymentRequest, caller: Caller = Depends(tourist_only),
                services: Services = Depends(get_services)):
    return services.payments.pay_booking(caller.user_id, booking_id, payload)


# ----- Cart -----
@app.get("/api/cart", tags=["Cart"])
def view_cart(caller: Caller = Depends(tourist_only), services: Services = Depends(get_services)):
    return services.cart.view(caller.user_id)


@app.post("/api/cart/bookings", tags=["Cart"], status_code=201)
def add_to_cart(payload: ServiceSelection, caller: Caller = Depends(tourist_only),
                services: Services = Depends(get_services)):
    return services.cart.add_booking(caller.user_id, payload)


@app.delete("/api/cart/bookings/{booking_id}", tags=["Cart"])
def remove_from_cart(booking_id: int, caller: Caller = Depends(tourist_only),
                     services: Services = Depends(get_services)):
    return services.cart.remove_booking(caller.user_id, booking_id)


@app.delete("/api/cart", tags=["Cart"])
def clear_cart(caller: Caller = Depends(tourist_only), services: Services = Depends(get_services)):
    return services.cart.clear(caller.user_id)


@app.post("/api/cart/checkout", tags=["Cart"])
def checkout(payload: PaymentRequest, caller: Caller = Depends(tourist_only),
             services: Services = Depends(get_services)):
    return services.cart.checkout(caller.user_id, payload)


# ----- Provider fulfillment -----
@app.get("/api/provider/hotel/items", tags=["Providers"])
def hotel_items(completed: bool = False, caller: Caller = Depends(require_role(Role.HOTEL_MANAGER)),
                services: Services = Depends(get_services)):
    if completed:
        return services.fulfillment.completed_items(ItemType.HOTEL, caller.user_id)
    return services.fulfillment.pending_items(ItemType.HOTEL, caller.user_id)


@app.post("/api/provider/hotel/items/{item_id}/confirm", tags=["Providers"])
def confirm_room(item_id: int, payload: RoomConfirmationRequest,
                 caller: Caller = Depends(require_role(Role.HOTEL_MANAGER)),
                 services: Services = Depends(get_services)):
    return services.fulfillment.confirm_room(caller.user_id, item_id, payload)


@app.get("/api/provider/transport/items", tags=["Providers"])
def transport_items(completed: bool = False, caller: Caller = Depends(require_role(Role.TRAVEL_AGENT)),
                    services: Services = Depends(get_services)):
    if completed:
        return services.fulfillment.completed_items(ItemType.TRANSPORT, caller.user_id)
    return services.fulfillment.pending_items(ItemType.TRANSPORT, caller.user_id)


@app.post("/api/provider/transport/items/{item_id}/ticket", tags=["Providers"])
def assign_ticket(item_id: int, payload: TicketAssignmentRequest,
                  caller: Caller = Depends(require_role(Role.TRAVEL_AGENT)),
                  services: Services = Depends(get_services)):
    return services.fulfillment.assign_ticket(caller.user_id, item_id, payload)


# ----- Guide assignment -----
@app.get("/api/admin/bookings/unassigned", tags=["Guides"])
def unassigned_bookings(caller: Caller = Depends(require_role(Role.ADMIN)),
                        services: Services = Depends(get_services)):
    return services.guides.unassigned_bookings()


@app.get("/api/admin/bookings/{booking_id}/eligible-guides", tags=["Guides"])
def eligible_guides(booking_id: int, caller: Caller = Depends(require_role(Role.ADMIN)),
                    services: Services = Depends(get_services)):
    return services.guides.eligible_guides(booking_id)


@app.post("/api/admin/bookings/{booking_id}/guide", tags=["Guides"])
def assign_guide(booking_id: int, payload: GuideAssignmentRequest,
                 caller: Caller = Depends(require_role(Role.ADMIN)),
                 services: Services = Depends(get_services)):
    return services.guides.assign_guide(booking_id, payload.guide_id, caller.user_id)


@app.get("/api/guide/bookings", tags=["Guides"])
def guide_bookings(caller: Caller = Depends(require_role(Role.TOUR_GUIDE)),
                   services: Services = Depends(get_services)):
    return services.guides.assigned_bookings(caller.user_id)


# ----- Savings & vault -----
class SavingsDepositRequest(BaseModel):
    amount: float


class WalletRequest(BaseModel):
    address: str


@app.get("/api/savings", tags=["Savings"])
def savings_overview(caller: Caller = Depends(tourist_only), services: Services = Depends(get_services)):
    return services.accounts.balances(caller.user_id)


@app.post("/api/savings/deposit", tags=["Savings"])
def savings_deposit(payload: SavingsDepositRequest, caller: Caller = Depends(tourist_only),
                    services: Services = Depends(get_services)):
    return services.accounts.deposit_savings(caller.user_id, payload.amount)


@app.post("/api/savings/wallet", tags=["Savings"])
def configure_wallet(payload: WalletRequest, caller: Caller = Depends(tourist_only),
                     services: Services = Depends(get_services)):
    return services.accounts.configure_wallet(caller.user_id, payload.address)


@app.post("/api/savings/vault/sync", tags=["Savings"])
def sync_vault(caller: Caller = Depends(tourist_only), services: Services = Depends(get_services)):
    return services.accounts.sync_vault(caller.user_id)


@app.get("/api/rates/convert", tags=["Rates"])
def convert(amount: float, from_unit: Optional[str] = None, to_unit: Optional[str] = None,
            caller: Caller = Depends(get_caller), services: Services = Depends(get_services)):
    settings = services.settings
    return services.rates.quote(amount, from_unit or settings.local_currency, to_unit or settings.ledger_unit)


# ----- Audit -----
@app.get("/api/audit/recent", tags=["Audit"])
def recent_audit(limit: int = 50, actor: Optional[str] = None, action: Optional[str] = None,
                 caller: Caller = Depends(require_role(Role.ADMIN)), services: Services = Depends(get_services)):
    events = list_events(services.engine, limit=limit, actor=actor, action=action)
    return [{
        "id": e.id,
        "created_at": e.created_at.isoformat() + "Z",
        "actor": e.actor,
        "action": e.action,
        "status": e.status,
        "booking_id": e.booking_id,
        "cart_id": e.cart_id,
        "amount": e.amount,
        "currency": e.currency,
        "method": e.method,
        "reasons": e.reasons,
    } for e in events]


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
