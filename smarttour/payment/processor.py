"""
Payment processor.

Settles a single pending booking or a whole cart through one of three
channels and drives the paid entities to their confirmed state:

- external: the caller already authorized the charge with a gateway
- savings: debit the tourist's internal savings balance
- vault: debit the tourist's ledger vault, or match a deposit they sent

Nothing is persisted as a Payment unless settlement succeeds; failures are
written to the audit trail and re-raised. A vault debit whose transaction
does not commit is refunded on the ledger.
"""

import math
import uuid
from typing import Dict, List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from smarttour.audit.store import record_event
from smarttour.booking.cart import cart_bookings, find_active_cart
from smarttour.booking.models import Booking, BookingItem
from smarttour.booking.states import (
    BookingStatus,
    CartStatus,
    ItemType,
    ensure_booking_transition,
    ensure_cart_transition,
)
from smarttour.catalog import lookups
from smarttour.catalog.models import ActivityStatus
from smarttour.config import Settings
from smarttour.database import read_session, transaction
from smarttour.errors import (
    DepositNotFoundError,
    DomainError,
    ExternalDependencyError,
    InsufficientResourceError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from smarttour.payment.accounts import AccountService, lock_savings_account, lock_vault_account
from smarttour.payment.ledger import LedgerClient
from smarttour.payment.models import Payment, PaymentMethod, SavingsTransaction, SavingsTxnKind, VaultMode
from smarttour.payment.rates import ExchangeRateService


class PaymentRequest(BaseModel):
    method: PaymentMethod
    vault_mode: VaultMode = VaultMode.BALANCE
    gateway_reference: Optional[str] = None
    amount: Optional[float] = None
    idempotency_key: Optional[str] = None


def _new_reference(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16].upper()}"


def payment_view(payment: Payment, idempotent: bool = False, **extra) -> Dict:
    return {
        "payment_id": payment.id,
        "reference": payment.reference,
        "amount": payment.amount,
        "currency": payment.currency,
        "method": payment.method.value,
        "status": payment.status,
        "booking_id": payment.booking_id,
        "cart_id": payment.cart_id,
        "ledger_amount": payment.ledger_amount,
        "ledger_unit": payment.ledger_unit,
        "idempotent": idempotent,
        **extra,
    }


class PaymentProcessor:
    def __init__(self, engine: Engine, settings: Settings, accounts: AccountService,
                 rates: ExchangeRateService, ledger: LedgerClient):
        self.engine = engine
        self.settings = settings
        self.accounts = accounts
        self.rates = rates
        self.ledger = ledger

    # ----- idempotency -----
    def _replay(self, tourist_id: int, key: Optional[str], booking_id: Optional[int] = None) -> Optional[Dict]:
        """Return the payment already made under `key`, if any.

        A key is bound to its target: the same booking for direct payments, or a
        cart checkout when `booking_id` is None.
        """
        if not key:
            return None
        with read_session(self.engine) as session:
            payment = session.exec(select(Payment).where(Payment.idempotency_key == key)).first()
            if payment is None:
                return None
            if payment.tourist_id != tourist_id:
                raise StateConflictError("Idempotency key has already been used")
            if payment.booking_id != booking_id:
                raise StateConflictError("Idempotency key was used for a different payment")
            logger.bind(event="payment_replay").info("Returning payment {} for replayed key", payment.id)
            return payment_view(payment, idempotent=True)

    # ----- settlement channels -----
    def _ledger_amount(self, request: PaymentRequest, amount: float) -> Optional[float]:
        if request.method != PaymentMethod.VAULT:
            return None
        return self.rates.convert(amount, self.settings.local_currency, self.ledger.unit)

    @staticmethod
    def _flush_payment(session: Session, payment: Payment) -> None:
        session.add(payment)
        try:
            session.flush()
        except IntegrityError:
            raise StateConflictError("Payment reference or idempotency key has already been used")

    def _settle(self, session: Session, tourist_id: int, amount: float, request: PaymentRequest,
                charges: List[Dict], booking_id: Optional[int] = None, cart_id: Optional[int] = None,
                ledger_amount: Optional[float] = None) -> Payment:
        """Charge `amount` through the requested channel and stage the Payment row.

        Successful ledger debits are appended to `charges` so the caller can
        refund them if the surrounding transaction does not commit.
        """
        ledger_unit = None
        payment = Payment(
            tourist_id=tourist_id,
            booking_id=booking_id,
            cart_id=cart_id,
            amount=amount,
            currency=self.settings.local_currency,
            method=request.method,
            idempotency_key=request.idempotency_key or None,
        )

        if request.method == PaymentMethod.EXTERNAL:
            payment.reference = (request.gateway_reference or "").strip() or _new_reference("EXT")

        elif request.method == PaymentMethod.SAVINGS:
            account = lock_savings_account(session, tourist_id)
            balance = account.balance if account else 0.0
            if account is None or balance + 1e-9 < amount:
                raise InsufficientResourceError(
                    "Insufficient savings balance",
                    details={"balance": balance, "required": amount},
                )
            account.balance = round(account.balance - amount, 2)
            session.add(account)
            session.add(SavingsTransaction(
                tourist_id=tourist_id,
                kind=SavingsTxnKind.PAYMENT,
                amount=amount,
                description=f"Payment for booking {booking_id}" if booking_id else f"Checkout of cart {cart_id}",
            ))
            payment.reference = _new_reference("SAV")

        else:
            vault = lock_vault_account(session, tourist_id)
            if vault is None or not vault.wallet_address:
                raise NotFoundError("No vault wallet configured")
            ledger_unit = self.ledger.unit
            if ledger_amount is None:
                ledger_amount = self.rates.convert(amount, self.settings.local_currency, ledger_unit)
            payment.ledger_amount = ledger_amount
            payment.ledger_unit = ledger_unit

            if request.vault_mode == VaultMode.DEPOSIT:
                scan = self.ledger.scan_recent_deposits(
                    vault.wallet_address, ledger_amount,
                    self.settings.deposit_window_seconds, self.settings.deposit_tolerance,
                )
                if not scan.found:
                    raise DepositNotFoundError(ledger_amount, ledger_unit)
                payment.reference = f"CRYPTO-{scan.tx_hash}"
                used = session.exec(select(Payment).where(Payment.reference == payment.reference)).first()
                if used is not None:
                    raise StateConflictError("This deposit has already been applied to a payment")
            else:
                if self.accounts.is_stale(vault):
                    self.accounts.refresh_vault(session, vault)
                if vault.balance + 1e-9 < ledger_amount:
                    raise InsufficientResourceError(
                        "Insufficient vault balance",
                        details={"balance": vault.balance, "required": ledger_amount, "unit": ledger_unit},
                    )
                # claim the reference and idempotency key before money moves
                payment.reference = _new_reference("CRYPTO")
                self._flush_payment(session, payment)
                result = self.ledger.debit(vault.wallet_address, ledger_amount, payment.reference)
                if not result.success:
                    logger.bind(event="ledger_debit_failed").error("Vault debit failed: {}", result.error)
                    raise ExternalDependencyError("The vault debit did not go through, nothing was charged; please retry")
                charges.append({"address": vault.wallet_address, "amount": ledger_amount,
                                "reference": payment.reference})
                vault.balance = round(max(0.0, vault.balance - ledger_amount), 6)
                session.add(vault)
                if result.tx_hash:
                    payment.reference = f"CRYPTO-{result.tx_hash}"

        self._flush_payment(session, payment)
        return payment

    def _refund_charges(self, tourist_id: int, charges: List[Dict]) -> None:
        """Credit back ledger debits whose payment was rolled back."""
        for charge in charges:
            result = self.ledger.refund(charge["address"], charge["amount"], charge["reference"])
            status = "ok" if result.success else "error"
            record_event(self.engine, actor=tourist_id, action="VAULT_REFUND", status=status,
                         amount=charge["amount"], currency=self.ledger.unit, method=PaymentMethod.VAULT.value,
                         details={"reference": charge["reference"], "tx_hash": result.tx_hash,
                                  "error": result.error})
            if result.success:
                logger.bind(event="ledger_refund").warning("Refunded uncommitted debit {}", charge["reference"])
            else:
                logger.bind(event="ledger_refund_failed").error(
                    "Could not refund debit {}: {}", charge["reference"], result.error
                )

    def _record_failure(self, tourist_id: int, action: str, error: DomainError, request: PaymentRequest,
                        booking_id: Optional[int] = None, cart_id: Optional[int] = None,
                        amount: Optional[float] = None) -> None:
        status = "error" if isinstance(error, ExternalDependencyError) else "denied"
        record_event(self.engine, actor=tourist_id, action=action, status=status, booking_id=booking_id,
                     cart_id=cart_id, amount=amount, currency=self.settings.local_currency,
                     method=request.method.value, reasons=[error.code.value], details={"message": error.message})
        logger.bind(event="payment_failed").warning("{} for tourist {} failed: {}", action, tourist_id, error)

    @staticmethod
    def _custom_amount(request: PaymentRequest, total: float) -> float:
        if request.amount is None:
            return total
        if request.method != PaymentMethod.SAVINGS:
            raise ValidationError("A custom amount is only accepted for savings payments")
        if not math.isfinite(request.amount) or request.amount <= 0 or request.amount > total:
            raise ValidationError("Amount must be greater than 0 and not exceed the booking total")
        return round(request.amount, 2)

    # ----- legacy single-booking flow -----
    def _reserve_activities(self, tourist_id: int, booking_id: int) -> Dict:
        """Lock the booking's activities as booked in a short transaction; returns their prior statuses."""
        with transaction(self.engine) as session:
            booking = session.exec(
                select(Booking).where(Booking.id == booking_id, Booking.tourist_id == tourist_id).with_for_update()
            ).first()
            if booking is None:
                raise NotFoundError("Booking not found")
            if booking.status != BookingStatus.PENDING_PAYMENT:
                raise StateConflictError("Booking is not awaiting payment", details={"status": booking.status.value})
            activity_ids = list(session.exec(
                select(BookingItem.ref_id).where(
                    BookingItem.booking_id == booking_id, BookingItem.item_type == ItemType.ACTIVITY,
                )
            ))
            prior = {}
            for activity in lookups.get_activities(session, activity_ids, lock=True):
                if activity.status == ActivityStatus.BOOKED:
                    raise InsufficientResourceError(f"Activity '{activity.name}' is no longer available")
                prior[activity.id] = activity.status
                activity.status = ActivityStatus.BOOKED
                session.add(activity)
            return {"total": booking.total_cost, "prior": prior}

    def _release_activities(self, prior: Dict) -> None:
        if not prior:
            return
        with transaction(self.engine) as session:
            for activity in lookups.get_activities(session, prior.keys(), lock=True):
                activity.status = prior[activity.id]
                session.add(activity)
        logger.bind(event="activity_release").info("Released reserved activities {}", sorted(prior))

    def pay_booking(self, tourist_id: int, booking_id: int, request: PaymentRequest) -> Dict:
        replay = self._replay(tourist_id, request.idempotency_key, booking_id=booking_id)
        if replay is not None:
            return replay

        try:
            reservation = self._reserve_activities(tourist_id, booking_id)
        except DomainError as e:
            self._record_failure(tourist_id, "BOOKING_PAYMENT", e, request, booking_id=booking_id)
            raise

        amount = None
        charges: List[Dict] = []
        try:
            amount = self._custom_amount(request, reservation["total"])
            ledger_amount = self._ledger_amount(request, amount)
            with transaction(self.engine) as session:
                booking = session.exec(
                    select(Booking).where(Booking.id == booking_id).with_for_update()
                ).first()
                if booking.status != BookingStatus.PENDING_PAYMENT:
                    raise StateConflictError("Booking is not awaiting payment",
                                             details={"status": booking.status.value})
                payment = self._settle(session, tourist_id, amount, request, charges, booking_id=booking_id,
                                       ledger_amount=ledger_amount)
                ensure_booking_transition(booking.status, BookingStatus.CONFIRMED)
                booking.status = BookingStatus.CONFIRMED
                session.add(booking)
                record_event(session, actor=tourist_id, action="BOOKING_PAYMENT", booking_id=booking_id,
                             amount=amount, currency=self.settings.local_currency, method=request.method.value,
                             details={"reference": payment.reference})
        except Exception as e:
            self._refund_charges(tourist_id, charges)
            self._release_activities(reservation["prior"])
            if isinstance(e, DomainError):
                self._record_failure(tourist_id, "BOOKING_PAYMENT", e, request, booking_id=booking_id, amount=amount)
            raise

        logger.bind(event="booking_paid").info("Booking {} paid via {}", booking_id, request.method.value)
        return payment_view(payment, booking_status=BookingStatus.CONFIRMED.value)

    # ----- cart checkout -----
    def _quote_cart(self, tourist_id: int, request: PaymentRequest) -> Tuple[Optional[float], Optional[float]]:
        """Price the active cart in the ledger unit ahead of the checkout transaction."""
        if request.method != PaymentMethod.VAULT:
            return None, None
        with read_session(self.engine) as session:
            cart = find_active_cart(session, tourist_id)
            total = cart.total_cost if cart is not None else None
        if not total or total <= 0:
            return None, None
        return total, self._ledger_amount(request, total)

    def checkout_cart(self, tourist_id: int, request: PaymentRequest) -> Dict:
        replay = self._replay(tourist_id, request.idempotency_key)
        if replay is not None:
            return replay
        if request.amount is not None:
            raise ValidationError("A custom amount is not accepted at cart checkout")

        cart_id = None
        amount = None
        charges: List[Dict] = []
        try:
            quoted_total, ledger_amount = self._quote_cart(tourist_id, request)
            with transaction(self.engine) as session:
                cart = find_active_cart(session, tourist_id, lock=True)
                if cart is None:
                    raise NotFoundError("No active cart found")
                cart_id, amount = cart.id, cart.total_cost
                bookings: List[Booking] = cart_bookings(session, cart.id, lock=True)
                if cart.total_cost <= 0 or not bookings:
                    raise StateConflictError("Cart is empty")
                if amount != quoted_total:
                    ledger_amount = None

                payment = self._settle(session, tourist_id, amount, request, charges, cart_id=cart.id,
                                       ledger_amount=ledger_amount)
                for booking in bookings:
                    ensure_booking_transition(booking.status, BookingStatus.CONFIRMED)
                    booking.status = BookingStatus.CONFIRMED
                    session.add(booking)
                ensure_cart_transition(cart.status, CartStatus.COMPLETED)
                cart.status = CartStatus.COMPLETED
                session.add(cart)
                record_event(session, actor=tourist_id, action="CART_CHECKOUT", cart_id=cart.id, amount=amount,
                             currency=self.settings.local_currency, method=request.method.value,
                             details={"reference": payment.reference,
                                      "booking_ids": [b.id for b in bookings]})
                confirmed = [b.id for b in bookings]
        except Exception as e:
            self._refund_charges(tourist_id, charges)
            if isinstance(e, DomainError):
                self._record_failure(tourist_id, "CART_CHECKOUT", e, request, cart_id=cart_id, amount=amount)
            raise

        logger.bind(event="cart_checkout").info("Cart {} checked out via {} ({} bookings)", cart_id,
                                                request.method.value, len(confirmed))
        return payment_view(payment, cart_status=CartStatus.COMPLETED.value, confirmed_booking_ids=confirmed)
