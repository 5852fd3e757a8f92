from dataclasses import dataclass
from typing import Optional

from loguru import logger
from sqlalchemy.engine import Engine

from smarttour.booking.cart import CartManager
from smarttour.booking.fulfillment import FulfillmentTracker
from smarttour.booking.guides import GuideAssigner
from smarttour.booking.transactions import BookingTransactionManager
from smarttour.config import Settings
from smarttour.database import get_engine, init_db
from smarttour.payment.accounts import AccountService
from smarttour.payment.ledger import LedgerClient, VaultGatewayClient
from smarttour.payment.ledger_mock import MockLedgerClient
from smarttour.payment.processor import PaymentProcessor
from smarttour.payment.rates import ExchangeRateService


@dataclass
class Services:
    settings: Settings
    engine: Engine
    bookings: BookingTransactionManager
    cart: CartManager
    payments: PaymentProcessor
    accounts: AccountService
    fulfillment: FulfillmentTracker
    guides: GuideAssigner
    rates: ExchangeRateService
    ledger: LedgerClient


def build_ledger(settings: Settings) -> LedgerClient:
    if settings.vault_gateway_url and settings.vault_authority_secret:
        return VaultGatewayClient(
            settings.vault_gateway_url,
            settings.vault_authority_secret,
            unit=settings.ledger_unit,
            timeout=settings.ledger_timeout_seconds,
        )
    logger.bind(event="ledger_mock").warning("VAULT_GATEWAY_URL not configured; using the in-memory ledger")
    return MockLedgerClient(unit=settings.ledger_unit)


def build_services(settings: Settings, engine: Optional[Engine] = None, ledger: Optional[LedgerClient] = None,
                   rates: Optional[ExchangeRateService] = None) -> Services:
    engine = engine or init_db(get_engine(settings.database_url))
    ledger = ledger or build_ledger(settings)
    rates = rates or ExchangeRateService(settings)
    bookings = BookingTransactionManager(engine, settings)
    accounts = AccountService(engine, settings, ledger)
    payments = PaymentProcessor(engine, settings, accounts, rates, ledger)
    return Services(
        settings=settings,
        engine=engine,
        bookings=bookings,
        cart=CartManager(engine, bookings, payments),
        payments=payments,
        accounts=accounts,
        fulfillment=FulfillmentTracker(engine),
        guides=GuideAssigner(engine),
        rates=rates,
        ledger=ledger,
    )
