from datetime import date, timedelta

import pytest
import requests
from fastapi.testclient import TestClient
from sqlmodel import Session

from app import app, get_services
from smarttour.booking.schemas import DirectBookingRequest, ServiceSelection
from smarttour.catalog.models import Activity, Destination, GuideStatus, Hotel, TourGuide, Transport
from smarttour.config import Settings
from smarttour.database import get_engine, init_db
from smarttour.payment.ledger_mock import MockLedgerClient
from smarttour.payment.rates import ExchangeRateService
from smarttour.services import build_services

TOURIST = 1001
OTHER_TOURIST = 1002
ADMIN = 9001
HOTEL_MANAGER = 601
TRAVEL_AGENT = 501
GUIDE = 701

START = date.today() + timedelta(days=10)
END = START + timedelta(days=3)


@pytest.fixture(autouse=True)
def offline_rates(monkeypatch):
    """Keep tests off the network; the rate service falls back to fixed rates (1 USD = 2500 TZS)."""
    def _unreachable(*args, **kwargs):
        raise requests.ConnectionError("network disabled in tests")
    monkeypatch.setattr("smarttour.payment.rates.requests.get", _unreachable)


@pytest.fixture(name="settings")
def settings_fixture(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path / 'smarttour_test.db'}")


@pytest.fixture(name="engine")
def engine_fixture(settings):
    engine = init_db(get_engine(settings.database_url))
    yield engine
    engine.dispose()


@pytest.fixture(name="ledger")
def ledger_fixture():
    return MockLedgerClient()


@pytest.fixture(name="services")
def services_fixture(settings, engine, ledger):
    return build_services(settings, engine=engine, ledger=ledger, rates=ExchangeRateService(settings))


@pytest.fixture(name="catalog")
def catalog_fixture(engine):
    with Session(engine) as session:
        session.add_all([
            Destination(id=1, name="Serengeti", cost_per_day=10.0),
            Destination(id=2, name="Zanzibar", cost_per_day=0.0),
            Transport(id=1, agency_id=TRAVEL_AGENT, origin_name="Arusha", destination_id=1, cost=100.0),
            Transport(id=2, agency_id=502, origin_name="Dar es Salaam", destination_id=2, cost=80.0),
            Hotel(id=1, manager_id=HOTEL_MANAGER, name="Savannah Lodge", destination_id=1, base_price_per_night=50.0),
            Hotel(id=2, manager_id=602, name="Stone Town Inn", destination_id=2, base_price_per_night=40.0),
            Activity(id=1, destination_id=1, name="Game Drive", price=20.0),
            Activity(id=2, destination_id=1, name="Balloon Safari", price=30.0),
            Activity(id=3, destination_id=2, name="Spice Tour", price=15.0),
            TourGuide(user_id=GUIDE, full_name="Amani Mushi", destination_id=1),
            TourGuide(user_id=702, full_name="Baraka Said", destination_id=1, status=GuideStatus.SUSPENDED),
            TourGuide(user_id=703, full_name="Zawadi Juma", destination_id=1, available=False),
        ])
        session.commit()
    return engine


@pytest.fixture(name="make_selection")
def make_selection_fixture():
    """Serengeti trip: transport 100 + hotel 3 x 50 + game drive 3 x 20 + balloon 30 + fee 3 x 10 = 370."""
    def _make(**overrides):
        data = {
            "destination_id": 1,
            "start_date": START,
            "end_date": END,
            "transport_id": 1,
            "hotel_id": 1,
            "activity_ids": [1, 2],
            "activity_sessions": {1: 3},
        }
        data.update(overrides)
        if "tourist_full_name" in data:
            return DirectBookingRequest(**data)
        return ServiceSelection(**data)
    return _make


def headers(user_id: int, role: str = "tourist"):
    return {"X-User-Id": str(user_id), "X-User-Role": role}


@pytest.fixture(name="client")
def client_fixture(services, catalog):
    app.dependency_overrides[get_services] = lambda: services
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
