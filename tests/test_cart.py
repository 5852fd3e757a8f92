import threading

import pytest
from sqlmodel import Session, select

from conftest import TOURIST
from smarttour.booking import cart as cart_module
from smarttour.booking.models import Booking, BookingItem, Cart
from smarttour.errors import NotFoundError


def test_add_booking_creates_single_active_cart(services, catalog, make_selection):
    first = services.cart.add_booking(TOURIST, make_selection())
    second = services.cart.add_booking(TOURIST, make_selection(activity_ids=[], activity_sessions={}))

    assert first["cart_id"] == second["cart_id"]
    assert first["booking"]["status"] == "in_cart"
    assert second["cart_total"] == 370.0 + 250.0

    with Session(catalog) as session:
        carts = session.exec(select(Cart)).all()
        assert len(carts) == 1
        assert carts[0].total_cost == 620.0


def test_failed_add_leaves_cart_untouched(services, catalog, make_selection):
    services.cart.add_booking(TOURIST, make_selection())
    with pytest.raises(NotFoundError):
        services.cart.add_booking(TOURIST, make_selection(activity_ids=[2, 42]))

    view = services.cart.view(TOURIST)
    assert view["total_cost"] == 370.0
    assert len(view["bookings"]) == 1
    with Session(catalog) as session:
        assert len(session.exec(select(BookingItem)).all()) == 6


def test_failed_first_add_creates_no_cart(services, catalog, make_selection):
    with pytest.raises(NotFoundError):
        services.cart.add_booking(TOURIST, make_selection(hotel_id=77))
    with Session(catalog) as session:
        assert session.exec(select(Cart)).all() == []


def test_view_without_cart_is_empty_and_creates_nothing(services, catalog):
    view = services.cart.view(TOURIST)
    assert view == {"id": None, "total_cost": 0.0, "status": None, "bookings": []}
    with Session(catalog) as session:
        assert session.exec(select(Cart)).all() == []


def test_view_resolves_item_names(services, catalog, make_selection):
    services.cart.add_booking(TOURIST, make_selection())
    view = services.cart.view(TOURIST)
    names = [i["item_name"] for i in view["bookings"][0]["items"]]
    assert names == [
        "Arusha to Serengeti",
        "Savannah Lodge",
        "Game Drive",
        "Balloon Safari",
        "Serengeti access fee",
        "Tour Guide Assignment Pending",
    ]


def test_remove_booking_twice(services, catalog, make_selection):
    added = services.cart.add_booking(TOURIST, make_selection())
    booking_id = added["booking"]["id"]

    result = services.cart.remove_booking(TOURIST, booking_id)
    assert result["cart_total"] == 0.0
    with pytest.raises(NotFoundError):
        services.cart.remove_booking(TOURIST, booking_id)

    with Session(catalog) as session:
        assert session.get(Booking, booking_id) is None
        assert session.exec(select(BookingItem).where(BookingItem.booking_id == booking_id)).all() == []


def test_concurrent_removals_floor_total_at_zero(services, catalog, make_selection):
    booking_id = services.cart.add_booking(TOURIST, make_selection())["booking"]["id"]
    outcomes = []

    def remove():
        try:
            services.cart.remove_booking(TOURIST, booking_id)
            outcomes.append("removed")
        except NotFoundError:
            outcomes.append("not_found")

    threads = [threading.Thread(target=remove) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["not_found", "removed"]
    assert services.cart.view(TOURIST)["total_cost"] == 0.0


def test_remove_other_tourists_booking_not_found(services, catalog, make_selection):
    booking_id = services.cart.add_booking(TOURIST, make_selection())["booking"]["id"]
    services.cart.add_booking(TOURIST + 1, make_selection())
    with pytest.raises(NotFoundError):
        services.cart.remove_booking(TOURIST + 1, booking_id)


def test_clear_cart(services, catalog, make_selection):
    services.cart.add_booking(TOURIST, make_selection())
    services.cart.add_booking(TOURIST, make_selection(hotel_id=None))

    result = services.cart.clear(TOURIST)
    assert result["removed"] == 2
    view = services.cart.view(TOURIST)
    assert view["total_cost"] == 0.0
    assert view["bookings"] == []
    with Session(catalog) as session:
        assert session.exec(select(BookingItem)).all() == []


def test_clear_without_cart_not_found(services, catalog):
    with pytest.raises(NotFoundError):
        services.cart.clear(TOURIST)


def test_concurrent_adds_share_one_active_cart(services, catalog, make_selection):
    outcomes = []

    def add():
        outcomes.append(services.cart.add_booking(TOURIST, make_selection())["cart_id"])

    threads = [threading.Thread(target=add) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(outcomes) == 2
    assert outcomes[0] == outcomes[1]
    with Session(catalog) as session:
        cart = session.exec(select(Cart)).one()
        assert cart.status.value == "active"
        assert cart.total_cost == 740.0
        assert len(session.exec(select(Booking).where(Booking.cart_id == cart.id)).all()) == 2


def test_cart_created_by_a_racing_request_is_reused(services, catalog, make_selection, monkeypatch):
    cart_id = services.cart.add_booking(TOURIST, make_selection())["cart_id"]
    lookups = []
    real_find = cart_module.find_active_cart

    def find_after_race(session, tourist_id, lock=False):
        # the first lookup misses the cart, as if it was committed right after our read
        lookups.append(tourist_id)
        if len(lookups) == 1:
            return None
        return real_find(session, tourist_id, lock=lock)

    monkeypatch.setattr(cart_module, "find_active_cart", find_after_race)

    result = services.cart.add_booking(TOURIST, make_selection(activity_ids=[], activity_sessions={}))

    assert result["cart_id"] == cart_id
    assert result["cart_total"] == 620.0
    assert len(lookups) == 2
    with Session(catalog) as session:
        assert len(session.exec(select(Cart)).all()) == 1
