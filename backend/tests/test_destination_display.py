"""Tests for the kitchen/bar destination display projection."""

from datetime import datetime, timedelta, timezone

import pytest

from tabkeeper.models import SessionOrderItem
from tabkeeper.schemas.destination import DisplayDestination, WaitPriority
from tabkeeper.schemas.session import OrderItemCreate
from tabkeeper.services.destination_display import (
    DestinationOrders,
    list_destination_orders,
    priority_band,
    status_counts,
    wait_minutes,
)
from tabkeeper.services.errors import NotFoundError
from tabkeeper.services.order_service import SessionOrderService
from tabkeeper.services.session_service import TableSessionService

from conftest import mojito, nachos

SERVICE_START = datetime(2026, 3, 14, 21, 0, tzinfo=timezone.utc)


def _item(name, destination, price=50000):
    return OrderItemCreate(item_name=name, quantity=1, unit_price=price, destination=destination)


def _stamp(db_session, item_id, minutes_after_start):
    item = db_session.get(SessionOrderItem, item_id)
    item.created_at = SERVICE_START + timedelta(minutes=minutes_after_start)
    db_session.commit()


@pytest.fixture
def orders(db_session):
    return SessionOrderService(db_session)


@pytest.fixture
def floor(db_session, venue, table, orders):
    """A table tab and a walk-in tab with mixed kitchen/bar orders."""
    sessions = TableSessionService(db_session)
    table_tab = sessions.check_in(venue.id, table_id=table.id, guest_count=4)
    walk_in = sessions.check_in(venue.id, guest_count=2, guest_name="Dewi")

    first = orders.submit_order(table_tab.id, [mojito(), nachos(), _item("Wings", "kitchen")])
    second = orders.submit_order(walk_in.id, [_item("Burger", "kitchen"), _item("Negroni", "bar")])

    # Burger was fired before the table's food
    _stamp(db_session, first.items[0].id, 2)
    _stamp(db_session, first.items[1].id, 4)
    _stamp(db_session, first.items[2].id, 4)
    _stamp(db_session, second.items[0].id, 1)
    _stamp(db_session, second.items[1].id, 3)
    return {"table_tab": table_tab, "walk_in": walk_in, "first": first, "second": second}


class TestWaitBands:
    @pytest.mark.parametrize("minutes,band", [
        (0, WaitPriority.NORMAL),
        (4, WaitPriority.NORMAL),
        (5, WaitPriority.ELEVATED),
        (9, WaitPriority.ELEVATED),
        (10, WaitPriority.HIGH),
        (14, WaitPriority.HIGH),
        (15, WaitPriority.CRITICAL),
        (90, WaitPriority.CRITICAL),
    ])
    def test_priority_band(self, minutes, band):
        assert priority_band(minutes) == band

    def test_wait_minutes_floors(self):
        assert wait_minutes(SERVICE_START, SERVICE_START + timedelta(minutes=4, seconds=59)) == 4

    def test_wait_minutes_accepts_naive_timestamps(self):
        naive = SERVICE_START.replace(tzinfo=None)
        assert wait_minutes(naive, SERVICE_START + timedelta(minutes=12)) == 12

    def test_clock_skew_never_negative(self):
        assert wait_minutes(SERVICE_START, SERVICE_START - timedelta(minutes=3)) == 0


class TestDestinationOrders:
    def test_kitchen_groups_oldest_first(self, db_session, venue, floor):
        groups = list(DestinationOrders(db_session, venue.id, DisplayDestination.KITCHEN))

        assert [g.order_id for g in groups] == [floor["second"].id, floor["first"].id]
        walk_in_group, table_group = groups
        assert walk_in_group.is_walk_in is True
        assert walk_in_group.table_number is None
        assert walk_in_group.guest_name == "Dewi"
        assert [i.item_name for i in walk_in_group.items] == ["Burger"]
        assert table_group.table_number == "T1"
        assert [i.item_name for i in table_group.items] == ["Nachos", "Wings"]

    def test_bar_excludes_kitchen_items(self, db_session, venue, floor):
        groups = list(DestinationOrders(db_session, venue.id, "bar"))

        assert [g.order_id for g in groups] == [floor["first"].id, floor["second"].id]
        assert [[i.item_name for i in g.items] for g in groups] == [["Mojito"], ["Negroni"]]
        assert all(i.destination == "bar" for g in groups for i in g.items)

    def test_served_and_cancelled_items_drop_off(self, db_session, venue, floor, orders):
        burger_id = floor["second"].items[0].id
        for status in ("preparing", "ready", "served"):
            orders.update_item_status(burger_id, status)
        orders.update_item_status(floor["first"].items[2].id, "cancelled")

        groups = list(DestinationOrders(db_session, venue.id, "kitchen"))
        assert [g.order_id for g in groups] == [floor["first"].id]
        assert [i.item_name for i in groups[0].items] == ["Nachos"]

    def test_cancelled_orders_and_closed_sessions_hidden(self, db_session, venue, floor, orders):
        orders.cancel_order(floor["first"].id)
        TableSessionService(db_session).close_session(floor["walk_in"].id)

        assert list(DestinationOrders(db_session, venue.id, "kitchen")) == []
        assert list(DestinationOrders(db_session, venue.id, "bar")) == []

    def test_restartable_and_rereads(self, db_session, venue, floor, orders):
        display = DestinationOrders(db_session, venue.id, "bar")
        assert len(list(display)) == 2
        assert len(list(display)) == 2

        orders.submit_order(floor["table_tab"].id, [_item("Espresso Martini", "bar")])
        assert len(list(display)) == 3

    def test_other_venue_not_shown(self, db_session, floor):
        assert list(DestinationOrders(db_session, 999, "kitchen")) == []

    def test_status_counts(self, db_session, venue, floor, orders):
        orders.update_item_status(floor["first"].items[1].id, "preparing")
        wings = floor["first"].items[2].id
        orders.update_item_status(wings, "preparing")
        orders.update_item_status(wings, "ready")

        counts = status_counts(DestinationOrders(db_session, venue.id, "kitchen"))
        assert (counts.pending, counts.preparing, counts.ready) == (1, 1, 1)


class TestDestinationResponse:
    def test_response_with_priorities(self, db_session, venue, floor):
        now = SERVICE_START + timedelta(minutes=12)
        response = list_destination_orders(db_session, venue.id, DisplayDestination.KITCHEN, now=now)

        assert response.venue_id == venue.id
        assert response.destination == DisplayDestination.KITCHEN
        assert [o.wait_minutes for o in response.orders] == [11, 8]
        assert [o.priority for o in response.orders] == [WaitPriority.HIGH, WaitPriority.ELEVATED]
        assert response.counts.pending == 3
        assert response.refresh_seconds == 30
        assert response.generated_at == now

    def test_unknown_venue(self, db_session):
        with pytest.raises(NotFoundError):
            list_destination_orders(db_session, 4242, DisplayDestination.BAR)
