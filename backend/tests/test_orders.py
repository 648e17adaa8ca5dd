"""Tests for order submission, item status progression and cancellation."""

import pytest

from tabkeeper.models import SessionOrder, SessionOrderItem
from tabkeeper.schemas.session import OrderItemCreate
from tabkeeper.services import order_service
from tabkeeper.services.errors import InvalidInputError, InvalidStateError, NotFoundError
from tabkeeper.services.invoice_service import SessionInvoiceService
from tabkeeper.services.order_service import (
    SessionOrderService,
    can_transition_item,
    can_transition_order,
)
from tabkeeper.services.session_service import TableSessionService

from conftest import mojito, nachos, run_between


@pytest.fixture
def orders(db_session, feed):
    return SessionOrderService(db_session, feed=feed)


@pytest.fixture
def open_session(db_session, venue, table):
    return TableSessionService(db_session).check_in(venue.id, table_id=table.id, guest_count=4)


def _advance(orders, item_id, *statuses):
    item = None
    for status in statuses:
        item = orders.update_item_status(item_id, status)
    return item


# ============== Transition tables ==============

class TestTransitions:
    @pytest.mark.parametrize("current,new", [
        ("pending", "preparing"),
        ("preparing", "ready"),
        ("ready", "served"),
        ("pending", "cancelled"),
        ("preparing", "cancelled"),
    ])
    def test_allowed_item_transitions(self, current, new):
        assert can_transition_item(current, new)

    @pytest.mark.parametrize("current,new", [
        ("pending", "ready"),
        ("pending", "served"),
        ("ready", "preparing"),
        ("served", "ready"),
        ("ready", "cancelled"),
        ("served", "cancelled"),
        ("cancelled", "pending"),
    ])
    def test_rejected_item_transitions(self, current, new):
        assert not can_transition_item(current, new)

    def test_order_flow_is_forward_only(self):
        assert can_transition_order("pending", "confirmed")
        assert can_transition_order("confirmed", "preparing")
        assert not can_transition_order("confirmed", "ready")
        assert not can_transition_order("served", "ready")
        assert not can_transition_order("cancelled", "confirmed")


# ============== Submission ==============

class TestSubmitOrder:
    def test_submit_creates_confirmed_order_with_pending_items(self, orders, feed, open_session):
        order = orders.submit_order(open_session.id, [mojito(), nachos()], notes="no ice", ordered_by=3)

        assert order.order_number == 1
        assert order.status == "confirmed"
        assert order.confirmed_at is not None
        assert order.ordered_by == 3
        assert order.notes == "no ice"
        assert [i.status for i in order.items] == ["pending", "pending"]
        assert [i.destination for i in order.items] == ["bar", "kitchen"]
        assert order.items[0].line_value == 170000
        assert order.billable_total == 215000
        assert feed.names == ["order.created"]

    def test_destination_defaults_to_kitchen(self, orders, open_session):
        order = orders.submit_order(open_session.id, [OrderItemCreate(item_name="Fries", quantity=1, unit_price=30000)])
        assert order.items[0].destination == "kitchen"

    def test_order_numbers_increase_and_are_not_reused(self, orders, open_session):
        first = orders.submit_order(open_session.id, [mojito()])
        second = orders.submit_order(open_session.id, [nachos()])
        orders.cancel_order(second.id)
        third = orders.submit_order(open_session.id, [nachos()])

        assert [first.order_number, second.order_number, third.order_number] == [1, 2, 3]

    def test_empty_order_rejected(self, orders, open_session):
        with pytest.raises(InvalidInputError):
            orders.submit_order(open_session.id, [])

    def test_unknown_session(self, orders):
        with pytest.raises(NotFoundError):
            orders.submit_order(777, [mojito()])

    def test_price_is_snapshotted(self, db_session, orders, open_session):
        order = orders.submit_order(open_session.id, [mojito(quantity=1)])
        # A later menu price change arrives as a new line; the stored line keeps its price
        orders.add_items_to_order(order.id, [OrderItemCreate(item_name="Mojito", quantity=1, unit_price=95000)])

        view = TableSessionService(db_session).get_session_by_id(open_session.id)
        assert [i.unit_price for i in view.orders[0].items] == [85000, 95000]
        assert view.subtotal == 180000


class TestAddItems:
    def test_add_items(self, orders, open_session):
        order = orders.submit_order(open_session.id, [mojito()])
        updated = orders.add_items_to_order(order.id, [nachos(quantity=2)])

        assert len(updated.items) == 2
        assert updated.items[1].status == "pending"
        assert updated.billable_total == 170000 + 90000

    def test_cannot_add_to_cancelled_order(self, orders, open_session):
        order = orders.submit_order(open_session.id, [mojito()])
        orders.cancel_order(order.id)

        with pytest.raises(InvalidStateError):
            orders.add_items_to_order(order.id, [nachos()])

    def test_unknown_order(self, orders):
        with pytest.raises(NotFoundError):
            orders.add_items_to_order(555, [nachos()])


# ============== Item status ==============

class TestItemStatus:
    def test_forward_progression_stamps_served_at(self, orders, open_session):
        order = orders.submit_order(open_session.id, [nachos()])
        item_id = order.items[0].id

        item = _advance(orders, item_id, "preparing", "ready")
        assert item.status == "ready"
        assert item.served_at is None

        item = orders.update_item_status(item_id, "served")
        assert item.status == "served"
        assert item.served_at is not None

    def test_cannot_skip_a_step(self, orders, open_session):
        order = orders.submit_order(open_session.id, [nachos()])

        with pytest.raises(InvalidStateError):
            orders.update_item_status(order.items[0].id, "ready")

    def test_cannot_move_backwards(self, orders, open_session):
        order = orders.submit_order(open_session.id, [nachos()])
        item_id = order.items[0].id
        _advance(orders, item_id, "preparing", "ready")

        with pytest.raises(InvalidStateError):
            orders.update_item_status(item_id, "preparing")

    def test_cancel_while_preparing(self, orders, open_session):
        order = orders.submit_order(open_session.id, [nachos()])
        item_id = order.items[0].id
        _advance(orders, item_id, "preparing")

        assert orders.update_item_status(item_id, "cancelled").status == "cancelled"

    def test_ready_item_cannot_be_cancelled(self, orders, open_session):
        order = orders.submit_order(open_session.id, [nachos()])
        item_id = order.items[0].id
        _advance(orders, item_id, "preparing", "ready")

        with pytest.raises(InvalidStateError) as exc_info:
            orders.update_item_status(item_id, "cancelled")
        assert exc_info.value.current_status == "ready"

    def test_unknown_status_value(self, orders, open_session):
        order = orders.submit_order(open_session.id, [nachos()])
        with pytest.raises(ValueError):
            orders.update_item_status(order.items[0].id, "burnt")

    def test_unknown_item(self, orders):
        with pytest.raises(NotFoundError):
            orders.update_item_status(999, "preparing")


class TestItemQuantity:
    def test_change_quantity(self, orders, open_session):
        order = orders.submit_order(open_session.id, [mojito()])
        item = orders.update_item_quantity(order.items[0].id, 5)

        assert item.quantity == 5
        assert item.line_value == 425000

    def test_zero_cancels_item(self, db_session, orders, open_session):
        order = orders.submit_order(open_session.id, [mojito(), nachos()])
        item = orders.update_item_quantity(order.items[0].id, 0)

        assert item.status == "cancelled"
        assert item.quantity == 2
        assert TableSessionService(db_session).get_session_by_id(open_session.id).subtotal == 45000

    def test_negative_quantity_rejected(self, orders, open_session):
        order = orders.submit_order(open_session.id, [mojito()])
        with pytest.raises(InvalidInputError):
            orders.update_item_quantity(order.items[0].id, -1)

    def test_only_pending_items(self, orders, open_session):
        order = orders.submit_order(open_session.id, [mojito()])
        _advance(orders, order.items[0].id, "preparing")

        with pytest.raises(InvalidStateError):
            orders.update_item_quantity(order.items[0].id, 3)


# ============== Order status and cancellation ==============

class TestOrderStatus:
    def test_advance_order(self, orders, open_session):
        order = orders.submit_order(open_session.id, [mojito()])
        assert orders.update_order_status(order.id, "preparing").status == "preparing"

    def test_skip_rejected(self, orders, open_session):
        order = orders.submit_order(open_session.id, [mojito()])
        with pytest.raises(InvalidStateError):
            orders.update_order_status(order.id, "served")

    def test_cancelled_status_goes_through_cancel(self, orders, open_session):
        order = orders.submit_order(open_session.id, [mojito()])
        updated = orders.update_order_status(order.id, "cancelled")

        assert updated.status == "cancelled"
        assert all(i.status == "cancelled" for i in updated.items)


class TestCancelOrder:
    def test_cancel_cascades_to_items(self, db_session, orders, feed, open_session):
        order = orders.submit_order(open_session.id, [mojito(), nachos()])
        cancelled = orders.cancel_order(order.id)

        assert cancelled.status == "cancelled"
        assert [i.status for i in cancelled.items] == ["cancelled", "cancelled"]
        assert cancelled.billable_total == 0
        assert TableSessionService(db_session).get_session_by_id(open_session.id).subtotal == 0
        assert feed.names[-1] == "order.cancelled"

    def test_served_item_survives_cancellation(self, db_session, orders, open_session):
        order = orders.submit_order(
            open_session.id,
            [OrderItemCreate(item_name="Beer", quantity=1, unit_price=60000, destination="bar"), nachos()],
        )
        served_id, pending_id = order.items[0].id, order.items[1].id
        _advance(orders, served_id, "preparing", "ready", "served")

        result = orders.cancel_order(order.id)
        statuses = {i.id: i.status for i in result.items}

        assert statuses[served_id] == "served"
        assert statuses[pending_id] == "cancelled"
        # The order stays billable for what was already served
        assert result.status == "served"
        assert TableSessionService(db_session).get_session_by_id(open_session.id).subtotal == 60000

    def test_cannot_cancel_twice(self, orders, open_session):
        order = orders.submit_order(open_session.id, [mojito()])
        orders.cancel_order(order.id)

        with pytest.raises(InvalidStateError):
            orders.cancel_order(order.id)


# ============== Concurrent devices ==============

class TestConcurrentOrdering:
    """A second device acts between this device's read of the session and its write."""

    @pytest.fixture
    def race(self, file_db):
        factory, (venue_id, table_id) = file_db
        setup = factory()
        session_id = TableSessionService(setup).check_in(venue_id, table_id=table_id, guest_count=2).id
        setup.close()
        device_a, device_b = factory(), factory()
        yield factory, session_id, device_a, device_b
        device_a.close()
        device_b.close()

    def _orders(self, factory, session_id):
        check = factory()
        try:
            return sorted(
                (o.order_number, o.status)
                for o in check.query(SessionOrder).filter(SessionOrder.session_id == session_id)
            )
        finally:
            check.close()

    def test_submit_loses_to_invoice(self, monkeypatch, race):
        factory, session_id, device_a, device_b = race
        SessionOrderService(device_a).submit_order(session_id, [nachos()])
        billed = []
        monkeypatch.setattr(order_service, "require_session", run_between(
            order_service, "require_session",
            lambda: billed.append(SessionInvoiceService(device_b).generate_invoice(session_id, 0, 0)),
        ))

        with pytest.raises(InvalidStateError) as exc_info:
            SessionOrderService(device_a).submit_order(session_id, [mojito()])

        assert exc_info.value.current_status == "billing"
        assert billed[0].subtotal == 45000
        assert self._orders(factory, session_id) == [(1, "confirmed")]

    def test_concurrent_submissions_get_consecutive_numbers(self, monkeypatch, race):
        factory, session_id, device_a, device_b = race
        monkeypatch.setattr(order_service, "require_session", run_between(
            order_service, "require_session",
            lambda: SessionOrderService(device_b).submit_order(session_id, [nachos()]),
        ))

        order = SessionOrderService(device_a).submit_order(session_id, [mojito()])

        assert order.order_number == 2
        assert self._orders(factory, session_id) == [(1, "confirmed"), (2, "confirmed")]

    def test_add_items_loses_to_invoice(self, race):
        factory, session_id, device_a, device_b = race
        orders = SessionOrderService(device_a)
        order = orders.submit_order(session_id, [nachos()])
        orders._get_order = run_between(
            orders, "_get_order",
            lambda: SessionInvoiceService(device_b).generate_invoice(session_id, 0, 0),
        )

        with pytest.raises(InvalidStateError):
            orders.add_items_to_order(order.id, [mojito()])

        check = factory()
        assert check.query(SessionOrderItem).count() == 1
        check.close()

    def test_cancel_loses_to_invoice(self, race):
        factory, session_id, device_a, device_b = race
        orders = SessionOrderService(device_a)
        order = orders.submit_order(session_id, [nachos()])
        billed = []
        orders._get_order = run_between(
            orders, "_get_order",
            lambda: billed.append(SessionInvoiceService(device_b).generate_invoice(session_id, 0, 0)),
        )

        with pytest.raises(InvalidStateError):
            orders.cancel_order(order.id)

        # The bill already includes the order, so it must stay live
        assert billed[0].subtotal == 45000
        assert self._orders(factory, session_id) == [(1, "confirmed")]
