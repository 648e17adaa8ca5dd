"""
Session Order Service

Orders are tickets submitted to the kitchen/bar within an open session.
Items carry a name/price snapshot taken at order time, so later menu price
changes never reach an existing bill.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tabkeeper.core.change_feed import ChangeEvent, ChangeFeed, change_feed
from tabkeeper.db.base import utcnow
from tabkeeper.models.table_session import (
    ItemStatus,
    OrderStatus,
    SessionOrder,
    SessionOrderItem,
    SessionStatus,
    TableSession,
)
from tabkeeper.schemas.session import OrderItemCreate, OrderItemResponse, OrderWithItems
from tabkeeper.services.errors import InvalidInputError, InvalidStateError, NotFoundError
from tabkeeper.services.session_service import (
    build_order_view,
    claim_session,
    publish,
    require_session,
    require_status,
)

logger = logging.getLogger(__name__)


# Forward-only progressions; cancellation is handled separately
ITEM_FLOW = [
    ItemStatus.PENDING.value,
    ItemStatus.PREPARING.value,
    ItemStatus.READY.value,
    ItemStatus.SERVED.value,
]
ORDER_FLOW = [
    OrderStatus.PENDING.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.PREPARING.value,
    OrderStatus.READY.value,
    OrderStatus.SERVED.value,
]
ITEM_CANCELLABLE = (ItemStatus.PENDING.value, ItemStatus.PREPARING.value)

# Kitchen progress may continue after the bill was requested
ITEM_PROGRESS_SESSION_STATUSES = (
    SessionStatus.OPEN.value,
    SessionStatus.BILLING.value,
    SessionStatus.PAID.value,
)


def is_next_step(flow: List[str], current: str, new: str) -> bool:
    """True when ``new`` is exactly one step after ``current`` in ``flow``."""
    if current not in flow or new not in flow:
        return False
    return flow.index(new) == flow.index(current) + 1


def can_transition_item(current: str, new: str) -> bool:
    if new == ItemStatus.CANCELLED.value:
        return current in ITEM_CANCELLABLE
    return is_next_step(ITEM_FLOW, current, new)


def can_transition_order(current: str, new: str) -> bool:
    return is_next_step(ORDER_FLOW, current, new)


def _new_item(order_id: int, data: OrderItemCreate) -> SessionOrderItem:
    return SessionOrderItem(
        session_order_id=order_id,
        menu_item_id=data.menu_item_id,
        item_name=data.item_name,
        quantity=data.quantity,
        unit_price=data.unit_price,
        modifiers=data.modifiers or {},
        notes=data.notes,
        destination=data.destination.value,
        status=ItemStatus.PENDING.value,
    )


class SessionOrderService:
    """Order submission, item changes and kitchen/bar status progression."""

    def __init__(self, db: Session, feed: ChangeFeed = change_feed):
        self.db = db
        self.feed = feed

    # ===== LOOKUPS =====

    def _get_order(self, order_id: int) -> SessionOrder:
        order = self.db.get(SessionOrder, order_id)
        if order is None:
            raise NotFoundError("order", order_id)
        return order

    def _get_item(self, item_id: int) -> SessionOrderItem:
        item = self.db.get(SessionOrderItem, item_id)
        if item is None:
            raise NotFoundError("order item", item_id)
        return item

    def _order_view(self, order_id: int) -> OrderWithItems:
        self.db.expire_all()
        return build_order_view(self._get_order(order_id))

    def _emit(self, session: TableSession, entity: str, action: str, entity_id: int, **payload) -> None:
        publish(self.feed, ChangeEvent(
            entity=entity, action=action, venue_id=session.venue_id,
            session_id=session.id, entity_id=entity_id, payload=payload,
        ))

    # ===== ORDERS =====

    def submit_order(
        self,
        session_id: int,
        items: Iterable[OrderItemCreate],
        notes: Optional[str] = None,
        ordered_by: Optional[int] = None,
    ) -> OrderWithItems:
        """Create the next numbered order for an open session.

        The order starts ``confirmed`` and its items ``pending``.
        """
        items = list(items)
        if not items:
            raise InvalidInputError("An order needs at least one item")

        session = require_session(self.db, session_id)
        claim_session(self.db, session_id, (SessionStatus.OPEN.value,), "add an order")

        # Read under the session lock, so concurrent submissions get consecutive numbers.
        # Numbers are never reused; cancelled orders still count
        last_number = (
            self.db.query(func.max(SessionOrder.order_number))
            .filter(SessionOrder.session_id == session_id)
            .scalar()
        )
        now = utcnow()
        order = SessionOrder(
            session_id=session_id,
            order_number=(last_number or 0) + 1,
            status=OrderStatus.CONFIRMED.value,
            notes=notes,
            ordered_by=ordered_by,
            confirmed_at=now,
        )
        self.db.add(order)
        self.db.flush()

        for data in items:
            self.db.add(_new_item(order.id, data))
        self.db.commit()

        logger.info(
            f"Order #{order.order_number} ({len(items)} items) submitted for session {session_id}"
        )
        self._emit(session, "order", "created", order.id, order_number=order.order_number)
        return self._order_view(order.id)

    def add_items_to_order(self, order_id: int, items: Iterable[OrderItemCreate]) -> OrderWithItems:
        items = list(items)
        if not items:
            raise InvalidInputError("No items to add")

        order = self._get_order(order_id)
        session = order.session
        if order.status in (OrderStatus.CANCELLED.value, OrderStatus.SERVED.value):
            raise InvalidStateError(
                f"Cannot add items to order {order_id}: order is {order.status}",
                current_status=order.status,
            )
        claim_session(self.db, session.id, (SessionStatus.OPEN.value,), "add items")

        for data in items:
            self.db.add(_new_item(order.id, data))
        self.db.commit()

        self._emit(session, "order", "items_added", order.id, count=len(items))
        return self._order_view(order.id)

    def update_order_status(self, order_id: int, status: str) -> OrderWithItems:
        status = OrderStatus(status).value
        if status == OrderStatus.CANCELLED.value:
            return self.cancel_order(order_id)

        order = self._get_order(order_id)
        session = order.session
        require_status(session, ITEM_PROGRESS_SESSION_STATUSES, "update order status")
        if not can_transition_order(order.status, status):
            raise InvalidStateError(
                f"Invalid order transition: {order.status} -> {status}",
                current_status=order.status,
            )

        order.status = status
        if status == OrderStatus.CONFIRMED.value and order.confirmed_at is None:
            order.confirmed_at = utcnow()
        self.db.commit()

        self._emit(session, "order", "status_changed", order.id, status=status)
        return self._order_view(order.id)

    def cancel_order(self, order_id: int) -> OrderWithItems:
        """Cancel every unserved item of an order.

        An order that already had something served stays billable for it and
        is marked ``served``; otherwise the whole order becomes ``cancelled``.
        """
        order = self._get_order(order_id)
        session = order.session
        if order.status in (OrderStatus.CANCELLED.value, OrderStatus.SERVED.value):
            raise InvalidStateError(
                f"Order {order_id} is already {order.status}", current_status=order.status,
            )
        claim_session(self.db, session.id, (SessionStatus.OPEN.value,), "cancel an order")

        served = 0
        cancelled = 0
        for item in order.items:
            if item.status == ItemStatus.SERVED.value:
                served += 1
            elif item.status != ItemStatus.CANCELLED.value:
                item.status = ItemStatus.CANCELLED.value
                cancelled += 1

        order.status = OrderStatus.SERVED.value if served else OrderStatus.CANCELLED.value
        self.db.commit()

        logger.info(
            f"Order {order_id} cancelled: {cancelled} items cancelled, {served} served items kept"
        )
        self._emit(session, "order", "cancelled", order.id, status=order.status, items_cancelled=cancelled)
        return self._order_view(order.id)

    # ===== ITEMS =====

    def update_item_status(self, item_id: int, status: str) -> OrderItemResponse:
        """Advance an item one step, or cancel it while still pending/preparing."""
        status = ItemStatus(status).value
        item = self._get_item(item_id)
        order = item.order
        session = order.session

        if status != ItemStatus.CANCELLED.value:
            require_status(session, ITEM_PROGRESS_SESSION_STATUSES, "update item status")
        if not can_transition_item(item.status, status):
            raise InvalidStateError(
                f"Invalid item transition: {item.status} -> {status}",
                current_status=item.status,
            )
        if status == ItemStatus.CANCELLED.value:
            # Cancelling changes the bill
            claim_session(self.db, session.id, (SessionStatus.OPEN.value,), "cancel an item")

        item.status = status
        if status == ItemStatus.SERVED.value:
            item.served_at = utcnow()
        self.db.commit()
        self.db.refresh(item)

        self._emit(session, "item", "status_changed", item.id, order_id=order.id, status=status)
        return OrderItemResponse.model_validate(item)

    def update_item_quantity(self, item_id: int, quantity: int) -> OrderItemResponse:
        """Change the quantity of a pending item; zero cancels it."""
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise InvalidInputError(f"quantity must be a non-negative integer, got {quantity!r}")

        item = self._get_item(item_id)
        order = item.order
        session = order.session
        if item.status != ItemStatus.PENDING.value:
            raise InvalidStateError(
                f"Only pending items can change quantity; item {item_id} is {item.status}",
                current_status=item.status,
            )
        claim_session(self.db, session.id, (SessionStatus.OPEN.value,), "change item quantity")

        if quantity == 0:
            item.status = ItemStatus.CANCELLED.value
            action = "cancelled"
        else:
            item.quantity = quantity
            action = "quantity_changed"
        self.db.commit()
        self.db.refresh(item)

        self._emit(session, "item", action, item.id, order_id=order.id, quantity=quantity)
        return OrderItemResponse.model_validate(item)
