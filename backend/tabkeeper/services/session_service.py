"""
Table Session Service

Lifecycle of a table session: check-in (walk-in or table assignment),
guest details, close/cancel with table release, and the read models staff
screens use.

Shared state (table occupancy, session status) only changes through
conditional UPDATE statements, so two devices racing on the same table or
session cannot both win.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from tabkeeper.core.cache import CacheKeys, cache
from tabkeeper.core.change_feed import ChangeEvent, ChangeFeed, change_feed
from tabkeeper.core.config import settings
from tabkeeper.db.base import utcnow
from tabkeeper.models.table_session import (
    ACTIVE_SESSION_STATUSES,
    TERMINAL_SESSION_STATUSES,
    InvoiceStatus,
    SessionOrder,
    SessionStatus,
    TableSession,
)
from tabkeeper.models.venue import TableStatus, Venue, VenueTable
from tabkeeper.schemas.invoice import InvoiceResponse
from tabkeeper.schemas.session import (
    OrderItemResponse,
    OrderWithItems,
    SessionWithOrders,
    TableSummary,
)
from tabkeeper.services.billing_calculator import billable_subtotal, order_billable_total
from tabkeeper.services.errors import (
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    SessionBillingError,
    TableUnavailableError,
)

logger = logging.getLogger(__name__)


# ============== SHARED HELPERS ==============

def require_session(db: Session, session_id: int) -> TableSession:
    session = db.get(TableSession, session_id)
    if session is None:
        raise NotFoundError("session", session_id)
    return session


def require_status(session: TableSession, allowed: Iterable[str], action: str) -> None:
    allowed = tuple(allowed)
    if session.status not in allowed:
        raise InvalidStateError(
            f"Cannot {action}: session {session.id} is {session.status} "
            f"(allowed: {', '.join(allowed)})",
            current_status=session.status,
        )


def transition_session(
    db: Session,
    session_id: int,
    from_statuses: Iterable[str],
    to_status: str,
    **values,
) -> bool:
    """Compare-and-set the session status. Returns False if the row was not in ``from_statuses``."""
    result = db.execute(
        update(TableSession)
        .where(TableSession.id == session_id, TableSession.status.in_(tuple(from_statuses)))
        .values(status=to_status, updated_at=utcnow(), **values)
    )
    return result.rowcount == 1


def status_conflict(db: Session, session_id: int, allowed: Iterable[str], action: str) -> SessionBillingError:
    """Roll back and describe why a conditional write on the session matched no row."""
    db.rollback()
    current = db.execute(
        select(TableSession.status).where(TableSession.id == session_id)
    ).scalar_one_or_none()
    if current is None:
        return NotFoundError("session", session_id)
    allowed = tuple(allowed)
    return InvalidStateError(
        f"Cannot {action}: session {session_id} is {current} (allowed: {', '.join(allowed)})",
        current_status=current,
    )


def claim_session(db: Session, session_id: int, allowed: Iterable[str], action: str) -> None:
    """Take the session row's write lock for the current transaction.

    The conditional UPDATE only matches while the session is in ``allowed``.
    Order changes and invoice generation both start with a write to this row,
    so they run one after the other and every later read in the transaction
    sees what the previous writer committed.
    """
    allowed = tuple(allowed)
    result = db.execute(
        update(TableSession)
        .where(TableSession.id == session_id, TableSession.status.in_(allowed))
        .values(updated_at=utcnow())
    )
    if result.rowcount != 1:
        raise status_conflict(db, session_id, allowed, action)


def invalidate_open_sessions(venue_id: int) -> None:
    cache.delete(CacheKeys.open_sessions(venue_id))


def publish(feed: ChangeFeed, event: ChangeEvent) -> None:
    """Invalidate local read caches and notify subscribers; never raises."""
    invalidate_open_sessions(event.venue_id)
    feed.publish(event)


def _invalidate_on_change(event: ChangeEvent) -> None:
    invalidate_open_sessions(event.venue_id)


change_feed.subscribe(_invalidate_on_change)


def build_order_view(order: SessionOrder) -> OrderWithItems:
    return OrderWithItems(
        id=order.id,
        session_id=order.session_id,
        order_number=order.order_number,
        status=order.status,
        notes=order.notes,
        ordered_by=order.ordered_by,
        confirmed_at=order.confirmed_at,
        created_at=order.created_at,
        items=[OrderItemResponse.model_validate(item) for item in order.items],
        billable_total=order_billable_total(order),
    )


def build_session_view(session: TableSession) -> SessionWithOrders:
    """Explicit join of a session with its table, orders/items and live invoices."""
    return SessionWithOrders(
        id=session.id,
        venue_id=session.venue_id,
        table_id=session.table_id,
        booking_id=session.booking_id,
        package_purchase_id=session.package_purchase_id,
        status=session.status,
        guest_count=session.guest_count,
        guest_name=session.guest_name,
        notes=session.notes,
        opened_at=session.opened_at,
        closed_at=session.closed_at,
        opened_by=session.opened_by,
        closed_by=session.closed_by,
        is_walk_in=session.is_walk_in,
        table=TableSummary.model_validate(session.table) if session.table else None,
        orders=[build_order_view(order) for order in session.orders],
        invoices=[
            InvoiceResponse.model_validate(invoice)
            for invoice in session.invoices
            if invoice.status != InvoiceStatus.VOID.value
        ],
        subtotal=billable_subtotal(session.orders),
    )


def _session_query(db: Session):
    return db.query(TableSession).options(
        selectinload(TableSession.table),
        selectinload(TableSession.orders).selectinload(SessionOrder.items),
        selectinload(TableSession.invoices),
    )


class TableSessionService:
    """Check-in, guest details, close and session read models."""

    def __init__(self, db: Session, feed: ChangeFeed = change_feed):
        self.db = db
        self.feed = feed

    # ===== READS =====

    def get_session_by_id(self, session_id: int) -> SessionWithOrders:
        """Fresh read of a session with its orders, items and non-void invoices."""
        self.db.expire_all()
        session = _session_query(self.db).filter(TableSession.id == session_id).first()
        if session is None:
            raise NotFoundError("session", session_id)
        return build_session_view(session)

    def list_open_sessions(self, venue_id: int) -> List[SessionWithOrders]:
        """Open and billing sessions for a venue, newest first.

        Served from the process-wide cache; hydrated on first query per venue
        and dropped on every mutation event for that venue.
        """
        key = CacheKeys.open_sessions(venue_id)
        cached = cache.get(key)
        if cached is not None:
            return cached

        sessions = (
            _session_query(self.db)
            .filter(
                TableSession.venue_id == venue_id,
                TableSession.status.in_(ACTIVE_SESSION_STATUSES),
            )
            .order_by(TableSession.opened_at.desc(), TableSession.id.desc())
            .all()
        )
        views = [build_session_view(s) for s in sessions]
        cache.set(key, views, settings.open_sessions_cache_ttl_seconds)
        return views

    # ===== CHECK-IN =====

    def check_in(
        self,
        venue_id: int,
        table_id: Optional[int] = None,
        guest_count: int = 1,
        guest_name: Optional[str] = None,
        notes: Optional[str] = None,
        booking_id: Optional[str] = None,
        package_purchase_id: Optional[str] = None,
        opened_by: Optional[int] = None,
    ) -> SessionWithOrders:
        """Open a session for a table (marking it occupied) or for a walk-in."""
        if guest_count < 1:
            raise InvalidInputError(f"guest_count must be at least 1, got {guest_count}")

        if self.db.get(Venue, venue_id) is None:
            raise NotFoundError("venue", venue_id)

        try:
            if table_id is not None:
                self._occupy_table(venue_id, table_id)

            session = TableSession(
                venue_id=venue_id,
                table_id=table_id,
                booking_id=booking_id,
                package_purchase_id=package_purchase_id,
                status=SessionStatus.OPEN.value,
                guest_count=guest_count,
                guest_name=guest_name,
                notes=notes,
                opened_at=utcnow(),
                opened_by=opened_by,
            )
            self.db.add(session)
            self.db.commit()
        except IntegrityError:
            # The active-session index rejected a second open session for this table
            self.db.rollback()
            logger.warning(f"Check-in lost race for table {table_id} at venue {venue_id}")
            raise TableUnavailableError(table_id)

        logger.info(
            f"Session {session.id} opened at venue {venue_id} "
            f"({'table ' + str(table_id) if table_id else 'walk-in'}, {guest_count} guests)"
        )
        publish(self.feed, ChangeEvent(
            entity="session", action="opened", venue_id=venue_id,
            session_id=session.id, entity_id=session.id,
            payload={"table_id": table_id, "guest_count": guest_count},
        ))
        return self.get_session_by_id(session.id)

    def _occupy_table(self, venue_id: int, table_id: int) -> None:
        """Atomically flip the table available -> occupied, or explain why not."""
        result = self.db.execute(
            update(VenueTable)
            .where(
                VenueTable.id == table_id,
                VenueTable.venue_id == venue_id,
                VenueTable.status == TableStatus.AVAILABLE.value,
            )
            .values(status=TableStatus.OCCUPIED.value, updated_at=utcnow())
        )
        if result.rowcount == 1:
            return

        row = self.db.execute(
            select(VenueTable.venue_id, VenueTable.status).where(VenueTable.id == table_id)
        ).first()
        self.db.rollback()
        if row is None or row.venue_id != venue_id:
            raise NotFoundError("table", table_id)
        logger.info(f"Check-in refused for table {table_id}: status is {row.status}")
        raise TableUnavailableError(table_id, row.status)

    def _release_table(self, table_id: int) -> None:
        self.db.execute(
            update(VenueTable)
            .where(VenueTable.id == table_id, VenueTable.status == TableStatus.OCCUPIED.value)
            .values(status=TableStatus.AVAILABLE.value, updated_at=utcnow())
        )

    # ===== UPDATES =====

    def update_session(
        self,
        session_id: int,
        guest_count: Optional[int] = None,
        guest_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SessionWithOrders:
        if guest_count is not None and guest_count < 1:
            raise InvalidInputError(f"guest_count must be at least 1, got {guest_count}")

        session = require_session(self.db, session_id)
        claim_session(self.db, session_id, ACTIVE_SESSION_STATUSES, "update session")
        if guest_count is not None:
            session.guest_count = guest_count
        if guest_name is not None:
            session.guest_name = guest_name
        if notes is not None:
            session.notes = notes
        self.db.commit()

        publish(self.feed, ChangeEvent(
            entity="session", action="updated", venue_id=session.venue_id,
            session_id=session.id, entity_id=session.id,
        ))
        return self.get_session_by_id(session_id)

    def close_session(
        self,
        session_id: int,
        closed_by: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> SessionWithOrders:
        """Close a session and release its table.

        A paid session closes normally. An open or billing session closes
        early: it is recorded as ``closed`` when any payment was taken on a
        live invoice, otherwise as ``cancelled``.
        """
        session = require_session(self.db, session_id)
        if session.status in TERMINAL_SESSION_STATUSES:
            raise InvalidStateError(
                f"Session {session_id} is already {session.status}", current_status=session.status,
            )

        current = session.status
        if current == SessionStatus.PAID.value:
            target = SessionStatus.CLOSED.value
        else:
            took_payment = any(
                invoice.amount_paid > 0
                for invoice in session.invoices
                if invoice.status != InvoiceStatus.VOID.value
            )
            target = SessionStatus.CLOSED.value if took_payment else SessionStatus.CANCELLED.value

        values = {"closed_at": utcnow(), "closed_by": closed_by}
        if notes is not None:
            values["notes"] = notes
        if not transition_session(self.db, session_id, (current,), target, **values):
            self.db.rollback()
            raise InvalidStateError(f"Session {session_id} changed while closing", current_status=current)

        table_id = session.table_id
        if table_id is not None:
            self._release_table(table_id)
        self.db.commit()

        logger.info(f"Session {session_id} {target} (was {current}); table {table_id} released")
        publish(self.feed, ChangeEvent(
            entity="session", action=target, venue_id=session.venue_id,
            session_id=session_id, entity_id=session_id,
            payload={"previous_status": current, "table_id": table_id},
        ))
        return self.get_session_by_id(session_id)
