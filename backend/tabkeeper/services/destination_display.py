"""Kitchen/bar display: open items grouped by order for one destination.

Read-only projection, independent of billing. Wait priority is derived from
item age on every poll and never stored.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, Iterator, Optional

from sqlalchemy.orm import Session

from tabkeeper.core.config import settings
from tabkeeper.db.base import as_utc, utcnow
from tabkeeper.models.table_session import (
    TERMINAL_SESSION_STATUSES,
    ItemStatus,
    OrderStatus,
    SessionOrder,
    SessionOrderItem,
    TableSession,
)
from tabkeeper.models.venue import Venue, VenueTable
from tabkeeper.schemas.destination import (
    DestinationOrdersResponse,
    DisplayDestination,
    DisplayItem,
    GroupedOrder,
    GroupedOrderView,
    StatusCounts,
    WaitPriority,
)
from tabkeeper.services.errors import NotFoundError

logger = logging.getLogger(__name__)

HIDDEN_ITEM_STATUSES = (ItemStatus.SERVED.value, ItemStatus.CANCELLED.value)

# (upper bound in minutes, band); anything beyond the last bound is critical
PRIORITY_BANDS = (
    (5, WaitPriority.NORMAL),
    (10, WaitPriority.ELEVATED),
    (15, WaitPriority.HIGH),
)


def wait_minutes(created_at: datetime, now: Optional[datetime] = None) -> int:
    """Whole minutes an item has been waiting (never negative)."""
    now = as_utc(now) if now else utcnow()
    seconds = (now - as_utc(created_at)).total_seconds()
    return max(0, int(seconds // 60))


def priority_band(minutes: int) -> WaitPriority:
    for bound, band in PRIORITY_BANDS:
        if minutes < bound:
            return band
    return WaitPriority.CRITICAL


def status_counts(groups: Iterable[GroupedOrder]) -> StatusCounts:
    counts = StatusCounts()
    for group in groups:
        for item in group.items:
            if item.status == ItemStatus.PENDING.value:
                counts.pending += 1
            elif item.status == ItemStatus.PREPARING.value:
                counts.preparing += 1
            elif item.status == ItemStatus.READY.value:
                counts.ready += 1
    return counts


class DestinationOrders:
    """Grouped orders waiting at one destination of a venue.

    Iterating runs the query; each new iteration re-reads the database, so
    the same object can be polled repeatedly. Groups come out oldest wait
    first, keyed on each order's earliest matching item.
    """

    def __init__(self, db: Session, venue_id: int, destination: DisplayDestination):
        self.db = db
        self.venue_id = venue_id
        self.destination = DisplayDestination(destination)

    def _rows(self):
        return (
            self.db.query(SessionOrderItem, SessionOrder, TableSession, VenueTable.table_number)
            .join(SessionOrder, SessionOrderItem.session_order_id == SessionOrder.id)
            .join(TableSession, SessionOrder.session_id == TableSession.id)
            .outerjoin(VenueTable, TableSession.table_id == VenueTable.id)
            .filter(
                TableSession.venue_id == self.venue_id,
                TableSession.status.notin_(TERMINAL_SESSION_STATUSES),
                SessionOrder.status != OrderStatus.CANCELLED.value,
                SessionOrderItem.destination == self.destination.value,
                SessionOrderItem.status.notin_(HIDDEN_ITEM_STATUSES),
            )
            .order_by(SessionOrderItem.created_at, SessionOrderItem.id)
            .all()
        )

    def __iter__(self) -> Iterator[GroupedOrder]:
        groups: Dict[int, GroupedOrder] = {}
        for item, order, session, table_number in self._rows():
            group = groups.get(order.id)
            if group is None:
                group = GroupedOrder(
                    order_id=order.id,
                    order_number=order.order_number,
                    session_id=session.id,
                    table_number=table_number,
                    is_walk_in=session.is_walk_in,
                    guest_name=session.guest_name,
                    created_at=item.created_at,
                    items=[],
                )
                groups[order.id] = group
            group.items.append(DisplayItem(
                id=item.id,
                session_order_id=order.id,
                menu_item_id=item.menu_item_id,
                item_name=item.item_name,
                quantity=item.quantity,
                status=item.status,
                notes=item.notes,
                modifiers=item.modifiers,
                destination=item.destination,
                created_at=item.created_at,
            ))
        # dicts keep insertion order, which is the earliest-item order
        yield from groups.values()


def list_destination_orders(
    db: Session,
    venue_id: int,
    destination: DisplayDestination,
    now: Optional[datetime] = None,
) -> DestinationOrdersResponse:
    """Snapshot of a destination display with wait bands and status badges."""
    if db.get(Venue, venue_id) is None:
        raise NotFoundError("venue", venue_id)

    now = now or utcnow()
    groups = list(DestinationOrders(db, venue_id, destination))
    views = []
    for group in groups:
        minutes = wait_minutes(group.created_at, now)
        views.append(GroupedOrderView(
            **group.model_dump(),
            wait_minutes=minutes,
            priority=priority_band(minutes),
        ))

    return DestinationOrdersResponse(
        venue_id=venue_id,
        destination=DisplayDestination(destination),
        orders=views,
        counts=status_counts(groups),
        generated_at=now,
        refresh_seconds=settings.destination_refresh_seconds,
    )
