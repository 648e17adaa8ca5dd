"""SQLAlchemy models."""

from tabkeeper.models.venue import Venue, VenueTable, TableStatus
from tabkeeper.models.table_session import (
    TableSession,
    SessionOrder,
    SessionOrderItem,
    SessionInvoice,
    SessionPayment,
    InvoiceSequence,
    SessionStatus,
    OrderStatus,
    ItemStatus,
    Destination,
    InvoiceStatus,
    PaymentStatus,
    ACTIVE_SESSION_STATUSES,
    TERMINAL_SESSION_STATUSES,
)

__all__ = [
    "Venue",
    "VenueTable",
    "TableStatus",
    "TableSession",
    "SessionOrder",
    "SessionOrderItem",
    "SessionInvoice",
    "SessionPayment",
    "InvoiceSequence",
    "SessionStatus",
    "OrderStatus",
    "ItemStatus",
    "Destination",
    "InvoiceStatus",
    "PaymentStatus",
    "ACTIVE_SESSION_STATUSES",
    "TERMINAL_SESSION_STATUSES",
]
