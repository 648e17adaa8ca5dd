# Services module

from tabkeeper.services.errors import (
    SessionBillingError,
    NotFoundError,
    TableUnavailableError,
    InvalidStateError,
    EmptyOrderError,
    InvalidInputError,
    PartialSplitFailureError,
)
from tabkeeper.services.session_service import TableSessionService
from tabkeeper.services.order_service import SessionOrderService
from tabkeeper.services.invoice_service import SessionInvoiceService, allocate_invoice_number
from tabkeeper.services.destination_display import (
    DestinationOrders,
    list_destination_orders,
    priority_band,
    status_counts,
    wait_minutes,
)
