"""Errors raised by the session, order and invoice services.

All of them are recoverable at the call site; the API layer maps each kind
to an HTTP status in ``tabkeeper.main``.
"""

from typing import List, Optional, Sequence, Tuple


class SessionBillingError(Exception):
    """Base class for table-session billing errors."""

    kind = "session_billing_error"


class NotFoundError(SessionBillingError):
    """Raised when a referenced session, order, item, invoice, venue or table does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class TableUnavailableError(SessionBillingError):
    """Raised when a table is not available for check-in (or a concurrent check-in won)."""

    kind = "table_unavailable"

    def __init__(self, table_id: int, status: Optional[str] = None):
        self.table_id = table_id
        self.status = status
        detail = f"Table {table_id} is not available"
        if status:
            detail += f" (status: {status})"
        super().__init__(detail)


class InvalidStateError(SessionBillingError):
    """Raised when the entity's current state forbids the operation."""

    kind = "invalid_state"

    def __init__(self, message: str, current_status: Optional[str] = None):
        self.current_status = current_status
        super().__init__(message)


class EmptyOrderError(SessionBillingError):
    """Raised when an invoice is requested for a session with nothing billable."""

    kind = "empty_order"

    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"Session {session_id} has no billable items")


class InvalidInputError(SessionBillingError):
    """Raised for arguments outside their allowed range (counts, amounts, rates)."""

    kind = "invalid_input"


class PartialSplitFailureError(SessionBillingError):
    """Raised when some split invoices were created and the rest were not.

    The created invoices are real obligations and stay in place; staff have to
    complete the remaining splits by hand.
    """

    kind = "partial_split_failure"

    def __init__(
        self,
        session_id: int,
        created_invoice_ids: Sequence[int],
        failed_splits: Sequence[Tuple[int, str]],
    ):
        self.session_id = session_id
        self.created_invoice_ids: List[int] = list(created_invoice_ids)
        self.failed_splits: List[Tuple[int, str]] = list(failed_splits)
        super().__init__(
            f"Split invoicing for session {session_id} created {len(self.created_invoice_ids)} "
            f"invoice(s); splits {[i for i, _ in self.failed_splits]} were not created"
        )
