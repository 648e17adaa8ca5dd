"""
Session Invoice Service

Turns a session's live orders into invoices (one full invoice, or a split
set of N), and handles discounts, voids and the payment receiver that
settles invoices and, with them, the session.

Totals are always computed from a fresh read of the session's orders and
items inside the generating transaction. Invoices are point-in-time
snapshots: later order changes never touch them.
"""

import logging
import uuid
from typing import List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from tabkeeper.core.change_feed import ChangeEvent, ChangeFeed, change_feed
from tabkeeper.core.config import settings
from tabkeeper.db.base import utcnow
from tabkeeper.models.table_session import (
    TERMINAL_SESSION_STATUSES,
    InvoiceSequence,
    InvoiceStatus,
    PaymentStatus,
    SessionInvoice,
    SessionOrder,
    SessionPayment,
    SessionStatus,
    TableSession,
)
from tabkeeper.schemas.invoice import InvoiceResponse, SplitInvoicesResponse
from tabkeeper.services.billing_calculator import (
    BillTotals,
    SplitShare,
    calculate_totals,
    compute_split_shares,
    guest_for_split,
    invoice_total,
    split_invoice_number,
)
from tabkeeper.services.errors import (
    EmptyOrderError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    PartialSplitFailureError,
)
from tabkeeper.services.session_service import (
    publish,
    require_session,
    status_conflict,
    transition_session,
)

logger = logging.getLogger(__name__)

INVOICE_SEQUENCE = "session_invoice"

BILLABLE_SESSION_STATUSES = (SessionStatus.OPEN.value, SessionStatus.BILLING.value)
VOIDABLE_INVOICE_STATUSES = (
    InvoiceStatus.DRAFT.value,
    InvoiceStatus.PENDING.value,
    InvoiceStatus.PARTIALLY_PAID.value,
)
PAYABLE_INVOICE_STATUSES = (InvoiceStatus.PENDING.value, InvoiceStatus.PARTIALLY_PAID.value)


def allocate_invoice_number(db: Session, prefix: Optional[str] = None) -> str:
    """Reserve the next invoice number inside the caller's transaction.

    The counter row is bumped with a single ``UPDATE ... SET value = value + 1``,
    so concurrent writers serialize on that row and never receive the same
    number. A rolled-back transaction gives its number back.
    """
    prefix = prefix or settings.invoice_number_prefix
    result = db.execute(
        update(InvoiceSequence)
        .where(InvoiceSequence.name == INVOICE_SEQUENCE)
        .values(value=InvoiceSequence.value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.add(InvoiceSequence(name=INVOICE_SEQUENCE, value=1))
        db.flush()
    value = db.execute(
        select(InvoiceSequence.value).where(InvoiceSequence.name == INVOICE_SEQUENCE)
    ).scalar_one()
    return f"{prefix}-{value:06d}"


def invoice_to_response(invoice: SessionInvoice) -> InvoiceResponse:
    return InvoiceResponse.model_validate(invoice)


class SessionInvoiceService:
    """Invoice generation, split bills, discounts, voids and payments."""

    def __init__(self, db: Session, feed: ChangeFeed = change_feed):
        self.db = db
        self.feed = feed

    # ===== HELPERS =====

    def _get_invoice(self, invoice_id: int) -> SessionInvoice:
        invoice = self.db.get(SessionInvoice, invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    def _live_invoices(self, session_id: int) -> List[SessionInvoice]:
        return (
            self.db.query(SessionInvoice)
            .filter(
                SessionInvoice.session_id == session_id,
                SessionInvoice.status != InvoiceStatus.VOID.value,
            )
            .order_by(SessionInvoice.generated_at, SessionInvoice.id)
            .all()
        )

    def _fresh_totals(self, session_id: int, tax_rate_percent, service_charge_rate_percent) -> BillTotals:
        """Compute totals from a fresh read of orders and items, never from loaded state."""
        self.db.expire_all()
        orders = (
            self.db.query(SessionOrder)
            .options(selectinload(SessionOrder.items))
            .filter(SessionOrder.session_id == session_id)
            .all()
        )
        if tax_rate_percent is None:
            tax_rate_percent = settings.default_tax_rate_percent
        if service_charge_rate_percent is None:
            service_charge_rate_percent = settings.default_service_charge_rate_percent
        totals = calculate_totals(orders, tax_rate_percent, service_charge_rate_percent)
        if totals.subtotal == 0:
            raise EmptyOrderError(session_id)
        return totals

    def _claim_for_billing(self, session_id: int) -> None:
        """Move the session to billing, holding its row lock, and check it has no live invoice.

        The status write comes first, so two devices billing the same session
        serialize on the row and the second one sees the first one's invoice.
        Leaves the transaction open for the caller to insert into and commit.
        """
        if not transition_session(self.db, session_id, BILLABLE_SESSION_STATUSES, SessionStatus.BILLING.value):
            raise status_conflict(self.db, session_id, BILLABLE_SESSION_STATUSES, "generate an invoice")
        live = self._live_invoices(session_id)
        if live:
            self.db.rollback()
            raise InvalidStateError(
                f"Session {session_id} already has invoice(s) "
                f"{', '.join(i.invoice_number for i in live)}; void them before regenerating",
                current_status=SessionStatus.BILLING.value,
            )

    def _mark_paid_if_settled(self, invoice: SessionInvoice) -> None:
        if invoice.amount_paid >= invoice.total_amount:
            invoice.status = InvoiceStatus.PAID.value
            invoice.paid_at = utcnow()
        elif invoice.amount_paid > 0:
            invoice.status = InvoiceStatus.PARTIALLY_PAID.value

    def _settle_session(self, session_id: int) -> bool:
        """Move a billing session to paid once every live invoice is paid."""
        self.db.flush()
        live = self._live_invoices(session_id)
        if not live or any(i.status != InvoiceStatus.PAID.value for i in live):
            return False
        settled = transition_session(
            self.db, session_id, (SessionStatus.BILLING.value,), SessionStatus.PAID.value,
        )
        if settled:
            logger.info(f"Session {session_id} settled: all {len(live)} invoice(s) paid")
        return settled

    def _emit(self, session: TableSession, action: str, entity_id: int, **payload) -> None:
        publish(self.feed, ChangeEvent(
            entity="invoice", action=action, venue_id=session.venue_id,
            session_id=session.id, entity_id=entity_id, payload=payload,
        ))

    # ===== READS =====

    def list_invoices(self, session_id: int) -> List[InvoiceResponse]:
        require_session(self.db, session_id)
        return [invoice_to_response(i) for i in self._live_invoices(session_id)]

    def get_current_invoice(self, session_id: int) -> InvoiceResponse:
        """Most recent non-void invoice of a session."""
        require_session(self.db, session_id)
        live = self._live_invoices(session_id)
        if not live:
            raise NotFoundError("invoice", f"for session {session_id}")
        return invoice_to_response(live[-1])

    # ===== GENERATION =====

    def generate_invoice(
        self,
        session_id: int,
        tax_rate_percent=None,
        service_charge_rate_percent=None,
        discount_amount: int = 0,
        discount_reason: Optional[str] = None,
        deposit_credit: int = 0,
    ) -> InvoiceResponse:
        """Generate the session's full invoice and move it to billing.

        Args:
            session_id: Session to bill (must be open or billing)
            tax_rate_percent: Tax rate, defaults to the configured rate
            service_charge_rate_percent: Service rate, defaults to the configured rate
            discount_amount: Flat discount in minor units
            discount_reason: Free-text reason stored with the discount
            deposit_credit: Booking deposit credited against the bill

        Returns:
            The persisted invoice in ``pending`` status

        Raises:
            EmptyOrderError: Nothing billable on the session
            InvalidStateError: Session closed/paid, or a live invoice already exists
        """
        session = require_session(self.db, session_id)
        self._claim_for_billing(session_id)

        try:
            totals = self._fresh_totals(session_id, tax_rate_percent, service_charge_rate_percent)
            total = invoice_total(
                totals.subtotal, totals.tax_amount, totals.service_charge, discount_amount, deposit_credit,
            )
            invoice = SessionInvoice(
                session_id=session_id,
                invoice_number=allocate_invoice_number(self.db),
                subtotal=totals.subtotal,
                tax_amount=totals.tax_amount,
                service_charge=totals.service_charge,
                discount_amount=discount_amount,
                discount_reason=discount_reason,
                deposit_credit=deposit_credit,
                tip_amount=0,
                total_amount=total,
                amount_paid=0,
                status=InvoiceStatus.PENDING.value,
                generated_at=utcnow(),
            )
            self.db.add(invoice)
            if total == 0:
                # Fully covered by discount/deposit
                self._mark_paid_if_settled(invoice)
                self._settle_session(session_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Invoice {invoice.invoice_number} generated for session {session_id}: "
            f"subtotal={totals.subtotal} tax={totals.tax_amount} "
            f"service={totals.service_charge} total={total}"
        )
        self._emit(session, "generated", invoice.id, invoice_number=invoice.invoice_number, total=total)
        self.db.refresh(invoice)
        return invoice_to_response(invoice)

    def generate_split_invoices(
        self,
        session_id: int,
        split_count: int,
        tax_rate_percent=None,
        service_charge_rate_percent=None,
        discount_amount: int = 0,
        tip_amount: int = 0,
        guests: Optional[Sequence] = None,
    ) -> SplitInvoicesResponse:
        """Split the session's bill into ``split_count`` invoices.

        Each split is committed on its own. If a later split fails, the ones
        already created stay (they are real obligations) and
        PartialSplitFailureError reports which splits exist.
        """
        if isinstance(split_count, bool) or not isinstance(split_count, int) or split_count < 2:
            raise InvalidInputError(f"split_count must be an integer of at least 2, got {split_count!r}")

        session = require_session(self.db, session_id)
        self._claim_for_billing(session_id)
        try:
            totals = self._fresh_totals(session_id, tax_rate_percent, service_charge_rate_percent)
            shares = compute_split_shares(totals, split_count, discount_amount, tip_amount)
        except Exception:
            self.db.rollback()
            raise
        split_group = str(uuid.uuid4())

        created: List[SessionInvoice] = []
        base_number: Optional[str] = None
        for position, share in enumerate(shares):
            try:
                if base_number is None:
                    base_number = allocate_invoice_number(self.db)
                invoice = self._persist_split(
                    session_id, share, base_number, split_group,
                    guest_for_split(guests, share.index),
                )
            except SQLAlchemyError as e:
                self.db.rollback()
                if not created:
                    raise
                failed = [(share.index, str(e))] + [
                    (s.index, "not attempted") for s in shares[position + 1:]
                ]
                logger.error(
                    f"Split invoicing for session {session_id} stopped at split "
                    f"{share.index}/{split_count}: {e}"
                )
                self._emit(session, "split_partial", created[0].id, split_group=split_group,
                           created=[i.id for i in created])
                raise PartialSplitFailureError(session_id, [i.id for i in created], failed)
            created.append(invoice)

        if any(s.total_amount == 0 for s in shares) and self._settle_session(session_id):
            self.db.commit()

        logger.info(
            f"Split invoices {base_number}-1..{split_count}/{split_count} generated for "
            f"session {session_id}: total={sum(s.total_amount for s in shares)}"
        )
        self._emit(session, "split_generated", created[0].id, split_group=split_group,
                   invoice_ids=[i.id for i in created])
        responses = []
        for invoice in created:
            self.db.refresh(invoice)
            responses.append(invoice_to_response(invoice))
        return SplitInvoicesResponse(
            session_id=session_id,
            split_group=split_group,
            invoices=responses,
            total_amount=sum(r.total_amount for r in responses),
        )

    def _persist_split(
        self,
        session_id: int,
        share: SplitShare,
        base_number: str,
        split_group: str,
        guest=None,
    ) -> SessionInvoice:
        """Insert one split invoice in its own transaction.

        The first split commits together with the session's move to billing.
        A zero-total share is settled on creation.
        """
        invoice = SessionInvoice(
            session_id=session_id,
            invoice_number=split_invoice_number(base_number, share.index, share.count),
            subtotal=share.subtotal,
            tax_amount=share.tax_amount,
            service_charge=share.service_charge,
            discount_amount=share.discount_amount,
            discount_reason=f"Split {share.index}/{share.count}" if share.discount_amount else None,
            deposit_credit=0,  # deposits are not split
            tip_amount=share.tip_amount,
            total_amount=share.total_amount,
            amount_paid=0,
            status=InvoiceStatus.PENDING.value,
            split_group=split_group,
            split_index=share.index,
            split_count=share.count,
            guest_name=getattr(guest, "guest_name", None),
            guest_phone=getattr(guest, "guest_phone", None),
            guest_email=getattr(guest, "guest_email", None),
            guest_user_id=getattr(guest, "guest_user_id", None),
            generated_at=utcnow(),
        )
        if share.total_amount == 0:
            self._mark_paid_if_settled(invoice)
        self.db.add(invoice)
        self.db.commit()
        return invoice

    # ===== ADJUSTMENTS =====

    def apply_discount(self, invoice_id: int, discount_amount: int, discount_reason: str) -> InvoiceResponse:
        """Replace the discount on a single (non-split) invoice and recompute its total."""
        invoice = self._get_invoice(invoice_id)
        if invoice.is_split:
            raise InvalidStateError(
                f"Invoice {invoice.invoice_number} is part of a split set; discounts apply to whole invoices only",
                current_status=invoice.status,
            )
        if invoice.status in (InvoiceStatus.VOID.value, InvoiceStatus.PAID.value):
            raise InvalidStateError(
                f"Cannot discount invoice {invoice.invoice_number}: it is {invoice.status}",
                current_status=invoice.status,
            )
        session = invoice.session
        if session.status in TERMINAL_SESSION_STATUSES:
            raise InvalidStateError(f"Session {session.id} is {session.status}", current_status=session.status)

        total = invoice_total(
            invoice.subtotal, invoice.tax_amount, invoice.service_charge,
            discount_amount, invoice.deposit_credit,
        )
        previous = invoice.discount_amount
        invoice.discount_amount = discount_amount
        invoice.discount_reason = discount_reason
        invoice.total_amount = total
        if total == 0 or invoice.amount_paid > 0:
            self._mark_paid_if_settled(invoice)
        if invoice.status == InvoiceStatus.PAID.value:
            self._settle_session(session.id)
        self.db.commit()

        logger.info(
            f"Discount on invoice {invoice.invoice_number} changed {previous} -> {discount_amount} "
            f"({discount_reason}); total now {total}"
        )
        self._emit(session, "discounted", invoice.id, discount_amount=discount_amount, total=total)
        self.db.refresh(invoice)
        return invoice_to_response(invoice)

    def void_invoice(self, invoice_id: int, reason: str) -> InvoiceResponse:
        invoice = self._get_invoice(invoice_id)
        if invoice.status not in VOIDABLE_INVOICE_STATUSES:
            raise InvalidStateError(
                f"Cannot void invoice {invoice.invoice_number}: it is {invoice.status}",
                current_status=invoice.status,
            )
        session = invoice.session
        if session.status in TERMINAL_SESSION_STATUSES:
            raise InvalidStateError(f"Session {session.id} is {session.status}", current_status=session.status)

        invoice.status = InvoiceStatus.VOID.value
        invoice.voided_at = utcnow()
        invoice.void_reason = reason
        # The remaining live invoices may now all be paid
        self._settle_session(session.id)
        self.db.commit()

        logger.info(f"Invoice {invoice.invoice_number} voided: {reason}")
        self._emit(session, "voided", invoice.id, reason=reason)
        self.db.refresh(invoice)
        return invoice_to_response(invoice)

    # ===== PAYMENTS =====

    def record_payment(
        self,
        invoice_id: int,
        amount: int,
        payment_method: str,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        processed_by: Optional[int] = None,
    ) -> InvoiceResponse:
        """Record a settled payment against an invoice.

        Marks the invoice partially paid or paid, then moves the session to
        ``paid`` once every live invoice is paid.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidInputError(f"Payment amount must be a positive integer, got {amount!r}")

        invoice = self._get_invoice(invoice_id)
        if invoice.status not in PAYABLE_INVOICE_STATUSES:
            raise InvalidStateError(
                f"Cannot take payment on invoice {invoice.invoice_number}: it is {invoice.status}",
                current_status=invoice.status,
            )
        session = invoice.session
        if session.status in TERMINAL_SESSION_STATUSES:
            raise InvalidStateError(f"Session {session.id} is {session.status}", current_status=session.status)

        payment = SessionPayment(
            invoice_id=invoice.id,
            payment_method=payment_method,
            amount=amount,
            reference_number=reference_number,
            status=PaymentStatus.COMPLETED.value,
            processed_by=processed_by,
            notes=notes,
        )
        self.db.add(payment)
        invoice.amount_paid = invoice.amount_paid + amount
        self._mark_paid_if_settled(invoice)
        session_settled = False
        if invoice.status == InvoiceStatus.PAID.value:
            session_settled = self._settle_session(session.id)
        self.db.commit()

        logger.info(
            f"Payment of {amount} ({payment_method}) on invoice {invoice.invoice_number}: "
            f"paid {invoice.amount_paid}/{invoice.total_amount}, status {invoice.status}"
        )
        self._emit(session, "payment_recorded", invoice.id, amount=amount,
                   status=invoice.status, session_settled=session_settled)
        self.db.refresh(invoice)
        return invoice_to_response(invoice)
