"""
Session Invoice API Endpoints
Full and split invoices, discounts, voids and the payment receiver
"""
from typing import List

from fastapi import APIRouter, Request

from tabkeeper.core.rate_limit import limiter
from tabkeeper.core.security import OptionalStaff, staff_id
from tabkeeper.db.session import DbSession
from tabkeeper.schemas.invoice import (
    DiscountRequest,
    InvoiceGenerate,
    InvoiceResponse,
    PaymentCreate,
    SplitInvoiceGenerate,
    SplitInvoicesResponse,
    VoidRequest,
)
from tabkeeper.services.invoice_service import SessionInvoiceService

# Mounted under /sessions
session_router = APIRouter()
# Mounted under /invoices
router = APIRouter()


@session_router.post("/{session_id}/invoices", response_model=InvoiceResponse, status_code=201)
@limiter.limit("30/minute")
def generate_invoice(request: Request, db: DbSession, session_id: int, data: InvoiceGenerate):
    """Generate the session's invoice and move the session to billing."""
    return SessionInvoiceService(db).generate_invoice(
        session_id,
        tax_rate_percent=data.tax_rate_percent,
        service_charge_rate_percent=data.service_charge_rate_percent,
        discount_amount=data.discount_amount,
        discount_reason=data.discount_reason,
        deposit_credit=data.deposit_credit,
    )


@session_router.post("/{session_id}/invoices/split", response_model=SplitInvoicesResponse, status_code=201)
@limiter.limit("30/minute")
def generate_split_invoices(request: Request, db: DbSession, session_id: int, data: SplitInvoiceGenerate):
    """Split the bill evenly; the last split absorbs rounding remainders."""
    return SessionInvoiceService(db).generate_split_invoices(
        session_id,
        data.split_count,
        tax_rate_percent=data.tax_rate_percent,
        service_charge_rate_percent=data.service_charge_rate_percent,
        discount_amount=data.discount_amount,
        tip_amount=data.tip_amount,
        guests=data.guests,
    )


@session_router.get("/{session_id}/invoices", response_model=List[InvoiceResponse])
@limiter.limit("60/minute")
def list_invoices(request: Request, db: DbSession, session_id: int):
    return SessionInvoiceService(db).list_invoices(session_id)


@session_router.get("/{session_id}/invoice", response_model=InvoiceResponse)
@limiter.limit("60/minute")
def get_current_invoice(request: Request, db: DbSession, session_id: int):
    return SessionInvoiceService(db).get_current_invoice(session_id)


@router.post("/{invoice_id}/discount", response_model=InvoiceResponse)
@limiter.limit("30/minute")
def apply_discount(request: Request, db: DbSession, invoice_id: int, data: DiscountRequest):
    return SessionInvoiceService(db).apply_discount(invoice_id, data.discount_amount, data.discount_reason)


@router.post("/{invoice_id}/void", response_model=InvoiceResponse)
@limiter.limit("30/minute")
def void_invoice(request: Request, db: DbSession, invoice_id: int, data: VoidRequest):
    return SessionInvoiceService(db).void_invoice(invoice_id, data.reason)


@router.post("/{invoice_id}/payments", response_model=InvoiceResponse, status_code=201)
@limiter.limit("30/minute")
def record_payment(
    request: Request,
    db: DbSession,
    staff: OptionalStaff,
    invoice_id: int,
    data: PaymentCreate,
):
    """Payment settlement receiver: records a completed payment against an invoice."""
    return SessionInvoiceService(db).record_payment(
        invoice_id,
        data.amount,
        data.payment_method,
        reference_number=data.reference_number,
        notes=data.notes,
        processed_by=staff_id(staff),
    )
