"""Session invoice and payment schemas"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class InvoiceGenerate(BaseModel):
    tax_rate_percent: Optional[float] = Field(None, ge=0, le=100)
    service_charge_rate_percent: Optional[float] = Field(None, ge=0, le=100)
    discount_amount: int = Field(0, ge=0)
    discount_reason: Optional[str] = Field(None, max_length=200)
    deposit_credit: int = Field(0, ge=0)


class SplitGuestInfo(BaseModel):
    guest_name: Optional[str] = Field(None, max_length=200)
    guest_phone: Optional[str] = Field(None, max_length=50)
    guest_email: Optional[str] = Field(None, max_length=200)
    guest_user_id: Optional[str] = Field(None, max_length=64)


class SplitInvoiceGenerate(BaseModel):
    split_count: int = Field(..., ge=2, le=50)
    tax_rate_percent: Optional[float] = Field(None, ge=0, le=100)
    service_charge_rate_percent: Optional[float] = Field(None, ge=0, le=100)
    discount_amount: int = Field(0, ge=0)
    tip_amount: int = Field(0, ge=0)
    guests: List[SplitGuestInfo] = []


class DiscountRequest(BaseModel):
    discount_amount: int = Field(..., ge=0)
    discount_reason: str = Field(..., min_length=1, max_length=200)


class VoidRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=200)


class PaymentCreate(BaseModel):
    amount: int = Field(..., gt=0)
    payment_method: str = Field(..., min_length=1, max_length=50)
    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class InvoiceResponse(BaseModel):
    id: int
    session_id: int
    invoice_number: str
    subtotal: int
    tax_amount: int
    service_charge: int
    discount_amount: int
    discount_reason: Optional[str] = None
    deposit_credit: int
    tip_amount: int
    total_amount: int
    amount_paid: int
    status: str
    split_group: Optional[str] = None
    split_index: Optional[int] = None
    split_count: Optional[int] = None
    guest_name: Optional[str] = None
    guest_phone: Optional[str] = None
    guest_email: Optional[str] = None
    guest_user_id: Optional[str] = None
    generated_at: datetime
    paid_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SplitInvoicesResponse(BaseModel):
    session_id: int
    split_group: str
    invoices: List[InvoiceResponse]
    total_amount: int
