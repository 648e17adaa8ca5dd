"""Table session models - sessions, orders, order items, invoices, payments."""

import enum

from sqlalchemy import (
    BigInteger, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text,
    UniqueConstraint, text,
)
from sqlalchemy.orm import relationship, validates

from tabkeeper.db.base import Base, utcnow
from tabkeeper.models.validators import non_negative, positive, validate_dict, whole_number


class SessionStatus(str, enum.Enum):
    OPEN = "open"
    BILLING = "billing"
    PAID = "paid"
    CLOSED = "closed"
    CANCELLED = "cancelled"


ACTIVE_SESSION_STATUSES = (SessionStatus.OPEN.value, SessionStatus.BILLING.value)
TERMINAL_SESSION_STATUSES = (SessionStatus.CLOSED.value, SessionStatus.CANCELLED.value)


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"


class ItemStatus(str, enum.Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"


class Destination(str, enum.Enum):
    KITCHEN = "kitchen"
    BAR = "bar"
    OTHER = "other"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    VOID = "void"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class TableSession(Base):
    """One open tab for a table or a walk-in, from check-in to close."""
    __tablename__ = "table_sessions"

    id = Column(Integer, primary_key=True, index=True)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=False, index=True)
    table_id = Column(Integer, ForeignKey("venue_tables.id"), nullable=True)  # null => walk-in
    booking_id = Column(String(64), nullable=True)
    package_purchase_id = Column(String(64), nullable=True)

    status = Column(String(20), default=SessionStatus.OPEN.value, nullable=False, index=True)
    guest_count = Column(Integer, default=1, nullable=False)
    guest_name = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)

    opened_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    opened_by = Column(Integer, nullable=True)
    closed_by = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    table = relationship("VenueTable")
    orders = relationship(
        "SessionOrder", back_populates="session", order_by="SessionOrder.order_number",
    )
    invoices = relationship(
        "SessionInvoice", back_populates="session", order_by="SessionInvoice.id",
    )

    __table_args__ = (
        # A table can carry at most one open/billing session
        Index(
            "uq_table_sessions_active_table",
            "table_id",
            unique=True,
            sqlite_where=text("status IN ('open', 'billing') AND table_id IS NOT NULL"),
            postgresql_where=text("status IN ('open', 'billing') AND table_id IS NOT NULL"),
        ),
    )

    @validates('guest_count')
    def _validate_guest_count(self, key, value):
        return positive(key, value)

    @property
    def is_walk_in(self) -> bool:
        return self.table_id is None


class SessionOrder(Base):
    """One ticket submitted to the kitchen/bar within a session."""
    __tablename__ = "session_orders"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("table_sessions.id"), nullable=False, index=True)
    order_number = Column(Integer, nullable=False)
    status = Column(String(20), default=OrderStatus.CONFIRMED.value, nullable=False)
    notes = Column(Text, nullable=True)
    ordered_by = Column(Integer, nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    session = relationship("TableSession", back_populates="orders")
    items = relationship("SessionOrderItem", back_populates="order", order_by="SessionOrderItem.id")

    __table_args__ = (
        UniqueConstraint("session_id", "order_number", name="uq_session_orders_number"),
    )

    @validates('order_number')
    def _validate_order_number(self, key, value):
        return positive(key, value)


class SessionOrderItem(Base):
    """Line item within an order. Name and price are snapshotted at order time."""
    __tablename__ = "session_order_items"

    id = Column(Integer, primary_key=True, index=True)
    session_order_id = Column(Integer, ForeignKey("session_orders.id"), nullable=False, index=True)
    menu_item_id = Column(String(64), nullable=True)

    item_name = Column(String(200), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    unit_price = Column(BigInteger, nullable=False)  # minor currency units

    modifiers = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    destination = Column(String(20), default=Destination.KITCHEN.value, nullable=False, index=True)
    status = Column(String(20), default=ItemStatus.PENDING.value, nullable=False, index=True)

    served_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    order = relationship("SessionOrder", back_populates="items")

    @validates('quantity')
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates('unit_price')
    def _validate_unit_price(self, key, value):
        return non_negative(key, whole_number(key, value))

    @validates('modifiers')
    def _validate_modifiers(self, key, value):
        return validate_dict(key, value)

    @validates('destination')
    def _validate_destination(self, key, value):
        return Destination(value).value

    @property
    def line_value(self) -> int:
        return self.quantity * self.unit_price


class SessionInvoice(Base):
    """Point-in-time billing document for a session (full or one split of N)."""
    __tablename__ = "session_invoices"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("table_sessions.id"), nullable=False, index=True)
    invoice_number = Column(String(64), nullable=False, unique=True)

    subtotal = Column(BigInteger, nullable=False)
    tax_amount = Column(BigInteger, default=0, nullable=False)
    service_charge = Column(BigInteger, default=0, nullable=False)
    discount_amount = Column(BigInteger, default=0, nullable=False)
    discount_reason = Column(String(200), nullable=True)
    deposit_credit = Column(BigInteger, default=0, nullable=False)
    tip_amount = Column(BigInteger, default=0, nullable=False)
    total_amount = Column(BigInteger, nullable=False)
    amount_paid = Column(BigInteger, default=0, nullable=False)
    status = Column(String(20), default=InvoiceStatus.PENDING.value, nullable=False, index=True)

    # Split sets share a group key; index is 1-based
    split_group = Column(String(36), nullable=True, index=True)
    split_index = Column(Integer, nullable=True)
    split_count = Column(Integer, nullable=True)

    guest_name = Column(String(200), nullable=True)
    guest_phone = Column(String(50), nullable=True)
    guest_email = Column(String(200), nullable=True)
    guest_user_id = Column(String(64), nullable=True)

    generated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)
    void_reason = Column(String(200), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    session = relationship("TableSession", back_populates="invoices")
    payments = relationship("SessionPayment", back_populates="invoice", order_by="SessionPayment.id")

    @validates(
        'subtotal', 'tax_amount', 'service_charge', 'discount_amount',
        'deposit_credit', 'tip_amount', 'total_amount', 'amount_paid',
    )
    def _validate_amounts(self, key, value):
        return non_negative(key, whole_number(key, value))

    @property
    def is_split(self) -> bool:
        return self.split_group is not None


class SessionPayment(Base):
    """Settlement recorded against an invoice by the payment provider."""
    __tablename__ = "session_payments"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("session_invoices.id"), nullable=False, index=True)
    payment_method = Column(String(50), nullable=False)  # cash, card, qris, transfer
    amount = Column(BigInteger, nullable=False)
    reference_number = Column(String(100), nullable=True)
    status = Column(String(20), default=PaymentStatus.COMPLETED.value, nullable=False)
    processed_by = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Relationships
    invoice = relationship("SessionInvoice", back_populates="payments")

    @validates('amount')
    def _validate_amount(self, key, value):
        return positive(key, whole_number(key, value))


class InvoiceSequence(Base):
    """Named monotonic counter backing invoice numbers."""
    __tablename__ = "invoice_sequences"

    name = Column(String(50), primary_key=True)
    value = Column(BigInteger, default=0, nullable=False)
