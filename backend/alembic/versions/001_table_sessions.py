"""Table sessions, orders, invoices

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_TABLE_SESSION = "status IN ('open', 'billing') AND table_id IS NOT NULL"


def upgrade() -> None:
    # Venue catalog
    op.create_table(
        "venues",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_venues_id", "venues", ["id"])

    op.create_table(
        "venue_tables",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("venue_id", sa.Integer(), sa.ForeignKey("venues.id"), nullable=False),
        sa.Column("table_number", sa.String(50), nullable=False),
        sa.Column("seats", sa.Integer(), nullable=True),
        sa.Column("location_zone", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="available"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_venue_tables_id", "venue_tables", ["id"])
    op.create_index("ix_venue_tables_venue_id", "venue_tables", ["venue_id"])

    # Sessions
    op.create_table(
        "table_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("venue_id", sa.Integer(), sa.ForeignKey("venues.id"), nullable=False),
        sa.Column("table_id", sa.Integer(), sa.ForeignKey("venue_tables.id"), nullable=True),
        sa.Column("booking_id", sa.String(64), nullable=True),
        sa.Column("package_purchase_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("guest_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("guest_name", sa.String(200), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opened_by", sa.Integer(), nullable=True),
        sa.Column("closed_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_table_sessions_id", "table_sessions", ["id"])
    op.create_index("ix_table_sessions_venue_id", "table_sessions", ["venue_id"])
    op.create_index("ix_table_sessions_status", "table_sessions", ["status"])
    # At most one open/billing session per table
    op.create_index(
        "uq_table_sessions_active_table",
        "table_sessions",
        ["table_id"],
        unique=True,
        sqlite_where=sa.text(ACTIVE_TABLE_SESSION),
        postgresql_where=sa.text(ACTIVE_TABLE_SESSION),
    )

    # Orders and items
    op.create_table(
        "session_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("table_sessions.id"), nullable=False),
        sa.Column("order_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="confirmed"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("ordered_by", sa.Integer(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("session_id", "order_number", name="uq_session_orders_number"),
    )
    op.create_index("ix_session_orders_id", "session_orders", ["id"])
    op.create_index("ix_session_orders_session_id", "session_orders", ["session_id"])

    op.create_table(
        "session_order_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_order_id", sa.Integer(), sa.ForeignKey("session_orders.id"), nullable=False),
        sa.Column("menu_item_id", sa.String(64), nullable=True),
        sa.Column("item_name", sa.String(200), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.BigInteger(), nullable=False),
        sa.Column("modifiers", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("destination", sa.String(20), nullable=False, server_default="kitchen"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("served_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_session_order_items_id", "session_order_items", ["id"])
    op.create_index("ix_session_order_items_session_order_id", "session_order_items", ["session_order_id"])
    op.create_index("ix_session_order_items_destination", "session_order_items", ["destination"])
    op.create_index("ix_session_order_items_status", "session_order_items", ["status"])

    # Invoices and payments
    op.create_table(
        "session_invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("table_sessions.id"), nullable=False),
        sa.Column("invoice_number", sa.String(64), nullable=False, unique=True),
        sa.Column("subtotal", sa.BigInteger(), nullable=False),
        sa.Column("tax_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("service_charge", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("discount_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("discount_reason", sa.String(200), nullable=True),
        sa.Column("deposit_credit", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("tip_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.BigInteger(), nullable=False),
        sa.Column("amount_paid", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("split_group", sa.String(36), nullable=True),
        sa.Column("split_index", sa.Integer(), nullable=True),
        sa.Column("split_count", sa.Integer(), nullable=True),
        sa.Column("guest_name", sa.String(200), nullable=True),
        sa.Column("guest_phone", sa.String(50), nullable=True),
        sa.Column("guest_email", sa.String(200), nullable=True),
        sa.Column("guest_user_id", sa.String(64), nullable=True),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.String(200), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_session_invoices_id", "session_invoices", ["id"])
    op.create_index("ix_session_invoices_session_id", "session_invoices", ["session_id"])
    op.create_index("ix_session_invoices_status", "session_invoices", ["status"])
    op.create_index("ix_session_invoices_split_group", "session_invoices", ["split_group"])

    op.create_table(
        "session_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("session_invoices.id"), nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("reference_number", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("processed_by", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_session_payments_id", "session_payments", ["id"])
    op.create_index("ix_session_payments_invoice_id", "session_payments", ["invoice_id"])

    # Invoice number counter
    op.create_table(
        "invoice_sequences",
        sa.Column("name", sa.String(50), primary_key=True),
        sa.Column("value", sa.BigInteger(), nullable=False, server_default="0"),
    )


def downgrade() -> None:
    op.drop_table("invoice_sequences")
    op.drop_table("session_payments")
    op.drop_table("session_invoices")
    op.drop_table("session_order_items")
    op.drop_table("session_orders")
    op.drop_index("uq_table_sessions_active_table", table_name="table_sessions")
    op.drop_table("table_sessions")
    op.drop_table("venue_tables")
    op.drop_table("venues")
