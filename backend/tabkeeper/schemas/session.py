"""Table session, order and order item schemas"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from tabkeeper.models.table_session import Destination, ItemStatus, OrderStatus
from tabkeeper.schemas.invoice import InvoiceResponse


# ============== REQUESTS ==============

class CheckInRequest(BaseModel):
    table_id: Optional[int] = None  # omit for a walk-in
    booking_id: Optional[str] = None
    package_purchase_id: Optional[str] = None
    guest_count: int = Field(1, ge=1)
    guest_name: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = None


class SessionUpdate(BaseModel):
    guest_count: Optional[int] = Field(None, ge=1)
    guest_name: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = None


class CloseSessionRequest(BaseModel):
    notes: Optional[str] = None


class OrderItemCreate(BaseModel):
    menu_item_id: Optional[str] = None
    item_name: str = Field(..., min_length=1, max_length=200)
    quantity: int = Field(..., ge=1)
    unit_price: int = Field(..., ge=0, description="Price in minor currency units")
    modifiers: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None
    destination: Destination = Destination.KITCHEN


class OrderSubmit(BaseModel):
    items: List[OrderItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = None


class OrderItemsAdd(BaseModel):
    items: List[OrderItemCreate] = Field(..., min_length=1)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class ItemStatusUpdate(BaseModel):
    status: ItemStatus


class ItemQuantityUpdate(BaseModel):
    quantity: int = Field(..., ge=0)


# ============== RESPONSES ==============

class TableSummary(BaseModel):
    id: int
    table_number: str
    seats: int
    location_zone: Optional[str] = None
    status: str

    model_config = ConfigDict(from_attributes=True)


class OrderItemResponse(BaseModel):
    id: int
    session_order_id: int
    menu_item_id: Optional[str] = None
    item_name: str
    quantity: int
    unit_price: int
    line_value: int
    modifiers: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    destination: str
    status: str
    served_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OrderWithItems(BaseModel):
    id: int
    session_id: int
    order_number: int
    status: str
    notes: Optional[str] = None
    ordered_by: Optional[int] = None
    confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []
    billable_total: int = 0


class SessionResponse(BaseModel):
    id: int
    venue_id: int
    table_id: Optional[int] = None
    booking_id: Optional[str] = None
    package_purchase_id: Optional[str] = None
    status: str
    guest_count: int
    guest_name: Optional[str] = None
    notes: Optional[str] = None
    opened_at: datetime
    closed_at: Optional[datetime] = None
    opened_by: Optional[int] = None
    closed_by: Optional[int] = None
    is_walk_in: bool

    model_config = ConfigDict(from_attributes=True)


class SessionWithOrders(SessionResponse):
    table: Optional[TableSummary] = None
    orders: List[OrderWithItems] = []
    invoices: List[InvoiceResponse] = []
    subtotal: int = 0
