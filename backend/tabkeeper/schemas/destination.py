"""Destination (kitchen/bar) display schemas"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class DisplayDestination(str, Enum):
    KITCHEN = "kitchen"
    BAR = "bar"


class WaitPriority(str, Enum):
    NORMAL = "normal"        # under 5 minutes
    ELEVATED = "elevated"    # 5-10 minutes
    HIGH = "high"            # 10-15 minutes
    CRITICAL = "critical"    # 15 minutes and over


class DisplayItem(BaseModel):
    id: int
    session_order_id: int
    menu_item_id: Optional[str] = None
    item_name: str
    quantity: int
    status: str
    notes: Optional[str] = None
    modifiers: Optional[Dict[str, Any]] = None
    destination: str
    created_at: datetime


class GroupedOrder(BaseModel):
    order_id: int
    order_number: int
    session_id: int
    table_number: Optional[str] = None
    is_walk_in: bool
    guest_name: Optional[str] = None
    created_at: datetime
    items: List[DisplayItem]


class StatusCounts(BaseModel):
    pending: int = 0
    preparing: int = 0
    ready: int = 0


class GroupedOrderView(GroupedOrder):
    wait_minutes: int
    priority: WaitPriority


class DestinationOrdersResponse(BaseModel):
    venue_id: int
    destination: DisplayDestination
    orders: List[GroupedOrderView]
    counts: StatusCounts
    generated_at: datetime
    refresh_seconds: int
