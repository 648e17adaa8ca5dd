"""
Session Order API Endpoints
Item additions, quantity changes and kitchen/bar status progression
"""
from fastapi import APIRouter, Request

from tabkeeper.core.rate_limit import limiter
from tabkeeper.db.session import DbSession
from tabkeeper.schemas.session import (
    ItemQuantityUpdate,
    ItemStatusUpdate,
    OrderItemResponse,
    OrderItemsAdd,
    OrderStatusUpdate,
    OrderWithItems,
)
from tabkeeper.services.order_service import SessionOrderService

router = APIRouter()
items_router = APIRouter()


@router.post("/{order_id}/items", response_model=OrderWithItems)
@limiter.limit("60/minute")
def add_items(request: Request, db: DbSession, order_id: int, data: OrderItemsAdd):
    return SessionOrderService(db).add_items_to_order(order_id, data.items)


@router.patch("/{order_id}/status", response_model=OrderWithItems)
@limiter.limit("60/minute")
def update_order_status(request: Request, db: DbSession, order_id: int, data: OrderStatusUpdate):
    return SessionOrderService(db).update_order_status(order_id, data.status)


@router.post("/{order_id}/cancel", response_model=OrderWithItems)
@limiter.limit("30/minute")
def cancel_order(request: Request, db: DbSession, order_id: int):
    """Cancel all unserved items of an order."""
    return SessionOrderService(db).cancel_order(order_id)


@items_router.patch("/{item_id}/status", response_model=OrderItemResponse)
@limiter.limit("120/minute")
def update_item_status(request: Request, db: DbSession, item_id: int, data: ItemStatusUpdate):
    """Advance an item (kitchen/bar display) or cancel it while pending/preparing."""
    return SessionOrderService(db).update_item_status(item_id, data.status)


@items_router.patch("/{item_id}/quantity", response_model=OrderItemResponse)
@limiter.limit("60/minute")
def update_item_quantity(request: Request, db: DbSession, item_id: int, data: ItemQuantityUpdate):
    return SessionOrderService(db).update_item_quantity(item_id, data.quantity)
