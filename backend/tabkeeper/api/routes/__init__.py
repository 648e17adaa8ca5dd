"""API routes."""

import logging
from fastapi import APIRouter

from tabkeeper.api.routes import sessions, orders, invoices, destinations

logger = logging.getLogger(__name__)

api_router = APIRouter()

# Table sessions (check-in, orders, close) and their invoices
api_router.include_router(sessions.router, prefix="/sessions", tags=["sessions"])
api_router.include_router(invoices.session_router, prefix="/sessions", tags=["sessions", "invoices"])

# Orders and items
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(orders.items_router, prefix="/order-items", tags=["orders"])

# Invoice adjustments and payment settlement
api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices", "payments"])

# Kitchen/bar display
api_router.include_router(destinations.router, prefix="/destinations", tags=["destinations", "kds"])

logger.debug(f"API router ready with {len(api_router.routes)} routes")
