"""
Table Session API Endpoints
Check-in, session details, open-session board and close-out
"""
from typing import List, Optional

from fastapi import APIRouter, Body, Request

from tabkeeper.core.rate_limit import limiter
from tabkeeper.core.security import OptionalStaff, staff_id
from tabkeeper.db.session import DbSession
from tabkeeper.schemas.session import (
    CheckInRequest,
    CloseSessionRequest,
    OrderSubmit,
    OrderWithItems,
    SessionUpdate,
    SessionWithOrders,
)
from tabkeeper.services.order_service import SessionOrderService
from tabkeeper.services.session_service import TableSessionService

router = APIRouter()


@router.post("/venue/{venue_id}/checkin", response_model=SessionWithOrders, status_code=201)
@limiter.limit("30/minute")
def check_in(
    request: Request,
    db: DbSession,
    staff: OptionalStaff,
    venue_id: int,
    data: CheckInRequest,
):
    """Open a session for a table, or a walk-in when no table is given."""
    return TableSessionService(db).check_in(
        venue_id,
        table_id=data.table_id,
        guest_count=data.guest_count,
        guest_name=data.guest_name,
        notes=data.notes,
        booking_id=data.booking_id,
        package_purchase_id=data.package_purchase_id,
        opened_by=staff_id(staff),
    )


@router.get("/venue/{venue_id}/open", response_model=List[SessionWithOrders])
@limiter.limit("60/minute")
def list_open_sessions(request: Request, db: DbSession, venue_id: int):
    """Open and billing sessions of a venue, newest first."""
    return TableSessionService(db).list_open_sessions(venue_id)


@router.get("/{session_id}", response_model=SessionWithOrders)
@limiter.limit("60/minute")
def get_session(request: Request, db: DbSession, session_id: int):
    return TableSessionService(db).get_session_by_id(session_id)


@router.patch("/{session_id}", response_model=SessionWithOrders)
@limiter.limit("30/minute")
def update_session(request: Request, db: DbSession, session_id: int, data: SessionUpdate):
    return TableSessionService(db).update_session(
        session_id,
        guest_count=data.guest_count,
        guest_name=data.guest_name,
        notes=data.notes,
    )


@router.post("/{session_id}/close", response_model=SessionWithOrders)
@limiter.limit("30/minute")
def close_session(
    request: Request,
    db: DbSession,
    staff: OptionalStaff,
    session_id: int,
    data: Optional[CloseSessionRequest] = Body(None),
):
    """Close the session and release its table."""
    return TableSessionService(db).close_session(
        session_id,
        closed_by=staff_id(staff),
        notes=data.notes if data else None,
    )


@router.post("/{session_id}/orders", response_model=OrderWithItems, status_code=201)
@limiter.limit("60/minute")
def submit_order(
    request: Request,
    db: DbSession,
    staff: OptionalStaff,
    session_id: int,
    data: OrderSubmit,
):
    """Submit a new order of items to the kitchen/bar."""
    return SessionOrderService(db).submit_order(
        session_id, data.items, notes=data.notes, ordered_by=staff_id(staff),
    )
