"""Kitchen/bar display endpoint"""
from fastapi import APIRouter, Request

from tabkeeper.core.rate_limit import limiter
from tabkeeper.db.session import DbSession
from tabkeeper.schemas.destination import DestinationOrdersResponse, DisplayDestination
from tabkeeper.services.destination_display import list_destination_orders

router = APIRouter()


@router.get("/venue/{venue_id}/{destination}", response_model=DestinationOrdersResponse)
@limiter.limit("120/minute")
def get_destination_orders(
    request: Request,
    db: DbSession,
    venue_id: int,
    destination: DisplayDestination,
):
    """Open items for one station, grouped by order, oldest wait first."""
    return list_destination_orders(db, venue_id, destination)
