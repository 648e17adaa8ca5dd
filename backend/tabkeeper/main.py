"""FastAPI application entry point."""

import asyncio
import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from sqlalchemy import text

from tabkeeper import __version__
from tabkeeper.api.routes import api_router
from tabkeeper.core.cache import cache
from tabkeeper.core.change_feed import ChangeEvent, change_feed
from tabkeeper.core.config import settings
from tabkeeper.core.rate_limit import limiter
from tabkeeper.core.security import decode_access_token
from tabkeeper.db.base import Base
from tabkeeper.db.session import SessionLocal, engine
from tabkeeper.services.errors import (
    EmptyOrderError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    PartialSplitFailureError,
    SessionBillingError,
    TableUnavailableError,
)


# WebSocket Connection Manager for real-time updates
class ConnectionManager:
    """Manages staff display WebSocket connections, one channel per venue."""

    MAX_CONNECTIONS_PER_CHANNEL = 500

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self.connection_metadata: Dict[int, Dict[str, Any]] = {}

    async def connect(self, websocket: WebSocket, channel: str, user_id: Optional[int] = None) -> bool:
        """Accept and register a connection. Returns False if the channel is full."""
        if len(self.active_connections.get(channel, [])) >= self.MAX_CONNECTIONS_PER_CHANNEL:
            logger.warning(f"WebSocket connection rejected: channel '{channel}' at capacity")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return False

        await websocket.accept()
        self.active_connections.setdefault(channel, []).append(websocket)
        self.connection_metadata[id(websocket)] = {
            "connected_at": datetime.now(timezone.utc),
            "user_id": user_id,
            "channel": channel,
            "last_ping": datetime.now(timezone.utc),
        }
        logger.debug(f"WebSocket connected to channel '{channel}', user_id={user_id}")
        return True

    def disconnect(self, websocket: WebSocket, channel: str):
        if websocket in self.active_connections.get(channel, []):
            self.active_connections[channel].remove(websocket)
        self.connection_metadata.pop(id(websocket), None)
        logger.debug(f"WebSocket disconnected from channel '{channel}'")

    def update_ping(self, websocket: WebSocket):
        ws_id = id(websocket)
        if ws_id in self.connection_metadata:
            self.connection_metadata[ws_id]["last_ping"] = datetime.now(timezone.utc)

    async def broadcast(self, message: Dict[str, Any], channel: str):
        """Broadcast a message to all connections in a channel."""
        disconnected = []
        for connection in list(self.active_connections.get(channel, [])):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug(f"WebSocket send failed: {e}")
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn, channel)

    def get_connection_count(self, channel: Optional[str] = None) -> int:
        if channel:
            return len(self.active_connections.get(channel, []))
        return sum(len(conns) for conns in self.active_connections.values())


def venue_channel(venue_id: int) -> str:
    return f"venue-{venue_id}"


# Global connection manager instance
ws_manager = ConnectionManager()

# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()

if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:
    class JSONFormatter(logging.Formatter):
        def format(self, record):
            return json.dumps({
                "ts": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "module": record.module,
                "line": record.lineno,
            })

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

root_logger.addHandler(handler)
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next):
        # Skip logging for health checks
        if request.url.path in ["/health", "/health/ready", "/"]:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        request_logger.info(f"Request: {request.method} {request.url.path} - Client: {client_ip}")

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            request_logger.error(
                f"Error: {request.method} {request.url.path} - "
                f"Exception: {str(e)} - Time: {process_time:.3f}s - Client: {client_ip}"
            )
            raise

        process_time = time.time() - start_time
        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(
            log_level,
            f"Response: {request.method} {request.url.path} - "
            f"Status: {response.status_code} - Time: {process_time:.3f}s - Client: {client_ip}"
        )
        return response


def make_broadcast_listener(loop: asyncio.AbstractEventLoop):
    """Change feed listener that forwards events to the venue's WebSocket channel.

    Routes run in the threadpool, so the broadcast is handed to the server loop.
    """

    def broadcast_change(event: ChangeEvent) -> None:
        channel = venue_channel(event.venue_id)
        if not ws_manager.get_connection_count(channel):
            return
        asyncio.run_coroutine_threadsafe(ws_manager.broadcast(event.to_message(), channel), loop)

    return broadcast_change


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting table session billing service")

    # Create tables if they don't exist (for SQLite dev)
    # In production with PostgreSQL, use Alembic migrations
    if settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created (SQLite mode)")

    listener = make_broadcast_listener(asyncio.get_running_loop())
    change_feed.subscribe(listener)

    yield

    change_feed.unsubscribe(listener)
    cache.clear()
    logger.info("Shutting down table session billing service")


app = FastAPI(
    title="Tabkeeper",
    description="Table session orders, kitchen/bar routing and billing",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting setup
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


ERROR_STATUS_CODES = {
    NotFoundError: 404,
    TableUnavailableError: 409,
    InvalidStateError: 409,
    EmptyOrderError: 422,
    InvalidInputError: 422,
    PartialSplitFailureError: 207,
}


async def session_billing_error_handler(request: Request, exc: SessionBillingError):
    """Map service errors to HTTP responses carrying the error kind."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 400)
    body: Dict[str, Any] = {"detail": str(exc), "error": exc.kind}
    if isinstance(exc, InvalidStateError) and exc.current_status:
        body["current_status"] = exc.current_status
    if isinstance(exc, PartialSplitFailureError):
        body["created_invoice_ids"] = exc.created_invoice_ids
        body["failed_splits"] = [
            {"split_index": index, "reason": reason} for index, reason in exc.failed_splits
        ]
    return JSONResponse(status_code=status_code, content=body)


app.add_exception_handler(SessionBillingError, session_billing_error_handler)

# Security headers middleware
app.add_middleware(SecurityHeadersMiddleware)

# Request logging middleware
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware - added last so it runs first (Starlette LIFO order)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
    max_age=600,
)

# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    """Basic liveness check endpoint."""
    return {"status": "healthy", "version": __version__}


@app.get("/health/ready")
def readiness_check():
    """Readiness probe with database and change feed checks."""
    checks = {"database": "unknown", "change_feed": "unknown"}

    db = None
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = "unhealthy"
    finally:
        if db:
            db.close()

    checks["change_feed"] = (
        f"healthy ({change_feed.listener_count} listeners, "
        f"{ws_manager.get_connection_count()} connections)"
    )

    all_healthy = all(c.startswith("healthy") for c in checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
        "cache": cache.stats(),
    }


@app.websocket("/ws/venues/{venue_id}")
async def websocket_venue(
    websocket: WebSocket,
    venue_id: int,
    token: Optional[str] = Query(None),
):
    """Session/order/invoice change events for one venue's staff displays."""
    user_id = None
    if token:
        payload = decode_access_token(token)
        if payload is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        user_id = payload.get("sub")

    channel = venue_channel(venue_id)
    if not await ws_manager.connect(websocket, channel, user_id=user_id):
        return

    try:
        await websocket.send_json({
            "event": "connected",
            "venue_id": venue_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                ws_manager.update_ping(websocket)
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket, channel)
    except Exception as e:
        logger.error(f"WebSocket error in {channel}: {e}", exc_info=True)
        ws_manager.disconnect(websocket, channel)
