"""Pytest configuration and fixtures."""

import pytest
from typing import Generator, List

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tabkeeper.core.cache import cache
from tabkeeper.core.change_feed import ChangeEvent, ChangeFeed
from tabkeeper.core.security import create_access_token
from tabkeeper.db.base import Base
from tabkeeper.db.session import enable_sqlite_foreign_keys, get_db
from tabkeeper.main import app
# Import all models to ensure they're registered with Base.metadata
from tabkeeper.models import *
from tabkeeper.schemas.session import OrderItemCreate

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def clear_cache():
    """Open-session views are cached process-wide; start every test cold."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    from tabkeeper.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    global_limiter.enabled = True
    app.dependency_overrides.clear()


class RecordingFeed(ChangeFeed):
    """Change feed that keeps every published event for assertions."""

    def __init__(self):
        super().__init__()
        self.events: List[ChangeEvent] = []

    def publish(self, event: ChangeEvent) -> None:
        self.events.append(event)
        super().publish(event)

    @property
    def names(self) -> List[str]:
        return [f"{e.entity}.{e.action}" for e in self.events]


@pytest.fixture
def feed() -> RecordingFeed:
    return RecordingFeed()


@pytest.fixture
def venue(db_session: Session) -> Venue:
    """Create a test venue."""
    venue = Venue(name="Club Test")
    db_session.add(venue)
    db_session.commit()
    db_session.refresh(venue)
    return venue


@pytest.fixture
def table(db_session: Session, venue: Venue) -> VenueTable:
    """An available 4-seat table."""
    table = VenueTable(
        venue_id=venue.id,
        table_number="T1",
        seats=4,
        location_zone="Main Floor",
        status=TableStatus.AVAILABLE.value,
    )
    db_session.add(table)
    db_session.commit()
    db_session.refresh(table)
    return table


@pytest.fixture
def second_table(db_session: Session, venue: Venue) -> VenueTable:
    table = VenueTable(venue_id=venue.id, table_number="VIP-2", seats=8, location_zone="VIP")
    db_session.add(table)
    db_session.commit()
    db_session.refresh(table)
    return table


@pytest.fixture
def auth_token() -> str:
    """Token for a staff member as issued by the identity provider."""
    return create_access_token(data={"sub": "42", "email": "staff@example.com", "role": "manager"})


@pytest.fixture
def auth_headers(auth_token: str) -> dict:
    """Get authentication headers."""
    return {"Authorization": f"Bearer {auth_token}"}


def mojito(quantity: int = 2, destination: str = "bar") -> OrderItemCreate:
    return OrderItemCreate(item_name="Mojito", quantity=quantity, unit_price=85000, destination=destination)


def nachos(quantity: int = 1) -> OrderItemCreate:
    return OrderItemCreate(item_name="Nachos", quantity=quantity, unit_price=45000, destination="kitchen")


@pytest.fixture
def file_db(tmp_path):
    """File-backed database so each device gets its own connection.

    Yields a session factory plus the ids of a seeded venue and table.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    setup = factory()
    venue = Venue(name="Race Club")
    setup.add(venue)
    setup.flush()
    table = VenueTable(venue_id=venue.id, table_number="R1", seats=4)
    setup.add(table)
    setup.commit()
    ids = (venue.id, table.id)
    setup.close()
    yield factory, ids
    engine.dispose()


def run_between(target, name, other_device):
    """Wrap ``target.name`` so ``other_device()`` runs once, right after the first call returns.

    Stands in for a second device acting between this device's read and its write.
    """
    original = getattr(target, name)
    fired = []

    def wrapped(*args, **kwargs):
        result = original(*args, **kwargs)
        if not fired:
            fired.append(True)
            other_device()
        return result

    return wrapped
