"""Venue catalog models - venues and their physical tables."""

import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship, validates

from tabkeeper.db.base import Base, utcnow
from tabkeeper.models.validators import positive


class TableStatus(str, enum.Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


class Venue(Base):
    """A nightlife venue (club, bar, lounge)."""
    __tablename__ = "venues"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Relationships
    tables = relationship("VenueTable", back_populates="venue")


class VenueTable(Base):
    """Physical seating unit. Owned by the venue catalog; sessions only flip its status."""
    __tablename__ = "venue_tables"

    id = Column(Integer, primary_key=True, index=True)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=False, index=True)
    table_number = Column(String(50), nullable=False)
    seats = Column(Integer, default=4)
    location_zone = Column(String(50), nullable=True)  # Main Floor, VIP, Terrace
    status = Column(String(20), default=TableStatus.AVAILABLE.value, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    venue = relationship("Venue", back_populates="tables")

    @validates('seats')
    def _validate_seats(self, key, value):
        return positive(key, value)

    @validates('status')
    def _validate_status(self, key, value):
        return TableStatus(value).value
