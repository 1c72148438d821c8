from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tripdesk.database import Base, JSONDocument, utcnow


class Trip(Base):
    __tablename__ = "trips"

    trip_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    destinations: Mapped[list] = mapped_column(JSONDocument, default=list)
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20), default="planning")
    slug: Mapped[str | None] = mapped_column(String(120), unique=True)
    primary_client_email: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)
    # Embedded, read-optimized copy of trip_client_assignments
    clients: Mapped[list] = mapped_column(JSONDocument, default=list)
    financials: Mapped[dict | None] = mapped_column(JSONDocument)
    document_version: Mapped[int] = mapped_column(Integer, default=2)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    assignments: Mapped[list["TripClientAssignment"]] = relationship(
        back_populates="trip", cascade="all, delete-orphan", order_by="TripClientAssignment.id"
    )
    activities: Mapped[list["TripActivity"]] = relationship(
        back_populates="trip", cascade="all, delete-orphan", order_by="TripActivity.day_number"
    )
    transit_legs: Mapped[list["TripTransitLeg"]] = relationship(
        back_populates="trip", cascade="all, delete-orphan", order_by="TripTransitLeg.depart_at"
    )


class TripClientAssignment(Base):
    """Authoritative trip-client relationship row."""

    __tablename__ = "trip_client_assignments"
    __table_args__ = (
        UniqueConstraint("trip_id", "client_email", "client_role", name="uq_trip_client_role"),
        Index("ix_trip_client_assignments_email", "client_email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("trips.trip_id", ondelete="CASCADE"), nullable=False
    )
    client_email: Mapped[str] = mapped_column(String(255), nullable=False)
    client_role: Mapped[str] = mapped_column(String(30), nullable=False, default="traveler")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    trip: Mapped["Trip"] = relationship(back_populates="assignments")


class TripActivity(Base):
    __tablename__ = "trip_activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("trips.trip_id", ondelete="CASCADE"), nullable=False, index=True
    )
    day_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    activity_type: Mapped[str] = mapped_column(String(30), nullable=False, default="activity")
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))

    trip: Mapped["Trip"] = relationship(back_populates="activities")


class TripTransitLeg(Base):
    __tablename__ = "trip_transit_legs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("trips.trip_id", ondelete="CASCADE"), nullable=False, index=True
    )
    mode: Mapped[str] = mapped_column(String(20), default="flight")
    origin: Mapped[str | None] = mapped_column(String(100))
    destination: Mapped[str | None] = mapped_column(String(100))
    depart_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    arrive_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    trip: Mapped["Trip"] = relationship(back_populates="transit_legs")
