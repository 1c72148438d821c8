"""Derived trip metrics and the dirty queue that invalidates them."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from tripdesk.database import Base, JSONDocument, utcnow


class TripFacts(Base):
    __tablename__ = "trip_facts"

    # Keyed by trip id only, no FK
    trip_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    total_nights: Mapped[int] = mapped_column(Integer, default=0)
    total_hotels: Mapped[int] = mapped_column(Integer, default=0)
    total_activities: Mapped[int] = mapped_column(Integer, default=0)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    transit_minutes: Mapped[int] = mapped_column(Integer, default=0)
    traveler_count: Mapped[int] = mapped_column(Integer, default=0)
    traveler_emails: Mapped[list] = mapped_column(JSONDocument, default=list)
    primary_client_email: Mapped[str | None] = mapped_column(String(255))
    last_computed: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class FactsDirty(Base):
    """Pending recomputation marker.

    One row per (trip_id, reason) while pending; re-marking bumps
    touch_count instead of inserting a duplicate. created_at keeps the
    first marking so the oldest work is recomputed first.
    """

    __tablename__ = "facts_dirty"
    __table_args__ = (
        UniqueConstraint("trip_id", "reason", name="uq_facts_dirty_trip_reason"),
        Index("ix_facts_dirty_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    touch_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
