from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from tripdesk.database import Base, JSONDocument, utcnow


class TripComponent(Base):
    __tablename__ = "trip_components"
    __table_args__ = (
        Index("ix_trip_components_trip_type", "trip_id", "component_type"),
        Index("ix_trip_components_type_value", "component_type", "component_value"),
    )

    component_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("trips.trip_id", ondelete="CASCADE"), nullable=False
    )
    component_type: Mapped[str] = mapped_column(String(20), nullable=False)
    component_value: Mapped[str] = mapped_column(String(255), nullable=False)
    search_weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    synonyms: Mapped[list] = mapped_column(JSONDocument, default=list)
    source: Mapped[str | None] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class SearchQuery(Base):
    __tablename__ = "search_queries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    query: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_query: Mapped[str] = mapped_column(Text, nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    trip_id: Mapped[int | None] = mapped_column(Integer)
    confidence: Mapped[float | None] = mapped_column(Float)
    response_time_ms: Mapped[int | None] = mapped_column(Integer)
    searched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
