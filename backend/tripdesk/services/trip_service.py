"""Trip mutations. Every write propagates explicitly: dirty markers for the
fact cache, component rebuilds for the semantic index, and client changes
through the consistency manager."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tripdesk.database import utcnow
from tripdesk.errors import ConsistencyError, NotFoundError, ValidationError
from tripdesk.models.trip import Trip, TripActivity, TripTransitLeg
from tripdesk.schemas.trip import (
    ClientRole,
    ScheduleReplaceRequest,
    TripPatch,
    TripStatus,
    parse_trip_attributes,
)
from tripdesk.services.consistency_manager import ConsistencyManager
from tripdesk.services.fact_cache import FactCache
from tripdesk.services.semantic_index import SemanticIndex
from tripdesk.services.slug_registry import SlugRegistry

logger = logging.getLogger(__name__)

# Attributes the slug is derived from
SLUG_SOURCE_FIELDS = frozenset({"name", "destinations", "start_date", "primary_client_email"})


class TripService:
    def __init__(
        self,
        slug_registry: SlugRegistry,
        semantic_index: SemanticIndex,
        fact_cache: FactCache,
        consistency: ConsistencyManager,
    ):
        self.slug_registry = slug_registry
        self.semantic_index = semantic_index
        self.fact_cache = fact_cache
        self.consistency = consistency

    async def get_trip(self, db: AsyncSession, trip_id: int) -> Trip:
        trip = (await db.execute(select(Trip).where(Trip.trip_id == trip_id))).scalar_one_or_none()
        if trip is None:
            raise NotFoundError(
                f"Trip {trip_id} does not exist",
                alternatives=["List trips or resolve the trip by name or slug to find its id"],
            )
        return trip

    async def list_trips(
        self, db: AsyncSession, status: str | None = None, limit: int = 50, offset: int = 0
    ) -> tuple[list[Trip], int]:
        stmt = select(Trip)
        count_stmt = select(func.count(Trip.trip_id))
        if status:
            stmt = stmt.where(Trip.status == status)
            count_stmt = count_stmt.where(Trip.status == status)
        total = (await db.execute(count_stmt)).scalar_one()
        result = await db.execute(stmt.order_by(Trip.updated_at.desc(), Trip.trip_id.desc()).limit(limit).offset(offset))
        return list(result.scalars().all()), total

    async def create_trip(
        self, db: AsyncSession, raw: dict, assign_slug: bool = True
    ) -> tuple[Trip, list[ConsistencyError]]:
        """Create a trip from a (possibly legacy) attribute document.

        Returns the trip and any non-fatal consistency warnings raised while
        dual-writing its clients.
        """
        attrs = parse_trip_attributes(raw)
        trip = Trip(
            name=attrs.name,
            destinations=list(attrs.destinations),
            start_date=attrs.start_date,
            end_date=attrs.end_date,
            status=attrs.status.value,
            primary_client_email=attrs.primary_client_email,
            notes=attrs.notes,
            clients=[],
            financials=attrs.financials.model_dump(mode="json") if attrs.financials else None,
            document_version=attrs.document_version,
        )
        db.add(trip)
        await db.flush()
        await self.fact_cache.mark_dirty(db, [trip.trip_id], "trip_insert")
        await self.semantic_index.rebuild(db, trip)
        await db.commit()
        logger.info(f"Created trip {trip.trip_id}: {trip.name}")

        if assign_slug:
            await self.slug_registry.assign_slug(db, trip)

        clients = [(c.email, c.role.value) for c in attrs.clients]
        if attrs.primary_client_email and attrs.primary_client_email not in {e for e, _ in clients}:
            clients.insert(0, (attrs.primary_client_email, ClientRole.primary_traveler.value))

        warnings = []
        for email, role in clients:
            outcome = await self.consistency.assign_client(db, trip.trip_id, email, role)
            if outcome.warning:
                warnings.append(outcome.warning)
        return trip, warnings

    async def update_trip(self, db: AsyncSession, trip_id: int, patch: TripPatch) -> Trip:
        trip = await self.get_trip(db, trip_id)
        changes = patch.model_dump(exclude_unset=True)
        if not changes:
            return trip
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError({"name": "must not be blank"})

        start = changes.get("start_date", trip.start_date)
        end = changes.get("end_date", trip.end_date)
        if start and end and end < start:
            raise ValidationError({"end_date": "must not be before start_date"})

        for key, value in changes.items():
            if key == "status" and value is not None:
                value = TripStatus(value).value
            elif key == "financials" and value is not None:
                value = patch.financials.model_dump(mode="json")
            elif key == "destinations" and value is not None:
                value = [d.strip() for d in value if d and d.strip()]
            elif key == "name":
                value = value.strip()
            setattr(trip, key, value)
        trip.updated_at = utcnow()

        await self.fact_cache.mark_dirty(db, [trip_id], "trip_update")
        await self.semantic_index.rebuild(db, trip)
        await db.commit()
        logger.info(f"Updated trip {trip_id}: {sorted(changes)}")

        if changes.get("primary_client_email"):
            await self.consistency.assign_client(
                db, trip_id, trip.primary_client_email, ClientRole.primary_traveler.value
            )

        if SLUG_SOURCE_FIELDS & changes.keys():
            previous = trip.slug
            slug = await self.slug_registry.assign_slug(db, trip)
            if slug != previous:
                logger.info(f"Trip {trip_id} slug changed: {previous} -> {slug}")
        return trip

    async def replace_schedule(self, db: AsyncSession, trip_id: int, req: ScheduleReplaceRequest) -> Trip:
        """Replace all activities and transit legs of a trip."""
        result = await db.execute(
            select(Trip)
            .where(Trip.trip_id == trip_id)
            .options(selectinload(Trip.activities), selectinload(Trip.transit_legs))
            .execution_options(populate_existing=True)
        )
        trip = result.scalar_one_or_none()
        if trip is None:
            raise NotFoundError(
                f"Trip {trip_id} does not exist",
                alternatives=["List trips or resolve the trip by name or slug to find its id"],
            )

        for leg in req.transit_legs:
            if leg.depart_at and leg.arrive_at and leg.arrive_at < leg.depart_at:
                raise ValidationError({"transit_legs": "arrive_at must not be before depart_at"})

        # delete-orphan cascade removes the previous rows on flush
        trip.activities = [
            TripActivity(
                day_number=item.day_number,
                activity_type=item.activity_type.strip().lower() or "activity",
                title=item.title,
                cost=item.cost,
            )
            for item in req.activities
        ]
        trip.transit_legs = [
            TripTransitLeg(
                mode=leg.mode,
                origin=leg.origin,
                destination=leg.destination,
                depart_at=leg.depart_at,
                arrive_at=leg.arrive_at,
            )
            for leg in req.transit_legs
        ]
        trip.updated_at = utcnow()
        await db.flush()

        await self.fact_cache.mark_dirty(db, [trip_id], "schedule_update")
        await self.semantic_index.rebuild(db, trip)
        await db.commit()
        logger.info(
            f"Replaced schedule for trip {trip_id}: {len(req.activities)} activities, "
            f"{len(req.transit_legs)} transit legs"
        )
        return trip

    async def backfill_slugs(self, db: AsyncSession) -> list[dict]:
        return await self.slug_registry.backfill_slugs(db)
