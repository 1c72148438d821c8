"""Fact cache: derived per-trip metrics, invalidated through the dirty queue.

Markers are set-insert-or-ignore on (trip_id, reason); re-marking a pending
marker only touches it. ``recompute`` consumes at most ``limit`` trips per
call and deletes only the marker rows it read, so a marker touched while a
pass is running survives for the next one.
"""

import logging
import re
import time
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk.config import Settings, settings as default_settings
from tripdesk.database import upsert, utcnow
from tripdesk.errors import StageTimeoutError, ValidationError
from tripdesk.models.facts import FactsDirty, TripFacts
from tripdesk.services.engine import ACCOMMODATION_TYPES
from tripdesk.services.trip_data import TripDataProvider, TripSnapshot, trip_data_provider

logger = logging.getLogger(__name__)

_REASON_RE = re.compile(r"^[a-z0-9_.:-]{1,64}$")


def _utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def compute_metrics(snapshot: TripSnapshot) -> dict:
    """Aggregate raw trip data into fact values. Deterministic for unchanged input."""
    trip = snapshot.trip
    activities = snapshot.activities

    if trip.start_date and trip.end_date and trip.end_date >= trip.start_date:
        nights = (trip.end_date - trip.start_date).days
    elif activities:
        nights = max(0, max(a.day_number for a in activities) - 1)
    else:
        nights = 0

    hotels = [a for a in activities if (a.activity_type or "").lower() in ACCOMMODATION_TYPES]
    costs = [Decimal(a.cost) for a in activities if a.cost is not None]
    if costs:
        total_cost = sum(costs, Decimal("0"))
    elif trip.financials and trip.financials.get("total_cost") is not None:
        total_cost = Decimal(str(trip.financials["total_cost"]))
    else:
        total_cost = Decimal("0")

    transit_minutes = 0
    for leg in snapshot.transit_legs:
        if leg.depart_at and leg.arrive_at:
            minutes = int((_utc(leg.arrive_at) - _utc(leg.depart_at)).total_seconds() // 60)
            transit_minutes += max(0, minutes)

    emails = sorted({a.client_email for a in snapshot.assignments})
    primary = trip.primary_client_email
    if not primary:
        primary = next(
            (a.client_email for a in snapshot.assignments if a.client_role == "primary_traveler"),
            emails[0] if emails else None,
        )

    return {
        "total_nights": nights,
        "total_hotels": len(hotels),
        "total_activities": len(activities) - len(hotels),
        "total_cost": total_cost.quantize(Decimal("0.01")),
        "transit_minutes": transit_minutes,
        "traveler_count": len(emails),
        "traveler_emails": emails,
        "primary_client_email": primary,
    }


class FactCache:
    def __init__(self, config: Settings | None = None, provider: TripDataProvider | None = None):
        self.config = config or default_settings
        self.provider = provider or trip_data_provider

    def _validate_mark(self, trip_ids, reason) -> list[int]:
        errors = {}
        if not isinstance(trip_ids, (list, tuple, set)) or not trip_ids:
            errors["trip_ids"] = "must be a non-empty list of trip ids"
        elif any(isinstance(t, bool) or not isinstance(t, int) or t < 1 for t in trip_ids):
            errors["trip_ids"] = "every trip id must be a positive integer"
        if not isinstance(reason, str) or not _REASON_RE.match(reason):
            errors["reason"] = "must be 1-64 characters of lowercase letters, digits, '_', '.', ':' or '-'"
        if errors:
            raise ValidationError(errors)
        return sorted(set(trip_ids))

    async def mark_dirty(self, db: AsyncSession, trip_ids, reason: str) -> int:
        """Enqueue (trip_id, reason) markers. Returns how many were new.

        Flushes within the caller's transaction; the caller commits.
        """
        ids = self._validate_mark(trip_ids, reason)
        table = FactsDirty.__table__
        pending = set(
            (await db.execute(
                select(FactsDirty.trip_id).where(FactsDirty.trip_id.in_(ids), FactsDirty.reason == reason)
            )).scalars().all()
        )
        for trip_id in ids:
            await db.execute(upsert(
                db,
                table,
                {"trip_id": trip_id, "reason": reason, "created_at": utcnow(), "touch_count": 0},
                ["trip_id", "reason"],
                {"touch_count": table.c.touch_count + 1},
            ))
        marked = len(ids) - len(pending)
        logger.debug(f"Marked {marked} new dirty markers ({reason}) for trips {ids}")
        return marked

    def _validate_limit(self, limit) -> int:
        if limit is None:
            return self.config.facts_default_batch
        maximum = self.config.facts_max_batch
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= maximum:
            raise ValidationError({"limit": f"must be an integer between 1 and {maximum}"})
        return limit

    async def recompute(self, db: AsyncSession, limit: int | None = None) -> dict:
        """Recompute facts for up to ``limit`` distinct dirty trips, oldest first."""
        limit = self._validate_limit(limit)
        budget_ms = self.config.facts_time_budget_ms
        started = time.perf_counter()

        first_marked = func.min(FactsDirty.created_at).label("first_marked")
        result = await db.execute(
            select(FactsDirty.trip_id, first_marked)
            .group_by(FactsDirty.trip_id)
            .order_by(first_marked, FactsDirty.trip_id)
            .limit(limit)
        )
        trip_ids = [row.trip_id for row in result]

        processed = 0
        timeout = None
        for trip_id in trip_ids:
            elapsed_ms = (time.perf_counter() - started) * 1000
            if processed and elapsed_ms >= budget_ms:
                timeout = StageTimeoutError("recompute_facts", budget_ms, elapsed_ms)
                break
            await self._recompute_one(db, trip_id)
            processed += 1

        remaining = (
            await db.execute(select(func.count(func.distinct(FactsDirty.trip_id))))
        ).scalar_one()
        if timeout:
            logger.warning(f"{timeout.message}; processed {processed}, {remaining} trips still dirty")
        else:
            logger.info(f"Recomputed facts for {processed} trips, {remaining} still dirty")

        response = {"processed": processed, "remaining": remaining, "partial": timeout is not None}
        if timeout:
            response["cause"] = timeout.message
            response["alternatives"] = timeout.alternatives
        return response

    async def _recompute_one(self, db: AsyncSession, trip_id: int) -> None:
        markers = (
            await db.execute(
                select(FactsDirty.id, FactsDirty.touch_count).where(FactsDirty.trip_id == trip_id)
            )
        ).all()

        snapshot = await self.provider.load(db, trip_id)
        if snapshot is None:
            # Trip gone: clear its markers, keep any facts already computed
            logger.warning(f"Dirty trip {trip_id} no longer exists; dropping {len(markers)} markers")
        else:
            metrics = compute_metrics(snapshot)
            now = utcnow()
            table = TripFacts.__table__
            await db.execute(upsert(
                db,
                table,
                {"trip_id": trip_id, **metrics, "last_computed": now, "version": 1},
                ["trip_id"],
                {**metrics, "last_computed": now, "version": table.c.version + 1},
            ))

        for marker_id, touch_count in markers:
            await db.execute(
                delete(FactsDirty).where(FactsDirty.id == marker_id, FactsDirty.touch_count == touch_count)
            )
        await db.commit()

    async def get_facts(self, db: AsyncSession, trip_id: int) -> TripFacts | None:
        # Facts are written through Core upserts; bypass stale identity-map state
        result = await db.execute(
            select(TripFacts)
            .where(TripFacts.trip_id == trip_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def pending_count(self, db: AsyncSession) -> int:
        return (await db.execute(select(func.count(FactsDirty.id)))).scalar_one()
