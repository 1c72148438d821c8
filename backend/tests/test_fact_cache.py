"""Tests for FactCache and the dirty queue."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from tripdesk.errors import ValidationError
from tripdesk.models.facts import FactsDirty
from tripdesk.models.trip import Trip, TripActivity, TripClientAssignment, TripTransitLeg
from tripdesk.schemas.trip import ActivityInput, ScheduleReplaceRequest, TransitLegInput
from tripdesk.services.fact_cache import FactCache, compute_metrics
from tripdesk.services.trip_data import TripDataProvider, TripSnapshot


async def _bare_trip(db, name="Rome Week") -> Trip:
    trip = Trip(name=name, destinations=["Rome"], clients=[])
    db.add(trip)
    await db.commit()
    return trip


class TestComputeMetrics:
    """Tests for the pure aggregation."""

    def test_aggregates_schedule(self):
        trip = Trip(trip_id=1, name="x", start_date=date(2025, 6, 1), end_date=date(2025, 6, 8), clients=[])
        snapshot = TripSnapshot(
            trip=trip,
            activities=[
                TripActivity(day_number=1, activity_type="hotel", title="Inn", cost=Decimal("700.50")),
                TripActivity(day_number=2, activity_type="tour", title="Museum", cost=Decimal("40")),
                TripActivity(day_number=3, activity_type="dinner", title="Trattoria", cost=None),
            ],
            transit_legs=[
                TripTransitLeg(
                    mode="flight",
                    depart_at=datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc),
                    arrive_at=datetime(2025, 6, 1, 11, 30, tzinfo=timezone.utc),
                ),
                TripTransitLeg(mode="train", depart_at=None, arrive_at=None),
            ],
            assignments=[
                TripClientAssignment(client_email="b@example.com", client_role="traveler"),
                TripClientAssignment(client_email="a@example.com", client_role="primary_traveler"),
                TripClientAssignment(client_email="a@example.com", client_role="traveler"),
            ],
        )
        metrics = compute_metrics(snapshot)
        assert metrics["total_nights"] == 7
        assert metrics["total_hotels"] == 1
        assert metrics["total_activities"] == 2
        assert metrics["total_cost"] == Decimal("740.50")
        assert metrics["transit_minutes"] == 210
        assert metrics["traveler_count"] == 2
        assert metrics["traveler_emails"] == ["a@example.com", "b@example.com"]
        assert metrics["primary_client_email"] == "a@example.com"

    def test_nights_from_day_numbers_without_dates(self):
        trip = Trip(trip_id=1, name="x", clients=[])
        snapshot = TripSnapshot(trip=trip, activities=[
            TripActivity(day_number=1, activity_type="tour", title="a"),
            TripActivity(day_number=4, activity_type="tour", title="b"),
        ])
        assert compute_metrics(snapshot)["total_nights"] == 3

    def test_cost_falls_back_to_financials(self):
        trip = Trip(trip_id=1, name="x", clients=[], financials={"total_cost": "1234.5"})
        assert compute_metrics(TripSnapshot(trip=trip))["total_cost"] == Decimal("1234.50")


class TestMarkDirty:
    """Tests for marker insertion."""

    @pytest.mark.asyncio
    async def test_marking_twice_keeps_one_marker(self, db, tools):
        trip = await _bare_trip(db)
        assert await tools.facts.mark_dirty(db, [trip.trip_id], "manual") == 1
        assert await tools.facts.mark_dirty(db, [trip.trip_id], "manual") == 0
        await db.commit()

        markers = (await db.execute(select(FactsDirty).where(FactsDirty.trip_id == trip.trip_id))).scalars().all()
        assert len(markers) == 1
        assert markers[0].touch_count == 1

    @pytest.mark.asyncio
    async def test_duplicate_ids_collapse(self, db, tools):
        trip = await _bare_trip(db)
        assert await tools.facts.mark_dirty(db, [trip.trip_id, trip.trip_id], "manual") == 1

    @pytest.mark.asyncio
    async def test_distinct_reasons_are_separate_markers(self, db, tools):
        trip = await _bare_trip(db)
        await tools.facts.mark_dirty(db, [trip.trip_id], "manual")
        await tools.facts.mark_dirty(db, [trip.trip_id], "import")
        await db.commit()
        assert await tools.facts.pending_count(db) == 2

    @pytest.mark.parametrize(
        "trip_ids, reason, field",
        [
            ([], "manual", "trip_ids"),
            ([0], "manual", "trip_ids"),
            (["1"], "manual", "trip_ids"),
            ([1], "", "reason"),
            ([1], "Has Spaces", "reason"),
        ],
    )
    @pytest.mark.asyncio
    async def test_validation(self, db, tools, trip_ids, reason, field):
        with pytest.raises(ValidationError) as exc:
            await tools.facts.mark_dirty(db, trip_ids, reason)
        assert field in exc.value.field_errors


class TestRecompute:
    """Tests for recomputation."""

    @pytest.mark.asyncio
    async def test_recompute_clears_markers_and_writes_facts(self, db, tools, make_trip):
        trip = await make_trip(
            name="Rome Week",
            destinations=["Rome"],
            start_date="2025-05-01",
            end_date="2025-05-05",
            primary_client_email="sara@example.com",
        )
        result = await tools.recompute_facts(db)

        assert result == {"processed": 1, "remaining": 0, "partial": False}
        facts = await tools.facts.get_facts(db, trip.trip_id)
        assert facts.total_nights == 4
        assert facts.traveler_emails == ["sara@example.com"]
        assert facts.version == 1

    @pytest.mark.asyncio
    async def test_version_increments_on_each_recompute(self, db, tools, make_trip):
        trip = await make_trip(name="Rome Week", destinations=["Rome"])
        await tools.recompute_facts(db)
        await tools.trips.replace_schedule(db, trip.trip_id, ScheduleReplaceRequest(
            activities=[ActivityInput(day_number=1, activity_type="hotel", title="Inn", cost=Decimal("300"))],
            transit_legs=[TransitLegInput(
                mode="train",
                depart_at=datetime(2025, 5, 1, 9, 0, tzinfo=timezone.utc),
                arrive_at=datetime(2025, 5, 1, 10, 15, tzinfo=timezone.utc),
            )],
        ))
        await tools.recompute_facts(db)

        facts = await tools.facts.get_facts(db, trip.trip_id)
        assert facts.version == 2
        assert facts.total_hotels == 1
        assert facts.total_cost == Decimal("300.00")
        assert facts.transit_minutes == 75

    @pytest.mark.asyncio
    async def test_unchanged_trip_recomputes_identically(self, db, tools, make_trip):
        trip = await make_trip(name="Rome Week", destinations=["Rome"], primary_client_email="jo@example.com")
        fields = ("total_nights", "total_hotels", "total_activities", "total_cost",
                  "transit_minutes", "traveler_count", "traveler_emails", "primary_client_email")

        await tools.recompute_facts(db)
        first = await tools.facts.get_facts(db, trip.trip_id)
        first_values, first_version = [getattr(first, f) for f in fields], first.version
        await tools.mark_dirty(db, [trip.trip_id], "manual")
        await tools.recompute_facts(db)
        second = await tools.facts.get_facts(db, trip.trip_id)

        assert [getattr(second, f) for f in fields] == first_values
        assert second.version > first_version

    @pytest.mark.asyncio
    async def test_limit_bounds_the_batch(self, db, tools):
        trips = [await _bare_trip(db, f"Trip {i}") for i in range(3)]
        await tools.mark_dirty(db, [t.trip_id for t in trips], "manual")

        first = await tools.recompute_facts(db, limit=2)
        second = await tools.recompute_facts(db, limit=2)

        assert first == {"processed": 2, "remaining": 1, "partial": False}
        assert second == {"processed": 1, "remaining": 0, "partial": False}

    @pytest.mark.asyncio
    async def test_oldest_marker_first(self, db, tools):
        first, second = await _bare_trip(db, "First"), await _bare_trip(db, "Second")
        await tools.mark_dirty(db, [second.trip_id], "manual")
        await tools.mark_dirty(db, [first.trip_id], "manual")

        await tools.recompute_facts(db, limit=1)

        assert await tools.facts.get_facts(db, second.trip_id) is not None
        assert await tools.facts.get_facts(db, first.trip_id) is None

    @pytest.mark.parametrize("limit", [0, -1, 501, True, "10"])
    @pytest.mark.asyncio
    async def test_invalid_limit(self, db, tools, limit):
        with pytest.raises(ValidationError):
            await tools.recompute_facts(db, limit=limit)

    @pytest.mark.asyncio
    async def test_time_budget_returns_partial(self, db, settings, make_trip):
        budget = settings.model_copy(update={"facts_time_budget_ms": 0})
        cache = FactCache(budget)
        for name in ("A", "B", "C"):
            await make_trip(name=name, destinations=["Rome"])

        result = await cache.recompute(db)

        assert result["partial"] is True
        assert result["processed"] == 1
        assert result["remaining"] == 2
        assert "budget" in result["cause"]
        assert result["alternatives"]

    @pytest.mark.asyncio
    async def test_missing_trip_markers_dropped(self, db, tools):
        await tools.mark_dirty(db, [424242], "manual")
        result = await tools.recompute_facts(db)
        assert result == {"processed": 1, "remaining": 0, "partial": False}
        assert await tools.facts.get_facts(db, 424242) is None


class TouchingProvider(TripDataProvider):
    """Re-marks the trip while its recompute is in flight."""

    def __init__(self, cache_ref: list):
        self.cache_ref = cache_ref

    async def load(self, db, trip_id):
        await self.cache_ref[0].mark_dirty(db, [trip_id], "manual")
        return await super().load(db, trip_id)


class TestConcurrentTouch:
    """A marker touched during recompute survives for the next pass."""

    @pytest.mark.asyncio
    async def test_touched_marker_survives(self, db, settings):
        ref: list = []
        cache = FactCache(settings, TouchingProvider(ref))
        ref.append(cache)
        trip = await _bare_trip(db)
        await cache.mark_dirty(db, [trip.trip_id], "manual")
        await db.commit()

        result = await cache.recompute(db)

        assert result["processed"] == 1
        assert result["remaining"] == 1
        assert (await cache.get_facts(db, trip.trip_id)).version == 1
