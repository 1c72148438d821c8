"""Raw trip data provider: schedule, accommodations, activities, transit and cost."""

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk.models.trip import Trip, TripActivity, TripClientAssignment, TripTransitLeg


@dataclass
class TripSnapshot:
    trip: Trip
    activities: list[TripActivity] = field(default_factory=list)
    transit_legs: list[TripTransitLeg] = field(default_factory=list)
    assignments: list[TripClientAssignment] = field(default_factory=list)


class TripDataProvider:
    """Loads the current raw data for a trip in a single round of queries."""

    async def load(self, db: AsyncSession, trip_id: int) -> TripSnapshot | None:
        trip = (await db.execute(select(Trip).where(Trip.trip_id == trip_id))).scalar_one_or_none()
        if trip is None:
            return None
        activities = (
            await db.execute(
                select(TripActivity)
                .where(TripActivity.trip_id == trip_id)
                .order_by(TripActivity.day_number, TripActivity.id)
            )
        ).scalars().all()
        legs = (
            await db.execute(
                select(TripTransitLeg)
                .where(TripTransitLeg.trip_id == trip_id)
                .order_by(TripTransitLeg.id)
            )
        ).scalars().all()
        assignments = (
            await db.execute(
                select(TripClientAssignment)
                .where(TripClientAssignment.trip_id == trip_id)
                .order_by(TripClientAssignment.id)
            )
        ).scalars().all()
        return TripSnapshot(trip, list(activities), list(legs), list(assignments))


trip_data_provider = TripDataProvider()
