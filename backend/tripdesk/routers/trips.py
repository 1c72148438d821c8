from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk.database import get_db
from tripdesk.dependencies import get_tools
from tripdesk.schemas.tools import BackfillSlugsResponse
from tripdesk.schemas.trip import (
    ScheduleReplaceRequest,
    TripDetailResponse,
    TripFactsResponse,
    TripPatch,
    TripResponse,
)
from tripdesk.services.trip_tools import TripTools

router = APIRouter()


@router.post("", status_code=201)
async def create_trip(
    raw: dict = Body(...),
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    """Create a trip from an attribute document.

    Legacy (version 1) documents are migrated before validation. Client
    assignments that could not be mirrored into the document come back as
    warnings; the trip itself is still created.
    """
    trip, warnings = await tools.trips.create_trip(db, raw)
    return {
        "trip": TripResponse.model_validate(trip).model_dump(mode="json"),
        "warnings": [w.to_dict() for w in warnings],
    }


@router.get("", response_model=dict)
async def list_trips(
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    trips, total = await tools.trips.list_trips(db, status=status, limit=limit, offset=(page - 1) * limit)
    return {
        "trips": [TripResponse.model_validate(t).model_dump(mode="json") for t in trips],
        "total": total,
        "page": page,
    }


@router.get("/{trip_id}", response_model=TripDetailResponse)
async def get_trip(
    trip_id: int,
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    """Get a trip with its cached facts (null until the first recompute)."""
    trip = await tools.trips.get_trip(db, trip_id)
    facts = await tools.facts.get_facts(db, trip_id)
    detail = TripDetailResponse.model_validate(trip)
    if facts is not None:
        detail.facts = TripFactsResponse.model_validate(facts)
    return detail


@router.patch("/{trip_id}", response_model=TripResponse)
async def update_trip(
    trip_id: int,
    patch: TripPatch,
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    trip = await tools.trips.update_trip(db, trip_id, patch)
    return TripResponse.model_validate(trip)


@router.put("/{trip_id}/schedule", response_model=TripResponse)
async def replace_schedule(
    trip_id: int,
    req: ScheduleReplaceRequest,
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    """Replace the trip's activities and transit legs wholesale."""
    trip = await tools.trips.replace_schedule(db, trip_id, req)
    return TripResponse.model_validate(trip)


@router.post("/backfill-slugs", response_model=BackfillSlugsResponse)
async def backfill_slugs(
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    """Assign slugs to every trip that does not have one yet."""
    assigned = await tools.trips.backfill_slugs(db)
    return {"assigned": assigned, "count": len(assigned)}
