"""Tool-call endpoints used by the LLM orchestrator."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk.database import get_db
from tripdesk.dependencies import get_tools
from tripdesk.schemas.tools import (
    AssignClientRequest,
    AssignmentResponse,
    GenerateSlugRequest,
    MarkDirtyRequest,
    MarkDirtyResponse,
    ReconcileResponse,
    RecomputeFactsRequest,
    RecomputeFactsResponse,
    ResolveTripRequest,
    SlugResponse,
    UnassignClientRequest,
)
from tripdesk.services.trip_tools import TripTools

router = APIRouter()


@router.post("/resolve-trip")
async def resolve_trip(
    req: ResolveTripRequest,
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    """Resolve free text to a trip: slug, then weighted terms, then semantic components.

    A miss is not an HTTP error: the body carries ``no_match`` with suggestions.
    """
    return await tools.resolve_trip(db, req.query, req.context)


@router.post("/assign-client", response_model=AssignmentResponse)
async def assign_client(
    req: AssignClientRequest,
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    return await tools.assign_client(db, req.trip_id, req.client_email, req.role)


@router.post("/unassign-client", response_model=AssignmentResponse)
async def unassign_client(
    req: UnassignClientRequest,
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    return await tools.unassign_client(db, req.trip_id, req.client_email)


@router.post("/mark-dirty", response_model=MarkDirtyResponse)
async def mark_dirty(
    req: MarkDirtyRequest,
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    return await tools.mark_dirty(db, req.trip_ids, req.reason)


@router.post("/recompute-facts", response_model=RecomputeFactsResponse)
async def recompute_facts(
    req: RecomputeFactsRequest,
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    """Recompute facts for at most ``limit`` dirty trips."""
    return await tools.recompute_facts(db, req.limit)


@router.post("/generate-slug", response_model=SlugResponse)
async def generate_slug(req: GenerateSlugRequest, tools: TripTools = Depends(get_tools)):
    """Derive the base slug for trip attributes. Nothing is persisted."""
    return tools.generate_slug(req.trip_attributes)


@router.get("/reconcile/{trip_id}", response_model=ReconcileResponse)
async def reconcile(
    trip_id: int,
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    return await tools.reconcile(db, trip_id)


@router.post("/reconcile/{trip_id}/repair", response_model=ReconcileResponse)
async def repair(
    trip_id: int,
    db: AsyncSession = Depends(get_db),
    tools: TripTools = Depends(get_tools),
):
    """Rebuild the embedded client list from the authoritative assignment rows."""
    return await tools.repair(db, trip_id)
