from pydantic import BaseModel, Field


class ResolveTripRequest(BaseModel):
    query: str
    context: dict | None = None


class AssignClientRequest(BaseModel):
    trip_id: int
    client_email: str
    role: str = "traveler"


class UnassignClientRequest(BaseModel):
    trip_id: int
    client_email: str


class AssignmentResponse(BaseModel):
    trip_id: int
    client_email: str
    consistent: bool
    changed: int
    role: str | None = None
    warning: str | None = None
    alternatives: list[str] | None = None
    diff: dict | None = None


class MarkDirtyRequest(BaseModel):
    trip_ids: list[int]
    reason: str


class MarkDirtyResponse(BaseModel):
    marked: int


class RecomputeFactsRequest(BaseModel):
    limit: int | None = None


class RecomputeFactsResponse(BaseModel):
    processed: int
    remaining: int
    partial: bool
    cause: str | None = None
    alternatives: list[str] | None = None


class GenerateSlugRequest(BaseModel):
    trip_attributes: dict = Field(default_factory=dict)


class SlugResponse(BaseModel):
    slug: str


class AssignmentPair(BaseModel):
    client_email: str
    role: str


class ReconcileResponse(BaseModel):
    trip_id: int
    consistent: bool
    missing_in_document: list[AssignmentPair]
    extra_in_document: list[AssignmentPair]
    malformed_entries: list[dict]
    normalized_count: int
    document_count: int
    repaired: bool | None = None
    before: dict | None = None


class BackfillSlugsResponse(BaseModel):
    assigned: list[dict]
    count: int
