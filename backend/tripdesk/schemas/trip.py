"""Trip attribute documents, validated and migrated at the boundary."""

import json
import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from tripdesk.errors import ValidationError

CURRENT_DOCUMENT_VERSION = 2

EMAIL_RE = re.compile(r"^[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}$")


class TripStatus(str, Enum):
    planning = "planning"
    confirmed = "confirmed"
    deposit_paid = "deposit_paid"
    paid_in_full = "paid_in_full"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class ClientRole(str, Enum):
    traveler = "traveler"
    primary_traveler = "primary_traveler"
    secondary_traveler = "secondary_traveler"


def normalize_email(value: str) -> str:
    email = value.strip().lower()
    if not EMAIL_RE.match(email):
        raise ValueError(f"'{value}' is not a valid email address")
    return email


class ClientAssignmentDocument(BaseModel):
    """One entry of the embedded client list on a trip."""

    email: str
    role: ClientRole = ClientRole.traveler
    assigned_at: datetime | None = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return normalize_email(v)


class FinancialSummary(BaseModel):
    total_cost: Decimal | None = Field(default=None, ge=0)
    currency: str = "USD"
    deposit_amount: Decimal | None = Field(default=None, ge=0)
    amount_paid: Decimal | None = Field(default=None, ge=0)


class TripAttributes(BaseModel):
    document_version: Literal[2] = CURRENT_DOCUMENT_VERSION
    name: str = Field(min_length=1, max_length=255)
    destinations: list[str] = Field(default_factory=list)
    start_date: date | None = None
    end_date: date | None = None
    status: TripStatus = TripStatus.planning
    primary_client_email: str | None = None
    clients: list[ClientAssignmentDocument] = Field(default_factory=list)
    financials: FinancialSummary | None = None
    notes: str | None = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("destinations")
    @classmethod
    def _destinations(cls, v: list[str]) -> list[str]:
        return [d.strip() for d in v if d and d.strip()]

    @field_validator("primary_client_email")
    @classmethod
    def _primary_email(cls, v: str | None) -> str | None:
        return normalize_email(v) if v else None

    @model_validator(mode="after")
    def _date_order(self) -> "TripAttributes":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TripPatch(BaseModel):
    """Partial attribute update.

    A new primary client is dual-written as a primary_traveler assignment;
    other client changes go through the assignment tools.
    """

    name: str | None = Field(default=None, min_length=1, max_length=255)
    destinations: list[str] | None = None
    start_date: date | None = None
    end_date: date | None = None
    status: TripStatus | None = None
    primary_client_email: str | None = None
    financials: FinancialSummary | None = None
    notes: str | None = None

    @field_validator("primary_client_email")
    @classmethod
    def _primary_email(cls, v: str | None) -> str | None:
        return normalize_email(v) if v else None


class ActivityInput(BaseModel):
    day_number: int = Field(default=1, ge=1)
    activity_type: str = "activity"
    title: str = Field(min_length=1, max_length=255)
    cost: Decimal | None = Field(default=None, ge=0)


class TransitLegInput(BaseModel):
    mode: str = "flight"
    origin: str | None = None
    destination: str | None = None
    depart_at: datetime | None = None
    arrive_at: datetime | None = None


class ScheduleReplaceRequest(BaseModel):
    activities: list[ActivityInput] = Field(default_factory=list)
    transit_legs: list[TransitLegInput] = Field(default_factory=list)


class TripFactsResponse(BaseModel):
    trip_id: int
    total_nights: int
    total_hotels: int
    total_activities: int
    total_cost: float
    transit_minutes: int
    traveler_count: int
    traveler_emails: list[str]
    primary_client_email: str | None
    last_computed: datetime
    version: int

    model_config = {"from_attributes": True}


class TripResponse(BaseModel):
    trip_id: int
    name: str
    slug: str | None
    destinations: list[str]
    start_date: date | None
    end_date: date | None
    status: str
    primary_client_email: str | None
    clients: list[dict]
    financials: dict | None
    notes: str | None
    document_version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TripDetailResponse(TripResponse):
    facts: TripFactsResponse | None = None


def _split_list(value) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return list(value or [])


def _migrate_v1(doc: dict) -> dict:
    """v1 documents: ``trip_name``, comma-separated destinations,
    JSON-encoded client string, flat ``total_cost``."""
    doc = dict(doc)
    if "name" not in doc and "trip_name" in doc:
        doc["name"] = doc.pop("trip_name")
    doc.pop("trip_name", None)

    doc["destinations"] = _split_list(doc.get("destinations"))

    clients = doc.get("clients")
    if isinstance(clients, str):
        try:
            clients = json.loads(clients) if clients.strip() else []
        except json.JSONDecodeError as e:
            raise ValidationError({"clients": f"legacy client list is not valid JSON ({e.msg})"}) from e
    entries = []
    for entry in clients or []:
        if isinstance(entry, str):
            entries.append({"email": entry})
        elif isinstance(entry, dict):
            entries.append({
                "email": entry.get("email") or entry.get("client_email"),
                "role": entry.get("role") or entry.get("client_role") or ClientRole.traveler.value,
                "assigned_at": entry.get("assigned_at"),
            })
        else:
            entries.append(entry)
    doc["clients"] = entries

    if "total_cost" in doc:
        financials = dict(doc.get("financials") or {})
        financials.setdefault("total_cost", doc.pop("total_cost"))
        if "currency" in doc:
            financials.setdefault("currency", doc.pop("currency"))
        doc["financials"] = financials

    doc["document_version"] = 2
    return doc


_MIGRATIONS = {1: _migrate_v1}


def migrate_trip_document(raw: dict) -> dict:
    """Upgrade a raw trip document to the current version.

    Documents without a version marker are treated as version 1.
    """
    if not isinstance(raw, dict):
        raise ValidationError({"document": "trip attributes must be an object"})
    doc = dict(raw)
    version = doc.get("document_version", 1)
    if not isinstance(version, int) or version < 1 or version > CURRENT_DOCUMENT_VERSION:
        raise ValidationError({"document_version": f"unsupported document version {version!r}"})
    while version < CURRENT_DOCUMENT_VERSION:
        doc = _MIGRATIONS[version](doc)
        version = doc["document_version"]
    return doc


def field_errors(exc: PydanticValidationError) -> dict[str, str]:
    errors = {}
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "document"
        errors.setdefault(loc, err["msg"])
    return errors


def parse_trip_attributes(raw: dict) -> TripAttributes:
    """Migrate then validate; raises the engine ValidationError with per-field detail."""
    doc = migrate_trip_document(raw)
    try:
        return TripAttributes.model_validate(doc)
    except PydanticValidationError as e:
        raise ValidationError(field_errors(e)) from e
