"""Consistency manager: dual writes of trip-client assignments.

The normalized ``trip_client_assignments`` rows are authoritative; the
embedded ``trips.clients`` list is a read-optimized copy. Writes go to
both in two separate commits, authoritative first. If the embedded write
fails the operation still succeeds, with a ConsistencyError warning, and
``repair`` rebuilds the copy later.
"""

import logging
from dataclasses import dataclass

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk.database import upsert, utcnow
from tripdesk.errors import ConsistencyError, NotFoundError, ValidationError
from tripdesk.models.trip import Trip, TripClientAssignment
from tripdesk.schemas.trip import ClientAssignmentDocument, ClientRole, field_errors, normalize_email
from tripdesk.services.document_store import DocumentStore, JsonColumnDocumentStore
from tripdesk.services.fact_cache import FactCache
from tripdesk.services.semantic_index import SemanticIndex

logger = logging.getLogger(__name__)


@dataclass
class AssignmentOutcome:
    trip_id: int
    client_email: str
    consistent: bool
    role: str | None = None
    changed: int = 0
    warning: ConsistencyError | None = None

    def to_dict(self) -> dict:
        out = {
            "trip_id": self.trip_id,
            "client_email": self.client_email,
            "consistent": self.consistent,
            "changed": self.changed,
        }
        if self.role:
            out["role"] = self.role
        if self.warning:
            out["warning"] = self.warning.message
            out["alternatives"] = self.warning.alternatives
            if self.warning.diff:
                out["diff"] = self.warning.diff
        return out


class ConsistencyManager:
    def __init__(
        self,
        fact_cache: FactCache,
        semantic_index: SemanticIndex,
        document_store: DocumentStore | None = None,
    ):
        self.fact_cache = fact_cache
        self.semantic_index = semantic_index
        self.document_store = document_store or JsonColumnDocumentStore()

    def _validate(self, trip_id, email, role=None) -> tuple[str, str | None]:
        errors = {}
        if isinstance(trip_id, bool) or not isinstance(trip_id, int) or trip_id < 1:
            errors["trip_id"] = "must be a positive integer"
        try:
            email = normalize_email(email if isinstance(email, str) else "")
        except ValueError as e:
            errors["client_email"] = str(e)
        if role is not None:
            try:
                role = ClientRole(role).value
            except ValueError:
                errors["role"] = f"must be one of {', '.join(r.value for r in ClientRole)}"
        if errors:
            raise ValidationError(errors)
        return email, role

    async def _require_trip(self, db: AsyncSession, trip_id: int) -> Trip:
        trip = (await db.execute(select(Trip).where(Trip.trip_id == trip_id))).scalar_one_or_none()
        if trip is None:
            raise NotFoundError(
                f"Trip {trip_id} does not exist",
                alternatives=["Resolve the trip by name or slug to find its id"],
            )
        return trip

    async def assign_client(
        self, db: AsyncSession, trip_id: int, client_email: str, role: str = ClientRole.traveler.value
    ) -> AssignmentOutcome:
        email, role = self._validate(trip_id, client_email, role)
        trip = await self._require_trip(db, trip_id)

        # 1. Authoritative row; dirty marker and component rebuild ride the same commit
        result = await db.execute(upsert(
            db,
            TripClientAssignment.__table__,
            {"trip_id": trip_id, "client_email": email, "client_role": role, "created_at": utcnow()},
            ["trip_id", "client_email", "client_role"],
        ))
        inserted = result.rowcount or 0
        await self.fact_cache.mark_dirty(db, [trip_id], "traveler_insert")
        await self.semantic_index.rebuild(db, trip)
        await db.commit()

        # 2. Embedded copy; attempted even when already present
        try:
            await self.document_store.add_client(db, trip_id, email, role)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            return self._document_failure(trip_id, email, role, inserted, "assign", e)

        # 3. Verify
        return await self._verified(db, trip_id, email, role, inserted)

    async def unassign_client(self, db: AsyncSession, trip_id: int, client_email: str) -> AssignmentOutcome:
        """Remove every role of ``client_email`` from the trip."""
        email, _ = self._validate(trip_id, client_email)
        trip = await self._require_trip(db, trip_id)

        result = await db.execute(
            delete(TripClientAssignment).where(
                TripClientAssignment.trip_id == trip_id,
                TripClientAssignment.client_email == email,
            )
        )
        removed = result.rowcount or 0
        await self.fact_cache.mark_dirty(db, [trip_id], "traveler_delete")
        await self.semantic_index.rebuild(db, trip)
        await db.commit()

        try:
            await self.document_store.remove_client(db, trip_id, email)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            return self._document_failure(trip_id, email, None, removed, "unassign", e)

        return await self._verified(db, trip_id, email, None, removed)

    def _document_failure(self, trip_id, email, role, changed, action, exc) -> AssignmentOutcome:
        logger.warning(
            f"{action} {email} on trip {trip_id}: authoritative row written, "
            f"embedded client list update failed ({exc.__class__.__name__}: {exc})"
        )
        warning = ConsistencyError(
            f"Client {email} was {action}ed on trip {trip_id}, but the trip's embedded client list "
            f"could not be updated ({exc.__class__.__name__})"
        )
        return AssignmentOutcome(trip_id, email, consistent=False, role=role, changed=changed, warning=warning)

    async def _verified(self, db, trip_id, email, role, changed) -> AssignmentOutcome:
        report = await self.reconcile(db, trip_id)
        if report["consistent"]:
            return AssignmentOutcome(trip_id, email, consistent=True, role=role, changed=changed)
        logger.warning(f"Trip {trip_id} assignments diverge after write: {report}")
        warning = ConsistencyError(
            f"Trip {trip_id} client records diverge after updating {email}",
            diff={k: report[k] for k in ("missing_in_document", "extra_in_document", "malformed_entries")},
        )
        return AssignmentOutcome(trip_id, email, consistent=False, role=role, changed=changed, warning=warning)

    async def _authoritative(self, db: AsyncSession, trip_id: int) -> list[TripClientAssignment]:
        result = await db.execute(
            select(TripClientAssignment)
            .where(TripClientAssignment.trip_id == trip_id)
            .order_by(TripClientAssignment.id)
        )
        return list(result.scalars().all())

    async def reconcile(self, db: AsyncSession, trip_id: int) -> dict:
        """Diff the two representations. Read-only."""
        await self._require_trip(db, trip_id)
        rows = await self._authoritative(db, trip_id)
        normalized = {(r.client_email, r.client_role) for r in rows}

        document = set()
        malformed = []
        entries = await self.document_store.read_clients(db, trip_id)
        for index, entry in enumerate(entries):
            try:
                doc = ClientAssignmentDocument.model_validate(entry)
            except PydanticValidationError as e:
                malformed.append({"index": index, "entry": entry, "errors": field_errors(e)})
                continue
            document.add((doc.email, doc.role.value))

        def as_list(pairs):
            return [{"client_email": e, "role": r} for e, r in sorted(pairs)]

        missing = normalized - document
        extra = document - normalized
        return {
            "trip_id": trip_id,
            "consistent": not missing and not extra and not malformed,
            "missing_in_document": as_list(missing),
            "extra_in_document": as_list(extra),
            "malformed_entries": malformed,
            "normalized_count": len(normalized),
            "document_count": len(entries),
        }

    async def repair(self, db: AsyncSession, trip_id: int) -> dict:
        """Rewrite the embedded list from the authoritative rows."""
        before = await self.reconcile(db, trip_id)
        if before["consistent"]:
            return {**before, "repaired": False}

        assigned_at = {}
        for entry in await self.document_store.read_clients(db, trip_id):
            if isinstance(entry, dict) and entry.get("assigned_at"):
                assigned_at[(entry.get("email"), entry.get("role"))] = entry["assigned_at"]

        entries = []
        for row in await self._authoritative(db, trip_id):
            key = (row.client_email, row.client_role)
            stamp = assigned_at.get(key) or (row.created_at.isoformat() if row.created_at else None)
            entries.append({"email": row.client_email, "role": row.client_role, "assigned_at": stamp})
        await self.document_store.write_clients(db, trip_id, entries)
        await db.commit()

        after = await self.reconcile(db, trip_id)
        logger.info(
            f"Repaired embedded client list for trip {trip_id}: "
            f"{len(before['missing_in_document'])} missing, {len(before['extra_in_document'])} extra, "
            f"{len(before['malformed_entries'])} malformed"
        )
        return {**after, "repaired": True, "before": before}

    async def audit(self, db: AsyncSession, limit: int) -> list[dict]:
        """Reconcile up to ``limit`` trips, most recently updated first; returns the inconsistent ones."""
        trip_ids = (
            await db.execute(select(Trip.trip_id).order_by(Trip.updated_at.desc(), Trip.trip_id).limit(limit))
        ).scalars().all()
        diverged = []
        for trip_id in trip_ids:
            report = await self.reconcile(db, trip_id)
            if not report["consistent"]:
                diverged.append(report)
        if diverged:
            logger.warning(f"Reconcile audit found {len(diverged)} of {len(trip_ids)} trips inconsistent")
        return diverged
