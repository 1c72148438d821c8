"""Read/write access to the embedded client-assignment document on a trip.

One implementation per storage engine family; ``JsonColumnDocumentStore``
covers SQLite (JSON) and PostgreSQL (JSONB) through the ORM column.
"""

from abc import ABC, abstractmethod

from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk.database import utcnow
from tripdesk.errors import NotFoundError
from tripdesk.models.trip import Trip


class DocumentStore(ABC):
    @abstractmethod
    async def read_clients(self, db: AsyncSession, trip_id: int) -> list:
        """Raw embedded entries, unvalidated."""

    @abstractmethod
    async def write_clients(self, db: AsyncSession, trip_id: int, entries: list[dict]) -> None:
        """Replace the embedded entries. Flushes; the caller commits."""

    async def add_client(self, db: AsyncSession, trip_id: int, email: str, role: str) -> bool:
        """Add the (email, role) entry unless present. Returns True when written."""
        entries = await self.read_clients(db, trip_id)
        for entry in entries:
            if isinstance(entry, dict) and entry.get("email") == email and entry.get("role") == role:
                return False
        await self.write_clients(
            db, trip_id, [*entries, {"email": email, "role": role, "assigned_at": utcnow().isoformat()}]
        )
        return True

    async def remove_client(self, db: AsyncSession, trip_id: int, email: str) -> int:
        """Remove every entry for ``email``. Returns the number removed."""
        entries = await self.read_clients(db, trip_id)
        kept = [e for e in entries if not (isinstance(e, dict) and e.get("email") == email)]
        removed = len(entries) - len(kept)
        if removed:
            await self.write_clients(db, trip_id, kept)
        return removed


class JsonColumnDocumentStore(DocumentStore):
    async def _trip(self, db: AsyncSession, trip_id: int) -> Trip:
        trip = await db.get(Trip, trip_id)
        if trip is None:
            raise NotFoundError(
                f"Trip {trip_id} does not exist",
                alternatives=["Resolve the trip by name or slug to find its id"],
            )
        return trip

    async def read_clients(self, db: AsyncSession, trip_id: int) -> list:
        trip = await self._trip(db, trip_id)
        return list(trip.clients or [])

    async def write_clients(self, db: AsyncSession, trip_id: int, entries: list[dict]) -> None:
        trip = await self._trip(db, trip_id)
        # New list object so the JSON column registers as changed
        trip.clients = list(entries)
        trip.updated_at = utcnow()
        await db.flush()
