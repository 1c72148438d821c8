"""Slug registry: deterministic, globally unique, human-readable trip identifiers."""

import logging
import re

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk.errors import ValidationError
from tripdesk.models.trip import Trip
from tripdesk.services.engine import EngineContext
from tripdesk.services.normalizer import Normalizer

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"^[a-z0-9-]+$")
_HYPHENS_RE = re.compile(r"-{2,}")

MAX_SLUG_LENGTH = 100
CLIENT_PART_CHARS = 20
DESTINATION_PART_CHARS = 15


def _get(obj, key, default=None):
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _client_email(attributes) -> str | None:
    primary = _get(attributes, "primary_client_email")
    if primary:
        return primary
    for entry in _get(attributes, "clients") or []:
        email = _get(entry, "email")
        if email:
            return email
    return None


class SlugRegistry:
    def __init__(self, context: EngineContext, normalizer: Normalizer | None = None):
        self.context = context
        self.normalizer = normalizer or Normalizer(context)

    def slug_part(self, text: str | None, max_words: int | None, max_chars: int) -> str:
        words = list(self.normalizer.normalize(text).words)
        if max_words:
            words = words[:max_words]
        part = "-".join(words)[:max_chars]
        return part.strip("-")

    def generate_slug(self, attributes) -> str:
        """``{client}-{destination}-{year}`` for a trip or a trip attribute document.

        Pure: no lookups, no collision handling.
        """
        email = _client_email(attributes)
        client = ""
        if email:
            client = self.slug_part(email.split("@", 1)[0], None, CLIENT_PART_CHARS)
        if not client:
            client = self.slug_part(_get(attributes, "name"), 2, CLIENT_PART_CHARS)

        destinations = _get(attributes, "destinations") or []
        destination = self.slug_part(destinations[0], 2, DESTINATION_PART_CHARS) if destinations else ""

        parts = [client or "trip", destination or "trip"]
        start = _get(attributes, "start_date")
        if start:
            parts.append(str(start.year))

        slug = _HYPHENS_RE.sub("-", "-".join(parts)).strip("-")
        return slug[:MAX_SLUG_LENGTH].rstrip("-")

    def validate_slug(self, slug: str | None) -> list[str]:
        errors = []
        if not slug:
            return ["slug must not be empty"]
        if len(slug) < 3:
            errors.append("slug must be at least 3 characters")
        if len(slug) > MAX_SLUG_LENGTH:
            errors.append(f"slug must be at most {MAX_SLUG_LENGTH} characters")
        if not _SLUG_RE.match(slug):
            errors.append("slug may contain only lowercase letters, digits and hyphens")
        if slug.startswith("-") or slug.endswith("-"):
            errors.append("slug must not start or end with a hyphen")
        if "--" in slug:
            errors.append("slug must not contain consecutive hyphens")
        return errors

    def fold_candidate(self, candidate: str) -> str:
        return self.normalizer.normalize(candidate).slug_form

    async def ensure_unique_slug(
        self, db: AsyncSession, base: str, exclude_trip_id: int | None = None
    ) -> str:
        """Return ``base`` or the first free ``base-N`` (N >= 2), in a single lookup."""
        stmt = select(Trip.slug).where(or_(Trip.slug == base, Trip.slug.like(f"{base}-%")))
        if exclude_trip_id is not None:
            stmt = stmt.where(Trip.trip_id != exclude_trip_id)
        taken = set((await db.execute(stmt)).scalars().all())
        if base not in taken:
            return base
        for n in range(2, self.context.limits.slug_max_suffix + 1):
            slug = f"{base}-{n}"
            if slug not in taken:
                return slug
        raise ValidationError(
            {"slug": f"more than {self.context.limits.slug_max_suffix} trips share the slug '{base}'"},
            alternatives=["Add a more specific destination or client to the trip and retry"],
        )

    async def assign_slug(self, db: AsyncSession, trip: Trip) -> str:
        """Generate, de-duplicate and persist a slug for ``trip``. Commits."""
        trip_id = trip.trip_id
        base = self.generate_slug(trip)
        retries = self.context.limits.slug_assign_retries
        for attempt in range(1, retries + 1):
            slug = await self.ensure_unique_slug(db, base, exclude_trip_id=trip_id)
            trip.slug = slug
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                if attempt == retries:
                    raise
                # Another writer took the same slug between lookup and commit
                logger.warning(f"Slug '{slug}' taken concurrently for trip {trip_id}, retrying ({attempt}/{retries})")
                await db.refresh(trip)
                continue
            return slug

    async def resolve(self, db: AsyncSession, candidate: str) -> Trip | None:
        slug = self.fold_candidate(candidate)
        if not slug:
            return None
        result = await db.execute(select(Trip).where(Trip.slug == slug))
        return result.scalar_one_or_none()

    async def backfill_slugs(self, db: AsyncSession) -> list[dict]:
        """Assign slugs to every trip that has none, oldest first."""
        result = await db.execute(select(Trip.trip_id).where(Trip.slug.is_(None)).order_by(Trip.trip_id))
        trip_ids = result.scalars().all()
        assigned = []
        for trip_id in trip_ids:
            trip = await db.get(Trip, trip_id)
            slug = await self.assign_slug(db, trip)
            assigned.append({"trip_id": trip_id, "slug": slug})
        if assigned:
            logger.info(f"Backfilled slugs for {len(assigned)} trips")
        return assigned
