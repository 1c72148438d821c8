"""Search resolver: SLUG_LOOKUP -> WEIGHTED_MATCH -> SEMANTIC_MATCH -> NO_MATCH.

A stage hands over to the next only when it finds nothing or nothing at
or above its threshold; the first confident stage ends resolution.
Failures inside a stage are recovered by simplifying or escalating.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk.config import Settings, settings as default_settings
from tripdesk.errors import ComplexityError, NotFoundError, ValidationError
from tripdesk.models.search import SearchQuery
from tripdesk.models.trip import Trip
from tripdesk.schemas.trip import TripFactsResponse
from tripdesk.services.engine import EngineContext
from tripdesk.services.fact_cache import FactCache
from tripdesk.services.normalizer import Normalizer
from tripdesk.services.semantic_index import SemanticIndex
from tripdesk.services.slug_registry import SlugRegistry
from tripdesk.services.weighted_matcher import Candidate, WeightedMatcher

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    SLUG_LOOKUP = "slug_lookup"
    WEIGHTED_MATCH = "weighted_match"
    SEMANTIC_MATCH = "semantic_match"
    NO_MATCH = "no_match"


METHODS = {
    Stage.SLUG_LOOKUP: "slug",
    Stage.WEIGHTED_MATCH: "weighted",
    Stage.SEMANTIC_MATCH: "semantic",
}


@dataclass
class ResolveContext:
    today: date = field(default_factory=date.today)
    max_suggestions: int | None = None
    include_facts: bool = True

    @classmethod
    def from_dict(cls, raw: dict | None) -> "ResolveContext":
        raw = raw or {}
        if not isinstance(raw, dict):
            raise ValidationError({"context": "must be an object"})
        errors = {}
        ctx = cls()
        if raw.get("today") is not None:
            try:
                ctx.today = raw["today"] if isinstance(raw["today"], date) else date.fromisoformat(str(raw["today"]))
            except ValueError:
                errors["context.today"] = "must be an ISO date (YYYY-MM-DD)"
        if raw.get("max_suggestions") is not None:
            value = raw["max_suggestions"]
            if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 10:
                errors["context.max_suggestions"] = "must be an integer between 1 and 10"
            else:
                ctx.max_suggestions = value
        if "include_facts" in raw:
            if not isinstance(raw["include_facts"], bool):
                errors["context.include_facts"] = "must be true or false"
            else:
                ctx.include_facts = raw["include_facts"]
        if errors:
            raise ValidationError(errors)
        return ctx


@dataclass
class Resolution:
    trip_id: int
    name: str
    slug: str | None
    confidence: float
    method: str
    explanation: list[str]
    alternatives: list[dict] = field(default_factory=list)
    facts: dict | None = None
    stage: Stage = Stage.NO_MATCH

    def to_dict(self) -> dict:
        return {
            "trip_id": self.trip_id,
            "name": self.name,
            "slug": self.slug,
            "confidence": round(self.confidence, 3),
            "method": self.method,
            "explanation": self.explanation,
            "alternatives": self.alternatives,
            "facts": self.facts,
        }


class SearchResolver:
    def __init__(
        self,
        context: EngineContext,
        normalizer: Normalizer,
        slug_registry: SlugRegistry,
        matcher: WeightedMatcher,
        semantic_index: SemanticIndex,
        fact_cache: FactCache,
        config: Settings | None = None,
    ):
        self.context = context
        self.normalizer = normalizer
        self.slug_registry = slug_registry
        self.matcher = matcher
        self.semantic_index = semantic_index
        self.fact_cache = fact_cache
        self.config = config or default_settings

    def _validate(self, query) -> str:
        if not isinstance(query, str) or not query.strip():
            raise ValidationError({"query": "must be a non-empty string"})
        limit = self.context.limits.max_query_chars
        if len(query) > limit:
            raise ValidationError(
                {"query": f"is {len(query)} characters; the limit is {limit}"},
                alternatives=["Shorten the query to the client name, destination and year"],
            )
        return query.strip()

    async def _candidate_trips(self, db: AsyncSession) -> tuple[list[Trip], int]:
        """The most recently updated trips up to the candidate cap, and the total trip count."""
        total = (await db.execute(select(func.count(Trip.trip_id)))).scalar_one()
        result = await db.execute(
            select(Trip)
            .order_by(Trip.updated_at.desc(), Trip.trip_id)
            .limit(self.context.limits.max_candidate_trips)
        )
        return list(result.scalars().all()), total

    async def resolve(self, db: AsyncSession, query: str, ctx: ResolveContext | None = None) -> Resolution:
        """Resolve free text to one trip or raise NotFoundError with suggestions."""
        query = self._validate(query)
        ctx = ctx or ResolveContext()
        started = time.perf_counter()
        try:
            resolution = await self._run(db, query, ctx)
        except NotFoundError:
            await self._log(db, query, Stage.NO_MATCH, None, None, started)
            raise
        await self._log(db, query, resolution.stage, resolution.trip_id, resolution.confidence, started)
        if ctx.include_facts:
            resolution.facts = await self._facts(db, resolution.trip_id)
        return resolution

    async def _run(self, db: AsyncSession, query: str, ctx: ResolveContext) -> Resolution:
        thresholds = self.context.thresholds
        normalized = self.normalizer.normalize(query)
        explanation: list[str] = []
        if normalized.partial:
            explanation.append("Normalization exceeded its time budget; matching used a partially normalized query")
        if not normalized.tokens and any(ch.isalnum() for ch in query):
            # Letters or digits outside the ASCII fold ("東京") are a valid query that cannot match
            raise NotFoundError(
                f"No trip matched '{query}': none of its characters map to searchable words",
                alternatives=[
                    "Spell the client name or destination in Latin letters, e.g. 'Tokyo'",
                    "Search by the client's email address or the trip slug",
                ],
            )
        if not normalized.tokens:
            raise ValidationError(
                {"query": "contains no searchable words"},
                alternatives=["Search by client name, destination, year or trip slug"],
            )

        # SLUG_LOOKUP
        trip = await self.slug_registry.resolve(db, query)
        if trip is not None:
            explanation.append(f"Exact slug match '{trip.slug}'")
            return _resolution(
                Stage.SLUG_LOOKUP, trip.trip_id, trip.name, trip.slug, thresholds.slug, explanation
            )
        explanation.append(f"No trip has the slug '{normalized.slug_form or query}'")

        trips, total = await self._candidate_trips(db)
        if not trips:
            raise NotFoundError(
                f"No trips exist to match '{query}'",
                alternatives=["Create the trip first, then resolve it"],
            )
        if total > len(trips):
            explanation.append(
                f"Matched against the {len(trips)} most recently updated of {total} trips; "
                f"older trips are reachable by slug"
            )
        suggestions: list[Candidate] = []

        # WEIGHTED_MATCH
        try:
            weighted = self.matcher.match(normalized, trips)
        except ComplexityError as e:
            explanation.append(f"{e.message}; retried with the {e.limit} highest-weighted terms")
            weighted = self.matcher.match(normalized, trips, simplify=True)
        if weighted.confident:
            best = weighted.best
            terms = ", ".join(f"{t.term} ({t.category})" for t in weighted.terms)
            explanation.append(
                f"Weighted match {best.confidence:.2f} >= {weighted.threshold:.2f} on {terms}; "
                f"matched {', '.join(best.matched_terms)}"
            )
            return _resolution(
                Stage.WEIGHTED_MATCH, best.trip_id, best.name, best.slug, best.confidence,
                explanation, weighted.candidates[1:],
            )
        if weighted.candidates:
            suggestions = weighted.candidates
            explanation.append(
                f"Best weighted match {weighted.best.confidence:.2f} is below {weighted.threshold:.2f}"
            )
        else:
            explanation.append("No trip shares a search term with the query")

        # SEMANTIC_MATCH
        try:
            semantic = await self.semantic_index.search(db, query, trips, ctx.today)
        except ComplexityError as e:
            explanation.append(f"{e.message}; retried with the {e.limit} highest-weighted components")
            semantic = await self.semantic_index.search(db, query, trips, ctx.today, simplify=True)
        if semantic.confident:
            best = semantic.best
            explanation.append(
                f"Semantic match {best.confidence:.2f} >= {semantic.threshold:.2f} on "
                f"{', '.join(best.matched_types)} components"
            )
            return _resolution(
                Stage.SEMANTIC_MATCH, best.trip_id, best.name, best.slug, best.confidence,
                explanation, semantic.candidates[1:],
            )
        if semantic.candidates:
            suggestions = semantic.candidates
            explanation.append(
                f"Best semantic match {semantic.best.confidence:.2f} is below {semantic.threshold:.2f}"
            )

        # NO_MATCH
        limit = ctx.max_suggestions or self.context.limits.max_suggestions
        raise NotFoundError(
            f"No trip matched '{query}' with enough confidence ({'; '.join(explanation)})",
            suggestions=[c.to_suggestion() for c in suggestions[:limit]],
            alternatives=self._hints(suggestions),
        )

    def _hints(self, suggestions: list[Candidate]) -> list[str]:
        hints = []
        slugged = next((c for c in suggestions if c.slug), None)
        if slugged:
            hints.append(f"If you meant '{slugged.name}', resolve it by its slug '{slugged.slug}'")
        hints.append("Include the client's email address or full name")
        hints.append("Add the destination and travel year, e.g. 'Hawaii 2025'")
        return hints

    async def _facts(self, db: AsyncSession, trip_id: int) -> dict | None:
        facts = await self.fact_cache.get_facts(db, trip_id)
        if facts is None:
            return None
        return TripFactsResponse.model_validate(facts).model_dump(mode="json")

    async def _log(self, db, query, stage, trip_id, confidence, started) -> None:
        if not self.config.search_logging_enabled:
            return
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        db.add(SearchQuery(
            query=query,
            normalized_query=self.normalizer.normalize(query).text,
            method=METHODS.get(stage, "none"),
            trip_id=trip_id,
            confidence=confidence,
            response_time_ms=elapsed_ms,
        ))
        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.warning(f"Failed to log search '{query}': {e}")


def _resolution(stage, trip_id, name, slug, confidence, explanation, others=()) -> Resolution:
    return Resolution(
        trip_id=trip_id,
        name=name,
        slug=slug,
        confidence=confidence,
        method=METHODS[stage],
        explanation=explanation,
        alternatives=[c.to_suggestion() for c in others],
        stage=stage,
    )
