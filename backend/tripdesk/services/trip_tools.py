"""Tool-call facade over the trip engine.

Every operation returns a plain dict suitable for an LLM tool response.
``TripTools`` wires all engine components from one EngineContext.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk.config import Settings, settings as default_settings
from tripdesk.errors import NotFoundError
from tripdesk.schemas.trip import ClientRole, parse_trip_attributes
from tripdesk.services.consistency_manager import ConsistencyManager
from tripdesk.services.document_store import DocumentStore
from tripdesk.services.engine import EngineContext, build_engine_context
from tripdesk.services.fact_cache import FactCache
from tripdesk.services.normalizer import Normalizer
from tripdesk.services.search_resolver import ResolveContext, SearchResolver
from tripdesk.services.semantic_index import SemanticIndex
from tripdesk.services.slug_registry import SlugRegistry
from tripdesk.services.trip_data import TripDataProvider
from tripdesk.services.trip_service import TripService
from tripdesk.services.weighted_matcher import WeightedMatcher

logger = logging.getLogger(__name__)


class TripTools:
    def __init__(
        self,
        context: EngineContext | None = None,
        config: Settings | None = None,
        document_store: DocumentStore | None = None,
        provider: TripDataProvider | None = None,
    ):
        self.config = config or default_settings
        self.context = context or build_engine_context(self.config)
        self.normalizer = Normalizer(self.context)
        self.matcher = WeightedMatcher(self.context, self.normalizer)
        self.slugs = SlugRegistry(self.context, self.normalizer)
        self.semantic = SemanticIndex(self.context, self.normalizer)
        self.facts = FactCache(self.config, provider)
        self.consistency = ConsistencyManager(self.facts, self.semantic, document_store)
        self.resolver = SearchResolver(
            self.context, self.normalizer, self.slugs, self.matcher, self.semantic, self.facts, self.config
        )
        self.trips = TripService(self.slugs, self.semantic, self.facts, self.consistency)

    async def resolve_trip(self, db: AsyncSession, query: str, context: dict | None = None) -> dict:
        ctx = ResolveContext.from_dict(context)
        try:
            resolution = await self.resolver.resolve(db, query, ctx)
        except NotFoundError as e:
            logger.info(f"resolveTrip '{query}': no match ({len(e.suggestions)} suggestions)")
            return {"no_match": True, **e.to_dict()}
        logger.info(
            f"resolveTrip '{query}': trip {resolution.trip_id} via {resolution.method} "
            f"({resolution.confidence:.2f})"
        )
        return resolution.to_dict()

    async def assign_client(
        self, db: AsyncSession, trip_id: int, client_email: str, role: str = ClientRole.traveler.value
    ) -> dict:
        outcome = await self.consistency.assign_client(db, trip_id, client_email, role)
        return outcome.to_dict()

    async def unassign_client(self, db: AsyncSession, trip_id: int, client_email: str) -> dict:
        outcome = await self.consistency.unassign_client(db, trip_id, client_email)
        return outcome.to_dict()

    async def mark_dirty(self, db: AsyncSession, trip_ids: list[int], reason: str) -> dict:
        marked = await self.facts.mark_dirty(db, trip_ids, reason)
        await db.commit()
        return {"marked": marked}

    async def recompute_facts(self, db: AsyncSession, limit: int | None = None) -> dict:
        return await self.facts.recompute(db, limit)

    def generate_slug(self, trip_attributes: dict) -> dict:
        """Pure: validates the attributes and derives the base slug, no persistence."""
        attrs = parse_trip_attributes(trip_attributes)
        return {"slug": self.slugs.generate_slug(attrs)}

    async def reconcile(self, db: AsyncSession, trip_id: int) -> dict:
        return await self.consistency.reconcile(db, trip_id)

    async def repair(self, db: AsyncSession, trip_id: int) -> dict:
        return await self.consistency.repair(db, trip_id)
