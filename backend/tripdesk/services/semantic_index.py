"""Semantic component index.

Each trip is decomposed into typed, weighted components (client,
destination, date, activity, cost, descriptor, status) with synonym
expansion. Free-text queries are decomposed the same way and scored by
weighted component overlap, giving a confidence in [0, 1].
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tripdesk.errors import ComplexityError
from tripdesk.models.search import TripComponent
from tripdesk.models.trip import Trip, TripActivity, TripClientAssignment
from tripdesk.services.engine import MONTH_NAMES, EngineContext
from tripdesk.services.normalizer import Normalizer
from tripdesk.services.weighted_matcher import (
    EMAIL_PARTS_RE,
    Candidate,
    TripVocabulary,
    derive_client_names,
    timestamp,
    trip_emails,
)

logger = logging.getLogger(__name__)

COMPONENT_TYPES = ("client", "destination", "date", "activity", "cost", "descriptor", "status")

_RELATIVE_MONTHS = {"next month": 1, "this month": 0, "last month": -1}
_RELATIVE_YEARS = {"next year": 1, "this year": 0, "last year": -1}
_MAX_PHRASE_WORDS = 3


@dataclass(frozen=True)
class Component:
    component_type: str
    value: str
    weight: float
    synonyms: tuple[str, ...] = ()
    source: str | None = None


@dataclass
class SemanticResult:
    components: list[Component]
    candidates: list[Candidate]
    threshold: float
    simplified: bool = False

    @property
    def best(self) -> Candidate | None:
        return self.candidates[0] if self.candidates else None

    @property
    def confident(self) -> bool:
        return bool(self.candidates) and self.candidates[0].confidence >= self.threshold


@dataclass
class _Lexicon:
    """Word/phrase lookups built from the synonym tables."""
    destination: dict[str, tuple[str, ...]] = field(default_factory=dict)
    status: dict[str, tuple[str, ...]] = field(default_factory=dict)
    cost: dict[str, tuple[str, ...]] = field(default_factory=dict)
    descriptor: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def phrases(self) -> set[str]:
        out = set()
        for table in (self.destination, self.status, self.cost, self.descriptor):
            out.update(k for k in table if " " in k)
        return out


def _month_shift(today: date, months: int) -> tuple[int, int]:
    index = today.year * 12 + (today.month - 1) + months
    return index // 12, index % 12 + 1


class SemanticIndex:
    def __init__(self, context: EngineContext, normalizer: Normalizer | None = None):
        self.context = context
        self.normalizer = normalizer or Normalizer(context)
        self.lexicon = self._build_lexicon()
        self._descriptor_parents = context.vocabulary.reverse_synonyms(context.vocabulary.descriptor_synonyms)

    def _build_lexicon(self) -> _Lexicon:
        vocab = self.context.vocabulary
        lexicon = _Lexicon()
        for name, table in (
            ("destination", vocab.destination_synonyms),
            ("status", vocab.status_synonyms),
            ("cost", vocab.cost_synonyms),
            ("descriptor", vocab.descriptor_synonyms),
        ):
            target = getattr(lexicon, name)
            reverse = vocab.reverse_synonyms(table)
            for term in set(table) | set(reverse):
                related = (*table.get(term, ()), *reverse.get(term, ()))
                target[term.replace("_", " ")] = tuple(dict.fromkeys(
                    r.replace("_", " ") for r in related if r != term
                ))
        return lexicon

    def _synonyms(self, table: dict[str, tuple[str, ...]], value: str) -> tuple[str, ...]:
        return table.get(value, ())

    # Trip side

    def extract_components(
        self,
        trip: Trip,
        activities: list[TripActivity] | None = None,
        client_emails: list[str] | None = None,
    ) -> list[Component]:
        """Typed components for one trip.

        ``client_emails`` overrides the embedded client list (rebuilds pass
        the authoritative assignment rows).
        """
        weights = self.context.component_weights
        normalize = self.normalizer.normalize
        lex = self.lexicon
        out: dict[tuple[str, str], Component] = {}

        def add(ctype: str, value: str, weight: float, synonyms=(), source=None) -> None:
            if not value:
                return
            key = (ctype, value)
            existing = out.get(key)
            if existing is None or existing.weight < weight:
                out[key] = Component(ctype, value, weight, tuple(synonyms), source)

        dest_words: set[str] = set(self.context.vocabulary.seed_destinations)
        for dest in trip.destinations or []:
            norm = normalize(dest)
            dest_words.update(norm.words)
            phrase = " ".join(norm.words)
            add("destination", phrase, weights.destination, self._synonyms(lex.destination, phrase), "destinations")
            if len(norm.words) > 1 and phrase not in lex.destination:
                for word in norm.words:
                    if word not in self.context.vocabulary.stop_words:
                        add("destination", word, weights.destination,
                            self._synonyms(lex.destination, word), "destinations")

        emails = trip_emails(trip) if client_emails is None else client_emails
        if trip.primary_client_email and trip.primary_client_email not in emails:
            emails = [trip.primary_client_email, *emails]
        for email in emails:
            local_names = tuple(p for p in EMAIL_PARTS_RE.split(email.split("@", 1)[0]) if p)
            add("client", email, weights.client, local_names, "email")
            for name in local_names:
                if name.isalpha() and len(name) > 1 and name not in dest_words:
                    add("client", name, weights.client, (), "email")
        for name in derive_client_names(trip, self.normalizer, dest_words):
            add("client", name, weights.client, (), "name")

        seen_months = set()
        for d in (trip.start_date, trip.end_date):
            if not d:
                continue
            add("date", str(d.year), weights.year, (), "dates")
            month = MONTH_NAMES[d.month - 1]
            if (d.year, d.month) not in seen_months:
                seen_months.add((d.year, d.month))
                add("date", month, weights.month,
                    (month[:3], str(d.month), f"{d.month:02d}", f"{d.year}-{d.month:02d}"), "dates")

        activity_cost = Decimal("0")
        for activity in activities or []:
            add("activity", " ".join(normalize(activity.activity_type).words), weights.activity, (), "activity_type")
            add("activity", " ".join(normalize(activity.title).words), weights.activity, (), "activity_title")
            if activity.cost:
                activity_cost += Decimal(activity.cost)

        total = None
        if trip.financials and trip.financials.get("total_cost") is not None:
            total = Decimal(str(trip.financials["total_cost"]))
        elif activity_cost > 0:
            total = activity_cost
        if total is not None:
            band = self.context.vocabulary.cost_band(float(total))
            add("cost", band, weights.cost, self._synonyms(lex.cost, band), "financials")

        for text, weight, source in (
            (trip.name, weights.descriptor_name, "name"),
            (trip.notes, weights.descriptor_notes, "notes"),
        ):
            for word in normalize(text).words:
                if word in self.context.vocabulary.descriptor_synonyms:
                    add("descriptor", word, weight, self._synonyms(lex.descriptor, word), source)
                    continue
                for parent in self._descriptor_parents.get(word, ()):
                    add("descriptor", parent, weight, self._synonyms(lex.descriptor, parent), source)

        if trip.status:
            status = trip.status.replace("_", " ")
            add("status", status, weights.status, self._synonyms(lex.status, status), "status")

        return list(out.values())

    async def rebuild(self, db: AsyncSession, trip: Trip) -> int:
        """Replace the trip's component rows. Flushes; the caller commits."""
        activities = (
            await db.execute(select(TripActivity).where(TripActivity.trip_id == trip.trip_id))
        ).scalars().all()
        emails = (
            await db.execute(
                select(TripClientAssignment.client_email)
                .where(TripClientAssignment.trip_id == trip.trip_id)
                .order_by(TripClientAssignment.id)
            )
        ).scalars().all()
        components = self.extract_components(trip, list(activities), list(dict.fromkeys(emails)))
        await db.execute(delete(TripComponent).where(TripComponent.trip_id == trip.trip_id))
        for c in components:
            db.add(TripComponent(
                trip_id=trip.trip_id,
                component_type=c.component_type,
                component_value=c.value,
                search_weight=c.weight,
                synonyms=list(c.synonyms),
                source=c.source,
            ))
        await db.flush()
        logger.debug(f"Rebuilt {len(components)} components for trip {trip.trip_id}")
        return len(components)

    # Query side

    def extract_query_components(self, query: str, vocab: TripVocabulary, today: date) -> list[Component]:
        weights = self.context.component_weights
        vocabulary = self.context.vocabulary
        patterns = self.context.patterns
        lex = self.lexicon
        normalized = self.normalizer.normalize(query)
        components: list[Component] = []
        seen: set[tuple[str, str]] = set()

        def add(ctype: str, value: str, weight: float, synonyms=()) -> None:
            if (ctype, value) not in seen:
                seen.add((ctype, value))
                components.append(Component(ctype, value, weight, tuple(synonyms), "query"))

        for email in normalized.emails:
            add("client", email, weights.client)

        words = [self.normalizer.correct(w) or w for w in normalized.words]
        phrases = lex.phrases
        i = 0
        while i < len(words):
            pair = " ".join(words[i:i + 2])
            if pair in _RELATIVE_MONTHS:
                year, month = _month_shift(today, _RELATIVE_MONTHS[pair])
                add("date", MONTH_NAMES[month - 1], weights.month)
                add("date", str(year), weights.year)
                i += 2
                continue
            if pair in _RELATIVE_YEARS:
                add("date", str(today.year + _RELATIVE_YEARS[pair]), weights.year)
                i += 2
                continue

            matched = False
            for size in range(_MAX_PHRASE_WORDS, 1, -1):
                phrase = " ".join(words[i:i + size])
                if len(words) - i >= size and phrase in phrases:
                    self._classify_phrase(phrase, add)
                    i += size
                    matched = True
                    break
            if matched:
                continue

            word = words[i]
            i += 1
            if word in vocabulary.stop_words:
                continue
            if patterns.year.match(word):
                add("date", word, weights.year)
            elif word in vocabulary.months:
                add("date", MONTH_NAMES[vocabulary.months[word] - 1], weights.month)
            elif vocab.is_client(word):
                add("client", word, weights.client)
            elif word in lex.status:
                add("status", word, weights.status, lex.status[word])
            elif word in lex.cost:
                add("cost", word, weights.cost, lex.cost[word])
            elif vocab.is_destination(word) or word in lex.destination:
                add("destination", word, weights.destination, lex.destination.get(word, ()))
            elif word in lex.descriptor:
                add("descriptor", word, weights.descriptor_name, lex.descriptor[word])
            else:
                add("activity", word, weights.activity)
        return components

    def _classify_phrase(self, phrase: str, add) -> None:
        weights = self.context.component_weights
        lex = self.lexicon
        if phrase in lex.status:
            add("status", phrase, weights.status, lex.status[phrase])
        elif phrase in lex.cost:
            add("cost", phrase, weights.cost, lex.cost[phrase])
        elif phrase in lex.destination:
            add("destination", phrase, weights.destination, lex.destination[phrase])
        else:
            add("descriptor", phrase, weights.descriptor_name, lex.descriptor.get(phrase, ()))

    def simplify(self, components: list[Component]) -> list[Component]:
        limit = self.context.limits.max_query_components
        ranked = sorted(range(len(components)), key=lambda i: (-components[i].weight, i))[:limit]
        return [components[i] for i in sorted(ranked)]

    def match_quality(self, qc: Component, tc: TripComponent) -> float:
        quality = self.context.quality
        if qc.value == tc.component_value:
            return quality.exact
        if qc.value in (tc.synonyms or []) or tc.component_value in qc.synonyms:
            return quality.synonym
        if qc.value in tc.component_value.split() or tc.component_value in qc.value.split():
            return quality.partial
        return 0.0

    def score(self, components: list[Component], trip_components: list[TripComponent]) -> tuple[float, list[str], list[str]]:
        by_type: dict[str, list[TripComponent]] = {}
        for tc in trip_components:
            by_type.setdefault(tc.component_type, []).append(tc)
        score = 0.0
        matched_values, matched_types = [], []
        for qc in components:
            best = max((self.match_quality(qc, tc) for tc in by_type.get(qc.component_type, [])), default=0.0)
            if best <= 0:
                continue
            score += qc.weight * best
            matched_values.append(qc.value)
            if qc.component_type not in matched_types:
                matched_types.append(qc.component_type)
        return score, matched_values, matched_types

    @staticmethod
    def vocabulary_from_components(rows: list[TripComponent], seed: frozenset) -> TripVocabulary:
        vocab = TripVocabulary(destinations=set(seed))
        for row in rows:
            if row.component_type == "client" and "@" not in row.component_value:
                vocab.client_names.add(row.component_value)
            elif row.component_type == "destination":
                vocab.destinations.update(row.component_value.split())
        return vocab

    async def search(
        self,
        db: AsyncSession,
        query: str,
        trips: list[Trip],
        today: date,
        simplify: bool = False,
    ) -> SemanticResult:
        """Rank ``trips`` against the query using their stored components.

        Raises ComplexityError when the query yields more components than
        the limit and ``simplify`` is False.
        """
        threshold = self.context.thresholds.semantic
        by_id = {t.trip_id: t for t in trips}
        rows = []
        if by_id:
            rows = (
                await db.execute(select(TripComponent).where(TripComponent.trip_id.in_(list(by_id))))
            ).scalars().all()
        vocab = self.vocabulary_from_components(rows, self.context.vocabulary.seed_destinations)
        components = self.extract_query_components(query, vocab, today)

        limit = self.context.limits.max_query_components
        simplified = False
        if len(components) > limit:
            if not simplify:
                raise ComplexityError(
                    f"Query produced {len(components)} semantic components; the index accepts at most {limit}",
                    limit=limit,
                )
            components = self.simplify(components)
            simplified = True

        total_weight = sum(c.weight for c in components)
        if not components or total_weight <= 0:
            return SemanticResult(components=components, candidates=[], threshold=threshold, simplified=simplified)

        grouped: dict[int, list[TripComponent]] = {}
        for row in rows:
            grouped.setdefault(row.trip_id, []).append(row)

        candidates = []
        for trip_id, trip_rows in grouped.items():
            score, values, types = self.score(components, trip_rows)
            if score <= 0:
                continue
            trip = by_id[trip_id]
            candidates.append(Candidate(
                trip_id=trip_id,
                name=trip.name,
                slug=trip.slug,
                score=score,
                confidence=min(1.0, score / total_weight),
                matched_terms=values,
                matched_types=types,
                updated_at=timestamp(trip.updated_at),
            ))
        candidates.sort(key=Candidate.sort_key)
        return SemanticResult(
            components=components,
            candidates=candidates[: self.context.limits.semantic_top_n],
            threshold=threshold,
            simplified=simplified,
        )
