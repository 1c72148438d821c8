"""Weighted matcher: scores trips by category-weighted term overlap.

Query terms are classified as email, client, date, destination or generic.
Client and destination dictionaries are derived from the candidate trips
themselves plus the seed destinations of the engine context.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from tripdesk.errors import ComplexityError
from tripdesk.models.trip import Trip
from tripdesk.services.engine import MONTH_NAMES, EngineContext
from tripdesk.services.normalizer import NormalizedText, Normalizer

logger = logging.getLogger(__name__)

EMAIL_PARTS_RE = re.compile(r"[._+-]+")


def timestamp(value: datetime | None) -> float:
    """Sortable epoch seconds; naive datetimes (SQLite) are taken as UTC."""
    if value is None:
        return 0.0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def trip_emails(trip: Trip) -> list[str]:
    emails = []
    if trip.primary_client_email:
        emails.append(trip.primary_client_email.lower())
    for entry in trip.clients or []:
        email = entry.get("email") if isinstance(entry, dict) else None
        if email and email.lower() not in emails:
            emails.append(email.lower())
    return emails


@dataclass
class TripVocabulary:
    """Client-name and destination dictionaries for one candidate set."""
    client_names: set[str] = field(default_factory=set)
    destinations: set[str] = field(default_factory=set)

    def is_client(self, term: str) -> bool:
        return term in self.client_names and term not in self.destinations

    def is_destination(self, term: str) -> bool:
        return term in self.destinations and term not in self.client_names


def derive_client_names(trip: Trip, normalizer: Normalizer, destinations: set[str]) -> set[str]:
    """Client names from email local parts, possessives and "X and Y Surname" pairs in the name."""
    context = normalizer.context
    stop = context.vocabulary.stop_words
    descriptive = context.vocabulary.descriptive_words()
    names: set[str] = set()

    for email in trip_emails(trip):
        local = email.split("@", 1)[0]
        names.update(p for p in EMAIL_PARTS_RE.split(local) if p.isalpha() and len(p) > 1)

    folded = normalizer.fold(trip.name or "")
    for m in context.patterns.possessive.finditer(folded):
        names.add(m.group(1))

    normalized = normalizer.normalize(trip.name).text
    for m in context.patterns.name_pair.finditer(normalized):
        parts = [p for p in m.groups() if p]
        if parts[0] in destinations or parts[1] in destinations:
            continue
        names.update(p for p in parts if p.isalpha() and p not in destinations and p not in descriptive)

    return {n for n in names if n not in stop and len(n) > 1}


def build_vocabulary(trips: list[Trip], normalizer: Normalizer) -> TripVocabulary:
    destinations = set(normalizer.context.vocabulary.seed_destinations)
    for trip in trips:
        for dest in trip.destinations or []:
            destinations.update(normalizer.normalize(dest).words)
    vocab = TripVocabulary(destinations=destinations)
    for trip in trips:
        vocab.client_names.update(derive_client_names(trip, normalizer, destinations))
    return vocab


@dataclass
class Candidate:
    trip_id: int
    name: str
    slug: str | None
    score: float
    confidence: float
    matched_terms: list[str]
    matched_types: list[str]
    updated_at: float = 0.0

    def sort_key(self) -> tuple:
        return (-round(self.score, 6), -len(self.matched_terms), -self.updated_at, self.trip_id)

    def to_suggestion(self) -> dict:
        return {
            "trip_id": self.trip_id,
            "name": self.name,
            "slug": self.slug,
            "confidence": round(self.confidence, 3),
            "matched": self.matched_types,
        }


@dataclass
class QueryTerm:
    term: str
    category: str
    weight: float
    corrected: str | None = None


@dataclass
class MatchResult:
    terms: list[QueryTerm]
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
class _SearchDocument:
    terms: set[str]
    phonetic: set[str]
    text: str


class WeightedMatcher:
    def __init__(self, context: EngineContext, normalizer: Normalizer | None = None):
        self.context = context
        self.normalizer = normalizer or Normalizer(context)

    def classify(self, term: str, vocab: TripVocabulary) -> str:
        patterns = self.context.patterns
        if patterns.email.fullmatch(term):
            return "email"
        if patterns.year.match(term) or patterns.iso_date.match(term) or term in self.context.vocabulary.months:
            return "date"
        if vocab.is_client(term):
            return "client"
        if vocab.is_destination(term):
            return "destination"
        return "generic"

    def query_terms(self, query: NormalizedText, vocab: TripVocabulary) -> list[QueryTerm]:
        weights = self.context.term_weights
        terms = []
        for term in self.normalizer.terms(query):
            corrected = self.normalizer.correct(term)
            category = self.classify(corrected or term, vocab)
            terms.append(QueryTerm(term, category, weights.for_category(category), corrected))
        return terms

    def simplify(self, terms: list[QueryTerm]) -> list[QueryTerm]:
        """Keep the highest-weighted terms up to the term limit, in query order."""
        limit = self.context.limits.max_query_terms
        ranked = sorted(range(len(terms)), key=lambda i: (-terms[i].weight, i))[:limit]
        return [terms[i] for i in sorted(ranked)]

    def search_document(self, trip: Trip, vocab_names: set[str]) -> _SearchDocument:
        normalize = self.normalizer.normalize
        terms: set[str] = set(normalize(trip.name).tokens)
        for dest in trip.destinations or []:
            terms.update(normalize(dest).tokens)
        if trip.slug:
            terms.update(p for p in trip.slug.split("-") if p)
        for email in trip_emails(trip):
            terms.add(email)
            terms.update(p for p in EMAIL_PARTS_RE.split(email.split("@", 1)[0]) if p)
        terms.update(vocab_names)
        for d in (trip.start_date, trip.end_date):
            if d:
                terms.add(str(d.year))
                terms.add(MONTH_NAMES[d.month - 1])
                terms.add(MONTH_NAMES[d.month - 1][:3])
        if trip.status:
            terms.update(trip.status.split("_"))
        phonetic = {self.normalizer.phonetic(t) for t in terms}
        return _SearchDocument(terms=terms, phonetic=phonetic, text=" ".join(sorted(terms)))

    def match_quality(self, term: QueryTerm, doc: _SearchDocument) -> float:
        quality = self.context.quality
        if term.term in doc.terms:
            return quality.exact
        if term.corrected and term.corrected in doc.terms:
            return quality.alternate
        if self.normalizer.phonetic(term.corrected or term.term) in doc.phonetic:
            return quality.alternate
        if len(term.term) >= self.context.limits.min_prefix_chars:
            if any(t.startswith(term.term) for t in doc.terms):
                return quality.prefix
            if term.term in doc.text:
                return quality.substring
        return 0.0

    def match(
        self,
        query: NormalizedText,
        trips: list[Trip],
        vocab: TripVocabulary | None = None,
        simplify: bool = False,
    ) -> MatchResult:
        """Score every candidate trip against the query.

        Raises ComplexityError when the query has more terms than the limit
        and ``simplify`` is False.
        """
        vocab = vocab or build_vocabulary(trips, self.normalizer)
        terms = self.query_terms(query, vocab)
        limit = self.context.limits.max_query_terms
        simplified = False
        if len(terms) > limit:
            if not simplify:
                raise ComplexityError(
                    f"Query has {len(terms)} search terms; weighted matching accepts at most {limit}",
                    limit=limit,
                )
            terms = self.simplify(terms)
            simplified = True

        threshold = self.context.thresholds.weighted
        total_weight = sum(t.weight for t in terms)
        if not terms or total_weight <= 0:
            return MatchResult(terms=terms, candidates=[], threshold=threshold, simplified=simplified)

        candidates = []
        for trip in trips:
            names = derive_client_names(trip, self.normalizer, vocab.destinations)
            doc = self.search_document(trip, names)
            score = 0.0
            matched_terms, matched_types = [], []
            for term in terms:
                q = self.match_quality(term, doc)
                if q <= 0:
                    continue
                score += term.weight * q
                matched_terms.append(term.term)
                if term.category not in matched_types:
                    matched_types.append(term.category)
            if score <= 0:
                continue
            candidates.append(Candidate(
                trip_id=trip.trip_id,
                name=trip.name,
                slug=trip.slug,
                score=score,
                confidence=min(1.0, score / total_weight),
                matched_terms=matched_terms,
                matched_types=matched_types,
                updated_at=timestamp(trip.updated_at),
            ))

        candidates.sort(key=Candidate.sort_key)
        top = candidates[: self.context.limits.weighted_top_n]
        logger.debug(
            f"Weighted match over {len(trips)} trips, {len(terms)} terms: "
            f"{[(c.trip_id, round(c.confidence, 3)) for c in top]}"
        )
        return MatchResult(terms=terms, candidates=top, threshold=threshold, simplified=simplified)
