"""Engine context: single source for patterns, dictionaries, weights and thresholds.

Built once at startup and immutable afterwards.
Tests build their own with ``build_engine_context(**overrides)``.
"""

import re
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from tripdesk.config import Settings, settings as default_settings


def _frozen(mapping: dict) -> MappingProxyType:
    return MappingProxyType({k: tuple(v) if isinstance(v, list) else v for k, v in mapping.items()})


@dataclass(frozen=True)
class TermWeights:
    """Weighted-matcher token category weights."""
    email: float = 3.0
    client: float = 2.0
    date: float = 1.8
    destination: float = 1.5
    generic: float = 1.0

    def for_category(self, category: str) -> float:
        return getattr(self, category, self.generic)


@dataclass(frozen=True)
class ComponentWeights:
    """Semantic component weights."""
    client: float = 2.0
    destination: float = 1.5
    year: float = 1.3
    month: float = 1.2
    activity: float = 1.0
    cost: float = 1.1
    status: float = 1.2
    descriptor_name: float = 1.3
    descriptor_notes: float = 1.1


@dataclass(frozen=True)
class MatchQuality:
    exact: float = 1.0
    alternate: float = 0.8     # phonetic / corrected rendering
    prefix: float = 0.6
    substring: float = 0.5
    synonym: float = 0.9
    partial: float = 0.7       # semantic value contained in the other


@dataclass(frozen=True)
class Thresholds:
    """Per-stage minimum confidence."""
    slug: float = 1.0
    weighted: float = 0.5
    semantic: float = 0.6


@dataclass(frozen=True)
class Limits:
    normalizer_budget_ms: float = 50.0
    max_query_chars: int = 500
    max_query_terms: int = 8
    max_query_components: int = 12
    max_candidate_trips: int = 500
    weighted_top_n: int = 5
    semantic_top_n: int = 5
    max_suggestions: int = 3
    min_prefix_chars: int = 3
    slug_max_suffix: int = 1000
    slug_assign_retries: int = 3


STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "of", "to", "in", "on", "for", "with", "at", "by",
    "from", "is", "are", "was", "be", "my", "our", "their", "me", "us", "it",
    "show", "find", "get", "list", "search", "look", "lookup", "open", "display",
    "trip", "trips", "travel", "itinerary", "please", "about", "details", "info",
})

CORRECTIONS = {
    "hawai": "hawaii",
    "hawii": "hawaii",
    "mediteranean": "mediterranean",
    "mediterranian": "mediterranean",
    "carribean": "caribbean",
    "carribbean": "caribbean",
    "aniversary": "anniversary",
    "anniversery": "anniversary",
    "annivesary": "anniversary",
    "honeymon": "honeymoon",
    "brisol": "bristol",
    "londn": "london",
    "pairs": "paris",
}

# Applied in order to produce a sound-alike rendering of a word
PHONETIC_RULES = (
    (r"ph", "f"),
    (r"ck", "k"),
    (r"ch", "k"),
    (r"leigh$", "ley"),
    (r"lee$", "ley"),
    (r"lay$", "ley"),
    (r"holme", "holm"),
    (r"([a-z])\1", r"\1"),
)

SEED_DESTINATIONS = frozenset({
    "bristol", "bath", "london", "paris", "hawaii", "york", "rome", "venice", "florence",
    "mediterranean", "caribbean", "europe", "edinburgh", "dublin", "scotland", "ireland",
    "wales", "england", "britain", "uk", "france", "italy", "spain", "greece", "portugal",
    "iceland", "norway", "thailand", "japan", "tokyo", "kyoto", "maui", "oahu", "kauai",
    "honolulu", "barcelona", "madrid", "lisbon", "athens", "santorini", "mykonos",
    "croatia", "bahamas", "jamaica", "barbados", "aruba", "cotswolds", "cornwall",
})

DESTINATION_SYNONYMS = {
    "hawaii": ["maui", "oahu", "kauai", "big island", "honolulu", "hawaiian islands"],
    "mediterranean": ["greece", "italy", "spain", "france", "croatia", "med"],
    "caribbean": ["jamaica", "bahamas", "barbados", "aruba", "st lucia"],
    "europe": ["france", "italy", "spain", "germany", "uk", "england"],
    "paris": ["france", "french"],
    "london": ["uk", "england", "britain", "united kingdom"],
    "rome": ["italy", "italian"],
    "greece": ["greek", "athens", "santorini", "mykonos"],
    "italy": ["italian", "rome", "venice", "florence", "tuscany"],
    "spain": ["spanish", "madrid", "barcelona"],
    "iceland": ["reykjavik", "icelandic"],
    "norway": ["norwegian", "oslo", "fjords"],
    "thailand": ["thai", "bangkok", "phuket"],
    "japan": ["japanese", "tokyo", "kyoto"],
    "uk": ["united kingdom", "britain", "great britain", "england"],
    "united kingdom": ["uk", "britain", "great britain", "england"],
    "britain": ["uk", "united kingdom", "great britain"],
    "great britain": ["uk", "united kingdom", "britain"],
    "england": ["uk", "united kingdom", "britain"],
    "bristol": ["england", "uk"],
    "bath": ["england", "uk"],
}

STATUS_SYNONYMS = {
    "planning": ["draft", "planned", "upcoming", "proposal"],
    "confirmed": ["booked", "reserved", "scheduled"],
    "deposit_paid": ["deposit", "deposit paid"],
    "paid_in_full": ["paid", "paid in full", "fully paid"],
    "in_progress": ["ongoing", "current", "active", "traveling", "in progress"],
    "completed": ["finished", "done", "past", "returned"],
    "cancelled": ["canceled", "abandoned", "called off"],
}

DESCRIPTOR_SYNONYMS = {
    "anniversary": ["celebration", "milestone", "romantic"],
    "honeymoon": ["romantic", "newlywed", "wedding"],
    "vacation": ["holiday", "getaway", "break"],
    "business": ["work", "corporate", "conference"],
    "family": ["kids", "children", "reunion"],
    "adventure": ["exciting", "active", "outdoor", "expedition"],
    "relaxation": ["relaxing", "spa", "peaceful", "restful"],
    "cultural": ["culture", "history", "museums", "heritage"],
    "cruise": ["sailing", "ship", "voyage"],
    "birthday": ["celebration", "milestone"],
}

# Upper bound (exclusive) of each cost band; the last band is open-ended
COST_BANDS = (
    (1000, "budget"),
    (5000, "moderate"),
    (10000, "premium"),
    (None, "luxury"),
)

COST_SYNONYMS = {
    "budget": ["cheap", "affordable", "economical", "inexpensive"],
    "moderate": ["midrange", "mid range", "reasonable"],
    "premium": ["upscale", "high end", "expensive"],
    "luxury": ["luxurious", "deluxe", "lavish", "five star"],
}

MONTHS = {
    "january": 1, "jan": 1, "february": 2, "feb": 2, "march": 3, "mar": 3,
    "april": 4, "apr": 4, "may": 5, "june": 6, "jun": 6, "july": 7, "jul": 7,
    "august": 8, "aug": 8, "september": 9, "sep": 9, "sept": 9, "october": 10,
    "oct": 10, "november": 11, "nov": 11, "december": 12, "dec": 12,
}

MONTH_NAMES = (
    "january", "february", "march", "april", "may", "june", "july",
    "august", "september", "october", "november", "december",
)

ACCOMMODATION_TYPES = frozenset({"hotel", "lodging", "accommodation", "stay"})


@dataclass(frozen=True)
class Patterns:
    email: re.Pattern = re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}")
    year: re.Pattern = re.compile(r"^(19|20)\d{2}$")
    iso_date: re.Pattern = re.compile(r"^(\d{4})-(\d{2})(?:-(\d{2}))?$")
    ordinal: re.Pattern = re.compile(r"^\d+(st|nd|rd|th)$")
    # "sara and darren jones", "jane and john smith"
    name_pair: re.Pattern = re.compile(r"\b([a-z]+) and ([a-z]+)(?: ([a-z]+))?\b")
    possessive: re.Pattern = re.compile(r"\b([a-z]+)'s\b")


@dataclass(frozen=True)
class Vocabulary:
    stop_words: frozenset = STOP_WORDS
    corrections: MappingProxyType = field(default_factory=lambda: _frozen(CORRECTIONS))
    phonetic_rules: tuple = field(
        default_factory=lambda: tuple((re.compile(p), r) for p, r in PHONETIC_RULES)
    )
    seed_destinations: frozenset = SEED_DESTINATIONS
    destination_synonyms: MappingProxyType = field(default_factory=lambda: _frozen(DESTINATION_SYNONYMS))
    status_synonyms: MappingProxyType = field(default_factory=lambda: _frozen(STATUS_SYNONYMS))
    descriptor_synonyms: MappingProxyType = field(default_factory=lambda: _frozen(DESCRIPTOR_SYNONYMS))
    cost_synonyms: MappingProxyType = field(default_factory=lambda: _frozen(COST_SYNONYMS))
    cost_bands: tuple = COST_BANDS
    months: MappingProxyType = field(default_factory=lambda: MappingProxyType(MONTHS))
    accommodation_types: frozenset = ACCOMMODATION_TYPES

    def reverse_synonyms(self, table: MappingProxyType) -> dict[str, tuple[str, ...]]:
        """Map every synonym back to the canonical values that list it."""
        reverse: dict[str, list[str]] = {}
        for canonical, synonyms in table.items():
            for syn in synonyms:
                reverse.setdefault(syn, []).append(canonical)
        return {k: tuple(v) for k, v in reverse.items()}

    def descriptive_words(self) -> frozenset:
        """Words that describe a trip rather than name a person."""
        words = set(self.months)
        for table in (self.descriptor_synonyms, self.status_synonyms, self.cost_synonyms):
            words.update(table)
            for synonyms in table.values():
                words.update(synonyms)
        return frozenset(words)

    def cost_band(self, amount: float) -> str:
        for upper, band in self.cost_bands:
            if upper is None or amount < upper:
                return band
        return self.cost_bands[-1][1]


@dataclass(frozen=True)
class EngineContext:
    """Top-level immutable context handed to every engine component."""
    term_weights: TermWeights = field(default_factory=TermWeights)
    component_weights: ComponentWeights = field(default_factory=ComponentWeights)
    quality: MatchQuality = field(default_factory=MatchQuality)
    thresholds: Thresholds = field(default_factory=Thresholds)
    limits: Limits = field(default_factory=Limits)
    patterns: Patterns = field(default_factory=Patterns)
    vocabulary: Vocabulary = field(default_factory=Vocabulary)


def build_engine_context(config: Settings | None = None, **overrides) -> EngineContext:
    """Build the engine context from settings.

    ``overrides`` replace top-level sections, or individual fields of
    ``thresholds``/``limits`` when given as ``thresholds__weighted=0.4``.
    """
    config = config or default_settings
    thresholds = Thresholds(
        weighted=config.weighted_min_confidence,
        semantic=config.semantic_min_confidence,
    )
    limits = Limits(
        normalizer_budget_ms=config.normalizer_budget_ms,
        max_query_chars=config.max_query_chars,
        max_query_terms=config.max_query_terms,
        max_query_components=config.max_query_components,
        max_candidate_trips=config.max_candidate_trips,
        weighted_top_n=config.weighted_top_n,
        semantic_top_n=config.semantic_top_n,
        max_suggestions=config.max_suggestions,
        slug_max_suffix=config.slug_max_suffix,
        slug_assign_retries=config.slug_assign_retries,
    )
    sections = {"thresholds": thresholds, "limits": limits}
    top_level = {}
    for key, value in overrides.items():
        if "__" in key:
            section, name = key.split("__", 1)
            if section not in sections:
                sections[section] = EngineContext.__dataclass_fields__[section].default_factory()
            sections[section] = replace(sections[section], **{name: value})
        else:
            top_level[key] = value
    return EngineContext(**{**sections, **top_level})
