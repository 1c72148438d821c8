"""Tests for WeightedMatcher."""

from datetime import date, datetime, timezone

import pytest

from tripdesk.errors import ComplexityError
from tripdesk.models.trip import Trip
from tripdesk.services.normalizer import Normalizer
from tripdesk.services.weighted_matcher import WeightedMatcher, build_vocabulary, derive_client_names


def _trip(trip_id, name, destinations=(), email=None, start=None, slug=None, updated=None, clients=None):
    return Trip(
        trip_id=trip_id,
        name=name,
        destinations=list(destinations),
        primary_client_email=email,
        start_date=start,
        slug=slug,
        status="planning",
        clients=clients or [],
        updated_at=updated or datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def normalizer(context) -> Normalizer:
    return Normalizer(context)


@pytest.fixture
def matcher(context, normalizer) -> WeightedMatcher:
    return WeightedMatcher(context, normalizer)


@pytest.fixture
def trips():
    return [
        _trip(1, "Sara & Darren Anniversary", ["Hawaii"], "sara@example.com", date(2024, 6, 1), "sara-hawaii-2024"),
        _trip(2, "Generic Hawaii Tour", ["Hawaii"], "ops@agency.com", date(2024, 9, 1)),
        _trip(3, "Sara and Darren Jones Bristol and Bath", ["Bristol", "Bath"], "darren.jones@example.com"),
    ]


class TestClientNames:
    """Tests for client name derivation."""

    def test_from_email_local_part(self, normalizer, trips):
        names = derive_client_names(trips[2], normalizer, {"bristol", "bath"})
        assert {"darren", "jones"} <= names

    def test_from_name_pair(self, normalizer, trips):
        """'Sara and Darren Jones' contributes all three names."""
        names = derive_client_names(trips[2], normalizer, {"bristol", "bath"})
        assert {"sara", "darren", "jones"} <= names

    def test_destination_pairs_skipped(self, normalizer, trips):
        names = derive_client_names(trips[2], normalizer, {"bristol", "bath"})
        assert "bristol" not in names
        assert "bath" not in names

    def test_from_possessive(self, normalizer):
        trip = _trip(9, "Maria's Rome Getaway", ["Rome"])
        assert "maria" in derive_client_names(trip, normalizer, {"rome"})


class TestClassify:
    """Tests for term classification."""

    def test_categories(self, matcher, normalizer, trips):
        vocab = build_vocabulary(trips, normalizer)
        assert matcher.classify("sara@example.com", vocab) == "email"
        assert matcher.classify("2024", vocab) == "date"
        assert matcher.classify("june", vocab) == "date"
        assert matcher.classify("sara", vocab) == "client"
        assert matcher.classify("hawaii", vocab) == "destination"
        assert matcher.classify("anniversary", vocab) == "generic"


class TestMatch:
    """Tests for scoring and ranking."""

    def test_client_plus_destination_beats_destination_only(self, matcher, normalizer, trips):
        result = matcher.match(normalizer.normalize("Sara Hawaii"), trips)
        assert result.best.trip_id == 1
        assert result.best.confidence == pytest.approx(1.0)
        generic = next(c for c in result.candidates if c.trip_id == 2)
        assert generic.confidence == pytest.approx(1.5 / 3.5)
        assert result.confident

    def test_confidence_bounded(self, matcher, normalizer, trips):
        result = matcher.match(normalizer.normalize("sara darren hawaii 2024 anniversary"), trips)
        assert all(0 <= c.confidence <= 1 for c in result.candidates)

    def test_no_overlap_gives_no_candidates(self, matcher, normalizer, trips):
        result = matcher.match(normalizer.normalize("zanzibar"), trips)
        assert result.candidates == []
        assert not result.confident

    def test_corrected_term_matches_as_alternate(self, matcher, normalizer, trips, context):
        result = matcher.match(normalizer.normalize("hawai"), trips)
        assert result.best.confidence == pytest.approx(context.quality.alternate)

    def test_ties_prefer_recently_updated(self, matcher, normalizer):
        older = _trip(1, "Rome Week", ["Rome"], updated=datetime(2024, 1, 1, tzinfo=timezone.utc))
        newer = _trip(2, "Rome Week", ["Rome"], updated=datetime(2025, 1, 1, tzinfo=timezone.utc))
        result = matcher.match(normalizer.normalize("rome"), [older, newer])
        assert [c.trip_id for c in result.candidates] == [2, 1]

    def test_top_n_limit(self, matcher, normalizer, context):
        many = [_trip(i, f"Paris Break {i}", ["Paris"]) for i in range(1, 10)]
        result = matcher.match(normalizer.normalize("paris"), many)
        assert len(result.candidates) == context.limits.weighted_top_n


class TestComplexity:
    """Tests for the query term limit."""

    QUERY = "alpha bravo charlie delta echo foxtrot golf hotel india juliet sara 2024"

    def test_too_many_terms_raises(self, matcher, normalizer, trips):
        with pytest.raises(ComplexityError) as exc:
            matcher.match(normalizer.normalize(self.QUERY), trips)
        assert exc.value.limit == 8

    def test_simplify_keeps_heaviest_terms(self, matcher, normalizer, trips):
        result = matcher.match(normalizer.normalize(self.QUERY), trips, simplify=True)
        assert result.simplified
        assert len(result.terms) == 8
        kept = [t.term for t in result.terms]
        assert "sara" in kept and "2024" in kept
        assert result.best.trip_id == 1
