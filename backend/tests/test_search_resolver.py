"""Tests for the staged resolver: slug, weighted, semantic, no match."""

import pytest
from sqlalchemy import func, select

from tripdesk.errors import ValidationError
from tripdesk.models.search import SearchQuery
from tripdesk.services.engine import build_engine_context
from tripdesk.services.trip_tools import TripTools

CONTEXT = {"today": "2025-03-10"}


@pytest.fixture
async def sara_hawaii(make_trip):
    return await make_trip(
        name="Sara's Hawaii Adventure",
        destinations=["Hawaii"],
        start_date="2024-06-01",
        primary_client_email="sara@example.com",
    )


@pytest.fixture
async def jones_bristol(db, tools):
    """Punctuation-heavy name and no slug."""
    trip, _ = await tools.trips.create_trip(
        db,
        {
            "document_version": 2,
            "name": "Sara & Darren Jones 25th Anniversary - Bristol & Bath",
            "destinations": ["Bristol", "Bath"],
            "start_date": "2025-09-12",
        },
        assign_slug=False,
    )
    return trip


class TestSlugStage:
    """Tests for exact slug resolution."""

    @pytest.mark.asyncio
    async def test_slug_resolves_with_full_confidence(self, db, tools, sara_hawaii, jones_bristol):
        result = await tools.resolve_trip(db, "sara-hawaii-2024", CONTEXT)

        assert result["trip_id"] == sara_hawaii.trip_id
        assert result["method"] == "slug"
        assert result["confidence"] == 1.0
        assert result["explanation"]

    @pytest.mark.asyncio
    async def test_every_slug_resolves_to_its_trip(self, db, tools, make_trip):
        trips = [
            await make_trip(name=f"Rome {n}", destinations=["Rome"], primary_client_email="jo@example.com")
            for n in range(3)
        ]
        for trip in trips:
            result = await tools.resolve_trip(db, trip.slug, CONTEXT)
            assert (result["trip_id"], result["method"], result["confidence"]) == (trip.trip_id, "slug", 1.0)


class TestWeightedStage:
    """Tests for weighted resolution."""

    @pytest.mark.asyncio
    async def test_client_and_destination_outrank_destination_only(self, db, tools, sara_hawaii, make_trip):
        generic = await make_trip(name="Generic Hawaii Tour", destinations=["Hawaii"], start_date="2024-09-01")

        result = await tools.resolve_trip(db, "Sara Hawaii", CONTEXT)

        assert result["method"] == "weighted"
        assert result["trip_id"] == sara_hawaii.trip_id
        assert [a["trip_id"] for a in result["alternatives"]] == [generic.trip_id]
        assert result["alternatives"][0]["confidence"] < result["confidence"]

    @pytest.mark.asyncio
    async def test_end_to_end_slug_and_weighted(self, db, tools, sara_hawaii, jones_bristol):
        by_slug = await tools.resolve_trip(db, "sara-hawaii-2024", CONTEXT)
        by_terms = await tools.resolve_trip(db, "Sara Darren Jones Bristol Bath", CONTEXT)

        assert (by_slug["trip_id"], by_slug["method"]) == (sara_hawaii.trip_id, "slug")
        assert (by_terms["trip_id"], by_terms["method"]) == (jones_bristol.trip_id, "weighted")
        assert by_terms["confidence"] == pytest.approx(1.0)
        assert jones_bristol.slug is None

    @pytest.mark.asyncio
    async def test_complex_query_is_simplified(self, db, tools, sara_hawaii, jones_bristol):
        query = "Sara Darren Jones Bristol Bath anniversary 25th alpha bravo charlie"

        result = await tools.resolve_trip(db, query, CONTEXT)

        assert result["trip_id"] == jones_bristol.trip_id
        assert result["method"] == "weighted"
        assert any("retried" in line for line in result["explanation"])


class TestSemanticStage:
    """Tests for paraphrase-tolerant resolution."""

    @pytest.mark.asyncio
    async def test_synonyms_resolve_when_terms_do_not(self, db, tools, make_trip):
        trip = await make_trip(
            name="Anniversary Getaway",
            destinations=["Maui"],
            start_date="2025-06-10",
            primary_client_email="sara@example.com",
        )

        result = await tools.resolve_trip(db, "romantic hawaii", CONTEXT)

        assert result["method"] == "semantic"
        assert result["trip_id"] == trip.trip_id
        assert result["confidence"] == pytest.approx(0.9)
        assert any("Semantic match" in line for line in result["explanation"])


class TestNoMatch:
    """Tests for exhaustion of every stage."""

    @pytest.mark.asyncio
    async def test_low_confidence_returns_suggestions(self, db, tools, make_trip):
        trip = await make_trip(name="Generic Hawaii Tour", destinations=["Hawaii"], start_date="2024-09-01")

        result = await tools.resolve_trip(db, "hawaii honeymoon cruise 2019", CONTEXT)

        assert result["no_match"] is True
        assert result["error"] == "not_found"
        assert [s["trip_id"] for s in result["suggestions"]] == [trip.trip_id]
        assert any(trip.slug in hint for hint in result["alternatives"])
        assert "hawaii honeymoon cruise 2019" in result["cause"]

    @pytest.mark.asyncio
    async def test_nothing_in_common(self, db, tools, sara_hawaii):
        result = await tools.resolve_trip(db, "zanzibar safari", CONTEXT)
        assert result["no_match"] is True
        assert result["suggestions"] == []
        assert result["alternatives"]

    @pytest.mark.asyncio
    async def test_empty_store(self, db, tools):
        result = await tools.resolve_trip(db, "sara hawaii", CONTEXT)
        assert result["no_match"] is True
        assert result["alternatives"]

    @pytest.mark.asyncio
    async def test_suggestion_limit_from_context(self, db, tools, make_trip):
        for n in range(4):
            await make_trip(name=f"Tour {n}", destinations=["Hawaii"])
        result = await tools.resolve_trip(db, "hawaii honeymoon cruise 2019", {"max_suggestions": 2})
        assert len(result["suggestions"]) == 2

    @pytest.mark.asyncio
    async def test_unfoldable_script_is_no_match(self, db, tools, sara_hawaii):
        """Letters that do not fold to ASCII are unmatched, not malformed."""
        result = await tools.resolve_trip(db, "東京", CONTEXT)

        assert result["no_match"] is True
        assert "東京" in result["cause"]
        assert any("Latin letters" in hint for hint in result["alternatives"])
        logged = (await db.execute(select(SearchQuery.method))).scalars().all()
        assert logged == ["none"]


class TestCandidateCap:
    """Tests for the candidate trip limit."""

    @pytest.mark.asyncio
    async def test_truncation_is_explained(self, db, settings, sara_hawaii, make_trip):
        await make_trip(name="Rome Week", destinations=["Rome"], primary_client_email="jo@example.com")
        capped = TripTools(build_engine_context(settings, limits__max_candidate_trips=1), settings)

        result = await capped.resolve_trip(db, "rome week", CONTEXT)

        detail = result.get("cause") or " ".join(result["explanation"])
        assert "most recently updated of 2 trips" in detail

    @pytest.mark.asyncio
    async def test_no_note_when_all_trips_searched(self, db, tools, sara_hawaii):
        result = await tools.resolve_trip(db, "sara hawaii", CONTEXT)
        assert not any("most recently updated" in line for line in result["explanation"])


class TestValidation:
    """Tests for query and context validation."""

    @pytest.mark.parametrize("query", ["", "   ", "!!!", "x" * 501])
    @pytest.mark.asyncio
    async def test_rejects_bad_queries(self, db, tools, query):
        with pytest.raises(ValidationError) as exc:
            await tools.resolve_trip(db, query, CONTEXT)
        assert "query" in exc.value.field_errors

    @pytest.mark.parametrize(
        "bad_context",
        [{"today": "next tuesday"}, {"max_suggestions": 0}, {"include_facts": "yes"}],
    )
    @pytest.mark.asyncio
    async def test_rejects_bad_context(self, db, tools, bad_context):
        with pytest.raises(ValidationError):
            await tools.resolve_trip(db, "sara", bad_context)


class TestResultDetails:
    """Tests for facts and search logging."""

    @pytest.mark.asyncio
    async def test_facts_attached_once_computed(self, db, tools, sara_hawaii):
        before = await tools.resolve_trip(db, "sara-hawaii-2024", CONTEXT)
        await tools.recompute_facts(db)
        after = await tools.resolve_trip(db, "sara-hawaii-2024", CONTEXT)
        skipped = await tools.resolve_trip(db, "sara-hawaii-2024", {"include_facts": False})

        assert before["facts"] is None
        assert after["facts"]["trip_id"] == sara_hawaii.trip_id
        assert after["facts"]["traveler_emails"] == ["sara@example.com"]
        assert skipped["facts"] is None

    @pytest.mark.asyncio
    async def test_searches_are_logged(self, db, tools, sara_hawaii):
        await tools.resolve_trip(db, "sara-hawaii-2024", CONTEXT)
        await tools.resolve_trip(db, "zanzibar safari", CONTEXT)

        rows = (await db.execute(select(SearchQuery).order_by(SearchQuery.id))).scalars().all()
        assert [(r.method, r.trip_id) for r in rows] == [("slug", sara_hawaii.trip_id), ("none", None)]
        assert (await db.execute(select(func.count(SearchQuery.id)))).scalar_one() == 2
