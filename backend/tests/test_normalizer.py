"""Tests for Normalizer."""

import pytest

from tripdesk.services.engine import build_engine_context
from tripdesk.services.normalizer import Normalizer


@pytest.fixture
def normalizer(context) -> Normalizer:
    return Normalizer(context)


class TestFold:
    """Tests for Unicode folding."""

    def test_strips_accents_and_lowercases(self, normalizer: Normalizer):
        assert normalizer.fold("Zoë's Café CRÈME") == "zoe's cafe creme"

    def test_folds_smart_quotes_and_dashes(self, normalizer: Normalizer):
        assert normalizer.fold("Sara’s trip – “Hawaii”") == "sara's trip - \"hawaii\""


class TestNormalize:
    """Tests for tokenization."""

    def test_ampersand_and_and_normalize_alike(self, normalizer: Normalizer):
        """'&' and 'and' produce the same canonical text."""
        a = normalizer.normalize("Sara & Darren")
        b = normalizer.normalize("sara and darren")
        assert a.text == b.text == "sara and darren"

    def test_idempotent(self, normalizer: Normalizer):
        """Normalizing normalized text changes nothing."""
        once = normalizer.normalize("Jane's  Mediterranean—Cruise / 2025!")
        twice = normalizer.normalize(once.text)
        assert once.text == twice.text
        assert once.tokens == twice.tokens

    def test_possessive_removed(self, normalizer: Normalizer):
        assert normalizer.normalize("Sara's Hawaii").tokens == ("sara", "hawaii")

    def test_email_kept_intact(self, normalizer: Normalizer):
        """Emails survive punctuation stripping."""
        result = normalizer.normalize("Trip for Sara.Jones@Example.com to Bath")
        assert "sara.jones@example.com" in result.tokens
        assert result.emails == ("sara.jones@example.com",)
        assert "sara.jones@example.com" not in result.words

    def test_slash_becomes_or(self, normalizer: Normalizer):
        assert normalizer.normalize("bath/bristol").text == "bath or bristol"

    def test_empty_input(self, normalizer: Normalizer):
        result = normalizer.normalize("")
        assert result.text == ""
        assert result.tokens == ()
        assert result.partial is False

    def test_slug_form_skips_emails(self, normalizer: Normalizer):
        result = normalizer.normalize("Sara Hawaii 2024 sara@example.com")
        assert result.slug_form == "sara-hawaii-2024"


class TestAlternates:
    """Tests for weighted alternate renderings."""

    def test_alternate_weights_below_one(self, normalizer: Normalizer):
        result = normalizer.normalize("Sara and Darren Hawai")
        assert result.alternates
        assert all(0 < weight < 1 for _, weight in result.alternates)

    def test_connector_free_and_ampersand_forms(self, normalizer: Normalizer):
        renderings = dict(normalizer.normalize("Sara and Darren").alternates)
        assert renderings["sara darren"] == 0.9
        assert renderings["sara & darren"] == 0.9

    def test_corrected_form(self, normalizer: Normalizer):
        renderings = dict(normalizer.normalize("hawai anniversery").alternates)
        assert renderings["hawaii anniversary"] == 0.8

    def test_phonetic_key(self, normalizer: Normalizer):
        assert normalizer.phonetic("philippa") == "filipa"
        assert normalizer.phonetic("ashleigh") == normalizer.phonetic("ashley")
        assert normalizer.phonetic("2024") == "2024"


class TestTerms:
    """Tests for query term extraction."""

    def test_stop_words_and_duplicates_removed(self, normalizer: Normalizer):
        result = normalizer.normalize("show the Hawaii trip for Sara in Hawaii")
        assert normalizer.terms(result) == ["hawaii", "sara"]


class TestBudget:
    """Tests for the normalization time budget."""

    def test_exhausted_budget_returns_partial(self, settings):
        """A zero budget yields a partial result instead of an error."""
        context = build_engine_context(settings, limits__normalizer_budget_ms=0)
        result = Normalizer(context).normalize("Sara & Darren's Hawaii")
        assert result.partial is True
        assert result.tokens
