"""Normalizer: folds raw query or record text into a canonical token stream.

Output is idempotent and email-safe; ``&`` and ``and`` normalize alike.
Weighted alternate renderings are produced alongside for fuzzy matching.
"""

import logging
import re
import time
import unicodedata
from dataclasses import dataclass, field

from tripdesk.services.engine import EngineContext

logger = logging.getLogger(__name__)

_QUOTES = str.maketrans({
    "‘": "'", "’": "'", "‚": "'", "‛": "'", "′": "'", "`": "'",
    "“": '"', "”": '"', "„": '"', "″": '"',
    "‐": "-", "‑": "-", "‒": "-", "–": "-", "—": "-",
    "―": "-", "−": "-",
})

_CONNECTORS = frozenset({"and", "or"})
_POSSESSIVE_RE = re.compile(r"(?<=[a-z0-9])'s\b")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class NormalizedText:
    text: str
    tokens: tuple[str, ...]
    # (rendering, weight) pairs, weight < 1.0
    alternates: tuple[tuple[str, float], ...] = ()
    emails: tuple[str, ...] = ()
    partial: bool = False
    words: tuple[str, ...] = field(default=(), repr=False)

    @property
    def slug_form(self) -> str:
        return "-".join(t for t in self.tokens if "@" not in t)


class Normalizer:
    def __init__(self, context: EngineContext):
        self.context = context
        self.budget_ms = context.limits.normalizer_budget_ms

    def fold(self, raw: str) -> str:
        """Unicode to lowercase ASCII with quote and dash variants folded."""
        text = raw.translate(_QUOTES)
        text = unicodedata.normalize("NFKD", text)
        text = "".join(ch for ch in text if not unicodedata.combining(ch))
        return text.encode("ascii", "ignore").decode("ascii").lower()

    def _clean_segment(self, segment: str) -> str:
        segment = segment.replace("&", " and ").replace("+", " and ").replace("/", " or ")
        segment = _POSSESSIVE_RE.sub("", segment)
        segment = segment.replace("'", "")
        return _NON_ALNUM_RE.sub(" ", segment)

    def _split_emails(self, text: str) -> tuple[list[str], list[str]]:
        pieces, emails = [], []
        pos = 0
        for m in self.context.patterns.email.finditer(text):
            pieces.append(self._clean_segment(text[pos:m.start()]))
            pieces.append(f" {m.group(0)} ")
            emails.append(m.group(0))
            pos = m.end()
        pieces.append(self._clean_segment(text[pos:]))
        return pieces, emails

    def normalize(self, raw: str | None) -> NormalizedText:
        if not raw:
            return NormalizedText(text="", tokens=())
        started = time.perf_counter()

        folded = self.fold(raw)
        if self._over_budget(started, "fold", raw):
            tokens = tuple(folded.split())
            return NormalizedText(text=" ".join(tokens), tokens=tokens, partial=True)

        pieces, emails = self._split_emails(folded)
        tokens = tuple("".join(pieces).split())
        text = " ".join(tokens)
        words = tuple(t for t in tokens if "@" not in t)
        if self._over_budget(started, "tokenize", raw):
            return NormalizedText(text=text, tokens=tokens, emails=tuple(emails), partial=True, words=words)

        alternates = self._alternates(tokens)
        partial = self._over_budget(started, "alternates", raw)
        return NormalizedText(
            text=text,
            tokens=tokens,
            alternates=alternates,
            emails=tuple(emails),
            partial=partial,
            words=words,
        )

    def _over_budget(self, started: float, stage: str, raw: str) -> bool:
        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms >= self.budget_ms:
            logger.warning(
                f"Normalizer exceeded {self.budget_ms:.0f}ms budget at stage '{stage}' "
                f"({elapsed_ms:.1f}ms, {len(raw)} chars); continuing with partial result"
            )
            return True
        return False

    def _alternates(self, tokens: tuple[str, ...]) -> tuple[tuple[str, float], ...]:
        base = " ".join(tokens)
        seen = {base}
        out: list[tuple[str, float]] = []

        def add(rendering: str, weight: float) -> None:
            if rendering and rendering not in seen:
                seen.add(rendering)
                out.append((rendering, weight))

        add(" ".join(t for t in tokens if t not in _CONNECTORS), 0.9)
        add(" ".join("&" if t == "and" else t for t in tokens), 0.9)
        add("-".join(t for t in tokens if "@" not in t), 0.85)
        corrected = [self.correct(t) or t for t in tokens]
        add(" ".join(corrected), 0.8)
        add(" ".join(self.phonetic(t) for t in corrected), 0.7)
        return tuple(out)

    def correct(self, token: str) -> str | None:
        return self.context.vocabulary.corrections.get(token)

    def phonetic(self, token: str) -> str:
        """Sound-alike key for a single word; emails and numbers pass through."""
        if "@" in token or not token.isalpha() or len(token) < 3:
            return token
        key = token
        for pattern, replacement in self.context.vocabulary.phonetic_rules:
            key = pattern.sub(replacement, key)
        return key

    def terms(self, normalized: NormalizedText) -> list[str]:
        """Query terms: tokens without stop words, order kept, duplicates dropped."""
        stop = self.context.vocabulary.stop_words
        seen: set[str] = set()
        terms = []
        for token in normalized.tokens:
            if token in stop or token in seen:
                continue
            seen.add(token)
            terms.append(token)
        return terms
