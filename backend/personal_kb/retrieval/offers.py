"""Structured offer extraction with section- and sentence-scoped fields."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Literal, Mapping, Sequence

from personal_kb.core.config import DEFAULT_OFFER_CATALOG
from personal_kb.models.entities import RankedChunk
from personal_kb.retrieval.text import clean_chunk_text, split_sentences, truncate_bullet

OfferScope = Literal["section", "sentence"]

MIN_CLEAN_OFFERS = 2
CTA_MIN_WORDS = 2
CTA_MAX_WORDS = 7
MAX_PRICE_CHARS = 40

# "$500k", "$1.2M" and "$3 billion" are revenue figures, not prices.
CLEAN_PRICE_RE = re.compile(
    r"\$(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{2})?"
    r"(?!,?\d|\.\d|\s?(?:[kmb]|mm|bn|million|billion|thousand)\b)"
    r"(?:\s*(?:/\s*|per\s+|a\s+|each\s+)?"
    r"(?:mo(?:nth)?|monthly|yr|year|annually|week|wk|person|seat|member|producer|user)\b)?",
    re.I,
)
CTA_BUTTON_RE = re.compile(
    r"\b(join|apply|book|schedule|start|enroll|sign\s*up|get\s+started|buy|purchase|reserve|claim|try|watch|download)\b",
    re.I,
)
BEST_FOR_RE = re.compile(
    r"\b(?:for|designed for|ideal for|best for|built for|perfect for|suited for|tailored (?:for|to)|helps?"
    r"|aimed at|targeting|who:?)\s+(.{10,120}?)(?:\.|$)",
    re.I,
)
_CLAUSE_SPLIT_RE = re.compile(r"[,;:–—]")
_TRAILING_PUNCT_RE = re.compile(r"[.!?]+$")


class OfferCatalog:
    """Whitelist of canonical offer names and the aliases that identify them."""

    def __init__(self, entries: Mapping[str, Iterable[str]] | None = None) -> None:
        source = DEFAULT_OFFER_CATALOG if entries is None else entries
        catalog: list[tuple[str, tuple[str, ...]]] = []
        for canonical, aliases in source.items():
            names = [alias.lower().strip() for alias in aliases if alias and alias.strip()]
            if canonical.lower() not in names:
                names.insert(0, canonical.lower())
            catalog.append((canonical, tuple(names)))
        self._entries = tuple(catalog)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def names(self) -> list[str]:
        return [canonical for canonical, _ in self._entries]

    def match(self, text: str) -> str | None:
        lower = text.lower()
        for canonical, aliases in self._entries:
            if any(alias in lower for alias in aliases):
                return canonical
        return None


@dataclass(frozen=True, slots=True)
class StructuredOffer:
    """An offer whose fields all come from one bounded span.

    ``scope`` records whether that span was a whole titled section or a single
    sentence.
    """

    offer_name: str
    scope: OfferScope
    best_for: str | None = None
    price: str | None = None
    cta_text: str | None = None


def match_canonical_offer(text: str, catalog: OfferCatalog | None = None) -> str | None:
    return (catalog or OfferCatalog()).match(text)


def extract_clean_price(text: str) -> str | None:
    match = CLEAN_PRICE_RE.search(text)
    if match is None:
        return None
    raw = match.group(0).strip()
    if len(raw) < 2 or len(raw) > MAX_PRICE_CHARS:
        return None
    return raw


def _word_count(text: str) -> int:
    return len(text.split())


def extract_clean_cta(text: str) -> str | None:
    """Find a short (2-7 word) call to action, preferring a whole sentence over a clause."""
    for sentence in split_sentences(text):
        if not CTA_BUTTON_RE.search(sentence):
            continue
        if CTA_MIN_WORDS <= _word_count(sentence) <= CTA_MAX_WORDS:
            return _TRAILING_PUNCT_RE.sub("", sentence).strip()
        for clause in _CLAUSE_SPLIT_RE.split(sentence):
            trimmed = clause.strip()
            if CTA_BUTTON_RE.search(trimmed) and CTA_MIN_WORDS <= _word_count(trimmed) <= CTA_MAX_WORDS:
                return _TRAILING_PUNCT_RE.sub("", trimmed).strip()
    return None


def extract_best_for(text: str) -> str | None:
    match = BEST_FOR_RE.search(text)
    if match is None:
        return None
    raw = match.group(1).strip()
    return raw if len(raw) >= 5 else None


def _offer_from_span(name: str, span: str, scope: OfferScope) -> StructuredOffer:
    return StructuredOffer(
        offer_name=name,
        scope=scope,
        best_for=extract_best_for(span),
        price=extract_clean_price(span),
        cta_text=extract_clean_cta(span),
    )


def group_sections(chunks: Sequence[RankedChunk]) -> list[tuple[str | None, str]]:
    """Cleaned text per section title, in first-appearance order."""
    grouped: dict[str | None, list[str]] = {}
    for chunk in chunks:
        grouped.setdefault(chunk.section_title or None, []).append(clean_chunk_text(chunk.text))
    return [(title, " ".join(texts)) for title, texts in grouped.items()]


def extract_structured_offers(
    chunks: Sequence[RankedChunk],
    catalog: OfferCatalog | None = None,
) -> list[StructuredOffer]:
    """Extract at most one offer per canonical name.

    Sections whose title names an offer are read first and their fields come only
    from that section. Remaining sections are scanned sentence by sentence and each
    mention takes fields only from its own sentence.
    """
    catalog = catalog or OfferCatalog()
    sections = group_sections(chunks)
    offers: list[StructuredOffer] = []
    seen: set[str] = set()
    untitled: list[str] = []

    for title, text in sections:
        name = catalog.match(title) if title else None
        if name is None or name in seen:
            untitled.append(text)
            continue
        seen.add(name)
        offers.append(_offer_from_span(name, text, "section"))

    for text in untitled:
        for sentence in split_sentences(text):
            name = catalog.match(sentence)
            if name is None or name in seen:
                continue
            seen.add(name)
            offers.append(_offer_from_span(name, sentence, "sentence"))

    return offers


def passes_quality_gate(offers: Sequence[StructuredOffer], catalog: OfferCatalog | None = None) -> bool:
    catalog = catalog or OfferCatalog()
    clean = [offer for offer in offers if catalog.match(offer.offer_name) is not None]
    return len(clean) >= MIN_CLEAN_OFFERS


def format_offer_bullet(offer: StructuredOffer) -> str:
    line = offer.offer_name
    if offer.best_for:
        line += f": {offer.best_for}"
    if offer.price:
        line += f" ({offer.price})"
    return truncate_bullet(line)


__all__ = [
    "OfferCatalog",
    "StructuredOffer",
    "match_canonical_offer",
    "extract_clean_price",
    "extract_clean_cta",
    "extract_best_for",
    "group_sections",
    "extract_structured_offers",
    "passes_quality_gate",
    "format_offer_bullet",
]
