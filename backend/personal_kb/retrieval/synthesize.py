"""Turn ranked chunks and a question into answer lines."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal, Mapping, Sequence

from personal_kb.models.entities import Citation, RankedChunk
from personal_kb.retrieval.offers import (
    OfferCatalog,
    extract_clean_cta,
    extract_structured_offers,
    format_offer_bullet,
    passes_quality_gate,
)
from personal_kb.retrieval.text import (
    clean_chunk_text,
    deduplicate_spans,
    is_noisy_section,
    split_sentences,
    truncate_bullet,
)

AnswerIntent = Literal["offer_structure", "general"]

OFFER_KEYWORDS_RE = re.compile(
    r"\b(offer|pricing|price|plans?|packages?|tiers?|bundle|subscription|cost|rate)\b", re.I
)
OFFER_COMPOUND_RE = re.compile(
    r"\b(offer|pricing|price)\b.*\bstructure\b|\bstructure\b.*\b(offer|pricing|price)\b", re.I
)
STOP_WORDS = frozenset(
    "what is the our a an of and or for to in on how do does are we my their its this that".split()
)
_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")

MAX_BULLETS = 6
MAX_CTAS = 3
LOW_SCORE_THRESHOLD = 0.3
NOISY_TEXT_CHARS = 30

TOO_NOISY_LINE = (
    "- Retrieved text is too noisy for confident synthesis. Try ingesting cleaner sources or narrowing filters."
)
STRUCTURED_FALLBACK_NOTE = "  Note: Could not confidently extract structured offers. Showing general synthesis."


@dataclass(slots=True)
class SynthesisResult:
    answer_lines: list[str] = field(default_factory=list)
    is_structured: bool = False
    low_confidence: bool = False


@dataclass(slots=True)
class ScoredSpan:
    text: str
    source_id: int
    score: float


def detect_intent(question: str) -> AnswerIntent:
    if OFFER_KEYWORDS_RE.search(question) or OFFER_COMPOUND_RE.search(question):
        return "offer_structure"
    return "general"


def filter_noisy_chunks(chunks: Sequence[RankedChunk]) -> list[RankedChunk]:
    return [chunk for chunk in chunks if not is_noisy_section(chunk.section_title)]


def query_terms(question: str) -> list[str]:
    words = _NON_WORD_RE.sub("", question.lower()).split()
    return [word for word in words if len(word) > 2 and word not in STOP_WORDS]


def span_relevance(span: str, terms: Sequence[str]) -> float:
    if not terms:
        return 0.0
    lower = span.lower()
    return sum(1 for term in terms if term in lower) / len(terms)


def extract_key_spans(
    chunks: Sequence[RankedChunk],
    question: str,
    max_spans: int = MAX_BULLETS,
) -> list[ScoredSpan]:
    """Score every sentence, then keep the best non-duplicate spans.

    Score is ``(0.5 * chunk score + 0.5 * term overlap)``, decayed up to 30% by
    position within the chunk and by 20% for sentences over 200 characters.
    """
    terms = query_terms(question)
    spans: list[ScoredSpan] = []
    for chunk in chunks:
        sentences = split_sentences(clean_chunk_text(chunk.text))
        for position, sentence in enumerate(sentences):
            relevance = span_relevance(sentence, terms)
            position_boost = 1 - (position / max(len(sentences), 1)) * 0.3
            length_penalty = 0.8 if len(sentence) > 200 else 1.0
            score = (chunk.final_score * 0.5 + relevance * 0.5) * position_boost * length_penalty
            spans.append(ScoredSpan(text=sentence, source_id=chunk.source_id, score=score))

    spans.sort(key=lambda span: span.score, reverse=True)
    first_by_text: dict[str, ScoredSpan] = {}
    for span in spans:
        first_by_text.setdefault(span.text, span)
    unique = deduplicate_spans(span.text for span in spans)
    return [first_by_text[text] for text in unique[:max_spans]]


def synthesize(
    question: str,
    chunks: Sequence[RankedChunk],
    citations: Mapping[int, Citation],
    catalog: OfferCatalog | None = None,
) -> SynthesisResult:
    """Build answer lines; ``citations`` maps source id to its citation."""
    filtered = filter_noisy_chunks(chunks)
    working = filtered or list(chunks)

    count = max(len(working), 1)
    mean_score = sum(chunk.final_score for chunk in working) / count
    low_confidence = mean_score < LOW_SCORE_THRESHOLD
    mean_clean_len = sum(len(clean_chunk_text(chunk.text)) for chunk in working) / count
    if mean_clean_len < NOISY_TEXT_CHARS:
        return SynthesisResult(answer_lines=[TOO_NOISY_LINE], is_structured=False, low_confidence=True)

    if detect_intent(question) == "offer_structure":
        return _synthesize_structured(question, working, citations, catalog or OfferCatalog(), low_confidence)
    return _synthesize_general(question, working, citations, low_confidence)


def _synthesize_general(
    question: str,
    chunks: Sequence[RankedChunk],
    citations: Mapping[int, Citation],
    low_confidence: bool,
) -> SynthesisResult:
    single_source = len(citations) == 1
    bullets: list[str] = []
    for span in extract_key_spans(chunks, question, MAX_BULLETS):
        citation = citations.get(span.source_id)
        ref = f" [{citation.index}]" if citation is not None and not single_source else ""
        bullets.append(f"- {truncate_bullet(span.text)}{ref}")

    if single_source and bullets:
        only = next(iter(citations.values()))
        bullets[-1] += f" [{only.index}]"
    return SynthesisResult(answer_lines=bullets, is_structured=False, low_confidence=low_confidence)


def _synthesize_structured(
    question: str,
    chunks: Sequence[RankedChunk],
    citations: Mapping[int, Citation],
    catalog: OfferCatalog,
    low_confidence: bool,
) -> SynthesisResult:
    offers = extract_structured_offers(chunks, catalog)
    if not passes_quality_gate(offers, catalog):
        general = _synthesize_general(question, chunks, citations, True)
        return SynthesisResult(
            answer_lines=[*general.answer_lines, "", STRUCTURED_FALLBACK_NOTE],
            is_structured=False,
            low_confidence=True,
        )

    lines = ["Offer structure:"]
    lines.extend(f"- {format_offer_bullet(offer)}" for offer in offers)

    ctas = deduplicate_spans(offer.cta_text for offer in offers if offer.cta_text)
    if len(ctas) < MAX_CTAS:
        extra = extract_clean_cta(" ".join(clean_chunk_text(chunk.text) for chunk in chunks))
        if extra and len(deduplicate_spans([*ctas, extra])) > len(ctas):
            ctas.append(extra)
    if ctas:
        lines.extend(["", "CTA flow:"])
        lines.extend(f"- {cta}" for cta in ctas[:MAX_CTAS])

    if len(citations) == 1:
        only = next(iter(citations.values()))
        last_bullet = max((i for i, line in enumerate(lines) if line.startswith("- ")), default=None)
        if last_bullet is not None:
            lines[last_bullet] += f" [{only.index}]"
    return SynthesisResult(answer_lines=lines, is_structured=True, low_confidence=low_confidence)


__all__ = [
    "AnswerIntent",
    "SynthesisResult",
    "ScoredSpan",
    "detect_intent",
    "filter_noisy_chunks",
    "query_terms",
    "span_relevance",
    "extract_key_spans",
    "synthesize",
]
