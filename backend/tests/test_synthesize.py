"""Tests for text cleanup and answer synthesis."""

from fakes import ranked_chunk
from personal_kb.models.entities import Citation
from personal_kb.retrieval.offers import OfferCatalog
from personal_kb.retrieval.synthesize import (
    STRUCTURED_FALLBACK_NOTE,
    TOO_NOISY_LINE,
    detect_intent,
    extract_key_spans,
    filter_noisy_chunks,
    synthesize,
)
from personal_kb.retrieval.text import (
    clean_chunk_text,
    deduplicate_spans,
    is_noise_line,
    split_sentences,
    truncate_bullet,
)

CATALOG = OfferCatalog({"Alpha Plan": ["alpha plan"], "Beta Plan": ["beta plan"]})
ONE_SOURCE = {1: Citation(index=1, title="Example page", url="https://example.com/page")}


def test_detect_intent() -> None:
    assert detect_intent("What are the pricing tiers?") == "offer_structure"
    assert detect_intent("Describe the offer structure") == "offer_structure"
    assert detect_intent("How do I prune tomatoes?") == "general"


def test_noise_lines_and_cleanup() -> None:
    assert is_noise_line("Menu")
    assert is_noise_line("Skip to content")
    assert is_noise_line("42")
    assert is_noise_line("Home page")
    assert not is_noise_line("Home gardeners often overwater seedlings in spring, which leads to root rot and weak stems.")
    text = "Skip to content\nHome\nTomatoes need   six hours of sun.\n©"
    assert clean_chunk_text(text) == "Tomatoes need six hours of sun."


def test_split_sentences_keeps_abbreviations_together() -> None:
    text = "Dr. Smith recommends compost. It works e.g. for clay soils too. Ok."
    assert split_sentences(text) == ["Dr. Smith recommends compost.", "It works e.g. for clay soils too."]


def test_deduplicate_spans_drops_contained_and_empty() -> None:
    spans = ["Water deeply once a week.", "water deeply once a week", "Water deeply", "---", "Mulch helps."]
    assert deduplicate_spans(spans) == ["Water deeply once a week.", "Mulch helps."]


def test_truncate_bullet_prefers_word_boundary() -> None:
    text = "word " * 50
    truncated = truncate_bullet(text.strip())
    assert truncated.endswith("...")
    assert len(truncated) <= 163
    assert not truncated[:-3].endswith(" ")
    assert truncate_bullet("short") == "short"


def test_filter_noisy_chunks_by_section_title() -> None:
    chunks = [ranked_chunk("Useful text here.", section_title="Footer"), ranked_chunk("Also useful.", section_title=None)]
    assert [chunk.section_title for chunk in filter_noisy_chunks(chunks)] == [None]


def test_key_spans_prefer_query_terms() -> None:
    chunk = ranked_chunk(
        "Tomatoes love warm weather and full sun. Basil grows well beside tomatoes in pots. Cats dislike citrus peels."
    )
    spans = extract_key_spans([chunk], "Where should basil grow?", max_spans=2)
    assert spans[0].text == "Basil grows well beside tomatoes in pots."
    assert len(spans) == 2


def test_general_answer_cites_single_source_once() -> None:
    chunk = ranked_chunk(
        "Tomatoes need at least six hours of direct sun each day. Water them deeply twice per week in summer."
    )
    result = synthesize("How should I grow tomatoes?", [chunk], ONE_SOURCE)
    assert not result.is_structured
    assert all(line.startswith("- ") for line in result.answer_lines)
    assert result.answer_lines[-1].endswith(" [1]")
    assert sum(line.endswith("[1]") for line in result.answer_lines) == 1


def test_general_answer_cites_each_span_with_multiple_sources() -> None:
    chunks = [
        ranked_chunk("Tomatoes need at least six hours of direct sun each day.", source_id=1, chunk_id=1),
        ranked_chunk("Peppers prefer slightly warmer soil than tomatoes do.", source_id=2, chunk_id=2),
    ]
    citations = {
        1: Citation(index=1, title="Tomatoes", url="https://a.test/"),
        2: Citation(index=2, title="Peppers", url="https://b.test/"),
    }
    result = synthesize("Tomatoes and peppers growing tips", chunks, citations)
    assert sorted(line[-3:] for line in result.answer_lines) == ["[1]", "[2]"]


def test_noisy_chunks_produce_the_noise_line() -> None:
    result = synthesize("Anything?", [ranked_chunk("Menu\nHome\nLogin")], ONE_SOURCE)
    assert result.answer_lines == [TOO_NOISY_LINE]
    assert result.low_confidence


def test_low_scores_flag_low_confidence() -> None:
    chunk = ranked_chunk("Tomatoes need at least six hours of direct sun each day.", score=0.1)
    assert synthesize("tomato sun", [chunk], ONE_SOURCE).low_confidence


def test_structured_answer_lists_offers_and_cta_flow() -> None:
    chunks = [
        ranked_chunk(
            "Alpha Plan is designed for solo founders who are just starting out. It costs $50/mo. "
            "Join the Alpha waitlist today.",
            chunk_id=1,
            section_title="Alpha Plan",
        ),
        ranked_chunk(
            "Beta Plan is built for growing agencies with larger teams. Pricing starts at $200/mo. "
            "Book a strategy call now.",
            chunk_id=2,
            section_title="Beta Plan",
        ),
    ]
    result = synthesize("What are the plans and pricing?", chunks, ONE_SOURCE, CATALOG)
    assert result.is_structured
    assert result.answer_lines[:3] == [
        "Offer structure:",
        "- Alpha Plan: solo founders who are just starting out ($50/mo)",
        "- Beta Plan: growing agencies with larger teams ($200/mo)",
    ]
    assert result.answer_lines[3:] == [
        "",
        "CTA flow:",
        "- Join the Alpha waitlist today",
        "- Book a strategy call now [1]",
    ]


def test_structured_falls_back_when_offers_are_unclear() -> None:
    chunk = ranked_chunk("Alpha Plan is our only listed package and it is suitable for most small teams.")
    result = synthesize("What is the pricing?", [chunk], ONE_SOURCE, CATALOG)
    assert not result.is_structured
    assert result.low_confidence
    assert result.answer_lines[-1] == STRUCTURED_FALLBACK_NOTE
    assert result.answer_lines[-2] == ""
