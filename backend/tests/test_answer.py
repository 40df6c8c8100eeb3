"""End-to-end ingest then answer tests."""

from __future__ import annotations

import pytest

from fakes import FakeEmbedder, FakeExtractor, bundle
from personal_kb.core.config import Settings
from personal_kb.db.sqlite import SQLiteDatabase
from personal_kb.ingest.pipeline import IngestPipeline
from personal_kb.ingest.types import Section
from personal_kb.models.dto import SearchFilters
from personal_kb.retrieval.search import QueryService

PRICING_URL = "https://www.acme.test/pricing"
GARDEN_URL = "https://garden.test/tomatoes"

PRICING_SECTIONS = [
    Section(
        "Alpha Plan",
        "Alpha Plan is designed for solo founders who are just starting out. It costs $50/mo. "
        "Join the Alpha waitlist today.",
    ),
    Section(
        "Beta Plan",
        "Beta Plan is built for growing agencies with larger teams. Pricing starts at $200/mo. "
        "Book a strategy call now.",
    ),
    Section(
        "Company Background",
        "We reached $500k annually in recurring revenue last year. Our team works remotely across three continents.",
    ),
]


@pytest.fixture
def offer_settings(settings: Settings) -> Settings:
    settings.offer_catalog = {"Alpha Plan": ["alpha plan"], "Beta Plan": ["beta plan"]}
    return settings


async def _ingest(db: SQLiteDatabase, settings: Settings) -> None:
    pages = {
        PRICING_URL: bundle(
            "\n\n".join(f"{section.title}\n{section.text}" for section in PRICING_SECTIONS),
            title="Acme pricing",
            sections=PRICING_SECTIONS,
        ),
        GARDEN_URL: bundle(
            "Tomatoes need at least six hours of direct sun each day. Water them deeply twice per week in summer.",
            title="Growing tomatoes",
        ),
    }
    pipeline = IngestPipeline(db, settings, FakeExtractor(pages), FakeEmbedder(dim=settings.embedding_dim))
    await pipeline.ingest_url(PRICING_URL, collection="business")
    await pipeline.ingest_url(GARDEN_URL, collection="garden")


def _service(db: SQLiteDatabase, settings: Settings) -> QueryService:
    return QueryService(db, settings, FakeEmbedder(dim=settings.embedding_dim))


@pytest.mark.asyncio
async def test_offer_question_gets_structured_answer(db: SQLiteDatabase, offer_settings: Settings) -> None:
    await _ingest(db, offer_settings)
    answer = await _service(db, offer_settings).answer(
        "what are our pricing plans?", SearchFilters(collection="business")
    )

    lines = answer.splitlines()
    assert lines[0] == "Answer:"
    assert lines[1] == "Offer structure:"
    assert "- Alpha Plan: solo founders who are just starting out ($50/mo)" in lines
    assert "- Beta Plan: growing agencies with larger teams ($200/mo)" in lines
    assert "CTA flow:" in lines
    assert "$500k" not in answer
    assert all(len(line) <= 170 for line in lines if line.startswith("- "))
    assert f"  [1] Acme pricing ({PRICING_URL})" in lines
    assert "  Filters: collection=business" in lines
    assert "  Candidate chunks: 3" in lines
    assert "  Candidate sources: 1" in lines
    assert "  Returned: 3 chunks" in lines


@pytest.mark.asyncio
async def test_general_question_cites_in_first_appearance_order(db: SQLiteDatabase, settings: Settings) -> None:
    await _ingest(db, settings)
    answer = await _service(db, settings).answer(
        "Tomatoes need at least six hours of direct sun each day. Water them deeply twice per week in summer."
    )

    citation_lines = [line for line in answer.splitlines() if line.startswith("  [")]
    assert citation_lines[0] == f"  [1] Growing tomatoes ({GARDEN_URL})"
    assert citation_lines[1] == f"  [2] Acme pricing ({PRICING_URL})"
    assert "  Filters: none" in answer
    assert "  Candidate sources: 2" in answer


@pytest.mark.asyncio
async def test_no_results_with_filters_suggests_broadening(db: SQLiteDatabase, settings: Settings) -> None:
    await _ingest(db, settings)
    answer = await _service(db, settings).answer("tomatoes", SearchFilters(collection="missing", source="pdf"))

    assert answer.startswith("No matching knowledge found.")
    assert "Active filters: collection=missing, source=pdf" in answer
    assert "pkb collections" in answer


@pytest.mark.asyncio
async def test_empty_store_suggests_ingesting(db: SQLiteDatabase, settings: Settings) -> None:
    answer = await _service(db, settings).answer("anything at all?")
    assert answer.splitlines() == ["No matching knowledge found.", "Ingest some content first:", "  pkb ingest <url>"]
