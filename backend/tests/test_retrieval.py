"""Tests for vector indexes and filtered search."""

from __future__ import annotations

import pytest

from fakes import FakeEmbedder, FakeExtractor, bundle
from personal_kb.core.config import Settings
from personal_kb.db.sqlite import SQLiteDatabase
from personal_kb.ingest.pipeline import IngestPipeline
from personal_kb.models.dto import SearchFilters
from personal_kb.retrieval import vector_index as vector_index_module
from personal_kb.retrieval.search import QueryService
from personal_kb.retrieval.vector_index import LinearScanIndex, select_vector_index

PRICING_TEXT = "Our pricing plans include a starter tier and a growth tier for small marketing teams."
PDF_TEXT = "The research paper compares gradient boosting with random forests on tabular benchmarks."
TWEET_TEXT = "Shipping a new sourdough recipe thread today, hydration matters more than flour brand."

PAGES = {
    "https://www.alpha.com/pricing": bundle(PRICING_TEXT, title="Alpha pricing"),
    "https://beta.org/paper.pdf": bundle(PDF_TEXT, type="pdf", title="Boosting paper"),
    "https://x.com/baker/status/1": bundle(TWEET_TEXT, type="twitter", title="@baker"),
}


def test_linear_index_tracks_ids_and_scores_candidates() -> None:
    index = LinearScanIndex(dim=3)
    index.upsert([1, 2], [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    assert index.size == 2
    scores = index.similarities([1.0, 0.0, 0.0], [(1, [1.0, 0.0, 0.0]), (2, [0.0, 1.0, 0.0])])
    assert scores == pytest.approx([1.0, 0.0])
    index.remove([1])
    assert index.size == 1


def test_select_vector_index_without_faiss(monkeypatch: pytest.MonkeyPatch) -> None:
    assert isinstance(select_vector_index(Settings(use_faiss=False)), LinearScanIndex)
    monkeypatch.setattr(vector_index_module, "faiss_available", lambda: False)
    chosen = select_vector_index(Settings(use_faiss=True), dim=16)
    assert isinstance(chosen, LinearScanIndex)
    assert chosen.dim == 16


async def _seed(db: SQLiteDatabase, settings: Settings, index: LinearScanIndex | None = None) -> None:
    pipeline = IngestPipeline(db, settings, FakeExtractor(PAGES), FakeEmbedder(dim=settings.embedding_dim), vector_index=index)
    await pipeline.ingest_url("https://www.alpha.com/pricing", collection="work")
    await pipeline.ingest_url("https://beta.org/paper.pdf", collection="personal")
    await pipeline.ingest_url("https://x.com/baker/status/1", collection="work")


def _service(db: SQLiteDatabase, settings: Settings) -> QueryService:
    return QueryService(db, settings, FakeEmbedder(dim=settings.embedding_dim))


@pytest.mark.asyncio
async def test_rebuild_loads_every_stored_chunk(db: SQLiteDatabase, settings: Settings) -> None:
    live = LinearScanIndex(settings.embedding_dim)
    await _seed(db, settings, live)
    rebuilt = LinearScanIndex(settings.embedding_dim)
    rebuilt.rebuild(db)
    assert rebuilt.size == live.size == 3


@pytest.mark.asyncio
async def test_search_ranks_by_final_score(db: SQLiteDatabase, settings: Settings) -> None:
    await _seed(db, settings)
    result = await _service(db, settings).search(PDF_TEXT, limit=3)

    assert result.candidate_chunks == 3
    assert result.candidate_sources == 3
    assert result.chunks[0].source_url == "https://beta.org/paper.pdf"
    assert result.chunks[0].semantic_similarity == pytest.approx(1.0, abs=1e-5)
    scores = [chunk.final_score for chunk in result.chunks]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_limit_applies_after_candidate_counts(db: SQLiteDatabase, settings: Settings) -> None:
    await _seed(db, settings)
    result = await _service(db, settings).search("pricing", limit=1)
    assert len(result.chunks) == 1
    assert result.candidate_chunks == 3


@pytest.mark.asyncio
async def test_score_components_are_reported(db: SQLiteDatabase, settings: Settings) -> None:
    await _seed(db, settings)
    service = _service(db, settings)
    chunk = (await service.search(TWEET_TEXT, limit=1)).chunks[0]
    assert chunk.source_type == "twitter"
    assert chunk.source_weight == pytest.approx(0.85)
    assert 0.99 <= chunk.recency_boost <= 1.0
    assert chunk.final_score == pytest.approx(
        service.ranking.score(chunk.semantic_similarity, chunk.recency_boost, chunk.source_weight)
    )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("filters", "expected_urls"),
    [
        (SearchFilters(collection="work"), {"https://www.alpha.com/pricing", "https://x.com/baker/status/1"}),
        (SearchFilters(domain="alpha.com"), {"https://www.alpha.com/pricing"}),
        (SearchFilters(domain="https://www.Alpha.com/"), {"https://www.alpha.com/pricing"}),
        (SearchFilters(source="pdf"), {"https://beta.org/paper.pdf"}),
        (SearchFilters(url="https://www.alpha.com/pricing#plans"), {"https://www.alpha.com/pricing"}),
        (SearchFilters(collection="work", source="pdf"), set()),
    ],
)
async def test_filters_restrict_candidates(
    db: SQLiteDatabase,
    settings: Settings,
    filters: SearchFilters,
    expected_urls: set[str],
) -> None:
    await _seed(db, settings)
    result = await _service(db, settings).search("plans", limit=10, filters=filters)
    assert {chunk.source_url for chunk in result.chunks} == expected_urls
    assert result.candidate_sources == len(expected_urls)


def test_search_filters_blank_values_are_ignored() -> None:
    filters = SearchFilters(collection="  ", domain="", url=None)
    assert filters.is_empty()
    assert filters.describe() == "none"
    assert SearchFilters(collection="work", domain="a.com").describe() == "collection=work, domain=a.com"
