"""Tests for the relation-graph crawler."""

from __future__ import annotations

import pytest

from fakes import FILLER, FakeEmbedder, FakeExtractor, bundle
from personal_kb.core.config import Settings
from personal_kb.core.errors import EmptyContentFailure, ExtractionFailure, ExtractionTimeout
from personal_kb.db.sqlite import SQLiteDatabase
from personal_kb.ingest.crawler import RelationGraphCrawler
from personal_kb.ingest.types import Section
from personal_kb.retrieval.ranking import RankingEngine
from personal_kb.retrieval.vector_index import LinearScanIndex

ROOT = "https://x.com/alice/status/100"
PARENT = "https://x.com/i/status/99"
QUOTED = "https://x.com/i/status/98"
ARTICLE = "https://blog.example.com/post"


def _crawler(
    db: SQLiteDatabase,
    settings: Settings,
    extractor: FakeExtractor,
    embedder: FakeEmbedder | None = None,
    index: LinearScanIndex | None = None,
) -> RelationGraphCrawler:
    return RelationGraphCrawler(
        db=db,
        settings=settings,
        extractor=extractor,
        embedder=embedder or FakeEmbedder(dim=settings.embedding_dim),
        ranking=RankingEngine.from_settings(settings),
        vector_index=index,
    )


def _count(db: SQLiteDatabase, table: str) -> int:
    return int(db.query_one(f"SELECT COUNT(*) AS c FROM {table}")["c"])


def _edges(db: SQLiteDatabase) -> set[tuple[int, int, str]]:
    rows = db.query("SELECT parent_source_id, child_source_id, relation_type FROM source_relations")
    return {(row["parent_source_id"], row["child_source_id"], row["relation_type"]) for row in rows}


def _id_for(db: SQLiteDatabase, url: str) -> int:
    return int(db.query_one("SELECT id FROM sources WHERE url = ?", [url])["id"])


@pytest.mark.asyncio
async def test_tweet_relations_are_followed_and_linked(db: SQLiteDatabase, settings: Settings) -> None:
    extractor = FakeExtractor(
        {
            ROOT: bundle(
                type="twitter",
                related=[("thread_reply", PARENT), ("quote_of", QUOTED), ("links_to", ARTICLE)],
            ),
            PARENT: bundle(type="twitter"),
            QUOTED: bundle(type="twitter"),
            ARTICLE: bundle(),
        }
    )
    report = await _crawler(db, settings, extractor).crawl(ROOT, collection="default")

    root_id = _id_for(db, ROOT)
    assert report.root_source_id == root_id
    assert len(report.created) == 4
    assert report.failures == []
    assert _edges(db) == {
        (root_id, _id_for(db, PARENT), "thread_reply"),
        (root_id, _id_for(db, QUOTED), "quote_of"),
        (root_id, _id_for(db, ARTICLE), "links_to"),
    }
    assert set(report.edges) == _edges(db)


@pytest.mark.asyncio
async def test_shared_target_is_extracted_once_but_linked_from_each_parent(
    db: SQLiteDatabase, settings: Settings
) -> None:
    a, b, c = "https://a.test/", "https://b.test/", "https://c.test/"
    extractor = FakeExtractor(
        {
            a: bundle(related=[("links_to", b), ("links_to", c)]),
            b: bundle(related=[("links_to", c + "#section")]),
            c: bundle(),
        }
    )
    await _crawler(db, settings, extractor).crawl(a, collection="default")

    assert extractor.calls.count(c) == 1
    ids = {url: _id_for(db, url) for url in (a, b, c)}
    assert _edges(db) == {
        (ids[a], ids[b], "links_to"),
        (ids[a], ids[c], "links_to"),
        (ids[b], ids[c], "links_to"),
    }


@pytest.mark.asyncio
async def test_cycles_terminate_and_link_back(db: SQLiteDatabase, settings: Settings) -> None:
    a, b = "https://a.test/", "https://b.test/"
    extractor = FakeExtractor(
        {
            a: bundle(type="twitter", related=[("thread_reply", b)]),
            b: bundle(type="twitter", related=[("quote_of", a)]),
        }
    )
    report = await _crawler(db, settings, extractor).crawl(a, collection="default")

    assert extractor.calls == [a, b]
    assert _edges(db) == {(_id_for(db, a), _id_for(db, b), "thread_reply"), (_id_for(db, b), _id_for(db, a), "quote_of")}
    assert len(report.created) == 2


@pytest.mark.asyncio
async def test_self_links_are_never_written(db: SQLiteDatabase, settings: Settings) -> None:
    url = "https://a.test/page"
    extractor = FakeExtractor({url: bundle(related=[("links_to", url + "#top"), ("links_to", "HTTPS://A.TEST/page")])})
    report = await _crawler(db, settings, extractor).crawl(url, collection="default")

    assert extractor.calls == [url]
    assert _count(db, "source_relations") == 0
    assert report.edges == []


@pytest.mark.asyncio
async def test_child_failure_is_reported_without_edge(db: SQLiteDatabase, settings: Settings) -> None:
    broken = "https://broken.test/"
    extractor = FakeExtractor(
        {
            ROOT: bundle(type="twitter", related=[("links_to", broken), ("links_to", ARTICLE)]),
            broken: ExtractionFailure(broken, "403 Forbidden"),
            ARTICLE: bundle(),
        }
    )
    report = await _crawler(db, settings, extractor).crawl(ROOT, collection="default")

    assert [failure.url for failure in report.failures] == [broken]
    assert "403" in report.failures[0].error
    assert report.failures[0].depth == 1
    assert _count(db, "sources") == 2
    assert _edges(db) == {(_id_for(db, ROOT), _id_for(db, ARTICLE), "links_to")}
    logged = db.query("SELECT event_type, level FROM ingest_logs WHERE source_url = ?", [broken])
    assert [(row["event_type"], row["level"]) for row in logged] == [("related_failed", "warn")]


@pytest.mark.asyncio
async def test_child_embedding_error_is_contained(db: SQLiteDatabase, settings: Settings) -> None:
    extractor = FakeExtractor({ROOT: bundle(type="twitter", related=[("links_to", ARTICLE)]), ARTICLE: bundle()})
    embedder = FakeEmbedder(dim=settings.embedding_dim, fail_on_call=2)
    report = await _crawler(db, settings, extractor, embedder).crawl(ROOT, collection="default")

    assert report.root_source_id == _id_for(db, ROOT)
    assert [failure.url for failure in report.failures] == [ARTICLE]
    assert _count(db, "sources") == 1
    assert _count(db, "source_relations") == 0
    assert report.edges == []


@pytest.mark.asyncio
async def test_root_failure_propagates(db: SQLiteDatabase, settings: Settings) -> None:
    extractor = FakeExtractor({ROOT: ExtractionFailure(ROOT, "404 Not Found")})
    with pytest.raises(ExtractionFailure):
        await _crawler(db, settings, extractor).crawl(ROOT, collection="default")
    assert _count(db, "sources") == 0


@pytest.mark.asyncio
async def test_unexpected_extractor_errors_become_extraction_failures(db: SQLiteDatabase, settings: Settings) -> None:
    extractor = FakeExtractor({ROOT: RuntimeError("socket closed")})
    with pytest.raises(ExtractionFailure, match="socket closed"):
        await _crawler(db, settings, extractor).crawl(ROOT, collection="default")


@pytest.mark.asyncio
async def test_extraction_timeout(db: SQLiteDatabase, settings: Settings) -> None:
    settings.extraction_timeout_seconds = 0.05
    extractor = FakeExtractor({ROOT: bundle()}, delay=1.0)
    with pytest.raises(ExtractionTimeout):
        await _crawler(db, settings, extractor).crawl(ROOT, collection="default")
    assert _count(db, "sources") == 0


@pytest.mark.asyncio
async def test_empty_content_leaves_nothing_behind(db: SQLiteDatabase, settings: Settings) -> None:
    extractor = FakeExtractor({ARTICLE: bundle("   \n  ")})
    with pytest.raises(EmptyContentFailure, match="zero chunks"):
        await _crawler(db, settings, extractor).crawl(ARTICLE, collection="default")
    assert _count(db, "sources") == 0
    assert _count(db, "chunks") == 0


@pytest.mark.asyncio
async def test_root_embedding_failure_removes_partial_source(db: SQLiteDatabase, settings: Settings) -> None:
    settings.chunk_max_tokens = 10
    settings.chunk_overlap_tokens = 0
    extractor = FakeExtractor({ARTICLE: bundle(FILLER)})
    embedder = FakeEmbedder(dim=settings.embedding_dim, fail_on_call=2)
    index = LinearScanIndex(settings.embedding_dim)
    with pytest.raises(RuntimeError):
        await _crawler(db, settings, extractor, embedder, index).crawl(ARTICLE, collection="default")
    assert _count(db, "sources") == 0
    assert _count(db, "chunks") == 0
    assert index.size == 0


@pytest.mark.asyncio
async def test_existing_source_is_deduplicated(db: SQLiteDatabase, settings: Settings) -> None:
    extractor = FakeExtractor({ARTICLE: bundle()})
    crawler = _crawler(db, settings, extractor)
    first = await crawler.crawl(ARTICLE, collection="default")
    second = await crawler.crawl(ARTICLE + "#comments", collection="default")

    assert second.root_source_id == first.root_source_id
    assert second.root_deduplicated
    assert second.created == []
    assert extractor.calls == [ARTICLE]
    assert _count(db, "sources") == 1


@pytest.mark.asyncio
async def test_known_child_is_linked_without_reextraction(db: SQLiteDatabase, settings: Settings) -> None:
    extractor = FakeExtractor({ARTICLE: bundle(), ROOT: bundle(type="twitter", related=[("links_to", ARTICLE)])})
    crawler = _crawler(db, settings, extractor)
    await crawler.crawl(ARTICLE, collection="default")
    report = await crawler.crawl(ROOT, collection="default")

    assert extractor.calls == [ARTICLE, ROOT]
    assert report.deduplicated == [_id_for(db, ARTICLE)]
    assert _edges(db) == {(_id_for(db, ROOT), _id_for(db, ARTICLE), "links_to")}


@pytest.mark.asyncio
async def test_force_replaces_root_source(db: SQLiteDatabase, settings: Settings) -> None:
    extractor = FakeExtractor({ARTICLE: bundle()})
    index = LinearScanIndex(settings.embedding_dim)
    crawler = _crawler(db, settings, extractor, index=index)
    first = await crawler.crawl(ARTICLE, collection="default")
    extractor.pages[ARTICLE] = bundle("Fresh rewrite of the post with entirely new wording about compost heaps.")
    second = await crawler.crawl(ARTICLE, collection="default", force=True)

    assert second.root_source_id != first.root_source_id
    assert not second.root_deduplicated
    assert _count(db, "sources") == 1
    texts = [row["text"] for row in db.query("SELECT text FROM chunks")]
    assert texts == ["Fresh rewrite of the post with entirely new wording about compost heaps."]
    assert index.size == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "replacement",
    [ExtractionFailure(ARTICLE, "site down"), bundle("   \n  ")],
    ids=["extraction-failure", "empty-content"],
)
async def test_failed_force_keeps_existing_source(db: SQLiteDatabase, settings: Settings, replacement) -> None:
    extractor = FakeExtractor({ARTICLE: bundle()})
    index = LinearScanIndex(settings.embedding_dim)
    crawler = _crawler(db, settings, extractor, index=index)
    first = await crawler.crawl(ARTICLE, collection="default")
    extractor.pages[ARTICLE] = replacement

    with pytest.raises((ExtractionFailure, EmptyContentFailure)):
        await crawler.crawl(ARTICLE, collection="default", force=True)

    assert _id_for(db, ARTICLE) == first.root_source_id
    assert [row["text"] for row in db.query("SELECT text FROM chunks")] == [FILLER]
    assert index.size == 1


@pytest.mark.asyncio
async def test_force_moves_incoming_edges_to_the_replacement(db: SQLiteDatabase, settings: Settings) -> None:
    extractor = FakeExtractor({ROOT: bundle(type="twitter", related=[("links_to", ARTICLE)]), ARTICLE: bundle()})
    crawler = _crawler(db, settings, extractor)
    await crawler.crawl(ROOT, collection="default")
    tweet_id, old_article_id = _id_for(db, ROOT), _id_for(db, ARTICLE)

    extractor.pages[ARTICLE] = bundle("A rewritten article about worm bins and how to keep them from smelling.")
    report = await crawler.crawl(ARTICLE, collection="default", force=True)

    assert report.root_source_id != old_article_id
    assert _count(db, "sources") == 2
    assert _edges(db) == {(tweet_id, report.root_source_id, "links_to")}


@pytest.mark.asyncio
async def test_depth_bound_stops_following_relations(db: SQLiteDatabase, settings: Settings) -> None:
    settings.crawl_max_depth = 1
    a, b, c = "https://a.test/", "https://b.test/", "https://c.test/"
    extractor = FakeExtractor({a: bundle(related=[("links_to", b)]), b: bundle(related=[("links_to", c)]), c: bundle()})
    await _crawler(db, settings, extractor).crawl(a, collection="default")
    assert extractor.calls == [a, b]


@pytest.mark.asyncio
async def test_source_bound_records_skipped_urls(db: SQLiteDatabase, settings: Settings) -> None:
    settings.crawl_max_sources = 2
    a, b, c = "https://a.test/", "https://b.test/", "https://c.test/"
    extractor = FakeExtractor({a: bundle(related=[("links_to", b), ("links_to", c)]), b: bundle(), c: bundle()})
    report = await _crawler(db, settings, extractor).crawl(a, collection="default")

    assert extractor.calls == [a, b]
    assert [(failure.url, failure.error) for failure in report.failures] == [(c, "crawl source limit reached")]


@pytest.mark.asyncio
async def test_chunks_are_contiguous_and_indexed(db: SQLiteDatabase, settings: Settings) -> None:
    sections = [Section("Intro", FILLER), Section("Details", FILLER + " " + FILLER)]
    extractor = FakeExtractor({ARTICLE: bundle(FILLER, sections=sections)})
    index = LinearScanIndex(settings.embedding_dim)
    report = await _crawler(db, settings, extractor, index=index).crawl(ARTICLE, collection="default")

    rows = db.query(
        "SELECT chunk_index, section_title, dim FROM chunks WHERE source_id = ? ORDER BY chunk_index",
        [report.root_source_id],
    )
    assert [row["chunk_index"] for row in rows] == list(range(len(rows)))
    assert [row["section_title"] for row in rows] == ["Intro", "Details"]
    assert all(row["dim"] == settings.embedding_dim for row in rows)
    assert index.size == len(rows) == report.chunk_count


@pytest.mark.asyncio
async def test_explicit_weight_applies_to_root_only(db: SQLiteDatabase, settings: Settings) -> None:
    extractor = FakeExtractor({ROOT: bundle(type="twitter", related=[("links_to", ARTICLE)]), ARTICLE: bundle(type="pdf")})
    await _crawler(db, settings, extractor).crawl(ROOT, collection="reading", source_weight=2.5)

    rows = {row["url"]: row for row in db.query("SELECT url, source_weight, collection FROM sources")}
    assert rows[ROOT]["source_weight"] == 2.5
    assert rows[ARTICLE]["source_weight"] == pytest.approx(1.1)
    assert {row["collection"] for row in rows.values()} == {"reading"}
