"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from personal_kb.core.config import Settings, get_settings
from personal_kb.db.settings import get_runtime_settings
from personal_kb.db.sqlite import SQLiteDatabase
from personal_kb.ingest.embeddings import build_embedding_provider
from personal_kb.ingest.extractors import WebExtractor
from personal_kb.ingest.pipeline import IngestPipeline
from personal_kb.ingest.types import EmbeddingProvider, Extractor
from personal_kb.retrieval import QueryService, RankingEngine, VectorIndex, select_vector_index

_DB: SQLiteDatabase | None = None
_EMBEDDER: EmbeddingProvider | None = None
_EXTRACTOR: Extractor | None = None
_VECTOR_INDEX: VectorIndex | None = None
_RANKING: RankingEngine | None = None
_PIPELINE: IngestPipeline | None = None
_QUERY_SERVICE: QueryService | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_embedder() -> EmbeddingProvider:
    global _EMBEDDER
    if _EMBEDDER is None:
        _EMBEDDER = build_embedding_provider(get_app_settings())
    return _EMBEDDER


def get_extractor() -> Extractor:
    global _EXTRACTOR
    if _EXTRACTOR is None:
        db = get_database()
        _EXTRACTOR = WebExtractor(
            get_app_settings(),
            relay_enabled=lambda: get_runtime_settings(db).browser_relay_fallback_enabled,
        )
    return _EXTRACTOR


def get_vector_index() -> VectorIndex:
    global _VECTOR_INDEX
    if _VECTOR_INDEX is None:
        index = select_vector_index(get_app_settings(), dim=get_embedder().dim)
        index.rebuild(get_database())
        _VECTOR_INDEX = index
    return _VECTOR_INDEX


def get_ranking_engine() -> RankingEngine:
    global _RANKING
    if _RANKING is None:
        _RANKING = RankingEngine.from_settings(get_app_settings())
    return _RANKING


def get_ingest_pipeline() -> IngestPipeline:
    global _PIPELINE
    if _PIPELINE is None:
        _PIPELINE = IngestPipeline(
            database=get_database(),
            settings=get_app_settings(),
            extractor=get_extractor(),
            embedder=get_embedder(),
            ranking=get_ranking_engine(),
            vector_index=get_vector_index(),
        )
    return _PIPELINE


def get_query_service() -> QueryService:
    global _QUERY_SERVICE
    if _QUERY_SERVICE is None:
        _QUERY_SERVICE = QueryService(
            db=get_database(),
            settings=get_app_settings(),
            embedder=get_embedder(),
            ranking=get_ranking_engine(),
            vector_index=get_vector_index(),
        )
    return _QUERY_SERVICE


__all__ = [
    "get_app_settings",
    "get_database",
    "get_embedder",
    "get_extractor",
    "get_vector_index",
    "get_ranking_engine",
    "get_ingest_pipeline",
    "get_query_service",
]
