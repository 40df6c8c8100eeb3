"""Retrieval orchestration components."""

from .ranking import RankingEngine, RankingWeights
from .vector_index import VectorIndex, select_vector_index
from .search import QueryService, SearchResult
from .synthesize import synthesize, detect_intent

__all__ = [
    "RankingEngine",
    "RankingWeights",
    "VectorIndex",
    "select_vector_index",
    "QueryService",
    "SearchResult",
    "synthesize",
    "detect_intent",
]
