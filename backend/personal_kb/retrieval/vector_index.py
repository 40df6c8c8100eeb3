"""Vector index strategies selected once at startup."""

from __future__ import annotations

import importlib
import importlib.util
from abc import ABC, abstractmethod
from typing import Any, Sequence

from personal_kb.core.config import Settings
from personal_kb.core.logging import get_logger
from personal_kb.db.sqlite import SQLiteDatabase
from personal_kb.ingest.embeddings import cosine_similarity, vector_from_bytes

logger = get_logger(__name__)

Candidate = tuple[int, Sequence[float]]


class VectorIndex(ABC):
    """Similarity backend used by the query service and kept in sync by the crawler."""

    name = "abstract"

    def __init__(self, dim: int) -> None:
        self.dim = dim

    @property
    @abstractmethod
    def size(self) -> int:
        ...

    @abstractmethod
    def similarities(self, query: Sequence[float], candidates: Sequence[Candidate]) -> list[float]:
        """Cosine similarity of ``query`` to each candidate, in candidate order."""

    @abstractmethod
    def upsert(self, ids: Sequence[int], vectors: Sequence[Sequence[float]]) -> None:
        ...

    @abstractmethod
    def remove(self, ids: Sequence[int]) -> None:
        ...

    def rebuild(self, db: SQLiteDatabase) -> None:
        rows = db.query("SELECT id, embedding FROM chunks ORDER BY id")
        self.reset()
        if rows:
            self.upsert([int(row["id"]) for row in rows], [vector_from_bytes(row["embedding"]) for row in rows])

    @abstractmethod
    def reset(self) -> None:
        ...


class LinearScanIndex(VectorIndex):
    """Scores every candidate against its stored vector."""

    name = "linear"

    def __init__(self, dim: int) -> None:
        super().__init__(dim)
        self._ids: set[int] = set()

    @property
    def size(self) -> int:
        return len(self._ids)

    def similarities(self, query: Sequence[float], candidates: Sequence[Candidate]) -> list[float]:
        return [cosine_similarity(query, vector) for _, vector in candidates]

    def upsert(self, ids: Sequence[int], vectors: Sequence[Sequence[float]]) -> None:
        self._ids.update(int(identifier) for identifier in ids)

    def remove(self, ids: Sequence[int]) -> None:
        self._ids.difference_update(int(identifier) for identifier in ids)

    def reset(self) -> None:
        self._ids = set()


class FaissIndex(VectorIndex):
    """Inner-product FAISS index over L2-normalised vectors, keyed by chunk id."""

    name = "faiss"

    def __init__(self, dim: int) -> None:
        super().__init__(dim)
        self._faiss: Any = importlib.import_module("faiss")
        self._np: Any = importlib.import_module("numpy")
        self._index = self._new_index()

    def _new_index(self) -> Any:
        return self._faiss.IndexIDMap2(self._faiss.IndexFlatIP(self.dim))

    @property
    def size(self) -> int:
        return int(self._index.ntotal)

    def _matrix(self, vectors: Sequence[Sequence[float]]) -> Any:
        matrix = self._np.ascontiguousarray(self._np.asarray(vectors, dtype=self._np.float32).reshape(-1, self.dim))
        self._faiss.normalize_L2(matrix)
        return matrix

    def upsert(self, ids: Sequence[int], vectors: Sequence[Sequence[float]]) -> None:
        if not ids:
            return
        for vector in vectors:
            if len(vector) != self.dim:
                raise ValueError("Vector dimension mismatch")
        id_array = self._np.asarray(list(ids), dtype=self._np.int64)
        self._index.remove_ids(id_array)
        self._index.add_with_ids(self._matrix(vectors), id_array)

    def remove(self, ids: Sequence[int]) -> None:
        if ids:
            self._index.remove_ids(self._np.asarray(list(ids), dtype=self._np.int64))

    def reset(self) -> None:
        self._index = self._new_index()

    def similarities(self, query: Sequence[float], candidates: Sequence[Candidate]) -> list[float]:
        if not candidates:
            return []
        if len(query) != self.dim or self.size == 0:
            return [cosine_similarity(query, vector) for _, vector in candidates]
        scores, labels = self._index.search(self._matrix([query]), self.size)
        score_map = {int(label): float(score) for score, label in zip(scores[0], labels[0]) if label >= 0}
        return [
            score_map[chunk_id] if chunk_id in score_map else cosine_similarity(query, vector)
            for chunk_id, vector in candidates
        ]


def faiss_available() -> bool:
    return importlib.util.find_spec("faiss") is not None and importlib.util.find_spec("numpy") is not None


def select_vector_index(settings: Settings, dim: int | None = None) -> VectorIndex:
    """Pick the index strategy once; FAISS only when requested and importable."""
    dim = dim or settings.embedding_dim
    if settings.use_faiss:
        if faiss_available():
            logger.info("Using FAISS vector index (dim=%s)", dim)
            return FaissIndex(dim)
        logger.warning("use_faiss is set but faiss is not installed; using linear scan")
    return LinearScanIndex(dim)


__all__ = ["VectorIndex", "LinearScanIndex", "FaissIndex", "faiss_available", "select_vector_index"]
