"""Embedding utilities."""

from __future__ import annotations

import hashlib
import logging
import math
import re
from array import array
from dataclasses import dataclass
from typing import Iterable, Sequence

import httpx

from personal_kb.core.config import Settings

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    model: str
    dim: int
    backend: str


class EmbeddingModel:
    """Lightweight hashed embedding model with deterministic output."""

    def __init__(self, model_name: str = "hashed", dim: int = 384) -> None:
        self.model_name = model_name
        self._dim = dim
        self._backend = "hashed"

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def backend(self) -> str:
        return self._backend

    def encode(self, texts: Iterable[str]) -> EmbeddingBatch:
        vectors = [self.embed_sync(text) for text in texts]
        return EmbeddingBatch(vectors=vectors, model=self.model_name, dim=self._dim, backend=self._backend)

    def embed_sync(self, text: str) -> list[float]:
        vector = [0.0] * self._dim
        for token in _tokenize(text):
            vector[_hash_token(token, self._dim)] += 1.0
        _normalize(vector)
        return vector

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)


class RemoteEmbeddingProvider:
    """OpenAI-compatible embeddings endpoint with a hashed local fallback.

    ``embed`` never raises: HTTP errors, malformed payloads and vectors of the wrong
    dimension all degrade to the deterministic local embedding.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model_name: str,
        dim: int = 384,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.model_name = model_name
        self.timeout = timeout
        self._transport = transport
        self._fallback = EmbeddingModel(model_name="hashed", dim=dim)

    @property
    def dim(self) -> int:
        return self._fallback.dim

    @property
    def backend(self) -> str:
        return "remote"

    async def embed(self, text: str) -> list[float]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"model": self.model_name, "input": text, "dimensions": self.dim},
                )
                response.raise_for_status()
                payload = response.json()
            vector = [float(value) for value in payload["data"][0]["embedding"]]
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
            logger.warning("Remote embedding failed, using local fallback: %s", exc)
            return self._fallback.embed_sync(text)
        if len(vector) != self.dim:
            logger.warning("Remote embedding returned dim=%s, expected %s; using local fallback", len(vector), self.dim)
            return self._fallback.embed_sync(text)
        return vector


def build_embedding_provider(settings: Settings) -> EmbeddingModel | RemoteEmbeddingProvider:
    if settings.embedding_api_key:
        return RemoteEmbeddingProvider(
            api_url=settings.embedding_api_url,
            api_key=settings.embedding_api_key,
            model_name=settings.embedding_model,
            dim=settings.embedding_dim,
            timeout=settings.embedding_timeout_seconds,
        )
    return EmbeddingModel(model_name="hashed", dim=settings.embedding_dim)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    denom = math.sqrt(norm_a) * math.sqrt(norm_b)
    return dot / denom if denom else 0.0


def vector_to_bytes(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def vector_from_bytes(blob: bytes) -> list[float]:
    arr = array("f")
    arr.frombytes(blob)
    return arr.tolist()


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingModel",
    "EmbeddingBatch",
    "RemoteEmbeddingProvider",
    "build_embedding_provider",
    "cosine_similarity",
    "vector_to_bytes",
    "vector_from_bytes",
]
