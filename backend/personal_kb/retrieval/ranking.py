"""Hybrid ranking: semantic similarity, recency decay and per-type source weight."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from personal_kb.core.config import Settings
from personal_kb.core.logging import get_logger
from personal_kb.utils.time import days_since

logger = get_logger(__name__)

DEFAULT_HALF_LIFE_DAYS = 30.0

SOURCE_WEIGHT_PROFILES: Mapping[str, Mapping[str, float]] = MappingProxyType(
    {
        "balanced": MappingProxyType(
            {"article": 1.0, "pdf": 1.1, "youtube": 0.9, "twitter": 0.85, "tiktok": 0.75, "unknown": 1.0}
        ),
        "research": MappingProxyType(
            {"article": 1.05, "pdf": 1.2, "youtube": 0.8, "twitter": 0.7, "tiktok": 0.65, "unknown": 1.0}
        ),
        "social": MappingProxyType(
            {"article": 0.95, "pdf": 1.0, "youtube": 1.0, "twitter": 1.05, "tiktok": 1.1, "unknown": 1.0}
        ),
    }
)
PROFILE_ALIASES = {"default": "balanced"}


@dataclass(frozen=True, slots=True)
class RankingWeights:
    semantic: float = 0.65
    recency: float = 0.2
    source: float = 0.15

    @property
    def total(self) -> float:
        return self.semantic + self.recency + self.source

    @classmethod
    def normalized(
        cls,
        semantic: Any = None,
        recency: Any = None,
        source: Any = None,
    ) -> "RankingWeights":
        """Scale the triple to sum to 1, or return the defaults when it is degenerate.

        Missing components take their default. Non-numeric, non-finite or negative
        components, or a non-positive sum, yield the defaults unchanged.
        """
        defaults = cls()
        raw = (
            defaults.semantic if semantic is None else semantic,
            defaults.recency if recency is None else recency,
            defaults.source if source is None else source,
        )
        try:
            values = tuple(float(value) for value in raw)
        except (TypeError, ValueError):
            return defaults
        if any(not math.isfinite(value) or value < 0 for value in values):
            return defaults
        total = sum(values)
        if total <= 0 or not math.isfinite(total):
            return defaults
        return cls(values[0] / total, values[1] / total, values[2] / total)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> "RankingWeights":
        mapping = mapping or {}
        return cls.normalized(mapping.get("semantic"), mapping.get("recency"), mapping.get("source"))


@dataclass(frozen=True, slots=True)
class SourceWeightProfile:
    name: str
    weights: Mapping[str, float] = field(default_factory=dict)

    def weight_for(self, source_type: str) -> float:
        return float(self.weights.get(source_type, 1.0))


def resolve_profile(name: str | None, overrides: Mapping[str, Any] | None = None) -> SourceWeightProfile:
    """Look up a named profile and merge finite overrides for known source types."""
    key = (name or "balanced").strip().lower()
    key = PROFILE_ALIASES.get(key, key)
    base = SOURCE_WEIGHT_PROFILES.get(key)
    if base is None:
        logger.warning("Unknown source weight profile %r, using balanced", name)
        key, base = "balanced", SOURCE_WEIGHT_PROFILES["balanced"]
    merged = dict(base)
    for source_type, value in (overrides or {}).items():
        if source_type not in merged or isinstance(value, bool):
            continue
        if isinstance(value, (int, float)) and math.isfinite(value):
            merged[source_type] = float(value)
    return SourceWeightProfile(name=key, weights=MappingProxyType(merged))


def _valid_half_life(half_life_days: Any) -> float:
    try:
        value = float(half_life_days)
    except (TypeError, ValueError):
        return DEFAULT_HALF_LIFE_DAYS
    return value if math.isfinite(value) and value > 0 else DEFAULT_HALF_LIFE_DAYS


def decay_for_age(age_days: float, half_life_days: float = DEFAULT_HALF_LIFE_DAYS) -> float:
    """``0.5 ** (age / half_life)`` with negative ages clamped to zero."""
    return math.pow(0.5, max(0.0, age_days) / _valid_half_life(half_life_days))


def recency_boost(
    ingested_at_ms: int | float,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
    now: int | float | None = None,
) -> float:
    return decay_for_age(days_since(ingested_at_ms, now), half_life_days)


class RankingEngine:
    """Scores chunks with a fixed, validated weight triple and source-weight profile."""

    def __init__(
        self,
        weights: RankingWeights | None = None,
        profile: SourceWeightProfile | None = None,
        half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
    ) -> None:
        self.weights = weights or RankingWeights()
        self.profile = profile or resolve_profile("balanced")
        self.half_life_days = _valid_half_life(half_life_days)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RankingEngine":
        weights = RankingWeights.from_mapping(settings.ranking_weights)
        profile = resolve_profile(settings.source_weight_profile, settings.source_weight_overrides)
        return cls(weights=weights, profile=profile, half_life_days=settings.recency_half_life_days)

    def score(self, semantic_similarity: float, recency: float, source_weight: float) -> float:
        w = self.weights
        return semantic_similarity * w.semantic + recency * w.recency + source_weight * w.source

    def recency_boost(self, ingested_at_ms: int | float, now: int | float | None = None) -> float:
        return recency_boost(ingested_at_ms, self.half_life_days, now)

    def source_weight_for(self, source_type: str) -> float:
        return self.profile.weight_for(source_type)


__all__ = [
    "RankingWeights",
    "SourceWeightProfile",
    "SOURCE_WEIGHT_PROFILES",
    "resolve_profile",
    "decay_for_age",
    "recency_boost",
    "RankingEngine",
]
