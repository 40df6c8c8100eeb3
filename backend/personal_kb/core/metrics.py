"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "pkb_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "pkb_request_latency_seconds",
    "Latency of HTTP requests",
    labelnames=("endpoint", "method"),
    registry=REGISTRY,
)

INGEST_DURATION = Histogram(
    "pkb_ingest_duration_seconds",
    "Ingest pipeline duration",
    labelnames=("source_type",),
    registry=REGISTRY,
)

INGEST_OUTCOMES = Counter(
    "pkb_ingest_outcomes_total",
    "Ingest jobs by terminal outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

CRAWL_RELATIONS = Counter(
    "pkb_crawl_relations_total",
    "Source relations linked while crawling",
    labelnames=("relation_type",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "pkb_index_chunks",
    "Number of chunks stored in index",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "INGEST_DURATION",
    "INGEST_OUTCOMES",
    "CRAWL_RELATIONS",
    "INDEX_SIZE",
    "metrics_response",
]
