"""FastAPI application setup for the personal knowledge base."""

from __future__ import annotations

import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from personal_kb.api.dependencies import (
    get_app_settings,
    get_database,
    get_embedder,
    get_extractor,
    get_ingest_pipeline,
    get_query_service,
    get_vector_index,
)
from personal_kb.api.routes_admin import router as admin_router
from personal_kb.api.routes_ingest import router as ingest_router
from personal_kb.api.routes_query import router as query_router
from personal_kb.core.logging import configure_logging
from personal_kb.core.metrics import REQUEST_COUNT, REQUEST_LATENCY

configure_logging()

app = FastAPI(
    title="Personal KB",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5181",
        "http://localhost:5181",
        "chrome-extension://*",
    ],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(time.perf_counter() - started)
    REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
    return response


app.include_router(ingest_router, prefix="/ingest", tags=["ingest"])
app.include_router(query_router, prefix="", tags=["query"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons on startup."""
    get_app_settings()
    get_database()
    get_embedder()
    get_extractor()
    get_vector_index()
    get_ingest_pipeline()
    get_query_service()
