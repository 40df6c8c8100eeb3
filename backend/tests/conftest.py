"""Test fixtures for the personal knowledge base."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from personal_kb.core.config import Settings  # noqa: E402
from personal_kb.db.sqlite import SQLiteDatabase  # noqa: E402

_SINGLETONS = (
    "_DB",
    "_EMBEDDER",
    "_EXTRACTOR",
    "_VECTOR_INDEX",
    "_RANKING",
    "_PIPELINE",
    "_QUERY_SERVICE",
)


def _reset_dependencies() -> None:
    from personal_kb.api import dependencies as deps
    from personal_kb.core import config

    if deps._DB is not None:
        deps._DB.close()
    config.get_settings.cache_clear()
    deps.get_app_settings.cache_clear()
    for name in _SINGLETONS:
        setattr(deps, name, None)


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("PKB_DB_PATH", str(tmp_path / "kb.db"))
    monkeypatch.delenv("PKB_CONFIG", raising=False)
    monkeypatch.delenv("PKB_EMBEDDING_API_KEY", raising=False)
    monkeypatch.delenv("PKB_HOST", raising=False)
    _reset_dependencies()
    yield
    _reset_dependencies()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(db_path=tmp_path / "kb.db", embedding_dim=64, extraction_timeout_seconds=2.0)


@pytest.fixture
def db() -> SQLiteDatabase:
    database = SQLiteDatabase(":memory:")
    database.ensure_schema()
    yield database
    database.close()
