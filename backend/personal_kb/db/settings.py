"""Runtime settings persisted in the key/value settings table."""

from __future__ import annotations

from typing import Any, Mapping

import orjson
from pydantic import BaseModel, ValidationError

from personal_kb.core.logging import get_logger
from personal_kb.db.sqlite import SQLiteDatabase
from personal_kb.utils.time import now_ms

logger = get_logger(__name__)

SETTINGS_KEY = "kb_settings_v1"


class RuntimeSettings(BaseModel):
    """Toggles that can change while the service is running."""

    browser_relay_fallback_enabled: bool = False
    auto_summary_enabled: bool = False

    model_config = {"extra": "ignore"}


def get_runtime_settings(db: SQLiteDatabase) -> RuntimeSettings:
    row = db.query_one("SELECT value_json FROM settings WHERE key = ?", [SETTINGS_KEY])
    if row is None:
        return RuntimeSettings()
    try:
        stored = orjson.loads(row["value_json"])
        return RuntimeSettings(**stored) if isinstance(stored, dict) else RuntimeSettings()
    except (orjson.JSONDecodeError, ValidationError) as exc:
        logger.warning("Ignoring unreadable runtime settings: %s", exc)
        return RuntimeSettings()


def update_runtime_settings(db: SQLiteDatabase, patch: Mapping[str, Any]) -> RuntimeSettings:
    current = get_runtime_settings(db).model_dump()
    current.update({key: value for key, value in patch.items() if key in RuntimeSettings.model_fields})
    updated = RuntimeSettings(**current)
    db.write(
        """
        INSERT INTO settings (key, value_json, updated_at) VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json, updated_at = excluded.updated_at
        """,
        [SETTINGS_KEY, orjson.dumps(updated.model_dump()).decode("utf-8"), now_ms()],
    )
    return updated


__all__ = ["RuntimeSettings", "get_runtime_settings", "update_runtime_settings"]
