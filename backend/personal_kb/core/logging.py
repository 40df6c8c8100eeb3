"""JSON logging with per-job context for ingest runs."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, MutableMapping

import orjson

LOG_LEVEL_ENV = "PKB_LOG_LEVEL"
CONTEXT_PREFIX = "ctx_"


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``ctx_*`` record attributes are copied through."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key.startswith(CONTEXT_PREFIX) and value is not None
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


class JobLogAdapter(logging.LoggerAdapter):
    """Stamps every record with the ingest job id and the URL it was started for.

    Context passed explicitly through ``extra`` wins, so a crawl can log a
    related URL under the same job.
    """

    @property
    def job_id(self) -> int | None:
        return self.extra.get("job_id")

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        for key, value in self.extra.items():
            extra.setdefault(f"{CONTEXT_PREFIX}{key}", value)
        kwargs["extra"] = extra
        return msg, kwargs


def configure_logging(level: str | int | None = None, use_json: bool = True) -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(level or os.environ.get(LOG_LEVEL_ENV, "INFO"))
    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]


def get_logger(name: str = "personal_kb") -> logging.Logger:
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


def job_logger(logger: logging.Logger, job_id: int | None, url: str | None = None) -> JobLogAdapter:
    return JobLogAdapter(logger, {"job_id": job_id, "url": url})


__all__ = ["configure_logging", "get_logger", "job_logger", "JobLogAdapter", "JsonFormatter"]
