"""URL canonicalization and deduplication helpers."""

from __future__ import annotations

import re
from urllib.parse import urlsplit, urlunsplit

from personal_kb.db.sqlite import SQLiteDatabase

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_WWW_RE = re.compile(r"^www\.")


def canonicalize(url: str) -> str:
    """Return the URL with its fragment removed.

    Scheme and host are lowercased and an empty path becomes ``/``. Anything that
    does not parse as an absolute URL is returned unchanged.
    """
    candidate = url.strip()
    try:
        parts = urlsplit(candidate)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return url
    if not parts.scheme or not host:
        return url
    netloc = f"[{host}]" if ":" in host else host
    if parts.username is not None:
        credentials = parts.username
        if parts.password is not None:
            credentials = f"{credentials}:{parts.password}"
        netloc = f"{credentials}@{netloc}"
    if port is not None:
        netloc = f"{netloc}:{port}"
    path = parts.path or "/"
    return urlunsplit((parts.scheme.lower(), netloc, path, parts.query, ""))


def normalize_domain(text: str) -> str:
    """Reduce free-form domain input (``https://www.Example.com/path``) to ``example.com``."""
    domain = text.lower().strip()
    domain = _SCHEME_RE.sub("", domain)
    domain = domain.split("/")[0].split("?")[0].split("#")[0]
    return _WWW_RE.sub("", domain)


def extract_domain(url: str) -> str:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    if not host:
        return normalize_domain(url)
    return _WWW_RE.sub("", host.lower())


class DedupIndex:
    """Look up already-ingested sources by canonical URL."""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def find_existing(self, canonical_url: str) -> int | None:
        row = self.db.query_one(
            "SELECT id FROM sources WHERE canonical_url = ? OR url = ? ORDER BY id DESC LIMIT 1",
            [canonical_url, canonical_url],
        )
        return int(row["id"]) if row is not None else None


__all__ = ["canonicalize", "normalize_domain", "extract_domain", "DedupIndex"]
