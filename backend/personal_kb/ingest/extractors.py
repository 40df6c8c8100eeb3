"""Default extraction collaborator: turns a URL into a SourceBundle."""

from __future__ import annotations

import asyncio
import re
import shlex
from typing import Any, Callable
from urllib.parse import parse_qs, urlsplit

import fitz
import httpx
import orjson
from bs4 import BeautifulSoup
from markdown_it import MarkdownIt
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from personal_kb.core.config import Settings
from personal_kb.core.errors import ExtractionFailure, UnsupportedSourceError
from personal_kb.core.logging import get_logger
from personal_kb.ingest.chunker import split_text_by_sections
from personal_kb.ingest.types import ExtractedContent, RelatedLink, Section, SourceBundle
from personal_kb.utils.text import normalize

logger = get_logger(__name__)

_MD = MarkdownIt()

PAYWALL_STATUSES = frozenset({401, 402, 403, 451})
BOILERPLATE_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form", "iframe", "svg")
HEADING_TAGS = ("h1", "h2", "h3")

SYNDICATION_URL = "https://cdn.syndication.twimg.com/tweet-result"
YOUTUBE_OEMBED_URL = "https://www.youtube.com/oembed"
TIKTOK_OEMBED_URL = "https://www.tiktok.com/oembed"

_TWEET_ID_RE = re.compile(r"/status(?:es)?/(\d+)")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def detect_source_type(url: str) -> str:
    """Classify a URL by host and path alone."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "unknown"
    host = (parts.hostname or "").lower()
    if not parts.scheme or not host:
        return "unknown"
    if host.endswith("youtube.com") or host == "youtu.be":
        return "youtube"
    if host.endswith(("twitter.com", "x.com")) and _TWEET_ID_RE.search(parts.path):
        return "twitter"
    if host.endswith("tiktok.com"):
        return "tiktok"
    if parts.path.lower().endswith(".pdf"):
        return "pdf"
    return "article"


def should_use_browser_relay(
    enabled: bool,
    status: int,
    readable_text_length: int,
    min_readable_chars: int,
) -> bool:
    """Route to the browser relay for paywall-like statuses or thin readable text."""
    if not enabled:
        return False
    return status in PAYWALL_STATUSES or readable_text_length < min_readable_chars


def html_confidence(readable_chars: int, min_readable_chars: int) -> float:
    target = max(1, min_readable_chars) * 4
    return round(0.4 + 0.5 * min(1.0, readable_chars / target), 3)


class WebExtractor:
    """Fetches and normalizes articles, PDFs, tweets and video pages."""

    def __init__(
        self,
        settings: Settings,
        relay_enabled: Callable[[], bool] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._relay_enabled = relay_enabled or (lambda: False)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"User-Agent": self.settings.user_agent},
            timeout=self.settings.extraction_timeout_seconds,
            follow_redirects=True,
            transport=self._transport,
        )

    async def extract(self, url: str) -> SourceBundle:
        source_type = detect_source_type(url)
        if source_type == "unknown":
            raise UnsupportedSourceError(url, "not an absolute http(s) URL")
        async with self._client() as client:
            try:
                if source_type == "twitter":
                    return await self._extract_tweet(client, url)
                if source_type in ("youtube", "tiktok"):
                    return await self._extract_video(client, url, source_type)
                return await self._extract_document(client, url)
            except httpx.HTTPError as exc:
                raise ExtractionFailure(url, str(exc) or exc.__class__.__name__) from exc

    async def _extract_document(self, client: httpx.AsyncClient, url: str) -> SourceBundle:
        response = await _fetch(client, url)
        content_type = response.headers.get("content-type", "").lower()
        relay_on = bool(self.settings.browser_relay_cmd) and self._relay_enabled()

        if response.status_code >= 400:
            if relay_on and response.status_code in PAYWALL_STATUSES:
                return await self._extract_via_relay(url, reason=f"status {response.status_code}")
            raise ExtractionFailure(url, f"fetch failed with status {response.status_code}")

        if "application/pdf" in content_type or detect_source_type(url) == "pdf":
            return SourceBundle(source=_parse_pdf(response.content))

        if "markdown" in content_type or urlsplit(url).path.lower().endswith((".md", ".markdown")):
            content = _parse_markdown(response.text)
        else:
            content = _parse_html(response.text, self.settings.min_readable_chars)

        readable = len(content.text)
        if should_use_browser_relay(relay_on, response.status_code, readable, self.settings.min_readable_chars):
            try:
                return await self._extract_via_relay(url, reason=f"readable text {readable} chars")
            except ExtractionFailure as exc:
                if not content.text.strip():
                    raise
                logger.warning("Browser relay failed, keeping fetched text: %s", exc)
        return SourceBundle(source=content)

    async def _extract_via_relay(self, url: str, reason: str) -> SourceBundle:
        command = self.settings.browser_relay_cmd
        if not command:
            raise ExtractionFailure(url, "browser relay is not configured")
        logger.info("Using browser relay", extra={"ctx_url": url, "ctx_reason": reason})
        proc = await asyncio.create_subprocess_exec(
            *shlex.split(command),
            url,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[:300]
            raise ExtractionFailure(url, f"browser relay exited with {proc.returncode}: {detail}")
        try:
            payload = orjson.loads(stdout)
        except orjson.JSONDecodeError as exc:
            raise ExtractionFailure(url, "browser relay returned non-JSON output") from exc
        if not isinstance(payload, dict):
            raise ExtractionFailure(url, "browser relay returned an unexpected payload")

        text = str(payload.get("text") or "")
        metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
        confidence = payload.get("confidence")
        content = ExtractedContent(
            type="article",
            title=payload.get("title") or None,
            text=text,
            sections=split_text_by_sections(text),
            metadata={**metadata, "relay_reason": reason},
            extraction_method="browser_relay",
            extraction_confidence=float(confidence) if isinstance(confidence, (int, float)) else 0.7,
        )
        return SourceBundle(source=content)

    async def _extract_tweet(self, client: httpx.AsyncClient, url: str) -> SourceBundle:
        match = _TWEET_ID_RE.search(urlsplit(url).path)
        if match is None:
            raise UnsupportedSourceError(url, "no status id in URL")
        tweet_id = match.group(1)
        response = await _fetch(client, SYNDICATION_URL, params={"id": tweet_id, "lang": "en"})
        if response.status_code >= 400:
            raise ExtractionFailure(url, f"tweet lookup failed with status {response.status_code}")
        try:
            tweet = response.json()
        except ValueError as exc:
            raise ExtractionFailure(url, "tweet lookup returned invalid JSON") from exc
        return tweet_to_bundle(tweet, tweet_id)

    async def _extract_video(self, client: httpx.AsyncClient, url: str, source_type: str) -> SourceBundle:
        endpoint = YOUTUBE_OEMBED_URL if source_type == "youtube" else TIKTOK_OEMBED_URL
        response = await _fetch(client, endpoint, params={"url": url, "format": "json"})
        if response.status_code >= 400:
            raise ExtractionFailure(url, f"oEmbed lookup failed with status {response.status_code}")
        try:
            oembed = response.json()
        except ValueError as exc:
            raise ExtractionFailure(url, "oEmbed lookup returned invalid JSON") from exc

        description = ""
        try:
            page = await _fetch(client, url)
            if page.status_code < 400:
                description = _meta_description(BeautifulSoup(page.text, "html.parser"))
        except httpx.HTTPError as exc:
            logger.warning("Video page fetch failed: %s", exc, extra={"ctx_url": url})

        title = oembed.get("title")
        text = "\n\n".join(part for part in (title, description) if part)
        metadata: dict[str, Any] = {
            "authorUrl": oembed.get("author_url"),
            "provider": oembed.get("provider_name"),
        }
        if source_type == "youtube":
            metadata["videoId"] = youtube_video_id(url)
        return SourceBundle(
            source=ExtractedContent(
                type=source_type,
                title=title,
                author=oembed.get("author_name"),
                text=text,
                metadata=metadata,
                extraction_method="api",
                extraction_confidence=0.9,
            )
        )


@retry(
    reraise=True,
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type(httpx.TransportError),
)
async def _fetch(client: httpx.AsyncClient, url: str, params: dict[str, str] | None = None) -> httpx.Response:
    return await client.get(url, params=params)


def tweet_to_bundle(tweet: dict[str, Any], tweet_id: str | None = None) -> SourceBundle:
    """Map a syndication tweet payload to content plus thread/quote/link relations."""
    user = tweet.get("user") or {}
    handle = user.get("screen_name")
    text = str(tweet.get("text") or tweet.get("full_text") or "")
    tweet_id = tweet_id or tweet.get("id_str")

    related: list[RelatedLink] = []
    reply_to = tweet.get("in_reply_to_status_id_str")
    if reply_to:
        related.append(RelatedLink(relation_type="thread_reply", url=f"https://x.com/i/status/{reply_to}"))
    quoted = (tweet.get("quoted_tweet") or {}).get("id_str")
    if quoted:
        related.append(RelatedLink(relation_type="quote_of", url=f"https://x.com/i/status/{quoted}"))
    for entity in (tweet.get("entities") or {}).get("urls") or []:
        expanded = entity.get("expanded_url")
        if expanded and not (quoted and expanded.rstrip("/").endswith(f"/status/{quoted}")):
            related.append(RelatedLink(relation_type="links_to", url=expanded))

    title = f"@{handle}: {normalize(text)[:80]}" if handle else normalize(text)[:80] or None
    content = ExtractedContent(
        type="twitter",
        title=title,
        author=user.get("name") or handle,
        published_at=tweet.get("created_at"),
        text=text,
        metadata={
            "tweetId": tweet_id,
            "authorHandle": handle,
            "engagement": {
                "likes": tweet.get("favorite_count", 0),
                "replies": tweet.get("reply_count", 0),
                "retweets": tweet.get("retweet_count", 0),
                "quotes": tweet.get("quote_count", 0),
            },
        },
        extraction_method="api",
        extraction_confidence=0.9,
    )
    return SourceBundle(source=content, related=related)


def youtube_video_id(url: str) -> str | None:
    parts = urlsplit(url)
    if (parts.hostname or "").endswith("youtu.be"):
        return parts.path.lstrip("/") or None
    return (parse_qs(parts.query).get("v") or [None])[0]


def _parse_html(html: str, min_readable_chars: int) -> ExtractedContent:
    soup = BeautifulSoup(html, "html.parser")
    title = _meta_content(soup, "og:title") or (soup.title.get_text(strip=True) if soup.title else None)
    author = _meta_content(soup, "author") or _meta_content(soup, "article:author")
    published = _meta_content(soup, "article:published_time")
    metadata = {
        "excerpt": _meta_description(soup) or None,
        "siteName": _meta_content(soup, "og:site_name"),
    }

    for tag in soup(list(BOILERPLATE_TAGS)):
        tag.decompose()
    container = soup.find("article") or soup.find("main") or soup.body or soup
    for heading in container.find_all(list(HEADING_TAGS)):
        heading_text = heading.get_text(" ", strip=True)
        heading.replace_with(f"\n\n# {heading_text}\n\n" if heading_text else "")

    raw = container.get_text("\n")
    lines = [normalize(line) for line in raw.splitlines()]
    marked = _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()
    sections = split_text_by_sections(marked)
    text = _sections_to_text(sections)
    return ExtractedContent(
        type="article",
        title=title or None,
        author=author,
        published_at=published,
        text=text,
        sections=sections,
        metadata={key: value for key, value in metadata.items() if value},
        extraction_method="web_fetch",
        extraction_confidence=html_confidence(len(text), min_readable_chars),
    )


def _parse_markdown(body: str) -> ExtractedContent:
    tokens = _MD.parse(body)
    sections: list[Section] = []
    title: str | None = None
    parts: list[str] = []
    in_heading = False
    for token in tokens:
        if token.type == "heading_open":
            if title is not None or parts:
                sections.append(Section(title=title, text="\n".join(parts)))
            title, parts, in_heading = None, [], True
            continue
        if token.type == "heading_close":
            in_heading = False
            continue
        content = token.content.strip()
        if not content or token.type != "inline":
            continue
        if in_heading:
            title = content
        else:
            parts.append(content)
    if title is not None or parts:
        sections.append(Section(title=title, text="\n".join(parts)))
    text = _sections_to_text(sections)
    doc_title = next((section.title for section in sections if section.title), None)
    return ExtractedContent(
        type="article",
        title=doc_title,
        text=text,
        sections=sections,
        metadata={"format": "markdown"},
        extraction_method="web_fetch",
        extraction_confidence=0.85,
    )


def _parse_pdf(raw: bytes) -> ExtractedContent:
    with fitz.open(stream=raw, filetype="pdf") as doc:
        pages = [page.get_text("text", sort=True) for page in doc]
        pdf_meta = doc.metadata or {}
    text = "\n\n".join(page.strip() for page in pages if page.strip())
    return ExtractedContent(
        type="pdf",
        title=pdf_meta.get("title") or None,
        author=pdf_meta.get("author") or None,
        text=text,
        metadata={"pages": len(pages)},
        extraction_method="web_fetch",
        extraction_confidence=0.95,
    )


def _sections_to_text(sections: list[Section]) -> str:
    blocks = []
    for section in sections:
        block = f"{section.title}\n{section.text}" if section.title else section.text
        if block.strip():
            blocks.append(block.strip())
    return "\n\n".join(blocks)


def _meta_content(soup: BeautifulSoup, key: str) -> str | None:
    tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
    if tag is None:
        return None
    value = tag.get("content")
    return value.strip() if isinstance(value, str) and value.strip() else None


def _meta_description(soup: BeautifulSoup) -> str:
    return _meta_content(soup, "og:description") or _meta_content(soup, "description") or ""


__all__ = [
    "WebExtractor",
    "detect_source_type",
    "should_use_browser_relay",
    "html_confidence",
    "tweet_to_bundle",
    "youtube_video_id",
]
