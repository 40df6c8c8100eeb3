"""CLI entrypoint for the personal knowledge base."""

from __future__ import annotations

import json
import os
from typing import Optional

import requests
import typer

app = typer.Typer(name="pkb", help="Personal knowledge base command-line interface")
settings_app = typer.Typer(name="settings", help="Show or change runtime settings")
app.add_typer(settings_app, name="settings")

DEFAULT_HOST = "http://127.0.0.1:5180"
SOURCE_TYPES = ("article", "pdf", "youtube", "twitter", "tiktok")


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("PKB_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    try:
        resp = requests.request(method, url, timeout=120, **kwargs)
    except requests.ConnectionError:
        typer.echo(f"Could not reach the knowledge base at {base}. Is `pkb serve` running?", err=True)
        raise typer.Exit(code=1)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _filters(
    collection: Optional[str],
    domain: Optional[str],
    source: Optional[str],
    url: Optional[str],
) -> dict[str, str] | None:
    if source and source not in SOURCE_TYPES:
        typer.echo(f"Unknown source type '{source}'. Expected one of: {', '.join(SOURCE_TYPES)}", err=True)
        raise typer.Exit(code=2)
    filters = {
        key: value
        for key, value in (("collection", collection), ("domain", domain), ("source", source), ("url", url))
        if value
    }
    return filters or None


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise typer.BadParameter(f"expected true/false, got '{value}'")


@app.command()
def ingest(
    url: str = typer.Argument(..., help="URL to ingest"),
    collection: Optional[str] = typer.Option(None, "--collection", "-c", help="Target collection"),
    force: bool = typer.Option(False, "--force", help="Re-ingest even if the URL is already stored"),
    weight: Optional[float] = typer.Option(None, "--weight", help="Explicit source weight"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Ingest a URL and the sources it references."""
    body: dict[str, object] = {"url": url, "force": force}
    if collection:
        body["collection"] = collection
    if weight is not None:
        body["source_weight"] = weight
    payload = _request("POST", "/ingest", host=host, json=body).json()
    status = "deduplicated" if payload["deduplicated"] else "ingested"
    typer.echo(f"Job #{payload['job_id']}: source #{payload['source_id']} {status}")
    report = payload.get("report") or {}
    typer.echo(
        f"  created={len(report.get('created', []))} "
        f"edges={len(report.get('edges', []))} "
        f"failures={len(report.get('failures', []))} "
        f"chunks={report.get('chunk_count', 0)}"
    )
    for failure in report.get("failures", []):
        typer.echo(f"  ! {failure['url']}: {failure['error']}", err=True)
    if payload.get("summary"):
        typer.echo("")
        typer.echo(payload["summary"])


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question to answer"),
    collection: Optional[str] = typer.Option(None, "--collection", "-c", help="Restrict to a collection"),
    domain: Optional[str] = typer.Option(None, "--domain", help="Restrict to a domain"),
    source: Optional[str] = typer.Option(None, "--source", help="Restrict to a source type"),
    url: Optional[str] = typer.Option(None, "--url", help="Restrict to one URL"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Answer a question from the knowledge base with citations."""
    body: dict[str, object] = {"question": question}
    filters = _filters(collection, domain, source, url)
    if filters:
        body["filters"] = filters
    resp = _request("POST", "/ask", host=host, json=body)
    typer.echo(resp.json()["answer"])


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    limit: Optional[int] = typer.Option(None, "--limit", "-k", help="Number of chunks to return"),
    collection: Optional[str] = typer.Option(None, "--collection", "-c", help="Restrict to a collection"),
    domain: Optional[str] = typer.Option(None, "--domain", help="Restrict to a domain"),
    source: Optional[str] = typer.Option(None, "--source", help="Restrict to a source type"),
    url: Optional[str] = typer.Option(None, "--url", help="Restrict to one URL"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Return ranked chunks with their score components."""
    body: dict[str, object] = {"query": query}
    if limit is not None:
        body["limit"] = limit
    filters = _filters(collection, domain, source, url)
    if filters:
        body["filters"] = filters
    resp = _request("POST", "/search", host=host, json=body)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def collections(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """List collections and their source counts."""
    counts = _request("GET", "/collections", host=host).json()
    if not counts:
        typer.echo("No collections yet. Ingest something with `pkb ingest <url>`.")
        return
    for name, count in counts.items():
        typer.echo(f"{name}\t{count}")


@app.command()
def health(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """Show store and job health."""
    resp = _request("GET", "/health", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


@settings_app.command("show")
def show_settings(host: Optional[str] = typer.Option(None, "--host", help="Override backend host")) -> None:
    """Print runtime settings."""
    resp = _request("GET", "/settings", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


@settings_app.command("set")
def set_setting(
    key: str = typer.Argument(..., help="Setting name, e.g. browser_relay_fallback_enabled"),
    value: str = typer.Argument(..., help="true or false"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Change one runtime setting."""
    resp = _request("PATCH", "/settings", host=host, json={key: _parse_bool(value)})
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--bind", help="Interface to bind"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    from personal_kb.core.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "personal_kb.app:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


if __name__ == "__main__":
    app()
