"""CLI entrypoint for docsearch."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Optional

import requests
import typer
import uvicorn

app = typer.Typer(name="docsearch", help="Document search command-line interface")

DEFAULT_HOST = "http://127.0.0.1:8000"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("DOCSEARCH_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    try:
        resp = requests.request(method, url, timeout=300, **kwargs)
    except requests.ConnectionError:
        typer.echo(f"Could not reach docsearch at {base}; is `docsearch serve` running?", err=True)
        raise typer.Exit(code=1)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


@app.command()
def ingest(
    path: Optional[List[Path]] = typer.Option(None, "--path", help="File to ingest (repeatable)"),
    url: Optional[List[str]] = typer.Option(None, "--url", help="Web page to ingest (repeatable)"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Load, chunk, embed and store files or web pages."""
    if not path and not url:
        typer.echo("Provide at least one --path or --url", err=True)
        raise typer.Exit(code=2)
    body: dict[str, object] = {}
    if path:
        body["paths"] = [str(item.expanduser().resolve()) for item in path]
    if url:
        body["urls"] = list(url)
    resp = _request("POST", "/ingest", host=host, json=body)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def query(
    q: str = typer.Argument(..., help="Query text"),
    k: int = typer.Option(3, "--k", help="Number of results to return"),
    answer: bool = typer.Option(False, "--answer", help="Generate an answer from the top results"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Search the stored chunks."""
    route = "/query/answer" if answer else "/query"
    resp = _request("POST", route, host=host, json={"query": q, "k": k})
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def stats(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show chunk and source counts for the active store."""
    resp = _request("GET", "/stats", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Delete every stored chunk."""
    if not yes:
        typer.confirm("Remove all stored chunks?", abort=True)
    resp = _request("DELETE", "/clear", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the HTTP API."""
    uvicorn.run(
        "docsearch.app:build_default_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_config=None,
    )


if __name__ == "__main__":
    app()
