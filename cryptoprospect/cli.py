from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx
import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from cryptoprospect.config import get_settings
from cryptoprospect.db import init_db, session_scope
from cryptoprospect.errors import ConfigError, SourceError
from cryptoprospect.pipeline import run_ingestion_and_save
from cryptoprospect.services import prospect_summary
from cryptoprospect.store import read_prospects

app = typer.Typer(help="DeFi protocol lead generation: ingest, score, and serve prospects")
console = Console()
log = logging.getLogger(__name__)


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _print(title: str, payload: dict[str, Any], ctx: typer.Context) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    for key, value in payload.items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(Panel(table, title=title, border_style="cyan"))


@app.command("ingest")
def ingest_command(
    ctx: typer.Context,
    coingecko_max_pages: int = typer.Option(6, help="Max market pages to fetch (ranks 200+)."),
    max_github_requests: int = typer.Option(30, help="Max GitHub repo lookups per run."),
) -> None:
    """Run one ingestion: fetch, merge, score, and upsert all prospects."""
    settings = get_settings()
    try:
        database_url = settings.require_database_url()
        settings.validate_coin_source()
    except ConfigError as exc:
        log.error("%s", exc)
        raise typer.Exit(code=1) from exc

    init_db(database_url)
    try:
        with session_scope() as session:
            written = asyncio.run(run_ingestion_and_save(
                settings, session,
                coingecko_max_pages=coingecko_max_pages,
                max_github_requests=max_github_requests,
            ))
    except (SourceError, ConfigError, httpx.HTTPError) as exc:
        log.error("Ingestion failed: %s", exc)
        raise typer.Exit(code=1) from exc

    _print("ingest", {"status": "ok", "written": written, "coin_source": settings.coin_source}, ctx)


@app.command("shortlist")
def shortlist_command(
    ctx: typer.Context,
    top_n: int = typer.Option(15, help="Number of prospects to show."),
    min_score: float = typer.Option(0.0, help="Minimum pain score."),
) -> None:
    """Show the highest-scoring stored prospects."""
    init_db()
    with session_scope() as session:
        rows = [prospect_summary(p) for p in read_prospects(session) if p.pain_score >= min_score][:top_n]

    if _wants_json(ctx):
        typer.echo(json.dumps({"items": rows}, indent=2, ensure_ascii=False))
        return

    table = Table(show_header=True, header_style="bold yellow", box=ROUNDED)
    table.add_column("#", style="dim")
    table.add_column("Protocol", style="bold")
    table.add_column("Category")
    table.add_column("TVL ($M)", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Gated", justify="center")
    table.add_column("Signals")
    for rank, row in enumerate(rows, start=1):
        table.add_row(
            str(rank),
            row["name"],
            row["category"],
            f"{row['tvl'] / 1e6:.1f}",
            f"{row['pain_score']:.1f}",
            "yes" if row["treasury_gated"] else "",
            ", ".join(s["key"] for s in row["pain_signals"]),
        )
    console.print(Panel(table, title=f"shortlist · top {top_n}", border_style="yellow"))


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8002, help="Port."),
    reload: bool = typer.Option(False, help="Auto-reload on code changes."),
) -> None:
    """Start the HTTP API."""
    import uvicorn
    uvicorn.run("cryptoprospect.app:app", host=host, port=port, reload=reload)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
