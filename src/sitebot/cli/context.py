"""sitebot context and search commands.

Commands:
  sitebot context refresh          — fetch every source and report metrics
  sitebot context show [--full]    — build the context blob and preview it
  sitebot context stats            — cache or local index state
  sitebot context diagnose         — per-source fetch and HTML cleaning report
  sitebot search "query"           — rank site pages by semantic similarity
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from sitebot.cli.common import console, fail, load_or_exit
from sitebot.cli.errors import err_no_content, err_no_sources
from sitebot.errors import SitebotError
from sitebot.rag.llm_client import context_budget
from sitebot.rag.retriever import PageRanker
from sitebot.rag.truncation import estimate_tokens, truncate
from sitebot.services import Services, build_aggregator, build_context_service

context_app = typer.Typer(
    name="context",
    help="Build and inspect the site context given to the model.",
    add_completion=False,
)


@context_app.command("refresh")
def context_refresh_cmd() -> None:
    """Re-fetch every content source and report what was retrieved."""
    cfg = load_or_exit()
    if not cfg.sources.urls:
        console.print(err_no_sources())
        raise typer.Exit(1)

    service = build_context_service(cfg)
    try:
        with console.status("Fetching site content…"):
            report = service.force_refresh()
    except SitebotError as exc:
        fail(exc)

    lines = [
        f"Strategy:  {cfg.context.strategy}",
        f"Pages:     [bold]{report.page_count}[/]",
        f"Sources:   [bold]{report.source_count}[/]",
        f"Size:      {report.byte_size / 1024:.1f} KB",
        f"Duration:  {report.duration_seconds:.2f}s",
    ]
    for source_id, count in report.pages_by_source.items():
        lines.append(f"  [green]✓[/] {source_id} ({count} pages)")
    for source_id, reason in report.failed_sources.items():
        lines.append(f"  [red]✗[/] {source_id}: {reason}")
    console.print(Panel("\n".join(lines), title="[bold]Context refreshed[/]", expand=False))


@context_app.command("show")
def context_show_cmd(
    full: Annotated[
        bool, typer.Option("--full", help="Print the whole (budgeted) context blob.")
    ] = False,
) -> None:
    """Build the context blob and show its size against the model budget."""
    cfg = load_or_exit()
    if not cfg.sources.urls:
        console.print(err_no_sources())
        raise typer.Exit(1)

    with console.status("Fetching site content…"):
        blob = build_context_service(cfg).get_context()
    if blob is None:
        console.print(err_no_content())
        raise typer.Exit(1)

    budget = context_budget(cfg.chat.model, cfg.context.max_tokens)
    tokens = estimate_tokens(blob)
    state = "[green]within budget[/]" if tokens <= budget else "[yellow]will be truncated[/]"
    console.print(
        Panel(
            f"Estimated tokens:  [bold]{tokens:,}[/]\n"
            f"Budget ({cfg.chat.model}):  {budget:,}  {state}",
            title="[bold]Site context[/]",
            expand=False,
        )
    )
    text = truncate(blob, budget)
    console.print(text if full else text[:2000], markup=False, highlight=False)


@context_app.command("stats")
def context_stats_cmd() -> None:
    """Show the state of the context cache or local index."""
    cfg = load_or_exit()
    stats = build_context_service(cfg).stats()

    table = Table(title=f"Context ({cfg.context.strategy})", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for name, value in asdict(stats).items():
        table.add_row(name.replace("_", " "), "—" if value is None else str(value))
    console.print(table)


@context_app.command("diagnose")
def context_diagnose_cmd(
    pages: Annotated[
        bool, typer.Option("--pages", help="List every page with its preview.")
    ] = False,
) -> None:
    """Fetch every source and report how much content survives cleaning."""
    cfg = load_or_exit()
    if not cfg.sources.urls:
        console.print(err_no_sources())
        raise typer.Exit(1)

    with console.status("Fetching site content…"):
        reports = build_aggregator(cfg).diagnose()

    table = Table(title="Content sources", show_header=True, header_style="bold")
    table.add_column("Source")
    table.add_column("Status")
    table.add_column("Pages", justify="right")
    table.add_column("Empty", justify="right")
    table.add_column("Chars", justify="right")
    table.add_column("Time", justify="right")
    for report in reports:
        status = "[green]ok[/]" if report.success else f"[red]{report.error}[/]"
        table.add_row(
            report.source_id,
            status,
            str(report.count),
            str(report.empty_pages),
            f"{report.total_content_chars:,}",
            f"{report.duration_seconds:.2f}s",
        )
    console.print(table)

    for report in reports:
        for page in report.pages:
            if page.warning:
                console.print(f"  [yellow]⚠[/] {page.title}: {page.warning}")
            elif pages:
                console.print(f"  [bold]{page.title}[/] ({page.content_chars} chars)")
                console.print(f"    {page.preview}", markup=False, highlight=False)

    if not any(report.success for report in reports):
        raise typer.Exit(1)


def search_cmd(
    query: Annotated[str, typer.Argument(help="What to look for.")],
    top_k: Annotated[int, typer.Option("--top-k", "-k", help="Number of pages to show.")] = 5,
) -> None:
    """Rank site pages by semantic similarity to QUERY."""
    cfg = load_or_exit()
    if not cfg.sources.urls:
        console.print(err_no_sources())
        raise typer.Exit(1)

    try:
        with console.status("Fetching and embedding pages…"):
            pages = build_aggregator(cfg).fetch_all_sources()
            results = PageRanker(Services.from_config(cfg).embedding_client).rank(
                query, pages, top_k
            )
    except SitebotError as exc:
        fail(exc)

    if not results:
        console.print("[yellow]No pages to search.[/]")
        raise typer.Exit(0)

    table = Table(title=f"Pages matching '{query}'", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Title", style="bold")
    table.add_column("URL", style="dim")
    for hit in results:
        table.add_row(str(hit.rank), f"{hit.score:.3f}", hit.page.title, hit.page.url)
    console.print(table)
