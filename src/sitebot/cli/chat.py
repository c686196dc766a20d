"""sitebot chat, test-api and models commands.

Commands:
  sitebot chat "question" [--conversation ID] [--image FILE]
  sitebot test-api    — one GET against the model listing
  sitebot models      — chat models available to the configured key
"""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from sitebot.cli.common import console, fail, load_or_exit, open_db
from sitebot.cli.errors import err_no_sources
from sitebot.db.repository import Repository
from sitebot.errors import SitebotError
from sitebot.images import sniff_mime
from sitebot.services import Services


def chat_cmd(
    message: Annotated[str, typer.Argument(help="Question to ask about the site.")],
    conversation: Annotated[
        Optional[int],
        typer.Option("--conversation", "-c", help="Continue an existing conversation."),
    ] = None,
    image: Annotated[
        Optional[Path],
        typer.Option("--image", help="Local image file to attach (JPEG, PNG, GIF, WebP)."),
    ] = None,
    user: Annotated[int, typer.Option("--user", help="Owner id for the conversation.")] = 1,
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Conversation database (default: storage.db_path)."),
    ] = None,
) -> None:
    """Ask a question and print the assistant's answer."""
    cfg = load_or_exit()
    if not cfg.sources.urls:
        console.print(err_no_sources())

    conn = open_db(db or cfg.storage.db_path)
    try:
        inline = _encode_image(image) if image else None
        services = Services.from_config(cfg)
        with console.status("Thinking…"):
            result = services.orchestrator(Repository(conn)).handle_chat(
                user, message, conversation_id=conversation, image=inline
            )
    except SitebotError as exc:
        fail(exc)
    finally:
        conn.close()

    console.print(
        Panel(
            Markdown(result.content),
            title=f"[bold]Conversation {result.conversation_id}[/]",
            expand=False,
        )
    )
    total = result.usage.get("total_tokens")
    if total is not None:
        console.print(f"[dim]{result.model} · {total} tokens[/]")


def _encode_image(path: Path) -> str:
    if not path.is_file():
        console.print(f"[red]Error:[/] Image file not found: '{path}'")
        raise typer.Exit(1)
    raw = path.read_bytes()
    return f"data:{sniff_mime(raw)};base64,{base64.b64encode(raw).decode('ascii')}"


def test_api_cmd() -> None:
    """Check that the configured API key is accepted."""
    cfg = load_or_exit()
    try:
        check = Services.from_config(cfg).chat_client.test_connection()
    except SitebotError as exc:
        fail(exc)
    console.print(f"[green]✓[/] {check.message} ({cfg.chat.base_url})")


def models_cmd() -> None:
    """List chat models available to the configured API key."""
    cfg = load_or_exit()
    try:
        models = Services.from_config(cfg).chat_client.list_models()
    except SitebotError as exc:
        fail(exc)

    table = Table(title="Chat models", show_header=True, header_style="bold")
    table.add_column("Model", style="bold")
    table.add_column("Configured")
    for model in models:
        table.add_row(model, "[green]✓[/]" if model == cfg.chat.model else "")
    console.print(table)
    console.print(f"\n  {len(models)} model(s)")
