"""sitebot serve and images commands.

Commands:
  sitebot serve [--host H] [--port P]   — run the REST API with uvicorn
  sitebot images sweep                  — delete expired uploaded images
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
import uvicorn

from sitebot.api.app import create_app
from sitebot.cli.common import console, load_or_exit, open_db
from sitebot.db.repository import Repository
from sitebot.services import Services

images_app = typer.Typer(
    name="images",
    help="Manage uploaded chat images.",
    add_completion=False,
)


def serve_cmd(
    host: Annotated[Optional[str], typer.Option("--host", help="Bind address.")] = None,
    port: Annotated[Optional[int], typer.Option("--port", help="Bind port.")] = None,
) -> None:
    """Run the REST API."""
    cfg = load_or_exit()
    app = create_app(cfg)
    uvicorn.run(app, host=host or cfg.server.host, port=port or cfg.server.port)


@images_app.command("sweep")
def images_sweep_cmd(
    db: Annotated[
        Optional[Path],
        typer.Option("--db", help="Conversation database (default: storage.db_path)."),
    ] = None,
) -> None:
    """Delete uploaded images whose retention period has passed."""
    cfg = load_or_exit()
    conn = open_db(db or cfg.storage.db_path)
    try:
        removed = Services.from_config(cfg).image_store(Repository(conn)).sweep_expired()
    finally:
        conn.close()
    console.print(f"[green]✓[/] Removed {removed} expired image(s).")
