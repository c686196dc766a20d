"""Sitebot CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from sitebot.cli.chat import chat_cmd, models_cmd, test_api_cmd
from sitebot.cli.context import context_app, search_cmd
from sitebot.cli.init import init_cmd
from sitebot.cli.serve import images_app, serve_cmd


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"sitebot {_installed_version()}")
        raise typer.Exit()


def _installed_version() -> str:
    try:
        return importlib.metadata.version("sitebot")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


app = typer.Typer(
    name="sitebot",
    help=(
        "Sitebot — a chat assistant grounded in your website's pages.\n\n"
        "  sitebot init             Scaffold sitebot.yaml and the database.\n"
        "  sitebot context refresh  Fetch the site content and report what was found.\n"
        "  sitebot chat \"...\"       Ask a question about the site."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log cache, retry and source events."),
    ] = False,
) -> None:
    """Sitebot — a chat assistant grounded in your website's pages."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


app.command("init")(init_cmd)
app.command("chat")(chat_cmd)
app.command("test-api")(test_api_cmd)
app.command("models")(models_cmd)
app.command("search")(search_cmd)
app.command("serve")(serve_cmd)
app.add_typer(context_app, name="context")
app.add_typer(images_app, name="images")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Sitebot version."""
    typer.echo(f"sitebot {_installed_version()}")


if __name__ == "__main__":
    app()
