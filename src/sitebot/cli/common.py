"""Helpers shared by the CLI commands: config loading and database access."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console

from sitebot.cli.errors import err_config, format_error
from sitebot.config import ConfigError, SitebotConfig, load_config
from sitebot.db.connection import Database
from sitebot.db.schema import initialize
from sitebot.errors import SitebotError

console = Console()


def load_or_exit() -> SitebotConfig:
    """Load the merged config, or print the problem and exit 1."""
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def fail(exc: SitebotError) -> NoReturn:
    console.print(format_error(exc))
    raise typer.Exit(1)


def open_db(db_path: Path | str) -> sqlite3.Connection:
    """Open (and migrate) the conversation database."""
    conn = Database(db_path).connect()
    initialize(conn)
    return conn
