"""Sitebot database layer."""

from sitebot.db.connection import Database
from sitebot.db.migrations import MIGRATIONS, run_migrations
from sitebot.db.schema import initialize

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
