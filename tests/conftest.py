"""Shared pytest fixtures."""

from __future__ import annotations

import httpx
import pytest

from sitebot.db.connection import Database
from sitebot.db.repository import Repository
from sitebot.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "sitebot.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep developer credentials and overrides out of every test."""
    for var in (
        "SITEBOT_API_KEY",
        "OPENAI_API_KEY",
        "SITEBOT_CHAT_MODEL",
        "SITEBOT_EMBEDDING_MODEL",
        "SITEBOT_SOURCES",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def http_client():
    """Factory: httpx.Client whose requests are answered by *handler*."""
    clients: list[httpx.Client] = []

    def _make(handler) -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()
