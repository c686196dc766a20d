"""Repository for conversations, messages, stored images and preferences.

Ownership is enforced in SQL: every conversation read or write filters on
owner_id, and a conversation owned by someone else is reported exactly like
a missing one. Each write commits before returning, so a persisted user turn
is durable before the caller moves on to the model call.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any

from sitebot.db.models import Conversation, Message, StoredImage
from sitebot.errors import NotFoundError, ValidationError

DEFAULT_TITLE_PREFIX = "New conversation - "
TITLE_WORDS = 8
MAX_TITLE_CHARS = 255
VALID_ROLES = frozenset(["system", "user", "assistant"])

_CONVERSATION_COLS = (
    "id, owner_id, title, archived, message_count, created_at, updated_at"
)
_MESSAGE_COLS = "id, conversation_id, role, content, image_url, created_at"
_IMAGE_COLS = "id, owner_id, path, url, mime_type, expires_at, created_at"


def default_title(now: datetime | None = None) -> str:
    """'New conversation - dd/mm/YYYY HH:MM'."""
    return DEFAULT_TITLE_PREFIX + (now or datetime.now()).strftime("%d/%m/%Y %H:%M")


def title_from_message(content: str) -> str:
    """First eight words of *content*, with '...' when there were more."""
    words = content.split()
    title = " ".join(words[:TITLE_WORDS])
    if len(words) > TITLE_WORDS:
        title += "..."
    return title[:MAX_TITLE_CHARS]


class Repository:
    """Data access layer for all Sitebot database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see sitebot.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(self, owner_id: int, title: str | None = None) -> int:
        """Insert a conversation and return its id.

        Args:
            owner_id: Identity of the owning user.
            title: Optional title; defaults to a timestamped placeholder that the
                first user message replaces.
        """
        clean = (title or "").strip()[:MAX_TITLE_CHARS] or default_title()
        cur = self._conn.execute(
            "INSERT INTO conversations (owner_id, title) VALUES (?, ?)",
            (owner_id, clean),
        )
        self._conn.commit()
        return int(cur.lastrowid)

    def get_conversation(
        self, conversation_id: int, owner_id: int, *, with_messages: bool = False
    ) -> Conversation | None:
        """Return the conversation if it exists and belongs to *owner_id*."""
        row = self._conn.execute(
            f"SELECT {_CONVERSATION_COLS} FROM conversations WHERE id = ? AND owner_id = ?",
            (conversation_id, owner_id),
        ).fetchone()
        if row is None:
            return None
        conversation = _row_to_conversation(row)
        if with_messages:
            conversation.messages = self._select_messages(conversation_id, -1, 0)
        return conversation

    def require_conversation(self, conversation_id: int, owner_id: int) -> Conversation:
        conversation = self.get_conversation(conversation_id, owner_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found.")
        return conversation

    def list_conversations(
        self,
        owner_id: int,
        *,
        archived: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Conversation]:
        """Return the owner's conversations, most recently updated first."""
        rows = self._conn.execute(
            f"""
            SELECT {_CONVERSATION_COLS} FROM conversations
            WHERE owner_id = ? AND archived = ?
            ORDER BY updated_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (owner_id, int(archived), limit, offset),
        ).fetchall()
        return [_row_to_conversation(r) for r in rows]

    def count_conversations(self, owner_id: int, *, archived: bool = False) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM conversations WHERE owner_id = ? AND archived = ?",
            (owner_id, int(archived)),
        ).fetchone()
        return int(row[0])

    def update_title(self, conversation_id: int, owner_id: int, title: str) -> bool:
        """Rename a conversation. Returns False when not found or not owned."""
        clean = title.strip()[:MAX_TITLE_CHARS]
        if not clean:
            raise ValidationError("Title must not be empty.")
        cur = self._conn.execute(
            """
            UPDATE conversations SET title = ?, updated_at = datetime('now')
            WHERE id = ? AND owner_id = ?
            """,
            (clean, conversation_id, owner_id),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def archive(self, conversation_id: int, owner_id: int, archived: bool = True) -> bool:
        cur = self._conn.execute(
            """
            UPDATE conversations SET archived = ?, updated_at = datetime('now')
            WHERE id = ? AND owner_id = ?
            """,
            (int(archived), conversation_id, owner_id),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def delete_conversation(self, conversation_id: int, owner_id: int) -> bool:
        """Delete a conversation and (via ON DELETE CASCADE) its messages."""
        cur = self._conn.execute(
            "DELETE FROM conversations WHERE id = ? AND owner_id = ?",
            (conversation_id, owner_id),
        )
        self._conn.commit()
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def append_message(
        self,
        conversation_id: int,
        owner_id: int,
        role: str,
        content: str,
        image_url: str | None = None,
    ) -> int:
        """Persist one turn and return its id.

        The first user message of a conversation still carrying its default
        title also becomes the conversation title.

        Raises:
            NotFoundError: Conversation missing or not owned by *owner_id*.
            ValidationError: Unknown role.
        """
        if role not in VALID_ROLES:
            raise ValidationError(f"Invalid message role '{role}'.")
        conversation = self.require_conversation(conversation_id, owner_id)

        cur = self._conn.execute(
            """
            INSERT INTO messages (conversation_id, role, content, image_url)
            VALUES (?, ?, ?, ?)
            """,
            (conversation_id, role, content, image_url),
        )
        new_title = conversation.title
        if role == "user" and conversation.title.startswith(DEFAULT_TITLE_PREFIX):
            new_title = title_from_message(content) or conversation.title
        self._conn.execute(
            """
            UPDATE conversations
            SET message_count = message_count + 1, title = ?, updated_at = datetime('now')
            WHERE id = ?
            """,
            (new_title, conversation_id),
        )
        self._conn.commit()
        return int(cur.lastrowid)

    def list_messages(
        self,
        conversation_id: int,
        owner_id: int,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Message]:
        """Return messages oldest first.

        Raises:
            NotFoundError: Conversation missing or not owned by *owner_id*.
        """
        self.require_conversation(conversation_id, owner_id)
        return self._select_messages(conversation_id, limit, offset)

    def messages_for_context(
        self, conversation_id: int, owner_id: int, *, limit: int = 100
    ) -> list[Message]:
        """Return the *limit* most recent messages, oldest first."""
        self.require_conversation(conversation_id, owner_id)
        rows = self._conn.execute(
            f"""
            SELECT {_MESSAGE_COLS} FROM messages
            WHERE conversation_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (conversation_id, limit),
        ).fetchall()
        return [_row_to_message(r) for r in reversed(rows)]

    def _select_messages(self, conversation_id: int, limit: int, offset: int) -> list[Message]:
        rows = self._conn.execute(
            f"""
            SELECT {_MESSAGE_COLS} FROM messages
            WHERE conversation_id = ?
            ORDER BY created_at ASC, id ASC
            LIMIT ? OFFSET ?
            """,
            (conversation_id, limit, offset),
        ).fetchall()
        return [_row_to_message(r) for r in rows]

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def add_image(
        self, owner_id: int, path: str, url: str, mime_type: str, expires_at: datetime
    ) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO images (owner_id, path, url, mime_type, expires_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (owner_id, path, url, mime_type, _sql_time(expires_at)),
        )
        self._conn.commit()
        return int(cur.lastrowid)

    def get_image_by_url(self, url: str) -> StoredImage | None:
        row = self._conn.execute(
            f"SELECT {_IMAGE_COLS} FROM images WHERE url = ?", (url,)
        ).fetchone()
        return _row_to_image(row) if row else None

    def list_expired_images(self, now: datetime) -> list[StoredImage]:
        rows = self._conn.execute(
            f"SELECT {_IMAGE_COLS} FROM images WHERE expires_at <= ? ORDER BY id",
            (_sql_time(now),),
        ).fetchall()
        return [_row_to_image(r) for r in rows]

    def delete_image(self, image_id: int) -> None:
        self._conn.execute("DELETE FROM images WHERE id = ?", (image_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def get_preferences(self, owner_id: int) -> dict[str, Any]:
        row = self._conn.execute(
            "SELECT data FROM preferences WHERE owner_id = ?", (owner_id,)
        ).fetchone()
        return json.loads(row["data"]) if row else {}

    def set_preferences(self, owner_id: int, updates: dict[str, Any]) -> dict[str, Any]:
        """Merge *updates* into the stored preferences and return the result."""
        merged = {**self.get_preferences(owner_id), **updates}
        self._conn.execute(
            """
            INSERT INTO preferences (owner_id, data) VALUES (?, ?)
            ON CONFLICT(owner_id) DO UPDATE
            SET data = excluded.data, updated_at = datetime('now')
            """,
            (owner_id, json.dumps(merged, sort_keys=True)),
        )
        self._conn.commit()
        return merged


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------


def _sql_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        owner_id=row["owner_id"],
        title=row["title"],
        archived=bool(row["archived"]),
        message_count=row["message_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=row["role"],
        content=row["content"],
        image_url=row["image_url"],
        created_at=row["created_at"],
    )


def _row_to_image(row: sqlite3.Row) -> StoredImage:
    return StoredImage(
        id=row["id"],
        owner_id=row["owner_id"],
        path=row["path"],
        url=row["url"],
        mime_type=row["mime_type"],
        expires_at=row["expires_at"],
        created_at=row["created_at"],
    )
