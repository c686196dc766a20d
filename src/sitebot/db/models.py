"""Domain models for the Sitebot database layer."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Conversation:
    id: int
    owner_id: int
    title: str
    archived: bool = False
    message_count: int = 0
    created_at: str | None = None
    updated_at: str | None = None
    messages: list[Message] = field(default_factory=list)


@dataclass
class Message:
    id: int
    conversation_id: int
    role: str  # system | user | assistant
    content: str
    image_url: str | None = None
    created_at: str | None = None


@dataclass
class StoredImage:
    id: int
    owner_id: int
    path: str
    url: str
    mime_type: str
    expires_at: str
    created_at: str | None = None
