"""Chat request orchestration.

Pipeline per request:
  1. Resolve the conversation (create one when no id is given).
  2. Resolve the image: a stored URL is re-encoded inline; an inline data URI
     is persisted and also kept inline for the model call.
  3. Persist the user turn (committed before the model is called).
  4. Load the 100 most recent turns.
  5. Fetch the site context (cache first) and cut it to the model budget.
  6. Call the chat client.
  7. Persist the assistant turn and return it with usage.

A failure in steps 1-6 propagates unchanged; no assistant turn is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sitebot.context.cache import ContextService
from sitebot.context.index import IndexService
from sitebot.db.repository import Repository
from sitebot.errors import NotFoundError, ValidationError
from sitebot.images import ImageStore
from sitebot.rag.llm_client import ChatClient, ChatMessage
from sitebot.rag.truncation import truncate

HISTORY_LIMIT = 100
MAX_MESSAGE_CHARS = 10_000


@dataclass
class ChatResult:
    conversation_id: int
    content: str
    model: str
    usage: dict[str, Any] = field(default_factory=dict)
    image_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "conversation_id": self.conversation_id,
            "message": {"role": "assistant", "content": self.content},
            "usage": self.usage,
            "model": self.model,
        }


class ChatOrchestrator:
    """Wire one chat request through store, context and chat client.

    Args:
        repo: Conversation store for this request.
        images: Image store for attachments.
        context: Shared context service.
        client: Chat client.
        context_tokens: Token budget for the site context.
        logger: Logger for request checkpoints.
    """

    def __init__(
        self,
        repo: Repository,
        images: ImageStore,
        context: ContextService | IndexService,
        client: ChatClient,
        *,
        context_tokens: int,
        logger: logging.Logger | None = None,
    ) -> None:
        self.repo = repo
        self.images = images
        self.context = context
        self.client = client
        self.context_tokens = context_tokens
        self._log = logger or logging.getLogger(__name__)

    def handle_chat(
        self,
        owner_id: int,
        message: str,
        conversation_id: int | None = None,
        image: str | None = None,
    ) -> ChatResult:
        """Answer *message* for *owner_id*.

        Raises:
            ValidationError: Empty or oversized message, or an unusable image.
            NotFoundError: *conversation_id* missing or owned by someone else.
            SitebotError: Any chat-client failure (see sitebot.errors).
        """
        text = (message or "").strip()
        if not text:
            raise ValidationError("Message must not be empty.")
        if len(text) > MAX_MESSAGE_CHARS:
            raise ValidationError(f"Message too long (max {MAX_MESSAGE_CHARS} characters).")

        if conversation_id is None:
            conversation_id = self.repo.create_conversation(owner_id)
        elif self.repo.get_conversation(conversation_id, owner_id) is None:
            raise NotFoundError(f"Conversation {conversation_id} not found.")

        image_url, inline_image = self._resolve_image(image, owner_id)

        self.repo.append_message(conversation_id, owner_id, "user", text, image_url)

        history = [
            ChatMessage(role=m.role, content=m.content, image_url=m.image_url)
            for m in self.repo.messages_for_context(
                conversation_id, owner_id, limit=HISTORY_LIMIT
            )
        ]

        site_context = self.context.get_context()
        if site_context:
            site_context = truncate(site_context, self.context_tokens)

        reply = self.client.send_message(history, image=inline_image, site_context=site_context)

        self.repo.append_message(conversation_id, owner_id, "assistant", reply.content)
        self._log.info(
            "chat reply stored",
            extra={
                "conversation_id": conversation_id,
                "total_tokens": reply.usage.get("total_tokens"),
            },
        )
        return ChatResult(
            conversation_id=conversation_id,
            content=reply.content,
            model=reply.model,
            usage=reply.usage,
            image_url=image_url,
        )

    def _resolve_image(self, image: str | None, owner_id: int) -> tuple[str | None, str | None]:
        """Return (stored url, inline data URI) for the request's image."""
        if not image:
            return None, None
        image = image.strip()

        if image.startswith("data:image"):
            stored = self.images.store(image, owner_id)
            return stored.url, image

        if image.startswith(("http://", "https://", "/")):
            path = self.images.path_for_url(image)
            if path is None:
                raise ValidationError("Image not found or expired. Upload it again.")
            return image, self.images.to_inline_data(path)

        raise ValidationError("Image must be an uploaded image URL or a data:image URI.")
