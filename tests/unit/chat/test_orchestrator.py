"""Tests for chat request orchestration."""

from __future__ import annotations

import base64
import io
from unittest.mock import MagicMock

import pytest
from PIL import Image

from sitebot.chat.orchestrator import HISTORY_LIMIT, MAX_MESSAGE_CHARS, ChatOrchestrator
from sitebot.errors import NotFoundError, RateLimitedError, ValidationError
from sitebot.images import ImageStore
from sitebot.rag.llm_client import ChatReply
from sitebot.rag.truncation import TRUNCATION_NOTICE


def _png_uri() -> str:
    out = io.BytesIO()
    Image.new("RGB", (4, 4)).save(out, format="PNG")
    return "data:image/png;base64," + base64.b64encode(out.getvalue()).decode("ascii")


@pytest.fixture
def client():
    mock = MagicMock()
    mock.send_message.return_value = ChatReply(
        content="We fire at cone six.", model="gpt-4o", usage={"total_tokens": 42}
    )
    return mock


@pytest.fixture
def context():
    mock = MagicMock()
    mock.get_context.return_value = "=== SITE INFORMATION ===\nName: Clay Studio\n"
    return mock


@pytest.fixture
def images(repo, tmp_path):
    return ImageStore(repo, tmp_path / "images")


@pytest.fixture
def orchestrator(repo, images, context, client):
    return ChatOrchestrator(repo, images, context, client, context_tokens=4000)


def test_new_conversation_round_trip(orchestrator, repo, client):
    result = orchestrator.handle_chat(1, "  What temperature do you fire at?  ")

    conv = repo.get_conversation(result.conversation_id, 1, with_messages=True)
    assert [(m.role, m.content) for m in conv.messages] == [
        ("user", "What temperature do you fire at?"),
        ("assistant", "We fire at cone six."),
    ]
    assert conv.title == "What temperature do you fire at?"
    assert result.to_dict() == {
        "success": True,
        "conversation_id": result.conversation_id,
        "message": {"role": "assistant", "content": "We fire at cone six."},
        "usage": {"total_tokens": 42},
        "model": "gpt-4o",
    }

    history = client.send_message.call_args.args[0]
    assert [m.content for m in history] == ["What temperature do you fire at?"]
    assert client.send_message.call_args.kwargs["site_context"].startswith("=== SITE")


def test_existing_conversation_sends_full_history(orchestrator, repo, client):
    cid = repo.create_conversation(1)
    repo.append_message(cid, 1, "user", "Hi")
    repo.append_message(cid, 1, "assistant", "Hello!")

    orchestrator.handle_chat(1, "Opening hours?", conversation_id=cid)

    history = client.send_message.call_args.args[0]
    assert [(m.role, m.content) for m in history] == [
        ("user", "Hi"),
        ("assistant", "Hello!"),
        ("user", "Opening hours?"),
    ]


def test_history_is_capped(orchestrator, repo, client):
    cid = repo.create_conversation(1)
    for i in range(HISTORY_LIMIT + 5):
        repo.append_message(cid, 1, "user", f"m{i}")

    orchestrator.handle_chat(1, "latest", conversation_id=cid)

    history = client.send_message.call_args.args[0]
    assert len(history) == HISTORY_LIMIT
    assert history[-1].content == "latest"


@pytest.mark.parametrize("message", ["", "   ", "x" * (MAX_MESSAGE_CHARS + 1)])
def test_invalid_message_is_rejected_before_anything(orchestrator, repo, client, message):
    with pytest.raises(ValidationError):
        orchestrator.handle_chat(1, message)
    assert repo.count_conversations(1) == 0
    client.send_message.assert_not_called()


def test_foreign_conversation_is_not_found(orchestrator, repo, client):
    cid = repo.create_conversation(2)
    with pytest.raises(NotFoundError):
        orchestrator.handle_chat(1, "hello", conversation_id=cid)
    client.send_message.assert_not_called()


def test_client_failure_keeps_user_turn_only(orchestrator, repo, client):
    client.send_message.side_effect = RateLimitedError("Rate limit exceeded.")
    cid = repo.create_conversation(1)

    with pytest.raises(RateLimitedError):
        orchestrator.handle_chat(1, "hello", conversation_id=cid)

    assert [m.role for m in repo.list_messages(cid, 1)] == ["user"]


def test_context_is_truncated_to_budget(repo, images, context, client):
    context.get_context.return_value = "Sentence. " * 5000
    orchestrator = ChatOrchestrator(repo, images, context, client, context_tokens=100)

    orchestrator.handle_chat(1, "hello")

    sent = client.send_message.call_args.kwargs["site_context"]
    assert sent.endswith(TRUNCATION_NOTICE)
    assert len(sent) <= 400 + len(TRUNCATION_NOTICE)


def test_missing_context_is_passed_as_none(orchestrator, context, client):
    context.get_context.return_value = None
    orchestrator.handle_chat(1, "hello")
    assert client.send_message.call_args.kwargs["site_context"] is None


def test_inline_image_is_stored_and_sent(orchestrator, repo, client):
    uri = _png_uri()

    result = orchestrator.handle_chat(1, "What is this?", image=uri)

    assert client.send_message.call_args.kwargs["image"] == uri
    user_turn = repo.list_messages(result.conversation_id, 1)[0]
    assert user_turn.image_url == result.image_url
    assert result.image_url.startswith("/images/1_")


def test_stored_image_url_is_sent_inline(orchestrator, images, client):
    stored = images.store(_png_uri(), owner_id=1)

    orchestrator.handle_chat(1, "And this?", image=stored.url)

    assert client.send_message.call_args.kwargs["image"].startswith("data:image/png;base64,")


@pytest.mark.parametrize("image", ["/images/expired.png", "ftp://example.org/a.png"])
def test_unusable_image_is_rejected(orchestrator, client, image):
    with pytest.raises(ValidationError):
        orchestrator.handle_chat(1, "hello", image=image)
    client.send_message.assert_not_called()
