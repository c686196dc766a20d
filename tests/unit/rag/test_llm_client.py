"""Tests for the chat-completion client: prompt, messages, retry machine."""

from __future__ import annotations

import json
from unittest.mock import patch

import httpx
import pytest

from sitebot.errors import (
    ApiConnectionError,
    ApiError,
    InvalidCredentialError,
    InvalidResponseError,
    NotConfiguredError,
    ProviderUnavailableError,
    RateLimitedError,
)
from sitebot.rag.llm_client import (
    DEFAULT_IMAGE_PROMPT,
    ChatClient,
    ChatConfig,
    ChatMessage,
    build_system_prompt,
    context_budget,
    get_context_window,
    prepare_messages,
)

_OK_BODY = {
    "model": "gpt-4o-2024-08-06",
    "choices": [{"message": {"role": "assistant", "content": "Hello there"}}],
    "usage": {"prompt_tokens": 10, "completion_tokens": 2, "total_tokens": 12},
}


class ScriptedHandler:
    """Replies with a fixed sequence of (status, body, headers)."""

    def __init__(self, script: list[tuple[int, dict, dict]]) -> None:
        self.script = list(script)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body, headers = self.script.pop(0)
        return httpx.Response(status, json=body, headers=headers)


def _client(http_client, handler, waits: list[float] | None = None, **overrides) -> ChatClient:
    config = ChatConfig(api_key="sk-test", base_url="https://api.test/v1", **overrides)
    sink = waits if waits is not None else []
    return ChatClient(config, http_client=http_client(handler), sleep=sink.append)


def _history() -> list[ChatMessage]:
    return [
        ChatMessage("user", "hi"),
        ChatMessage("assistant", "hello"),
        ChatMessage("user", "what's this?"),
    ]


# ------------------------------------------------------------------
# build_system_prompt
# ------------------------------------------------------------------


def test_system_prompt_contains_rules_and_context() -> None:
    config = ChatConfig(site_name="Beau Site", language="French")
    prompt = build_system_prompt("=== SITE PAGES ===\n[Page] Glaze", config)

    assert '"Beau Site"' in prompt
    assert "ignoring case and accents" in prompt
    assert "Synthesize" in prompt
    assert "answer in French" in prompt
    assert "page title and its URL" in prompt
    assert "does not appear anywhere" in prompt
    assert "SITE KNOWLEDGE BASE - SEARCH HERE" in prompt
    assert "[Page] Glaze" in prompt
    assert "END OF SITE KNOWLEDGE BASE" in prompt
    assert "WARNING" not in prompt


@pytest.mark.parametrize("context", [None, "", "   \n"])
def test_system_prompt_warns_without_context(context) -> None:
    prompt = build_system_prompt(context, ChatConfig())
    assert "[WARNING: no site content is available" in prompt
    assert "SEARCH HERE" not in prompt


def test_system_prompt_appends_owner_instructions() -> None:
    config = ChatConfig(instructions="Always mention the opening hours.")
    prompt = build_system_prompt("ctx", config)
    assert "Additional instructions from the site owner:\nAlways mention the opening hours." in prompt
    assert prompt.index("opening hours") < prompt.index("SEARCH HERE")


def test_system_prompt_answer_level() -> None:
    assert "3 to 5 sentences" in build_system_prompt("c", ChatConfig(answer_level="essential"))
    assert "structured answers" in build_system_prompt("c", ChatConfig(answer_level="detailed"))


def test_system_prompt_is_deterministic() -> None:
    config = ChatConfig(site_name="S")
    assert build_system_prompt("ctx", config) == build_system_prompt("ctx", config)


# ------------------------------------------------------------------
# prepare_messages
# ------------------------------------------------------------------


def test_prepare_messages_prepends_system_and_keeps_order() -> None:
    messages = prepare_messages(_history(), "SYS")
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[0]["content"] == "SYS"
    assert messages[1]["content"] == "hi"


def test_image_attaches_only_to_last_user_message() -> None:
    messages = prepare_messages(_history(), "SYS", image="data:image/png;base64,AAAA")

    assert messages[1]["content"] == "hi"
    assert messages[2]["content"] == "hello"
    last = messages[3]["content"]
    assert isinstance(last, list)
    assert last[0] == {"type": "text", "text": "what's this?"}
    assert last[1] == {
        "type": "image_url",
        "image_url": {"url": "data:image/png;base64,AAAA", "detail": "high"},
    }


def test_image_goes_to_last_user_even_if_assistant_is_last() -> None:
    history = _history() + [ChatMessage("assistant", "thinking")]
    messages = prepare_messages(history, "SYS", image="data:image/png;base64,AAAA")
    assert isinstance(messages[3]["content"], list)
    assert messages[4]["content"] == "thinking"
    assert messages[1]["content"] == "hi"


def test_raw_base64_image_is_wrapped() -> None:
    messages = prepare_messages([ChatMessage("user", "x")], "SYS", image="QUJD")
    assert messages[1]["content"][1]["image_url"]["url"] == "data:image/jpeg;base64,QUJD"


def test_no_user_message_means_no_image() -> None:
    messages = prepare_messages([ChatMessage("assistant", "x")], "SYS", image="QUJD")
    assert messages[1]["content"] == "x"


# ------------------------------------------------------------------
# send_message
# ------------------------------------------------------------------


def test_send_message_returns_reply(http_client) -> None:
    handler = ScriptedHandler([(200, _OK_BODY, {})])
    client = _client(http_client, handler, model="gpt-4o", max_tokens=500, temperature=0.2)

    reply = client.send_message(_history(), site_context="ctx")

    assert reply.content == "Hello there"
    assert reply.model == "gpt-4o-2024-08-06"
    assert reply.usage["total_tokens"] == 12

    request = handler.requests[0]
    assert request.url.path == "/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["model"] == "gpt-4o"
    assert body["max_tokens"] == 500
    assert body["temperature"] == 0.2
    assert body["messages"][0]["role"] == "system"


def test_model_falls_back_to_configured(http_client) -> None:
    body = {"choices": [{"message": {"content": "ok"}}]}
    client = _client(http_client, ScriptedHandler([(200, body, {})]), model="gpt-4o-mini")
    reply = client.send_message([ChatMessage("user", "q")])
    assert reply.model == "gpt-4o-mini"
    assert reply.usage == {}


def test_not_configured_makes_no_call(http_client) -> None:
    handler = ScriptedHandler([])
    client = ChatClient(ChatConfig(api_key=None), http_client=http_client(handler))

    with pytest.raises(NotConfiguredError):
        client.send_message([ChatMessage("user", "q")])
    assert handler.requests == []


@pytest.mark.parametrize(
    "body",
    [
        {"choices": []},
        {"choices": [{"message": {}}]},
        {"choices": [{"message": {"content": None}}]},
        {"nothing": True},
    ],
)
def test_missing_content_is_invalid_response(http_client, body) -> None:
    client = _client(http_client, ScriptedHandler([(200, body, {})]))
    with pytest.raises(InvalidResponseError):
        client.send_message([ChatMessage("user", "q")])


# ------------------------------------------------------------------
# Retry state machine
# ------------------------------------------------------------------


def test_429_429_200_waits_twice_then_succeeds(http_client) -> None:
    handler = ScriptedHandler([(429, {}, {}), (429, {}, {}), (200, _OK_BODY, {})])
    waits: list[float] = []
    client = _client(http_client, handler, waits)

    reply = client.send_message([ChatMessage("user", "q")])

    assert reply.content == "Hello there"
    assert waits == [2, 4]
    assert len(handler.requests) == 3


def test_429_three_times_raises_rate_limited(http_client) -> None:
    handler = ScriptedHandler([(429, {}, {})] * 3)
    waits: list[float] = []
    client = _client(http_client, handler, waits)

    with pytest.raises(RateLimitedError):
        client.send_message([ChatMessage("user", "q")])

    assert len(waits) == 2
    assert len(handler.requests) == 3
    assert handler.script == []


def test_retry_after_header_replaces_backoff(http_client) -> None:
    handler = ScriptedHandler(
        [(429, {}, {"Retry-After": "7"}), (429, {}, {"Retry-After": "120"}), (200, _OK_BODY, {})]
    )
    waits: list[float] = []
    client = _client(http_client, handler, waits)

    client.send_message([ChatMessage("user", "q")])

    # 7 ≤ 30 is honoured; 120 is ignored in favour of min(2**2, 8).
    assert waits == [7.0, 4]


def test_exhausted_retries_keep_status_and_log_each_wait(http_client, caplog) -> None:
    handler = ScriptedHandler([(429, {"error": {"message": "Slow down"}}, {"Retry-After": "3"})] * 3)
    waits: list[float] = []
    client = _client(http_client, handler, waits)

    with caplog.at_level("WARNING", logger="sitebot.rag.llm_client"):
        with pytest.raises(RateLimitedError) as excinfo:
            client.send_message([ChatMessage("user", "q")])

    assert excinfo.value.status == 429
    assert excinfo.value.message == "Slow down"
    assert excinfo.value.retry_after == 3.0
    assert waits == [3.0, 3.0]
    assert caplog.text.count("rate limited, retry") == 2


def test_non_numeric_retry_after_uses_backoff(http_client) -> None:
    handler = ScriptedHandler([(429, {}, {"Retry-After": "soon"}), (200, _OK_BODY, {})])
    waits: list[float] = []
    _client(http_client, handler, waits).send_message([ChatMessage("user", "q")])
    assert waits == [2]


@pytest.mark.parametrize(
    ("status", "cls"),
    [(401, InvalidCredentialError), (500, ProviderUnavailableError), (503, ProviderUnavailableError), (400, ApiError)],
)
def test_other_errors_fail_without_retry(http_client, status, cls) -> None:
    handler = ScriptedHandler([(status, {"error": {"message": "nope"}}, {})])
    waits: list[float] = []
    client = _client(http_client, handler, waits)

    with pytest.raises(cls, match="nope"):
        client.send_message([ChatMessage("user", "q")])
    assert waits == []
    assert len(handler.requests) == 1


def test_transport_error_is_not_retried(http_client) -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        raise httpx.ConnectError("refused", request=request)

    waits: list[float] = []
    client = _client(http_client, handler, waits)
    with pytest.raises(ApiConnectionError):
        client.send_message([ChatMessage("user", "q")])
    assert calls == [1]
    assert waits == []


# ------------------------------------------------------------------
# analyze_image / test_connection / list_models
# ------------------------------------------------------------------


def test_analyze_image_uses_default_prompt(http_client) -> None:
    handler = ScriptedHandler([(200, _OK_BODY, {})])
    _client(http_client, handler).analyze_image("data:image/png;base64,AAAA")

    body = json.loads(handler.requests[0].content)
    user = body["messages"][1]["content"]
    assert user[0]["text"] == DEFAULT_IMAGE_PROMPT
    assert user[1]["image_url"]["url"] == "data:image/png;base64,AAAA"


def test_test_connection_single_get(http_client) -> None:
    handler = ScriptedHandler([(200, {"data": []}, {})])
    check = _client(http_client, handler).test_connection()

    assert check.success is True
    assert len(handler.requests) == 1
    assert handler.requests[0].method == "GET"
    assert handler.requests[0].url.path == "/v1/models"


def test_test_connection_surfaces_provider_error(http_client) -> None:
    handler = ScriptedHandler([(401, {"error": {"message": "Incorrect API key"}}, {})])
    with pytest.raises(InvalidCredentialError, match="Incorrect API key"):
        _client(http_client, handler).test_connection()


def test_list_models_filters_gpt(http_client) -> None:
    body = {"data": [{"id": "gpt-4o"}, {"id": "whisper-1"}, {"id": "gpt-4o-mini"}, {"id": "dall-e-3"}]}
    models = _client(http_client, ScriptedHandler([(200, body, {})])).list_models()
    assert models == ["gpt-4o", "gpt-4o-mini"]


# ------------------------------------------------------------------
# Model metadata
# ------------------------------------------------------------------


def test_get_context_window_uses_litellm() -> None:
    with patch(
        "sitebot.rag.llm_client.litellm.get_model_info",
        return_value={"max_input_tokens": 100_000},
    ):
        assert get_context_window("gpt-4o") == 100_000


def test_get_context_window_falls_back() -> None:
    with patch(
        "sitebot.rag.llm_client.litellm.get_model_info", side_effect=Exception("unknown")
    ):
        assert get_context_window("gpt-4o") == 128_000
        assert get_context_window("mystery-model") == 8_192


def test_context_budget_is_capped_by_config() -> None:
    with patch(
        "sitebot.rag.llm_client.litellm.get_model_info",
        return_value={"max_input_tokens": 128_000},
    ):
        assert context_budget("gpt-4o", 60_000) == 60_000
        assert context_budget("gpt-4o", 100_000) == 64_000
