"""Chat-completion client: system prompt, message assembly, retry/backoff.

Wire contract (OpenAI-compatible):
  POST {base}/chat/completions  {model, messages, max_tokens, temperature}
  GET  {base}/models            connectivity test + model listing

Retry state machine (per request):
  Attempt(0..MAX_RETRIES). HTTP 200 → success. HTTP 429 with attempts left →
  wait, then Attempt(n+1). The wait before Attempt(n) is min(2**n, 8) seconds,
  or the provider's numeric Retry-After when it is ≤ 30 seconds.
  Anything else, or 429 on the last attempt → mapped error. Transport
  failures are never retried. The loop itself is a tenacity Retrying
  policy keyed on RateLimitedError.

Context-window sizes come from litellm's model table.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx
import litellm
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)

from sitebot.errors import InvalidResponseError, NotConfiguredError, RateLimitedError
from sitebot.rag.transport import ApiTransport, error_from_response, json_body

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

MAX_RETRIES = 2
MAX_BACKOFF_SECONDS = 8
MAX_RETRY_AFTER_SECONDS = 30
DEFAULT_IMAGE_PROMPT = "Describe this image in detail."

_RULE = "=" * 50


# ------------------------------------------------------------------
# Data model
# ------------------------------------------------------------------


@dataclass
class ChatConfig:
    """Everything the chat client needs, passed in explicitly.

    Attributes:
        api_key: Bearer credential; None means not configured.
        model: Chat model name.
        base_url: API root.
        max_tokens: Reply token cap (already clamped by the config loader).
        temperature: Sampling temperature (already clamped).
        timeout: Per-request timeout in seconds.
        site_name: Site name used in the system prompt.
        language: Language the assistant must answer in.
        instructions: Owner-written instructions appended to the prompt.
        answer_level: 'essential' or 'detailed'.
    """

    api_key: str | None = None
    model: str = "gpt-4o"
    base_url: str = "https://api.openai.com/v1"
    max_tokens: int = 1000
    temperature: float = 0.7
    timeout: float = 90.0
    site_name: str = ""
    language: str = "English"
    instructions: str = ""
    answer_level: str = "essential"


@dataclass
class ChatMessage:
    """One conversation turn as the chat client sees it."""

    role: str  # system | user | assistant
    content: str
    image_url: str | None = None


@dataclass
class ChatReply:
    content: str
    model: str
    usage: dict[str, Any] = field(default_factory=dict)


@dataclass
class ConnectionCheck:
    success: bool
    message: str


# ------------------------------------------------------------------
# Model metadata
# ------------------------------------------------------------------


def get_context_window(model: str) -> int:
    """Return the context window size for *model* in tokens.

    Uses litellm.get_model_info() with a hardcoded fallback table for common models.
    Returns 8192 if the model is unknown.
    """
    try:
        info = litellm.get_model_info(model)
        return info.get("max_input_tokens") or info.get("max_tokens") or 8192
    except Exception:
        pass

    _FALLBACK: dict[str, int] = {
        "gpt-4o": 128_000,
        "gpt-4o-mini": 128_000,
        "gpt-4-turbo": 128_000,
        "gpt-4.1": 1_047_576,
        "gpt-3.5-turbo": 16_384,
    }
    return _FALLBACK.get(model.split("/")[-1], 8_192)


def context_budget(model: str, configured_max: int) -> int:
    """Tokens available for site context: half the window, capped by config."""
    return max(1, min(configured_max, get_context_window(model) // 2))


# ------------------------------------------------------------------
# Prompt assembly
# ------------------------------------------------------------------

_LEVEL_TEXT: dict[str, str] = {
    "essential": (
        "Answer level: essential. Keep answers short and direct (3 to 5 sentences), "
        "focused on the key points."
    ),
    "detailed": (
        "Answer level: detailed. Give complete, structured answers with explanations "
        "and examples wherever the site content provides them."
    ),
}


def build_system_prompt(site_context: str | None, config: ChatConfig) -> str:
    """Return the deterministic system prompt for *site_context*.

    Empty or missing context is replaced by an explicit warning line so the
    model tells the user instead of answering from general knowledge.
    """
    site = config.site_name or "this website"
    parts = [
        f'You are the assistant of the website "{site}". You help visitors find '
        "and understand the information published on this site.",
        _LEVEL_TEXT.get(config.answer_level, _LEVEL_TEXT["essential"]),
        "How to answer:\n"
        "1. The site content below is your knowledge base. Search it for every term "
        "of the question, ignoring case and accents.\n"
        "2. Check page titles, sections and page content; a term may appear as a "
        "plural, an abbreviation or a synonym.\n"
        "3. Synthesize the relevant passages in your own words instead of quoting "
        "whole pages.\n"
        f"4. Always answer in {config.language}.\n"
        "5. Cite your source: give the page title and its URL.\n"
        "6. If the term does not appear anywhere in the site content, say so "
        "explicitly and suggest related topics that do exist on the site.\n"
        "7. Never invent information that is not in the site content.",
    ]

    if config.instructions.strip():
        parts.append(
            "Additional instructions from the site owner:\n" + config.instructions.strip()
        )

    if site_context and site_context.strip():
        parts.append(
            f"{_RULE}\nSITE KNOWLEDGE BASE - SEARCH HERE:\n{_RULE}\n\n"
            f"{site_context}\n\n"
            f"{_RULE}\nEND OF SITE KNOWLEDGE BASE\n{_RULE}"
        )
    else:
        parts.append(
            "[WARNING: no site content is available. Tell the user that the site "
            "content index must be refreshed by an administrator.]"
        )

    return "\n\n".join(parts)


def _image_reference(image: str) -> str:
    if image.startswith(("data:", "http://", "https://")):
        return image
    return f"data:image/jpeg;base64,{image}"


def prepare_messages(
    history: Sequence[ChatMessage],
    system_prompt: str,
    image: str | None = None,
) -> list[dict[str, Any]]:
    """Build the provider message list.

    A system message comes first, then *history* in order. When *image* is
    given, only the last user turn becomes a multi-part text + image message.
    """
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for msg in history:
        messages.append({"role": msg.role, "content": msg.content})

    if image:
        for idx in range(len(messages) - 1, 0, -1):
            if messages[idx]["role"] == "user":
                messages[idx] = {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": messages[idx]["content"]},
                        {
                            "type": "image_url",
                            "image_url": {"url": _image_reference(image), "detail": "high"},
                        },
                    ],
                }
                break

    return messages


# ------------------------------------------------------------------
# Client
# ------------------------------------------------------------------


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    if 0 <= value <= MAX_RETRY_AFTER_SECONDS:
        return value
    return None


def _rate_limit_wait(retry_state: RetryCallState) -> float:
    """Provider Retry-After when usable, else min(2**n, 8) before attempt n+1."""
    error = retry_state.outcome.exception() if retry_state.outcome else None
    retry_after = getattr(error, "retry_after", None)
    if retry_after is not None:
        return retry_after
    return min(2**retry_state.attempt_number, MAX_BACKOFF_SECONDS)


class ChatClient:
    """Stateless chat-completion client; safe to share across requests.

    Args:
        config: Explicit settings (credential, model, prompt parameters).
        http_client: Optional httpx.Client (tests inject a MockTransport).
        sleep: Blocking wait used between retries; injectable for tests.
        logger: Logger for retry checkpoints.
    """

    def __init__(
        self,
        config: ChatConfig,
        *,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self._http_client = http_client
        self._transport: ApiTransport | None = None
        self._sleep = sleep
        self._log = logger or logging.getLogger(__name__)

    def _get_transport(self) -> ApiTransport:
        if not self.config.api_key:
            raise NotConfiguredError("No API key configured. Set SITEBOT_API_KEY.")
        if self._transport is None:
            self._transport = ApiTransport(
                self.config.base_url,
                self.config.api_key,
                self.config.timeout,
                client=self._http_client,
            )
        return self._transport

    # -- public API ---------------------------------------------------

    def build_system_prompt(self, site_context: str | None) -> str:
        return build_system_prompt(site_context, self.config)

    def send_message(
        self,
        history: Sequence[ChatMessage],
        image: str | None = None,
        site_context: str | None = None,
    ) -> ChatReply:
        """Send *history* (plus optional image and context) and return the reply.

        Raises:
            NotConfiguredError: No API key configured (no network call made).
            RateLimitedError: Still rate limited after MAX_RETRIES retries.
            SitebotError: Any other mapped failure (see sitebot.errors).
        """
        transport = self._get_transport()
        messages = prepare_messages(history, self.build_system_prompt(site_context), image)
        body = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        data = self._post_with_retry(transport, "/chat/completions", body)
        return self._parse_reply(data)

    def analyze_image(self, image: str, prompt: str | None = None) -> ChatReply:
        """Single-turn question about *image*, with a default prompt."""
        turn = ChatMessage(role="user", content=prompt or DEFAULT_IMAGE_PROMPT)
        return self.send_message([turn], image=image)

    def test_connection(self) -> ConnectionCheck:
        """One GET against the model listing. 200 → success, else the mapped error."""
        response = self._get_transport().get("/models")
        if response.status_code != 200:
            raise error_from_response(response)
        return ConnectionCheck(success=True, message="Connection successful")

    def list_models(self) -> list[str]:
        """Return ids of available chat models (ids containing 'gpt')."""
        response = self._get_transport().get("/models")
        if response.status_code != 200:
            raise error_from_response(response)
        data = json_body(response).get("data")
        if not isinstance(data, list):
            raise InvalidResponseError("Invalid models response: missing 'data' list.")
        return [
            str(item["id"])
            for item in data
            if isinstance(item, dict) and "gpt" in str(item.get("id", ""))
        ]

    # -- internals ----------------------------------------------------

    def _post_with_retry(
        self, transport: ApiTransport, path: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        retrying = Retrying(
            retry=retry_if_exception_type(RateLimitedError),
            stop=stop_after_attempt(MAX_RETRIES + 1),
            wait=_rate_limit_wait,
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(self._post_once, transport, path, body)

    def _post_once(
        self, transport: ApiTransport, path: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        response = transport.post(path, body)
        if response.status_code == 200:
            return json_body(response)
        error = error_from_response(response)
        if isinstance(error, RateLimitedError):
            error.retry_after = _retry_after_seconds(response)
        raise error

    def _log_retry(self, retry_state: RetryCallState) -> None:
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        self._log.warning(
            "rate limited, retry %d/%d in %.1fs",
            retry_state.attempt_number,
            MAX_RETRIES,
            wait,
            extra={"attempt": retry_state.attempt_number, "wait_seconds": wait},
        )

    def _parse_reply(self, data: dict[str, Any]) -> ChatReply:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise InvalidResponseError(
                "Invalid API response: no message content."
            ) from exc
        if not isinstance(content, str):
            raise InvalidResponseError("Invalid API response: no message content.")
        usage = data.get("usage")
        return ChatReply(
            content=content,
            model=str(data.get("model") or self.config.model),
            usage=usage if isinstance(usage, dict) else {},
        )
