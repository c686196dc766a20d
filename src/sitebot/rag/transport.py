"""Bearer-authenticated JSON transport for the remote model API.

Shared by the chat and embedding clients. Transport failures become
ApiConnectionError immediately; non-2xx responses are mapped onto the error
taxonomy by error_from_response(). Retrying is the caller's decision.
"""

from __future__ import annotations

from typing import Any

import httpx

from sitebot.errors import (
    ApiConnectionError,
    ApiError,
    InvalidCredentialError,
    InvalidResponseError,
    ProviderUnavailableError,
    RateLimitedError,
    SitebotError,
)

USER_AGENT = "sitebot/0.1"

# Human-readable fallbacks when the provider sends no error message.
_STATUS_MESSAGES: dict[int, str] = {
    401: "Invalid or expired API key. Check the configured credential.",
    429: "API quota reached. Check your plan's quota and retry in a few seconds.",
    500: "The model provider had a server error. Retry later.",
    503: "The model provider is temporarily unavailable. Retry later.",
}

_STATUS_ERRORS: dict[int, type[SitebotError]] = {
    401: InvalidCredentialError,
    429: RateLimitedError,
    500: ProviderUnavailableError,
    503: ProviderUnavailableError,
}


def provider_message(response: httpx.Response) -> str | None:
    """Return ``error.message`` from an OpenAI-shaped error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return None


def error_from_response(response: httpx.Response) -> SitebotError:
    """Map a non-2xx *response* onto the error taxonomy.

    The provider's own message wins when present; known status codes fall
    back to a readable hint; anything else reports the bare status.
    """
    status = response.status_code
    message = (
        provider_message(response)
        or _STATUS_MESSAGES.get(status)
        or f"Unknown error (HTTP {status})"
    )
    error_cls = _STATUS_ERRORS.get(status, ApiError)
    return error_cls(message, status=status)


class ApiTransport:
    """Thin JSON client bound to one API base URL and bearer credential.

    Args:
        base_url: API root, e.g. ``https://api.openai.com/v1``.
        api_key: Bearer credential.
        timeout: Per-request timeout in seconds.
        client: Optional pre-built httpx.Client (tests inject a MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }

    def post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        """POST *body* as JSON. Raises ApiConnectionError on transport failure."""
        try:
            return self._client.post(
                f"{self.base_url}{path}",
                json=body,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except httpx.TransportError as exc:
            raise ApiConnectionError(f"Connection error: {exc}") from exc

    def get(self, path: str) -> httpx.Response:
        """GET *path*. Raises ApiConnectionError on transport failure."""
        try:
            return self._client.get(
                f"{self.base_url}{path}",
                headers=self._headers(),
                timeout=self._timeout,
            )
        except httpx.TransportError as exc:
            raise ApiConnectionError(f"Connection error: {exc}") from exc

    def close(self) -> None:
        self._client.close()


def json_body(response: httpx.Response) -> dict[str, Any]:
    """Decode a 2xx JSON object body or raise InvalidResponseError."""
    try:
        body = response.json()
    except ValueError as exc:
        raise InvalidResponseError("Invalid API response: body is not JSON.") from exc
    if not isinstance(body, dict):
        raise InvalidResponseError("Invalid API response: expected a JSON object.")
    return body
