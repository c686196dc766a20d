"""Sitebot rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from sitebot.cli.errors import format_error
    console.print(format_error(exc))
    raise typer.Exit(1)
"""

from __future__ import annotations

from collections.abc import Callable

from sitebot.errors import SitebotError


def err_no_api_key() -> str:
    """No credential configured for the model API."""
    return (
        "[red]Error:[/] No API key configured.\n"
        "  Set:  export SITEBOT_API_KEY=sk-..."
    )


def err_invalid_credential(message: str) -> str:
    return (
        f"[red]Error:[/] The API rejected the credential: {message}\n"
        "  Check the key, then run:  sitebot test-api"
    )


def err_rate_limited(message: str) -> str:
    return (
        f"[yellow]Rate limited:[/] {message}\n"
        "  Wait a few seconds and retry, or check your plan's quota."
    )


def err_provider_unavailable(message: str) -> str:
    return (
        f"[red]Error:[/] The model provider is unavailable: {message}\n"
        "  Retry in a few minutes."
    )


def err_connection(message: str) -> str:
    return (
        f"[red]Error:[/] Could not reach the API. {message}\n"
        "  Check your network connection and chat.base_url in sitebot.yaml."
    )


def err_no_content() -> str:
    """No content source returned any page."""
    return (
        "[red]Error:[/] No pages were retrieved from any content source.\n"
        "  Check sources.urls in sitebot.yaml, e.g.:\n"
        "    sources:\n"
        "      urls: [https://example.org/wp-json/wp/v2]"
    )


def err_no_sources() -> str:
    """No content source configured at all."""
    return (
        "[yellow]Warning:[/] No content sources configured.\n"
        "  Add sources.urls to sitebot.yaml or export SITEBOT_SOURCES=<url>."
    )


def err_not_found(message: str) -> str:
    return (
        f"[yellow]Not found:[/] {message}\n"
        "  Omit --conversation to start a new conversation."
    )


def err_invalid_input(message: str) -> str:
    return f"[red]Error:[/] {message}"


def err_config(message: str) -> str:
    """Config file is invalid or contains a forbidden key."""
    return f"[red]Error:[/] {message}"


def err_generic(message: str) -> str:
    return f"[red]Error:[/] {message}"


_BY_KIND: dict[str, Callable[[str], str]] = {
    "not_configured": lambda _m: err_no_api_key(),
    "invalid_credential": err_invalid_credential,
    "rate_limited": err_rate_limited,
    "provider_unavailable": err_provider_unavailable,
    "connection_error": err_connection,
    "no_content": lambda _m: err_no_content(),
    "not_found": err_not_found,
    "validation_error": err_invalid_input,
}


def format_error(exc: SitebotError) -> str:
    """Render *exc* with the helper matching its kind."""
    return _BY_KIND.get(exc.kind, err_generic)(exc.message)
