"""Tests for the error taxonomy."""

from __future__ import annotations

import pytest

from sitebot.errors import (
    ApiConnectionError,
    ApiError,
    InvalidCredentialError,
    InvalidResponseError,
    NoContentError,
    NotConfiguredError,
    NotFoundError,
    ProviderUnavailableError,
    RateLimitedError,
    SitebotError,
    SourceError,
    ValidationError,
)


@pytest.mark.parametrize(
    ("cls", "kind", "status"),
    [
        (NotConfiguredError, "not_configured", 503),
        (ApiConnectionError, "connection_error", 502),
        (RateLimitedError, "rate_limited", 429),
        (InvalidCredentialError, "invalid_credential", 401),
        (ProviderUnavailableError, "provider_unavailable", 503),
        (ApiError, "api_error", 502),
        (InvalidResponseError, "invalid_response", 502),
        (NotFoundError, "not_found", 404),
        (ValidationError, "validation_error", 400),
        (SourceError, "source_error", 502),
        (NoContentError, "no_content", 502),
    ],
)
def test_kinds_and_default_status(cls, kind, status) -> None:
    err = cls("boom")
    assert isinstance(err, SitebotError)
    assert err.kind == kind
    assert err.status == status
    assert err.message == "boom"
    assert str(err) == "boom"


def test_explicit_status_overrides_default() -> None:
    err = ApiError("teapot", status=418)
    assert err.status == 418


def test_to_dict() -> None:
    assert NotFoundError("Conversation 3 not found.").to_dict() == {
        "kind": "not_found",
        "message": "Conversation 3 not found.",
        "status": 404,
    }
