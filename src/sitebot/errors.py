"""Error taxonomy shared by the clients, the stores and the REST layer.

Every failure the core surfaces is a SitebotError subclass carrying:
  - kind:    machine-readable identifier (stable, used by API callers)
  - message: human-readable text (provider message or a mapped hint)
  - status:  HTTP-style status code used by the REST layer

Only two failures are absorbed instead of raised: a single content source
failing during multi-source aggregation, and a cache miss.
"""

from __future__ import annotations

from typing import Any


class SitebotError(Exception):
    """Base class for every error the core surfaces to its callers."""

    kind: str = "error"
    default_status: int = 500

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status if status is not None else self.default_status

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "status": self.status}


class NotConfiguredError(SitebotError):
    """No credential configured — raised before any network call."""

    kind = "not_configured"
    default_status = 503


class ApiConnectionError(SitebotError):
    """Transport-level failure (refused, DNS, timeout). Never retried."""

    kind = "connection_error"
    default_status = 502


class RateLimitedError(SitebotError):
    """HTTP 429. Carries the provider's usable Retry-After, if any."""

    kind = "rate_limited"
    default_status = 429

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status=status)
        self.retry_after = retry_after


class InvalidCredentialError(SitebotError):
    kind = "invalid_credential"
    default_status = 401


class ProviderUnavailableError(SitebotError):
    kind = "provider_unavailable"
    default_status = 503


class ApiError(SitebotError):
    """Provider returned an error status with no more specific mapping."""

    kind = "api_error"
    default_status = 502


class InvalidResponseError(SitebotError):
    """A 200 response without the fields the caller needs."""

    kind = "invalid_response"
    default_status = 502


class NotFoundError(SitebotError):
    """Resource absent, or not owned by the caller."""

    kind = "not_found"
    default_status = 404


class ValidationError(SitebotError):
    kind = "validation_error"
    default_status = 400


class SourceError(SitebotError):
    """One upstream content source could not be read."""

    kind = "source_error"
    default_status = 502


class NoContentError(SitebotError):
    """A forced refresh retrieved zero pages from every source."""

    kind = "no_content"
    default_status = 502
