"""Shared error types for the chat client, the voice session and the gateway."""
from __future__ import annotations

from typing import Any, Optional


class PalaverError(Exception):
    """Base class for every error surfaced to callers."""


class RequestFailedError(PalaverError):
    """A request was answered with a non-success status or could not be read."""

    default_message = "Failed to get response"

    def __init__(self, message: Optional[str] = None, *, status: Optional[int] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.status = status


class RateLimitedError(RequestFailedError):
    """Raised for HTTP 429."""

    default_message = "Rate limit exceeded. Please wait a moment."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message, status=429)


class PaymentRequiredError(RequestFailedError):
    """Raised for HTTP 402."""

    default_message = "Please add credits to continue."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message, status=402)


class CredentialError(PalaverError):
    """The token-issuing function did not hand out a usable ephemeral secret."""


class NegotiationError(PalaverError):
    """The offer/answer exchange with the realtime endpoint failed."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class MediaAccessDeniedError(PalaverError):
    """The local capture device refused access (permission denied)."""


class SessionClosedError(PalaverError):
    """The voice session is disconnected and cannot be used again."""


def error_for_status(status: int, body: Any = None) -> RequestFailedError:
    """Map a non-success HTTP status and its optional ``{"error": ...}`` body."""

    if status == 429:
        return RateLimitedError()
    if status == 402:
        return PaymentRequiredError()
    message = None
    if isinstance(body, dict) and isinstance(body.get("error"), str) and body["error"].strip():
        message = body["error"]
    return RequestFailedError(message, status=status)


__all__ = [
    "CredentialError",
    "MediaAccessDeniedError",
    "NegotiationError",
    "PalaverError",
    "PaymentRequiredError",
    "RateLimitedError",
    "RequestFailedError",
    "SessionClosedError",
    "error_for_status",
]
