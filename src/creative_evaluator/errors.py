"""
Application exceptions.

Every failure that reaches a caller is one of these, carrying a single
human-readable message and the HTTP status the API layer answers with:
- ValidationError: rejected before any network call
- ConfigurationError: missing server-side credentials
- UpstreamError: AI or email provider failed
- ResponseParseError: model reply, profile JSON or CSV could not be decoded
"""

from __future__ import annotations

from dataclasses import dataclass


class CreativeEvaluatorError(Exception):
    """Base exception for all application errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(CreativeEvaluatorError):
    status_code = 400


class ConfigurationError(CreativeEvaluatorError):
    status_code = 500


class UpstreamError(CreativeEvaluatorError):
    """AI or email provider returned a non-success response."""

    status_code = 502

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        super().__init__(message)


class ResponseParseError(CreativeEvaluatorError):
    status_code = 500


class InvalidCodeError(CreativeEvaluatorError):
    status_code = 400

    def __init__(self, message: str = "Invalid or expired OTP"):
        super().__init__(message)


class TooManyAttemptsError(CreativeEvaluatorError):
    status_code = 429

    def __init__(self, message: str = "Too many attempts. Request a new code."):
        super().__init__(message)


@dataclass(frozen=True)
class SendFailure:
    recipient: str
    filename: str
    status: int
    text: str

    def describe(self) -> str:
        return f"Status {self.status}: {self.text}"


class BulkSendError(UpstreamError):
    """
    Some emails of a fan-out failed. Successful sends already went out and
    are not rolled back; `delivered` reports how many.
    """

    def __init__(self, failures: list[SendFailure], delivered: int):
        self.failures = failures
        self.delivered = delivered
        details = "; ".join(f.describe() for f in failures)
        super().__init__(f"Failed to send {len(failures)} email(s). Details: {details}", provider="sendgrid")
