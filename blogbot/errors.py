"""Application error taxonomy shared by the pipeline and the HTTP layer."""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for errors that carry an HTTP status and safe message."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        is_operational: bool = True,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.is_operational = is_operational
        self.context = context or {}


class InputValidationError(AppError):
    status_code = 400

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message, context={"fields": fields or []})
        self.fields = fields or []


class RateLimitError(AppError):
    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", retry_after: int = 60):
        super().__init__(message, context={"retry_after": retry_after})
        self.retry_after = retry_after


class NotFoundError(AppError):
    status_code = 404


class NetworkError(AppError):
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status: int | None = None,
    ):
        super().__init__(message, context={"url": url, "status": status})
        self.url = url
        self.status = status

    @property
    def is_retryable(self) -> bool:
        # No status means the request never got a response (transport failure).
        if self.status is None:
            return True
        return self.status >= 500 or self.status == 429


class ExternalServiceError(AppError):
    status_code = 502

    def __init__(self, service: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(f"{service} error: {message}", context=context)
        self.service = service


class LLMNotConfiguredError(ExternalServiceError):
    def __init__(self, service: str = "openai"):
        super().__init__(service, "API key is not configured")


def get_error_message(error: BaseException | str | None) -> str:
    if isinstance(error, AppError):
        return error.message
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    if isinstance(error, str):
        return error
    return "An unknown error occurred"


def get_error_context(error: BaseException) -> dict[str, Any]:
    if isinstance(error, AppError):
        return {
            "name": error.__class__.__name__,
            "status_code": error.status_code,
            "is_operational": error.is_operational,
            **error.context,
        }
    return {"name": error.__class__.__name__, "error": str(error)}
