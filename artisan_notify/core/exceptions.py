"""Application exception hierarchy rendered as RFC 7807 problem details.

These exceptions describe failures at the HTTP boundary (bad requests,
unknown resources, rejected webhook signatures). Delivery failures are never
raised through this hierarchy: the dispatcher reports them as classified
results instead.
"""

from __future__ import annotations

from typing import Any, ClassVar

_DEFAULT_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    404: "Not Found",
    422: "Unprocessable Entity",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


class AppException(Exception):
    """Base application exception.

    Attributes:
        status_code: HTTP status code for the error.
        detail: Human-readable error message.
        type: Problem type identifier.
        title: Short summary of the problem type.
        instance: URI reference for this specific occurrence.
        extra: Additional context merged into the problem document.

    Example:
        raise AppException(
            status_code=404,
            detail="No delivery record for message gs-123",
            type="message-not-found",
            extra={"message_id": "gs-123"},
        )
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or _DEFAULT_TITLES.get(status_code, "Error")
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)


class _StatusException(AppException):
    """AppException with a fixed status code, title and default problem type."""

    status_code_default: ClassVar[int]
    title_default: ClassVar[str]
    type_default: ClassVar[str]

    def __init__(
        self,
        detail: str,
        type: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=self.status_code_default,
            detail=detail,
            type=type or self.type_default,
            title=self.title_default,
            instance=instance,
            extra=extra,
        )


class NotFoundException(_StatusException):
    """Raised when a message, channel or record cannot be found."""

    status_code_default = 404
    title_default = "Not Found"
    type_default = "not-found"


class ValidationException(_StatusException):
    """Raised for malformed requests that pydantic could not reject on its own.

    Example:
        raise ValidationException(
            "start must not be after end",
            extra={"start": start.isoformat(), "end": end.isoformat()},
        )
    """

    status_code_default = 422
    title_default = "Validation Error"
    type_default = "validation-error"


class UnauthorizedException(_StatusException):
    """Raised when an inbound webhook fails signature verification."""

    status_code_default = 401
    title_default = "Unauthorized"
    type_default = "unauthorized"


class ServiceUnavailableException(_StatusException):
    status_code_default = 503
    title_default = "Service Unavailable"
    type_default = "service-unavailable"

__all__ = [
    "AppException",
    "NotFoundException",
    "ServiceUnavailableException",
    "UnauthorizedException",
    "ValidationException",
]
