"""Gateway error classification.

``classify`` turns any raw failure (a ``GatewayError``, an httpx or asyncio
exception, a bare message string, or ``None``) into an
``ErrorClassification`` that drives retry and fallback decisions. It never
raises: input it cannot recognise becomes ``UNKNOWN``.

Signals are checked in order of specificity: an explicit gateway error code,
then message patterns, then the HTTP status, then the exception type.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    # Authentication
    INVALID_API_KEY = "INVALID_API_KEY"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    # Rate limiting
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    # Message validation
    INVALID_PHONE_NUMBER = "INVALID_PHONE_NUMBER"
    INVALID_TEMPLATE = "INVALID_TEMPLATE"
    TEMPLATE_NOT_APPROVED = "TEMPLATE_NOT_APPROVED"
    MESSAGE_TOO_LONG = "MESSAGE_TOO_LONG"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    # Recipient state on the rich channel
    USER_NOT_OPTED_IN = "USER_NOT_OPTED_IN"
    USER_BLOCKED = "USER_BLOCKED"
    BUSINESS_ACCOUNT_RESTRICTED = "BUSINESS_ACCOUNT_RESTRICTED"
    # Plain channel
    SENDER_ID_NOT_APPROVED = "SENDER_ID_NOT_APPROVED"
    CONTENT_BLOCKED = "CONTENT_BLOCKED"
    ROUTE_UNAVAILABLE = "ROUTE_UNAVAILABLE"
    INVALID_SENDER_ID = "INVALID_SENDER_ID"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    DND_NUMBER = "DND_NUMBER"
    # Transport and upstream
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    # Local configuration
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    MISSING_CREDENTIALS = "MISSING_CREDENTIALS"
    UNKNOWN = "UNKNOWN"


class ErrorCategory(str, Enum):
    AUTHENTICATION = "authentication"
    RATE_LIMITING = "rate_limiting"
    VALIDATION = "validation"
    NETWORK = "network"
    SERVICE = "service"
    CONFIGURATION = "configuration"
    USER_ERROR = "user_error"


class RetryAction(str, Enum):
    NO_RETRY = "no_retry"
    RETRY = "retry"
    FALLBACK = "fallback"
    ESCALATE = "escalate"


CATEGORY_DEFAULT_ACTIONS: dict[ErrorCategory, RetryAction] = {
    ErrorCategory.AUTHENTICATION: RetryAction.NO_RETRY,
    ErrorCategory.RATE_LIMITING: RetryAction.FALLBACK,
    ErrorCategory.VALIDATION: RetryAction.NO_RETRY,
    ErrorCategory.NETWORK: RetryAction.RETRY,
    ErrorCategory.SERVICE: RetryAction.RETRY,
    ErrorCategory.CONFIGURATION: RetryAction.ESCALATE,
    ErrorCategory.USER_ERROR: RetryAction.FALLBACK,
}

# Categories whose failures are not time-recoverable.
NON_RETRYABLE_CATEGORIES = frozenset(
    {ErrorCategory.VALIDATION, ErrorCategory.AUTHENTICATION, ErrorCategory.CONFIGURATION},
)

_A = ErrorCategory.AUTHENTICATION
_R = ErrorCategory.RATE_LIMITING
_V = ErrorCategory.VALIDATION
_N = ErrorCategory.NETWORK
_S = ErrorCategory.SERVICE
_C = ErrorCategory.CONFIGURATION
_U = ErrorCategory.USER_ERROR

ERROR_CODE_TABLE: dict[ErrorCode, tuple[ErrorCategory, RetryAction]] = {
    ErrorCode.INVALID_API_KEY: (_A, RetryAction.NO_RETRY),
    ErrorCode.UNAUTHORIZED: (_A, RetryAction.NO_RETRY),
    ErrorCode.FORBIDDEN: (_A, RetryAction.NO_RETRY),
    ErrorCode.RATE_LIMIT_EXCEEDED: (_R, RetryAction.FALLBACK),
    ErrorCode.QUOTA_EXCEEDED: (_R, RetryAction.FALLBACK),
    ErrorCode.INVALID_PHONE_NUMBER: (_V, RetryAction.NO_RETRY),
    ErrorCode.INVALID_TEMPLATE: (_V, RetryAction.NO_RETRY),
    ErrorCode.TEMPLATE_NOT_APPROVED: (_V, RetryAction.NO_RETRY),
    ErrorCode.MESSAGE_TOO_LONG: (_V, RetryAction.NO_RETRY),
    ErrorCode.INVALID_PARAMETERS: (_V, RetryAction.NO_RETRY),
    ErrorCode.USER_NOT_OPTED_IN: (_U, RetryAction.FALLBACK),
    ErrorCode.USER_BLOCKED: (_U, RetryAction.FALLBACK),
    ErrorCode.DND_NUMBER: (_U, RetryAction.FALLBACK),
    ErrorCode.CONTENT_BLOCKED: (_U, RetryAction.NO_RETRY),
    ErrorCode.BUSINESS_ACCOUNT_RESTRICTED: (_C, RetryAction.ESCALATE),
    ErrorCode.SENDER_ID_NOT_APPROVED: (_C, RetryAction.ESCALATE),
    ErrorCode.INVALID_SENDER_ID: (_C, RetryAction.ESCALATE),
    ErrorCode.INSUFFICIENT_BALANCE: (_C, RetryAction.ESCALATE),
    ErrorCode.INVALID_CONFIGURATION: (_C, RetryAction.ESCALATE),
    ErrorCode.MISSING_CREDENTIALS: (_C, RetryAction.ESCALATE),
    ErrorCode.NETWORK_ERROR: (_N, RetryAction.RETRY),
    ErrorCode.TIMEOUT: (_N, RetryAction.RETRY),
    ErrorCode.SERVICE_UNAVAILABLE: (_S, RetryAction.RETRY),
    ErrorCode.INTERNAL_SERVER_ERROR: (_S, RetryAction.RETRY),
    ErrorCode.ROUTE_UNAVAILABLE: (_S, RetryAction.RETRY),
    ErrorCode.UNKNOWN: (_S, RetryAction.RETRY),
}

# Gateway-specific spellings of known codes.
_CODE_ALIASES: dict[str, ErrorCode] = {
    "UNKNOWN_ERROR": ErrorCode.UNKNOWN,
    "WHATSAPP_USER_NOT_OPTED_IN": ErrorCode.USER_NOT_OPTED_IN,
    "WHATSAPP_USER_BLOCKED": ErrorCode.USER_BLOCKED,
    "WHATSAPP_BUSINESS_ACCOUNT_RESTRICTED": ErrorCode.BUSINESS_ACCOUNT_RESTRICTED,
    "SMS_SENDER_ID_NOT_APPROVED": ErrorCode.SENDER_ID_NOT_APPROVED,
    "SMS_CONTENT_BLOCKED": ErrorCode.CONTENT_BLOCKED,
    "SMS_ROUTE_UNAVAILABLE": ErrorCode.ROUTE_UNAVAILABLE,
    "SMS_DND_NUMBER": ErrorCode.DND_NUMBER,
}

# Checked in order; more specific phrases come before generic ones.
_MESSAGE_PATTERNS: tuple[tuple[re.Pattern[str], ErrorCode], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), code)
    for pattern, code in (
        (r"template\s+not\s+approved", ErrorCode.TEMPLATE_NOT_APPROVED),
        (r"template\s+(not\s+found|does\s+not\s+exist)|invalid\s+template", ErrorCode.INVALID_TEMPLATE),
        (r"not\s+opted[\s-]?in|opted[\s-]?out", ErrorCode.USER_NOT_OPTED_IN),
        (r"user\s+(has\s+)?blocked|blocked\s+by\s+(the\s+)?user", ErrorCode.USER_BLOCKED),
        (r"do[\s-]not[\s-]disturb|\bdnd\b", ErrorCode.DND_NUMBER),
        (r"account\s+(is\s+)?(restricted|suspended)", ErrorCode.BUSINESS_ACCOUNT_RESTRICTED),
        (r"insufficient\s+(balance|credits?|funds)", ErrorCode.INSUFFICIENT_BALANCE),
        (r"sender\s+id\s+not\s+approved", ErrorCode.SENDER_ID_NOT_APPROVED),
        (r"invalid\s+sender(\s+id)?", ErrorCode.INVALID_SENDER_ID),
        (r"content\s+blocked|blocked\s+content", ErrorCode.CONTENT_BLOCKED),
        (r"route\s+unavailable", ErrorCode.ROUTE_UNAVAILABLE),
        (r"invalid\s+(phone|mobile)(\s+number)?|invalid\s+destination", ErrorCode.INVALID_PHONE_NUMBER),
        (r"(message|text)\s+(is\s+)?too\s+long", ErrorCode.MESSAGE_TOO_LONG),
        (r"quota\s+exceeded", ErrorCode.QUOTA_EXCEEDED),
        (r"rate\s+limit|too\s+many\s+requests", ErrorCode.RATE_LIMIT_EXCEEDED),
        (r"invalid\s+api\s*key", ErrorCode.INVALID_API_KEY),
        (r"unauthori[sz]ed", ErrorCode.UNAUTHORIZED),
        (r"forbidden", ErrorCode.FORBIDDEN),
        (r"timed?\s*out|timeout", ErrorCode.TIMEOUT),
        (r"connection\s+(refused|reset)|network", ErrorCode.NETWORK_ERROR),
        (r"service\s+unavailable", ErrorCode.SERVICE_UNAVAILABLE),
        (r"missing\s+credentials", ErrorCode.MISSING_CREDENTIALS),
    )
)


@dataclass(frozen=True)
class ErrorClassification:
    """Normalized description of one failure.

    Attributes:
        code: Specific error code
        category: Handling category
        retry_action: What the retry and fallback layers should do
        message: Human-readable description
        http_status: Upstream HTTP status, when there was one
    """

    code: ErrorCode
    category: ErrorCategory
    retry_action: RetryAction
    message: str = ""
    http_status: int | None = None

    @property
    def is_retryable(self) -> bool:
        return (
            self.retry_action is RetryAction.RETRY
            and self.category not in NON_RETRYABLE_CATEGORIES
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "category": self.category.value,
            "message": self.message,
        }


class GatewayError(Exception):
    """Failure reported by the messaging gateway.

    Args:
        message: Error text from the gateway (or a local description).
        http_status: HTTP status of the response, if any.
        gateway_code: Error code from the response body, if any.
        body: Parsed response body, kept for diagnostics.
    """

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        gateway_code: str | None = None,
        body: Any = None,
    ) -> None:
        self.message = message
        self.http_status = http_status
        self.gateway_code = gateway_code
        self.body = body
        super().__init__(message)


class ClassifiedError(Exception):
    """An exception that already carries its classification.

    Raised by local checks (template lookup, address validation) so they go
    through the same retry and fallback path as gateway failures.
    """

    def __init__(self, classification: ErrorClassification) -> None:
        self.classification = classification
        super().__init__(classification.message)


def make_classification(
    code: ErrorCode, message: str = "", http_status: int | None = None,
) -> ErrorClassification:
    """Build a classification for ``code`` using the code table."""
    category, action = ERROR_CODE_TABLE[code]
    return ErrorClassification(
        code=code,
        category=category,
        retry_action=action,
        message=message or code.value.replace("_", " ").capitalize(),
        http_status=http_status,
    )


def _code_from_gateway(raw_code: Any) -> ErrorCode | None:
    if raw_code is None:
        return None
    key = str(raw_code).strip().upper()
    if key in ErrorCode.__members__:
        return ErrorCode[key]
    return _CODE_ALIASES.get(key)


def _code_from_message(message: str) -> ErrorCode | None:
    for pattern, code in _MESSAGE_PATTERNS:
        if pattern.search(message):
            return code
    return None


def _code_from_status(status: int) -> ErrorCode | None:
    if status == 401:
        return ErrorCode.UNAUTHORIZED
    if status == 403:
        return ErrorCode.FORBIDDEN
    if status == 429:
        return ErrorCode.RATE_LIMIT_EXCEEDED
    if status == 503:
        return ErrorCode.SERVICE_UNAVAILABLE
    if 500 <= status < 600:
        return ErrorCode.INTERNAL_SERVER_ERROR
    if status == 400:
        return ErrorCode.INVALID_PARAMETERS
    return None


def _code_from_exception_type(error: BaseException) -> ErrorCode | None:
    if isinstance(error, httpx.TimeoutException | asyncio.TimeoutError | TimeoutError):
        return ErrorCode.TIMEOUT
    if isinstance(error, httpx.NetworkError | ConnectionError):
        return ErrorCode.NETWORK_ERROR
    return None


def classify(raw_error: Any) -> ErrorClassification:
    """Classify a raw failure.

    Args:
        raw_error: A ``GatewayError``, ``ClassifiedError``, ``ErrorClassification``,
            any exception, an error message string, or None.

    Returns:
        The classification; ``UNKNOWN`` (service, retry) when nothing matches.
    """
    if isinstance(raw_error, ErrorClassification):
        return raw_error
    if isinstance(raw_error, ClassifiedError):
        return raw_error.classification

    http_status: int | None = None
    gateway_code: Any = None

    if isinstance(raw_error, GatewayError):
        http_status = raw_error.http_status
        gateway_code = raw_error.gateway_code
        message = raw_error.message
    elif isinstance(raw_error, httpx.HTTPStatusError):
        http_status = raw_error.response.status_code
        message = str(raw_error)
    elif isinstance(raw_error, BaseException):
        message = str(raw_error) or type(raw_error).__name__
    elif isinstance(raw_error, str):
        message = raw_error
    else:
        message = "" if raw_error is None else repr(raw_error)

    code = (
        _code_from_gateway(gateway_code)
        or _code_from_message(message)
        or (_code_from_status(http_status) if http_status is not None else None)
        or (_code_from_exception_type(raw_error) if isinstance(raw_error, BaseException) else None)
        or ErrorCode.UNKNOWN
    )

    if code is ErrorCode.UNKNOWN:
        logger.debug(
            "Unrecognised error classified as UNKNOWN",
            extra={"error_type": type(raw_error).__name__, "http_status": http_status},
        )

    return make_classification(code, message, http_status)


__all__ = [
    "CATEGORY_DEFAULT_ACTIONS",
    "ERROR_CODE_TABLE",
    "NON_RETRYABLE_CATEGORIES",
    "ClassifiedError",
    "ErrorCategory",
    "ErrorClassification",
    "ErrorCode",
    "GatewayError",
    "RetryAction",
    "classify",
    "make_classification",
]
