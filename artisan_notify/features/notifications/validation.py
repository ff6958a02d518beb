"""Recipient and content checks run before every gateway attempt.

Failures raise ``ClassifiedError`` with a validation-category code so the
dispatcher handles them exactly like a gateway rejection: never retried,
handed to the fallback engine.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any

from artisan_notify.features.notifications.errors import (
    ClassifiedError,
    ErrorCode,
    make_classification,
)
from artisan_notify.features.notifications.models import Channel

logger = logging.getLogger(__name__)

_NON_DIAL_CHARS = re.compile(r"[^\d+]")
_INTERNATIONAL = re.compile(r"^\+[1-9]\d{9,14}$")
_INDIAN_MOBILE = re.compile(r"^(\+91|91)?[6-9]\d{9}$")
_TEMPLATE_NAME = re.compile(r"^[a-z0-9_]+$")
_LANGUAGE_CODE = re.compile(r"^[a-z]{2}(_[A-Z]{2})?$")

RICH_TEXT_LIMIT = 4096
PLAIN_SEGMENT_LENGTH = 160
PLAIN_UNICODE_SEGMENT_LENGTH = 70
PLAIN_MAX_SEGMENTS = 10
MAX_TEMPLATE_PARAMS = 10
MAX_PARAM_LENGTH = 1024


def _invalid(code: ErrorCode, message: str) -> ClassifiedError:
    return ClassifiedError(make_classification(code, message))


def _clean(raw: str) -> str:
    return _NON_DIAL_CHARS.sub("", raw or "")


def mask_address(address: str | None) -> str:
    """Mask a phone number for logs, keeping the first 3 and last 2 characters."""
    if not address:
        return ""
    if len(address) <= 5:
        return "***"
    return f"{address[:3]}***{address[-2:]}"


def format_rich_address(raw: str) -> str:
    """Normalize to ``+<digits>``; bare 10-digit numbers are taken as Indian mobiles."""
    cleaned = _clean(raw)
    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("91") and len(cleaned) >= 12:
        return f"+{cleaned}"
    if len(cleaned) == 10:
        return f"+91{cleaned}"
    return f"+{cleaned}"


def format_plain_address(raw: str) -> str:
    """Normalize to bare digits with country code, as the plain route expects."""
    cleaned = _clean(raw)
    if len(cleaned) == 10 and cleaned[0] in "6789":
        return f"91{cleaned}"
    return cleaned.lstrip("+")


def validate_recipient(raw: str, channel: Channel) -> str:
    """Validate a recipient for ``channel`` and return the gateway-formatted address.

    Raises:
        ClassifiedError: ``INVALID_PHONE_NUMBER`` when the address is malformed.
    """
    if not raw or not raw.strip():
        raise _invalid(ErrorCode.INVALID_PHONE_NUMBER, "Phone number is required")

    if channel is Channel.RICH:
        formatted = format_rich_address(raw)
        if not _INTERNATIONAL.match(formatted):
            raise _invalid(
                ErrorCode.INVALID_PHONE_NUMBER,
                "Invalid phone number format, use international format (e.g. +919876543210)",
            )
        return formatted

    cleaned = _clean(raw)
    if not (_INDIAN_MOBILE.match(cleaned) or _INTERNATIONAL.match(cleaned)):
        raise _invalid(
            ErrorCode.INVALID_PHONE_NUMBER,
            "Invalid phone number format, use a 10-digit mobile or international format",
        )
    return format_plain_address(raw)


def validate_template_request(
    template_name: str | None,
    language: str,
    params: dict[str, Any],
) -> list[str]:
    """Check a rich template request.

    Returns:
        Non-fatal warnings (odd language code, many or very long parameters).

    Raises:
        ClassifiedError: ``INVALID_TEMPLATE`` for a missing or malformed name,
            ``INVALID_PARAMETERS`` for non-string parameter values.
    """
    if not template_name or not template_name.strip():
        raise _invalid(ErrorCode.INVALID_TEMPLATE, "Template name is required")
    if not _TEMPLATE_NAME.match(template_name):
        raise _invalid(
            ErrorCode.INVALID_TEMPLATE,
            "Template name must contain only lowercase letters, numbers, and underscores",
        )

    warnings: list[str] = []
    if not _LANGUAGE_CODE.match(language or ""):
        warnings.append(f"Language code {language!r} should follow ISO format (e.g. en, hi, en_US)")
    if len(params) > MAX_TEMPLATE_PARAMS:
        warnings.append(f"Template has more than {MAX_TEMPLATE_PARAMS} parameters")
    for key, value in params.items():
        if not isinstance(value, str):
            raise _invalid(ErrorCode.INVALID_PARAMETERS, f"Template parameter {key!r} must be a string")
        if len(value) > MAX_PARAM_LENGTH:
            warnings.append(f"Template parameter {key!r} is very long ({len(value)} chars)")

    for warning in warnings:
        logger.warning(warning, extra={"template": template_name})
    return warnings


def is_unicode(text: str) -> bool:
    return any(ord(ch) > 127 for ch in text)


def count_segments(text: str) -> int:
    """Number of plain-channel segments ``text`` is billed as."""
    per_segment = PLAIN_UNICODE_SEGMENT_LENGTH if is_unicode(text) else PLAIN_SEGMENT_LENGTH
    return max(1, math.ceil(len(text) / per_segment))


def validate_text(text: str | None, channel: Channel) -> str:
    """Validate message text for ``channel`` and return it stripped.

    Rich text is limited to 4096 characters. Plain text may span up to
    ``PLAIN_MAX_SEGMENTS`` segments (160 characters each, 70 when the text
    contains non-ASCII characters).

    Raises:
        ClassifiedError: ``INVALID_PARAMETERS`` for empty text,
            ``MESSAGE_TOO_LONG`` when over the channel limit.
    """
    body = (text or "").strip()
    if not body:
        raise _invalid(ErrorCode.INVALID_PARAMETERS, "Message text cannot be empty")

    if channel is Channel.RICH:
        if len(body) > RICH_TEXT_LIMIT:
            raise _invalid(
                ErrorCode.MESSAGE_TOO_LONG,
                f"Message too long: {len(body)} characters (limit {RICH_TEXT_LIMIT})",
            )
        return body

    segments = count_segments(body)
    if segments > PLAIN_MAX_SEGMENTS:
        raise _invalid(
            ErrorCode.MESSAGE_TOO_LONG,
            f"Message too long: {segments} segments (limit {PLAIN_MAX_SEGMENTS})",
        )
    if segments > 1:
        logger.info("Plain message spans multiple segments", extra={"segments": segments})
    return body


__all__ = [
    "PLAIN_MAX_SEGMENTS",
    "RICH_TEXT_LIMIT",
    "count_segments",
    "format_plain_address",
    "format_rich_address",
    "mask_address",
    "validate_recipient",
    "validate_template_request",
    "validate_text",
]
