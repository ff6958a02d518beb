"""Unit tests for recipient and content validation."""
from __future__ import annotations

import pytest

from artisan_notify.features.notifications.errors import ClassifiedError, ErrorCode
from artisan_notify.features.notifications.models import Channel
from artisan_notify.features.notifications.validation import (
    PLAIN_MAX_SEGMENTS,
    count_segments,
    format_plain_address,
    format_rich_address,
    mask_address,
    validate_recipient,
    validate_template_request,
    validate_text,
)


def _code(exc_info: pytest.ExceptionInfo[ClassifiedError]) -> ErrorCode:
    return exc_info.value.classification.code


@pytest.mark.unit
class TestAddressFormatting:
    """Test suite for address normalization."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("+91 98765-43210", "+919876543210"),
            ("919876543210", "+919876543210"),
            ("9876543210", "+919876543210"),
            ("+14155552671", "+14155552671"),
        ],
    )
    def test_rich_address(self, raw, expected):
        """Test rich channel addresses get a leading plus."""
        assert format_rich_address(raw) == expected

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("9876543210", "919876543210"),
            ("+919876543210", "919876543210"),
            ("+14155552671", "14155552671"),
        ],
    )
    def test_plain_address(self, raw, expected):
        """Test plain channel addresses are bare digits with country code."""
        assert format_plain_address(raw) == expected

    def test_mask_address(self):
        """Test that logs only see the ends of a number."""
        assert mask_address("+919876543210") == "+91***10"
        assert mask_address("12345") == "***"
        assert mask_address(None) == ""


@pytest.mark.unit
class TestValidateRecipient:
    """Test suite for validate_recipient."""

    def test_valid_rich(self):
        """Test a valid rich recipient is formatted."""
        assert validate_recipient("9876543210", Channel.RICH) == "+919876543210"

    def test_valid_plain(self):
        """Test a valid plain recipient is formatted."""
        assert validate_recipient("+91 9876543210", Channel.PLAIN) == "919876543210"

    @pytest.mark.parametrize("raw", ["", "   ", "12345", "abcdefghij"])
    @pytest.mark.parametrize("channel", [Channel.RICH, Channel.PLAIN])
    def test_invalid(self, raw, channel):
        """Test malformed numbers are rejected as INVALID_PHONE_NUMBER."""
        with pytest.raises(ClassifiedError) as exc_info:
            validate_recipient(raw, channel)

        assert _code(exc_info) is ErrorCode.INVALID_PHONE_NUMBER


@pytest.mark.unit
class TestValidateTemplateRequest:
    """Test suite for template request checks."""

    def test_valid_request(self):
        """Test a well-formed request has no warnings."""
        assert validate_template_request("order_shipped", "en", {"name": "Asha"}) == []

    @pytest.mark.parametrize("name", ["", "Order-Shipped", "order shipped"])
    def test_bad_name(self, name):
        """Test malformed template names."""
        with pytest.raises(ClassifiedError) as exc_info:
            validate_template_request(name, "en", {})

        assert _code(exc_info) is ErrorCode.INVALID_TEMPLATE

    def test_non_string_param(self):
        """Test that parameter values must be strings."""
        with pytest.raises(ClassifiedError) as exc_info:
            validate_template_request("order_shipped", "en", {"count": 3})

        assert _code(exc_info) is ErrorCode.INVALID_PARAMETERS

    def test_warnings(self):
        """Test non-fatal warnings for language and parameter size."""
        params = {f"p{i}": "x" for i in range(11)}
        params["p0"] = "y" * 2000

        warnings = validate_template_request("order_shipped", "english", params)

        assert len(warnings) == 3


@pytest.mark.unit
class TestValidateText:
    """Test suite for message text limits."""

    def test_strips_text(self):
        """Test surrounding whitespace is removed."""
        assert validate_text("  hello  ", Channel.PLAIN) == "hello"

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty(self, text):
        """Test empty text is INVALID_PARAMETERS."""
        with pytest.raises(ClassifiedError) as exc_info:
            validate_text(text, Channel.PLAIN)

        assert _code(exc_info) is ErrorCode.INVALID_PARAMETERS

    def test_rich_limit(self):
        """Test the rich channel character limit."""
        validate_text("a" * 4096, Channel.RICH)
        with pytest.raises(ClassifiedError) as exc_info:
            validate_text("a" * 4097, Channel.RICH)

        assert _code(exc_info) is ErrorCode.MESSAGE_TOO_LONG

    def test_plain_segment_limit(self):
        """Test the plain channel segment limit."""
        validate_text("a" * 160 * PLAIN_MAX_SEGMENTS, Channel.PLAIN)
        with pytest.raises(ClassifiedError) as exc_info:
            validate_text("a" * (160 * PLAIN_MAX_SEGMENTS + 1), Channel.PLAIN)

        assert _code(exc_info) is ErrorCode.MESSAGE_TOO_LONG

    def test_segment_counting(self):
        """Test GSM and unicode segment sizes."""
        assert count_segments("a" * 160) == 1
        assert count_segments("a" * 161) == 2
        assert count_segments("नमस्ते" * 20) == 2
