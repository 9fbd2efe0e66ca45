"""Tests for the input validator and message normalization."""

from __future__ import annotations

import pytest

from chatline.core.errors import ValidationError
from chatline.core.security.validator import (
    EMPTY,
    TOO_LONG,
    UNSAFE,
    normalize,
    validate,
)


# =============================================================
# validate()
# =============================================================

class TestValidate:
    """Ordered checks: empty, too long, unsafe content."""

    def test_plain_message_is_valid(self):
        result = validate("Hello, how are you?")
        assert result.valid
        assert result.error is None
        assert result.detail is None

    @pytest.mark.parametrize("content", ["", "   ", "\n\t  \r\n"])
    def test_blank_is_empty(self, content):
        result = validate(content)
        assert not result.valid
        assert result.error == EMPTY

    @pytest.mark.parametrize("content", [None, 42, ["hi"], {"text": "hi"}])
    def test_non_string_is_empty(self, content):
        assert validate(content).error == EMPTY

    def test_exactly_max_length_is_valid(self):
        assert validate("a" * 10_000).valid

    def test_over_max_length_is_too_long(self):
        result = validate("a" * 10_001)
        assert result.error == TOO_LONG
        assert result.detail == "Message is too long (maximum 10,000 characters)"

    def test_length_measured_after_trimming(self):
        assert validate("  " + "a" * 10_000 + "  ").valid

    def test_custom_max_length(self):
        assert validate("hello", max_length=4).error == TOO_LONG
        assert validate("hello", max_length=5).valid

    @pytest.mark.parametrize("content", [
        "<script>alert(1)</script>",
        "<SCRIPT src='x.js'>",
        "click javascript:void(0)",
        "JavaScript:alert(1)",
        "<img src=x onerror=alert(1)>",
        "<body onload = 'steal()'>",
        "eval(document.cookie)",
        "EVAL  (x)",
        "What does the condition=true flag do?",
        "button.onClick = handler",
    ])
    def test_unsafe_patterns(self, content):
        result = validate(content)
        assert not result.valid
        assert result.error == UNSAFE

    @pytest.mark.parametrize("content", [
        "Let's evaluate (carefully) the options",
        "I wrote a script yesterday",
        "Tell me about Java",
    ])
    def test_ordinary_text_not_flagged(self, content):
        assert validate(content).valid

    def test_too_long_wins_over_unsafe(self):
        content = "<script>" + "a" * 10_000
        assert validate(content).error == TOO_LONG

    def test_too_long_detail_uses_limit(self):
        result = validate("hello", max_length=4)
        assert result.detail == "Message is too long (maximum 4 characters)"

    def test_validate_is_pure(self):
        content = "<script>"
        assert validate(content) == validate(content)


# =============================================================
# normalize()
# =============================================================

class TestNormalize:

    def test_strips_whitespace(self):
        assert normalize("  hi there \n") == "hi there"

    def test_removes_null_bytes(self):
        assert normalize("a\x00b") == "ab"

    def test_normalizes_line_endings(self):
        assert normalize("one\r\ntwo\rthree") == "one\ntwo\nthree"


# =============================================================
# ValidationError
# =============================================================

class TestValidationError:

    def test_detail_from_reason(self):
        err = ValidationError(EMPTY)
        assert err.reason == "empty"
        assert err.detail == "Message cannot be empty"
        assert str(err) == "Message cannot be empty"

    def test_default_too_long_detail(self):
        assert ValidationError(TOO_LONG).detail == "Message is too long (maximum 10,000 characters)"

    def test_explicit_detail(self):
        err = ValidationError(TOO_LONG, detail="Too big")
        assert err.detail == "Too big"
