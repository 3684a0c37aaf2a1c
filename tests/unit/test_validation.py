# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Tests for automation request validation."""

import pytest

from gbprunner.exceptions import ValidationError
from gbprunner.service.validation import clean_target_url, validate_name, validate_wait_time


class TestCleanTargetUrl:
    def test_trims_and_strips_control_characters(self):
        raw = "  https://www.google.com/search?q=pada\nria\t \r\n"
        assert clean_target_url(raw) == "https://www.google.com/search?q=padaria"

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_required(self, raw):
        with pytest.raises(ValidationError, match="URL is required"):
            clean_target_url(raw)

    def test_must_be_string(self):
        with pytest.raises(ValidationError, match="URL must be a string"):
            clean_target_url(42)

    @pytest.mark.parametrize("raw", ["not a url", "ftp://example.com/x", "https://"])
    def test_invalid(self, raw):
        with pytest.raises(ValidationError, match="Invalid URL"):
            clean_target_url(raw)


class TestValidateName:
    def test_optional(self):
        assert validate_name(None) is None
        assert validate_name("  ") is None

    def test_trimmed(self):
        assert validate_name(" Ana ") == "Ana"

    def test_non_string(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_name(["Ana"])
        assert exc_info.value.details["type"] == "list"


class TestValidateWaitTime:
    def test_missing_uses_default(self):
        assert validate_wait_time(None) == 300.0

    def test_positive_number(self):
        assert validate_wait_time(120) == 120.0
        assert validate_wait_time(0.5) == 0.5

    @pytest.mark.parametrize("raw", ["soon", True, [300]])
    def test_must_be_number(self, raw):
        with pytest.raises(ValidationError, match="wait_time must be a number"):
            validate_wait_time(raw)

    @pytest.mark.parametrize("raw", [0, -5, float("nan")])
    def test_must_be_positive(self, raw):
        with pytest.raises(ValidationError, match="wait_time must be positive"):
            validate_wait_time(raw)
