"""
Tests for the input validator and sanitizer.

These tests verify:
  - Email format, length, domain block-list and allow-list handling
  - Phone numbers in E.164 and grouped forms, with digit-count bounds
  - Identification dispatch by country code or name
  - sanitize() strips markup and suspicious substrings and is idempotent
  - detect_suspicious() reports patterns, special-character density,
    repeated trigrams and control characters
"""

import pytest

from mowesport.config import EmailPolicy, SuspiciousActivityPolicy
from mowesport.exceptions import ErrorKind, InputValidationError
from mowesport.validation import MAX_SANITIZED_LENGTH, InputValidator


@pytest.fixture
def validator():
    return InputValidator()


class TestEmail:

    def test_valid_email_is_normalized(self, validator):
        assert validator.validate_email("  Ana.Gomez@Example.COM ") == "ana.gomez@example.com"

    @pytest.mark.parametrize("email", [
        "",
        "plainaddress",
        "@example.com",
        "ana@",
        "ana@example",
        "ana@example.c",
        "ana@-example.com",
        "ana gomez@example.com",
    ])
    def test_invalid_formats(self, validator, email):
        with pytest.raises(InputValidationError) as exc_info:
            validator.validate_email(email)
        assert exc_info.value.kind == ErrorKind.INVALID_EMAIL_FORMAT

    def test_overlong_local_part(self, validator):
        with pytest.raises(InputValidationError):
            validator.validate_email("a" * 65 + "@example.com")

    def test_overall_length_limit(self, validator):
        with pytest.raises(InputValidationError):
            validator.validate_email("a" * 60 + "@" + "b" * 190 + ".com")

    def test_blocked_domain(self, validator):
        with pytest.raises(InputValidationError) as exc_info:
            validator.validate_email("someone@TempMail.com")
        assert exc_info.value.message == "Email domain is not allowed"

    def test_allow_list(self):
        validator = InputValidator(email_policy=EmailPolicy(allowed_domains=["mowesport.com"]))
        assert validator.validate_email("ana@mowesport.com") == "ana@mowesport.com"
        with pytest.raises(InputValidationError):
            validator.validate_email("ana@example.com")


class TestPhone:

    @pytest.mark.parametrize("phone", ["+573001234567", "+1-555-123-4567", "(601) 555 1234", "3001234567"])
    def test_accepted(self, validator, phone):
        assert validator.validate_phone(phone) == phone

    @pytest.mark.parametrize("phone", ["12345", "+1234567890123456", "call me", "+57 300 abc 4567"])
    def test_rejected(self, validator, phone):
        with pytest.raises(InputValidationError) as exc_info:
            validator.validate_phone(phone)
        assert exc_info.value.kind == ErrorKind.INVALID_PHONE_FORMAT


class TestIdentification:

    def test_colombian_cedula_by_default(self, validator):
        assert validator.validate_identification("1020304050") == "1020304050"
        with pytest.raises(InputValidationError) as exc_info:
            validator.validate_identification("ABC12345")
        assert exc_info.value.kind == ErrorKind.INVALID_IDENTIFICATION_FORMAT

    def test_country_name_alias(self, validator):
        assert validator.validate_identification("123-45-6789", "United States") == "123-45-6789"
        assert validator.validate_identification("123456789", "us") == "123456789"

    def test_curp_is_upper_cased(self, validator):
        assert validator.validate_identification("gomr800101hdfrrn09", "MX") == "GOMR800101HDFRRN09"

    def test_unknown_country_uses_generic_rule(self, validator):
        assert validator.validate_identification("AB-1234 X", "PE") == "AB-1234 X"
        with pytest.raises(InputValidationError):
            validator.validate_identification("AB_1234#", "PE")

    def test_length_bounds(self, validator):
        with pytest.raises(InputValidationError):
            validator.validate_identification("1234", "PE")
        with pytest.raises(InputValidationError):
            validator.validate_identification("1" * 51, "PE")


class TestSanitize:

    def test_strips_markup_and_patterns(self, validator):
        assert validator.sanitize("  <b>Ana</b> María ") == "Ana María"
        assert validator.sanitize("<script>alert(1)</script>Ana") == "1)Ana"

    def test_nested_payload_is_fully_removed(self, validator):
        cleaned = validator.sanitize("<scr<script>ipt>x")
        assert "<script" not in cleaned.lower()

    def test_idempotent(self, validator):
        samples = [
            "Ana María",
            "<<b>>x<</b>>",
            "javajavascript:script:alert(",
            "drop drop table table",
            "  O'Brien -- ; ",
            "\x00null\x00byte",
        ]
        for value in samples:
            once = validator.sanitize(value)
            assert validator.sanitize(once) == once

    def test_truncates(self, validator):
        assert len(validator.sanitize("a" * (MAX_SANITIZED_LENGTH + 50))) == MAX_SANITIZED_LENGTH

    def test_none_passes_through(self, validator):
        assert validator.sanitize(None) is None


class TestDetectSuspicious:

    def test_clean_fields(self, validator):
        assert validator.detect_suspicious({
            "first_name": "Ana María",
            "last_name": "Gómez",
            "email": "ana.gomez@example.com",
            "phone": "+573001234567",
        }) == []

    def test_pattern_match_is_case_insensitive(self, validator):
        findings = validator.detect_suspicious({"first_name": "Robert'); DROP TABLE users"})
        reasons = {(f.field, f.reason, f.detail) for f in findings}
        assert ("first_name", "suspicious_pattern", "drop table") in reasons
        assert ("first_name", "suspicious_pattern", ";") in reasons

    def test_special_character_density(self, validator):
        findings = validator.detect_suspicious({"last_name": "#$%&!a"})
        assert any(f.reason == "excessive_special_characters" for f in findings)

    def test_repeated_trigram(self, validator):
        findings = validator.detect_suspicious({"first_name": "abcabcabcabcabc"})
        assert any(f.reason == "repeated_pattern" and f.detail == "abc" for f in findings)

    def test_short_values_skip_repetition_check(self, validator):
        assert validator.detect_suspicious({"first_name": "aaaaaaaaaa"}) == []

    def test_control_character(self, validator):
        findings = validator.detect_suspicious({"first_name": "Ana\x07"})
        assert [f.reason for f in findings] == ["control_character"]

    def test_thresholds_come_from_policy(self):
        validator = InputValidator(
            suspicious_policy=SuspiciousActivityPolicy(patterns=[], max_special_char_percentage=0.9)
        )
        assert validator.detect_suspicious({"last_name": "#$%&!a; DROP TABLE"}) == []


class TestPassword:

    def test_weak_password(self, validator):
        with pytest.raises(InputValidationError) as exc_info:
            validator.validate_password("weak", field="new_password")
        assert exc_info.value.kind == ErrorKind.WEAK_PASSWORD
        assert "new_password" in exc_info.value.details
