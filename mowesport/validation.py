"""
Input validation and sanitization.

InputValidator holds the e-mail, phone, identification and suspicious-input
policies from settings and exposes:

  - validate_email / validate_phone / validate_identification: format checks
    that raise InputValidationError and return the normalized value
  - validate_password: strength policy (see security.check_password_strength)
  - sanitize: scrubs free-form strings before storage (idempotent)
  - detect_suspicious: inspects a field map and reports findings

Controlled-format fields (emails, phones, UUIDs) are validated and stored as
given; only free-form text such as names goes through sanitize().
"""

import re
from dataclasses import dataclass

from mowesport.config import (
    EmailPolicy,
    IdentificationPolicy,
    PasswordPolicy,
    PhonePolicy,
    SuspiciousActivityPolicy,
    settings,
)
from mowesport.exceptions import ErrorKind, InputValidationError
from mowesport.security import check_password_strength


EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9!#$%&'*+/=?^_`{|}~-]+(?:\.[a-zA-Z0-9!#$%&'*+/=?^_`{|}~-]+)*"
    r"@(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?\.)+"
    r"[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?$"
)
DOMAIN_LABEL_PATTERN = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?$")

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")
GROUPED_PHONE_PATTERN = re.compile(
    r"^(\+\d{1,3}[\s\-]?)?\(?\d{1,4}\)?[\s\-]?\d{1,4}[\s\-]?\d{1,9}$"
)

COLOMBIAN_CEDULA_PATTERN = re.compile(r"^\d{8,10}$")
US_SSN_PATTERN = re.compile(r"^(?:\d{3}-\d{2}-\d{4}|\d{9})$")
MEXICAN_CURP_PATTERN = re.compile(r"^[A-Z]{4}\d{6}[HM][A-Z]{5}[A-Z0-9]\d$")
GENERIC_ID_PATTERN = re.compile(r"^[a-zA-Z0-9\s\-]+$")

# Country names accepted alongside ISO codes
COUNTRY_ALIASES = {
    "COLOMBIA": "CO",
    "USA": "US",
    "UNITED STATES": "US",
    "MEXICO": "MX",
}

TAG_PATTERN = re.compile(r"<[^>]*>")
MAX_SANITIZED_LENGTH = 1000


@dataclass(frozen=True)
class SuspiciousFinding:
    field: str
    reason: str
    detail: str

    def as_dict(self) -> dict:
        return {"field": self.field, "reason": self.reason, "detail": self.detail}


class InputValidator:

    def __init__(
        self,
        email_policy: EmailPolicy | None = None,
        phone_policy: PhonePolicy | None = None,
        identification_policy: IdentificationPolicy | None = None,
        suspicious_policy: SuspiciousActivityPolicy | None = None,
        password_policy: PasswordPolicy | None = None,
    ):
        self.email_policy = email_policy or settings.EMAIL
        self.phone_policy = phone_policy or settings.PHONE
        self.identification_policy = identification_policy or settings.IDENTIFICATION
        self.suspicious_policy = suspicious_policy or settings.SUSPICIOUS
        self.password_policy = password_policy or settings.PASSWORD
        self._patterns = [
            re.compile(re.escape(p), re.IGNORECASE)
            for p in self.suspicious_policy.patterns
            if p
        ]
        self._lowered_patterns = [p.lower() for p in self.suspicious_policy.patterns if p]

    # ------------------------------------------------------------------
    # Controlled formats
    # ------------------------------------------------------------------

    def validate_email(self, email: str) -> str:
        """
        Validate an address and return it trimmed and lower-cased.

        Raises:
            InputValidationError: invalid_email_format, with the reason as message.
        """
        def fail(reason: str):
            raise InputValidationError(
                ErrorKind.INVALID_EMAIL_FORMAT, reason, details={"email": reason}
            )

        email = (email or "").strip()
        if not email:
            fail("Email is required")
        if len(email) > self.email_policy.max_length:
            fail(f"Email must be at most {self.email_policy.max_length} characters")
        if not EMAIL_PATTERN.match(email):
            fail("Invalid email format")

        local, _, domain = email.rpartition("@")
        if len(local) > 64:
            fail("Email local part is too long")
        if len(domain) > 253:
            fail("Email domain is too long")
        labels = domain.split(".")
        if len(labels) < 2 or any(not DOMAIN_LABEL_PATTERN.match(label) for label in labels):
            fail("Invalid email domain")
        if len(labels[-1]) < 2:
            fail("Invalid top-level domain")

        domain = domain.lower()
        blocked = {d.lower() for d in self.email_policy.blocked_domains}
        if domain in blocked:
            fail("Email domain is not allowed")
        allowed = {d.lower() for d in self.email_policy.allowed_domains}
        if allowed and domain not in allowed:
            fail("Email domain is not allowed")

        return email.lower()

    def validate_phone(self, phone: str) -> str:
        phone = (phone or "").strip()
        if not (E164_PATTERN.match(phone) or GROUPED_PHONE_PATTERN.match(phone)):
            raise InputValidationError(
                ErrorKind.INVALID_PHONE_FORMAT, details={"phone": "Invalid phone format"}
            )
        digits = sum(ch.isdigit() for ch in phone)
        if not self.phone_policy.min_digits <= digits <= self.phone_policy.max_digits:
            reason = (
                f"Phone number must contain between {self.phone_policy.min_digits} "
                f"and {self.phone_policy.max_digits} digits"
            )
            raise InputValidationError(
                ErrorKind.INVALID_PHONE_FORMAT, reason, details={"phone": reason}
            )
        return phone

    def validate_identification(self, identification: str, country: str | None = None) -> str:
        """Dispatch on country code (or name) to the configured ID format."""
        policy = self.identification_policy
        value = (identification or "").strip()

        def fail(reason: str):
            raise InputValidationError(
                ErrorKind.INVALID_IDENTIFICATION_FORMAT,
                reason,
                details={"identification": reason},
            )

        if not policy.min_length <= len(value) <= policy.max_length:
            fail(
                f"Identification must be between {policy.min_length} "
                f"and {policy.max_length} characters"
            )

        code = (country or policy.default_country).strip().upper()
        code = COUNTRY_ALIASES.get(code, code)
        validator = policy.country_validators.get(code, "generic")

        if validator == "colombian_cedula":
            if not COLOMBIAN_CEDULA_PATTERN.match(value):
                fail("Colombian cedula must contain 8 to 10 digits")
        elif validator == "us_ssn":
            if not US_SSN_PATTERN.match(value):
                fail("US SSN must be NNN-NN-NNNN or 9 digits")
        elif validator == "mexican_curp":
            value = value.upper()
            if not MEXICAN_CURP_PATTERN.match(value):
                fail("Invalid CURP format")
        elif not GENERIC_ID_PATTERN.match(value):
            fail("Identification may only contain letters, numbers, spaces and hyphens")
        return value

    def validate_password(self, password: str, field: str = "password") -> None:
        problems = check_password_strength(password, self.password_policy)
        if problems:
            raise InputValidationError(
                ErrorKind.WEAK_PASSWORD, problems[0], details={field: problems}
            )

    # ------------------------------------------------------------------
    # Free-form text
    # ------------------------------------------------------------------

    def _scrub(self, value: str) -> str:
        value = value.strip().replace("\x00", "")
        value = TAG_PATTERN.sub("", value)
        for pattern in self._patterns:
            value = pattern.sub("", value)
        return value

    def sanitize(self, value: str | None) -> str | None:
        """
        Scrub a free-form string for storage.

        Removes null bytes, HTML/XML tags and suspicious substrings until
        nothing changes, then truncates; sanitize(sanitize(x)) == sanitize(x).
        """
        if value is None:
            return None
        previous = None
        while value != previous:
            previous = value
            value = self._scrub(value)
        return value[:MAX_SANITIZED_LENGTH].strip()

    def detect_suspicious(self, fields: dict[str, str | None]) -> list[SuspiciousFinding]:
        policy = self.suspicious_policy
        findings = []
        for name, value in fields.items():
            if not value:
                continue
            lowered = value.lower()

            for pattern in self._lowered_patterns:
                if pattern in lowered:
                    findings.append(SuspiciousFinding(name, "suspicious_pattern", pattern))

            special = sum(
                1 for ch in value if not (ch.isalpha() or ch.isdigit() or ch.isspace())
            )
            if special / len(value) > policy.max_special_char_percentage:
                findings.append(
                    SuspiciousFinding(
                        name, "excessive_special_characters", f"{special}/{len(value)}"
                    )
                )

            if len(value) > 10:
                for i in range(len(value) - 2):
                    gram = value[i:i + 3]
                    if value.count(gram) > policy.max_repeated_pattern_count:
                        findings.append(SuspiciousFinding(name, "repeated_pattern", gram))
                        break

            for ch in value:
                if ord(ch) < 32 and ch not in "\t\n\r":
                    findings.append(
                        SuspiciousFinding(name, "control_character", f"0x{ord(ch):02x}")
                    )
                    break
        return findings
