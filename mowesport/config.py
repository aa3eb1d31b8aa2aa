"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. Secrets (the JWT signing key and the TOTP encryption key) have no
defaults, so the service refuses to start until they are provided.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Grouped policies (password, rate limits, e-mail domains, ...) are nested models.
Override a single field with a double-underscore environment variable:

    RATE_LIMIT__LOGIN__MAX_REQUESTS=10
    EMAIL__BLOCKED_DOMAINS='["tempmail.com"]'

Usage:
    from mowesport.config import settings
    print(settings.JWT_ACCESS_TTL)
"""

from datetime import timedelta

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SUSPICIOUS_PATTERNS = [
    "<script", "javascript:", "onload=", "onerror=", "eval(",
    "document.cookie", "window.location", "alert(", "confirm(", "prompt(",
    "<iframe", "<object", "<embed", "<link", "<meta", "<style",
    "vbscript:", "data:", "base64", "expression(", "@import",
    "binding:", "behaviour:", "moz-binding:",
    "union select", "drop table", "insert into", "update set",
    "delete from", "create table", "alter table",
    "exec(", "execute(", "xp_", "sp_", "/*", "*/", "--", ";",
]


class PasswordPolicy(BaseModel):
    min_length: int = 8
    max_length: int = 128
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special_chars: bool = True
    expiration_days: int = 90


class LockoutPolicy(BaseModel):
    """Progressive lockout thresholds applied on failed logins."""
    first_threshold: int = 5
    first_window: timedelta = timedelta(minutes=15)
    second_threshold: int = 10
    second_window: timedelta = timedelta(hours=24)


class RateLimitRule(BaseModel):
    max_requests: int
    window: timedelta
    enabled: bool = True


class RateLimitSettings(BaseModel):
    admin_registration: RateLimitRule = RateLimitRule(
        max_requests=5, window=timedelta(minutes=15)
    )
    email_validation: RateLimitRule = RateLimitRule(
        max_requests=10, window=timedelta(minutes=1)
    )
    login: RateLimitRule = RateLimitRule(
        max_requests=5, window=timedelta(minutes=5)
    )
    general: RateLimitRule = RateLimitRule(
        max_requests=100, window=timedelta(minutes=1)
    )

    def as_rules(self) -> dict[str, RateLimitRule]:
        return {
            "admin_registration": self.admin_registration,
            "email_validation": self.email_validation,
            "login": self.login,
            "general": self.general,
        }


class EmailPolicy(BaseModel):
    # An empty allow-list admits every domain not on the block-list
    allowed_domains: list[str] = []
    blocked_domains: list[str] = ["tempmail.com", "10minutemail.com", "guerrillamail.com"]
    max_length: int = 254


class PhonePolicy(BaseModel):
    min_digits: int = 7
    max_digits: int = 15


class IdentificationPolicy(BaseModel):
    default_country: str = "CO"
    country_validators: dict[str, str] = {
        "CO": "colombian_cedula",
        "US": "us_ssn",
        "MX": "mexican_curp",
    }
    min_length: int = 5
    max_length: int = 50


class SuspiciousActivityPolicy(BaseModel):
    patterns: list[str] = DEFAULT_SUSPICIOUS_PATTERNS
    max_special_char_percentage: float = 0.3
    max_repeated_pattern_count: int = 3
    abort_on_findings: bool = True


class AuditSettings(BaseModel):
    enabled: bool = True
    retention_days: int = 365
    critical_event_notification: bool = True


class MailSettings(BaseModel):
    sender: str = "no-reply@mowesport.com"
    max_attempts: int = 3
    backoff_base: float = 1.0


class Settings(BaseSettings):
    """
    Central configuration for the MoweSport API.

    Required fields (no defaults) MUST be set in .env or environment:
      - JWT_SECRET: HMAC key used to sign access and refresh tokens
      - TOTP_ENCRYPTION_KEY: Fernet key for encrypting TOTP secrets at rest
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "MoweSport API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # --- Database ---
    # SQLite for local runs; swap to a PostgreSQL (asyncpg) URL in production
    DATABASE_URL: str = "sqlite+aiosqlite:///./mowesport.db"

    # --- Tokens ---
    # REQUIRED: No default, forces the operator to set a real secret
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TTL: timedelta = timedelta(hours=1)
    JWT_REFRESH_TTL: timedelta = timedelta(days=7)

    # --- Second factor ---
    # REQUIRED: Fernet key for TOTP secrets
    # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    TOTP_ENCRYPTION_KEY: str
    TOTP_ISSUER: str = "MoweSport"

    # --- Credential lifetimes ---
    TEMPORARY_PASSWORD_TTL: timedelta = timedelta(hours=24)
    RECOVERY_TOKEN_TTL: timedelta = timedelta(minutes=10)
    TEMPORARY_PASSWORD_SWEEP_INTERVAL: timedelta = timedelta(hours=1)

    # --- Request deadlines ---
    AUTH_TIMEOUT: float = 10.0
    ADMIN_TIMEOUT: float = 30.0

    # --- Policies ---
    PASSWORD: PasswordPolicy = PasswordPolicy()
    LOCKOUT: LockoutPolicy = LockoutPolicy()
    RATE_LIMIT: RateLimitSettings = RateLimitSettings()
    EMAIL: EmailPolicy = EmailPolicy()
    PHONE: PhonePolicy = PhonePolicy()
    IDENTIFICATION: IdentificationPolicy = IdentificationPolicy()
    SUSPICIOUS: SuspiciousActivityPolicy = SuspiciousActivityPolicy()
    AUDIT: AuditSettings = AuditSettings()
    MAIL: MailSettings = MailSettings()

    # --- Links used in outgoing mail ---
    FRONTEND_URL: str = "http://localhost:3000"

    # --- Bootstrap ---
    # When both are set, the super admin is created on startup if missing
    BOOTSTRAP_SUPER_ADMIN_EMAIL: str | None = None
    BOOTSTRAP_SUPER_ADMIN_PASSWORD: str | None = None

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]

    # --- Client address ---
    # Peers allowed to set X-Forwarded-For; empty means the header is ignored
    TRUSTED_PROXIES: list[str] = []


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
