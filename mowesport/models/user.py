"""
User model — the principal: an authenticatable identity.

Each User carries its credentials (an Argon2 digest, never plaintext), its
personal data, a primary role, the account state machine (is_active plus
account_status), the lockout counters and the second-factor flags.

Temporary passwords are not a separate table: a fresh digest plus a non-null
token_expiration_date means "must rotate on next login". Clearing the field
marks the password as confirmed by its owner.

Users are never hard-deleted; is_active=False with account_status=disabled is
the tombstone.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mowesport.database import Base, UTCDateTime, enum_values, utcnow


class PrimaryRole(str, enum.Enum):
    """
    The single default capability label attached to a user.

    Inherits from str so the enum value serializes naturally to JSON.
    """
    SUPER_ADMIN = "super_admin"
    CITY_ADMIN = "city_admin"
    TOURNAMENT_ADMIN = "tournament_admin"
    OWNER = "owner"
    COACH = "coach"
    REFEREE = "referee"
    PLAYER = "player"
    CLIENT = "client"


class AccountStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    PAYMENT_PENDING = "payment_pending"
    DISABLED = "disabled"


class User(Base):
    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint("failed_login_attempts >= 0", name="ck_users_failed_attempts_non_negative"),
        CheckConstraint("length(password_hash) > 0", name="ck_users_password_hash_present"),
        # Enabled 2FA always has a secret behind it
        CheckConstraint(
            "NOT two_factor_enabled OR two_factor_secret IS NOT NULL",
            name="ck_users_two_factor_secret",
        ),
        CheckConstraint(
            "recovery_token_hash IS NULL OR recovery_token_expires_at IS NOT NULL",
            name="ck_users_recovery_token_expiry",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # Stored lower-cased, so the unique index is case-insensitive in effect
    email: Mapped[str] = mapped_column(
        String(254),
        unique=True,
        nullable=False,
        index=True,
    )

    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    identification: Mapped[str | None] = mapped_column(String(50), nullable=True)
    photo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    primary_role: Mapped[PrimaryRole] = mapped_column(
        Enum(PrimaryRole, name="primary_role", values_callable=enum_values),
        nullable=False,
        index=True,
    )

    # Kill-switch: inactive users can't log in but their data is preserved
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    account_status: Mapped[AccountStatus] = mapped_column(
        Enum(AccountStatus, name="account_status", values_callable=enum_values),
        default=AccountStatus.ACTIVE,
        nullable=False,
    )

    # --- Lockout ---
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Second factor ---
    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Fernet-encrypted base32 secret; present while enrolled or mid-enrollment
    two_factor_secret: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Recovery ---
    # SHA-256 digest of the emailed token; the token itself is never stored
    recovery_token_hash: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    recovery_token_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Temporary password ---
    # Non-null while the current password is temporary
    token_expiration_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
