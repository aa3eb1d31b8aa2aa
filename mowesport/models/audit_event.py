"""
AuditEvent model — append-only record of security-relevant occurrences.

Event kinds form a closed set (AuditEventType). Rows are written once and
never updated: the ORM listeners below refuse any flush that would modify or
delete a loaded event. Retention purging (AuditLog.purge_expired) uses a bulk
DELETE statement and is the only removal path.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, Enum, ForeignKey, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from mowesport.database import Base, UTCDateTime, enum_values, utcnow


class AuditEventType(str, enum.Enum):
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    ADMIN_REGISTRATION = "admin_registration"
    ADMIN_REGISTRATION_FAILED = "admin_registration_failed"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    DATA_VALIDATION_FAILED = "data_validation_failed"
    SECURITY_VIOLATION = "security_violation"
    PASSWORD_RESET = "password_reset"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    PERMISSION_DENIED = "permission_denied"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REVOKED = "role_revoked"
    VIEW_PERMISSION_SET = "view_permission_set"
    ACCOUNT_STATUS_CHANGED = "account_status_changed"
    WELCOME_EMAIL_SENT = "welcome_email_sent"
    TEMPORARY_PASSWORD_CREATED = "temporary_password_created"
    TEMPORARY_PASSWORD_USED = "temporary_password_used"
    PASSWORD_CHANGE_FORCED = "password_change_forced"


class AuditSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditEvent(Base):
    __tablename__ = "security_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    event_type: Mapped[AuditEventType] = mapped_column(
        Enum(AuditEventType, name="audit_event_type", values_callable=enum_values),
        nullable=False,
        index=True,
    )

    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Subject of the event, when one is known
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
        index=True,
    )

    # IPv6 addresses fit in 45 characters
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True, index=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # "metadata" is reserved on declarative classes, hence the attribute name
    event_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

    severity: Mapped[AuditSeverity] = mapped_column(
        Enum(AuditSeverity, name="audit_severity", values_callable=enum_values),
        nullable=False,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utcnow,
        nullable=False,
        index=True,
    )


@event.listens_for(AuditEvent, "before_update")
def _refuse_update(mapper, connection, target):
    raise ValueError(f"Audit event {target.id} is immutable")


@event.listens_for(AuditEvent, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ValueError(f"Audit event {target.id} is immutable")
