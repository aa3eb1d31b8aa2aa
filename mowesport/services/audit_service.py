"""
Audit service — append-only security event log.

Every security-relevant outcome (logins, lockouts, registrations, role
changes, rate-limit rejections, suspicious input) is recorded as an
AuditEvent in the caller's session, so it commits or rolls back with the
operation that produced it. Each insert is wrapped in a savepoint so a
failed audit write never poisons that session.

Severity defaults per kind (overridable per call):
  - low:      login, logout
  - medium:   registrations, resets, rate-limit hits, validation failures
  - high:     suspicious activity, unauthorized access, permission denied,
              failed registrations, security violations
  - critical: account locked

Write-failure policy:
  record() logs an AUDIT_FALLBACK line and raises AuditWriteError.
  emit() is what services call: it swallows the failure (after logging) for
  non-critical events and lets it propagate for critical ones, so a lockout
  that cannot be audited fails closed.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from fastapi.encoders import jsonable_encoder
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.config import AuditSettings, settings
from mowesport.database import utcnow
from mowesport.exceptions import AuditWriteError
from mowesport.models.audit_event import AuditEvent, AuditEventType, AuditSeverity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Where a request came from; threaded into every audited operation."""
    ip_address: str = "unknown"
    user_agent: str | None = None


DEFAULT_SEVERITY: dict[AuditEventType, AuditSeverity] = {
    AuditEventType.LOGIN: AuditSeverity.LOW,
    AuditEventType.LOGOUT: AuditSeverity.LOW,
    AuditEventType.ADMIN_REGISTRATION: AuditSeverity.MEDIUM,
    AuditEventType.PASSWORD_RESET: AuditSeverity.MEDIUM,
    AuditEventType.RATE_LIMIT_EXCEEDED: AuditSeverity.MEDIUM,
    AuditEventType.DATA_VALIDATION_FAILED: AuditSeverity.MEDIUM,
    AuditEventType.SUSPICIOUS_ACTIVITY: AuditSeverity.HIGH,
    AuditEventType.UNAUTHORIZED_ACCESS: AuditSeverity.HIGH,
    AuditEventType.PERMISSION_DENIED: AuditSeverity.HIGH,
    AuditEventType.ADMIN_REGISTRATION_FAILED: AuditSeverity.HIGH,
    AuditEventType.SECURITY_VIOLATION: AuditSeverity.HIGH,
    AuditEventType.ACCOUNT_LOCKED: AuditSeverity.CRITICAL,
}


def default_severity(event_type: AuditEventType) -> AuditSeverity:
    return DEFAULT_SEVERITY.get(event_type, AuditSeverity.MEDIUM)


class AuditLog:

    def __init__(self, config: AuditSettings | None = None):
        self.config = config or settings.AUDIT

    async def record(
        self,
        db: AsyncSession,
        event_type: AuditEventType,
        description: str,
        *,
        context: RequestContext | None = None,
        user_id: uuid.UUID | None = None,
        metadata: dict | None = None,
        severity: AuditSeverity | None = None,
    ) -> AuditEvent | None:
        """
        Append one event to the log within the caller's transaction.

        The insert runs in a savepoint: a failed write rolls back only the
        event and leaves the caller's session usable.

        Returns:
            The flushed AuditEvent, or None when auditing is disabled.

        Raises:
            AuditWriteError: If the event could not be flushed.
        """
        severity = severity or default_severity(event_type)
        context = context or RequestContext()

        if not self.config.enabled:
            logger.debug(f"Audit disabled, dropping {event_type.value} event")
            return None

        audit_event = AuditEvent(
            event_type=event_type,
            description=description,
            user_id=user_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            event_metadata=jsonable_encoder(metadata or {}),
            severity=severity,
        )
        try:
            async with db.begin_nested():
                db.add(audit_event)
                await db.flush()
        except SQLAlchemyError as exc:
            logger.error(
                f"AUDIT_FALLBACK type={event_type.value} severity={severity.value} "
                f"user={user_id} ip={context.ip_address} description={description!r} "
                f"error={exc}"
            )
            raise AuditWriteError(event_type.value, severity.value) from exc

        if severity == AuditSeverity.CRITICAL and self.config.critical_event_notification:
            logger.critical(
                f"CRITICAL_SECURITY_EVENT type={event_type.value} user={user_id} "
                f"ip={context.ip_address} description={description!r}"
            )
        return audit_event

    async def emit(self, db: AsyncSession, event_type: AuditEventType, description: str, **kwargs) -> AuditEvent | None:
        """record(), absorbing write failures unless the event is critical."""
        try:
            return await self.record(db, event_type, description, **kwargs)
        except AuditWriteError as exc:
            if exc.severity == AuditSeverity.CRITICAL.value:
                raise
            return None

    async def query(
        self,
        db: AsyncSession,
        *,
        event_type: AuditEventType | None = None,
        user_id: uuid.UUID | None = None,
        ip_address: str | None = None,
        severity: AuditSeverity | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Filter the log; newest first, at most `limit` rows."""
        stmt = select(AuditEvent)
        if event_type is not None:
            stmt = stmt.where(AuditEvent.event_type == event_type)
        if user_id is not None:
            stmt = stmt.where(AuditEvent.user_id == user_id)
        if ip_address is not None:
            stmt = stmt.where(AuditEvent.ip_address == ip_address)
        if severity is not None:
            stmt = stmt.where(AuditEvent.severity == severity)
        if since is not None:
            stmt = stmt.where(AuditEvent.created_at >= since)
        if until is not None:
            stmt = stmt.where(AuditEvent.created_at <= until)
        stmt = stmt.order_by(AuditEvent.created_at.desc()).limit(limit)

        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def purge_expired(self, db: AsyncSession, now: datetime | None = None) -> int:
        """Delete events older than the retention window; returns the row count."""
        cutoff = (now or utcnow()) - timedelta(days=self.config.retention_days)
        result = await db.execute(
            delete(AuditEvent)
            .where(AuditEvent.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Purged {result.rowcount} audit events older than {cutoff.isoformat()}")
        return result.rowcount
