"""Rate-limit admission with audit of every rejection."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.exceptions import RateLimitExceededError
from mowesport.models.audit_event import AuditEventType
from mowesport.rate_limit import RateLimiter
from mowesport.services.audit_service import AuditLog, RequestContext

logger = logging.getLogger(__name__)


class AdmissionControl:

    def __init__(self, limiter: RateLimiter, audit: AuditLog):
        self.limiter = limiter
        self.audit = audit

    async def admit(
        self,
        db: AsyncSession,
        context: RequestContext,
        bucket: str,
        suffix: str = "",
    ) -> None:
        identifier = f"{context.ip_address}{suffix}"
        try:
            self.limiter.check(identifier, bucket)
        except RateLimitExceededError:
            logger.warning(f"Rate limit exceeded: bucket={bucket} identifier={identifier}")
            await self.audit.emit(
                db,
                AuditEventType.RATE_LIMIT_EXCEEDED,
                f"Rate limit exceeded for {bucket}",
                context=context,
                metadata={"bucket": bucket, "identifier": identifier},
            )
            raise
