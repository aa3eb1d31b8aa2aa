"""
FastAPI dependencies shared by the routers.

Dependency chain for protected endpoints:

  get_services (app.state -> Services)
  get_request_context (Request + TRUSTED_PROXIES -> RequestContext)
  get_current_user (Bearer token -> User)
      └── enforces the same admissibility rules as login: an inactive,
          suspended, payment-pending or disabled account is refused even
          while its access token is still unexpired.

Authorization itself (who may register whom, who may manage whom) is not a
dependency: it depends on the request body, so the services perform it and
audit every refusal.
"""

import asyncio
import ipaddress
from collections.abc import Awaitable
from typing import TypeVar

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from mowesport.database import get_db
from mowesport.exceptions import RequestTimeoutError
from mowesport.models.user import User
from mowesport.services.audit_service import RequestContext
from mowesport.services.container import Services

T = TypeVar("T")

# Where Swagger UI's "Authorize" button posts credentials
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_services(request: Request) -> Services:
    return request.app.state.services


def _parse_ip(value: str) -> str | None:
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def get_request_context(request: Request, services: Services = Depends(get_services)) -> RequestContext:
    """
    Client address and user agent for audit records and rate limiting.

    The address is the direct peer. X-Forwarded-For is honoured only when that
    peer is listed in TRUSTED_PROXIES; the client is then the right-most hop
    that is not itself a trusted proxy. Malformed hops end the walk.
    """
    ip_address = request.client.host if request.client is not None else "unknown"
    trusted = set(services.config.TRUSTED_PROXIES)

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and ip_address in trusted:
        for hop in reversed(forwarded.split(",")):
            parsed = _parse_ip(hop)
            if parsed is None:
                break
            ip_address = parsed
            if parsed not in trusted:
                break

    user_agent = request.headers.get("user-agent")
    return RequestContext(ip_address=ip_address, user_agent=user_agent[:500] if user_agent else None)



async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> User:
    """
    Resolve the bearer access token to its User.

    Raises:
        TokenError: expired_token / invalid_token / invalid_token_type (401).
        AuthenticationError: The account is no longer admissible.
    """
    return await services.auth.resolve_access_token(db, token)


async def admit_general(
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    context: RequestContext = Depends(get_request_context),
) -> None:
    """General-purpose rate limit bucket, keyed by client address."""
    await services.admission.admit(db, context, "general")


async def run_with_timeout(operation: Awaitable[T], seconds: float) -> T:
    """Await `operation`, failing with a timeout error (and a rollback) past the deadline."""
    try:
        return await asyncio.wait_for(operation, timeout=seconds)
    except asyncio.TimeoutError:
        raise RequestTimeoutError(seconds)
