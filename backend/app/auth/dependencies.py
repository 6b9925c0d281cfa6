"""
FastAPI dependencies for credential resolution and admin access.

Flow for public routes:
  1. Read X-API-Key.
  2. No key        → FREE tier, identified by client IP.
     Key present   → validate; any failure (unknown, inactive, hourly
                     limit reached, storage error) is a hard 401.
                     A presented-but-bad key is never downgraded to FREE.
  3. Bump the key's lifetime usage counter (best-effort).
  4. Return CallerContext (tier + rate-limit identifier).

Security:
  • Generic 401 body for all credential failures
  • Raw keys are NEVER logged
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, Request

from app.auth.hashing import secrets_match
from app.core.container import ServiceContainer
from app.core.errors import AdminAccessRequired, CredentialInvalid
from app.services.pipeline import RequestMeta
from app.services.rate_limiter import client_address, identify_client
from app.services.tiers import Tier

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CallerContext:
    """Resolved caller injected into every public route.

    Attributes:
        tier:       Quota tier (FREE when no key was presented).
        identifier: Rate-limit counter key ("api:<id>" or "ip:<addr>").
        api_key_id: The validated key's UUID, if any.
    """

    tier: Tier
    identifier: str
    api_key_id: uuid.UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def meta(self) -> RequestMeta:
        return RequestMeta(
            api_key_id=self.api_key_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


Services = Annotated[ServiceContainer, Depends(get_services)]


async def resolve_caller(
    request: Request,
    services: Services,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> CallerContext:
    """
    Resolve the caller's tier from the optional X-API-Key header.

    Raises CredentialInvalid (401) for any presented key that does not
    validate.
    """
    ip = _client_ip(request)
    user_agent = request.headers.get("user-agent")

    if not x_api_key:
        return CallerContext(
            tier=Tier.FREE,
            identifier=identify_client(None, request.headers, _peer(request)),
            ip_address=ip,
            user_agent=user_agent,
        )

    validation = await services.credentials.validate(x_api_key)
    if not validation.is_valid or validation.api_key_id is None or validation.tier is None:
        logger.info("Rejected API key (reason=%s)", validation.reason)
        raise CredentialInvalid()

    await services.credentials.increment_usage(validation.api_key_id)

    return CallerContext(
        tier=validation.tier,
        identifier=identify_client(validation.api_key_id, request.headers),
        api_key_id=validation.api_key_id,
        ip_address=ip,
        user_agent=user_agent,
    )


async def require_admin(
    services: Services,
    x_admin_key: str | None = Header(default=None, alias="X-Admin-Key"),
) -> None:
    """Admin routes: X-Admin-Key must match ADMIN_API_KEY (constant-time)."""
    if not secrets_match(x_admin_key, services.settings.ADMIN_API_KEY):
        raise AdminAccessRequired()


def _client_ip(request: Request) -> str | None:
    return client_address(request.headers, _peer(request))


def _peer(request: Request) -> str | None:
    return request.client.host if request.client else None
