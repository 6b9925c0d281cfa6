"""
FastAPI dependencies for admission control.

  • enforce_rate_limit — every public route; fixed-window quota by tier.
  • require_tier       — routes closed to tiers below a minimum
                         (batch and metrics need BASIC, analytics PREMIUM).

Both depend on resolve_caller (credentials run first).
Order in request pipeline: CREDENTIALS → RATE LIMIT → TIER GATE → ROUTER.

Quota headers (X-RateLimit-Limit / -Remaining / -Reset) are attached to
every response once the caller is admitted, errors included, and to the
429 itself; the 429 also carries Retry-After.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Annotated

from fastapi import Depends, Request, Response

from app.auth.dependencies import CallerContext, Services, resolve_caller
from app.core.errors import AdmissionRejected, PaidTierRequired
from app.services.rate_limiter import RateLimitExceeded
from app.services.tiers import Tier


async def enforce_rate_limit(
    request: Request,
    response: Response,
    services: Services,
    caller: CallerContext = Depends(resolve_caller),
) -> CallerContext:
    """
    Count this request against the caller's window and reject over quota.

    Returns the CallerContext so routers can read tier / identity.
    """
    try:
        decision = await services.rate_limiter.check(caller.identifier, caller.tier)
    except RateLimitExceeded as exc:
        raise AdmissionRejected(headers=exc.decision.headers) from exc

    response.headers.update(decision.headers)
    # The exception handlers build fresh responses; they read both from here.
    request.state.quota_headers = decision.headers
    request.state.admitted_identifier = caller.identifier
    return caller


Caller = Annotated[CallerContext, Depends(enforce_rate_limit)]

TierGate = Callable[[CallerContext], Awaitable[CallerContext]]


def require_tier(minimum: Tier, message: str, code: int = 40301) -> TierGate:
    """Build a dependency that rejects callers below `minimum` with a 403."""

    async def _dependency(caller: Caller) -> CallerContext:
        if not caller.tier.at_least(minimum):
            raise PaidTierRequired(message, code=code)
        return caller

    return _dependency


def require_paid_tier(message: str, code: int = 40301) -> TierGate:
    return require_tier(Tier.BASIC, message, code)
