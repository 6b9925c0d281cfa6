"""
Name lookup router — the main public endpoint.

GET /name/{name}
  1. Resolves the caller's tier from X-API-Key (or FREE by IP).
  2. Enforces the tier's hourly quota (headers on every response).
  3. Serves from cache when possible (X-Cache: HIT), otherwise from the
     origin table, caching the answer for an hour (X-Cache: MISS).
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Path, Response

from app.auth.dependencies import Services
from app.auth.rate_limit import Caller
from app.core.errors import TimeoutExceeded
from app.schemas.errors import error_responses
from app.schemas.names import NAME_MAX_LENGTH, PERSIAN_NAME_PATTERN, NameLookupOut
from app.services.pipeline import LookupTimeout

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Name Lookup"])

PersianNameParam = Annotated[
    str,
    Path(
        min_length=1,
        max_length=NAME_MAX_LENGTH,
        pattern=PERSIAN_NAME_PATTERN,
        description="Persian name to analyze (Persian script only).",
        examples=["علی"],
    ),
]


@router.get(
    "/name/{name}",
    response_model=NameLookupOut,
    summary="Get gender by Persian name",
    description=(
        "Determines the gender of a Persian name and its English "
        "transliteration. Results are cached for one hour; both fields "
        "are null when the name is unknown."
    ),
    responses=error_responses(400, 401, 408, 429, 500),
)
async def get_gender_by_name(
    name: PersianNameParam,
    response: Response,
    caller: Caller,
    services: Services,
) -> NameLookupOut:
    try:
        result = await services.pipeline.lookup(name, caller.meta)
    except LookupTimeout as exc:
        raise TimeoutExceeded(str(exc)) from exc

    response.headers["X-Cache"] = result.cache_status
    response.headers["Cache-Control"] = f"public, max-age={services.pipeline.ttl_seconds}"
    response.headers["X-Response-Time"] = f"{result.response_time_ms}ms"

    return NameLookupOut(gender=result.gender, en_name=result.en_name)
