"""
Batch router — many names in one request (paid tiers only).

POST /batch
  • Up to BATCH_MAX_NAMES names; each is resolved independently.
  • Confidence: 1.0 cached, 0.95 from origin, 0.0 unknown or failed.
  • errorCount is the number of zero-confidence results.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Response

from app.auth.dependencies import CallerContext, Services
from app.auth.rate_limit import require_paid_tier
from app.core.errors import InvalidRequest, TimeoutExceeded
from app.schemas.errors import error_responses
from app.schemas.names import BatchItemOut, BatchRequest, BatchResponse
from app.services.pipeline import LookupTimeout

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Batch Processing"])

PaidCaller = Annotated[
    CallerContext,
    Depends(require_paid_tier("Batch processing requires a paid API key", code=40303)),
]


@router.post(
    "/batch",
    response_model=BatchResponse,
    summary="Process multiple names",
    description=(
        "Looks up many Persian names in one request. Lookups run in "
        "parallel chunks and share the name cache. Requires BASIC tier "
        "or higher."
    ),
    responses=error_responses(400, 401, 403, 408, 429, 500),
)
async def process_batch(
    payload: BatchRequest,
    response: Response,
    caller: PaidCaller,
    services: Services,
) -> BatchResponse:
    max_names = services.settings.BATCH_MAX_NAMES
    if len(payload.names) > max_names:
        await services.rate_limiter.refund(caller.identifier)
        raise InvalidRequest(f"Maximum {max_names} names allowed per batch request")

    try:
        batch = await services.pipeline.lookup_batch(
            payload.names,
            include_popularity=payload.include_popularity,
        )
    except LookupTimeout as exc:
        raise TimeoutExceeded(str(exc)) from exc

    response.headers["X-Processing-Time"] = f"{batch.processing_time_ms}ms"
    response.headers["X-Processed-Count"] = str(batch.processed_count)
    response.headers["X-Error-Count"] = str(batch.error_count)

    return BatchResponse(
        results=[
            BatchItemOut(
                name=item.name,
                gender=item.gender,
                en_name=item.en_name,
                popularity=item.popularity,
                confidence=item.confidence,
            )
            for item in batch.results
        ],
        processed_count=batch.processed_count,
        error_count=batch.error_count,
        processing_time=batch.processing_time_ms,
    )
