"""
Lookup pipeline — cache → origin → cache populate → observability.

Credential resolution and admission run before this (FastAPI
dependencies); by the time a request reaches the pipeline it has been
admitted and its rate-limit headers are set.

Single lookup:
  1. CacheLookup  — hit returns immediately (X-Cache: HIT).
  2. OriginCompute — on miss, query the origin.
  3. CachePopulate — store the result (not-found results too) with the
     default TTL.
  4. Observability — log line + request_logs row, fire-and-forget.

Batch lookup:
  Each name runs steps 1–3 on its own. Names are processed in chunks of
  `chunk_size` with the chunk's lookups running concurrently, so the
  origin never sees more than `chunk_size` parallel queries from one
  batch. A failing item becomes a null, zero-confidence result; its
  siblings are unaffected.

The whole lookup is bounded by `timeout_seconds`. On timeout,
LookupTimeout is raised; cache writes or counters already issued stay
as they are.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from app.services.cache import CacheManager
from app.services.metrics import MetricsCollector, RequestRecord
from app.services.names import OriginLookup, name_cache_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIDENCE_CACHED = 1.0
CONFIDENCE_ORIGIN = 0.95
CONFIDENCE_NONE = 0.0


class LookupTimeout(Exception):
    """The pipeline did not finish within its time budget."""


@dataclass(frozen=True, slots=True)
class RequestMeta:
    """Who asked — used for request logging only."""

    api_key_id: uuid.UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True, slots=True)
class LookupResult:
    gender: str | None
    en_name: str | None
    cache_status: str  # "HIT" | "MISS"
    response_time_ms: int

    @property
    def found(self) -> bool:
        return self.gender is not None


@dataclass(frozen=True, slots=True)
class BatchItem:
    name: str
    gender: str | None
    en_name: str | None
    popularity: int | None
    confidence: float


@dataclass(frozen=True, slots=True)
class BatchResult:
    results: list[BatchItem]
    processed_count: int
    error_count: int
    processing_time_ms: int


class LookupPipeline:
    def __init__(
        self,
        cache: CacheManager,
        origin: OriginLookup,
        metrics: MetricsCollector,
        *,
        ttl_seconds: int = 3600,
        timeout_seconds: float = 10.0,
        chunk_size: int = 10,
    ) -> None:
        self.cache = cache
        self.origin = origin
        self.metrics = metrics
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.chunk_size = max(1, chunk_size)

    # ── Single lookup ───────────────────────────────────────
    async def lookup(self, name: str, meta: RequestMeta | None = None) -> LookupResult:
        return await self._bounded(self._lookup(name, meta or RequestMeta()))

    async def _lookup(self, name: str, meta: RequestMeta) -> LookupResult:
        started = time.perf_counter()
        key = name_cache_key(name)
        name_id: uuid.UUID | None = None

        cached = await self.cache.get(key)
        if cached.hit:
            value: dict[str, Any] = cached.value
            cache_status = "HIT"
        else:
            record = await self.origin.find(name)
            if record is not None:
                name_id = record.id
                value = record.cache_value()
            else:
                value = {"gender": None, "enName": None, "popularity": 0}
            await self.cache.set(key, value, self.ttl_seconds)
            cache_status = "MISS"

        elapsed_ms = _elapsed_ms(started)
        result = LookupResult(
            gender=value.get("gender"),
            en_name=value.get("enName"),
            cache_status=cache_status,
            response_time_ms=elapsed_ms,
        )

        self.metrics.record(
            RequestRecord(
                requested_name=name,
                status_code=200,
                response_time_ms=elapsed_ms,
                cache_status=cache_status,
                name_id=name_id,
                api_key_id=meta.api_key_id,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )
        )
        logger.info(
            "Name lookup completed name=%r cache=%s found=%s time=%dms",
            name, cache_status, result.found, elapsed_ms,
        )
        return result

    # ── Batch lookup ────────────────────────────────────────
    async def lookup_batch(
        self,
        names: Sequence[str],
        *,
        include_popularity: bool = False,
    ) -> BatchResult:
        return await self._bounded(self._lookup_batch(names, include_popularity))

    async def _lookup_batch(self, names: Sequence[str], include_popularity: bool) -> BatchResult:
        started = time.perf_counter()
        results: list[BatchItem] = []

        for offset in range(0, len(names), self.chunk_size):
            chunk = names[offset:offset + self.chunk_size]
            results.extend(
                await asyncio.gather(
                    *(self._batch_item(name, include_popularity) for name in chunk)
                )
            )

        error_count = sum(1 for item in results if item.confidence == CONFIDENCE_NONE)
        elapsed_ms = _elapsed_ms(started)
        logger.info(
            "Batch processing completed processed=%d errors=%d time=%dms",
            len(results), error_count, elapsed_ms,
        )
        return BatchResult(
            results=results,
            processed_count=len(results),
            error_count=error_count,
            processing_time_ms=elapsed_ms,
        )

    async def _batch_item(self, name: str, include_popularity: bool) -> BatchItem:
        key = name_cache_key(name)
        try:
            cached = await self.cache.get(key)
            if cached.hit:
                value = cached.value
                if value.get("gender") is None:
                    return _unresolved(name, include_popularity)
                return BatchItem(
                    name=name,
                    gender=value.get("gender"),
                    en_name=value.get("enName"),
                    popularity=value.get("popularity", 0) if include_popularity else None,
                    confidence=CONFIDENCE_CACHED,
                )

            record = await self.origin.find(name)
            if record is None:
                return _unresolved(name, include_popularity)

            await self.cache.set(key, record.cache_value(), self.ttl_seconds)
            return BatchItem(
                name=name,
                gender=record.gender,
                en_name=record.en_name,
                popularity=record.popularity if include_popularity else None,
                confidence=CONFIDENCE_ORIGIN,
            )
        except Exception:
            logger.exception("Error processing name %r in batch", name)
            return _unresolved(name, include_popularity)

    # ── Internals ───────────────────────────────────────────
    async def _bounded(self, work: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(work, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.warning("Lookup exceeded %.1fs timeout", self.timeout_seconds)
            raise LookupTimeout(f"Request timed out after {self.timeout_seconds:g} seconds") from exc


def _unresolved(name: str, include_popularity: bool) -> BatchItem:
    return BatchItem(
        name=name,
        gender=None,
        en_name=None,
        popularity=0 if include_popularity else None,
        confidence=CONFIDENCE_NONE,
    )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
