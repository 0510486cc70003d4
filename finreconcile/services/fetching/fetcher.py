"""
Cached Fetcher

Wraps a SourceAdapter call with:
1. A per-source TTL cache (primary path, no network)
2. A local sliding-window rate-limit gate
3. Credential validation before any network access
4. Retry of transient upstream failures (linear backoff)
5. Stale-on-error fallback

CRITICAL: fetch() never raises an adapter exception. Availability is
prioritized over freshness; the FetchResult says how fresh the data is.

Concurrent callers asking for the same key while a refresh is running
share that single upstream call (single-flight). The cache check and
the in-flight registration run without an await in between, so they
are atomic on the event loop.
"""

import asyncio
from functools import partial
from typing import Mapping, Optional
from uuid import UUID

from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from finreconcile.audit import AuditLogger
from finreconcile.config import get_settings
from finreconcile.models.audit import AuditEventBuilder
from finreconcile.models.fetch import FetchOutcome, FetchReason, FetchResult
from finreconcile.models.snapshot import PartialSnapshot, Source
from finreconcile.services.fetching.cache import CacheEntry, CacheStats, SnapshotCache
from finreconcile.services.fetching.rate_limit import SlidingWindowRateLimiter
from finreconcile.sources.base import SourceAdapter
from finreconcile.sources.config import SERVICE_CONFIGS, SourceConfig, missing_credentials
from finreconcile.sources.errors import SourceResponseError, TransientSourceError


def cache_key_prefix(service_type: str) -> str:
    """Prefix shared by every cache key of one service type."""
    return f"{service_type}-"


class CachedFetcher:
    """
    Resilient per-source fetch layer.

    Owns its cache and rate limiter; both can be injected for tests.
    """

    def __init__(
        self,
        cache: Optional[SnapshotCache] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        audit_logger: Optional[AuditLogger] = None,
        source_configs: Optional[Mapping[str, SourceConfig]] = None,
        retry_attempts: Optional[int] = None,
        retry_backoff_seconds: Optional[float] = None,
        adapter_timeout_seconds: Optional[float] = None,
    ):
        settings = get_settings().fetching
        self._cache = cache if cache is not None else SnapshotCache()
        self._rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self._audit_logger = audit_logger or AuditLogger()
        self._configs = source_configs if source_configs is not None else SERVICE_CONFIGS
        self._retry_attempts = (
            settings.retry_attempts if retry_attempts is None else retry_attempts
        )
        self._retry_backoff = (
            settings.retry_backoff_seconds
            if retry_backoff_seconds is None
            else retry_backoff_seconds
        )
        self._adapter_timeout = (
            settings.adapter_timeout_seconds
            if adapter_timeout_seconds is None
            else adapter_timeout_seconds
        )
        self._inflight: dict[str, asyncio.Future] = {}

    @property
    def cache(self) -> SnapshotCache:
        return self._cache

    async def fetch(
        self,
        source: Source,
        adapter: SourceAdapter,
        correlation_id: Optional[UUID] = None,
    ) -> FetchResult:
        """
        Get the snapshot for a source, from cache when possible.

        Never raises for adapter failures.
        """
        key = source.cache_key
        entry = self._cache.get(key)

        if entry is not None and self._cache.is_fresh(entry):
            await self._audit_logger.log(AuditEventBuilder.cache_hit(
                service_type=source.service_type,
                integration_id=source.integration_id,
                correlation_id=correlation_id,
            ))
            return self._from_entry(key, entry, FetchOutcome.CACHED)

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(source, adapter, correlation_id))
            self._inflight[key] = task
            task.add_done_callback(partial(self._forget, key))

        # Shield so one cancelled waiter does not cancel the shared call
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _refresh(
        self,
        source: Source,
        adapter: SourceAdapter,
        correlation_id: Optional[UUID],
    ) -> FetchResult:
        key = source.cache_key
        config = self._configs.get(source.service_type)

        # Step 1: local rate-limit gate
        limit = config.requests_per_minute if config else None
        if not self._rate_limiter.try_acquire(source.service_type, limit):
            entry = self._cache.get(key)
            await self._audit_logger.log(AuditEventBuilder.rate_limited(
                service_type=source.service_type,
                integration_id=source.integration_id,
                served_stale=entry is not None,
                correlation_id=correlation_id,
            ))
            if entry is not None:
                return self._from_entry(key, entry, FetchOutcome.STALE, FetchReason.RATE_LIMITED)
            return FetchResult(
                cache_key=key,
                outcome=FetchOutcome.EMPTY,
                reason=FetchReason.RATE_LIMITED,
            )

        # Step 2: never attempt a call known to fail auth
        missing = missing_credentials(source.service_type, source.credentials, self._configs)
        if missing is None or missing:
            await self._audit_logger.log(AuditEventBuilder.credentials_invalid(
                service_type=source.service_type,
                integration_id=source.integration_id,
                missing_fields=missing or [],
                correlation_id=correlation_id,
            ))
            return FetchResult(
                cache_key=key,
                outcome=FetchOutcome.EMPTY,
                reason=FetchReason.INVALID_CREDENTIALS,
                error_type="SourceAuthError",
            )

        # Step 3: upstream call
        try:
            snapshot, attempts = await self._call_adapter(source, adapter, correlation_id)
        except Exception as e:
            return await self._fallback(source, e, correlation_id)

        entry = self._cache.put(key, snapshot)
        await self._audit_logger.log(AuditEventBuilder.source_fetched(
            service_type=source.service_type,
            integration_id=source.integration_id,
            attempts=attempts,
            correlation_id=correlation_id,
        ))
        return self._from_entry(key, entry, FetchOutcome.FRESH)

    async def _call_adapter(
        self,
        source: Source,
        adapter: SourceAdapter,
        correlation_id: Optional[UUID],
    ) -> tuple[PartialSnapshot, int]:
        """
        Invoke the adapter, retrying transient failures (network, 5xx, 429).

        Auth and malformed-response errors fail fast. Timeouts are
        not retried.

        Backoff is linear: attempt x backoff seconds. The sleep is an
        asyncio sleep, so other fetches keep running.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientSourceError),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_incrementing(start=self._retry_backoff, increment=self._retry_backoff),
            reraise=True,
        )

        attempts = 0
        data = None
        last_error = None
        async for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                if attempts > 1:
                    await self._audit_logger.log(AuditEventBuilder.fetch_retry(
                        service_type=source.service_type,
                        integration_id=source.integration_id,
                        attempt=attempts,
                        wait_seconds=self._retry_backoff * (attempts - 1),
                        error_type=last_error,
                        correlation_id=correlation_id,
                    ))
                try:
                    data = await asyncio.wait_for(
                        adapter.fetch_snapshot(source),
                        timeout=self._adapter_timeout,
                    )
                except TransientSourceError as e:
                    last_error = type(e).__name__
                    raise

        if isinstance(data, PartialSnapshot):
            return data, attempts
        try:
            return PartialSnapshot.model_validate(data), attempts
        except ValidationError as e:
            raise SourceResponseError(source.service_type, f"Malformed snapshot: {e}")

    async def _fallback(
        self,
        source: Source,
        error: Exception,
        correlation_id: Optional[UUID],
    ) -> FetchResult:
        key = source.cache_key
        error_type = type(error).__name__
        entry = self._cache.get(key)

        if entry is not None:
            await self._audit_logger.log(AuditEventBuilder.stale_fallback(
                service_type=source.service_type,
                integration_id=source.integration_id,
                error_type=error_type,
                error_message=str(error),
                fetched_at=entry.fetched_at,
                correlation_id=correlation_id,
            ))
            return self._from_entry(
                key, entry, FetchOutcome.STALE, FetchReason.FETCH_FAILED, error_type
            )

        await self._audit_logger.log(AuditEventBuilder.empty_fallback(
            service_type=source.service_type,
            integration_id=source.integration_id,
            error_type=error_type,
            error_message=str(error),
            correlation_id=correlation_id,
        ))
        return FetchResult(
            cache_key=key,
            outcome=FetchOutcome.EMPTY,
            reason=FetchReason.FETCH_FAILED,
            error_type=error_type,
        )

    @staticmethod
    def _from_entry(
        key: str,
        entry: CacheEntry,
        outcome: FetchOutcome,
        reason: Optional[FetchReason] = None,
        error_type: Optional[str] = None,
    ) -> FetchResult:
        return FetchResult(
            cache_key=key,
            outcome=outcome,
            snapshot=entry.data.model_copy(deep=True),
            reason=reason,
            error_type=error_type,
            fetched_at=entry.fetched_at,
        )

    async def invalidate(
        self,
        prefix: str,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """Drop every cache entry whose key starts with prefix."""
        removed = self._cache.invalidate(prefix)
        await self._audit_logger.log(AuditEventBuilder.cache_invalidated(
            prefix=prefix,
            removed=removed,
            correlation_id=correlation_id,
        ))
        return removed

    async def clear(self, integration_id: Optional[str] = None) -> int:
        """Manual cache clear: everything, or one integration."""
        removed = self._cache.clear(integration_id)
        await self._audit_logger.log(AuditEventBuilder.cache_invalidated(
            prefix=None,
            removed=removed,
        ))
        return removed

    def stats(self) -> CacheStats:
        return self._cache.stats()
