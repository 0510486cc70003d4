"""
Tests for the cached fetch layer.

Fake adapters count their calls; a fake clock drives cache expiry and
the rate-limit window.
"""

import asyncio
from decimal import Decimal

from finreconcile.models import (
    AuditEventType,
    FetchOutcome,
    FetchReason,
    PartialSnapshot,
    SnapshotMetrics,
    Source,
)
from finreconcile.services.fetching import (
    CachedFetcher,
    SlidingWindowRateLimiter,
    SnapshotCache,
    cache_key_prefix,
)
from finreconcile.sources import SourceAdapter, SourceConfig
from finreconcile.sources.errors import (
    SourceAuthError,
    SourceRateLimitedError,
    SourceResponseError,
    TransientSourceError,
)


class CountingAdapter(SourceAdapter):
    """Returns the queued outcomes in order, repeating the last one."""

    service_type = "mercury_bank"

    def __init__(self, *outcomes, delay: float = 0.0):
        self.outcomes = list(outcomes) or [PartialSnapshot(cash_on_hand=Decimal("100"))]
        self.delay = delay
        self.calls = 0

    async def fetch_snapshot(self, source):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def mercury(integration_id="1", **credentials):
    return Source(
        service_type="mercury_bank",
        integration_id=integration_id,
        credentials=credentials or {"apiKey": "key"},
    )


def make_fetcher(clock, audit_logger, cache=None, **kwargs):
    kwargs.setdefault("retry_backoff_seconds", 0)
    if cache is None:
        cache = SnapshotCache(ttl_seconds=300, stale_retention_seconds=3600, clock=clock)
    return CachedFetcher(
        cache=cache,
        rate_limiter=SlidingWindowRateLimiter(window_seconds=60, clock=clock),
        audit_logger=audit_logger,
        **kwargs,
    )


def event_types(audit_storage):
    return [e.event_type for e in audit_storage.events]


class TestCacheBehaviour:
    """Tests for the TTL cache path."""

    def test_second_fetch_within_ttl_hits_cache(self, clock, audit_logger):
        """Test two fetches within the TTL make one upstream call."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter()

        async def run():
            first = await fetcher.fetch(mercury(), adapter)
            clock.advance(299)
            second = await fetcher.fetch(mercury(), adapter)
            return first, second

        first, second = asyncio.run(run())
        assert adapter.calls == 1
        assert first.outcome == FetchOutcome.FRESH
        assert second.outcome == FetchOutcome.CACHED
        assert second.snapshot.cash_on_hand == Decimal("100")

    def test_expired_entry_triggers_refetch(self, clock, audit_logger):
        """Test the TTL bounds how long data is served without a call."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(
            PartialSnapshot(cash_on_hand=Decimal("100")),
            PartialSnapshot(cash_on_hand=Decimal("150")),
        )

        async def run():
            await fetcher.fetch(mercury(), adapter)
            clock.advance(301)
            return await fetcher.fetch(mercury(), adapter)

        result = asyncio.run(run())
        assert adapter.calls == 2
        assert result.outcome == FetchOutcome.FRESH
        assert result.snapshot.cash_on_hand == Decimal("150")

    def test_sources_are_cached_independently(self, clock, audit_logger):
        """Test the key includes the integration id."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter()

        async def run():
            await fetcher.fetch(mercury("1"), adapter)
            await fetcher.fetch(mercury("2"), adapter)

        asyncio.run(run())
        assert adapter.calls == 2


class TestStaleFallback:
    """Tests for stale-on-error behaviour."""

    def test_failure_after_expiry_returns_previous_value(self, clock, audit_logger, audit_storage):
        """Test an upstream failure serves the expired entry, not empty."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(
            PartialSnapshot(cash_on_hand=Decimal("100")),
            TransientSourceError("mercury_bank", "HTTP 503", status_code=503),
        )

        async def run():
            await fetcher.fetch(mercury(), adapter)
            clock.advance(301)
            return await fetcher.fetch(mercury(), adapter)

        result = asyncio.run(run())
        assert result.outcome == FetchOutcome.STALE
        assert result.reason == FetchReason.FETCH_FAILED
        assert result.error_type == "TransientSourceError"
        assert result.snapshot.cash_on_hand == Decimal("100")
        assert AuditEventType.STALE_FALLBACK in event_types(audit_storage)

    def test_failure_without_cache_returns_empty(self, clock, audit_logger, audit_storage):
        """Test an upstream failure with nothing cached yields an empty snapshot."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(SourceAuthError("mercury_bank", "HTTP 401", status_code=401))

        result = asyncio.run(fetcher.fetch(mercury(), adapter))
        assert result.outcome == FetchOutcome.EMPTY
        assert result.snapshot.is_empty
        assert result.error_type == "SourceAuthError"
        assert AuditEventType.EMPTY_FALLBACK in event_types(audit_storage)

    def test_entry_past_retention_is_evicted(self, clock, audit_logger):
        """Test very old entries are no longer used for fallback."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(
            PartialSnapshot(cash_on_hand=Decimal("100")),
            TransientSourceError("mercury_bank", "down"),
        )

        async def run():
            await fetcher.fetch(mercury(), adapter)
            clock.advance(300 + 3600)
            return await fetcher.fetch(mercury(), adapter)

        result = asyncio.run(run())
        assert result.outcome == FetchOutcome.EMPTY

    def test_malformed_adapter_output_falls_back(self, clock, audit_logger):
        """Test a payload that is not a snapshot is treated as a failure."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter({"cash_on_hand": "not a number"})

        result = asyncio.run(fetcher.fetch(mercury(), adapter))
        assert result.outcome == FetchOutcome.EMPTY
        assert result.error_type == "SourceResponseError"

    def test_dict_adapter_output_is_coerced(self, clock, audit_logger):
        """Test a well-formed dict payload is accepted."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter({"cash_on_hand": "12.5"})

        result = asyncio.run(fetcher.fetch(mercury(), adapter))
        assert result.outcome == FetchOutcome.FRESH
        assert result.snapshot.cash_on_hand == Decimal("12.5")


class TestRetryPolicy:
    """Tests for the transient-failure retry sub-policy."""

    def test_rate_limited_adapter_called_exactly_three_times(self, clock, audit_logger, audit_storage):
        """Test a permanently 429ing adapter is tried 3 times, then falls back."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(SourceRateLimitedError("mercury_bank", "HTTP 429"))

        result = asyncio.run(fetcher.fetch(mercury(), adapter))
        assert adapter.calls == 3
        assert result.outcome == FetchOutcome.EMPTY
        assert result.error_type == "SourceRateLimitedError"
        assert event_types(audit_storage).count(AuditEventType.FETCH_RETRY) == 2

    def test_recovers_after_transient_rate_limit(self, clock, audit_logger, audit_storage):
        """Test a 429 followed by success returns fresh data."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(
            SourceRateLimitedError("mercury_bank", "HTTP 429"),
            PartialSnapshot(cash_on_hand=Decimal("5")),
        )

        result = asyncio.run(fetcher.fetch(mercury(), adapter))
        assert adapter.calls == 2
        assert result.outcome == FetchOutcome.FRESH
        fetched = [e for e in audit_storage.events if e.event_type == AuditEventType.SOURCE_FETCHED]
        assert fetched[0].details["attempts"] == 2

    def test_server_errors_are_retried_three_times(self, clock, audit_logger, audit_storage):
        """Test a permanently failing 5xx upstream is tried 3 times, then falls back."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(TransientSourceError("mercury_bank", "HTTP 503", status_code=503))

        result = asyncio.run(fetcher.fetch(mercury(), adapter))
        assert adapter.calls == 3
        assert result.outcome == FetchOutcome.EMPTY
        assert result.error_type == "TransientSourceError"
        retries = [e for e in audit_storage.events if e.event_type == AuditEventType.FETCH_RETRY]
        assert [e.details["attempt"] for e in retries] == [2, 3]
        assert all(e.error_type == "TransientSourceError" for e in retries)

    def test_recovers_after_network_error(self, clock, audit_logger):
        """Test a network failure followed by success returns fresh data."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(
            TransientSourceError("mercury_bank", "connection reset"),
            PartialSnapshot(cash_on_hand=Decimal("7")),
        )

        result = asyncio.run(fetcher.fetch(mercury(), adapter))
        assert adapter.calls == 2
        assert result.outcome == FetchOutcome.FRESH
        assert result.snapshot.cash_on_hand == Decimal("7")

    def test_malformed_response_fails_fast(self, clock, audit_logger):
        """Test a malformed upstream payload is not retried."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(SourceResponseError("mercury_bank", "Unexpected payload"))

        result = asyncio.run(fetcher.fetch(mercury(), adapter))
        assert adapter.calls == 1
        assert result.error_type == "SourceResponseError"

    def test_auth_error_fails_fast(self, clock, audit_logger):
        """Test an upstream 401 is not retried."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(SourceAuthError("mercury_bank", "HTTP 401", status_code=401))

        asyncio.run(fetcher.fetch(mercury(), adapter))
        assert adapter.calls == 1

    def test_slow_adapter_times_out(self, clock, audit_logger):
        """Test a hanging adapter is bounded by the adapter timeout."""
        fetcher = make_fetcher(clock, audit_logger, adapter_timeout_seconds=0.05)
        adapter = CountingAdapter(delay=5)

        result = asyncio.run(fetcher.fetch(mercury(), adapter))
        assert adapter.calls == 1
        assert result.outcome == FetchOutcome.EMPTY
        assert result.error_type == "TimeoutError"

    def test_explicit_zero_timeout_is_honored(self, clock, audit_logger):
        """Test a timeout of 0 is not replaced by the configured default."""
        fetcher = make_fetcher(clock, audit_logger, adapter_timeout_seconds=0)
        adapter = CountingAdapter(delay=0.01)

        result = asyncio.run(fetcher.fetch(mercury(), adapter))
        assert result.outcome == FetchOutcome.EMPTY
        assert result.error_type == "TimeoutError"


class TestCacheIsolation:
    """Tests that callers cannot alter cached snapshots."""

    def test_mutating_result_does_not_change_cache_hit(self, clock, audit_logger):
        """Test edits to a returned snapshot are not served to the next caller."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(PartialSnapshot(
            cash_on_hand=Decimal("100"),
            metrics=SnapshotMetrics(runway=Decimal("12")),
        ))

        async def run():
            first = await fetcher.fetch(mercury(), adapter)
            first.snapshot.cash_on_hand = Decimal("999999")
            first.snapshot.metrics.runway = Decimal("0")
            return await fetcher.fetch(mercury(), adapter)

        second = asyncio.run(run())
        assert second.outcome == FetchOutcome.CACHED
        assert second.snapshot.cash_on_hand == Decimal("100")
        assert second.snapshot.metrics.runway == Decimal("12")

    def test_mutating_adapter_output_does_not_change_stale_fallback(self, clock, audit_logger):
        """Test the cache keeps its own copy of what the adapter returned."""
        original = PartialSnapshot(cash_on_hand=Decimal("100"))
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(
            original,
            TransientSourceError("mercury_bank", "HTTP 503", status_code=503),
        )

        async def run():
            await fetcher.fetch(mercury(), adapter)
            original.cash_on_hand = Decimal("1")
            clock.advance(301)
            return await fetcher.fetch(mercury(), adapter)

        result = asyncio.run(run())
        assert result.outcome == FetchOutcome.STALE
        assert result.snapshot.cash_on_hand == Decimal("100")


class TestCredentialValidation:
    """Tests for the pre-flight credential check."""

    def test_missing_credentials_skip_network(self, clock, audit_logger, audit_storage):
        """Test no call is attempted when required fields are missing."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter()
        source = Source(service_type="mercury_bank", integration_id="1", credentials={})

        result = asyncio.run(fetcher.fetch(source, adapter))
        assert adapter.calls == 0
        assert result.outcome == FetchOutcome.EMPTY
        assert result.reason == FetchReason.INVALID_CREDENTIALS
        assert AuditEventType.CREDENTIALS_INVALID in event_types(audit_storage)

    def test_blank_credential_is_invalid(self, clock, audit_logger):
        """Test an empty string does not count as a credential."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter()

        result = asyncio.run(fetcher.fetch(mercury(apiKey=""), adapter))
        assert adapter.calls == 0
        assert result.reason == FetchReason.INVALID_CREDENTIALS

    def test_unknown_service_type_is_invalid(self, clock, audit_logger):
        """Test sources without a known configuration never hit the network."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter()
        source = Source(service_type="mystery", integration_id="1", credentials={"apiKey": "k"})

        result = asyncio.run(fetcher.fetch(source, adapter))
        assert adapter.calls == 0
        assert result.reason == FetchReason.INVALID_CREDENTIALS


class TestRateLimitGate:
    """Tests for the local sliding-window gate."""

    CONFIGS = {
        "mercury_bank": SourceConfig(
            name="Mercury Bank",
            base_url="",
            required_credentials=("apiKey",),
            requests_per_minute=1,
        ),
    }

    def test_limited_source_serves_expired_entry(self, clock, audit_logger, audit_storage):
        """Test an exceeded window returns the cached entry even if expired."""
        cache = SnapshotCache(ttl_seconds=10, stale_retention_seconds=3600, clock=clock)
        fetcher = make_fetcher(clock, audit_logger, cache=cache, source_configs=self.CONFIGS)
        adapter = CountingAdapter()

        async def run():
            await fetcher.fetch(mercury(), adapter)
            clock.advance(20)
            return await fetcher.fetch(mercury(), adapter)

        result = asyncio.run(run())
        assert adapter.calls == 1
        assert result.outcome == FetchOutcome.STALE
        assert result.reason == FetchReason.RATE_LIMITED
        assert result.snapshot.cash_on_hand == Decimal("100")
        assert AuditEventType.RATE_LIMITED in event_types(audit_storage)

    def test_limited_source_without_cache_is_empty(self, clock, audit_logger):
        """Test the gate is per service type and yields empty when nothing is cached."""
        fetcher = make_fetcher(clock, audit_logger, source_configs=self.CONFIGS)
        adapter = CountingAdapter()

        async def run():
            await fetcher.fetch(mercury("1"), adapter)
            return await fetcher.fetch(mercury("2"), adapter)

        result = asyncio.run(run())
        assert adapter.calls == 1
        assert result.outcome == FetchOutcome.EMPTY
        assert result.reason == FetchReason.RATE_LIMITED

    def test_gate_runs_before_credential_check(self, clock, audit_logger):
        """Test a source with invalid credentials still takes a slot of the window."""
        fetcher = make_fetcher(clock, audit_logger, source_configs=self.CONFIGS)
        adapter = CountingAdapter()

        async def run():
            invalid = await fetcher.fetch(mercury("1", token="wrong-field"), adapter)
            limited = await fetcher.fetch(mercury("2"), adapter)
            return invalid, limited

        invalid, limited = asyncio.run(run())
        assert invalid.reason == FetchReason.INVALID_CREDENTIALS
        assert limited.reason == FetchReason.RATE_LIMITED
        assert adapter.calls == 0

    def test_window_slides(self, clock):
        """Test calls older than the window no longer count."""
        limiter = SlidingWindowRateLimiter(window_seconds=60, clock=clock)
        assert limiter.try_acquire("stripe", 2)
        assert limiter.try_acquire("stripe", 2)
        assert not limiter.try_acquire("stripe", 2)
        clock.advance(60)
        assert limiter.try_acquire("stripe", 2)

    def test_unlimited_source_always_allowed(self, clock):
        """Test a limit of None never blocks."""
        limiter = SlidingWindowRateLimiter(window_seconds=60, clock=clock)
        assert all(limiter.try_acquire("gusto", None) for _ in range(500))


class TestSingleFlight:
    """Tests for de-duplication of concurrent fetches."""

    def test_concurrent_fetches_share_one_call(self, clock, audit_logger):
        """Test concurrent callers for one key cause one upstream call."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(delay=0.05)

        async def run():
            return await asyncio.gather(*(fetcher.fetch(mercury(), adapter) for _ in range(5)))

        results = asyncio.run(run())
        assert adapter.calls == 1
        assert all(r.outcome == FetchOutcome.FRESH for r in results)
        assert all(r.snapshot.cash_on_hand == Decimal("100") for r in results)

    def test_different_keys_fetch_concurrently(self, clock, audit_logger):
        """Test distinct sources are not serialized behind each other."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter(delay=0.05)

        async def run():
            return await asyncio.gather(
                fetcher.fetch(mercury("1"), adapter),
                fetcher.fetch(mercury("2"), adapter),
            )

        asyncio.run(run())
        assert adapter.calls == 2


class TestInvalidationAndStats:
    """Tests for invalidate() and stats()."""

    def test_invalidate_forces_network(self, clock, audit_logger, audit_storage):
        """Test invalidating a prefix makes the next fetch go upstream."""
        fetcher = make_fetcher(clock, audit_logger)
        adapter = CountingAdapter()

        async def run():
            await fetcher.fetch(mercury(), adapter)
            removed = await fetcher.invalidate(cache_key_prefix("mercury_bank"))
            result = await fetcher.fetch(mercury(), adapter)
            return removed, result

        removed, result = asyncio.run(run())
        assert removed == 1
        assert adapter.calls == 2
        assert result.outcome == FetchOutcome.FRESH
        assert AuditEventType.CACHE_INVALIDATED in event_types(audit_storage)

    def test_invalidate_prefix_does_not_match_longer_service_names(self, clock):
        """Test 'mercury-' does not remove 'mercury_bank-' entries."""
        cache = SnapshotCache(ttl_seconds=300, stale_retention_seconds=0, clock=clock)
        cache.put("mercury_bank-1", PartialSnapshot())
        cache.put("mercury-1", PartialSnapshot())

        assert cache.invalidate(cache_key_prefix("mercury")) == 1
        assert "mercury_bank-1" in cache

    def test_stats_evicts_expired(self, clock):
        """Test stats counts before eviction and drops expired entries."""
        cache = SnapshotCache(ttl_seconds=300, stale_retention_seconds=3600, clock=clock)
        cache.put("stripe-1", PartialSnapshot())
        clock.advance(200)
        cache.put("stripe-2", PartialSnapshot())
        clock.advance(150)

        stats = cache.stats()
        assert stats.total_entries == 2
        assert stats.active_entries == 1
        assert len(cache) == 1
        assert "stripe-2" in cache

    def test_clear_by_integration(self, clock, audit_logger):
        """Test manual clear of one integration."""
        fetcher = make_fetcher(clock, audit_logger)
        fetcher.cache.put("stripe-1", PartialSnapshot())
        fetcher.cache.put("mercury_bank-1", PartialSnapshot())
        fetcher.cache.put("stripe-2", PartialSnapshot())

        removed = asyncio.run(fetcher.clear("1"))
        assert removed == 2
        assert fetcher.stats().total_entries == 1
