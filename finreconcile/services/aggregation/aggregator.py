"""
Aggregator

Fans out to every connected source through the CachedFetcher, then
merges the results into one FinancialSnapshot.

Flow:
1. Plan: skip disconnected sources; sources without an adapter get an
   empty result and take no part in the merge
2. Fetch: all sources concurrently (latency bounded by the slowest)
3. Reduce: sequentially, in the order the sources were supplied

The reduction runs only after every fetch completed, so completion
order never leaks into the result. This matters for the payroll
last-writer-wins rule.
"""

import asyncio
from collections import Counter
from typing import Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, Field

from finreconcile.audit import AuditLogger, create_correlation_id
from finreconcile.models.audit import AuditEventBuilder
from finreconcile.models.fetch import FetchOutcome, FetchReason, FetchResult
from finreconcile.models.snapshot import FinancialSnapshot, PartialSnapshot, Source
from finreconcile.services.aggregation.merge import merge_snapshots
from finreconcile.services.fetching import CachedFetcher
from finreconcile.sources.base import AdapterRegistry, SourceAdapter
from finreconcile.sources.config import get_source_config


class AggregationResult(BaseModel):
    """Merged snapshot plus the per-source inputs it was built from."""

    snapshot: FinancialSnapshot
    source_snapshots: list[PartialSnapshot] = Field(
        default_factory=list,
        description="Labeled per-source snapshots, in supplied order"
    )
    fetch_results: list[FetchResult] = Field(
        default_factory=list,
        description="One result per connected source, in supplied order"
    )
    correlation_id: Optional[UUID] = None

    @property
    def degraded_sources(self) -> list[str]:
        return [r.cache_key for r in self.fetch_results if r.is_degraded]


class Aggregator:
    """
    Merges N partial snapshots into one consistent summary.

    A single misbehaving source never prevents the others from
    contributing, and never raises past this class.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        fetcher: Optional[CachedFetcher] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._registry = registry
        self._audit_logger = audit_logger or AuditLogger()
        self._fetcher = fetcher or CachedFetcher(audit_logger=self._audit_logger)

    @property
    def fetcher(self) -> CachedFetcher:
        return self._fetcher

    async def aggregate(self, sources: Sequence[Source]) -> FinancialSnapshot:
        """Merged snapshot across every connected source."""
        result = await self.aggregate_detailed(sources)
        return result.snapshot

    async def aggregate_detailed(
        self,
        sources: Sequence[Source],
        correlation_id: Optional[UUID] = None,
    ) -> AggregationResult:
        correlation_id = correlation_id or create_correlation_id()

        # Step 1: plan
        plan: list[tuple[Source, Optional[SourceAdapter]]] = []
        for source in sources:
            if not source.connected:
                continue
            adapter = self._registry.get(source.service_type)
            if adapter is None:
                await self._audit_logger.log(AuditEventBuilder.source_skipped(
                    service_type=source.service_type,
                    integration_id=source.integration_id,
                    reason="no adapter registered",
                    correlation_id=correlation_id,
                ))
            plan.append((source, adapter))
        fetchable = [(source, adapter) for source, adapter in plan if adapter is not None]

        # Step 2: concurrent fetch
        raw_results = iter(await asyncio.gather(
            *(self._fetcher.fetch(source, adapter, correlation_id) for source, adapter in fetchable),
            return_exceptions=True,
        ))

        # Step 3: sequential reduction in supplied order
        labels = iter(self._labels([source for source, _ in fetchable]))
        fetch_results: list[FetchResult] = []
        source_snapshots: list[PartialSnapshot] = []
        for source, adapter in plan:
            if adapter is None:
                fetch_results.append(FetchResult(
                    cache_key=source.cache_key,
                    outcome=FetchOutcome.EMPTY,
                    reason=FetchReason.NO_ADAPTER,
                ))
                continue
            label = next(labels)
            result = await self._settle(source, next(raw_results), correlation_id)
            fetch_results.append(result)
            source_snapshots.append(self._prepare(source, label, result.snapshot))

        snapshot = merge_snapshots(source_snapshots)

        await self._audit_logger.log(AuditEventBuilder.aggregation_completed(
            source_count=len(fetchable),
            outcomes={r.cache_key: r.outcome.value for r in fetch_results},
            correlation_id=correlation_id,
        ))

        return AggregationResult(
            snapshot=snapshot,
            source_snapshots=source_snapshots,
            fetch_results=fetch_results,
            correlation_id=correlation_id,
        )

    async def _settle(
        self,
        source: Source,
        raw,
        correlation_id: UUID,
    ) -> FetchResult:
        """Turn an unexpected fetcher exception into an empty result."""
        if isinstance(raw, FetchResult):
            return raw
        if isinstance(raw, asyncio.CancelledError):
            raise raw
        await self._audit_logger.log_error(
            error_type=type(raw).__name__,
            error_message=str(raw),
            details={"service_type": source.service_type, "integration_id": source.integration_id},
            correlation_id=correlation_id,
        )
        return FetchResult(
            cache_key=source.cache_key,
            outcome=FetchOutcome.EMPTY,
            reason=FetchReason.FETCH_FAILED,
            error_type=type(raw).__name__,
        )

    @staticmethod
    def _labels(sources: Sequence[Source]) -> list[str]:
        """Human-readable label per source, disambiguated by integration id."""
        base = []
        for source in sources:
            config = get_source_config(source.service_type)
            base.append(source.display_name or (config.name if config else source.service_type))
        counts = Counter(base)
        return [
            f"{label} #{source.integration_id}" if counts[label] > 1 else label
            for label, source in zip(base, sources)
        ]

    @staticmethod
    def _prepare(source: Source, label: str, snapshot: PartialSnapshot) -> PartialSnapshot:
        """Label the snapshot and make its transaction ids globally unique."""
        prefix = f"{source.cache_key}-"
        transactions = [
            t if t.id.startswith(prefix) else t.model_copy(update={"id": prefix + t.id})
            for t in snapshot.transactions
        ]
        return snapshot.model_copy(update={"source": label, "transactions": transactions})
