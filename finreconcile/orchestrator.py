"""
Main Orchestrator for FinReconcile

This module ties together all the components and defines the
caller-facing flows:
1. Aggregate (sources → cached fetch → merge)
2. Detect (snapshots + charges → contradictions → risk score)
3. Invalidate (webhook / manual refresh → cache prefix eviction)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Degraded sources never abort a call, they are reported
- The classifier is optional, detection works without it
- Every step is audited under one correlation id

This is the "glue" that ensures the system works correctly
even when individual sources or the classifier misbehave.
"""

from typing import Any, Optional, Sequence
from uuid import UUID

import structlog
from pydantic import BaseModel

from finreconcile.agents import (
    FALLBACK_MESSAGE,
    NO_CONTRADICTIONS_MESSAGE,
    ComplianceClassifier,
    GeminiComplianceClassifier,
    ResolutionPlanAgent,
)
from finreconcile.audit import AuditLogger, configure_logging, create_correlation_id
from finreconcile.config import get_settings
from finreconcile.models.audit import AuditEventBuilder
from finreconcile.models.contradiction import (
    ChargeDetails,
    Contradiction,
    ContradictionAnalysis,
)
from finreconcile.models.snapshot import FinancialSnapshot, PartialSnapshot, Source
from finreconcile.services.aggregation import AggregationResult, Aggregator
from finreconcile.services.contradictions import ContradictionDetector
from finreconcile.services.fetching import CachedFetcher, CacheStats, cache_key_prefix
from finreconcile.services.storage import AuditStorageInterface
from finreconcile.sources import AdapterRegistry, default_registry

logger = structlog.get_logger(__name__)


class ReconciliationReport(BaseModel):
    """Aggregation and contradiction analysis over the same fetch."""

    aggregation: AggregationResult
    analysis: ContradictionAnalysis


class ReconciliationService:
    """
    Caller-facing API.

    Flow for a dashboard refresh:
    1. aggregate() → merged FinancialSnapshot
    2. detect() over the per-source snapshots → ContradictionAnalysis
    3. on_source_updated() when a vendor reports a change
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        fetcher: Optional[CachedFetcher] = None,
        aggregator: Optional[Aggregator] = None,
        detector: Optional[ContradictionDetector] = None,
        audit_logger: Optional[AuditLogger] = None,
        resolution_agent: Optional[ResolutionPlanAgent] = None,
    ):
        self._audit_logger = audit_logger or AuditLogger()
        if aggregator is None:
            aggregator = Aggregator(
                registry,
                fetcher=fetcher,
                audit_logger=self._audit_logger,
            )
        self._aggregator = aggregator
        self._fetcher = aggregator.fetcher
        self._detector = detector or ContradictionDetector(audit_logger=self._audit_logger)
        self._resolution_agent = resolution_agent

    async def aggregate(self, sources: Sequence[Source]) -> FinancialSnapshot:
        return await self._aggregator.aggregate(sources)

    async def detect(
        self,
        snapshots: Sequence[PartialSnapshot],
        charges: Sequence[ChargeDetails],
        entity_id: Optional[str] = None,
    ) -> ContradictionAnalysis:
        return await self._detector.analyze(snapshots, charges, entity_id)

    async def analyze(
        self,
        sources: Sequence[Source],
        charges: Sequence[ChargeDetails],
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationReport:
        """
        Aggregate, then detect over the labeled per-source snapshots.

        Both steps share one fetch, so the detector sees exactly what
        the merged snapshot was built from.
        """
        correlation_id = correlation_id or create_correlation_id()

        aggregation = await self._aggregator.aggregate_detailed(sources, correlation_id)
        analysis = await self._detector.analyze(
            aggregation.source_snapshots,
            charges,
            entity_id=entity_id,
            correlation_id=correlation_id,
        )
        return ReconciliationReport(aggregation=aggregation, analysis=analysis)

    def cache_stats(self) -> CacheStats:
        return self._fetcher.stats()

    async def on_source_updated(
        self,
        service_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """Drop every cached snapshot of this service type. Returns the count removed."""
        return await self._fetcher.invalidate(
            cache_key_prefix(service_type),
            correlation_id=correlation_id,
        )

    async def handle_webhook(self, service_type: str, payload: dict[str, Any]) -> int:
        """Record an inbound vendor webhook and invalidate that vendor's cache."""
        correlation_id = create_correlation_id()
        event_name = payload.get("type") if isinstance(payload, dict) else None

        await self._audit_logger.log(AuditEventBuilder.webhook_received(
            service_type=service_type,
            event_name=event_name,
            correlation_id=correlation_id,
        ))
        return await self.on_source_updated(service_type, correlation_id=correlation_id)

    async def clear_cache(self, integration_id: Optional[str] = None) -> int:
        return await self._fetcher.clear(integration_id)

    async def generate_resolution_plan(self, contradictions: Sequence[Contradiction]) -> str:
        if not contradictions:
            return NO_CONTRADICTIONS_MESSAGE
        if self._resolution_agent is None:
            return FALLBACK_MESSAGE
        try:
            return await self._resolution_agent.generate_plan(contradictions)
        except Exception as e:
            await self._audit_logger.log_external_service_error(
                service="gemini",
                error_message=str(e),
            )
            return FALLBACK_MESSAGE


def create_app_components(
    audit_storage: Optional[AuditStorageInterface] = None,
    registry: Optional[AdapterRegistry] = None,
) -> ReconciliationService:
    """
    Factory function to create all application components.

    Args:
        audit_storage: Optional sink for audit events.
                      If None, events are only logged locally.
        registry: Adapter registry. Defaults to the built-in
                 HTTP adapters.

    The Gemini-backed classifier and resolution agent are optional:
    without a configured key, detection runs the three structural
    passes only.
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)

    audit_logger = AuditLogger(audit_storage)
    if registry is None:
        registry = default_registry(timeout=settings.fetching.adapter_timeout_seconds)

    classifier: Optional[ComplianceClassifier] = None
    resolution_agent: Optional[ResolutionPlanAgent] = None
    try:
        classifier = GeminiComplianceClassifier()
        resolution_agent = ResolutionPlanAgent()
    except Exception as e:
        # Gemini not configured - continue without it
        logger.warning("gemini_not_configured", error=str(e))
        classifier = None
        resolution_agent = None

    fetcher = CachedFetcher(audit_logger=audit_logger)
    return ReconciliationService(
        registry,
        fetcher=fetcher,
        detector=ContradictionDetector(
            classifier=classifier,
            audit_logger=audit_logger,
        ),
        audit_logger=audit_logger,
        resolution_agent=resolution_agent,
    )
