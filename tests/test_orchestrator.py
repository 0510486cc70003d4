"""
Tests for the caller-facing ReconciliationService.
"""

import asyncio
from decimal import Decimal

from finreconcile.agents import FALLBACK_MESSAGE, NO_CONTRADICTIONS_MESSAGE
from finreconcile.models import AuditEventType, FetchOutcome, PartialSnapshot, Source
from finreconcile.orchestrator import ReconciliationService, create_app_components
from finreconcile.services.aggregation import Aggregator
from finreconcile.services.contradictions import ContradictionDetector
from finreconcile.services.fetching import CachedFetcher
from finreconcile.sources import AdapterRegistry, SourceAdapter


class CountingAdapter(SourceAdapter):

    def __init__(self, service_type, cash):
        self.service_type = service_type
        self.cash = cash
        self.calls = 0

    async def fetch_snapshot(self, source):
        self.calls += 1
        return PartialSnapshot(cash_on_hand=Decimal(self.cash))


class FakeResolutionAgent:

    def __init__(self):
        self.received = None

    async def generate_plan(self, contradictions):
        self.received = list(contradictions)
        return "1. Reconcile the bank accounts"



class FailingResolutionAgent:

    async def generate_plan(self, contradictions):
        raise RuntimeError("quota exceeded")


MERCURY = Source(service_type="mercury_bank", integration_id="1", credentials={"apiKey": "k"})
BREX = Source(service_type="brex", integration_id="1", credentials={"accessToken": "t"})


def make_service(audit_logger, resolution_agent=None):
    mercury = CountingAdapter("mercury_bank", "127842.50")
    brex = CountingAdapter("brex", "92450.30")
    registry = AdapterRegistry()
    registry.register(mercury)
    registry.register(brex)

    service = ReconciliationService(
        registry,
        fetcher=CachedFetcher(audit_logger=audit_logger, retry_backoff_seconds=0),
        detector=ContradictionDetector(audit_logger=audit_logger, classifier_timeout_seconds=1),
        audit_logger=audit_logger,
        resolution_agent=resolution_agent,
    )
    return service, mercury, brex


class TestReconciliationService:
    """Tests for aggregate, detect and cache maintenance."""

    def test_analyze_end_to_end(self, audit_logger, audit_storage):
        """Test the two-bank scenario through aggregation and detection."""
        service, _, _ = make_service(audit_logger)

        report = asyncio.run(service.analyze([MERCURY, BREX], [], entity_id="entity-1"))
        assert report.aggregation.snapshot.cash_on_hand == Decimal("220292.80")
        contradictions = report.analysis.contradictions
        assert len(contradictions) == 1
        assert contradictions[0].sources == ["Mercury Bank", "Brex"]
        assert contradictions[0].potential_impact == Decimal("35392.20")
        assert report.analysis.risk_score == 20

        correlation_ids = {e.correlation_id for e in audit_storage.events}
        assert correlation_ids == {report.aggregation.correlation_id}

    def test_detect_returns_analysis(self, audit_logger):
        """Test detect() over caller-supplied snapshots."""
        service, _, _ = make_service(audit_logger)

        analysis = asyncio.run(service.detect(
            [
                PartialSnapshot(source="A", cash_on_hand=Decimal("100000")),
                PartialSnapshot(source="B", cash_on_hand=Decimal("40000")),
            ],
            [],
        ))
        assert analysis.summary.critical_count == 1
        assert analysis.risk_score == 40

    def test_cache_stats(self, audit_logger):
        """Test stats reflect the sources fetched."""
        service, _, _ = make_service(audit_logger)

        asyncio.run(service.aggregate([MERCURY, BREX]))
        stats = service.cache_stats()
        assert stats.total_entries == 2
        assert stats.active_entries == 2

    def test_source_update_invalidates_only_that_vendor(self, audit_logger):
        """Test on_source_updated forces a refetch for one service type."""
        service, mercury, brex = make_service(audit_logger)

        async def run():
            await service.aggregate([MERCURY, BREX])
            removed = await service.on_source_updated("mercury_bank")
            await service.aggregate([MERCURY, BREX])
            return removed

        removed = asyncio.run(run())
        assert removed == 1
        assert mercury.calls == 2
        assert brex.calls == 1

    def test_webhook_is_audited_and_invalidates(self, audit_logger, audit_storage):
        """Test an inbound webhook records its type and drops the cache."""
        service, mercury, _ = make_service(audit_logger)

        async def run():
            await service.aggregate([MERCURY])
            removed = await service.handle_webhook("mercury_bank", {"type": "transaction.created"})
            report = await service.analyze([MERCURY], [])
            return removed, report

        removed, report = asyncio.run(run())
        assert removed == 1
        assert [r.outcome for r in report.aggregation.fetch_results] == [FetchOutcome.FRESH]
        assert mercury.calls == 2

        webhooks = [e for e in audit_storage.events if e.event_type == AuditEventType.WEBHOOK_RECEIVED]
        assert webhooks[0].details == {"event": "transaction.created"}
        invalidations = [e for e in audit_storage.events if e.event_type == AuditEventType.CACHE_INVALIDATED]
        assert invalidations[0].correlation_id == webhooks[0].correlation_id

    def test_clear_cache(self, audit_logger):
        """Test manual cache clear."""
        service, _, _ = make_service(audit_logger)

        async def run():
            await service.aggregate([MERCURY, BREX])
            return await service.clear_cache()

        assert asyncio.run(run()) == 2
        assert service.cache_stats().total_entries == 0

    def test_shares_fetcher_with_injected_aggregator(self, audit_logger):
        """Test cache operations act on the aggregator's fetcher."""
        registry = AdapterRegistry()
        registry.register(CountingAdapter("mercury_bank", "1"))
        aggregator = Aggregator(registry, audit_logger=audit_logger)
        service = ReconciliationService(registry, aggregator=aggregator, audit_logger=audit_logger)

        asyncio.run(service.aggregate([MERCURY]))
        assert service.cache_stats().total_entries == 1
        assert aggregator.fetcher.stats().total_entries == 1


class TestResolutionPlan:
    """Tests for the optional resolution plan."""

    def test_no_contradictions(self, audit_logger):
        """Test the fixed message for an empty list."""
        service, _, _ = make_service(audit_logger, resolution_agent=FakeResolutionAgent())
        assert asyncio.run(service.generate_resolution_plan([])) == NO_CONTRADICTIONS_MESSAGE

    def test_without_agent_falls_back(self, audit_logger):
        """Test the fallback text when no LLM is configured."""
        service, _, _ = make_service(audit_logger)
        report = asyncio.run(service.analyze([MERCURY, BREX], []))
        plan = asyncio.run(service.generate_resolution_plan(report.analysis.contradictions))
        assert plan == FALLBACK_MESSAGE

    def test_agent_receives_contradictions(self, audit_logger):
        """Test the agent is called with the detected contradictions."""
        agent = FakeResolutionAgent()
        service, _, _ = make_service(audit_logger, resolution_agent=agent)
        report = asyncio.run(service.analyze([MERCURY, BREX], []))

        plan = asyncio.run(service.generate_resolution_plan(report.analysis.contradictions))
        assert plan == "1. Reconcile the bank accounts"
        assert agent.received == report.analysis.contradictions

    def test_agent_failure_falls_back_and_is_audited(self, audit_logger, audit_storage):
        """Test an LLM failure returns the fallback text and records the error."""
        service, _, _ = make_service(audit_logger, resolution_agent=FailingResolutionAgent())
        report = asyncio.run(service.analyze([MERCURY, BREX], []))

        plan = asyncio.run(service.generate_resolution_plan(report.analysis.contradictions))
        assert plan == FALLBACK_MESSAGE
        errors = [e for e in audit_storage.events if e.event_type == AuditEventType.EXTERNAL_SERVICE_ERROR]
        assert errors[0].details == {"service": "gemini"}
        assert errors[0].error_message == "quota exceeded"


class TestFactory:
    """Tests for create_app_components."""

    def test_runs_without_gemini_key(self, monkeypatch, audit_storage):
        """Test the service is built without an LLM when no key is set."""
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        registry = AdapterRegistry()
        registry.register(CountingAdapter("mercury_bank", "10"))

        service = create_app_components(audit_storage=audit_storage, registry=registry)
        snapshot = asyncio.run(service.aggregate([MERCURY]))
        assert snapshot.cash_on_hand == Decimal("10")
        assert audit_storage.events
