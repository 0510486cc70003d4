"""
Contradiction Detector

Four independent passes, results concatenated:
1. Cash on hand, pairwise between sources
2. Monthly revenue, pairwise between sources
3. Monthly expenses of each source vs the recurring-charge total
4. Compliance, delegated to the external classifier

DESIGN DECISION: A discrepancy is flagged only when the absolute
difference exceeds BOTH the relative tolerance (a share of the larger
value) AND the absolute floor. Small accounts do not trip on trivial
dollar gaps and huge accounts do not trip on trivial relative gaps.

Pairs are unordered (i < j): a snapshot is never compared to itself
and each pair is compared at most once. Sources that did not report a
field take no part in that field's comparisons.
"""

import asyncio
from decimal import Decimal
from itertools import combinations
from typing import Any, Callable, Optional, Sequence
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict

from finreconcile.agents.compliance import ComplianceClassifier
from finreconcile.audit import AuditLogger, create_correlation_id
from finreconcile.config import get_settings
from finreconcile.models.audit import AuditEventBuilder
from finreconcile.models.contradiction import (
    CandidateContradiction,
    ChargeDetails,
    ConflictingValues,
    Contradiction,
    ContradictionAnalysis,
    ContradictionType,
    LabeledValue,
    Severity,
)
from finreconcile.models.snapshot import PartialSnapshot, utc_now
from finreconcile.services.contradictions.risk import build_analysis

AI_ANALYSIS_SOURCE = "AI Analysis"
CHARGE_AUTOMATION_SOURCE = "Charge Automation"


class DiscrepancyRule(BaseModel):
    """Dual threshold, severity buckets and impact weighting for one field."""
    model_config = ConfigDict(frozen=True)

    relative_tolerance: Decimal
    absolute_floor: Decimal
    critical_above: Decimal
    high_above: Decimal
    impact_factor: Decimal

    def is_significant(self, a: Decimal, b: Decimal) -> bool:
        diff = abs(a - b)
        return diff > max(a, b) * self.relative_tolerance and diff > self.absolute_floor

    def severity_for(self, diff: Decimal) -> Severity:
        if diff > self.critical_above:
            return Severity.CRITICAL
        if diff > self.high_above:
            return Severity.HIGH
        return Severity.MEDIUM

    def impact_for(self, diff: Decimal) -> Decimal:
        return diff * self.impact_factor


CASH_RULE = DiscrepancyRule(
    relative_tolerance=Decimal("0.05"),
    absolute_floor=Decimal("1000"),
    critical_above=Decimal("50000"),
    high_above=Decimal("10000"),
    impact_factor=Decimal("1"),
)
REVENUE_RULE = DiscrepancyRule(
    relative_tolerance=Decimal("0.10"),
    absolute_floor=Decimal("5000"),
    critical_above=Decimal("100000"),
    high_above=Decimal("25000"),
    # Revenue gaps are less directly actionable than cash gaps
    impact_factor=Decimal("0.3"),
)
EXPENSE_RULE = DiscrepancyRule(
    relative_tolerance=Decimal("0.15"),
    absolute_floor=Decimal("5000"),
    critical_above=Decimal("50000"),
    high_above=Decimal("15000"),
    impact_factor=Decimal("0.2"),
)


def source_label(snapshot: PartialSnapshot, index: int) -> str:
    return snapshot.source or f"Source {index + 1}"


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


class ContradictionDetector:
    """
    Finds disagreements between sources.

    Never raises: a failing pass contributes zero contradictions.
    """

    def __init__(
        self,
        classifier: Optional[ComplianceClassifier] = None,
        audit_logger: Optional[AuditLogger] = None,
        classifier_timeout_seconds: Optional[float] = None,
    ):
        self._classifier = classifier
        self._audit_logger = audit_logger or AuditLogger()
        self._classifier_timeout = (
            get_settings().app.classifier_timeout_seconds
            if classifier_timeout_seconds is None
            else classifier_timeout_seconds
        )

    async def detect(
        self,
        snapshots: Sequence[PartialSnapshot],
        charges: Sequence[ChargeDetails],
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[Contradiction]:
        """Run all four passes and concatenate their results."""
        correlation_id = correlation_id or create_correlation_id()
        contradictions: list[Contradiction] = []

        contradictions.extend(await self._run_pass(
            "cash", lambda: self.detect_cash_discrepancies(snapshots, entity_id), correlation_id
        ))
        contradictions.extend(await self._run_pass(
            "revenue", lambda: self.detect_revenue_discrepancies(snapshots, entity_id), correlation_id
        ))
        contradictions.extend(await self._run_pass(
            "expense", lambda: self.detect_expense_mismatches(snapshots, charges, entity_id), correlation_id
        ))
        contradictions.extend(await self._compliance_pass(snapshots, charges, entity_id, correlation_id))

        return contradictions

    async def analyze(
        self,
        snapshots: Sequence[PartialSnapshot],
        charges: Sequence[ChargeDetails],
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ContradictionAnalysis:
        """Contradictions plus summary and risk score."""
        correlation_id = correlation_id or create_correlation_id()
        contradictions = await self.detect(snapshots, charges, entity_id, correlation_id)
        analysis = build_analysis(contradictions)

        await self._audit_logger.log(AuditEventBuilder.contradictions_detected(
            total=analysis.summary.total_contradictions,
            risk_score=analysis.risk_score,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))
        return analysis

    async def _run_pass(
        self,
        name: str,
        run: Callable[[], list[Contradiction]],
        correlation_id: UUID,
    ) -> list[Contradiction]:
        try:
            return run()
        except Exception as e:
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"pass": name},
                correlation_id=correlation_id,
            )
            return []

    # -------------------------------------------------------------------------
    # Pass 1 & 2: pairwise source comparisons
    # -------------------------------------------------------------------------

    def detect_cash_discrepancies(
        self,
        snapshots: Sequence[PartialSnapshot],
        entity_id: Optional[str] = None,
    ) -> list[Contradiction]:
        return self._pairwise(
            snapshots,
            field="cash_on_hand",
            rule=CASH_RULE,
            id_prefix="cash-contradiction",
            title="Cash on Hand Discrepancy",
            describe=lambda a, b: (
                f"Significant difference in reported cash on hand between {a} and {b}"
            ),
            recommended_action="Reconcile cash balances and verify bank statements",
            entity_id=entity_id,
        )

    def detect_revenue_discrepancies(
        self,
        snapshots: Sequence[PartialSnapshot],
        entity_id: Optional[str] = None,
    ) -> list[Contradiction]:
        return self._pairwise(
            snapshots,
            field="monthly_revenue",
            rule=REVENUE_RULE,
            id_prefix="revenue-contradiction",
            title="Monthly Revenue Discrepancy",
            describe=lambda a, b: f"Revenue figures don't match between {a} and {b}",
            recommended_action="Verify revenue recognition and accounting methods",
            entity_id=entity_id,
        )

    def _pairwise(
        self,
        snapshots: Sequence[PartialSnapshot],
        field: str,
        rule: DiscrepancyRule,
        id_prefix: str,
        title: str,
        describe: Callable[[str, str], str],
        recommended_action: str,
        entity_id: Optional[str],
    ) -> list[Contradiction]:
        reported = [
            (index, source_label(s, index), getattr(s, field))
            for index, s in enumerate(snapshots)
            if getattr(s, field) is not None
        ]

        contradictions = []
        for (i, label_a, a), (j, label_b, b) in combinations(reported, 2):
            if not rule.is_significant(a, b):
                continue
            diff = abs(a - b)
            contradictions.append(Contradiction(
                id=_new_id(f"{id_prefix}-{i}-{j}"),
                type=ContradictionType.FINANCIAL,
                severity=rule.severity_for(diff),
                title=title,
                description=describe(label_a, label_b),
                sources=[label_a, label_b],
                conflicting_values=ConflictingValues(
                    source1=LabeledValue(value=a, label=label_a),
                    source2=LabeledValue(value=b, label=label_b),
                ),
                potential_impact=rule.impact_for(diff),
                recommended_action=recommended_action,
                entity_id=entity_id,
            ))
        return contradictions

    # -------------------------------------------------------------------------
    # Pass 3: expenses vs recurring charges
    # -------------------------------------------------------------------------

    def detect_expense_mismatches(
        self,
        snapshots: Sequence[PartialSnapshot],
        charges: Sequence[ChargeDetails],
        entity_id: Optional[str] = None,
    ) -> list[Contradiction]:
        recurring_total = sum(
            (charge.amount for charge in charges if charge.recurring),
            Decimal("0"),
        )

        contradictions = []
        for index, snapshot in enumerate(snapshots):
            reported = snapshot.monthly_expenses
            if reported is None or not EXPENSE_RULE.is_significant(reported, recurring_total):
                continue
            diff = abs(reported - recurring_total)
            contradictions.append(Contradiction(
                id=_new_id(f"expense-contradiction-{index}"),
                type=ContradictionType.OPERATIONAL,
                severity=EXPENSE_RULE.severity_for(diff),
                title="Expense vs Recurring Charges Mismatch",
                description="Reported monthly expenses don't align with identified recurring charges",
                sources=[source_label(snapshot, index), CHARGE_AUTOMATION_SOURCE],
                conflicting_values=ConflictingValues(
                    source1=LabeledValue(value=reported, label="Reported Expenses"),
                    source2=LabeledValue(value=recurring_total, label="Recurring Charges"),
                ),
                potential_impact=EXPENSE_RULE.impact_for(diff),
                recommended_action="Review expense categorization and recurring charge tracking",
                entity_id=entity_id,
            ))
        return contradictions

    # -------------------------------------------------------------------------
    # Pass 4: compliance (external classifier)
    # -------------------------------------------------------------------------

    async def _compliance_pass(
        self,
        snapshots: Sequence[PartialSnapshot],
        charges: Sequence[ChargeDetails],
        entity_id: Optional[str],
        correlation_id: UUID,
    ) -> list[Contradiction]:
        if self._classifier is None:
            return []

        context: dict[str, Any] = {
            "entity_id": entity_id,
            "recurring_charges_total": str(sum(
                (c.amount for c in charges if c.recurring), Decimal("0")
            )),
        }

        try:
            raw = await asyncio.wait_for(
                self._classifier.classify(snapshots, context),
                timeout=self._classifier_timeout,
            )
            candidates = [
                c if isinstance(c, CandidateContradiction) else CandidateContradiction.model_validate(c)
                for c in raw
            ]
        except Exception as e:
            await self._audit_logger.log(AuditEventBuilder.classifier_failed(
                error_type=type(e).__name__,
                error_message=str(e),
                entity_id=entity_id,
                correlation_id=correlation_id,
            ))
            return []

        detected_at = utc_now()
        return [
            Contradiction(
                id=_new_id(f"compliance-contradiction-{index}"),
                type=candidate.type,
                severity=candidate.severity,
                title=candidate.title,
                description=candidate.description,
                sources=candidate.sources or [AI_ANALYSIS_SOURCE],
                conflicting_values=ConflictingValues(
                    source1=LabeledValue(value="See description", label="Analysis"),
                    source2=LabeledValue(value="See description", label="Expected"),
                ),
                potential_impact=candidate.potential_impact or Decimal("0"),
                recommended_action=candidate.recommended_action,
                detected_at=detected_at,
                entity_id=entity_id,
            )
            for index, candidate in enumerate(candidates)
        ]
