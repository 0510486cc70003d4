"""
Risk scoring.

Pure functions of the contradiction list, no hidden state.
"""

from decimal import Decimal
from typing import Sequence

from finreconcile.models.contradiction import (
    Contradiction,
    ContradictionAnalysis,
    ContradictionSummary,
    Severity,
)

SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 40,
    Severity.HIGH: 20,
    Severity.MEDIUM: 10,
    Severity.LOW: 5,
}
MAX_RISK_SCORE = 100


def calculate_risk_score(contradictions: Sequence[Contradiction]) -> int:
    """Sum of severity weights, capped at 100. No contradictions -> 0."""
    total = sum(SEVERITY_WEIGHTS[c.severity] for c in contradictions)
    return min(MAX_RISK_SCORE, total)


def summarize_contradictions(contradictions: Sequence[Contradiction]) -> ContradictionSummary:
    def count(severity: Severity) -> int:
        return sum(1 for c in contradictions if c.severity == severity)

    return ContradictionSummary(
        total_contradictions=len(contradictions),
        critical_count=count(Severity.CRITICAL),
        high_count=count(Severity.HIGH),
        medium_count=count(Severity.MEDIUM),
        low_count=count(Severity.LOW),
        estimated_impact=sum((c.potential_impact for c in contradictions), Decimal("0")),
    )


def build_analysis(contradictions: Sequence[Contradiction]) -> ContradictionAnalysis:
    return ContradictionAnalysis(
        contradictions=list(contradictions),
        summary=summarize_contradictions(contradictions),
        risk_score=calculate_risk_score(contradictions),
    )
