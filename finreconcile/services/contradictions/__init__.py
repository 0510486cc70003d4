"""Cross-source contradiction detection and risk scoring."""

from finreconcile.services.contradictions.detector import (
    CASH_RULE,
    EXPENSE_RULE,
    REVENUE_RULE,
    ContradictionDetector,
    DiscrepancyRule,
)
from finreconcile.services.contradictions.risk import (
    MAX_RISK_SCORE,
    SEVERITY_WEIGHTS,
    build_analysis,
    calculate_risk_score,
    summarize_contradictions,
)

__all__ = [
    "CASH_RULE",
    "EXPENSE_RULE",
    "REVENUE_RULE",
    "ContradictionDetector",
    "DiscrepancyRule",
    "MAX_RISK_SCORE",
    "SEVERITY_WEIGHTS",
    "build_analysis",
    "calculate_risk_score",
    "summarize_contradictions",
]
