"""AI Agents package."""

from finreconcile.agents.compliance import (
    ClassifierError,
    ComplianceClassifier,
    GeminiComplianceClassifier,
    parse_candidates,
)
from finreconcile.agents.resolution import (
    FALLBACK_MESSAGE,
    NO_CONTRADICTIONS_MESSAGE,
    ResolutionPlanAgent,
)

__all__ = [
    "ClassifierError",
    "ComplianceClassifier",
    "FALLBACK_MESSAGE",
    "GeminiComplianceClassifier",
    "NO_CONTRADICTIONS_MESSAGE",
    "ResolutionPlanAgent",
    "parse_candidates",
]
