"""
Data Models Package

This package contains all Pydantic models used by the reconciliation core.
All data flowing through the system must conform to these schemas.
"""

from finreconcile.models.snapshot import (
    FinancialSnapshot,
    PartialSnapshot,
    PayrollInfo,
    PayrollTaxes,
    SnapshotMetrics,
    Source,
    TransactionRecord,
    TransactionType,
)
from finreconcile.models.fetch import (
    FetchOutcome,
    FetchReason,
    FetchResult,
)
from finreconcile.models.contradiction import (
    CandidateContradiction,
    ChargeDetails,
    ConflictingValues,
    Contradiction,
    ContradictionAnalysis,
    ContradictionSummary,
    ContradictionType,
    LabeledValue,
    Severity,
)
from finreconcile.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Snapshot models
    "FinancialSnapshot",
    "PartialSnapshot",
    "PayrollInfo",
    "PayrollTaxes",
    "SnapshotMetrics",
    "Source",
    "TransactionRecord",
    "TransactionType",
    # Fetch models
    "FetchOutcome",
    "FetchReason",
    "FetchResult",
    # Contradiction models
    "CandidateContradiction",
    "ChargeDetails",
    "ConflictingValues",
    "Contradiction",
    "ContradictionAnalysis",
    "ContradictionSummary",
    "ContradictionType",
    "LabeledValue",
    "Severity",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
