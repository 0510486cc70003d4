"""
Contradiction Models

A contradiction is a disagreement between two sources (or between a
source and the recurring-charge ledger) large enough to warrant
attention.

DESIGN DECISION: Contradictions are immutable and have no identity
across runs. Every analysis produces an entirely new list.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from finreconcile.models.snapshot import utc_now


class ContradictionType(str, Enum):
    FINANCIAL = "financial"
    OPERATIONAL = "operational"
    COMPLIANCE = "compliance"
    DATA = "data"


class Severity(str, Enum):
    """Qualitative bucket assigned from dollar-diff thresholds."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ChargeDetails(BaseModel):
    """A charge identified by charge automation."""
    model_config = ConfigDict(str_strip_whitespace=True)

    merchant_name: str = Field(..., min_length=1)
    amount: Decimal
    recurring: bool = False
    category: Optional[str] = None


class LabeledValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: Any
    label: str


class ConflictingValues(BaseModel):
    """Exactly two labeled values that disagree."""
    model_config = ConfigDict(frozen=True)

    source1: LabeledValue
    source2: LabeledValue


class Contradiction(BaseModel):
    """A single detected contradiction."""
    model_config = ConfigDict(frozen=True)

    id: str
    type: ContradictionType
    severity: Severity
    title: str
    description: str
    sources: list[str] = Field(..., min_length=1)
    conflicting_values: ConflictingValues
    potential_impact: Decimal = Field(
        default=Decimal("0"),
        description="Estimated impact in dollars"
    )
    recommended_action: str
    detected_at: datetime = Field(default_factory=utc_now)
    entity_id: Optional[str] = None


class CandidateContradiction(BaseModel):
    """
    A contradiction proposed by the compliance classifier.

    Accepts both snake_case and the camelCase keys LLMs tend to emit.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    type: ContradictionType = ContradictionType.COMPLIANCE
    severity: Severity
    title: str = Field(..., min_length=1)
    description: str
    sources: Optional[list[str]] = None
    potential_impact: Optional[Decimal] = None
    recommended_action: str


class ContradictionSummary(BaseModel):
    total_contradictions: int = 0
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    estimated_impact: Decimal = Decimal("0")


class ContradictionAnalysis(BaseModel):
    """Contradictions plus summary and 0-100 risk score. Never persisted."""

    contradictions: list[Contradiction] = Field(default_factory=list)
    summary: ContradictionSummary = Field(default_factory=ContradictionSummary)
    risk_score: int = Field(default=0, ge=0, le=100)
    analyzed_at: datetime = Field(default_factory=utc_now)
