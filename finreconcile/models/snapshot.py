"""
Snapshot Models for the Reconciliation Core

These models define the schemas for financial figures flowing from
external sources into the aggregator and contradiction detector.

DESIGN DECISION: Every field of a PartialSnapshot is optional.
A missing value means "this source does not report this field",
never zero. Only the merged FinancialSnapshot fills in zeros.

Monetary amounts are Decimal to keep sums across sources exact.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


# =============================================================================
# SOURCES
# =============================================================================

class Source(BaseModel):
    """
    A connected external provider (bank, payments, accounting, ...).

    Owned by the user record. The core only ever reads it.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    service_type: str = Field(
        ...,
        min_length=1,
        description="Stable key of the provider, e.g. 'stripe'"
    )
    integration_id: str = Field(
        ...,
        min_length=1,
        description="Identifier of this particular link"
    )
    connected: bool = True
    credentials: dict[str, Any] = Field(
        default_factory=dict,
        repr=False,
        description="Opaque provider credentials"
    )
    display_name: Optional[str] = Field(
        default=None,
        description="Human-readable label used in contradiction reports"
    )

    @field_validator("integration_id", mode="before")
    @classmethod
    def coerce_integration_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def cache_key(self) -> str:
        """Key identifying this (service_type, integration_id) pair."""
        return f"{self.service_type}-{self.integration_id}"


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a transaction."""
    INCOME = "income"
    EXPENSE = "expense"


class TransactionRecord(BaseModel):
    """
    A single transaction reported by a source.

    The id is source-scoped; the aggregator makes it globally unique
    by prefixing it with the source's cache key.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    amount: Decimal = Field(
        ...,
        description="Signed amount, positive = inflow"
    )
    type: TransactionType
    date: datetime
    category: Optional[str] = None
    status: Optional[str] = None
    payment_method: Optional[str] = None

    @field_validator("date")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive datetimes are treated as UTC so all sources sort together."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


# =============================================================================
# METRICS & PAYROLL
# =============================================================================

class SnapshotMetrics(BaseModel):
    """Derived business metrics. Any of them may be unreported."""

    cashflow: Optional[Decimal] = None
    runway: Optional[Decimal] = Field(
        default=None,
        description="Months of runway"
    )
    burn_rate: Optional[Decimal] = None
    growth_rate: Optional[Decimal] = Field(
        default=None,
        description="Growth in percent"
    )
    customer_acquisition_cost: Optional[Decimal] = None
    lifetime_value: Optional[Decimal] = None


class PayrollTaxes(BaseModel):
    federal: Decimal = Decimal("0")
    state: Decimal = Decimal("0")
    local: Decimal = Decimal("0")


class PayrollInfo(BaseModel):
    """Payroll block, typically reported by a single payroll provider."""

    total_employees: int = Field(..., ge=0)
    payroll_amount: Decimal = Field(..., ge=0)
    next_payroll_date: Optional[date] = None
    taxes: PayrollTaxes = Field(default_factory=PayrollTaxes)


# =============================================================================
# SNAPSHOTS
# =============================================================================

class PartialSnapshot(BaseModel):
    """
    The result of one source fetch.

    CRITICAL: None means "not reported". Consumers must never
    read a missing field as zero unless they are summing.
    """

    source: Optional[str] = Field(
        default=None,
        description="Label of the source that produced this snapshot"
    )
    cash_on_hand: Optional[Decimal] = None
    monthly_revenue: Optional[Decimal] = None
    monthly_expenses: Optional[Decimal] = None
    outstanding_invoices: Optional[Decimal] = None
    transactions: list[TransactionRecord] = Field(default_factory=list)
    metrics: Optional[SnapshotMetrics] = None
    payroll: Optional[PayrollInfo] = None

    @property
    def is_empty(self) -> bool:
        """True when the source reported nothing at all."""
        return (
            self.cash_on_hand is None
            and self.monthly_revenue is None
            and self.monthly_expenses is None
            and self.outstanding_invoices is None
            and not self.transactions
            and self.metrics is None
            and self.payroll is None
        )


class FinancialSnapshot(BaseModel):
    """
    The merged view across every connected source.

    Recomputed on every aggregation call; never persisted by the core.
    """

    cash_on_hand: Decimal = Decimal("0")
    monthly_revenue: Decimal = Decimal("0")
    monthly_expenses: Decimal = Decimal("0")
    outstanding_invoices: Decimal = Decimal("0")
    transactions: list[TransactionRecord] = Field(default_factory=list)
    metrics: SnapshotMetrics = Field(default_factory=SnapshotMetrics)
    payroll: Optional[PayrollInfo] = None
    source_count: int = Field(
        default=0,
        ge=0,
        description="Number of sources whose snapshots were merged"
    )
    generated_at: datetime = Field(default_factory=utc_now)
