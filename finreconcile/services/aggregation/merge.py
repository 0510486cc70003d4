"""
Snapshot merge rules.

Pure functions: given per-source snapshots in a fixed order, produce
one FinancialSnapshot. The only order-dependent rule is payroll
(last writer wins); every other field is order-independent.

Merge policy per field:
- cash / revenue / expenses / outstanding invoices: sum, missing = 0
- transactions: concatenation, newest first, no cross-source dedup
- cashflow: sum of reported values, else revenue - expenses
- burn rate: sum of reported values
- runway: burn-rate-weighted average over sources reporting both
  runway and burn rate, else cash / burn rate (omitted if burn is 0)
- growth rate, lifetime value: maximum reported
- customer acquisition cost: minimum reported
- payroll: last source that reports it (only one payroll provider
  is expected to be connected)
"""

from decimal import Decimal
from itertools import chain
from typing import Optional, Sequence

from finreconcile.models.snapshot import (
    FinancialSnapshot,
    PartialSnapshot,
    PayrollInfo,
    SnapshotMetrics,
)

ZERO = Decimal("0")
CENT = Decimal("0.01")


def _sum_field(snapshots: Sequence[PartialSnapshot], field: str) -> Decimal:
    return sum(
        (getattr(s, field) for s in snapshots if getattr(s, field) is not None),
        ZERO,
    )


def _reported(metrics: Sequence[SnapshotMetrics], field: str) -> list[Decimal]:
    return [getattr(m, field) for m in metrics if getattr(m, field) is not None]


def weighted_runway(metrics: Sequence[SnapshotMetrics]) -> Optional[Decimal]:
    """
    Runway averaged over sources reporting both runway and burn rate,
    each weighted by its share of their combined burn rate.
    """
    pairs = [
        (m.runway, m.burn_rate)
        for m in metrics
        if m.runway is not None and m.burn_rate is not None and m.burn_rate > 0
    ]
    total_burn = sum((burn for _, burn in pairs), ZERO)
    if not pairs or total_burn <= 0:
        return None
    return (sum((runway * burn for runway, burn in pairs), ZERO) / total_burn).quantize(CENT)


def merge_metrics(
    snapshots: Sequence[PartialSnapshot],
    cash_on_hand: Decimal,
    monthly_revenue: Decimal,
    monthly_expenses: Decimal,
) -> SnapshotMetrics:
    reported = [s.metrics for s in snapshots if s.metrics is not None]

    cashflows = _reported(reported, "cashflow")
    cashflow = sum(cashflows, ZERO) if cashflows else monthly_revenue - monthly_expenses

    burn_rates = _reported(reported, "burn_rate")
    burn_rate = sum(burn_rates, ZERO) if burn_rates else None

    runway = weighted_runway(reported)
    if runway is None and burn_rate is not None and burn_rate > 0:
        runway = (cash_on_hand / burn_rate).quantize(CENT)
    # burn rate of zero or unknown: runway stays omitted

    growth_rates = _reported(reported, "growth_rate")
    lifetime_values = _reported(reported, "lifetime_value")
    acquisition_costs = _reported(reported, "customer_acquisition_cost")

    return SnapshotMetrics(
        cashflow=cashflow,
        runway=runway,
        burn_rate=burn_rate,
        growth_rate=max(growth_rates) if growth_rates else None,
        customer_acquisition_cost=min(acquisition_costs) if acquisition_costs else None,
        lifetime_value=max(lifetime_values) if lifetime_values else None,
    )


def merge_payroll(snapshots: Sequence[PartialSnapshot]) -> Optional[PayrollInfo]:
    """Last writer wins, in the order the snapshots are given."""
    payroll = None
    for snapshot in snapshots:
        if snapshot.payroll is not None:
            payroll = snapshot.payroll
    return payroll


def merge_snapshots(snapshots: Sequence[PartialSnapshot]) -> FinancialSnapshot:
    """Merge per-source snapshots into one FinancialSnapshot."""
    cash_on_hand = _sum_field(snapshots, "cash_on_hand")
    monthly_revenue = _sum_field(snapshots, "monthly_revenue")
    monthly_expenses = _sum_field(snapshots, "monthly_expenses")
    outstanding_invoices = _sum_field(snapshots, "outstanding_invoices")

    # sorted() is stable, so ties keep source order
    transactions = sorted(
        chain.from_iterable(s.transactions for s in snapshots),
        key=lambda t: t.date,
        reverse=True,
    )

    return FinancialSnapshot(
        cash_on_hand=cash_on_hand,
        monthly_revenue=monthly_revenue,
        monthly_expenses=monthly_expenses,
        outstanding_invoices=outstanding_invoices,
        transactions=transactions,
        metrics=merge_metrics(snapshots, cash_on_hand, monthly_revenue, monthly_expenses),
        payroll=merge_payroll(snapshots),
        source_count=len(snapshots),
    )
