"""Aggregation of per-source snapshots."""

from finreconcile.services.aggregation.aggregator import AggregationResult, Aggregator
from finreconcile.services.aggregation.merge import (
    merge_metrics,
    merge_payroll,
    merge_snapshots,
    weighted_runway,
)

__all__ = [
    "AggregationResult",
    "Aggregator",
    "merge_metrics",
    "merge_payroll",
    "merge_snapshots",
    "weighted_runway",
]
