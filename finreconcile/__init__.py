"""
FinReconcile - Source Package

Aggregates financial snapshots from many third-party sources and
flags where those sources disagree.

DESIGN PRINCIPLES:
1. Degrade, never fail: a broken source yields stale or empty data
2. Sources are compared, never silently reconciled
3. Every degradation is auditable
4. Adapters and the classifier are swappable
"""

__version__ = "1.0.0"
__author__ = "FinReconcile Team"
