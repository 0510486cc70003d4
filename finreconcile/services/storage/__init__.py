"""
Storage Services Package

Provides the audit storage interface and an in-memory implementation.
The core itself never persists summaries or contradictions.
"""

from finreconcile.services.storage.interface import AuditStorageInterface
from finreconcile.services.storage.memory import InMemoryAuditStorage

__all__ = [
    "AuditStorageInterface",
    "InMemoryAuditStorage",
]
