"""
Abstract Audit Storage Interface

DESIGN DECISION: The core never persists summaries or contradictions,
but operators need the audit trail of degraded sources somewhere.
We define an abstract interface so the sink can be:
1. An in-memory buffer (tests, single-process deployments)
2. Any external log store the hosting application provides
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from finreconcile.models.audit import AuditEvent


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one aggregation call).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_source(
        self,
        service_type: str,
        integration_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        """
        Get all events recorded for a source.

        If integration_id is None, events of every integration of
        that service type are returned.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass
