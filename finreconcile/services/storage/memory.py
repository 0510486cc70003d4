"""
In-memory audit storage.

Bounded ring buffer; the oldest events are dropped once max_events is
reached.
"""

import asyncio
from collections import deque
from typing import Optional
from uuid import UUID

from finreconcile.models.audit import AuditEvent
from finreconcile.services.storage.interface import AuditStorageInterface


class InMemoryAuditStorage(AuditStorageInterface):
    """Keeps audit events in process memory."""

    def __init__(self, max_events: int = 10_000):
        self._events: deque[AuditEvent] = deque(maxlen=max_events)
        self._lock = asyncio.Lock()

    async def append_event(self, event: AuditEvent) -> bool:
        async with self._lock:
            self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [e for e in self._events if e.correlation_id == correlation_id]

    async def get_events_by_source(
        self,
        service_type: str,
        integration_id: Optional[str] = None,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if e.service_type == service_type
            and (integration_id is None or e.integration_id == integration_id)
        ]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]

    @property
    def events(self) -> list[AuditEvent]:
        """Snapshot of all stored events in chronological order."""
        return list(self._events)
