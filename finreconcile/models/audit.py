"""
Audit Models for the Reconciliation Core

Every degradation and significant step is recorded as an audit event.
This provides:
1. Operator visibility into misbehaving sources
2. Debugging information when merged figures look wrong
3. A trail linking all events of one request via a correlation id

DESIGN DECISION: Audit events are append-only. We never modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finreconcile.models.snapshot import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Fetching
    CACHE_HIT = "cache_hit"
    SOURCE_FETCHED = "source_fetched"
    FETCH_RETRY = "fetch_retry"
    STALE_FALLBACK = "stale_fallback"
    EMPTY_FALLBACK = "empty_fallback"
    RATE_LIMITED = "rate_limited"
    CREDENTIALS_INVALID = "credentials_invalid"
    SOURCE_SKIPPED = "source_skipped"

    # Cache maintenance
    CACHE_INVALIDATED = "cache_invalidated"
    WEBHOOK_RECEIVED = "webhook_received"

    # Analysis
    AGGREGATION_COMPLETED = "aggregation_completed"
    CONTRADICTIONS_DETECTED = "contradictions_detected"
    CLASSIFIER_FAILED = "classifier_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what is this about?
    service_type: Optional[str] = Field(
        default=None,
        description="Source service key, e.g. 'stripe'"
    )
    integration_id: Optional[str] = None
    entity_id: Optional[str] = Field(
        default=None,
        description="Portfolio entity the analysis relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate the events of one aggregation or detection call"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "service_type": self.service_type,
            "integration_id": self.integration_id,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }

    def to_row(self) -> list[str]:
        """
        Flatten into a row for tabular sinks.

        Columns: [event_id, timestamp, event_type, severity, service_type,
        integration_id, correlation_id, description, details_json, error_type]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.service_type or "",
            self.integration_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_type or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.stale_fallback(source_key, ...)
    """

    @staticmethod
    def cache_hit(
        service_type: str,
        integration_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CACHE_HIT,
            severity=AuditSeverity.DEBUG,
            service_type=service_type,
            integration_id=integration_id,
            correlation_id=correlation_id,
            description=f"Returning cached data for {service_type}",
        )

    @staticmethod
    def source_fetched(
        service_type: str,
        integration_id: str,
        attempts: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SOURCE_FETCHED,
            service_type=service_type,
            integration_id=integration_id,
            correlation_id=correlation_id,
            description=f"Fetched fresh data for {service_type}",
            details={"attempts": attempts},
        )

    @staticmethod
    def fetch_retry(
        service_type: str,
        integration_id: str,
        attempt: int,
        wait_seconds: float,
        error_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FETCH_RETRY,
            severity=AuditSeverity.WARNING,
            service_type=service_type,
            integration_id=integration_id,
            correlation_id=correlation_id,
            description=f"{service_type} failed transiently, retrying",
            details={"attempt": attempt, "wait_seconds": wait_seconds},
            error_type=error_type,
        )

    @staticmethod
    def stale_fallback(
        service_type: str,
        integration_id: str,
        error_type: str,
        error_message: str,
        fetched_at: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STALE_FALLBACK,
            severity=AuditSeverity.WARNING,
            service_type=service_type,
            integration_id=integration_id,
            correlation_id=correlation_id,
            description=f"Returning stale cached data for {service_type}",
            details={"fetched_at": fetched_at.isoformat()},
            error_type=error_type,
            error_message=error_message,
        )

    @staticmethod
    def empty_fallback(
        service_type: str,
        integration_id: str,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EMPTY_FALLBACK,
            severity=AuditSeverity.WARNING,
            service_type=service_type,
            integration_id=integration_id,
            correlation_id=correlation_id,
            description=f"Error fetching data for {service_type}, no cached data available",
            error_type=error_type,
            error_message=error_message,
        )

    @staticmethod
    def rate_limited(
        service_type: str,
        integration_id: str,
        served_stale: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        # Expected local condition, not an error
        return AuditEvent(
            event_type=AuditEventType.RATE_LIMITED,
            severity=AuditSeverity.INFO,
            service_type=service_type,
            integration_id=integration_id,
            correlation_id=correlation_id,
            description=f"Rate limit exceeded for {service_type}, using cached data",
            details={"served_stale": served_stale},
        )

    @staticmethod
    def credentials_invalid(
        service_type: str,
        integration_id: str,
        missing_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CREDENTIALS_INVALID,
            severity=AuditSeverity.WARNING,
            service_type=service_type,
            integration_id=integration_id,
            correlation_id=correlation_id,
            description=f"Invalid credentials for {service_type}",
            details={"missing_fields": missing_fields},
            error_type="SourceAuthError",
        )

    @staticmethod
    def source_skipped(
        service_type: str,
        integration_id: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SOURCE_SKIPPED,
            severity=AuditSeverity.INFO,
            service_type=service_type,
            integration_id=integration_id,
            correlation_id=correlation_id,
            description=f"Skipped {service_type}: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def cache_invalidated(
        prefix: Optional[str],
        removed: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CACHE_INVALIDATED,
            correlation_id=correlation_id,
            description=f"Invalidated {removed} cache entries",
            details={"prefix": prefix, "removed": removed},
        )

    @staticmethod
    def webhook_received(
        service_type: str,
        event_name: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WEBHOOK_RECEIVED,
            service_type=service_type,
            correlation_id=correlation_id,
            description=f"Received webhook from {service_type}",
            details={"event": event_name},
        )

    @staticmethod
    def aggregation_completed(
        source_count: int,
        outcomes: dict[str, str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AGGREGATION_COMPLETED,
            correlation_id=correlation_id,
            description=f"Aggregated {source_count} sources",
            details={"outcomes": outcomes},
        )

    @staticmethod
    def contradictions_detected(
        total: int,
        risk_score: int,
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTRADICTIONS_DETECTED,
            severity=AuditSeverity.WARNING if total else AuditSeverity.INFO,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Detected {total} contradictions (risk score {risk_score})",
            details={"total": total, "risk_score": risk_score},
        )

    @staticmethod
    def classifier_failed(
        error_type: str,
        error_message: str,
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLASSIFIER_FAILED,
            severity=AuditSeverity.WARNING,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description="Compliance classification failed, pass skipped",
            error_type=error_type,
            error_message=error_message[:500],
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"System error: {error_type}",
            details=details or {},
            error_type=error_type,
            error_message=error_message[:500],
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"External service error: {service}",
            details={"service": service},
            error_message=error_message[:500],
        )
