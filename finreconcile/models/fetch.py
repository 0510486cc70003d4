"""
Fetch Result Models

DESIGN DECISION: Expected degradations (rate limiting, missing
credentials, upstream failure) are reported as a typed result instead
of exceptions. Callers can always use the snapshot; the outcome tells
them how much to trust it.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from finreconcile.models.snapshot import PartialSnapshot


class FetchOutcome(str, Enum):
    """How a snapshot was obtained."""
    FRESH = "fresh"      # Fetched from the upstream just now
    CACHED = "cached"    # Served from a live cache entry
    STALE = "stale"      # Served from an expired cache entry
    EMPTY = "empty"      # Nothing available, empty snapshot


class FetchReason(str, Enum):
    """Why a fetch did not produce fresh data."""
    RATE_LIMITED = "rate_limited"
    INVALID_CREDENTIALS = "invalid_credentials"
    FETCH_FAILED = "fetch_failed"
    NO_ADAPTER = "no_adapter"


class FetchResult(BaseModel):
    """Outcome of one CachedFetcher.fetch call."""
    model_config = ConfigDict(frozen=True)

    cache_key: str
    outcome: FetchOutcome
    snapshot: PartialSnapshot = Field(default_factory=PartialSnapshot)
    reason: Optional[FetchReason] = None
    error_type: Optional[str] = Field(
        default=None,
        description="Exception class name when the upstream call failed"
    )
    fetched_at: Optional[datetime] = Field(
        default=None,
        description="When the served data was originally fetched"
    )

    @property
    def is_degraded(self) -> bool:
        return self.outcome in (FetchOutcome.STALE, FetchOutcome.EMPTY)
