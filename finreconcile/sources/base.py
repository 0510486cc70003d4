"""
Source Adapter Interface and Registry

DESIGN DECISION: Each vendor is one adapter exposing a single
operation, "fetch a partial snapshot for this source". Adapters are
resolved from a registry built once at startup instead of a string
switch inside the aggregation logic.

Adapters MUST NOT retry internally. Retry and fallback belong to the
CachedFetcher.
"""

from abc import ABC, abstractmethod
from typing import Iterator, Optional

from finreconcile.models.snapshot import PartialSnapshot, Source


class SourceAdapter(ABC):
    """One vendor integration."""

    service_type: str = ""

    @abstractmethod
    async def fetch_snapshot(self, source: Source) -> PartialSnapshot:
        """
        Fetch the current figures for one connected source.

        Raises:
            SourceRateLimitedError: upstream answered 429
            SourceAuthError: credentials rejected
            TransientSourceError: network failure, timeout, 5xx
            SourceResponseError: payload could not be understood
        """
        pass

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""
        return None


class AdapterRegistry:
    """Maps service keys to adapter instances."""

    def __init__(self, adapters: Optional[dict[str, SourceAdapter]] = None):
        self._adapters: dict[str, SourceAdapter] = dict(adapters or {})

    def register(self, adapter: SourceAdapter, service_type: Optional[str] = None) -> None:
        key = service_type or adapter.service_type
        if not key:
            raise ValueError("Adapter has no service_type and none was given")
        self._adapters[key] = adapter

    def get(self, service_type: str) -> Optional[SourceAdapter]:
        return self._adapters.get(service_type)

    def __contains__(self, service_type: str) -> bool:
        return service_type in self._adapters

    def __iter__(self) -> Iterator[str]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
