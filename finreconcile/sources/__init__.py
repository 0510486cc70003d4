"""
Source Adapters Package

One adapter per vendor, resolved through an AdapterRegistry.
"""

from typing import Optional

import httpx

from finreconcile.sources.base import AdapterRegistry, SourceAdapter
from finreconcile.sources.config import (
    SERVICE_CONFIGS,
    SourceConfig,
    get_source_config,
    missing_credentials,
    validate_credentials,
)
from finreconcile.sources.errors import (
    SourceAuthError,
    SourceError,
    SourceRateLimitedError,
    SourceResponseError,
    TransientSourceError,
)
from finreconcile.sources.http import HttpSourceAdapter
from finreconcile.sources.mercury import MercuryAdapter
from finreconcile.sources.quickbooks import QuickBooksAdapter
from finreconcile.sources.stripe import StripeAdapter


def default_registry(
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30.0,
) -> AdapterRegistry:
    """Registry with every built-in HTTP adapter."""
    registry = AdapterRegistry()
    for adapter_cls in (MercuryAdapter, StripeAdapter, QuickBooksAdapter):
        registry.register(adapter_cls(client=client, timeout=timeout))
    return registry


__all__ = [
    # Interface & registry
    "AdapterRegistry",
    "SourceAdapter",
    "HttpSourceAdapter",
    "default_registry",
    # Configuration
    "SERVICE_CONFIGS",
    "SourceConfig",
    "get_source_config",
    "missing_credentials",
    "validate_credentials",
    # Errors
    "SourceAuthError",
    "SourceError",
    "SourceRateLimitedError",
    "SourceResponseError",
    "TransientSourceError",
    # Vendors
    "MercuryAdapter",
    "QuickBooksAdapter",
    "StripeAdapter",
]
