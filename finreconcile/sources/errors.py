"""
Source adapter error taxonomy.

TransientSourceError (network, 5xx) and its SourceRateLimitedError subclass
are retried by the fetcher. Everything else fails fast to the
stale-cache / empty-snapshot fallback.
"""

from typing import Optional


class SourceError(Exception):
    """Base exception for source adapter failures."""

    def __init__(self, service_type: str, message: str, status_code: Optional[int] = None):
        self.service_type = service_type
        self.status_code = status_code
        super().__init__(message)


class TransientSourceError(SourceError):
    """Network failure, timeout or 5xx from the upstream."""
    pass


class SourceRateLimitedError(TransientSourceError):
    """The upstream answered with HTTP 429."""

    def __init__(
        self,
        service_type: str,
        message: str,
        retry_after: Optional[float] = None,
    ):
        self.retry_after = retry_after
        super().__init__(service_type, message, status_code=429)


class SourceAuthError(SourceError):
    """Credentials are missing, expired or rejected."""
    pass


class SourceResponseError(SourceError):
    """The upstream answered but the payload could not be understood."""
    pass
