"""
HTTP base for vendor adapters.

Maps HTTP outcomes onto the source error taxonomy:
- 429 -> SourceRateLimitedError (the fetcher retries these)
- 401/403 -> SourceAuthError
- 5xx, timeouts, transport errors -> TransientSourceError
- other non-2xx, undecodable bodies -> SourceResponseError
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from finreconcile.models.snapshot import Source
from finreconcile.sources.base import SourceAdapter
from finreconcile.sources.config import get_source_config
from finreconcile.sources.errors import (
    SourceAuthError,
    SourceRateLimitedError,
    SourceResponseError,
    TransientSourceError,
)


def safe_decimal(value, scale: int = 1) -> Optional[Decimal]:
    """Convert a wire value to Decimal, dividing by scale (e.g. 100 for cents)."""
    if value is None:
        return None
    try:
        return (Decimal(str(value)) / scale).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        return None


class HttpSourceAdapter(SourceAdapter):
    """
    Adapter talking JSON over HTTP.

    Subclasses provide the auth headers and the payload mapping.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
    ):
        config = get_source_config(self.service_type)
        self._base_url = base_url or (config.base_url if config else "")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _auth_headers(self, source: Source) -> dict[str, str]:
        raise NotImplementedError

    def _base_for(self, source: Source) -> str:
        return self._base_url

    async def _get_json(
        self,
        source: Source,
        path: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        url = f"{self._base_for(source)}{path}"
        headers = {"Accept": "application/json", **self._auth_headers(source)}

        try:
            response = await self._get_client().get(
                url,
                headers=headers,
                params=params,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientSourceError(self.service_type, f"Timeout calling {path}: {e}")
        except httpx.HTTPError as e:
            raise TransientSourceError(self.service_type, f"Transport error calling {path}: {e}")

        status = response.status_code
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise SourceRateLimitedError(
                self.service_type,
                f"HTTP 429 from {path}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if status in (401, 403):
            raise SourceAuthError(self.service_type, f"HTTP {status} from {path}", status_code=status)
        if status >= 500:
            raise TransientSourceError(self.service_type, f"HTTP {status} from {path}", status_code=status)
        if not response.is_success:
            raise SourceResponseError(self.service_type, f"HTTP {status} from {path}", status_code=status)

        try:
            return response.json()
        except ValueError as e:
            raise SourceResponseError(self.service_type, f"Invalid JSON from {path}: {e}")

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
