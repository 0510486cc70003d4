"""
Per-service configuration: display names, endpoints, required
credential fields and local rate limits.
"""

from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class SourceConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    base_url: str
    required_credentials: tuple[str, ...]
    requests_per_minute: Optional[int] = Field(
        default=None,
        gt=0,
        description="Local gate; None means the source is not rate limited"
    )


SERVICE_CONFIGS: dict[str, SourceConfig] = {
    "mercury_bank": SourceConfig(
        name="Mercury Bank",
        base_url="https://api.mercury.com/api/v1",
        required_credentials=("apiKey",),
    ),
    "stripe": SourceConfig(
        name="Stripe",
        base_url="https://api.stripe.com/v1",
        required_credentials=("secretKey",),
        requests_per_minute=100,
    ),
    "quickbooks": SourceConfig(
        name="QuickBooks",
        base_url="https://sandbox-quickbooks.api.intuit.com/v3",
        required_credentials=("accessToken", "companyId"),
        requests_per_minute=100,
    ),
    "xero": SourceConfig(
        name="Xero",
        base_url="https://api.xero.com/api.xro/2.0",
        required_credentials=("accessToken", "tenantId"),
    ),
    "brex": SourceConfig(
        name="Brex",
        base_url="https://platform.brexapis.com",
        required_credentials=("accessToken",),
    ),
    "plaid": SourceConfig(
        name="Plaid",
        base_url="https://production.plaid.com",
        required_credentials=("clientId", "clientSecret", "accessToken"),
    ),
    "gusto": SourceConfig(
        name="Gusto",
        base_url="https://api.gusto.com/v1",
        required_credentials=("accessToken",),
    ),
    "wavapps": SourceConfig(
        name="WavApps",
        base_url="https://gql.waveapps.com",
        required_credentials=("apiKey",),
    ),
    "doorloop": SourceConfig(
        name="DoorLoop",
        base_url="https://app.doorloop.com/api",
        required_credentials=("apiKey",),
    ),
}


def get_source_config(service_type: str) -> Optional[SourceConfig]:
    return SERVICE_CONFIGS.get(service_type)


def missing_credentials(
    service_type: str,
    credentials: Mapping[str, Any],
    configs: Optional[Mapping[str, SourceConfig]] = None,
) -> Optional[list[str]]:
    """
    Return the required credential fields that are absent or not a
    non-empty string, or None if the service type is unknown.
    """
    config = (configs if configs is not None else SERVICE_CONFIGS).get(service_type)
    if config is None:
        return None
    return [
        field for field in config.required_credentials
        if not (isinstance(credentials.get(field), str) and credentials.get(field))
    ]


def validate_credentials(
    service_type: str,
    credentials: Mapping[str, Any],
    configs: Optional[Mapping[str, SourceConfig]] = None,
) -> bool:
    """True when every field the vendor requires is present."""
    missing = missing_credentials(service_type, credentials, configs)
    return missing is not None and not missing
