"""
Shared configuration management for the DERP Admission Gateway.
"""

from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


TAILSCALE_OAUTH_TOKEN_URL = "https://api.tailscale.com/api/v2/oauth/token"
TAILSCALE_API_BASE_URL = "https://api.tailscale.com/api/v2"


class OrganizationCredential(BaseModel):
    """OAuth client credentials for one managed organization (tailnet)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, str_strip_whitespace=True)

    organization_name: str = Field(..., min_length=1, alias="organizationName")
    client_id: str = Field(..., min_length=1, alias="clientId")
    client_secret: str = Field(..., min_length=1, alias="clientSecret", repr=False)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ADMISSION_",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Key-value store backing the admission cache
    kv_backend: str = Field(default="redis", pattern="^(redis|memory)$")
    redis_url: str = Field(default="redis://localhost:6379/0")
    kv_key_prefix: str = Field(default="")

    # Upstream device directory
    oauth_token_url: str = Field(default=TAILSCALE_OAUTH_TOKEN_URL)
    api_base_url: str = Field(default=TAILSCALE_API_BASE_URL)
    upstream_timeout: float = Field(default=10.0, gt=0)
    oauth_apps: List[OrganizationCredential] = Field(default_factory=list)

    # Refresh failure handling
    fallback_on_refresh_failure: bool = Field(default=False)

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4317")
    enable_console_tracing: bool = Field(default=False)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
