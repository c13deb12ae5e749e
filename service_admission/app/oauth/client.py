"""
OAuth client-credentials exchange against the Tailscale API.
"""

from typing import Optional

import httpx
from pydantic import ValidationError

from shared.config import OrganizationCredential, TAILSCALE_OAUTH_TOKEN_URL
from shared.errors import UpstreamAuthError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..models import OAuthToken

OAUTH_SCOPE = "devices:core:read"


class OAuthClient:
    """Exchanges an organization's client credentials for a bearer token."""

    def __init__(self, token_url: str = TAILSCALE_OAUTH_TOKEN_URL, timeout: float = 10.0,
                 metrics: Optional[MetricsCollector] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token_url = token_url
        self.timeout = timeout
        self.metrics = metrics
        self.transport = transport
        self.logger = get_logger("admission.oauth_client")

    async def exchange(self, credential: OrganizationCredential) -> OAuthToken:
        """Run a client-credentials grant for one organization.

        The token is returned to the caller and never stored.
        """
        organization = credential.organization_name
        form = {
            "client_id": credential.client_id,
            "client_secret": credential.client_secret,
            "scope": OAUTH_SCOPE,
            "grant_type": "client_credentials",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.token_url, data=form)
        except httpx.HTTPError as e:
            self._record(None)
            self.logger.error("OAuth token request failed", organization=organization, error=str(e))
            raise UpstreamAuthError(organization, reason=str(e) or type(e).__name__)

        self._record(response.status_code)
        if not response.is_success:
            self.logger.warning(
                "OAuth token request rejected",
                organization=organization,
                status_code=response.status_code
            )
            raise UpstreamAuthError(organization, response.status_code, response.reason_phrase)

        try:
            token = OAuthToken.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise UpstreamAuthError(organization, response.status_code, f"Malformed token response: {e}")

        self.logger.debug("OAuth token issued", organization=organization, expires_in=token.expires_in)
        return token

    def _record(self, status_code: Optional[int]):
        if self.metrics:
            self.metrics.record_upstream_request("oauth_token", status_code)
