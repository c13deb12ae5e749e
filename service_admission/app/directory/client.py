"""
Device directory client for the Tailscale API.
"""

from typing import List, Optional, Set
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from shared.config import TAILSCALE_API_BASE_URL
from shared.errors import UpstreamDirectoryError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..models import Device, DevicesResponse


class DirectoryClient:
    """Reads an organization's device list."""

    def __init__(self, api_base_url: str = TAILSCALE_API_BASE_URL, timeout: float = 10.0,
                 metrics: Optional[MetricsCollector] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout
        self.metrics = metrics
        self.transport = transport
        self.logger = get_logger("admission.directory_client")

    def devices_url(self, organization_name: str) -> str:
        return f"{self.api_base_url}/tailnet/{quote(organization_name, safe='')}/devices"

    async def list_devices(self, token: str, organization_name: str) -> List[Device]:
        """Fetch every device record of an organization."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(
                    self.devices_url(organization_name),
                    headers={"Authorization": f"Bearer {token}"}
                )
        except httpx.HTTPError as e:
            self._record(None)
            self.logger.error("Device listing failed", organization=organization_name, error=str(e))
            raise UpstreamDirectoryError(organization_name, reason=str(e) or type(e).__name__)

        self._record(response.status_code)
        if not response.is_success:
            self.logger.warning(
                "Device listing rejected",
                organization=organization_name,
                status_code=response.status_code
            )
            raise UpstreamDirectoryError(organization_name, response.status_code, response.reason_phrase)

        try:
            return DevicesResponse.model_validate(response.json()).devices
        except (ValueError, ValidationError) as e:
            raise UpstreamDirectoryError(
                organization_name, response.status_code, f"Malformed devices response: {e}"
            )

    async def list_authorized_keys(self, token: str, organization_name: str) -> Set[str]:
        """Node keys of an organization's devices, skipping devices without one."""
        devices = await self.list_devices(token, organization_name)
        keys = {device.node_key for device in devices if device.node_key}

        self.logger.info(
            "Fetched organization devices",
            organization=organization_name,
            devices=len(devices),
            node_keys=len(keys)
        )
        return keys

    def _record(self, status_code: Optional[int]):
        if self.metrics:
            self.metrics.record_upstream_request("list_devices", status_code)
