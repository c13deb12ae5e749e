"""
Admission service for DERP relay client admission.

A DERP relay configured with ``--verify-client-url`` POSTs each connecting
node's public key here. The node is admitted when its key belongs to a
device in one of the configured organizations.
"""

from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import InputError
from shared.logging import set_source

from .cache import AdmissionCacheStore, create_backend
from .directory.client import DirectoryClient
from .models import AdmissionRequest, AdmissionVerdict
from .oauth.client import OAuthClient
from .refresh.orchestrator import RefreshOrchestrator

SERVICE_NAME = "admission"
SERVICE_PORT = 8020

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


async def parse_admission_request(request: Request) -> AdmissionRequest:
    """Validate method and body of an admit-client request."""
    if request.method.upper() != "POST":
        raise InputError("Method Not Allowed", status_code=405)

    try:
        return AdmissionRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise InputError("Bad Request")


class AdmissionService(BaseService):
    """Admission service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        cache_store: Optional[AdmissionCacheStore] = None,
        oauth_client: Optional[OAuthClient] = None,
        directory_client: Optional[DirectoryClient] = None,
    ):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config or get_config(SERVICE_NAME, SERVICE_PORT))

        if not self.config.oauth_apps:
            self.logger.warning("No organizations configured, every node will be denied")

        self.cache_store = cache_store or AdmissionCacheStore(
            create_backend(self.config.kv_backend, self.config.redis_url),
            key_prefix=self.config.kv_key_prefix
        )
        self.oauth_client = oauth_client or OAuthClient(
            self.config.oauth_token_url,
            timeout=self.config.upstream_timeout,
            metrics=self.metrics
        )
        self.directory_client = directory_client or DirectoryClient(
            self.config.api_base_url,
            timeout=self.config.upstream_timeout,
            metrics=self.metrics
        )
        self.orchestrator = RefreshOrchestrator(
            self.config.oauth_apps,
            self.oauth_client,
            self.directory_client,
            self.cache_store,
            metrics=self.metrics,
            fallback_on_failure=self.config.fallback_on_refresh_failure
        )

        self._setup_admission_routes()

    def _setup_admission_routes(self):
        """Set up admission-specific routes."""

        @self.app.api_route("/", methods=ALL_METHODS)
        async def admit(request: Request):
            """Decide whether a node may connect to the relay."""
            try:
                admission = await parse_admission_request(request)
            except InputError as e:
                # Relays expect a bare status line, not the JSON error envelope
                return PlainTextResponse(e.message, status_code=e.status_code)

            set_source(admission.source)
            keys = await self.orchestrator.ensure_fresh()

            verdict = AdmissionVerdict(allow=admission.node_public in keys)
            self.metrics.record_decision(verdict.allow)
            self.logger.info(
                "Admission decided",
                node_public=admission.node_public,
                allow=verdict.allow
            )
            return JSONResponse(verdict.model_dump(by_alias=True))

    async def _check_dependencies(self):
        """Check admission service dependencies."""
        try:
            healthy = await self.cache_store.health_check()
        except Exception:
            healthy = False
        return {"kv_store": "ok" if healthy else "error"}

    async def start(self):
        """Start admission service components."""
        await self.cache_store.backend.start()
        self.logger.info(
            "Admission service started",
            organizations=[c.organization_name for c in self.config.oauth_apps],
            kv_backend=self.config.kv_backend
        )

    async def stop(self):
        """Stop admission service components."""
        await self.cache_store.backend.stop()
        self.logger.info("Admission service stopped")


def create_app():
    """Create admission service application."""
    service = AdmissionService()
    return service.app


def main():
    """Run the admission service under uvicorn."""
    AdmissionService().run()


if __name__ == "__main__":
    main()
