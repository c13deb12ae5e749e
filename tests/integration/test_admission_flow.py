"""
Integration tests for the admission flow against the mock Tailscale API.
"""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from mocks.tailscale.server import MockTailscaleServer
from service_admission.app.cache import AdmissionCacheStore, InMemoryKeyValueStore, format_timestamp
from service_admission.app.directory.client import DirectoryClient
from service_admission.app.main import AdmissionService
from service_admission.app.oauth.client import OAuthClient
from shared.config import get_config

MOCK_BASE = "http://tailscale.test/api/v2"


class TestAdmissionFlow:
    """Admission requests driving real clients against a mock upstream."""

    @pytest.fixture
    def upstream(self):
        return MockTailscaleServer(organizations={
            "acme.com": {
                "client_id": "acme-id",
                "client_secret": "acme-secret",
                "devices": [
                    {"id": "1", "hostname": "web", "nodeKey": "nodekey:abc"},
                    {"id": "2", "hostname": "pending", "nodeKey": ""},
                ],
            },
            "globex.com": {
                "client_id": "globex-id",
                "client_secret": "globex-secret",
                "devices": [
                    {"id": "3", "hostname": "db", "nodeKey": "nodekey:def"},
                ],
            },
        })

    @pytest.fixture
    def backend(self):
        return InMemoryKeyValueStore()

    def build_client(self, upstream, backend, apps, **overrides):
        transport = httpx.ASGITransport(app=upstream.app)
        config = get_config("admission", 8020, kv_backend="memory", oauth_apps=apps, **overrides)
        service = AdmissionService(
            config=config,
            cache_store=AdmissionCacheStore(backend),
            oauth_client=OAuthClient(f"{MOCK_BASE}/oauth/token", transport=transport),
            directory_client=DirectoryClient(MOCK_BASE, transport=transport),
        )
        return TestClient(service.app)

    @pytest.fixture
    def apps(self):
        return [
            {"organizationName": "acme.com", "clientId": "acme-id", "clientSecret": "acme-secret"},
            {"organizationName": "globex.com", "clientId": "globex-id", "clientSecret": "globex-secret"},
        ]

    def test_admits_devices_from_every_organization(self, upstream, backend, apps):
        client = self.build_client(upstream, backend, apps)

        assert client.post("/", json={"NodePublic": "nodekey:abc", "Source": "derp1"}).json() == {"Allow": True}
        assert client.post("/", json={"NodePublic": "nodekey:def", "Source": "derp1"}).json() == {"Allow": True}
        assert client.post("/", json={"NodePublic": "nodekey:xyz", "Source": "derp1"}).json() == {"Allow": False}

        assert sorted(upstream.token_requests) == ["acme.com", "globex.com"]
        assert sorted(upstream.device_requests) == ["acme.com", "globex.com"]
        assert json.loads(backend.data["nodeKeys"]) == ["nodekey:abc", "nodekey:def"]

    def test_rejected_credentials_fail_whole_refresh(self, upstream, backend, apps):
        """Test one organization's bad secret leaves the previous set in place."""
        backend.data["syncTime"] = format_timestamp(datetime.now(timezone.utc) - timedelta(hours=2))
        backend.data["nodeKeys"] = '["nodekey:old"]'
        apps[1]["clientSecret"] = "wrong"
        client = self.build_client(upstream, backend, apps)

        response = client.post("/", json={"NodePublic": "nodekey:abc", "Source": "derp1"})

        assert response.status_code == 502
        assert response.json()["code"] == "UPSTREAM_AUTH_ERROR"
        assert response.json()["details"]["status_code"] == 401
        assert backend.data["nodeKeys"] == '["nodekey:old"]'

    def test_fallback_serves_previous_set(self, upstream, backend, apps):
        backend.data["nodeKeys"] = '["nodekey:old"]'
        apps[0]["clientSecret"] = "wrong"
        client = self.build_client(upstream, backend, apps, fallback_on_refresh_failure=True)

        response = client.post("/", json={"NodePublic": "nodekey:old", "Source": "derp1"})

        assert response.status_code == 200
        assert response.json() == {"Allow": True}

    def test_cache_shared_between_instances(self, upstream, backend, apps):
        """Test a second gateway instance reuses the refresh of the first."""
        first = self.build_client(upstream, backend, apps)
        second = self.build_client(upstream, backend, apps)

        assert first.post("/", json={"NodePublic": "nodekey:abc", "Source": "derp1"}).json() == {"Allow": True}
        assert second.post("/", json={"NodePublic": "nodekey:def", "Source": "derp2"}).json() == {"Allow": True}

        assert len(upstream.token_requests) == 2
