"""
Unit tests for the refresh orchestrator.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from service_admission.app.cache import AdmissionCacheStore, InMemoryKeyValueStore
from service_admission.app.directory.client import DirectoryClient
from service_admission.app.models import OAuthToken
from service_admission.app.oauth.client import OAuthClient
from service_admission.app.refresh.orchestrator import (
    RefreshOrchestrator,
    STALENESS_WINDOW,
    is_stale,
)
from shared.config import OrganizationCredential
from shared.errors import UpstreamAuthError, UpstreamDirectoryError

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def credential(name: str) -> OrganizationCredential:
    return OrganizationCredential(
        organization_name=name,
        client_id=f"{name}-id",
        client_secret=f"{name}-secret",
    )


class TestIsStale:
    """Test cases for the staleness rule."""

    def test_never_synced_is_stale(self):
        assert is_stale(None, NOW) is True

    def test_within_window_is_fresh(self):
        assert is_stale(NOW - timedelta(minutes=59), NOW) is False

    def test_exactly_one_hour_is_fresh(self):
        assert is_stale(NOW - STALENESS_WINDOW, NOW) is False

    def test_past_window_is_stale(self):
        assert is_stale(NOW - STALENESS_WINDOW - timedelta(seconds=1), NOW) is True


class TestRefreshOrchestrator:
    """Test cases for RefreshOrchestrator."""

    @pytest.fixture
    def backend(self):
        return InMemoryKeyValueStore()

    @pytest.fixture
    def store(self, backend):
        return AdmissionCacheStore(backend)

    @pytest.fixture
    def oauth_client(self):
        client = MagicMock(spec=OAuthClient)
        client.exchange = AsyncMock(
            side_effect=lambda c: OAuthToken(access_token=f"token-{c.organization_name}")
        )
        return client

    @pytest.fixture
    def org_keys(self):
        return {"a": {"k1", "k2"}, "b": {"k3"}}

    @pytest.fixture
    def directory_client(self, org_keys):
        client = MagicMock(spec=DirectoryClient)
        client.list_authorized_keys = AsyncMock(side_effect=lambda token, org: set(org_keys[org]))
        return client

    def make_orchestrator(self, names, oauth_client, directory_client, store, **kwargs):
        return RefreshOrchestrator(
            [credential(n) for n in names],
            oauth_client,
            directory_client,
            store,
            clock=lambda: NOW,
            **kwargs
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("names", [["a", "b"], ["b", "a"]])
    async def test_refresh_unions_organizations(self, names, oauth_client, directory_client, store):
        """Test the cached set is the union regardless of organization order."""
        orchestrator = self.make_orchestrator(names, oauth_client, directory_client, store)

        keys = await orchestrator.refresh()

        assert keys == {"k1", "k2", "k3"}
        assert await store.read_keys() == {"k1", "k2", "k3"}
        assert await store.read_freshness() == NOW
        directory_client.list_authorized_keys.assert_any_await("token-a", "a")
        directory_client.list_authorized_keys.assert_any_await("token-b", "b")

    @pytest.mark.asyncio
    async def test_sync_time_written_before_fetch(self, oauth_client, directory_client, store):
        """Test syncTime advances before any upstream call."""
        seen = []

        async def exchange(c):
            seen.append(await store.read_freshness())
            return OAuthToken(access_token="tok")

        oauth_client.exchange = AsyncMock(side_effect=exchange)
        orchestrator = self.make_orchestrator(["a"], oauth_client, directory_client, store)

        await orchestrator.refresh()

        assert seen == [NOW]

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_keys(self, oauth_client, directory_client, store, backend):
        """Test a single failing organization leaves the previous set untouched."""
        await store.write(NOW - timedelta(hours=2), {"old"})
        directory_client.list_authorized_keys = AsyncMock(
            side_effect=lambda token, org: _raise(UpstreamDirectoryError(org, 500, "Internal Server Error"))
            if org == "b" else {"k1"}
        )
        orchestrator = self.make_orchestrator(["a", "b"], oauth_client, directory_client, store)

        with pytest.raises(UpstreamDirectoryError):
            await orchestrator.refresh()

        assert await store.read_keys() == {"old"}
        # syncTime has still advanced, suppressing retries until the window elapses
        assert await store.read_freshness() == NOW

    @pytest.mark.asyncio
    async def test_auth_failure_fails_refresh(self, oauth_client, directory_client, store):
        oauth_client.exchange = AsyncMock(side_effect=UpstreamAuthError("a", 401, "Unauthorized"))
        orchestrator = self.make_orchestrator(["a"], oauth_client, directory_client, store)

        with pytest.raises(UpstreamAuthError):
            await orchestrator.refresh()

        directory_client.list_authorized_keys.assert_not_awaited()
        assert await store.read_keys() is None

    @pytest.mark.asyncio
    async def test_organizations_fetched_concurrently(self, oauth_client, directory_client, store):
        """Test every organization is in flight at the same time."""
        started = {"a": asyncio.Event(), "b": asyncio.Event()}

        async def exchange(c):
            started[c.organization_name].set()
            other = "b" if c.organization_name == "a" else "a"
            await started[other].wait()
            return OAuthToken(access_token="tok")

        oauth_client.exchange = AsyncMock(side_effect=exchange)
        orchestrator = self.make_orchestrator(["a", "b"], oauth_client, directory_client, store)

        keys = await asyncio.wait_for(orchestrator.refresh(), timeout=5)
        assert keys == {"k1", "k2", "k3"}

    @pytest.mark.asyncio
    async def test_failure_cancels_outstanding_organizations(self, oauth_client, directory_client, store):
        """Test a failing organization cancels the ones still running."""
        cancelled = asyncio.Event()

        async def exchange(c):
            if c.organization_name == "a":
                await asyncio.sleep(0)
                raise UpstreamAuthError("a", 401, "Unauthorized")
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        oauth_client.exchange = AsyncMock(side_effect=exchange)
        orchestrator = self.make_orchestrator(["a", "b"], oauth_client, directory_client, store)

        with pytest.raises(UpstreamAuthError):
            await orchestrator.refresh()

        await asyncio.wait_for(cancelled.wait(), timeout=5)

    @pytest.mark.asyncio
    async def test_no_organizations_writes_empty_set(self, oauth_client, directory_client, store):
        orchestrator = self.make_orchestrator([], oauth_client, directory_client, store)

        assert await orchestrator.refresh() == set()
        assert await store.read_keys() == set()

    @pytest.mark.asyncio
    async def test_ensure_fresh_skips_refresh_within_window(self, oauth_client, directory_client, store):
        """Test a fresh cache with no keys is used as-is."""
        await store.write_freshness(NOW - timedelta(minutes=10))
        orchestrator = self.make_orchestrator(["a"], oauth_client, directory_client, store)

        assert await orchestrator.ensure_fresh() == frozenset()
        oauth_client.exchange.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ensure_fresh_refreshes_when_stale(self, oauth_client, directory_client, store):
        await store.write(NOW - timedelta(hours=1, seconds=1), {"old"})
        orchestrator = self.make_orchestrator(["a"], oauth_client, directory_client, store)

        assert await orchestrator.ensure_fresh() == frozenset({"k1", "k2"})
        assert oauth_client.exchange.await_count == 1

    @pytest.mark.asyncio
    async def test_ensure_fresh_propagates_failure_by_default(self, oauth_client, directory_client, store):
        oauth_client.exchange = AsyncMock(side_effect=UpstreamAuthError("a", 500, "Internal Server Error"))
        orchestrator = self.make_orchestrator(["a"], oauth_client, directory_client, store)

        with pytest.raises(UpstreamAuthError):
            await orchestrator.ensure_fresh()

    @pytest.mark.asyncio
    async def test_ensure_fresh_falls_back_to_previous_keys(self, oauth_client, directory_client, store):
        """Test the fallback policy decides against the cached set."""
        await store.write(NOW - timedelta(hours=3), {"old"})
        oauth_client.exchange = AsyncMock(side_effect=UpstreamAuthError("a", 500, "Internal Server Error"))
        orchestrator = self.make_orchestrator(
            ["a"], oauth_client, directory_client, store, fallback_on_failure=True
        )

        assert await orchestrator.ensure_fresh() == frozenset({"old"})
        assert await store.read_keys() == {"old"}

    @pytest.mark.asyncio
    async def test_in_flight_refresh_suppresses_concurrent_refresh(self, oauth_client, directory_client, store):
        """Test a request arriving mid-refresh sees the advanced syncTime and skips refreshing."""
        fetch_started = asyncio.Event()
        release = asyncio.Event()

        async def exchange(c):
            fetch_started.set()
            await release.wait()
            return OAuthToken(access_token="tok")

        oauth_client.exchange = AsyncMock(side_effect=exchange)
        orchestrator = self.make_orchestrator(["a"], oauth_client, directory_client, store)

        first = asyncio.ensure_future(orchestrator.ensure_fresh())
        await asyncio.wait_for(fetch_started.wait(), timeout=5)

        assert await orchestrator.ensure_fresh() == frozenset()

        release.set()
        assert await first == frozenset({"k1", "k2"})
        assert oauth_client.exchange.await_count == 1

    @pytest.mark.asyncio
    async def test_refresh_records_metrics(self, oauth_client, directory_client, store):
        metrics = MagicMock()
        orchestrator = self.make_orchestrator(["a", "b"], oauth_client, directory_client, store, metrics=metrics)

        await orchestrator.refresh()

        outcome, _, key_count = metrics.record_refresh.call_args.args
        assert outcome == "success"
        assert key_count == 3


def _raise(error):
    raise error
