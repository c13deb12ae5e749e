"""
Refresh orchestration for the authorized node key cache.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, FrozenSet, Optional, Sequence, Set

from shared.config import OrganizationCredential
from shared.errors import UpstreamError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.tracing import get_tracer

from ..cache.store import AdmissionCacheStore
from ..directory.client import DirectoryClient
from ..oauth.client import OAuthClient

STALENESS_WINDOW = timedelta(hours=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_stale(sync_time: Optional[datetime], now: datetime) -> bool:
    """A cache is stale when it was never synced or synced over an hour ago."""
    return sync_time is None or now - sync_time > STALENESS_WINDOW


class RefreshOrchestrator:
    """Keeps the shared node key cache within the staleness window.

    A refresh first advances ``syncTime`` and only then fetches, so that
    concurrent requests see the in-flight refresh as fresh and skip their
    own. This is optimistic de-duplication, not a lock: two requests can
    still both refresh, which is harmless because the key set is always
    replaced whole.

    Organizations are fetched concurrently and joined all-or-nothing. Any
    failing organization fails the refresh and the previously cached key
    set stays in place.
    """

    def __init__(
        self,
        credentials: Sequence[OrganizationCredential],
        oauth_client: OAuthClient,
        directory_client: DirectoryClient,
        cache_store: AdmissionCacheStore,
        metrics: Optional[MetricsCollector] = None,
        fallback_on_failure: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.credentials = tuple(credentials)
        self.oauth_client = oauth_client
        self.directory_client = directory_client
        self.cache_store = cache_store
        self.metrics = metrics
        self.fallback_on_failure = fallback_on_failure
        self.clock = clock
        self.logger = get_logger("admission.refresh")
        self.tracer = get_tracer("admission.refresh")

    async def ensure_fresh(self) -> FrozenSet[str]:
        """Return the key set to decide against, refreshing first if stale."""
        record = await self.cache_store.read()
        now = self.clock()

        if not is_stale(record.sync_time, now):
            return record.authorized_keys

        try:
            return frozenset(await self.refresh(now))
        except UpstreamError as e:
            if not self.fallback_on_failure:
                raise
            self.logger.warning(
                "Refresh failed, deciding against previous key set",
                organization=e.organization,
                error=e.message,
                cached_keys=len(record.authorized_keys)
            )
            return record.authorized_keys

    async def refresh(self, now: Optional[datetime] = None) -> Set[str]:
        """Repopulate the cache from every organization."""
        now = now or self.clock()
        start_time = time.time()

        with self.tracer.start_as_current_span("admission.refresh") as span:
            span.set_attribute("admission.organizations", len(self.credentials))
            await self.cache_store.write_freshness(now)
            self.logger.info("Refreshing node key cache", organizations=len(self.credentials))

            try:
                key_sets = await self._gather_organizations()
            except UpstreamError as e:
                self.logger.error(
                    "Node key cache refresh failed",
                    organization=e.organization,
                    code=e.code,
                    error=e.message
                )
                self._record("failure", start_time)
                raise

            keys: Set[str] = set().union(*key_sets)
            await self.cache_store.write_keys(keys)

            span.set_attribute("admission.node_keys", len(keys))
            self.logger.info("Node key cache refreshed", node_keys=len(keys))
            self._record("success", start_time, len(keys))
            return keys

    async def _gather_organizations(self):
        tasks = [asyncio.ensure_future(self.fetch_organization_keys(c)) for c in self.credentials]
        try:
            return await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                task.cancel()
            raise

    async def fetch_organization_keys(self, credential: OrganizationCredential) -> Set[str]:
        """Exchange credentials then list node keys for one organization."""
        token = await self.oauth_client.exchange(credential)
        return await self.directory_client.list_authorized_keys(
            token.access_token, credential.organization_name
        )

    def _record(self, outcome: str, start_time: float, key_count: Optional[int] = None):
        if self.metrics:
            self.metrics.record_refresh(outcome, time.time() - start_time, key_count)
