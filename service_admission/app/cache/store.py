"""
Admission cache persisted as two independent key-value entries.

``syncTime`` holds the ISO-8601 start time of the last refresh attempt and
``nodeKeys`` holds the authorized node keys as a JSON array. The two entries
are written separately, so readers may briefly observe a new ``syncTime``
alongside the previous key set while a refresh is in flight.
"""

import json
from datetime import datetime, timezone
from typing import Iterable, Optional, Set

from shared.errors import CacheUnavailableError
from shared.logging import get_logger

from ..models import CacheRecord
from .kv_store import KeyValueStore

SYNC_TIME_KEY = "syncTime"
NODE_KEYS_KEY = "nodeKeys"


def format_timestamp(value: datetime) -> str:
    """Render as UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    rendered = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return rendered.replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class AdmissionCacheStore:
    """Reads and writes the freshness timestamp and the authorized key set."""

    def __init__(self, backend: KeyValueStore, key_prefix: str = ""):
        self.backend = backend
        self.sync_time_key = f"{key_prefix}{SYNC_TIME_KEY}"
        self.node_keys_key = f"{key_prefix}{NODE_KEYS_KEY}"
        self.logger = get_logger("admission.cache.store")

    async def read_freshness(self) -> Optional[datetime]:
        raw = await self.backend.get(self.sync_time_key)
        if not raw:
            return None
        try:
            return parse_timestamp(raw)
        except ValueError:
            # Treated as absent so the next request refreshes.
            self.logger.warning("Unparseable sync time in cache", value=raw)
            return None

    async def read_keys(self) -> Optional[Set[str]]:
        raw = await self.backend.get(self.node_keys_key)
        if raw is None:
            return None
        try:
            keys = json.loads(raw)
        except ValueError as e:
            self.logger.error("Corrupt node key set in cache", error=str(e))
            raise CacheUnavailableError("Corrupt node key set in cache", details={"key": self.node_keys_key})
        if keys is None:
            return None
        if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
            self.logger.error("Node key set in cache is not a list of strings")
            raise CacheUnavailableError("Corrupt node key set in cache", details={"key": self.node_keys_key})
        return set(keys)

    async def read(self) -> CacheRecord:
        sync_time = await self.read_freshness()
        keys = await self.read_keys()
        return CacheRecord(sync_time=sync_time, authorized_keys=frozenset(keys or ()))

    async def write_freshness(self, sync_time: datetime) -> None:
        await self.backend.put(self.sync_time_key, format_timestamp(sync_time))

    async def write_keys(self, keys: Iterable[str]) -> None:
        await self.backend.put(self.node_keys_key, json.dumps(sorted(set(keys))))

    async def write(self, sync_time: datetime, keys: Iterable[str]) -> None:
        await self.write_freshness(sync_time)
        await self.write_keys(keys)

    async def health_check(self) -> bool:
        return await self.backend.ping()
