#!/usr/bin/env python3
"""
Force a refresh of the shared admission cache.

Runs the same fetch the gateway performs when its cache goes stale, but from
a developer workstation or a scheduled job, so that relays do not pay the
refresh latency on their next admission request. Configuration is read from
the same ``ADMISSION_*`` environment variables as the service.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from shared.config import get_config
from shared.logging import configure_logging

from service_admission.app.cache import AdmissionCacheStore, create_backend, format_timestamp
from service_admission.app.directory.client import DirectoryClient
from service_admission.app.oauth.client import OAuthClient
from service_admission.app.refresh.orchestrator import RefreshOrchestrator, utc_now


async def refresh(*, dry_run: bool, redis_url: Optional[str] = None) -> Dict[str, Any]:
    """Run one refresh and return the summary."""
    config = get_config("admission", 8020)
    configure_logging("admission", config.log_level)

    backend = create_backend(config.kv_backend, redis_url or config.redis_url)
    store = AdmissionCacheStore(backend, key_prefix=config.kv_key_prefix)
    oauth_client = OAuthClient(config.oauth_token_url, timeout=config.upstream_timeout)
    directory_client = DirectoryClient(config.api_base_url, timeout=config.upstream_timeout)
    orchestrator = RefreshOrchestrator(config.oauth_apps, oauth_client, directory_client, store)

    now = utc_now()
    if dry_run:
        key_sets = await asyncio.gather(
            *(orchestrator.fetch_organization_keys(c) for c in config.oauth_apps)
        )
        keys = set().union(*key_sets)
    else:
        await backend.start()
        try:
            keys = await orchestrator.refresh(now)
        finally:
            await backend.stop()

    return {
        "sync_time": format_timestamp(now),
        "organizations": [c.organization_name for c in config.oauth_apps],
        "node_keys": sorted(keys),
        "dry_run": dry_run,
    }


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Force a refresh of the admission node key cache.")
    parser.add_argument("--redis-url", default=None, help="Redis connection URL (defaults to ADMISSION_REDIS_URL)")
    parser.add_argument("--dry-run", action="store_true", help="Fetch keys but do not write to the store")
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write JSON summary")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    try:
        summary = asyncio.run(refresh(dry_run=args.dry_run, redis_url=args.redis_url))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[admission-refresh] failed: {exc}", file=sys.stderr)
        return 1

    if args.dry_run:
        print("[admission-refresh] DRY RUN - no store writes executed")

    print(json.dumps(summary, indent=2))

    if args.output:
        args.output.write_text(json.dumps(summary, indent=2))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
