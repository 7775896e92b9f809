"""
Validate the blocklist directory and optionally run one remote update pass.

This script:
- Scans BLOCKLIST_DIR, repairing empty/corrupt files the same way the service does
- Prints every valid source with its kind, version and number of valid TTHs
- With --sync, fetches every enabled remote list once and prints the outcome

Usage:
    python scripts/check_blocklists.py
    python scripts/check_blocklists.py --sync
    python scripts/check_blocklists.py --env-file /etc/tthblock/tthblock.env
"""

import argparse
import asyncio
import logging
import os

from dotenv import dotenv_values

from tthblock.cache import MembershipCache
from tthblock.config import load_config
from tthblock.notifications import LoggingNotifier
from tthblock.settings import FileSettings
from tthblock.storage.registry import SourceRegistry, parse_blocklist
from tthblock.sync.remote import RemoteSynchronizer

logger = logging.getLogger("check_blocklists")
logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")


def _load_env_file(path: str) -> None:
    """Load environment variables from a .env-style file."""
    for key, value in dotenv_values(path).items():
        if value is None:
            continue
        os.environ[key] = value


async def main() -> int:
    parser = argparse.ArgumentParser(description="Validate TTH blocklists")
    parser.add_argument("--env-file", help="Optional .env file to load before reading config")
    parser.add_argument("--sync", action="store_true", help="Fetch enabled remote lists once")
    args = parser.parse_args()

    if args.env_file:
        _load_env_file(args.env_file)

    config = load_config()
    notifier = LoggingNotifier()
    settings = FileSettings(
        config.settings_file,
        notifier,
        auto_enable_new_sources=config.auto_enable_new_sources,
    )
    settings.load()

    registry = SourceRegistry(config.blocklist_dir, notifier)
    registry.ensure_directory()
    sources = registry.scan_sources()

    print(f"{len(sources)} valid blocklist(s) in {config.blocklist_dir}")
    for source in sources:
        try:
            count = len(parse_blocklist(source.path).identifiers)
        except Exception as e:
            logger.warning("Failed to parse %s: %s", source.file, e)
            count = 0
        state = "enabled" if settings.is_enabled(source.name) else "disabled"
        print(f"  {source.file:<32} {source.kind.label():<16} v{source.version:<12} {count:>7} TTH(s)  {state}")

    if not args.sync:
        return 0

    cache = MembershipCache(registry, notifier)
    cache.full_reload(settings.is_enabled)
    sync = RemoteSynchronizer(
        registry,
        cache,
        settings,
        notifier,
        retries=config.sync_retries,
        retry_delay=config.sync_retry_delay,
        fetch_timeout=config.fetch_timeout,
        state_path=config.sync_state_file,
    )
    try:
        results = await sync.run_once()
    finally:
        await sync.stop()

    failed = 0
    for result in results:
        print(f"  {result.source:<32} {result.status.value:<13} attempts={result.attempts} {result.message}")
        if result.status.value == "failed":
            failed += 1
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
