#!/usr/bin/env python3
"""
HB Report Sync CLI

Usage:
    hb-sync run [--kinds users,projects] [--seed-test-data]
    hb-sync daemon [--seed-test-data]
    hb-sync migrate
    hb-sync insert-token ACCESS_TOKEN REFRESH_TOKEN [--expires-in 7200]

Exit code 0 on success / clean shutdown, 1 on any startup or sync failure.
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from hbsync.core.config import Settings, get_settings
from hbsync.core.dependencies import build_container, close_container, create_http_client
from hbsync.core.exceptions import ConfigurationError
from hbsync.core.logging import configure_logging, init_sentry
from hbsync.core.security import TokenCipher
from hbsync.services.store import VersionedStore, apply_migrations
from hbsync.services.sync.oauth import TokenManager

logger = logging.getLogger(__name__)


def _kinds(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [k.strip() for k in value.split(",") if k.strip()]


# ============================================================================
# COMMANDS
# ============================================================================

async def _run_once(settings: Settings, kinds: Optional[List[str]], seed_test_data: bool) -> None:
    container = await build_container(settings, start_background=False, seed_test_data=seed_test_data)
    try:
        result = await container.orchestrator.run(kinds)
        for kind in result.kinds:
            print(f"  {kind.kind:<14} {kind.persisted:>6} synced  {kind.skipped:>4} skipped")
    finally:
        await close_container(container)


def cmd_run(args, settings: Settings) -> int:
    try:
        asyncio.run(_run_once(settings, _kinds(args.kinds), args.seed_test_data))
    except Exception as e:
        logger.error(f"❌ Sync failed: {e}", exc_info=True)
        return 1
    logger.info("✅ Sync completed")
    return 0


async def _run_daemon(settings: Settings, seed_test_data: bool) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    container = await build_container(settings, start_background=True, seed_test_data=seed_test_data)
    logger.info("🚀 Sync daemon running (Ctrl+C to stop)")
    try:
        await stop.wait()
        logger.info("Shutdown signal received")
    finally:
        await close_container(container)


def cmd_daemon(args, settings: Settings) -> int:
    try:
        asyncio.run(_run_daemon(settings, args.seed_test_data))
    except Exception as e:
        logger.error(f"❌ Daemon failed: {e}", exc_info=True)
        return 1
    logger.info("✅ Daemon stopped cleanly")
    return 0


async def _migrate(settings: Settings) -> int:
    store = await VersionedStore.open(settings.database_url)
    try:
        return await apply_migrations(store)
    finally:
        await store.close()


def cmd_migrate(args, settings: Settings) -> int:
    try:
        version = asyncio.run(_migrate(settings))
    except Exception as e:
        logger.error(f"❌ Migration failed: {e}", exc_info=True)
        return 1
    print(f"Schema version: {version}")
    return 0


async def _insert_token(settings: Settings, access_token: str, refresh_token: str, expires_in: Optional[float]) -> None:
    store = await VersionedStore.open(settings.database_url)
    http_client = create_http_client(settings)
    try:
        await apply_migrations(store)
        manager = TokenManager(store, http_client, settings, TokenCipher.from_settings(settings))
        await manager.store_token_pair(access_token, refresh_token, expires_in)
    finally:
        await http_client.aclose()
        await store.close()


def cmd_insert_token(args, settings: Settings) -> int:
    try:
        asyncio.run(_insert_token(settings, args.access_token, args.refresh_token, args.expires_in))
    except Exception as e:
        logger.error(f"❌ Failed to store token: {e}", exc_info=True)
        return 1
    print(f"Token stored for owner '{settings.token_owner_id}'")
    return 0


# ============================================================================
# ENTRY POINT
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hb-sync", description="HB Report Procore sync")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("run", help="Run one sync and exit")
    p.add_argument("--kinds", help="Comma-separated resource kinds (default: all)")
    p.add_argument("--seed-test-data", action="store_true", help="Insert the development data set first")

    p = subparsers.add_parser("daemon", help="Sync now, then daily, keeping the token fresh")
    p.add_argument("--seed-test-data", action="store_true", help="Insert the development data set first")

    subparsers.add_parser("migrate", help="Apply schema migrations")

    p = subparsers.add_parser("insert-token", help="Store a bootstrap token pair")
    p.add_argument("access_token", help="Access token")
    p.add_argument("refresh_token", help="Refresh token")
    p.add_argument("--expires-in", type=float, help="Seconds until the access token expires")

    return parser


def main(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)

    if settings is None:
        try:
            settings = get_settings()
        except ConfigurationError as e:
            print(f"🚨 {e}", file=sys.stderr)
            return 1

    configure_logging(settings, process_tag="sync" if args.command == "daemon" else "cli")
    init_sentry(settings)

    commands = {
        "run": cmd_run,
        "daemon": cmd_daemon,
        "migrate": cmd_migrate,
        "insert-token": cmd_insert_token,
    }
    return commands[args.command](args, settings)


if __name__ == "__main__":
    sys.exit(main())
