from __future__ import annotations

import argparse
import logging
import os

import uvicorn

from shelfsync.config_manager import ConfigManager
from shelfsync.state_store import StateStore
from shelfsync.sync_engine import SyncEngine


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync library loans to Google Calendar")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Run the admin API and the periodic scheduler")
    sync_parser = subparsers.add_parser("sync", help="Run one sync and exit")
    sync_parser.add_argument("--dry-run", action="store_true", help="Show actions without modifying calendar")
    return parser.parse_args(argv)


def serve() -> int:
    host = os.getenv("SHELFSYNC_HOST", "0.0.0.0")
    port = int(os.getenv("SHELFSYNC_PORT", "8080"))
    uvicorn.run("shelfsync.web_admin:create_app", factory=True, host=host, port=port, reload=False)
    return 0


def sync_once(dry_run: bool = False) -> int:
    config_manager = ConfigManager(os.getenv("SHELFSYNC_CONFIG_PATH", "config.yaml"))
    state_store = StateStore(os.getenv("SHELFSYNC_STATE_PATH", "data/state.db"))
    engine = SyncEngine(config_manager, state_store)
    result = engine.run_once(trigger="cli", dry_run=dry_run or None)
    logging.info("%s: %s", result.status, result.message)
    return 1 if result.status == "error" else 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    if args.command == "sync":
        return sync_once(dry_run=args.dry_run)
    return serve()


if __name__ == "__main__":
    raise SystemExit(main())
