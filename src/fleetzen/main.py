"""Application entry point for the FleetZen field-agent device process.

Commands::

    fleetzen run            # background jobs until SIGINT/SIGTERM
    fleetzen drafts         # print unexpired drafts as JSON
    fleetzen sync           # one sync sweep, then exit
    fleetzen reap           # remove expired drafts, then exit
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys

from fleetzen.config.settings import AppConfig
from fleetzen.engine.client import FleetZenEngine

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleetzen",
        description="FleetZen offline draft store and sync agent",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        default="",
        help="YAML config file (FLEETZEN_* env vars still win)",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Run background jobs until interrupted")
    sub.add_parser("drafts", help="Print unexpired drafts as JSON")
    sub.add_parser("sync", help="Run one sync sweep")
    sub.add_parser("reap", help="Remove expired drafts")
    return parser


async def _run_forever(config: AppConfig) -> None:
    engine = FleetZenEngine(config)
    await engine.initialize()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # not available on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    logger.info("FleetZen agent %s running", config.version)
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down")
        await engine.close()


async def _one_shot(config: AppConfig, command: str) -> int:
    # jobs stay off: the command does the one piece of work itself
    config.task.enabled = False
    engine = FleetZenEngine(config, online=True)
    await engine.initialize()
    try:
        if command == "drafts":
            drafts = await engine.draft_store.list()
            print(json.dumps([d.to_dict() for d in drafts], indent=2))  # noqa: T201
            return 0
        if command == "reap":
            count = await engine.draft_store.reap()
            print(f"reaped {count} draft(s)")  # noqa: T201
            return 0
        sync = engine.sync_service
        if sync is None:
            logger.error("Sync is disabled (FLEETZEN_SYNC__ENABLED=false)")
            return 1
        report = await sync.sync_pending()
        print(  # noqa: T201
            json.dumps(
                {"synced": report.synced, "failed": report.failed, "skipped": report.skipped},
                indent=2,
            )
        )
        return 1 if report.failed else 0
    finally:
        await engine.close()


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, configure logging, and dispatch the command."""
    args = _build_parser().parse_args(argv)
    config = AppConfig(config_path=args.config_path) if args.config_path else AppConfig()
    debug = args.debug or config.debug

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    command = args.command or "run"
    if command == "run":
        asyncio.run(_run_forever(config))
        return 0
    return asyncio.run(_one_shot(config, command))


if __name__ == "__main__":
    sys.exit(main())
