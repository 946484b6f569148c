#!/usr/bin/env python3
"""SpacetimeDB watch: connect, subscribe to queries, log acknowledgments.

Connects with the settings from the environment (SPACETIME_URI,
SPACETIME_MODULE_NAME, SPACETIME_AUTH_TOKEN), waits until the connection is
active, registers each query and stays connected until SIGINT / SIGTERM.

Usage::

    python scripts/spacetime_watch.py "SELECT * FROM chat_message_state"

    # Faster readiness polling, give up after 20 checks
    python scripts/spacetime_watch.py --poll-interval 0.25 --max-attempts 20 "SELECT * FROM player_username_state"
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

# Add project root to path
_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_root))

from spacetime_link.config import get_settings
from spacetime_link.exceptions import ConnectionTimeoutError, SpacetimeLinkError, WaitCancelledError
from spacetime_link.services.connection_manager import ConnectionManager
from spacetime_link.services.observers import CallbackObserver
from spacetime_link.services.subscription_registrar import SubscriptionRegistrar
from spacetime_link.utils.logging import get_logger

logger = get_logger("spacetime_watch")


def parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="SpacetimeDB watch: log subscription acknowledgments"
    )
    parser.add_argument("queries", nargs="+", help="SQL subscription queries")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=settings.spacetime_poll_interval,
        help=f"Seconds between readiness checks (default {settings.spacetime_poll_interval})",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=settings.spacetime_max_attempts,
        help=f"Failed readiness checks tolerated (default {settings.spacetime_max_attempts})",
    )
    return parser.parse_args()


async def main() -> int:
    args = parse_args()
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    manager = ConnectionManager()
    registrar = SubscriptionRegistrar(manager)

    # Without a reconnect policy the watch ends when the connection drops
    observer = CallbackObserver(on_disconnect=lambda error: stop.set())

    try:
        await manager.connect(
            observers=[observer],
            poll_interval=args.poll_interval,
            max_attempts=args.max_attempts,
            cancel_event=stop,
        )
    except WaitCancelledError:
        logger.info("Shutting down before the connection was ready")
        await manager.shutdown()
        return 0
    except ConnectionTimeoutError as e:
        logger.error(f"Failed to start: {e}")
        await manager.shutdown()
        return 1
    except SpacetimeLinkError as e:
        logger.error(f"Failed to start: {e}")
        return 1

    try:
        for query in args.queries:
            registrar.subscribe(
                query,
                on_applied=lambda handle: logger.info(f"Subscription applied: {handle.query_text}"),
                on_error=lambda error: logger.error(f"Subscription rejected: {error}"),
            )
    except SpacetimeLinkError as e:
        # The connection can drop between readiness and the first subscribe
        logger.error(f"Failed to subscribe: {e}")
        await manager.shutdown()
        return 1

    await stop.wait()
    logger.info("Shutting down SpacetimeDB watch...")
    await manager.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
