"""Standalone announcer: publish a TNC's configured services until interrupted."""

import argparse
import signal
import sys
import threading
from pathlib import Path

from .config import load_config
from .discovery import DiscoveryManager
from .logs import LEVELS, setup_logging

# How often to check that the worker thread is still announcing
WATCH_INTERVAL = 1.0
SHUTDOWN_TIMEOUT = 5.0


def cmd_announce(args: argparse.Namespace, stop: threading.Event) -> int:
    """Announce the configured services until stop is set.

    Returns:
        0 after a clean shutdown, 1 if the config is invalid or the
        announcement ended on its own.
    """
    try:
        config = load_config(args.config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    manager = DiscoveryManager()
    manager.announce(config)

    if manager.announcer is None:
        print("Nothing to announce (DNS-SD disabled or no ports configured)")
        return 0

    exit_code = 0
    while not stop.wait(WATCH_INTERVAL):
        if not manager.active:
            print("DNS-SD announcement stopped", file=sys.stderr)
            exit_code = 1
            break

    manager.terminate()
    if not manager.join(timeout=SHUTDOWN_TIMEOUT):
        print("Timed out withdrawing services", file=sys.stderr)

    return exit_code


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="tnc-dnssd",
        description="Announce AGWPE and KISS TCP services via DNS-SD",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=list(LEVELS),
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored console output",
    )

    args = parser.parse_args(argv)

    setup_logging(
        args.verbose, args.log_level, args.json, color=False if args.no_color else None
    )

    stop = threading.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, lambda *_: stop.set())

    return cmd_announce(args, stop)


if __name__ == "__main__":
    sys.exit(main())
