"""Entry point for the beacon scanner.

This module provides the main entry point for running the scanner as a
command-line program. It handles:
- Logging configuration
- Signal handling for graceful shutdown
- Creating and running the application

Usage:
    python -m beacon_scanner
    # or
    beacon-scanner  (if installed via pip/uv)
"""

import argparse
import asyncio
import logging
import signal
import sys

from .app import BeaconScannerApp
from .config import (
    DEFAULT_ADAPTER,
    DEFAULT_SCAN_PERIOD,
    ScannerConfig,
    ScannerConfigError,
    format_config_for_logging,
)

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application.

    Logs go to stderr so the beacon list on stdout stays readable.

    Args:
        verbose: If True, set log level to DEBUG; otherwise INFO
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Scan for nearby Eddystone UID beacons and list them live",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Scan with the default adapter
    python -m beacon_scanner

    # Use a specific Bluetooth adapter and a 2 second ranging cycle
    python -m beacon_scanner --adapter hci1 --scan-period 2
        """,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    parser.add_argument(
        "--adapter",
        default=DEFAULT_ADAPTER,
        help=f"Bluetooth adapter to use (default: {DEFAULT_ADAPTER})",
    )
    parser.add_argument(
        "--scan-period",
        type=float,
        default=DEFAULT_SCAN_PERIOD,
        metavar="SECONDS",
        help=f"Length of one ranging cycle (default: {DEFAULT_SCAN_PERIOD})",
    )
    parser.add_argument(
        "--no-permission-check",
        action="store_true",
        help="Skip the Bluetooth adapter power check on start",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ScannerConfig:
    """Build the scanner configuration from parsed arguments.

    Raises:
        ScannerConfigError: If an argument value is invalid
    """
    return ScannerConfig(
        adapter=args.adapter,
        scan_period=args.scan_period,
        check_permission=not args.no_permission_check,
    )


async def async_main(config: ScannerConfig) -> None:
    """Async entry point with signal handling.

    Args:
        config: Scanner configuration
    """
    app = BeaconScannerApp(config)

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info(f"[MAIN] Received signal {sig.name}, initiating shutdown...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler, sig)
        except NotImplementedError:
            # Windows event loops; Ctrl+C surfaces as KeyboardInterrupt instead
            pass

    try:
        await app.run(shutdown_event)
    finally:
        logger.info("[MAIN] Shutdown complete")


def main() -> None:
    """Main entry point for the beacon scanner."""
    args = parse_args()
    setup_logging(verbose=args.verbose)

    try:
        config = build_config(args)
    except ScannerConfigError as e:
        logger.error(f"[MAIN] {e}")
        sys.exit(1)

    logger.info("[MAIN] Starting beacon scanner...")
    for line in format_config_for_logging(config).split("\n"):
        logger.info(f"[MAIN]   {line}")

    try:
        asyncio.run(async_main(config))
    except KeyboardInterrupt:
        logger.info("[MAIN] Interrupted")
    except Exception as e:
        logger.error(f"[MAIN] Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
