"""
Liquidation Watcher - CLI Entry Point
=====================================

Usage:
    # Start watcher (settings from environment / .env)
    liqwatch

    # Alert only, never hand accounts to an executor
    liqwatch --test-mode

    # Log alerts locally instead of sending to Telegram
    liqwatch --dry-run

    # Test Telegram configuration
    liqwatch --test-telegram
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import Config
from .errors import ConfigError


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = "logs/watcher.log"):
    """Configure logging for the watcher service."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # File handler (date-stamped, e.g. logs/watcher_2026-01-18.log)
    dated_log_file = None
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        date_str = datetime.now().strftime("%Y-%m-%d")
        dated_log_file = log_path.parent / f"{log_path.stem}_{date_str}{log_path.suffix}"

        file_handler = logging.FileHandler(dated_log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Reduce noise from HTTP libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    if dated_log_file:
        root_logger.info(f"Logging to: {dated_log_file}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Aave Liquidation Watcher',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Settings are read from the environment (and .env):
  WSS_URL, WSS_URL_SECONDARY, AAVE_POOL, HEALTH_FACTOR_THRESHOLD,
  USER_DEBOUNCE_SECONDS, MAX_CONCURRENT_CHECKS, FULL_SCAN_INTERVAL,
  TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID, TEST_MODE, ...

Examples:
  liqwatch                     # Start watcher
  liqwatch --test-mode         # Alert only
  liqwatch --dry-run           # Log alerts instead of sending to Telegram
  liqwatch --test-telegram     # Test Telegram setup
        """
    )

    parser.add_argument(
        '--test-mode',
        action='store_true',
        help='Alert only; never hand accounts to a liquidation executor (overrides TEST_MODE)'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Log alerts locally instead of sending to Telegram'
    )

    parser.add_argument(
        '--test-telegram',
        action='store_true',
        help='Send a test alert to verify Telegram configuration'
    )

    parser.add_argument(
        '--accounts-file',
        type=Path,
        default=None,
        help='Known accounts file for the full sweep (overrides KNOWN_ACCOUNTS_FILE)'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Log level (default: LOG_LEVEL or INFO)'
    )

    parser.add_argument(
        '--log-file',
        default=None,
        help='Log file base name (default: LOG_FILE or logs/watcher.log)'
    )

    return parser


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Layer command-line flags over the environment settings."""
    overrides = {}
    if args.test_mode:
        overrides["test_mode"] = True
    if args.dry_run:
        overrides["telegram_bot_token"] = None
        overrides["telegram_chat_id"] = None
    if args.accounts_file is not None:
        overrides["known_accounts_file"] = args.accounts_file
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_file:
        overrides["log_file"] = args.log_file
    return dataclasses.replace(config, **overrides) if overrides else config


def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)

    try:
        config = apply_overrides(Config.from_env(), args)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        sys.exit(2)

    setup_logging(config.log_level, config.log_file)
    logger = logging.getLogger(__name__)

    # Test Telegram mode
    if args.test_telegram:
        from .alerts.telegram import send_test_alert

        print("Testing Telegram configuration...")
        if asyncio.run(send_test_alert(config)):
            print("Test alert sent successfully!")
            sys.exit(0)
        print("Failed to send test alert. Check your TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID.")
        sys.exit(1)

    try:
        config.require_upstream()
    except ConfigError as e:
        print(f"\nERROR: {e}")
        print("Set it in the environment or in .env")
        sys.exit(2)

    # Print configuration
    print("\n" + "=" * 60)
    print("AAVE LIQUIDATION WATCHER")
    print("=" * 60)
    print(f"Pool:           {config.pool_address}")
    print(f"Endpoints:      {len(config.endpoints)}")
    print(f"Threshold:      {config.health_threshold}")
    print(f"Debounce:       {config.debounce_window_sec:g}s")
    print(f"Max checks:     {config.concurrency_cap} ({config.overflow_policy} on overflow)")
    print(f"Full sweep:     every {config.full_sweep_interval_sec:g}s")
    print(f"Test mode:      {config.test_mode}")
    print(f"Telegram:       {'configured' if config.telegram_configured else 'off (log only)'}")
    print(f"Log level:      {config.log_level}")
    print("=" * 60)

    from .monitor import WatcherService

    try:
        service = WatcherService(config)

        print("\nStarting watcher...")
        print("Press Ctrl+C to stop\n")

        asyncio.run(service.run())

    except KeyboardInterrupt:
        print("\n\nWatcher stopped by user")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Watcher service error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
