#!/usr/bin/env python3
"""
Wallet Monitor - CLI Entry Point
================================

Runs the continuous wallet activity monitor.

Architecture:
    - Block windows after the stored checkpoint, scanned in parallel waves
    - Activity alerts for transactions sent by tracked wallets
    - Automatic enrollment of wallets funded by tracked wallets
    - Telegram delivery through a throttling-aware queue

Usage:
    # Start monitor
    python scripts/run_monitor.py

    # Dry run (console alerts only, no Telegram)
    python scripts/run_monitor.py --dry-run

    # Manage the tracked set
    python scripts/run_monitor.py --add-wallet 0xabc... --name "Fund A"
    python scripts/run_monitor.py --remove-wallet 0xabc...
    python scripts/run_monitor.py --list-wallets
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from walletwatch.config import Config
from walletwatch.errors import ConfigurationError, StorageError
from walletwatch.monitor import MonitorService
from walletwatch.settings import LOG_FILE, LOG_LEVEL


def setup_logging(log_level: str = LOG_LEVEL, log_file: str = LOG_FILE):
    """Configure logging for the monitor service."""
    log_path = project_root / log_file
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Create date-stamped log file (e.g., logs/monitor_2026-01-18.log)
    date_str = datetime.now().strftime("%Y-%m-%d")
    dated_log_file = log_path.parent / f"{log_path.stem}_{date_str}{log_path.suffix}"

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # File handler (date-stamped)
    file_handler = logging.FileHandler(dated_log_file)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Reduce noise from HTTP libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    root_logger.info(f"Logging to: {dated_log_file}")


async def run_admin(service: MonitorService, args) -> int:
    """Run a one-off tracked-set command and print the result."""
    if args.add_wallet:
        result = await service.add_wallet(args.add_wallet, args.name)
    elif args.remove_wallet:
        result = await service.remove_wallet(args.remove_wallet)
    elif args.rename_wallet:
        result = await service.rename_wallet(args.rename_wallet, args.name)
    else:
        result = await service.query_wallet(args.query_wallet)

    print(result.message)
    if result.success and isinstance(result.data, list):
        for node in result.data:
            referrer = node.referrer or "-"
            print(f"  L{node.level}  {node.wallet}  {node.name}  (referrer: {referrer})")
    elif result.success and result.data is not None:
        node = result.data
        print(f"  Level:    {node.level}")
        print(f"  Referrer: {node.referrer or '-'}")
        print(f"  Added:    {node.created_at}")

    await service.ledger.close()
    await service.sink.close()
    await service.reputation.close()
    return 0 if result.success else 1


def main():
    parser = argparse.ArgumentParser(
        description='Wallet Activity Monitor',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_monitor.py                          # Start monitor
  python scripts/run_monitor.py --dry-run                # Console alerts only
  python scripts/run_monitor.py --prefix fundA:          # Separate tracked set
  python scripts/run_monitor.py --list-wallets           # Show tracked wallets
        """
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print alerts to console instead of sending to Telegram'
    )

    parser.add_argument(
        '--disable-new-wallet',
        action='store_true',
        help='Do not auto-enroll wallets funded by tracked wallets'
    )

    parser.add_argument(
        '--prefix',
        help='Storage namespace (default: STORAGE_PREFIX or "wallet:")'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=LOG_LEVEL,
        help=f'Log level (default: {LOG_LEVEL})'
    )

    admin = parser.add_mutually_exclusive_group()
    admin.add_argument('--add-wallet', metavar='ADDRESS', help='Track a wallet as a root node')
    admin.add_argument('--remove-wallet', metavar='ADDRESS', help='Stop tracking a wallet')
    admin.add_argument('--rename-wallet', metavar='ADDRESS', help='Change the name of a tracked wallet')
    admin.add_argument('--query-wallet', metavar='ADDRESS', help='Show one tracked wallet')
    admin.add_argument('--list-wallets', action='store_true', help='List all tracked wallets')

    parser.add_argument('--name', default='', help='Wallet name for --add-wallet / --rename-wallet')

    args = parser.parse_args()

    # Setup logging
    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    is_admin = any([
        args.add_wallet, args.remove_wallet, args.rename_wallet,
        args.query_wallet, args.list_wallets,
    ])

    # Tracked-set commands never send messages
    overrides = {"dry_run": args.dry_run or is_admin}
    if args.disable_new_wallet:
        overrides["enable_new_wallet_detection"] = False
    if args.prefix:
        overrides["storage_prefix"] = args.prefix

    try:
        config = Config.from_env(**overrides)
        if not is_admin:
            config.validate()
    except ConfigurationError as e:
        print(f"\nConfiguration error: {e}")
        print("Set the variable in the environment or .env, or use --dry-run for console output.")
        sys.exit(1)

    try:
        service = MonitorService(config)
    except (StorageError, ValueError) as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)

    if is_admin:
        sys.exit(asyncio.run(run_admin(service, args)))

    # Print configuration
    print("\n" + "=" * 60)
    print("WALLET ACTIVITY MONITOR")
    print("=" * 60)
    print(f"RPC:            {config.rpc_url}")
    print(f"Scan interval:  {config.scan_interval_ms} ms")
    print(f"Batch size:     {config.batch_size} blocks")
    print(f"Value window:   {config.min_value} - {config.max_value} {config.native_symbol}")
    print(f"New wallets:    {'enabled' if config.enable_new_wallet_detection else 'disabled'}")
    print(f"Namespace:      {config.storage_prefix}")
    print(f"Dry run:        {config.dry_run}")
    print(f"Log level:      {args.log_level}")
    print("=" * 60)
    print("\nStarting monitor service...")
    print("Press Ctrl+C to stop\n")

    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        print("\n\nMonitor stopped by user")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Monitor service error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
