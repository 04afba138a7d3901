"""
Triangular arbitrage scanner CLI.

Loads the configuration, wires the scanner components around one shared
context and runs the scheduler until interrupted.

Usage:
    triangular-scanner
    triangular-scanner --config configs/scanner_bsc.yaml
    triangular-scanner --config configs/scanner_bsc.yaml --once --dry-run
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from . import logging_config
from .adapters.v2 import V2ChainClient
from .config import ScannerConfig, load_config
from .context import ScannerContext
from .dispatch import Dispatcher
from .exceptions import ConfigurationError
from .finder import OpportunityFinder
from .history import OpportunityHistory
from .job_queue import BullMQJobQueue, InMemoryJobQueue, JobQueue
from .pool_store import PoolStateStore
from .sampling import SamplingStrategy
from .scheduler import Scheduler
from .token_cache import TokenMetadataCache
from .version import get_version


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Triangular arbitrage scanner for V2 style pools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with the bundled BSC config
  triangular-scanner --config configs/scanner_bsc.yaml

  # One load and scan, jobs kept in memory
  triangular-scanner --config configs/scanner_bsc.yaml --once --dry-run
        """,
    )
    parser.add_argument("--config", default=None, help="Path to config YAML file")
    parser.add_argument(
        "--min-profit",
        default=None,
        help="Minimum profit threshold as a fraction (e.g. 0.01 for 1%%)",
    )
    parser.add_argument(
        "--once", action="store_true", help="Load, scan once and exit"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Keep jobs in memory instead of sending them to the BullMQ queue",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {get_version()}"
    )
    return parser.parse_args(argv)


def build_queue(config: ScannerConfig, dry_run: bool) -> JobQueue:
    if dry_run or not config.dispatch.enabled:
        return InMemoryJobQueue()
    return BullMQJobQueue.from_url(config.dispatch.redis_url, config.dispatch.queue_name)


def build_scheduler(
    config: ScannerConfig, client: V2ChainClient, queue: JobQueue
) -> Scheduler:
    """Assemble every component around one ScannerContext."""
    context = ScannerContext()
    history = OpportunityHistory.from_config(context, config)
    token_cache = TokenMetadataCache(context, client)
    store = PoolStateStore(context, client, token_cache, config)
    sampling = SamplingStrategy(context, config)
    finder = OpportunityFinder(context, client, config, history=history)
    dispatcher = Dispatcher(context, config, queue)
    return Scheduler(
        context, config, client, store, sampling, finder, dispatcher, history
    )


async def _run(config: ScannerConfig, once: bool, dry_run: bool) -> None:
    network = config.network
    client = V2ChainClient.connect(
        network.rpc_url, network.factory_address, network.router_address
    )
    queue = build_queue(config, dry_run)
    scheduler = build_scheduler(config, client, queue)
    try:
        await scheduler.run(once=once)
    finally:
        scheduler.stop()
        await queue.close()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)

    overrides = {}
    if args.min_profit is not None:
        overrides["profit.min_profit_threshold"] = args.min_profit

    try:
        config = load_config(args.config, overrides=overrides)
    except ConfigurationError as e:
        print(f"Config error: {e}", file=sys.stderr)
        for error in e.details.get("errors", []):
            print(f"  {'.'.join(str(p) for p in error['loc'])}: {error['msg']}", file=sys.stderr)
        return 1

    output = config.output
    logging_config.setup_for_debug_level(output.debug_level, output.debug_log_path)

    try:
        asyncio.run(_run(config, args.once, args.dry_run))
    except KeyboardInterrupt:
        print("\nStopped by user")
        return 0
    return 0


if __name__ == "__main__":
    sys.exit(main())
