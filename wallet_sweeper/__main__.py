"""
Sweeper daemon

Usage:
    python -m wallet_sweeper [--config sweep_config.yaml] [--once]
"""

import argparse
import asyncio
import signal
import sys

from loguru import logger

from .accounts import load_accounts
from .connection_cache import ConnectionCache
from .config import load_settings
from .exceptions import ConfigurationError
from .journal import SubmissionJournal
from .logging_setup import configure_logging
from .network_registry import NATIVE_DECIMALS
from .orchestrator import SweepOrchestrator, graceful_shutdown
from .transfer_executor import TransferExecutor
from .units import format_units


def build_orchestrator(settings) -> SweepOrchestrator:
    """Wire every component from validated settings"""
    accounts = load_accounts(settings.private_keys)
    connections = ConnectionCache()
    journal = SubmissionJournal(settings.journal_path) if settings.journal_path else None

    executor = TransferExecutor(
        connections,
        settings.destination_address,
        journal=journal,
        confirmation_timeout=settings.confirmation_timeout,
    )

    return SweepOrchestrator(
        registry=settings.registry,
        accounts=accounts,
        executor=executor,
        connections=connections,
        retry_policy=settings.build_retry_policy(),
        interval_seconds=settings.interval_seconds,
        dormant_recheck_cycles=settings.dormant_recheck_cycles,
        journal=journal,
    )


async def run(orchestrator: SweepOrchestrator, once: bool = False):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.stop)
        except (NotImplementedError, RuntimeError):
            # not available on Windows event loops
            pass

    try:
        await orchestrator.run_forever(max_cycles=1 if once else None)
    finally:
        await graceful_shutdown(orchestrator)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Sweep wallet balances to a destination address")
    parser.add_argument('--config', default=None, help="YAML config file (default: ./sweep_config.yaml)")
    parser.add_argument('--once', action='store_true', help="Run a single cycle and exit")
    args = parser.parse_args(argv)

    configure_logging()
    try:
        settings = load_settings(args.config)
        configure_logging(settings.log_level, settings.log_file)
        orchestrator = build_orchestrator(settings)
    except ConfigurationError as e:
        logger.error(f"✗ Configuration error: {e}")
        return 2

    for chain in settings.registry:
        logger.info(
            f"Monitoring {chain.name} with balance threshold: "
            f"{format_units(chain.min_native_balance, NATIVE_DECIMALS)} {chain.native_symbol}"
        )

    try:
        asyncio.run(run(orchestrator, once=args.once))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
