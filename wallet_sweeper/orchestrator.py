"""
Sweep Orchestrator

Drives the sweep on a fixed cadence:

    for each account (skipping dormant ones):
        for each chain, in registry order:
            CHECKING -> EVALUATING -> TRANSFERRING -> DONE
            (wrapped in the retry policy; FAILED after the last attempt)
        mark the account dormant if every chain came back empty

Nothing raised below the cycle boundary stops the scheduler.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Awaitable, Dict, List, Optional, Set

from loguru import logger

from .accounts import SweepAccount
from .balance_inspector import BalanceInspector, BalanceSnapshot
from .connection_cache import ConnectionCache
from .exceptions import InsufficientAfterFeeError, RetryExhaustedError, SubmissionError
from .journal import SubmissionJournal
from .network_registry import NATIVE_DECIMALS, ChainConfig, NetworkRegistry
from .retry import RetryPolicy
from .sweep_policy import REASON_INSUFFICIENT_AFTER_FEE, SweepPolicy
from .transfer_executor import TransferExecutor, TransferOutcome
from .units import format_units


class UnitState(Enum):
    PENDING = 'pending'
    CHECKING = 'checking'
    EVALUATING = 'evaluating'
    TRANSFERRING = 'transferring'
    DONE = 'done'
    FAILED = 'failed'


@dataclass
class UnitReport:
    """What happened to one (account, chain) unit in one cycle"""
    account: str
    chain_name: str
    state: UnitState = UnitState.PENDING
    attempts: int = 0
    snapshot: Optional[BalanceSnapshot] = None
    outcomes: List[TransferOutcome] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.state == UnitState.DONE and self.snapshot is not None and self.snapshot.is_empty


@dataclass
class CycleReport:
    """Summary of one full pass over accounts x chains"""
    cycle: int
    started_at: datetime
    units: List[UnitReport] = field(default_factory=list)
    skipped_accounts: List[str] = field(default_factory=list)
    newly_dormant: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed_units(self) -> List[UnitReport]:
        return [u for u in self.units if u.state == UnitState.FAILED]

    @property
    def transfers(self) -> List[TransferOutcome]:
        return [o for u in self.units for o in u.outcomes]


class SweepOrchestrator:
    """
    Sequential sweep scheduler

    Owns the per-run mutable state (connection cache, dormant set) and hands
    the cache to its collaborators.
    """

    DEFAULT_INTERVAL_SECONDS = 10.0

    def __init__(
        self,
        registry: NetworkRegistry,
        accounts: List[SweepAccount],
        executor: TransferExecutor,
        connections: Optional[ConnectionCache] = None,
        inspector: Optional[BalanceInspector] = None,
        policy: Optional[SweepPolicy] = None,
        retry_policy: Optional[RetryPolicy] = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        dormant_recheck_cycles: int = 0,
        journal: Optional[SubmissionJournal] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep
    ):
        """
        Initialize orchestrator

        Args:
            registry: Chains to sweep, in check order
            accounts: Accounts to sweep
            executor: Transfer executor (shares the connection cache)
            connections: Connection cache (default: the executor's)
            inspector: Balance inspector
            policy: Sweep policy
            retry_policy: Retry policy around each (account, chain) unit
            interval_seconds: Time between cycle starts
            dormant_recheck_cycles: Clear the dormant set every K cycles (0 = never)
            journal: Submission journal, closed on shutdown
            clock: Monotonic clock (default: the running loop's time)
            sleep: Sleep coroutine used between cycles
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if dormant_recheck_cycles < 0:
            raise ValueError("dormant_recheck_cycles must be >= 0")

        self.registry = registry
        self.accounts = list(accounts)
        self.executor = executor
        self.connections = connections or executor.connections
        self.inspector = inspector or BalanceInspector()
        self.policy = policy or SweepPolicy()
        self.retry_policy = retry_policy or RetryPolicy()
        self.interval_seconds = interval_seconds
        self.dormant_recheck_cycles = dormant_recheck_cycles
        self.journal = journal
        self._clock = clock
        self._sleep = sleep

        self.dormant: Set[str] = set()
        self.cycle_count = 0
        self.last_report: Optional[CycleReport] = None
        self._stopping = False

        logger.info("Sweep orchestrator initialized")
        logger.info(f"  Accounts: {len(self.accounts)}")
        logger.info(f"  Networks: {', '.join(chain.name for chain in self.registry)}")
        logger.info(f"  Interval: {interval_seconds}s")
        logger.info(f"  Retry: {self.retry_policy.max_attempts} attempts per unit")
        logger.info(
            f"  Dormant recheck: every {dormant_recheck_cycles} cycles"
            if dormant_recheck_cycles else "  Dormant recheck: disabled"
        )

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    def stop(self):
        """Ask run_forever to exit after the current cycle"""
        self._stopping = True

    async def run_forever(self, max_cycles: Optional[int] = None):
        """
        Run cycles at a fixed interval between cycle starts

        Args:
            max_cycles: Stop after this many cycles (None = until stop())
        """
        logger.info(f"Monitoring wallets every {self.interval_seconds}s")
        completed = 0

        while not self._stopping:
            started = self._now()

            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # run_cycle already guards itself; this is the last line
                logger.exception(f"✗ Sweep cycle crashed: {e}")

            completed += 1
            if max_cycles is not None and completed >= max_cycles:
                break
            if self._stopping:
                break

            remaining = self.interval_seconds - (self._now() - started)
            if remaining > 0:
                await self._sleep(remaining)
            else:
                logger.warning(f"⚠ Cycle overran the interval by {-remaining:.1f}s, starting next cycle now")

        logger.info(f"Scheduler stopped after {completed} cycle(s)")

    async def run_cycle(self) -> CycleReport:
        """One pass over every account and chain. Never raises."""
        self.cycle_count += 1
        report = CycleReport(cycle=self.cycle_count, started_at=datetime.now(timezone.utc))
        self.last_report = report

        try:
            self._maybe_reset_dormant()
            logger.debug(f"Cycle {report.cycle} started ({len(self.dormant)} dormant accounts)")

            for account in self.accounts:
                if account.address in self.dormant:
                    report.skipped_accounts.append(account.address)
                    continue

                try:
                    units = await self._sweep_account(account)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.exception(f"✗ Unexpected error sweeping {account.address}: {e}")
                    continue

                report.units.extend(units)
                if units and all(unit.is_empty for unit in units):
                    self.dormant.add(account.address)
                    report.newly_dormant.append(account.address)
                    logger.info(f"Wallet {account.address} is empty on every network, marking dormant")

        except asyncio.CancelledError:
            raise
        except Exception as e:
            report.error = str(e)
            logger.exception(f"✗ Sweep cycle {report.cycle} failed: {e}")

        logger.info(
            f"Cycle {report.cycle} finished: {len(report.units)} units, "
            f"{len(report.transfers)} transfers, {len(report.failed_units)} failed, "
            f"{len(report.skipped_accounts)} dormant skipped"
        )
        return report

    def _maybe_reset_dormant(self):
        k = self.dormant_recheck_cycles
        if k and self.dormant and self.cycle_count > 1 and (self.cycle_count - 1) % k == 0:
            logger.info(f"Rechecking {len(self.dormant)} dormant wallet(s)")
            self.dormant.clear()

    async def _sweep_account(self, account: SweepAccount) -> List[UnitReport]:
        units = []
        for chain in self.registry:
            unit = UnitReport(account=account.address, chain_name=chain.name)
            units.append(unit)

            try:
                await self.retry_policy.run(
                    self._sweep_unit, account, chain, unit,
                    description=f"sweep {account.address} on {chain.name}"
                )
                unit.state = UnitState.DONE
            except asyncio.CancelledError:
                raise
            except RetryExhaustedError as e:
                unit.state = UnitState.FAILED
                unit.error = str(e.last_error)
                logger.error(
                    f"✗ Giving up on wallet {account.address} on {chain.name} "
                    f"after {e.attempts} attempts: {e.last_error}"
                )
            except Exception as e:
                unit.state = UnitState.FAILED
                unit.error = str(e)
                logger.error(f"✗ Error checking balance for wallet {account.address} on {chain.name}: {e}")
        return units

    async def _sweep_unit(self, account: SweepAccount, chain: ChainConfig, unit: UnitReport):
        """Check balances and sweep whatever qualifies on one chain"""
        unit.attempts += 1
        unit.state = UnitState.CHECKING

        connection = await self.connections.get_connection(chain)
        snapshot = await self.inspector.inspect(connection, account.address)
        unit.snapshot = snapshot

        unit.state = UnitState.EVALUATING
        tokens_sent = False

        for symbol, balance in snapshot.tokens.items():
            token = chain.get_token(symbol)
            decision = self.policy.evaluate_token(balance, token.min_balance)
            if not decision.transfer:
                if balance:
                    logger.info(
                        f"Wallet {account.address} {symbol} balance is below threshold on {chain.name}"
                    )
                continue

            logger.info(
                f"Wallet {account.address} has balance: {format_units(balance, token.decimals)} "
                f"{symbol} on {chain.name}"
            )
            unit.state = UnitState.TRANSFERRING
            outcome = await self.executor.send_token(account, chain, symbol, decision.amount)
            self._record(unit, outcome)
            tokens_sent = tokens_sent or outcome.submitted

        native = snapshot.native
        if tokens_sent:
            # token gas came out of the native balance
            native = await self.inspector.get_native_balance(connection, account.address)

        if native < chain.min_native_balance:
            logger.info(f"Wallet {account.address} balance is below threshold on {chain.name}")
            return

        logger.info(
            f"Wallet {account.address} has balance: {format_units(native, NATIVE_DECIMALS)} "
            f"{chain.native_symbol} on {chain.name}"
        )

        gas_price = await self.executor.quote_gas_price(connection)
        fee = self.policy.estimate_native_fee(gas_price, chain.native_gas_limit)
        decision = self.policy.evaluate_native(native, chain.min_native_balance, fee)

        if not decision.transfer:
            if decision.reason == REASON_INSUFFICIENT_AFTER_FEE:
                logger.info(
                    f"Wallet {account.address} on {chain.name}: balance does not cover the "
                    f"{format_units(fee, NATIVE_DECIMALS)} {chain.native_symbol} fee reserve, skipping"
                )
            return

        unit.state = UnitState.TRANSFERRING
        try:
            outcome = await self.executor.send_native(account, chain, decision.amount, gas_price=gas_price)
        except InsufficientAfterFeeError as e:
            logger.info(f"Skipping native sweep: {e}")
            return
        self._record(unit, outcome)

    def _record(self, unit: UnitReport, outcome: TransferOutcome):
        """
        Keep the outcome; a transfer the node never accepted fails the attempt
        so the retry re-reads balances and fees before trying again.
        """
        unit.outcomes.append(outcome)
        if not outcome.submitted:
            raise SubmissionError(f"{outcome.asset} transfer on {outcome.chain_name} rejected: {outcome.reason}")


async def graceful_shutdown(orchestrator: SweepOrchestrator, timeout: float = 15.0):
    """
    Stop the scheduler and release connections and the journal

    Args:
        orchestrator: Orchestrator to shut down
        timeout: Maximum time to wait for connections to close (seconds)
    """
    logger.info("Starting graceful shutdown...")
    orchestrator.stop()

    try:
        await asyncio.wait_for(orchestrator.connections.close(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Shutdown timeout after {timeout}s, some connections were not closed")
    except Exception as e:
        logger.debug(f"Error closing connections: {e}")

    if orchestrator.journal is not None:
        orchestrator.journal.close()

    logger.info("✓ Graceful shutdown complete")
