"""
Wallet Sweeper

Watches a fixed set of wallets across EVM networks and sweeps every balance
above its threshold to one destination address, net of gas.

Components:
- network_registry: Chains, endpoints and token catalogue
- connection_cache: One web3 connection per chain
- balance_inspector: Native and ERC-20 balance reads
- sweep_policy: Threshold and fee-reserve decisions
- transfer_executor: Sign, submit and confirm transfers
- orchestrator: Fixed-cadence scheduler with retry and dormancy
- journal: SQLite submission journal (duplicate-send guard)
- config: YAML + .env settings

Failure isolation:
1. Per token - contract errors skip the token
2. Per chain - retry policy, then the unit is logged as failed
3. Per account - unexpected errors never reach other accounts
4. Per cycle - the scheduler always schedules the next cycle
"""

from .accounts import SweepAccount, load_accounts
from .balance_inspector import BalanceInspector, BalanceSnapshot
from .config import SweeperSettings, load_settings
from .connection_cache import Connection, ConnectionCache, connect_web3
from .exceptions import (
    ConfigurationError,
    ContractError,
    InsufficientAfterFeeError,
    NetworkError,
    RetryExhaustedError,
    SubmissionError,
    SweeperError,
)
from .journal import SubmissionJournal, SubmissionRecord
from .network_registry import ChainConfig, NetworkRegistry, TokenConfig
from .orchestrator import CycleReport, SweepOrchestrator, UnitReport, UnitState, graceful_shutdown
from .retry import RetryPolicy, constant_backoff, exponential_backoff, retrying
from .sweep_policy import SweepDecision, SweepPolicy
from .transfer_executor import TransferExecutor, TransferOutcome

__version__ = "0.1.0"

__all__ = [
    # Registry
    'ChainConfig',
    'TokenConfig',
    'NetworkRegistry',

    # Connections and reads
    'Connection',
    'ConnectionCache',
    'connect_web3',
    'BalanceInspector',
    'BalanceSnapshot',

    # Decisions and transfers
    'SweepPolicy',
    'SweepDecision',
    'TransferExecutor',
    'TransferOutcome',

    # Scheduling
    'SweepOrchestrator',
    'CycleReport',
    'UnitReport',
    'UnitState',
    'RetryPolicy',
    'constant_backoff',
    'exponential_backoff',
    'retrying',
    'graceful_shutdown',

    # Accounts, config, persistence
    'SweepAccount',
    'load_accounts',
    'SweeperSettings',
    'load_settings',
    'SubmissionJournal',
    'SubmissionRecord',

    # Errors
    'SweeperError',
    'ConfigurationError',
    'NetworkError',
    'ContractError',
    'InsufficientAfterFeeError',
    'SubmissionError',
    'RetryExhaustedError',
]
