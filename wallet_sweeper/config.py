"""
Sweeper Configuration

Secrets come from the environment (.env via python-dotenv). Everything else
comes from an optional YAML file (sweep_config.yaml). Both are read once at
startup, and any problem raises ConfigurationError before the scheduler
starts.

Environment:
- PRIVATE_KEYS: comma separated private keys of the wallets to sweep
- DESTINATION_ADDRESS (or EXCHANGE_WALLET): where every sweep goes
- INFURA_PROJECT_ID: substituted into ${INFURA_PROJECT_ID} endpoint placeholders

YAML (all optional):
    interval_seconds: 10
    dormant_recheck_cycles: 360
    confirmation_timeout: 600
    journal_path: sweep_journal.db
    retry:
      max_attempts: 3
      delay_seconds: 5
      backoff: constant        # or exponential
    logging:
      level: INFO
      file: transactions.log
    networks: [...]            # see network_registry.DEFAULT_NETWORKS
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

from .exceptions import ConfigurationError
from .network_registry import DEFAULT_NETWORKS, NetworkRegistry
from .retry import RetryPolicy, constant_backoff, exponential_backoff

DEFAULT_CONFIG_PATH = "sweep_config.yaml"


@dataclass
class SweeperSettings:
    """Validated startup settings"""
    private_keys: List[str] = field(repr=False)
    destination_address: str
    registry: NetworkRegistry
    interval_seconds: float = 10.0
    max_attempts: int = 3
    retry_delay_seconds: float = 5.0
    retry_backoff: str = 'constant'
    dormant_recheck_cycles: int = 360
    confirmation_timeout: float = 600.0
    journal_path: Optional[str] = "sweep_journal.db"
    log_level: str = "INFO"
    log_file: Optional[str] = "transactions.log"

    def build_retry_policy(self) -> RetryPolicy:
        if self.retry_backoff == 'exponential':
            backoff = exponential_backoff(base=self.retry_delay_seconds)
        else:
            backoff = constant_backoff(self.retry_delay_seconds)
        return RetryPolicy(max_attempts=self.max_attempts, backoff=backoff)


def _load_yaml(config_path: Optional[str]) -> Dict:
    """Read the YAML file; a missing default file just means defaults"""
    path = Path(config_path or DEFAULT_CONFIG_PATH)

    if not path.exists():
        if config_path:
            raise ConfigurationError(f"Config file not found: {path}")
        logger.info(f"No {path} found, using built-in network defaults")
        return {}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")

    logger.info(f"Loaded config from {path}")
    return data


def _number(data: Mapping, key: str, default, cast, minimum):
    value = data.get(key, default)
    if value is None:
        return None
    try:
        value = cast(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{key}' must be a number, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"'{key}' must be >= {minimum}, got {value}")
    return value


def load_settings(
    config_path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None
) -> SweeperSettings:
    """
    Load and validate all startup settings

    Args:
        config_path: YAML file (default: ./sweep_config.yaml if present)
        env: Environment mapping (default: os.environ after load_dotenv())

    Returns:
        SweeperSettings

    Raises:
        ConfigurationError: Missing credentials or invalid config
    """
    if env is None:
        load_dotenv()
        env = os.environ

    data = _load_yaml(config_path)

    raw_keys = env.get('PRIVATE_KEYS', '')
    private_keys = [key.strip() for key in raw_keys.split(',') if key.strip()]
    if not private_keys:
        raise ConfigurationError("PRIVATE_KEYS is not set")

    destination = env.get('DESTINATION_ADDRESS') or env.get('EXCHANGE_WALLET')
    if not destination:
        raise ConfigurationError("DESTINATION_ADDRESS (or EXCHANGE_WALLET) is not set")

    registry = NetworkRegistry.from_config(data.get('networks', DEFAULT_NETWORKS), env)

    retry = data.get('retry') or {}
    log_config = data.get('logging') or {}
    if not isinstance(retry, Mapping) or not isinstance(log_config, Mapping):
        raise ConfigurationError("'retry' and 'logging' must be mappings")

    backoff = str(retry.get('backoff', 'constant'))
    if backoff not in ('constant', 'exponential'):
        raise ConfigurationError(f"Unknown retry backoff {backoff!r}")

    return SweeperSettings(
        private_keys=private_keys,
        destination_address=destination.strip(),
        registry=registry,
        interval_seconds=_number(data, 'interval_seconds', 10.0, float, 0.1),
        max_attempts=_number(retry, 'max_attempts', 3, int, 1),
        retry_delay_seconds=_number(retry, 'delay_seconds', 5.0, float, 0),
        retry_backoff=backoff,
        dormant_recheck_cycles=_number(data, 'dormant_recheck_cycles', 360, int, 0),
        confirmation_timeout=_number(data, 'confirmation_timeout', 600.0, float, 1),
        journal_path=data.get('journal_path', "sweep_journal.db"),
        log_level=str(log_config.get('level', 'INFO')).upper(),
        log_file=log_config.get('file', "transactions.log"),
    )
