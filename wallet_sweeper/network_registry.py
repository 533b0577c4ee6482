"""
Network Registry

Static description of every chain the sweeper watches: chain id, endpoints,
native currency and the ERC-20 tokens of interest. Built and validated once at
startup; read-only afterwards.
"""

import os
from dataclasses import dataclass, field
from string import Template
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from loguru import logger
from web3 import Web3

from .exceptions import ConfigurationError
from .units import to_smallest_unit

NATIVE_DECIMALS = 18
NATIVE_TRANSFER_GAS = 21000

# Used when no config file lists networks: three EVM networks on Infura
DEFAULT_NETWORKS: List[Dict] = [
    {
        'name': 'ethereum',
        'chain_id': 1,
        'native_symbol': 'ETH',
        'endpoints': ['https://mainnet.infura.io/v3/${INFURA_PROJECT_ID}'],
        'min_native_balance': '0.001',
        'tokens': {
            'USDT': {'address': '0xdAC17F958D2ee523a2206206994597C13D831ec7', 'decimals': 6, 'min_balance': '40'},
            'USDC': {'address': '0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48', 'decimals': 6, 'min_balance': '40'},
        },
    },
    {
        'name': 'bnb',
        'chain_id': 56,
        'native_symbol': 'BNB',
        'endpoints': ['https://bsc-mainnet.infura.io/v3/${INFURA_PROJECT_ID}'],
        'min_native_balance': '0.001',
        'tokens': {
            'USDT': {'address': '0x55d398326f99059fF775485246999027B3197955', 'decimals': 18, 'min_balance': '10'},
            'USDC': {'address': '0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d', 'decimals': 18, 'min_balance': '10'},
        },
    },
    {
        'name': 'polygon',
        'chain_id': 137,
        'native_symbol': 'POL',
        'endpoints': ['https://polygon-mainnet.infura.io/v3/${INFURA_PROJECT_ID}'],
        'min_native_balance': '0.001',
        'tokens': {
            'USDT': {'address': '0xc2132D05D31c914a87C6611C10748AEb04B58e8F', 'decimals': 6, 'min_balance': '10'},
            'USDC': {'address': '0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359', 'decimals': 6, 'min_balance': '10'},
        },
    },
]


@dataclass(frozen=True)
class TokenConfig:
    """ERC-20 token watched on one chain"""
    symbol: str
    contract_address: str
    decimals: int
    min_balance: int = 0  # smallest units

    def __post_init__(self):
        if not self.symbol:
            raise ConfigurationError("Token symbol is required")
        if not Web3.is_address(self.contract_address):
            raise ConfigurationError(
                f"Token {self.symbol}: invalid contract address {self.contract_address!r}"
            )
        # frozen dataclass, so normalize through object.__setattr__
        object.__setattr__(self, 'contract_address', Web3.to_checksum_address(self.contract_address))
        if not isinstance(self.decimals, int) or isinstance(self.decimals, bool) or not 0 <= self.decimals <= 77:
            raise ConfigurationError(f"Token {self.symbol}: decimals must be an integer in 0..77")
        if not isinstance(self.min_balance, int) or self.min_balance < 0:
            raise ConfigurationError(f"Token {self.symbol}: min_balance must be a non-negative integer")


@dataclass(frozen=True)
class ChainConfig:
    """Static description of one chain"""
    chain_id: int
    name: str
    endpoints: Tuple[str, ...]
    tokens: Mapping[str, TokenConfig] = field(default_factory=dict)
    native_symbol: str = 'ETH'
    min_native_balance: int = 0  # smallest units
    native_gas_limit: int = NATIVE_TRANSFER_GAS

    def __post_init__(self):
        if not isinstance(self.chain_id, int) or isinstance(self.chain_id, bool) or self.chain_id <= 0:
            raise ConfigurationError(f"Chain {self.name!r}: chain_id must be a positive integer")
        if not self.name:
            raise ConfigurationError(f"Chain {self.chain_id}: name is required")

        endpoints = tuple(self.endpoints or ())
        if not endpoints or not all(isinstance(url, str) and url for url in endpoints):
            raise ConfigurationError(f"Chain {self.name}: at least one endpoint URL is required")
        object.__setattr__(self, 'endpoints', endpoints)

        for symbol, token in self.tokens.items():
            if token.symbol != symbol:
                raise ConfigurationError(
                    f"Chain {self.name}: token key {symbol!r} does not match symbol {token.symbol!r}"
                )

        if not isinstance(self.min_native_balance, int) or self.min_native_balance < 0:
            raise ConfigurationError(f"Chain {self.name}: min_native_balance must be a non-negative integer")
        if not isinstance(self.native_gas_limit, int) or self.native_gas_limit < NATIVE_TRANSFER_GAS:
            raise ConfigurationError(
                f"Chain {self.name}: native_gas_limit must be an integer >= {NATIVE_TRANSFER_GAS}"
            )

    def get_token(self, symbol: str) -> Optional[TokenConfig]:
        return self.tokens.get(symbol)

    def __repr__(self):
        return f"ChainConfig({self.name}/{self.chain_id}: {len(self.tokens)} tokens)"


class NetworkRegistry:
    """
    Ordered, validated set of chains

    Iteration follows declaration order, which is also the order the
    orchestrator checks chains for each account.
    """

    def __init__(self, chains: List[ChainConfig]):
        self._chains: Dict[int, ChainConfig] = {}
        names = set()

        for chain in chains:
            if chain.chain_id in self._chains:
                raise ConfigurationError(f"Duplicate chain id {chain.chain_id} ({chain.name})")
            if chain.name in names:
                raise ConfigurationError(f"Duplicate chain name {chain.name!r}")
            self._chains[chain.chain_id] = chain
            names.add(chain.name)

        if not self._chains:
            raise ConfigurationError("No networks configured")

    def __iter__(self) -> Iterator[ChainConfig]:
        return iter(self._chains.values())

    def __len__(self) -> int:
        return len(self._chains)

    def get(self, chain_id: int) -> Optional[ChainConfig]:
        return self._chains.get(chain_id)

    def by_name(self, name: str) -> Optional[ChainConfig]:
        for chain in self._chains.values():
            if chain.name == name:
                return chain
        return None

    @classmethod
    def from_config(
        cls,
        networks: List[Mapping],
        env: Optional[Mapping[str, str]] = None
    ) -> 'NetworkRegistry':
        """
        Build registry from plain config data (as loaded from YAML)

        Args:
            networks: List of network mappings
            env: Variables for ${VAR} placeholders in endpoint URLs (default: os.environ)

        Returns:
            NetworkRegistry

        Raises:
            ConfigurationError: Missing fields, bad values or unset variables
        """
        if env is None:
            env = os.environ

        if not isinstance(networks, list):
            raise ConfigurationError("'networks' must be a list")

        chains = [_parse_chain(entry, env) for entry in networks]
        registry = cls(chains)

        logger.info(
            f"Network registry loaded: {', '.join(f'{c.name}({c.chain_id})' for c in registry)}"
        )
        return registry


def _require(entry: Mapping, key: str, where: str):
    if key not in entry or entry[key] is None:
        raise ConfigurationError(f"{where}: missing required field '{key}'")
    return entry[key]


def _expand_endpoint(url: str, env: Mapping[str, str], where: str) -> str:
    try:
        return Template(url).substitute(env)
    except KeyError as e:
        raise ConfigurationError(f"{where}: endpoint uses unset variable {e.args[0]}")
    except ValueError as e:
        raise ConfigurationError(f"{where}: malformed endpoint template {url!r}: {e}")


def _amount(value, decimals: int, where: str) -> int:
    try:
        return to_smallest_unit(value, decimals)
    except ValueError as e:
        raise ConfigurationError(f"{where}: {e}")


def _parse_chain(entry: Mapping, env: Mapping[str, str]) -> ChainConfig:
    if not isinstance(entry, Mapping):
        raise ConfigurationError(f"Network entry must be a mapping, got {type(entry).__name__}")

    name = str(_require(entry, 'name', 'network'))
    where = f"network {name}"

    raw_endpoints = _require(entry, 'endpoints', where)
    if isinstance(raw_endpoints, str):
        raw_endpoints = [raw_endpoints]
    endpoints = tuple(_expand_endpoint(str(url), env, where) for url in raw_endpoints)

    tokens = {}
    for symbol, token_entry in (entry.get('tokens') or {}).items():
        token_where = f"{where} token {symbol}"
        if not isinstance(token_entry, Mapping):
            raise ConfigurationError(f"{token_where}: must be a mapping")
        decimals = _require(token_entry, 'decimals', token_where)
        if not isinstance(decimals, int) or isinstance(decimals, bool):
            raise ConfigurationError(f"{token_where}: decimals must be an integer")
        tokens[symbol] = TokenConfig(
            symbol=symbol,
            contract_address=str(_require(token_entry, 'address', token_where)),
            decimals=decimals,
            min_balance=_amount(token_entry.get('min_balance', 0), decimals, token_where),
        )

    return ChainConfig(
        chain_id=_require(entry, 'chain_id', where),
        name=name,
        endpoints=endpoints,
        tokens=tokens,
        native_symbol=entry.get('native_symbol', 'ETH'),
        min_native_balance=_amount(entry.get('min_native_balance', 0), NATIVE_DECIMALS, where),
        native_gas_limit=entry.get('native_gas_limit', NATIVE_TRANSFER_GAS),
    )
