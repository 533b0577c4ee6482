"""
Balance Inspector

Reads native and ERC-20 balances for one account on one chain. Read-only.
Failures are mapped onto NetworkError / ContractError so callers can isolate
them per token and per chain.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Union

from loguru import logger
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, InvalidAddress

from .connection_cache import Connection
from .exceptions import ContractError, NetworkError
from .network_registry import TokenConfig

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [{"name": "_to", "type": "address"}, {"name": "_value", "type": "uint256"}],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# Contract-side failures; anything else from the client is treated as transport
CONTRACT_FAILURES = (BadFunctionCallOutput, ContractLogicError, InvalidAddress)


@dataclass
class BalanceSnapshot:
    """Balances of one account on one chain at one instant"""
    address: str
    chain_name: str
    native: int
    tokens: Dict[str, int] = field(default_factory=dict)
    failed_tokens: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """Everything zero and nothing left unread"""
        return self.native == 0 and not self.failed_tokens and all(v == 0 for v in self.tokens.values())


class BalanceInspector:
    """Query balances through a cached Connection"""

    async def get_native_balance(self, connection: Connection, address: str) -> int:
        """
        Native balance in smallest units

        Raises:
            NetworkError: RPC failure or timeout
        """
        try:
            balance = await connection.w3.eth.get_balance(address)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise NetworkError(f"{connection.chain.name}: native balance query failed: {e}") from e
        return int(balance)

    async def get_token_balance(
        self,
        connection: Connection,
        token: Union[TokenConfig, str],
        address: str
    ) -> int:
        """
        ERC-20 balanceOf in smallest units

        Args:
            connection: Chain connection
            token: TokenConfig, or a symbol registered on the connection's chain
            address: Account address

        Raises:
            ContractError: Unregistered symbol, invalid contract, or undecodable result
            NetworkError: RPC failure or timeout
        """
        token = resolve_token(connection, token)

        if not Web3.is_address(token.contract_address):
            raise ContractError(f"{connection.chain.name}/{token.symbol}: invalid contract address")

        try:
            contract = connection.w3.eth.contract(
                address=Web3.to_checksum_address(token.contract_address),
                abi=ERC20_ABI
            )
            balance = await contract.functions.balanceOf(address).call()
        except asyncio.CancelledError:
            raise
        except CONTRACT_FAILURES as e:
            raise ContractError(f"{connection.chain.name}/{token.symbol}: balanceOf failed: {e}") from e
        except Exception as e:
            raise NetworkError(f"{connection.chain.name}/{token.symbol}: balance query failed: {e}") from e

        return int(balance)

    async def inspect(self, connection: Connection, address: str) -> BalanceSnapshot:
        """
        Read native balance and every registered token

        A failing token never hides the others: contract errors skip the token,
        network errors mark it as failed. A failed token is not retried within
        the cycle; it keeps the account out of the dormant set, so the next
        cycle reads it again while the readable balances are swept now.

        Raises:
            NetworkError: Native balance could not be read
        """
        chain = connection.chain
        native = await self.get_native_balance(connection, address)
        snapshot = BalanceSnapshot(address=address, chain_name=chain.name, native=native)

        for symbol, token in chain.tokens.items():
            try:
                snapshot.tokens[symbol] = await self.get_token_balance(connection, token, address)
            except ContractError as e:
                logger.warning(f"✗ Skipping token {symbol} on {chain.name}: {e}")
            except NetworkError as e:
                logger.warning(f"✗ Could not read {symbol} on {chain.name} for {address}: {e}")
                snapshot.failed_tokens.append(symbol)

        return snapshot


def resolve_token(connection: Connection, token: Union[TokenConfig, str]) -> TokenConfig:
    if isinstance(token, TokenConfig):
        return token
    resolved = connection.chain.get_token(token)
    if resolved is None:
        raise ContractError(f"Token {token!r} is not registered on {connection.chain.name}")
    return resolved
