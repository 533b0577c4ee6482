"""
Transfer Executor

Builds, signs and submits sweep transfers (native value or ERC-20 transfer)
to the fixed destination, then waits for the receipt.

Process per transfer:
1. Quote gas price
2. Pick nonce (reusing an unresolved journal nonce if there is one)
3. Sign locally and submit
4. Journal the accepted submission
5. Wait for the receipt and resolve the journal entry

There is no retry in here. Anything that fails before the node accepts the
transaction comes back as an outcome without a tx hash; the scheduler decides
whether to run the unit again.
"""

import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Dict, Optional

from loguru import logger
from web3 import Web3
from web3.exceptions import TimeExhausted

from .accounts import SweepAccount
from .balance_inspector import ERC20_ABI
from .connection_cache import Connection, ConnectionCache
from .exceptions import ConfigurationError, ContractError, InsufficientAfterFeeError, NetworkError
from .journal import STATUS_CONFIRMED, STATUS_REVERTED, SubmissionJournal, SubmissionRecord
from .network_registry import NATIVE_DECIMALS, ChainConfig
from .units import format_units


@dataclass
class TransferOutcome:
    """Result of one transfer attempt"""
    success: bool
    account: str
    chain_name: str
    asset: str
    amount: int
    tx_hash: Optional[str] = None
    confirmed: bool = False
    reason: Optional[str] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.completed_at is None:
            self.completed_at = datetime.now(timezone.utc)

    @property
    def submitted(self) -> bool:
        """Accepted by the node (a hash exists)"""
        return self.tx_hash is not None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['amount'] = str(self.amount)
        data['completed_at'] = self.completed_at.isoformat()
        return data


class TransferExecutor:
    """
    Submit sweep transfers to the destination address

    Features:
    - Native and ERC-20 transfers, legacy gasPrice pricing
    - Local signing with the account's own key
    - Receipt wait with a configurable timeout
    - Nonce reuse guard backed by the submission journal
    """

    DEFAULT_CONFIRMATION_TIMEOUT = 600  # seconds
    RECEIPT_POLL_INTERVAL = 2.0

    def __init__(
        self,
        connections: ConnectionCache,
        destination: str,
        journal: Optional[SubmissionJournal] = None,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    ):
        """
        Initialize executor

        Args:
            connections: Shared connection cache
            destination: Address every sweep is sent to
            journal: Optional submission journal (enables the duplicate-send guard)
            confirmation_timeout: Seconds to wait for a receipt
        """
        if not destination or not Web3.is_address(destination):
            raise ConfigurationError(f"Invalid destination address: {destination!r}")

        self.connections = connections
        self.destination = Web3.to_checksum_address(destination)
        self.journal = journal
        self.confirmation_timeout = confirmation_timeout

    async def quote_gas_price(self, connection: Connection) -> int:
        """
        Current gas price in wei, never below 1

        Raises:
            NetworkError: Fee query failed
        """
        try:
            gas_price = await connection.w3.eth.gas_price
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise NetworkError(f"{connection.chain.name}: gas price query failed: {e}") from e
        return max(int(gas_price), 1)

    async def send_native(
        self,
        account: SweepAccount,
        chain: ChainConfig,
        amount: int,
        gas_price: Optional[int] = None
    ) -> TransferOutcome:
        """
        Send native currency to the destination

        Args:
            account: Sending account
            chain: Chain to send on
            amount: Amount in wei, already net of the fee reserve
            gas_price: Gas price the fee reserve was computed with (quoted if None)

        Returns:
            TransferOutcome

        Raises:
            InsufficientAfterFeeError: amount <= 0
        """
        if amount <= 0:
            raise InsufficientAfterFeeError(
                f"{chain.name}: nothing left to send for {account.address} after fee reserve"
            )

        asset = chain.native_symbol
        nonce = None
        try:
            connection = await self.connections.get_connection(chain)
            if gas_price is None:
                gas_price = await self.quote_gas_price(connection)
            nonce = await self._next_nonce(connection, account, asset)

            tx = {
                'chainId': chain.chain_id,
                'to': self.destination,
                'value': amount,
                'gas': chain.native_gas_limit,
                'gasPrice': gas_price,
                'nonce': nonce,
            }

            logger.info(
                f"Sending {format_units(amount, NATIVE_DECIMALS)} {asset} on {chain.name} "
                f"from {account.address} to {self.destination}"
            )
            tx_hash = await self._submit(connection, account, tx, asset, amount)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._rejected(account, chain, asset, amount, e)

        return await self._finalize(connection, account, asset, amount, nonce, tx_hash)

    async def send_token(
        self,
        account: SweepAccount,
        chain: ChainConfig,
        token_symbol: str,
        amount: int
    ) -> TransferOutcome:
        """
        Send an ERC-20 token balance to the destination

        Gas is paid from the account's native balance; the node estimates it.

        Args:
            account: Sending account
            chain: Chain to send on
            token_symbol: Registered token symbol
            amount: Amount in the token's smallest unit

        Returns:
            TransferOutcome

        Raises:
            ContractError: Token not registered on the chain
            InsufficientAfterFeeError: amount <= 0
        """
        token = chain.get_token(token_symbol)
        if token is None:
            raise ContractError(f"Token {token_symbol!r} is not registered on {chain.name}")
        if amount <= 0:
            raise InsufficientAfterFeeError(f"{chain.name}/{token_symbol}: nothing to send")

        nonce = None
        try:
            connection = await self.connections.get_connection(chain)
            gas_price = await self.quote_gas_price(connection)
            nonce = await self._next_nonce(connection, account, token_symbol)

            contract = connection.w3.eth.contract(address=token.contract_address, abi=ERC20_ABI)
            tx = await contract.functions.transfer(self.destination, amount).build_transaction({
                'from': account.address,
                'chainId': chain.chain_id,
                'gasPrice': gas_price,
                'nonce': nonce,
            })

            logger.info(
                f"Sending {format_units(amount, token.decimals)} {token_symbol} on {chain.name} "
                f"from {account.address} to {self.destination}"
            )
            tx_hash = await self._submit(connection, account, tx, token_symbol, amount)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._rejected(account, chain, token_symbol, amount, e)

        return await self._finalize(connection, account, token_symbol, amount, nonce, tx_hash)

    async def _next_nonce(self, connection: Connection, account: SweepAccount, asset: str) -> int:
        """
        Pending nonce, unless the journal holds an unresolved submission of the same asset

        Reusing that nonce means a retried send can only replace the earlier
        transfer of that asset, never land next to it. Unresolved transfers of
        other assets keep their nonces.
        """
        eth = connection.w3.eth
        pending = await eth.get_transaction_count(account.address, 'pending')
        if self.journal is None:
            return pending

        chain_id = connection.chain.chain_id
        mined = await eth.get_transaction_count(account.address, 'latest')
        settled = self.journal.settle_below(account.address, chain_id, mined)
        if settled:
            logger.debug(f"Journal: settled {settled} entries below nonce {mined} on {connection.chain.name}")

        reserved = self.journal.reserved_nonce(account.address, chain_id, asset, mined)
        if reserved is not None:
            logger.warning(
                f"⚠ Unresolved {asset} submission at nonce {reserved} for {account.address} on "
                f"{connection.chain.name}, reusing it instead of {pending}"
            )
            return reserved
        return pending

    async def _submit(
        self,
        connection: Connection,
        account: SweepAccount,
        tx: Dict,
        asset: str,
        amount: int
    ) -> str:
        tx = dict(tx)
        tx.pop('from', None)
        signed = account.signer.sign_transaction(tx)
        tx_hash = await connection.w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hash = Web3.to_hex(tx_hash)

        logger.info(f"Transaction sent. Hash: {tx_hash}")

        if self.journal is not None:
            self.journal.record_submission(SubmissionRecord(
                account=account.address,
                chain_id=connection.chain.chain_id,
                nonce=tx['nonce'],
                tx_hash=tx_hash,
                asset=asset,
                amount=amount,
            ))
        return tx_hash

    async def _finalize(
        self,
        connection: Connection,
        account: SweepAccount,
        asset: str,
        amount: int,
        nonce: int,
        tx_hash: str
    ) -> TransferOutcome:
        """Wait for the receipt of an accepted transaction"""
        chain = connection.chain
        outcome = TransferOutcome(
            success=True,
            account=account.address,
            chain_name=chain.name,
            asset=asset,
            amount=amount,
            tx_hash=tx_hash,
        )

        try:
            receipt = await connection.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.confirmation_timeout,
                poll_latency=self.RECEIPT_POLL_INTERVAL
            )
        except asyncio.CancelledError:
            raise
        except TimeExhausted:
            outcome.reason = f"not confirmed within {self.confirmation_timeout}s"
            logger.warning(f"⚠ Confirmation timeout for {tx_hash} on {chain.name} (nonce {nonce})")
            return outcome
        except Exception as e:
            outcome.reason = f"receipt lookup failed: {e}"
            logger.warning(f"⚠ Could not confirm {tx_hash} on {chain.name}: {e}")
            return outcome

        if receipt['status'] == 1:
            outcome.confirmed = True
            self._resolve(tx_hash, STATUS_CONFIRMED)
            logger.info(f"✓ Transaction confirmed for hash: {tx_hash}")
        else:
            outcome.success = False
            outcome.reason = 'transaction reverted'
            self._resolve(tx_hash, STATUS_REVERTED)
            logger.error(f"✗ Transaction reverted: {tx_hash} on {chain.name}")

        return outcome

    def _resolve(self, tx_hash: str, status: str):
        if self.journal is not None:
            self.journal.resolve(tx_hash, status)

    def _rejected(
        self,
        account: SweepAccount,
        chain: ChainConfig,
        asset: str,
        amount: int,
        error: Exception
    ) -> TransferOutcome:
        reason = f"{type(error).__name__}: {error}"
        logger.error(
            f"✗ Error sending {asset} from wallet {account.address} on {chain.name}: {reason[:300]}"
        )
        return TransferOutcome(
            success=False,
            account=account.address,
            chain_name=chain.name,
            asset=asset,
            amount=amount,
            reason=reason,
        )
