"""Shared fakes: an in-memory stand-in for the AsyncWeb3 surface the sweeper uses"""

import hashlib
from typing import Dict, List, Optional

import pytest

from wallet_sweeper.accounts import SweepAccount
from wallet_sweeper.connection_cache import Connection, ConnectionCache
from wallet_sweeper.network_registry import ChainConfig, NetworkRegistry, TokenConfig

# Well-known development keys (hardhat/anvil accounts #0 and #1)
KEY_A = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
KEY_B = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"

DESTINATION = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
USDT_ADDRESS = "0xdAC17F958D2ee523a2206206994597C13D831ec7"
USDC_ADDRESS = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"

GWEI = 10 ** 9
ETHER = 10 ** 18


class FakeCall:
    def __init__(self, result=None, error: Optional[BaseException] = None):
        self.result = result
        self.error = error

    async def call(self):
        if self.error is not None:
            raise self.error
        return self.result


class FakeTransferCall:
    def __init__(self, contract: 'FakeContract', to: str, amount: int):
        self.contract = contract
        self.to = to
        self.amount = amount

    async def build_transaction(self, params: Dict) -> Dict:
        self.contract.eth.built.append({'to': self.to, 'amount': self.amount, 'token': self.contract.address})
        tx = dict(params)
        tx.update({
            'to': self.contract.address,
            'value': 0,
            'gas': 65000,
            'data': '0xa9059cbb' + self.to[2:].lower().rjust(64, '0') + format(self.amount, '064x'),
        })
        return tx


class FakeFunctions:
    def __init__(self, contract: 'FakeContract'):
        self.contract = contract

    def balanceOf(self, owner: str):
        eth = self.contract.eth
        eth.token_queries += 1
        value = eth.token_balances.get((self.contract.address, owner), 0)
        if isinstance(value, BaseException):
            return FakeCall(error=value)
        return FakeCall(result=value)

    def transfer(self, to: str, amount: int):
        return FakeTransferCall(self.contract, to, amount)


class FakeContract:
    def __init__(self, eth: 'FakeEth', address: str):
        self.eth = eth
        self.address = address
        self.functions = FakeFunctions(self)


class FakeEth:
    """Records everything the executor and inspector do"""

    def __init__(self, chain_id: int = 1, gas_price: int = 50 * GWEI):
        self._chain_id = chain_id
        self._gas_price = gas_price
        self.balances: Dict[str, object] = {}
        self.token_balances: Dict[tuple, object] = {}
        self.mined_nonce = 0
        self.pending_nonce = 0
        self.receipt_status = 1
        self.receipt_error: Optional[BaseException] = None
        self.send_error: Optional[BaseException] = None
        self.gas_price_error: Optional[BaseException] = None
        self.sent: List[bytes] = []
        self.built: List[Dict] = []
        self.balance_queries = 0
        self.token_queries = 0

    @property
    def chain_id(self):
        async def value():
            return self._chain_id
        return value()

    @property
    def gas_price(self):
        async def value():
            if self.gas_price_error is not None:
                raise self.gas_price_error
            return self._gas_price
        return value()

    async def get_balance(self, address: str) -> int:
        self.balance_queries += 1
        value = self.balances.get(address, 0)
        if isinstance(value, BaseException):
            raise value
        return value

    async def get_transaction_count(self, address: str, block_identifier: str = 'latest') -> int:
        return self.pending_nonce if block_identifier == 'pending' else self.mined_nonce

    async def send_raw_transaction(self, raw: bytes) -> bytes:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(bytes(raw))
        # the node now counts the accepted transaction as pending
        self.pending_nonce += 1
        return hashlib.sha256(bytes(raw)).digest()

    async def wait_for_transaction_receipt(self, tx_hash, timeout=120, poll_latency=0.1):
        if self.receipt_error is not None:
            raise self.receipt_error
        return {'status': self.receipt_status, 'transactionHash': tx_hash}

    def contract(self, address: str, abi=None) -> FakeContract:
        return FakeContract(self, address)


class FakeProvider:
    def __init__(self):
        self.disconnected = False

    async def disconnect(self):
        self.disconnected = True


class FakeWeb3:
    def __init__(self, eth: Optional[FakeEth] = None, connected: bool = True):
        self.eth = eth or FakeEth()
        self.provider = FakeProvider()
        self.connected = connected

    async def is_connected(self) -> bool:
        return self.connected


class SpySigner:
    """Wraps a LocalAccount and keeps every unsigned transaction it signs"""

    def __init__(self, inner):
        self.inner = inner
        self.address = inner.address
        self.signed: List[Dict] = []

    def sign_transaction(self, tx: Dict):
        self.signed.append(dict(tx))
        return self.inner.sign_transaction(tx)


def spy_account(key: str = KEY_A) -> SweepAccount:
    account = SweepAccount.from_key(key)
    return SweepAccount(address=account.address, signer=SpySigner(account.signer))


def make_chain(chain_id: int = 1, name: str = 'ethereum', tokens: bool = True, **kwargs) -> ChainConfig:
    token_map = {}
    if tokens:
        token_map = {
            'USDT': TokenConfig('USDT', USDT_ADDRESS, 6, min_balance=40 * 10 ** 6),
            'USDC': TokenConfig('USDC', USDC_ADDRESS, 6, min_balance=40 * 10 ** 6),
        }
    kwargs.setdefault('min_native_balance', 10 ** 15)
    return ChainConfig(
        chain_id=chain_id,
        name=name,
        endpoints=(f'https://rpc.example/{name}',),
        tokens=token_map,
        **kwargs
    )


def fake_cache(web3_by_chain: Dict[int, FakeWeb3]) -> ConnectionCache:
    async def factory(chain: ChainConfig) -> Connection:
        return Connection(chain=chain, w3=web3_by_chain[chain.chain_id], endpoint=chain.endpoints[0])
    return ConnectionCache(factory=factory)


@pytest.fixture
def chain():
    return make_chain()


@pytest.fixture
def registry():
    return NetworkRegistry([
        make_chain(1, 'ethereum'),
        make_chain(56, 'bnb', tokens=False, native_symbol='BNB'),
    ])


@pytest.fixture
def fake_eth():
    return FakeEth()


@pytest.fixture
def fake_w3(fake_eth):
    return FakeWeb3(fake_eth)


@pytest.fixture
def connection(chain, fake_w3):
    return Connection(chain=chain, w3=fake_w3, endpoint=chain.endpoints[0])
