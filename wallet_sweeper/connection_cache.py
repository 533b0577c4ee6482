"""
Connection Cache

Lazily creates one web3 connection per chain id and keeps it for the life of
the process. The cache belongs to whoever builds it (normally the
orchestrator), never to the module.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import ClientTimeout
from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3

from .exceptions import NetworkError
from .network_registry import ChainConfig

DEFAULT_REQUEST_TIMEOUT = 30


@dataclass
class Connection:
    """Live handle bound to one chain"""
    chain: ChainConfig
    w3: Any  # AsyncWeb3 (or a stand-in exposing the same eth API)
    endpoint: str

    def __repr__(self):
        return f"Connection({self.chain.name} via {self.endpoint})"


ConnectionFactory = Callable[[ChainConfig], Awaitable[Connection]]


async def connect_web3(chain: ChainConfig, timeout: int = DEFAULT_REQUEST_TIMEOUT) -> Connection:
    """
    Open a connection to the first healthy endpoint of a chain

    An endpoint qualifies when it answers and reports the configured chain id.

    Args:
        chain: Chain to connect to
        timeout: HTTP request timeout in seconds

    Returns:
        Connection

    Raises:
        NetworkError: No endpoint qualified
    """
    errors = []

    for endpoint in chain.endpoints:
        w3 = AsyncWeb3(AsyncHTTPProvider(endpoint, request_kwargs={'timeout': ClientTimeout(total=timeout)}))
        try:
            if not await w3.is_connected():
                errors.append(f"{_redact(endpoint)}: not reachable")
                await _disconnect(w3)
                continue

            remote_chain_id = await w3.eth.chain_id
            if remote_chain_id != chain.chain_id:
                errors.append(
                    f"{_redact(endpoint)}: reports chain id {remote_chain_id}, expected {chain.chain_id}"
                )
                await _disconnect(w3)
                continue

        except Exception as e:
            errors.append(f"{_redact(endpoint)}: {e}")
            await _disconnect(w3)
            continue

        logger.info(f"✓ Connected to {chain.name} ({chain.chain_id}) via {_redact(endpoint)}")
        return Connection(chain=chain, w3=w3, endpoint=endpoint)

    raise NetworkError(f"Could not connect to {chain.name}: {'; '.join(errors)}")


class ConnectionCache:
    """
    One Connection per chain id

    Features:
    - Lazy creation on first use
    - Failed construction is never cached
    - Endpoint failover handled by the factory
    """

    def __init__(self, factory: Optional[ConnectionFactory] = None):
        """
        Initialize cache

        Args:
            factory: Coroutine building a Connection for a chain (default: connect_web3)
        """
        self.factory = factory or connect_web3
        self._connections: Dict[int, Connection] = {}

    async def get_connection(self, chain: ChainConfig) -> Connection:
        """
        Get the cached connection for a chain, creating it if needed

        Args:
            chain: Chain config

        Returns:
            Connection

        Raises:
            NetworkError: Connection could not be built
        """
        cached = self._connections.get(chain.chain_id)
        if cached is not None:
            return cached

        try:
            connection = await self.factory(chain)
        except NetworkError:
            raise
        except Exception as e:
            raise NetworkError(f"Could not connect to {chain.name}: {e}") from e

        # another coroutine may have finished first; keep the one already stored
        existing = self._connections.setdefault(chain.chain_id, connection)
        if existing is not connection:
            await _disconnect(connection.w3)
        return existing

    def __contains__(self, chain_id: int) -> bool:
        return chain_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    async def close(self):
        """Disconnect every cached provider and empty the cache"""
        connections = list(self._connections.values())
        self._connections.clear()

        for connection in connections:
            await _disconnect(connection.w3)
            logger.debug(f"✓ Closed {connection.chain.name} connection")


async def _disconnect(w3):
    provider = getattr(w3, 'provider', None)
    if provider is None or not hasattr(provider, 'disconnect'):
        return
    try:
        await provider.disconnect()
    except Exception as e:
        logger.debug(f"Error closing provider: {e}")


def _redact(endpoint: str) -> str:
    """Drop the trailing path segment, which usually carries an API key"""
    head, sep, _ = endpoint.rstrip('/').rpartition('/')
    if not sep or head.endswith(':/'):
        return endpoint
    return f"{head}/***"
