"""Per-network RPC endpoint pool with failover."""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from web3 import AsyncWeb3, Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from radar.config import (
    BACKOFF_BASE,
    BACKOFF_MAX,
    BREAKER_COOLDOWN,
    BREAKER_THRESHOLD,
    POLL_INTERVAL,
    RPC_TIMEOUT,
    NetworkConfig,
)

logger = logging.getLogger(__name__)

# Errors raised by the contract itself rather than the endpoint serving it
CONTRACT_ERRORS = (ContractLogicError, BadFunctionCallOutput)


class EndpointError(Exception):
    """An RPC call failed; the pool has already rotated to the next endpoint."""


class BlockNotFoundError(EndpointError):
    """The endpoint returned no block for a height (lagging node)."""


@dataclass
class _Breaker:
    failures: int = 0
    open_until: float = 0.0


def make_connection(url: str) -> AsyncWeb3:
    return AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url, request_kwargs={"timeout": RPC_TIMEOUT}))


class EndpointPool:
    """
    Owns an ordered endpoint list per network and the current connection.

    Connections are created lazily by ``acquire``. Any transport failure
    rotates to the next endpoint before the caller's next attempt.
    """

    def __init__(
        self,
        networks: Dict[str, NetworkConfig],
        connection_factory: Callable[[str], Any] = make_connection,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._urls: Dict[str, List[str]] = {
            name: list(cfg.rpc_urls) for name, cfg in networks.items() if cfg.rpc_urls
        }
        self._factory = connection_factory
        self._clock = clock
        self._index: Dict[str, int] = {name: 0 for name in self._urls}
        self._connections: Dict[str, Any] = {}
        self._breakers: Dict[str, _Breaker] = {}
        self._consecutive: Dict[str, int] = {name: 0 for name in self._urls}

    def endpoints(self, network: str) -> List[str]:
        try:
            return self._urls[network]
        except KeyError:
            raise KeyError(f"No RPC endpoints configured for {network}") from None

    def current_url(self, network: str) -> str:
        urls = self.endpoints(network)
        return urls[self._index[network] % len(urls)]

    def acquire(self, network: str) -> Any:
        """Return the live connection for ``network``, connecting on first use."""
        conn = self._connections.get(network)
        if conn is None:
            url = self.current_url(network)
            conn = self._factory(url)
            self._connections[network] = conn
            logger.info(f"[RPC] Connected to {network} via {url}")
        return conn

    def rotate(self, network: str, failed_url: Optional[str] = None) -> str:
        """
        Mark the current endpoint failed and move to the next one.

        Endpoints with an open circuit breaker are skipped unless every
        endpoint of the network is open. When ``failed_url`` is given and is
        no longer the current endpoint, another caller has already rotated
        away from it and nothing changes.

        Returns:
            URL of the endpoint the next ``acquire`` will use
        """
        urls = self.endpoints(network)
        failed = self.current_url(network)
        if failed_url is not None and failed_url != failed:
            return failed
        self._record_failure(failed)
        self._consecutive[network] += 1

        now = self._clock()
        start = self._index[network]
        nxt = (start + 1) % len(urls)
        for step in range(1, len(urls) + 1):
            candidate = (start + step) % len(urls)
            if not self._is_open(urls[candidate], now):
                nxt = candidate
                break

        self._index[network] = nxt
        self._connections.pop(network, None)
        logger.warning(f"[RPC] Rotating {network} from {failed} to {urls[nxt]}")
        return urls[nxt]

    def backoff_delay(self, network: str) -> float:
        """Seconds to wait before retrying after the current failure streak."""
        n = self._consecutive.get(network, 0)
        if n <= 0:
            return 0.0
        return min(BACKOFF_BASE * (2 ** (n - 1)), BACKOFF_MAX)

    def status(self, network: str) -> Dict[str, Any]:
        url = self.current_url(network)
        breaker = self._breakers.get(url, _Breaker())
        return {
            "endpoint": url,
            "index": self._index[network],
            "connected": network in self._connections,
            "consecutive_failures": self._consecutive[network],
            "breaker_open": self._is_open(url, self._clock()),
            "endpoint_failures": breaker.failures,
        }

    def _record_failure(self, url: str) -> None:
        breaker = self._breakers.setdefault(url, _Breaker())
        breaker.failures += 1
        if breaker.failures >= BREAKER_THRESHOLD:
            breaker.open_until = self._clock() + BREAKER_COOLDOWN
            logger.warning(f"[RPC] Circuit open for {url} ({breaker.failures} failures)")

    def _record_success(self, network: str, url: str) -> None:
        if url == self.current_url(network):
            self._consecutive[network] = 0
        breaker = self._breakers.get(url)
        if breaker:
            breaker.failures = 0
            breaker.open_until = 0.0

    def _is_open(self, url: str, now: float) -> bool:
        breaker = self._breakers.get(url)
        return bool(breaker and breaker.open_until > now)

    async def _call(self, network: str, op: str, fn: Callable[[Any], Any]) -> Any:
        # concurrent callers may fail on the same endpoint; only the first rotates
        url = self.current_url(network)
        conn = self.acquire(network)
        try:
            result = await fn(conn)
        except CONTRACT_ERRORS:
            raise
        except BlockNotFoundError:
            self.rotate(network, url)
            raise
        except Exception as e:
            logger.error(f"[RPC] {network} {op} failed on {url}: {e}")
            self.rotate(network, url)
            raise EndpointError(f"{network} {op}: {e}") from e
        self._record_success(network, url)
        return result

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get_block_number(self, network: str) -> int:
        async def op(conn):
            return await conn.eth.block_number
        return await self._call(network, "block_number", op)

    async def get_block(self, network: str, height: int, full_transactions: bool = True) -> Any:
        async def op(conn):
            block = await conn.eth.get_block(height, full_transactions=full_transactions)
            if not block:
                raise BlockNotFoundError(f"{network} returned no block {height}")
            return block
        return await self._call(network, "get_block", op)

    async def get_receipt(self, network: str, tx_hash: Any) -> Any:
        async def op(conn):
            return await conn.eth.get_transaction_receipt(tx_hash)
        return await self._call(network, "get_receipt", op)

    async def get_code(self, network: str, address: str) -> str:
        """Deployed code at ``address`` as a 0x-prefixed hex string."""
        async def op(conn):
            return await conn.eth.get_code(Web3.to_checksum_address(address))
        code = await self._call(network, "get_code", op)
        if not code:
            return "0x"
        return code if isinstance(code, str) else Web3.to_hex(code)

    async def get_balance(self, network: str, address: str) -> int:
        async def op(conn):
            return await conn.eth.get_balance(Web3.to_checksum_address(address))
        return await self._call(network, "get_balance", op)

    async def call_contract(self, network: str, address: str, abi: List[Dict[str, Any]],
                            fn_name: str, *args: Any) -> Any:
        """Read-only call of ``fn_name`` on the contract at ``address``."""
        async def op(conn):
            contract = conn.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
            return await getattr(contract.functions, fn_name)(*args).call()
        return await self._call(network, fn_name, op)

    # ------------------------------------------------------------------
    # New block notifications
    # ------------------------------------------------------------------

    async def watch_blocks(
        self,
        network: str,
        stop: asyncio.Event,
        poll_interval: float = POLL_INTERVAL,
    ) -> AsyncIterator[int]:
        """
        Yield each new block height of ``network`` once, until ``stop`` is set.

        The first poll only establishes the starting height.
        """
        last: Optional[int] = None
        while not stop.is_set():
            try:
                current = await self.get_block_number(network)
            except EndpointError:
                await sleep_or_stop(stop, max(self.backoff_delay(network), poll_interval))
                continue

            if last is None:
                last = current
            elif current > last:
                for height in range(last + 1, current + 1):
                    if stop.is_set():
                        return
                    yield height
                last = current

            await sleep_or_stop(stop, poll_interval)


async def sleep_or_stop(stop: asyncio.Event, delay: float) -> None:
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay)
    except asyncio.TimeoutError:
        pass
