"""High-balance wallet discovery from recent block traffic."""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from web3 import Web3

from radar.config import (
    WALLET_BACKLOG_RESTART,
    WALLET_MAX_BACKLOG,
    WALLET_MIN_USD,
    WALLET_SAMPLE_SIZE,
    WALLET_SCAN_INTERVAL,
    ZERO_ADDRESS,
    NetworkConfig,
)
from radar.cursor_store import CursorStore
from radar.endpoint_pool import EndpointError, sleep_or_stop
from radar.entity_store import EntityStore
from radar.models import WalletRecord, iso_timestamp
from radar.price_feed import PriceFeed

logger = logging.getLogger(__name__)

SAFE_PROXY_MARKER = "a619486e"  # masterCopy()
MULTISIG_SELECTORS = (
    "e75235b8",  # getThreshold()
    "a0e67e2b",  # getOwners()
    "0d582f13",  # addOwnerWithThreshold()
    "c6427474",  # submitTransaction()
    "c01a8c84",  # confirmTransaction()
)


def sample_addresses(transactions: Iterable[Any], limit: int = WALLET_SAMPLE_SIZE) -> List[str]:
    """Distinct senders and recipients in order of appearance, capped at ``limit``."""
    seen = set()
    out: List[str] = []
    for tx in transactions:
        if not hasattr(tx, "get"):
            continue
        for addr in (tx.get("from"), tx.get("to")):
            if not addr or addr.lower() == ZERO_ADDRESS or addr.lower() in seen:
                continue
            seen.add(addr.lower())
            out.append(addr)
            if len(out) >= limit:
                return out
    return out


def looks_like_multisig(code: Optional[str]) -> bool:
    if not code or code.lower() in ("0x", "0x0"):
        return False
    code = code.lower()
    if SAFE_PROXY_MARKER in code:
        return True
    return sum(1 for sel in MULTISIG_SELECTORS if sel in code) >= 2


class WalletScanner:
    """Samples addresses from new blocks of one network and keeps the rich ones."""

    def __init__(
        self,
        network: NetworkConfig,
        pool: Any,
        store: EntityStore,
        price_feed: PriceFeed,
        cursor_store: CursorStore,
        sample_size: int = WALLET_SAMPLE_SIZE,
        min_usd: float = WALLET_MIN_USD,
        interval: float = WALLET_SCAN_INTERVAL,
    ):
        self.network = network
        self.pool = pool
        self.store = store
        self.price_feed = price_feed
        self.cursor_store = cursor_store
        self.sample_size = sample_size
        self.min_usd = min_usd
        self.interval = interval
        self.scanning = False
        self.active = False
        self._stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return self.network.name

    async def scan_recent(self, count: int = 2) -> int:
        """
        Scan blocks since the last run (or the last ``count`` blocks).

        Returns:
            Number of wallets saved
        """
        if self.scanning:
            return 0
        self.scanning = True
        try:
            price = await self.price_feed.get_price(self.network.price_ticker)
            current = await self.pool.get_block_number(self.name)
            cursor = self.cursor_store.get(self.name)
            start = cursor + 1 if cursor is not None else max(current - count, 0)
            if start > current:
                return 0
            # cap the backlog after long pauses
            if current - start > WALLET_MAX_BACKLOG:
                start = current - WALLET_BACKLOG_RESTART

            logger.info(f"[WALLET] {self.name} height {start} -> {current}")
            saved = 0
            for height in range(start, current + 1):
                block = await self.pool.get_block(self.name, height, True)
                saved += await self._scan_block(block, price)

            self.store.flush()
            self.cursor_store.advance(self.name, current)
            return saved
        except EndpointError as e:
            logger.error(f"[WALLET] {self.name} scan failed: {e}")
            return 0
        finally:
            self.scanning = False

    async def _scan_block(self, block: Dict[str, Any], price: float) -> int:
        transactions = block.get("transactions") or []
        first = transactions[0] if transactions else None
        tx_hash = None
        if first is not None and hasattr(first, "get") and first.get("hash") is not None:
            tx_hash = Web3.to_hex(first["hash"]) if not isinstance(first["hash"], str) else first["hash"]

        saved = 0
        for address in sample_addresses(transactions, self.sample_size):
            try:
                wei = await self.pool.get_balance(self.name, address)
            except EndpointError as e:
                logger.warning(f"[WALLET] {self.name} balance check error for {address}: {e}")
                continue

            balance = float(Web3.from_wei(int(wei), "ether"))
            usd = balance * price
            if usd < self.min_usd:
                continue

            record = WalletRecord(
                address=address,
                network=self.name,
                balance_native=balance,
                balance_usd=usd,
                last_seen=iso_timestamp(block.get("timestamp")),
                is_multisig=await self._is_multisig(address),
                tx_hash=tx_hash,
            )
            self.store.save_wallet(record)
            saved += 1
            logger.info(f"[WALLET] {self.name} {address} ${usd:,.0f}")
        return saved

    async def _is_multisig(self, address: str) -> bool:
        try:
            code = await self.pool.get_code(self.name, address)
        except EndpointError as e:
            logger.debug(f"[WALLET] code lookup failed for {address}: {e}")
            return False
        return looks_like_multisig(code)

    def start(self) -> None:
        if self.active:
            return
        self.active = True
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(f"[WALLET] {self.name} radar started")

    async def stop(self) -> None:
        if not self.active:
            return
        self.active = False
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info(f"[WALLET] {self.name} radar stopped")

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await self.scan_recent()
            except Exception as e:
                logger.error(f"[WALLET] {self.name} loop error: {e}")
            await sleep_or_stop(self._stop, max(self.interval, self.pool.backoff_delay(self.name)))
