"""Live and historical block scanning for new contract deployments."""
import asyncio
import logging
from typing import Any, List, Optional, Set

from eth_utils import is_address

from radar.config import (
    BACKFILL_BATCH_SIZE,
    HISTORY_BLOCKS,
    LIVE_MAX_CATCHUP,
    POLL_INTERVAL,
    ZERO_ADDRESS,
    NetworkConfig,
)
from radar.cursor_store import CursorStore
from radar.detector import Analyzer, DeploymentDetector, is_creation
from radar.endpoint_pool import EndpointError
from radar.entity_store import EntityStore
from radar.models import ContractRecord
from radar.risk_analyzer import analyze_contract, is_empty_code

logger = logging.getLogger(__name__)


class BlockScanner:
    """
    Scans one network for contract deployments.

    Only one scan runs at a time per network: a request arriving while a
    scan is in flight is dropped, not queued.
    """

    def __init__(
        self,
        network: NetworkConfig,
        pool: Any,
        cursor_store: CursorStore,
        store: EntityStore,
        analyzer: Analyzer = analyze_contract,
        batch_size: int = BACKFILL_BATCH_SIZE,
        poll_interval: float = POLL_INTERVAL,
    ):
        self.network = network
        self.pool = pool
        self.cursor_store = cursor_store
        self.store = store
        self.detector = DeploymentDetector(network, pool, store, analyzer)
        self.batch_size = max(int(batch_size), 1)
        self.poll_interval = poll_interval
        self.scanning = False
        self.active = False
        self._stop: Optional[asyncio.Event] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._live_tasks: Set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        return self.network.name

    @property
    def cursor(self) -> Optional[int]:
        return self.cursor_store.get(self.name)

    # ------------------------------------------------------------------
    # Block level
    # ------------------------------------------------------------------

    async def scan_block(self, height: int) -> List[ContractRecord]:
        """
        Scan one block and index every contract it deployed.

        Raises:
            EndpointError: if the block (or a deployed contract's code)
                cannot be fetched
        """
        block = await self.pool.get_block(self.name, height, True)
        records: List[ContractRecord] = []
        for tx in block.get("transactions") or []:
            # hash-only entries carry no recipient information
            if not hasattr(tx, "get"):
                continue
            if not is_creation(tx):
                continue
            record = await self.detector.handle(tx, block)
            if record is not None:
                records.append(record)
        return records

    # ------------------------------------------------------------------
    # Historical mode
    # ------------------------------------------------------------------

    async def backfill(
        self,
        blocks: Optional[int] = None,
        start_block: Optional[int] = None,
        end_block: Optional[int] = None,
    ) -> int:
        """
        Scan a bounded past range in concurrent batches.

        The range is ``[max(start, cursor + 1), end]`` where ``end`` defaults
        to the chain head and ``start`` to ``end - blocks``. The cursor is
        committed after every completed batch.

        Returns:
            Number of blocks scanned
        """
        if self.scanning:
            logger.info(f"[BACKFILL] {self.name} busy, request dropped")
            return 0
        self.scanning = True
        try:
            cursor = self.cursor
            if end_block is not None and cursor is not None and end_block <= cursor:
                logger.info(f"[BACKFILL] {self.name} up to {end_block} already covered (cursor {cursor})")
                return 0

            if end_block is None:
                end_block = await self.pool.get_block_number(self.name)
            if start_block is None:
                start_block = end_block - (HISTORY_BLOCKS if blocks is None else int(blocks))
            if cursor is not None:
                start_block = max(start_block, cursor + 1)
            start_block = max(start_block, 0)

            if start_block > end_block:
                logger.info(f"[BACKFILL] {self.name} nothing to scan (cursor {cursor})")
                return 0

            logger.info(f"[BACKFILL] {self.name} blocks {start_block} -> {end_block}")
            return await self._scan_range(start_block, end_block)
        except EndpointError as e:
            logger.error(f"[BACKFILL] {self.name} aborted: {e}")
            return 0
        finally:
            self.scanning = False

    async def _scan_range(self, start: int, end: int, tag: str = "BACKFILL") -> int:
        scanned = 0
        for batch_start in range(start, end + 1, self.batch_size):
            heights = list(range(batch_start, min(batch_start + self.batch_size - 1, end) + 1))
            results = await asyncio.gather(
                *(self.scan_block(h) for h in heights), return_exceptions=True
            )
            failed = [(h, r) for h, r in zip(heights, results) if isinstance(r, BaseException)]
            if failed:
                for height, err in failed:
                    logger.error(f"[{tag}] {self.name} block {height} failed: {err}")
                logger.error(f"[{tag}] {self.name} stopped at batch {heights[0]}-{heights[-1]}, cursor {self.cursor}")
                return scanned

            scanned += len(heights)
            # records hit disk before the cursor moves past them
            self.store.flush()
            self.cursor_store.advance(self.name, heights[-1])
            found = sum(len(r) for r in results)
            logger.info(f"[{tag}] {self.name} scanned {heights[0]}-{heights[-1]}, contracts={found}")
        return scanned

    # ------------------------------------------------------------------
    # Live mode
    # ------------------------------------------------------------------

    async def scan_live(self, height: int) -> bool:
        """
        Scan up to a freshly announced block if no other scan is running.

        Blocks between the cursor and ``height`` are scanned first, so a
        block that failed on an earlier tick is retried. At most
        ``LIVE_MAX_CATCHUP`` blocks are scanned per call.

        Returns:
            True when every block up to ``height`` is covered
        """
        if self.scanning:
            logger.debug(f"[LIVE] {self.name} busy, block {height} dropped")
            return False
        self.scanning = True
        try:
            cursor = self.cursor
            start = height if cursor is None else cursor + 1
            if start > height:
                return True
            end = min(height, start + LIVE_MAX_CATCHUP - 1)
            if start < height:
                logger.info(f"[LIVE] {self.name} catching up {start} -> {end}")
            scanned = await self._scan_range(start, end, tag="LIVE")
            return end == height and scanned == end - start + 1
        finally:
            self.scanning = False

    def start(self) -> None:
        """Subscribe to new blocks. Must be called from a running event loop."""
        if self.active:
            logger.info(f"[LIVE] {self.name} scanner already running")
            return
        self.active = True
        self._stop = asyncio.Event()
        self._watch_task = asyncio.create_task(self._watch())
        logger.info(f"[LIVE] {self.name} scanner started")

    async def stop(self) -> None:
        """Drop the subscription. Block scans already dispatched still finish."""
        if not self.active:
            return
        self.active = False
        if self._stop is not None:
            self._stop.set()
        if self._watch_task is not None:
            await self._watch_task
            self._watch_task = None
        logger.info(f"[LIVE] {self.name} scanner stopped")

    async def wait_idle(self) -> None:
        if self._live_tasks:
            await asyncio.gather(*list(self._live_tasks), return_exceptions=True)

    async def _watch(self) -> None:
        try:
            async for height in self.pool.watch_blocks(self.name, self._stop, self.poll_interval):
                task = asyncio.create_task(self._dispatch(height))
                self._live_tasks.add(task)
                task.add_done_callback(self._live_tasks.discard)
        except Exception as e:
            logger.error(f"[LIVE] {self.name} watcher error: {e}")
            self.active = False

    async def _dispatch(self, height: int) -> None:
        try:
            await self.scan_live(height)
        except Exception as e:
            logger.error(f"[LIVE] {self.name} block {height} crashed: {e}")

    # ------------------------------------------------------------------
    # Manual lookups
    # ------------------------------------------------------------------

    async def analyze_address(self, address: str) -> Optional[ContractRecord]:
        """
        Score and store an arbitrary address with an unknown deployer.

        Returns:
            The record, or None when there is no code at the address
        """
        if not is_address(address):
            raise ValueError(f"Invalid address: {address}")
        code = await self.pool.get_code(self.name, address)
        if is_empty_code(code):
            return None
        record = await self.detector.analyzer(address, ZERO_ADDRESS, self.pool, self.network)
        self.store.save_contract(record)
        self.store.flush()
        return record

    def status(self) -> dict:
        return {
            "network": self.name,
            "last_block": self.cursor,
            "is_scanning": self.scanning,
            "active": self.active,
        }
