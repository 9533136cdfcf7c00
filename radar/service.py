"""Multi-network radar service with an explicit start/stop lifecycle."""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from radar.block_scanner import BlockScanner
from radar.config import HISTORY_BLOCKS, NetworkConfig
from radar.cursor_store import CursorStore
from radar.detector import Analyzer
from radar.entity_store import EntityStore
from radar.models import ContractRecord
from radar.price_feed import PriceFeed
from radar.risk_analyzer import analyze_contract
from radar.wallet_scanner import WalletScanner

logger = logging.getLogger(__name__)


class UnknownNetworkError(KeyError):
    pass


class RadarService:
    """
    Owns one BlockScanner and one WalletScanner per configured network.

    All collaborators are injected, so several independent services can
    coexist (e.g. in tests).
    """

    def __init__(
        self,
        networks: Dict[str, NetworkConfig],
        pool: Any,
        store: EntityStore,
        cursors: CursorStore,
        wallet_cursors: CursorStore,
        price_feed: Optional[PriceFeed] = None,
        analyzer: Analyzer = analyze_contract,
    ):
        self.networks = networks
        self.pool = pool
        self.store = store
        self.cursors = cursors
        self.price_feed = price_feed or PriceFeed()
        self.scanners: Dict[str, BlockScanner] = {
            name: BlockScanner(cfg, pool, cursors, store, analyzer)
            for name, cfg in networks.items()
        }
        self.wallet_scanners: Dict[str, WalletScanner] = {
            name: WalletScanner(cfg, pool, store, self.price_feed, wallet_cursors)
            for name, cfg in networks.items()
        }
        self._background: Set[asyncio.Task] = set()

    def _scanner(self, network: str) -> BlockScanner:
        try:
            return self.scanners[network]
        except KeyError:
            raise UnknownNetworkError(f"Unknown network: {network}") from None

    def _wallet_scanner(self, network: str) -> WalletScanner:
        try:
            return self.wallet_scanners[network]
        except KeyError:
            raise UnknownNetworkError(f"Unknown network: {network}") from None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> List[str]:
        """Resume every network persisted as active. Returns the resumed names."""
        resumed = []
        for network in self.cursors.active_networks():
            if network in self.scanners:
                self.start_scanning(network)
                resumed.append(network)
        if resumed:
            logger.info(f"[RADAR] Resumed scans: {', '.join(resumed)}")
        return resumed

    async def stop(self) -> None:
        """Stop all subscriptions; the persisted active flags are kept for the next start."""
        for scanner in self.scanners.values():
            await scanner.stop()
        for scanner in self.wallet_scanners.values():
            await scanner.stop()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        self.store.flush()

    # ------------------------------------------------------------------
    # Contract radar
    # ------------------------------------------------------------------

    def start_scanning(self, network: str) -> None:
        scanner = self._scanner(network)
        scanner.start()
        self.cursors.set_active(network, True)

    async def stop_scanning(self, network: str) -> None:
        scanner = self._scanner(network)
        await scanner.stop()
        self.cursors.set_active(network, False)

    def scan_history(self, network: str, blocks: int = HISTORY_BLOCKS) -> asyncio.Task:
        """Start a backfill of the last ``blocks`` blocks in the background."""
        scanner = self._scanner(network)
        task = asyncio.create_task(scanner.backfill(blocks=blocks))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def analyze_address(self, network: str, address: str) -> Optional[ContractRecord]:
        return await self._scanner(network).analyze_address(address)

    def contracts(self, network: Optional[str] = None, tag: Optional[str] = None,
                  limit: int = 100, offset: int = 0) -> List[ContractRecord]:
        return self.store.contracts(network=network, tag=tag, limit=limit, offset=offset)

    # ------------------------------------------------------------------
    # Wallet radar
    # ------------------------------------------------------------------

    def start_wallets(self, network: str) -> None:
        self._wallet_scanner(network).start()

    async def stop_wallets(self, network: str) -> None:
        await self._wallet_scanner(network).stop()

    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        networks = {}
        for name, scanner in self.scanners.items():
            info = scanner.status()
            info["wallets_active"] = self.wallet_scanners[name].active
            if hasattr(self.pool, "status"):
                try:
                    info["rpc"] = self.pool.status(name)
                except KeyError:
                    info["rpc"] = None
            networks[name] = info
        return {
            "active_scans": {name: s.active for name, s in self.scanners.items()},
            "networks": networks,
        }
