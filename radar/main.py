"""Main entry point for the radar."""
import warnings

# Suppress eth_utils network warnings - must be before web3 imports
warnings.filterwarnings("ignore", category=UserWarning, module="eth_utils")
warnings.filterwarnings("ignore", message=".*does not have a valid ChainId.*")

import asyncio
import logging
import signal

from radar.config import (
    DATA_DIR,
    HISTORY_BLOCKS,
    LOG_LEVEL,
    NETWORKS,
    REALTIME_ONLY,
    SCAN_NETWORKS,
    WALLET_ENABLE,
)
from radar.cursor_store import CursorStore
from radar.endpoint_pool import EndpointPool
from radar.entity_store import EntityStore
from radar.service import RadarService

logger = logging.getLogger(__name__)


def build_service() -> RadarService:
    networks = {name: cfg for name, cfg in NETWORKS.items() if name in SCAN_NETWORKS}
    unknown = sorted(set(SCAN_NETWORKS) - set(networks))
    if unknown:
        logger.warning(f"[RADAR] Ignoring unknown networks: {', '.join(unknown)}")
    return RadarService(
        networks=networks,
        pool=EndpointPool(networks),
        store=EntityStore(DATA_DIR),
        cursors=CursorStore(DATA_DIR / "cursors.json"),
        wallet_cursors=CursorStore(DATA_DIR / "wallet_cursors.json"),
    )


async def run() -> None:
    service = build_service()
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises
            pass

    await service.start()
    for network in service.networks:
        service.start_scanning(network)
        if WALLET_ENABLE:
            service.start_wallets(network)
        if not REALTIME_ONLY:
            service.scan_history(network, HISTORY_BLOCKS)
        else:
            logger.info(f"[REALTIME] {network}: backfill disabled; scanning only new blocks")

    await stop.wait()
    logger.info("[RADAR] Shutting down")
    await service.stop()


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [RADAR] %(message)s",
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
