"""Contract deployment detection from block transactions."""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from web3 import Web3

from radar.config import ZERO_ADDRESS, NetworkConfig
from radar.entity_store import EntityStore
from radar.models import ContractRecord, iso_timestamp
from radar.risk_analyzer import analyze_contract

logger = logging.getLogger(__name__)

Analyzer = Callable[[str, str, Any, NetworkConfig], Awaitable[ContractRecord]]


def is_creation(tx: Dict[str, Any]) -> bool:
    """A transaction creates a contract when it has no recipient."""
    to = tx.get("to")
    return not to or str(to).lower() == ZERO_ADDRESS


def _hex(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else Web3.to_hex(value)


class DeploymentDetector:
    """Turns creation transactions into stored contract records."""

    def __init__(self, network: NetworkConfig, pool: Any, store: EntityStore,
                 analyzer: Analyzer = analyze_contract):
        self.network = network
        self.pool = pool
        self.store = store
        self.analyzer = analyzer

    async def handle(self, tx: Dict[str, Any], block: Dict[str, Any]) -> Optional[ContractRecord]:
        """
        Resolve the created address of ``tx``, score it and upsert the record.

        Returns:
            The stored record, or None if the tx created nothing or its
            receipt could not be fetched
        """
        tx_hash = _hex(tx.get("hash"))
        try:
            receipt = await self.pool.get_receipt(self.network.name, tx.get("hash"))
        except Exception as e:
            logger.warning(f"[DETECT] {self.network.name} receipt error {tx_hash}: {e}")
            return None

        address = receipt.get("contractAddress") if receipt else None
        if not address:
            return None

        deployer = tx.get("from") or ZERO_ADDRESS
        logger.info(f"[DETECT] {self.network.name} contract {address} by {deployer} in block {block.get('number')}")

        record = await self.analyzer(address, deployer, self.pool, self.network)
        record.block_number = block.get("number")
        record.tx_hash = tx_hash
        if block.get("timestamp") is not None:
            record.timestamp = iso_timestamp(block["timestamp"])

        self.store.save_contract(record)
        logger.info(f"[DETECT] Indexed {address} risk={record.risk_score} tag={record.tag}")
        return record
