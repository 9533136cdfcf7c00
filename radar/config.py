"""Configuration constants and the network registry."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [u.strip() for u in raw.split(",") if u.strip()]


@dataclass(frozen=True)
class NetworkConfig:
    """Static description of one monitored chain."""
    name: str
    chain_id: int
    rpc_urls: List[str] = field(default_factory=list)
    dex_factory: Optional[str] = None
    wrapped_native: Optional[str] = None
    native_symbol: str = "ETH"
    price_ticker: str = "ethereum"


LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
DATA_DIR: Path = Path(os.getenv("RADAR_DATA_DIR", "data"))

# RPC behaviour
RPC_TIMEOUT: int = int(os.getenv("RPC_TIMEOUT", "10"))
POLL_INTERVAL: float = float(os.getenv("POLL_INTERVAL", "2"))
BACKOFF_BASE: float = float(os.getenv("BACKOFF_BASE", "0.5"))
BACKOFF_MAX: float = float(os.getenv("BACKOFF_MAX", "30"))
BREAKER_THRESHOLD: int = int(os.getenv("BREAKER_THRESHOLD", "3"))
BREAKER_COOLDOWN: float = float(os.getenv("BREAKER_COOLDOWN", "60"))

# Block scanning
BACKFILL_BATCH_SIZE: int = int(os.getenv("BACKFILL_BATCH_SIZE", "5"))
HISTORY_BLOCKS: int = int(os.getenv("HISTORY_BLOCKS", "10"))
REALTIME_ONLY: bool = _env_bool("REALTIME_ONLY")
# Most blocks one live tick scans when closing a gap behind the cursor
LIVE_MAX_CATCHUP: int = int(os.getenv("LIVE_MAX_CATCHUP", "50"))
SCAN_NETWORKS: List[str] = _env_list("SCAN_NETWORKS") or ["Ethereum"]

# Analyzer thresholds
METADATA_TIMEOUT: float = 5.0
PROXY_MAX_HEX_LEN: int = 500
HONEYPOT_MAX_HEX_LEN: int = 5000
DEPLOYER_MIN_BALANCE: float = 0.02  # native units
LIQUIDITY_DISCOUNT: int = 20
EXCERPT_CHARS: int = 500

# Wallet radar
WALLET_ENABLE: bool = _env_bool("WALLET_ENABLE", "1")
WALLET_SAMPLE_SIZE: int = int(os.getenv("WALLET_SAMPLE_SIZE", "15"))
WALLET_MIN_USD: float = float(os.getenv("WALLET_MIN_USD", "1000"))
WALLET_MAX_BACKLOG: int = 10
WALLET_BACKLOG_RESTART: int = 5  # blocks behind the head to restart from
WALLET_SCAN_INTERVAL: float = float(os.getenv("WALLET_SCAN_INTERVAL", "15"))
PRICE_TTL: float = 60.0
PRICE_API_URL: str = os.getenv("PRICE_API_URL", "https://api.coingecko.com/api/v3/simple/price")

# Used when the price API is unreachable and nothing is cached yet
FALLBACK_PRICES: Dict[str, float] = {
    "ethereum": 2300.0,
    "binancecoin": 600.0,
    "matic-network": 0.40,
}

ZERO_ADDRESS: str = "0x0000000000000000000000000000000000000000"


def _rpcs(name: str, defaults: List[str]) -> List[str]:
    # RPC_ETHEREUM_LIST="https://a,https://b" puts custom endpoints first
    custom = _env_list(f"RPC_{name.upper()}_LIST")
    return custom + [u for u in defaults if u not in custom]


NETWORKS: Dict[str, NetworkConfig] = {
    "Ethereum": NetworkConfig(
        name="Ethereum",
        chain_id=1,
        rpc_urls=_rpcs("Ethereum", [
            "https://eth.llamarpc.com",
            "https://cloudflare-eth.com",
            "https://ethereum.publicnode.com",
            "https://eth.drpc.org",
        ]),
        dex_factory="0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f",  # Uniswap V2
        wrapped_native="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        native_symbol="ETH",
        price_ticker="ethereum",
    ),
    "BSC": NetworkConfig(
        name="BSC",
        chain_id=56,
        rpc_urls=_rpcs("BSC", [
            "https://bsc-dataseed.binance.org",
            "https://rpc.ankr.com/bsc",
            "https://binance.llamarpc.com",
        ]),
        dex_factory="0xcA143Ce32Fe78f1f7019d7d551a6402fC5350c73",  # PancakeSwap V2
        wrapped_native="0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",
        native_symbol="BNB",
        price_ticker="binancecoin",
    ),
    "Polygon": NetworkConfig(
        name="Polygon",
        chain_id=137,
        rpc_urls=_rpcs("Polygon", [
            "https://polygon-rpc.com",
            "https://rpc.ankr.com/polygon",
            "https://polygon.llamarpc.com",
            "https://polygon.publicnode.com",
        ]),
        dex_factory="0x5757371414417b8C6CAad45bAeF941aBc7d3Ab32",  # QuickSwap
        wrapped_native="0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",
        native_symbol="MATIC",
        price_ticker="matic-network",
    ),
    "Base": NetworkConfig(
        name="Base",
        chain_id=8453,
        rpc_urls=_rpcs("Base", [
            "https://mainnet.base.org",
            "https://base.publicnode.com",
            "https://base.llamarpc.com",
        ]),
        dex_factory="0x8909Dc15e46C4A96d16279053B9F26870F605850",  # BaseSwap
        wrapped_native="0x4200000000000000000000000000000000000006",
        native_symbol="ETH",
        price_ticker="ethereum",
    ),
    "Arbitrum": NetworkConfig(
        name="Arbitrum",
        chain_id=42161,
        rpc_urls=_rpcs("Arbitrum", [
            "https://arb1.arbitrum.io/rpc",
            "https://arbitrum.publicnode.com",
            "https://arbitrum.llamarpc.com",
        ]),
        dex_factory="0xc35DADB65012eC5796536bD9864eD8773aBc74C4",  # SushiSwap V2
        wrapped_native="0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
        native_symbol="ETH",
        price_ticker="ethereum",
    ),
    "Optimism": NetworkConfig(
        name="Optimism",
        chain_id=10,
        rpc_urls=_rpcs("Optimism", [
            "https://mainnet.optimism.io",
            "https://optimism.publicnode.com",
            "https://optimism.llamarpc.com",
        ]),
        # No V2-style factory configured; liquidity falls back to bytecode patterns
        dex_factory=None,
        wrapped_native="0x4200000000000000000000000000000000000006",
        native_symbol="ETH",
        price_ticker="ethereum",
    ),
}
