"""Bytecode pattern risk scoring for freshly deployed contracts."""
import asyncio
import logging
from typing import Any, Optional

from web3 import Web3

from radar.config import (
    DEPLOYER_MIN_BALANCE,
    EXCERPT_CHARS,
    HONEYPOT_MAX_HEX_LEN,
    LIQUIDITY_DISCOUNT,
    METADATA_TIMEOUT,
    PROXY_MAX_HEX_LEN,
    ZERO_ADDRESS,
    NetworkConfig,
)
from radar.endpoint_pool import EndpointError
from radar.models import ContractRecord

logger = logging.getLogger(__name__)

# Hex fragments searched for in runtime bytecode
MINIMAL_PROXY = "363d3d373d3d3d363d73"  # EIP-1167 prefix
SEL_TRANSFER = "a9059cbb"
SEL_TOTAL_SUPPLY = "18160ddd"
SEL_OWNER = "8da5cb5b"
SEL_MINT = "40c10f19"
SEL_BURN = "4296696b"
SEL_ERROR_STRING = "08c379a0"  # Error(string)
LP_SELECTORS = ("0dfe165a", "bc25cf77")
TAX_MATH = "405c"

ERC20_META_ABI = [
    {"constant": True, "inputs": [], "name": "name",
     "outputs": [{"name": "", "type": "string"}], "type": "function"},
    {"constant": True, "inputs": [], "name": "symbol",
     "outputs": [{"name": "", "type": "string"}], "type": "function"},
]

FACTORY_ABI = [
    {"constant": True,
     "inputs": [{"name": "tokenA", "type": "address"}, {"name": "tokenB", "type": "address"}],
     "name": "getPair", "outputs": [{"name": "pair", "type": "address"}], "type": "function"},
]

PAIR_ABI = [
    {"constant": True, "inputs": [], "name": "getReserves",
     "outputs": [{"name": "_reserve0", "type": "uint112"},
                 {"name": "_reserve1", "type": "uint112"},
                 {"name": "_blockTimestampLast", "type": "uint32"}],
     "type": "function"},
    {"constant": True, "inputs": [], "name": "token0",
     "outputs": [{"name": "", "type": "address"}], "type": "function"},
]


def is_empty_code(code: Optional[str]) -> bool:
    return not code or code.lower() in ("0x", "0x0")


def bytecode_excerpt(code: str) -> str:
    if len(code) > 2 * EXCERPT_CHARS:
        return code[:EXCERPT_CHARS] + "..." + code[-EXCERPT_CHARS:]
    return code


def liquidity_adjusted(score: int, native_reserve: float) -> int:
    """Discount the score for pairs holding more than one native unit."""
    if native_reserve > 1.0:
        return max(0, score - LIQUIDITY_DISCOUNT)
    return score


async def analyze_contract(
    address: str,
    deployer: str,
    pool: Any,
    network: NetworkConfig,
) -> ContractRecord:
    """
    Build the risk profile of the contract at ``address``.

    Args:
        address: Deployed contract address
        deployer: Creator of the deployment transaction
        pool: Endpoint pool used for every RPC read
        network: Network the contract lives on

    Returns:
        ContractRecord with score, tag, features and findings. Unexpected
        errors produce a partial record with ``error`` set.

    Raises:
        EndpointError: if the bytecode itself cannot be fetched
    """
    record = ContractRecord(address=address, deployer=deployer, network=network.name)

    code = await pool.get_code(network.name, address)

    try:
        if is_empty_code(code):
            record.type = "Destructed/EOA"
            record.risk_score = 10
            record.finalize()
            return record

        code = code.lower()
        record.bytecode_excerpt = bytecode_excerpt(code)
        record.bytecode_size = (len(code) - 2) // 2

        # 1. Structure
        if MINIMAL_PROXY in code or len(code) < PROXY_MAX_HEX_LEN:
            record.type = "Proxy"
            record.add_feature("Proxy Architecture")
            record.add_finding(
                "Proxy Detected", "MEDIUM",
                "Contract uses a proxy pattern. Logic can be changed by owner at any time.",
                "Bytecode matches EIP-1167 or is too small to hold its own logic.",
            )
            record.risk_score += 25

        # 2. Token classification
        has_transfer = SEL_TRANSFER in code
        is_token = has_transfer and SEL_TOTAL_SUPPLY in code
        if is_token:
            record.type = "Token (ERC20)"
            record.add_feature("ERC20 / Token")
            record.name = await _probe_metadata(pool, network.name, address, "name", "Unknown Token")
            record.symbol = await _probe_metadata(pool, network.name, address, "symbol", "???")

        # 3. Liquidity
        if (is_token or has_transfer) and network.dex_factory and network.wrapped_native:
            reserve = await _probe_liquidity(pool, network, address)
            if reserve is not None and reserve > 0:
                record.has_liquidity = True
                record.add_feature(f"Liquidity: {reserve:.4f} {network.native_symbol}")
                record.risk_score = liquidity_adjusted(record.risk_score, reserve)
            elif reserve is not None:
                record.add_feature("Pair Created (Empty)")

        if not record.has_liquidity and any(sel in code for sel in LP_SELECTORS):
            record.has_liquidity = True
            record.add_feature("LP Contract Pattern")
            record.type = "Liquidity Pool"

        # 4. Privileges
        if SEL_OWNER in code:
            record.add_feature("Ownable")
        if SEL_MINT in code:
            record.is_mintable = True
            record.add_feature("Mintable")
            if "Ownable" in record.features:
                record.add_finding(
                    "Centralized Minting", "HIGH",
                    "Owner can mint new tokens at will, potentially diluting holders.",
                    "Mint function detected alongside ownership markers.",
                )
                record.risk_score += 30
        if SEL_BURN in code:
            record.is_burnable = True
            record.add_feature("Burnable")

        # 5. Transfer tax
        if TAX_MATH in code and has_transfer:
            record.add_feature("Tax Logic")
            record.add_finding(
                "Transfer Tax", "LOW",
                "Contract may charge fees on transfers.",
                "Arithmetic operation detected in transfer logic flow.",
            )

        # 6. Honeypot
        if SEL_ERROR_STRING in code and len(code) < HONEYPOT_MAX_HEX_LEN:
            record.add_finding(
                "Honeypot Risk", "CRITICAL",
                "Potential conditional transfer restriction detected in bytecode.",
                "Small contract with revert-with-reason paths (possible blacklist).",
            )
            record.risk_score += 50

        # 7. Deployer reputation
        balance = await _deployer_balance(pool, network.name, deployer)
        if balance is not None and balance < DEPLOYER_MIN_BALANCE:
            record.add_finding(
                "High Risk Deployer", "HIGH",
                "Deployer wallet has extremely low balance, typical of rug-pull burner accounts.",
                f"Balance: {balance:.4f} {network.native_symbol}",
            )
            record.risk_score += 30

    except Exception as e:
        logger.error(f"[ANALYZER] {network.name} {address} analysis failed: {e}")
        record.error = str(e)

    record.finalize()
    return record


async def _probe_metadata(pool: Any, network: str, address: str, fn_name: str, default: str) -> str:
    try:
        value = await asyncio.wait_for(
            pool.call_contract(network, address, ERC20_META_ABI, fn_name),
            timeout=METADATA_TIMEOUT,
        )
    except asyncio.TimeoutError:
        logger.debug(f"[ANALYZER] {fn_name}() timed out for {address}")
        return default
    except Exception as e:
        logger.debug(f"[ANALYZER] {fn_name}() failed for {address}: {e}")
        return default
    if isinstance(value, str):
        value = value.strip("\x00").strip()
    return value or default


async def _probe_liquidity(pool: Any, network: NetworkConfig, token: str) -> Optional[float]:
    """
    Wrapped-native reserve of the token's pair in native units.

    Returns:
        None when there is no pair or the probe failed, else the reserve
    """
    weth = network.wrapped_native
    try:
        pair = await pool.call_contract(
            network.name, network.dex_factory, FACTORY_ABI, "getPair",
            Web3.to_checksum_address(token), Web3.to_checksum_address(weth),
        )
        if not pair or int(pair, 16) == 0:
            return None
        reserves = await pool.call_contract(network.name, pair, PAIR_ABI, "getReserves")
        token0 = await pool.call_contract(network.name, pair, PAIR_ABI, "token0")
    except Exception as e:
        logger.debug(f"[ANALYZER] Liquidity probe failed for {token}: {e}")
        return None

    raw = reserves[0] if token0.lower() == weth.lower() else reserves[1]
    return float(Web3.from_wei(int(raw), "ether"))


async def _deployer_balance(pool: Any, network: str, deployer: Optional[str]) -> Optional[float]:
    if not deployer or deployer.lower() == ZERO_ADDRESS:
        return None
    try:
        wei = await pool.get_balance(network, deployer)
    except EndpointError as e:
        logger.warning(f"[ANALYZER] Could not fetch deployer balance for {deployer}: {e}")
        return None
    return float(Web3.from_wei(int(wei), "ether"))
