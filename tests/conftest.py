import asyncio

import pytest

from radar.config import NetworkConfig
from radar.cursor_store import CursorStore
from radar.endpoint_pool import EndpointError
from radar.entity_store import EntityStore

FACTORY = "0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f"
WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
PAIR = "0x2222222222222222222222222222222222222222"
TOKEN = "0x1111111111111111111111111111111111111111"
DEPLOYER = "0x3333333333333333333333333333333333333333"
ETHER = 10 ** 18


class FakePool:
    """In-memory stand-in for EndpointPool, recording every call."""

    def __init__(self, head=0):
        self.head = head
        self.blocks = {}
        self.receipts = {}
        self.codes = {}
        self.balances = {}
        self.contract_calls = {}
        self.failing_blocks = set()
        self.announce = []
        self.calls = []
        self.inflight = 0
        self.max_inflight = 0

    def add_block(self, height, transactions, timestamp=None):
        self.blocks[height] = {
            "number": height,
            "timestamp": 1700000000 + height if timestamp is None else timestamp,
            "transactions": transactions,
        }
        self.head = max(self.head, height)

    def backoff_delay(self, network):
        return 0.0

    async def get_block_number(self, network):
        self.calls.append(("block_number",))
        return self.head

    async def get_block(self, network, height, full_transactions=True):
        self.calls.append(("get_block", height))
        self.inflight += 1
        self.max_inflight = max(self.max_inflight, self.inflight)
        try:
            await asyncio.sleep(0)
            if height in self.failing_blocks:
                raise EndpointError(f"block {height} unavailable")
            if height not in self.blocks:
                return {"number": height, "timestamp": 1700000000 + height, "transactions": []}
            return self.blocks[height]
        finally:
            self.inflight -= 1

    async def get_receipt(self, network, tx_hash):
        self.calls.append(("get_receipt", tx_hash))
        receipt = self.receipts.get(tx_hash)
        if isinstance(receipt, Exception):
            raise receipt
        return receipt

    async def get_code(self, network, address):
        self.calls.append(("get_code", address))
        code = self.codes.get(address.lower(), "0x")
        if isinstance(code, Exception):
            raise code
        return code

    async def get_balance(self, network, address):
        self.calls.append(("get_balance", address))
        balance = self.balances.get(address.lower(), 10 * ETHER)
        if isinstance(balance, Exception):
            raise balance
        return balance

    async def call_contract(self, network, address, abi, fn_name, *args):
        self.calls.append(("call", address, fn_name))
        value = self.contract_calls.get((address.lower(), fn_name))
        if value is None:
            raise RuntimeError(f"execution reverted: {fn_name}")
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return await value()
        return value

    async def watch_blocks(self, network, stop, poll_interval=0):
        for height in self.announce:
            if stop.is_set():
                return
            yield height
            await asyncio.sleep(0.01)
        await stop.wait()


def make_code(*fragments, length=1200):
    """Runtime bytecode hex containing ``fragments``, zero padded to ``length`` chars."""
    body = "00".join(fragments)
    return "0x" + body + "0" * max(0, length - len(body))


@pytest.fixture()
def network():
    return NetworkConfig(
        name="Testnet",
        chain_id=1337,
        rpc_urls=["http://e0", "http://e1", "http://e2"],
        dex_factory=FACTORY,
        wrapped_native=WETH,
        native_symbol="ETH",
        price_ticker="ethereum",
    )


@pytest.fixture()
def pool():
    return FakePool()


@pytest.fixture()
def store():
    return EntityStore()


@pytest.fixture()
def cursors():
    return CursorStore()


@pytest.fixture()
def run():
    """Drive a coroutine to completion on a fresh event loop."""
    return asyncio.run
