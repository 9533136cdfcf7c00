import asyncio

import pytest

import radar.wallet_scanner as wallet_scanner
from radar.cursor_store import CursorStore
from radar.endpoint_pool import EndpointError
from radar.models import iso_timestamp
from radar.wallet_scanner import MULTISIG_SELECTORS, SAFE_PROXY_MARKER, WalletScanner, looks_like_multisig, sample_addresses

from conftest import ETHER

RICH = "0x6666666666666666666666666666666666666666"
POOR = "0x7777777777777777777777777777777777777777"
ZERO = "0x0000000000000000000000000000000000000000"


class FakePriceFeed:
    def __init__(self, price):
        self.price = price
        self.calls = 0

    async def get_price(self, ticker):
        self.calls += 1
        return self.price


@pytest.fixture()
def prices():
    return FakePriceFeed(2000.0)


@pytest.fixture()
def wallet_cursors():
    return CursorStore()


@pytest.fixture()
def wallets(network, pool, store, prices, wallet_cursors):
    pool.balances[RICH.lower()] = ETHER
    pool.balances[POOR.lower()] = ETHER // 10
    pool.codes[RICH.lower()] = "0x" + SAFE_PROXY_MARKER + "00" * 40
    return WalletScanner(network, pool, store, prices, wallet_cursors, interval=0.01)


def test_sample_addresses_is_distinct_and_capped():
    txs = [
        {"from": RICH, "to": POOR},
        {"from": RICH.upper().replace("0X", "0x"), "to": None},
        {"from": POOR, "to": ZERO},
        b"\x12\x34",
        {"from": "0x8888888888888888888888888888888888888888", "to": "0x9999999999999999999999999999999999999999"},
    ]
    assert sample_addresses(txs) == [
        RICH, POOR,
        "0x8888888888888888888888888888888888888888",
        "0x9999999999999999999999999999999999999999",
    ]
    assert sample_addresses(txs, limit=1) == [RICH]


@pytest.mark.parametrize(
    "code, expected",
    [
        ("0x", False),
        (None, False),
        ("0x" + SAFE_PROXY_MARKER, True),
        ("0x" + MULTISIG_SELECTORS[0], False),
        ("0x" + MULTISIG_SELECTORS[0] + MULTISIG_SELECTORS[1], True),
    ],
)
def test_looks_like_multisig(code, expected):
    assert looks_like_multisig(code) is expected


def test_scan_recent_keeps_rich_wallets(run, pool, store, prices, wallets, wallet_cursors):
    pool.head = 10
    pool.add_block(9, [{"hash": "0xw9", "from": RICH, "to": POOR}])

    assert run(wallets.scan_recent(count=2)) == 1

    saved = store.wallets()
    assert len(saved) == 1
    wallet = saved[0]
    assert wallet.address == RICH
    assert wallet.balance_native == 1.0
    assert wallet.balance_usd == 2000.0
    assert wallet.is_multisig
    assert wallet.tx_hash == "0xw9"
    assert wallet.last_seen == iso_timestamp(1700000009)
    assert wallet_cursors.get("Testnet") == 10
    assert prices.calls == 1
    assert [c[1] for c in pool.calls if c[0] == "get_block"] == [8, 9, 10]


def test_scan_recent_resumes_after_cursor(run, pool, wallets, wallet_cursors):
    pool.head = 10
    wallet_cursors.advance("Testnet", 10)
    assert run(wallets.scan_recent()) == 0
    assert not [c for c in pool.calls if c[0] == "get_block"]


def test_long_backlog_is_capped(run, pool, wallets, wallet_cursors):
    pool.head = 100
    wallet_cursors.advance("Testnet", 1)
    run(wallets.scan_recent())
    assert [c[1] for c in pool.calls if c[0] == "get_block"] == [95, 96, 97, 98, 99, 100]


def test_backlog_restart_depth_is_configurable(run, pool, wallets, wallet_cursors, monkeypatch):
    monkeypatch.setattr(wallet_scanner, "WALLET_BACKLOG_RESTART", 2)
    pool.head = 100
    wallet_cursors.advance("Testnet", 1)
    run(wallets.scan_recent())
    assert [c[1] for c in pool.calls if c[0] == "get_block"] == [98, 99, 100]


def test_balance_failure_skips_address(run, pool, store, wallets):
    pool.head = 1
    pool.add_block(1, [{"hash": "0xw1", "from": RICH, "to": POOR}])
    pool.balances[RICH.lower()] = EndpointError("timeout")

    assert run(wallets.scan_recent()) == 0
    assert store.wallets() == []


def test_block_failure_leaves_cursor(run, pool, wallets, wallet_cursors):
    pool.head = 10
    pool.failing_blocks.add(9)
    assert run(wallets.scan_recent(count=2)) == 0
    assert wallet_cursors.get("Testnet") is None


def test_busy_wallet_scan_is_dropped(run, pool, wallets):
    wallets.scanning = True
    assert run(wallets.scan_recent()) == 0
    assert pool.calls == []


def test_background_loop_start_stop(run, pool, store, wallets):
    pool.head = 3
    pool.add_block(3, [{"hash": "0xw3", "from": RICH, "to": None}])

    async def cycle():
        wallets.start()
        await asyncio.sleep(0.05)
        await wallets.stop()

    run(cycle())
    assert not wallets.active
    assert [w.address for w in store.wallets()] == [RICH]
