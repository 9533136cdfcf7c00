import asyncio

import pytest

from radar.cursor_store import CursorStore
from radar.risk_analyzer import SEL_OWNER
from radar.service import RadarService, UnknownNetworkError

from conftest import TOKEN, make_code


class StaticPrice:
    async def get_price(self, ticker):
        return 1.0


@pytest.fixture()
def service(network, pool, store, cursors):
    return RadarService(
        networks={network.name: network},
        pool=pool,
        store=store,
        cursors=cursors,
        wallet_cursors=CursorStore(),
        price_feed=StaticPrice(),
    )


def test_unknown_network_is_rejected(run, service):
    with pytest.raises(UnknownNetworkError):
        service.start_scanning("Nowhere")
    with pytest.raises(UnknownNetworkError):
        run(service.analyze_address("Nowhere", TOKEN))


def test_start_resumes_persisted_networks(run, service, cursors):
    cursors.set_active("Testnet", True)
    cursors.set_active("Retired", True)

    async def lifecycle():
        resumed = await service.start()
        active = service.status()["active_scans"]
        await service.stop()
        return resumed, active

    resumed, active = run(lifecycle())
    assert resumed == ["Testnet"]
    assert active == {"Testnet": True}
    # stopping the service keeps the flag for the next start
    assert cursors.active_networks() == ["Testnet", "Retired"]


def test_stop_scanning_clears_active_flag(run, service, cursors):
    async def toggle():
        service.start_scanning("Testnet")
        assert cursors.active_networks() == ["Testnet"]
        await service.stop_scanning("Testnet")

    run(toggle())
    assert cursors.active_networks() == []
    assert service.status()["active_scans"] == {"Testnet": False}


def test_scan_history_runs_in_background(run, pool, service, store):
    pool.head = 4
    pool.add_block(4, [{"hash": "0xh4", "from": TOKEN, "to": None}])
    pool.receipts["0xh4"] = {"contractAddress": TOKEN}
    pool.codes[TOKEN.lower()] = make_code(SEL_OWNER)

    async def history():
        task = service.scan_history("Testnet", blocks=2)
        scanned = await task
        await service.stop()
        return scanned

    assert run(history()) == 3
    assert [r.block_number for r in service.contracts(network="Testnet")] == [4]


def test_wallet_radar_toggle(run, service):
    async def toggle():
        service.start_wallets("Testnet")
        await asyncio.sleep(0)
        on = service.status()["networks"]["Testnet"]["wallets_active"]
        await service.stop_wallets("Testnet")
        return on

    assert run(toggle()) is True
    assert service.status()["networks"]["Testnet"]["wallets_active"] is False


def test_status_shape(service, cursors):
    cursors.advance("Testnet", 12)
    status = service.status()
    assert status["networks"]["Testnet"]["last_block"] == 12
    assert status["networks"]["Testnet"]["is_scanning"] is False
    assert "rpc" not in status["networks"]["Testnet"]
