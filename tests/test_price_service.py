from unittest.mock import MagicMock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from okx_gateway.errors import DecodeError, ExchangeAPIError, TransportError
from okx_gateway.price_service import AsyncPriceFeed, PriceService, build_snapshot
from okx_gateway.wire import RawTicker

TICKER = {
    "instId": "BTC-USDT",
    "last": "43500.5",
    "open24h": "42000",
    "high24h": "44000",
    "low24h": "41000",
    "vol24h": "1234.5",
}


def test_build_snapshot_change():
    snapshot = build_snapshot("BTC-USDT", RawTicker.model_validate(TICKER), now=1700000000)

    assert snapshot.price == "43500.5"
    assert snapshot.change24h == "1500.50"
    assert snapshot.change_percent24h == "3.57"
    assert snapshot.volume24h == "1234.5"
    assert snapshot.high24h == "44000"
    assert snapshot.timestamp == 1700000000


def test_build_snapshot_zero_open():
    ticker = RawTicker.model_validate({**TICKER, "open24h": "0"})

    snapshot = build_snapshot("BTC-USDT", ticker, now=1)

    assert snapshot.change24h == "43500.50"
    assert snapshot.change_percent24h == "0.00"


def test_snapshot_serializes_camel_case():
    data = build_snapshot("BTC-USDT", RawTicker.model_validate(TICKER), now=5).to_dict()

    assert set(data) == {
        "symbol", "price", "change24h", "changePercent24h",
        "volume24h", "high24h", "low24h", "timestamp",
    }


def test_price_service_get_price():
    client = MagicMock()
    client.get_ticker.return_value = RawTicker.model_validate(TICKER)
    service = PriceService(client, clock=lambda: 1700000000.9)

    snapshot = service.get_price("BTC-USDT")

    client.get_ticker.assert_called_once_with("BTC-USDT")
    assert snapshot.symbol == "BTC-USDT"
    assert snapshot.timestamp == 1700000000


def test_price_service_rejects_empty_symbol():
    with pytest.raises(ValueError):
        PriceService(MagicMock()).get_price("")


def _okx_app(payload, status=200):
    async def handle_ticker(request: web.Request):
        if isinstance(payload, str):
            return web.Response(text=payload, status=status)
        body = dict(payload)
        body["echo"] = request.query.get("instId")
        return web.json_response(body, status=status)

    app = web.Application()
    app.router.add_get("/api/v5/market/ticker", handle_ticker)
    return app


@pytest.mark.asyncio
async def test_async_feed_get_price():
    app = _okx_app({"code": "0", "msg": "", "data": [TICKER]})
    async with TestServer(app) as server:
        async with AsyncPriceFeed(f"http://{server.host}:{server.port}") as feed:
            snapshot = await feed.get_price("BTC-USDT")

    assert snapshot.price == "43500.5"
    assert snapshot.change24h == "1500.50"


@pytest.mark.asyncio
async def test_async_feed_api_error():
    app = _okx_app({"code": "51001", "msg": "Instrument ID does not exist", "data": []})
    async with TestServer(app) as server:
        async with AsyncPriceFeed(f"http://{server.host}:{server.port}") as feed:
            with pytest.raises(ExchangeAPIError, match="51001"):
                await feed.get_price("NOPE-USDT")


@pytest.mark.asyncio
async def test_async_feed_empty_data():
    app = _okx_app({"code": "0", "msg": "", "data": []})
    async with TestServer(app) as server:
        async with AsyncPriceFeed(f"http://{server.host}:{server.port}") as feed:
            with pytest.raises(DecodeError):
                await feed.get_price("BTC-USDT")


@pytest.mark.asyncio
async def test_async_feed_non_json_error():
    app = _okx_app("upstream down", status=503)
    async with TestServer(app) as server:
        async with AsyncPriceFeed(f"http://{server.host}:{server.port}") as feed:
            with pytest.raises(TransportError, match="503"):
                await feed.get_price("BTC-USDT")


@pytest.mark.asyncio
async def test_async_feed_requires_session():
    feed = AsyncPriceFeed()
    with pytest.raises(TransportError, match="Session not initialized"):
        await feed.get_price("BTC-USDT")


@pytest.mark.asyncio
async def test_async_feed_start_close_idempotent():
    feed = AsyncPriceFeed()
    await feed.start()
    session = feed.session
    await feed.start()
    assert feed.session is session
    await feed.close()
    await feed.close()
    assert feed.session is None
