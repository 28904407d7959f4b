"""Ticker snapshots for a single instrument.

``PriceService`` is the blocking variant used by the HTTP routes (run in a
worker thread). ``AsyncPriceFeed`` is the aiohttp variant used by the
broadcast poller.
"""
import asyncio
import time
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import aiohttp

from .errors import DecodeError, TransportError
from .models import PriceSnapshot
from .public_client import OKXPublicClient
from .wire import RawTicker, check_envelope, decode_envelope, parse_records

TICKER_PATH = "/api/v5/market/ticker"


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError):
        return Decimal(0)


def build_snapshot(symbol: str, ticker: RawTicker, now: Optional[int] = None) -> PriceSnapshot:
    """Summarize a ticker; 24h change is ``last - open24h``."""
    last = _decimal(ticker.last)
    open24h = _decimal(ticker.open24h)
    change = last - open24h
    percent = change / open24h * 100 if open24h != 0 else Decimal(0)

    return PriceSnapshot(
        symbol=symbol,
        price=ticker.last,
        change24h=f"{change:.2f}",
        change_percent24h=f"{percent:.2f}",
        volume24h=ticker.vol24h,
        high24h=ticker.high24h,
        low24h=ticker.low24h,
        timestamp=int(time.time()) if now is None else now,
    )


class PriceService:
    def __init__(self, client: OKXPublicClient, *, clock: Callable[[], float] = time.time):
        self.client = client
        self._clock = clock

    def get_price(self, symbol: str) -> PriceSnapshot:
        if not symbol:
            raise ValueError("symbol must not be empty")
        ticker = self.client.get_ticker(symbol)
        return build_snapshot(symbol, ticker, int(self._clock()))


class AsyncPriceFeed:
    """Async ticker fetcher using aiohttp.

    Usage:
        async with AsyncPriceFeed() as feed:
            snapshot = await feed.get_price("BTC-USDT")
    """

    def __init__(self, base_url: str = "https://www.okx.com", *, timeout: int = 10):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession()

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def get_price(self, symbol: str) -> PriceSnapshot:
        if not self.session:
            raise TransportError("Session not initialized; use 'async with' or call start()")

        url = f"{self.base_url}{TICKER_PATH}"
        try:
            async with self.session.get(url, params={"instId": symbol}, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                text = await resp.text()
                status = resp.status
        except asyncio.TimeoutError as e:
            raise TransportError(f"Request timeout: {e}") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Request failed: {e}") from e

        try:
            envelope = decode_envelope(text)
        except DecodeError:
            if not (200 <= status < 300):
                raise TransportError(f"{status}: {text}")
            raise
        check_envelope(envelope)

        records = parse_records(RawTicker, envelope.data)
        if not records:
            raise DecodeError(f"no ticker data for {symbol}")
        return build_snapshot(symbol, records[0])

