"""aiohttp HTTP/WebSocket facade over the account and price services.

Every JSON route answers with the envelope ``{"success", "message", "data"}``
or ``{"success": false, "error"}``. Exchange calls are blocking and run in a
worker thread. ``/ws/price`` registers the socket with the broadcast manager,
which pushes a snapshot on join and then on every poll tick.
"""

import argparse
import asyncio
import functools
import json
import os
import time
from typing import Any, Callable, Optional

from aiohttp import web

from .account_service import AccountService
from .broadcast import PriceBroadcastManager
from .config import GatewayConfig
from .errors import GatewayError
from .logging_setup import logger, setup_from_config
from .models import SUPPORTED_CURRENCIES, SUPPORTED_PERIODS, Currency, PositionsHistoryRequest, PositionsRequest, TimePeriod
from .price_service import AsyncPriceFeed, PriceService
from .secrets import load_credentials


def success(data: Any = None, message: str = "") -> web.Response:
    body = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return web.json_response(body)


def failure(error: str, status: int) -> web.Response:
    return web.json_response({"success": False, "error": error}, status=status)


def _to_json(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, list):
        return [_to_json(v) for v in value]
    return value


class GatewayServer:
    def __init__(
        self,
        account_service: AccountService,
        price_service: PriceService,
        broadcast: PriceBroadcastManager,
        *,
        host: str = "0.0.0.0",
        port: int = 8080,
        price_feed: Optional[AsyncPriceFeed] = None,
        poll_prices: bool = True,
    ):
        self.host = host
        self.port = port
        self.account_service = account_service
        self.price_service = price_service
        self.broadcast = broadcast
        self.price_feed = price_feed
        self.poll_prices = poll_prices
        self._start_time = time.time()
        self.app = web.Application()
        self._setup_routes()

    @classmethod
    def from_config(cls, config: GatewayConfig, credentials) -> "GatewayServer":
        account_service = AccountService.build(credentials, config)
        price_service = PriceService(account_service.public_client)
        feed = AsyncPriceFeed(config.exchange.base_url, timeout=config.broadcast.feed_timeout)
        broadcast = PriceBroadcastManager(
            functools.partial(feed.get_price, config.broadcast.symbol),
            poll_interval=config.broadcast.poll_interval,
            max_pending=config.broadcast.max_pending_broadcasts,
        )
        return cls(
            account_service,
            price_service,
            broadcast,
            host=config.server.host,
            port=config.server.port,
            price_feed=feed,
        )

    def _setup_routes(self):
        r = self.app.router
        r.add_get("/health", self.handle_health)
        r.add_get("/api/v1/ping", self.handle_ping)
        r.add_get("/api/v1/account/balance", self.handle_balance)
        r.add_get("/api/v1/account/balance/{currency}", self.handle_balance)
        r.add_get("/api/v1/account/profit-loss", self.handle_profit_loss)
        r.add_get("/api/v1/account/summary", self.handle_summary)
        r.add_get("/api/v1/account/summary/{currency}", self.handle_summary)
        r.add_get("/api/v1/account/currency", self.handle_get_currency)
        r.add_post("/api/v1/account/currency", self.handle_set_currency)
        r.add_get("/api/v1/account/currencies", self.handle_currencies)
        r.add_get("/api/v1/account/periods", self.handle_periods)
        r.add_get("/api/v1/account/exchange-rates", self.handle_exchange_rates)
        r.add_get("/api/v1/account/positions", self.handle_positions)
        r.add_get("/api/v1/account/positions-history", self.handle_positions_history)
        r.add_get("/api/v1/account/positions/{posId}/history", self.handle_position_history)
        r.add_get("/api/v1/price/{symbol}", self.handle_price)
        r.add_get("/api/v1/okx/instruments", self.handle_instruments)
        r.add_get("/api/v1/okx/instruments/{type}", self.handle_instruments)
        r.add_get("/api/v1/okx/config", self.handle_okx_config)
        r.add_get("/ws/price", self.handle_ws)
        self.app.on_startup.append(self._on_startup)
        self.app.on_cleanup.append(self._on_cleanup)

    async def _call(self, func: Callable, *args, action: str, message: str, **kwargs) -> web.Response:
        """Run a blocking service call and wrap its result in the envelope."""
        try:
            result = await asyncio.to_thread(func, *args, **kwargs)
        except GatewayError as e:
            logger.error(f"{action} failed | error={e}")
            return failure(f"{action} failed: {e}", 500)
        except ValueError as e:
            return failure(str(e), 400)
        except Exception as e:
            logger.exception(f"{action} failed unexpectedly")
            return failure(f"{action} failed: {e}", 500)
        return success(_to_json(result), message)

    def _currency(self, request: web.Request) -> Currency:
        value = request.match_info.get("currency") or request.query.get("currency")
        if not value:
            return self.account_service.default_currency
        return Currency.parse(value)

    async def handle_health(self, request: web.Request):
        return web.json_response({
            "status": "healthy",
            "timestamp": int(time.time()),
            "uptime_seconds": time.time() - self._start_time,
            "subscribers": self.broadcast.subscriber_count,
        })

    async def handle_ping(self, request: web.Request):
        return web.json_response({"message": "pong"})

    async def handle_balance(self, request: web.Request):
        try:
            currency = self._currency(request)
        except ValueError as e:
            return failure(str(e), 400)
        return await self._call(
            self.account_service.get_account_balance, currency,
            action="Fetch account balance", message="Account balance fetched",
        )

    async def handle_profit_loss(self, request: web.Request):
        try:
            currency = self._currency(request)
        except ValueError as e:
            return failure(str(e), 400)
        periods = TimePeriod.parse_list(request.query.get("periods", ""))
        return await self._call(
            self.account_service.get_profit_loss, currency, periods,
            action="Fetch profit/loss", message="Profit/loss fetched",
        )

    async def handle_summary(self, request: web.Request):
        try:
            currency = self._currency(request)
        except ValueError as e:
            return failure(str(e), 400)
        return await self._call(
            self.account_service.get_account_summary, currency,
            action="Fetch account summary", message="Account summary fetched",
        )

    async def handle_get_currency(self, request: web.Request):
        currency = self.account_service.default_currency
        return success({"currency": currency.value, "symbol": currency.symbol}, "Default currency fetched")

    async def handle_set_currency(self, request: web.Request):
        try:
            payload = await request.json()
        except json.JSONDecodeError as e:
            return failure(f"Invalid request body: {e}", 400)
        if not isinstance(payload, dict) or not payload.get("currency"):
            return failure("Invalid request body: currency is required", 400)
        try:
            currency = Currency.parse(payload["currency"])
        except ValueError as e:
            return failure(str(e), 400)

        self.account_service.default_currency = currency
        return success({"currency": currency.value, "symbol": currency.symbol}, "Default currency updated")

    async def handle_currencies(self, request: web.Request):
        data = [
            {"currency": c.value, "symbol": c.symbol, "name": c.display_name}
            for c in SUPPORTED_CURRENCIES
        ]
        return success(data, "Supported currencies fetched")

    async def handle_periods(self, request: web.Request):
        data = [
            {"period": p.value, "days": p.duration.days, "label": p.label}
            for p in SUPPORTED_PERIODS
        ]
        return success(data, "Supported periods fetched")

    async def handle_exchange_rates(self, request: web.Request):
        return await self._call(
            self.account_service.get_exchange_rates,
            action="Fetch exchange rates", message="Exchange rates fetched",
        )

    async def handle_positions(self, request: web.Request):
        try:
            currency = self._currency(request)
        except ValueError as e:
            return failure(str(e), 400)
        q = request.query
        positions_request = PositionsRequest(
            inst_type=q.get("instType", ""),
            inst_id=q.get("instId", ""),
            pos_id=q.get("posId", ""),
        )
        return await self._call(
            self.account_service.get_positions, positions_request, currency,
            action="Fetch positions", message="Positions fetched",
        )

    async def handle_positions_history(self, request: web.Request):
        try:
            currency = self._currency(request)
        except ValueError as e:
            return failure(str(e), 400)
        q = request.query
        history_request = PositionsHistoryRequest(
            inst_type=q.get("instType", ""),
            inst_id=q.get("instId", ""),
            mgn_mode=q.get("mgnMode", ""),
            type=q.get("type", ""),
            pos_id=q.get("posId", ""),
            after=q.get("after", ""),
            before=q.get("before", ""),
            limit=q.get("limit", ""),
        )
        return await self._call(
            self.account_service.get_positions_history, history_request, currency,
            from_current_positions=q.get("fromCurrentPositions") == "true",
            action="Fetch positions history", message="Positions history fetched",
        )

    async def handle_position_history(self, request: web.Request):
        pos_id = request.match_info.get("posId", "").strip()
        if not pos_id:
            return failure("posId must not be empty", 400)
        try:
            currency = self._currency(request)
        except ValueError as e:
            return failure(str(e), 400)
        q = request.query
        return await self._call(
            self.account_service.get_position_with_history, pos_id, currency,
            limit=q.get("limit", "100"),
            include_current=q.get("includeCurrent") == "true",
            action="Fetch position history", message="Position history fetched",
        )

    async def handle_price(self, request: web.Request):
        symbol = request.match_info.get("symbol", "").strip()
        if not symbol:
            return failure("symbol must not be empty", 400)
        return await self._call(
            self.price_service.get_price, symbol,
            action="Fetch price", message="Price fetched",
        )

    async def handle_instruments(self, request: web.Request):
        inst_type = request.match_info.get("type") or request.query.get("instType", "SPOT")
        return await self._call(
            self.account_service.get_instruments, inst_type,
            action="Fetch instruments", message=f"{inst_type} instruments fetched",
        )

    async def handle_okx_config(self, request: web.Request):
        creds = self.account_service.credentials
        data = {
            "baseUrl": self.account_service.public_client.base_url,
            "hasApiKey": bool(creds.api_key),
            "hasSecretKey": bool(creds.secret_key),
            "hasPassphrase": bool(creds.passphrase),
        }
        return success(data, "OKX config fetched")

    async def handle_ws(self, request: web.Request):
        """WebSocket endpoint for live price snapshots."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        await self.broadcast.register(ws)
        await self.broadcast.serve(ws)
        return ws

    async def _on_startup(self, app):
        if self.price_feed is not None:
            await self.price_feed.start()
        self.broadcast.start(poll=self.poll_prices)

    async def _on_cleanup(self, app):
        self.broadcast.stop_polling()
        await self.broadcast.close()
        if self.price_feed is not None:
            await self.price_feed.close()

    def run(self):
        logger.info(f"Starting OKX gateway | host={self.host} port={self.port}")
        web.run_app(self.app, host=self.host, port=self.port, print=None)


def main(argv=None):
    parser = argparse.ArgumentParser(description="OKX account gateway")
    parser.add_argument("--config", default=os.environ.get("CONFIG_PATH"), help="Path to YAML config")
    parser.add_argument("--credentials", default=None, help="Path to OKX credentials JSON")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    args = parser.parse_args(argv)

    config = GatewayConfig.from_yaml(args.config) if args.config else GatewayConfig.default()
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port

    setup_from_config(config.logging)

    credentials = load_credentials(args.credentials, allow_incomplete=True)
    if not credentials.is_complete():
        logger.warning("OKX credentials incomplete; account endpoints will fail, public endpoints still work")

    GatewayServer.from_config(config, credentials).run()


if __name__ == "__main__":
    main()
