"""
OKX Account Gateway.

Exposes OKX v5 account, position and price data over HTTP and WebSocket,
featuring:
- Server clock synchronization with a cooldown and last-known-good offset
- HMAC-SHA256 request signing (OK-ACCESS-* headers)
- Bounded retry of requests rejected for timestamp skew
- Currency conversion through direct, inverse and USDT-bridged rates
- Live price fan-out to WebSocket subscribers with drop-on-busy ticks
- Structured logging via loguru
- Configuration-driven (YAML)

Core Modules:
    clock_sync: Server clock offset tracking
    signer: OKX request signing
    executor: Signed request execution with clock-skew retry
    rates: Exchange rate table and currency conversion
    mapper: Raw payload to display record mapping
    account_service: Balance, position and profit/loss queries
    price_service: Ticker snapshots (blocking and aiohttp)
    broadcast: Price fan-out to WebSocket subscribers
    server: aiohttp HTTP/WebSocket facade
    config: Configuration loading and validation
    secrets: Credential management

Example:
    >>> from okx_gateway.account_service import AccountService
    >>> from okx_gateway.models import Currency
    >>> from okx_gateway.secrets import load_credentials
    >>>
    >>> creds = load_credentials()
    >>> service = AccountService.build(creds)
    >>> service.get_account_balance(Currency.CNY)
"""

__version__ = "0.1.0"
__all__ = [
    "clock_sync",
    "signer",
    "executor",
    "rates",
    "mapper",
    "account_service",
    "price_service",
    "broadcast",
    "server",
    "config",
    "secrets",
    "errors",
]
