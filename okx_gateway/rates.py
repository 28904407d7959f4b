"""
Currency conversion through a table of exchange rates.

Rates are keyed ``BASE_QUOTE`` (``"BTC_USDT"`` means 1 BTC = rate USDT). A
conversion uses, in order:

1. the direct pair ``FROM_TO`` (multiply),
2. the inverse pair ``TO_FROM`` (divide),
3. a two-hop route through the bridge currency (USDT): ``FROM -> USDT -> TO``.

Results are rendered with 5 decimals when the target is BTC and 2 decimals
otherwise. The intermediate bridge amount is rendered the same way before the
second hop, so bridged results match what a user would get converting by hand
from the displayed USDT figure.

The table refreshes at most once per cooldown. A failed refresh keeps a stale
table; with no table at all the failure surfaces to the conversion caller.
"""

import time
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Callable, Dict, Iterable, Optional

from .errors import ConversionError, DecodeError, ExchangeAPIError, GatewayError
from .locks import ReadWriteLock
from .logging_setup import logger
from .models import Currency
from .public_client import TICKER_TIMEOUT, OKXPublicClient

BRIDGE_CURRENCY = "USDT"
CRYPTO_CURRENCY = "BTC"

CRYPTO_DECIMALS = 5
FIAT_DECIMALS = 2

DEFAULT_COOLDOWN_SECONDS = 300.0
DEFAULT_TICKER_PAIRS = ("BTC-USDT", "BTC-USD", "ETH-USDT", "ETH-USD")
DEFAULT_FIAT_APIS = (
    "https://api.exchangerate-api.com/v4/latest/USD",
    "https://open.er-api.com/v6/latest/USD",
)
FALLBACK_CNY_RATE = 7.2
FIAT_TIMEOUT = 5


def pair_key(base: str, quote: str) -> str:
    return f"{_code(base)}_{_code(quote)}"


def precision_for(currency) -> int:
    return CRYPTO_DECIMALS if _code(currency) == CRYPTO_CURRENCY else FIAT_DECIMALS


def _code(currency) -> str:
    if isinstance(currency, Currency):
        return currency.value
    return str(currency).upper()


def _quantize(value: Decimal, places: int) -> str:
    return str(value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN))


class RateSource:
    """Fetches a fresh rate table from OKX tickers and a public fiat API."""

    def __init__(
        self,
        client: OKXPublicClient,
        *,
        pairs: Iterable[str] = DEFAULT_TICKER_PAIRS,
        fiat_apis: Iterable[str] = DEFAULT_FIAT_APIS,
        fallback_cny_rate: float = FALLBACK_CNY_RATE,
    ):
        self.client = client
        self.pairs = tuple(pairs)
        self.fiat_apis = tuple(fiat_apis)
        self.fallback_cny_rate = fallback_cny_rate

    def fetch(self) -> Dict[str, float]:
        """Build a new rate table.

        Raises:
            TransportError: a ticker request could not be made at all
        """
        rates: Dict[str, float] = {}
        for pair in self.pairs:
            try:
                ticker = self.client.get_ticker(pair, timeout=TICKER_TIMEOUT)
                price = float(ticker.last)
            except (ExchangeAPIError, DecodeError, ValueError) as e:
                logger.warning(f"Skipping rate pair | pair={pair} error={e}")
                continue
            if price <= 0:
                logger.warning(f"Skipping non-positive rate | pair={pair} price={price}")
                continue
            rates[pair.replace("-", "_")] = price

        # USD and USDT trade close to par; use the USD book when USDT is missing
        if "BTC_USDT" not in rates and "BTC_USD" in rates:
            rates["BTC_USDT"] = rates["BTC_USD"]

        rates["USD_USDT"] = 1.0

        cny = self._fetch_cny_rate()
        if cny is None:
            logger.warning(f"CNY rate unavailable, using fallback | rate={self.fallback_cny_rate}")
            cny = self.fallback_cny_rate
        rates["USD_CNY"] = cny
        rates["USDT_CNY"] = cny
        return rates

    def _fetch_cny_rate(self) -> Optional[float]:
        for url in self.fiat_apis:
            try:
                payload = self.client.get_json(url, timeout=FIAT_TIMEOUT)
                cny = float(payload["rates"]["CNY"])
            except (GatewayError, KeyError, TypeError, ValueError) as e:
                logger.debug(f"Fiat rate source failed | url={url} error={e}")
                continue
            if cny > 0:
                return cny
        return None


class CurrencyConverter:
    """Thread-safe rate table plus the conversion rules.

    Readers (``convert``, ``rates``) share the lock; ``refresh_rates`` takes
    it exclusively while fetching.
    """

    def __init__(
        self,
        fetch_rates: Callable[[], Dict[str, float]],
        *,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        bridge: str = BRIDGE_CURRENCY,
        clock: Callable[[], float] = time.time,
        initial_rates: Optional[Dict[str, float]] = None,
    ):
        self._fetch_rates = fetch_rates
        self.cooldown_seconds = cooldown_seconds
        self.bridge = _code(bridge)
        self._clock = clock
        self._lock = ReadWriteLock()
        self._rates: Dict[str, float] = dict(initial_rates or {})
        self._last_updated_at: Optional[float] = clock() if initial_rates else None

    @property
    def last_updated_at(self) -> Optional[float]:
        with self._lock.read():
            return self._last_updated_at

    def _is_fresh(self) -> bool:
        return self._last_updated_at is not None and self._clock() - self._last_updated_at < self.cooldown_seconds

    def refresh_rates(self) -> None:
        """Refresh the table if stale.

        Raises:
            GatewayError: the fetch failed and there is no table to fall back on
        """
        with self._lock.read():
            if self._is_fresh():
                return

        with self._lock.write():
            if self._is_fresh():
                return
            try:
                rates = self._fetch_rates()
            except GatewayError as e:
                if not self._rates:
                    raise ConversionError(f"exchange rates unavailable: {e}") from e
                logger.warning(f"Rate refresh failed, keeping stale table | pairs={len(self._rates)} error={e}")
                return
            self._rates = dict(rates)
            self._last_updated_at = self._clock()
            count = len(self._rates)

        logger.info(f"Exchange rates refreshed | pairs={count}")

    def rates(self) -> Dict[str, float]:
        with self._lock.read():
            return dict(self._rates)

    def convert(self, amount: str, from_currency, to_currency) -> str:
        """Convert a decimal string between currencies.

        Returns ``amount`` untouched when both currencies are the same.

        Raises:
            ConversionError: amount is not numeric or no route exists
        """
        src, dst = _code(from_currency), _code(to_currency)
        if src == dst:
            return amount

        try:
            value = Decimal(str(amount).strip())
        except InvalidOperation:
            raise ConversionError(f"invalid amount {amount!r}") from None
        if not value.is_finite():
            raise ConversionError(f"invalid amount {amount!r}")

        with self._lock.read():
            direct = self._rates.get(pair_key(src, dst))
            inverse = self._rates.get(pair_key(dst, src))

        if direct:
            converted = value * Decimal(str(direct))
        elif inverse:
            converted = value / Decimal(str(inverse))
        elif src != self.bridge and dst != self.bridge:
            bridged = self.convert(amount, src, self.bridge)
            return self.convert(bridged, self.bridge, dst)
        else:
            raise ConversionError(f"no exchange rate for {src} -> {dst}")

        return _quantize(converted, precision_for(dst))
