"""Unauthenticated OKX REST calls: server time, tickers, instruments."""
from typing import Any, Dict, List, Optional

import requests

from .errors import DecodeError, TransportError
from .logging_setup import logger
from .wire import Envelope, RawInstrument, RawServerTime, RawTicker, check_envelope, decode_envelope, parse_records

DEFAULT_BASE_URL = "https://www.okx.com"

SERVER_TIME_TIMEOUT = 5
TICKER_TIMEOUT = 10

INSTRUMENT_TYPES = ("SPOT", "MARGIN", "SWAP", "FUTURES", "OPTION")


class OKXPublicClient:
    """Thin wrapper over the public v5 endpoints.

    Each call raises ``TransportError`` on network failure, ``DecodeError`` on
    a malformed body and ``ExchangeAPIError`` when OKX reports ``code != "0"``.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, *, session: Optional[requests.Session] = None, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def get_json(self, url: str, params: Optional[Dict[str, str]] = None, *, timeout: Optional[float] = None) -> Any:
        """GET an absolute URL and return its decoded JSON body."""
        try:
            resp = self.session.get(url, params=params, headers={"Accept": "application/json"}, timeout=timeout or self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed: {e}") from e
        if not resp.ok:
            raise TransportError(f"{resp.status_code}: {resp.text}")
        try:
            return resp.json()
        except ValueError as e:
            raise DecodeError(f"invalid JSON from {url}: {e}") from e

    def get(self, path: str, params: Optional[Dict[str, str]] = None, *, timeout: Optional[float] = None) -> Envelope:
        request_path = path if path.startswith("/") else f"/{path}"
        url = f"{self.base_url}{request_path}"
        try:
            resp = self.session.get(
                url,
                params=params,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                timeout=timeout or self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed: {e}") from e

        try:
            envelope = decode_envelope(resp.text)
        except DecodeError:
            if not resp.ok:
                raise TransportError(f"{resp.status_code}: {resp.text}")
            raise
        return check_envelope(envelope)

    def get_system_time(self) -> str:
        """Return OKX server time as an epoch-millisecond string."""
        envelope = self.get("/api/v5/public/time", timeout=SERVER_TIME_TIMEOUT)
        records = parse_records(RawServerTime, envelope.data)
        if not records or not records[0].ts:
            raise DecodeError("server time payload is empty")
        return records[0].ts

    def get_ticker(self, inst_id: str, *, timeout: Optional[float] = None) -> RawTicker:
        envelope = self.get("/api/v5/market/ticker", {"instId": inst_id}, timeout=timeout)
        records = parse_records(RawTicker, envelope.data)
        if not records:
            raise DecodeError(f"no ticker data for {inst_id}")
        return records[0]

    def get_instruments(self, inst_type: str = "SPOT") -> List[RawInstrument]:
        if inst_type not in INSTRUMENT_TYPES:
            raise ValueError(f"invalid instrument type {inst_type!r}; expected one of {', '.join(INSTRUMENT_TYPES)}")
        envelope = self.get("/api/v5/public/instruments", {"instType": inst_type})
        instruments = parse_records(RawInstrument, envelope.data)
        logger.debug(f"Fetched instruments | inst_type={inst_type} count={len(instruments)}")
        return instruments
