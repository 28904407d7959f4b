"""Signed request execution with bounded retry on clock-skew failures."""
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import requests

from .errors import ConfigError, DecodeError, GatewayError, RetryExhaustedError, TransportError
from .logging_setup import logger
from .signer import RequestSigner
from .wire import Envelope, check_envelope, decode_envelope

# Message fragments OKX uses for requests rejected because of the timestamp
# window (codes 50102 and 50112).
CLOCK_SKEW_PHRASES = (
    "Timestamp request expired",
    "Invalid OK-ACCESS-TIMESTAMP",
)

DEFAULT_TIMEOUT = 30
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 0.05


@dataclass(frozen=True)
class SignedRequest:
    """One private API call: ``method``, ``path``, ``query`` and JSON ``body``."""
    method: str
    path: str
    query: Dict[str, str] = field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None

    @property
    def request_path(self) -> str:
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        if self.query:
            return f"{path}?{urlencode(self.query)}"
        return path

    @property
    def body_str(self) -> str:
        return json.dumps(self.body) if self.body is not None else ""


def is_clock_skew_error(error: BaseException) -> bool:
    text = str(error)
    return any(phrase in text for phrase in CLOCK_SKEW_PHRASES)


class RequestExecutor:
    """Executes signed OKX requests.

    Retry policy:
    - At most ``max_attempts`` attempts, each with freshly generated headers.
    - Before attempt ``i`` (0-based) sleep ``i * backoff_seconds``.
    - Only clock-skew failures are retried; anything else is re-raised at once
      with ``attempts`` set.
    - When every attempt failed with clock skew, ``RetryExhaustedError`` wraps
      the last error.
    """

    def __init__(
        self,
        signer: RequestSigner,
        *,
        base_url: str = "https://www.okx.com",
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.signer = signer
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def execute(self, req: SignedRequest) -> Envelope:
        last_error: Optional[GatewayError] = None
        for attempt in range(self.max_attempts):
            if attempt > 0:
                self._sleep(attempt * self.backoff_seconds)
            try:
                return self._send_once(req)
            except ConfigError:
                raise
            except GatewayError as e:
                e.attempts = attempt + 1
                if not is_clock_skew_error(e):
                    raise
                last_error = e
                logger.warning(
                    f"Clock-skew rejection, retrying | path={req.path} attempt={attempt + 1}/{self.max_attempts} error={e}"
                )

        raise RetryExhaustedError(self.max_attempts, last_error) from last_error

    def get(self, path: str, query: Optional[Dict[str, str]] = None) -> Envelope:
        return self.execute(SignedRequest("GET", path, dict(query or {})))

    def _send_once(self, req: SignedRequest) -> Envelope:
        method = req.method.upper()
        request_path = req.request_path
        body_str = req.body_str
        headers = self.signer.build_headers(method, request_path, body_str)
        url = f"{self.base_url}{request_path}"

        try:
            resp = self.session.request(method, url, headers=headers, data=body_str or None, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed: {e}") from e

        # OKX returns a JSON envelope on 4xx too; only fall back to the HTTP
        # status when the body is not an envelope.
        try:
            envelope = decode_envelope(resp.text)
        except DecodeError:
            if not resp.ok:
                raise TransportError(f"{resp.status_code}: {resp.text}")
            raise
        return check_envelope(envelope)
