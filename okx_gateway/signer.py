"""OKX request signing (OK-ACCESS-* headers)."""
import base64
import hashlib
import hmac
from typing import Dict

from .clock_sync import ClockSync
from .errors import ConfigError
from .secrets import OKXCredentials


class RequestSigner:
    """Builds the four OKX authentication headers for private endpoints.

    The prehash string is ``timestamp + METHOD + request_path + body`` where
    ``request_path`` includes the query string. The signature is the base64
    encoded HMAC-SHA256 digest keyed by the raw secret.
    """

    def __init__(self, credentials: OKXCredentials, clock: ClockSync):
        self.credentials = credentials
        self.clock = clock

    def sign(self, timestamp: str, method: str, request_path: str, body: str = "") -> str:
        message = timestamp + method.upper() + request_path + (body or "")
        digest = hmac.new(self.credentials.secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    def build_headers(self, method: str, request_path: str, body: str = "") -> Dict[str, str]:
        if not self.credentials.is_complete():
            raise ConfigError(
                "OKX API credentials are incomplete; set OKX_API_KEY, OKX_SECRET_KEY and OKX_PASSPHRASE"
            )
        timestamp = self.clock.timestamp()
        return {
            "OK-ACCESS-KEY": self.credentials.api_key,
            "OK-ACCESS-SIGN": self.sign(timestamp, method, request_path, body),
            "OK-ACCESS-TIMESTAMP": timestamp,
            "OK-ACCESS-PASSPHRASE": self.credentials.passphrase,
            "Content-Type": "application/json",
        }
