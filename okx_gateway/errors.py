"""Error taxonomy for the gateway core.

Every error raised by the core derives from ``GatewayError`` so the HTTP
layer can map the whole family to a 500 response.
"""
from typing import Optional


class GatewayError(Exception):
    """Base class for gateway errors.

    ``attempts`` records how many underlying requests were made before the
    error surfaced (0 when no request was made).
    """

    def __init__(self, message: str = "", *, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class ConfigError(GatewayError, ValueError):
    """Missing or incomplete configuration (credentials, config file)."""
    pass


class TransportError(GatewayError):
    """Network failure, timeout, or a non-JSON error response."""
    pass


class DecodeError(GatewayError):
    """Malformed JSON or payload at the top level of a response."""
    pass


class ExchangeAPIError(GatewayError):
    """OKX returned a well-formed envelope with ``code != "0"``."""

    def __init__(self, code: str, msg: str, *, attempts: int = 0):
        super().__init__(f"OKX API error {code}: {msg}", attempts=attempts)
        self.code = code
        self.msg = msg


class RetryExhaustedError(GatewayError):
    """Raised after the executor has used up its attempts."""

    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        super().__init__(f"request failed after {attempts} attempts: {last_error}", attempts=attempts)
        self.last_error = last_error


class ConversionError(GatewayError):
    """No exchange rate is available for a pair, or the amount is not numeric."""
    pass


class HistoricalDataUnavailable(GatewayError):
    """Historical equity is not backed by a data source."""
    pass
