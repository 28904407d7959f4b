import base64
import hashlib
import hmac
from unittest.mock import MagicMock

import pytest

from okx_gateway.errors import ConfigError
from okx_gateway.secrets import OKXCredentials
from okx_gateway.signer import RequestSigner

TS = "2024-01-01T00:00:00.000Z"


def _expected(secret: str, message: str) -> str:
    digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


@pytest.fixture
def clock():
    clock = MagicMock()
    clock.timestamp.return_value = TS
    return clock


@pytest.fixture
def signer(clock):
    return RequestSigner(OKXCredentials("key", "secret", "pass"), clock)


def test_sign_uses_raw_secret_and_prehash(signer):
    """Prehash is timestamp + METHOD + path + body, keyed by the raw secret."""
    sig = signer.sign(TS, "get", "/api/v5/account/balance")
    assert sig == _expected("secret", TS + "GET/api/v5/account/balance")


def test_sign_includes_query_and_body(signer):
    body = '{"instId":"BTC-USDT"}'
    sig = signer.sign(TS, "POST", "/api/v5/trade/order?x=1", body)
    assert sig == _expected("secret", TS + "POST/api/v5/trade/order?x=1" + body)


def test_sign_is_deterministic(signer):
    assert signer.sign(TS, "GET", "/p") == signer.sign(TS, "GET", "/p")
    assert signer.sign(TS, "GET", "/p") != signer.sign(TS, "GET", "/q")


def test_build_headers(signer, clock):
    headers = signer.build_headers("GET", "/api/v5/account/positions?instType=SWAP")

    assert headers["OK-ACCESS-KEY"] == "key"
    assert headers["OK-ACCESS-PASSPHRASE"] == "pass"
    assert headers["OK-ACCESS-TIMESTAMP"] == TS
    assert headers["Content-Type"] == "application/json"
    assert headers["OK-ACCESS-SIGN"] == _expected(
        "secret", TS + "GET/api/v5/account/positions?instType=SWAP"
    )
    clock.timestamp.assert_called_once()


def test_build_headers_requires_credentials(clock):
    signer = RequestSigner(OKXCredentials("key", "", "pass"), clock)

    with pytest.raises(ConfigError, match="incomplete"):
        signer.build_headers("GET", "/api/v5/account/balance")
    clock.timestamp.assert_not_called()
