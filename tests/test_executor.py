import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from okx_gateway.errors import (
    ConfigError,
    DecodeError,
    ExchangeAPIError,
    RetryExhaustedError,
    TransportError,
)
from okx_gateway.executor import RequestExecutor, SignedRequest, is_clock_skew_error


def _resp(payload=None, *, status=200, text=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 400
    resp.text = text if text is not None else json.dumps(payload)
    return resp


OK = {"code": "0", "msg": "", "data": [{"totalEq": "100"}]}
SKEW = {"code": "50102", "msg": "Timestamp request expired", "data": []}


@pytest.fixture
def signer():
    signer = MagicMock()
    signer.build_headers.return_value = {"OK-ACCESS-KEY": "k"}
    return signer


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def executor(signer, sleeps):
    return RequestExecutor(signer, base_url="https://okx.test", sleep=sleeps.append)


def test_signed_request_path_includes_query():
    req = SignedRequest("GET", "/api/v5/account/positions", {"instType": "SWAP", "instId": "BTC-USDT-SWAP"})
    assert req.request_path == "/api/v5/account/positions?instType=SWAP&instId=BTC-USDT-SWAP"
    assert req.body_str == ""


def test_signed_request_body():
    req = SignedRequest("POST", "api/v5/x", body={"a": 1})
    assert req.request_path == "/api/v5/x"
    assert req.body_str == '{"a": 1}'


def test_is_clock_skew_error():
    assert is_clock_skew_error(ExchangeAPIError("50102", "Timestamp request expired"))
    assert is_clock_skew_error(ExchangeAPIError("50112", "Invalid OK-ACCESS-TIMESTAMP"))
    assert not is_clock_skew_error(ExchangeAPIError("50113", "Invalid Sign"))


@patch("okx_gateway.executor.requests.Session.request")
def test_success_first_attempt(mock_request, executor, signer, sleeps):
    mock_request.return_value = _resp(OK)

    envelope = executor.get("/api/v5/account/balance")

    assert envelope.data == [{"totalEq": "100"}]
    assert mock_request.call_count == 1
    assert sleeps == []
    args, kwargs = mock_request.call_args
    assert args == ("GET", "https://okx.test/api/v5/account/balance")
    assert kwargs["headers"] == {"OK-ACCESS-KEY": "k"}
    assert kwargs["data"] is None
    assert kwargs["timeout"] == 30
    signer.build_headers.assert_called_once_with("GET", "/api/v5/account/balance", "")


@patch("okx_gateway.executor.requests.Session.request")
def test_skew_then_success_retries(mock_request, executor, signer, sleeps):
    """Skew, skew, success -> success after three calls with linear backoff."""
    mock_request.side_effect = [_resp(SKEW), _resp(SKEW), _resp(OK)]

    envelope = executor.get("/api/v5/account/balance")

    assert envelope.ok
    assert mock_request.call_count == 3
    assert signer.build_headers.call_count == 3
    assert sleeps == pytest.approx([0.05, 0.10])


@patch("okx_gateway.executor.requests.Session.request")
def test_skew_exhaustion_raises(mock_request, executor, sleeps):
    mock_request.side_effect = [_resp(SKEW), _resp(SKEW), _resp(SKEW)]

    with pytest.raises(RetryExhaustedError) as exc_info:
        executor.get("/api/v5/account/balance")

    err = exc_info.value
    assert err.attempts == 3
    assert isinstance(err.last_error, ExchangeAPIError)
    assert "Timestamp request expired" in str(err)
    assert mock_request.call_count == 3


@patch("okx_gateway.executor.requests.Session.request")
def test_non_skew_error_fails_fast(mock_request, executor, sleeps):
    mock_request.return_value = _resp({"code": "50113", "msg": "Invalid Sign", "data": []}, status=401)

    with pytest.raises(ExchangeAPIError) as exc_info:
        executor.get("/api/v5/account/balance")

    assert exc_info.value.code == "50113"
    assert exc_info.value.attempts == 1
    assert mock_request.call_count == 1
    assert sleeps == []


@patch("okx_gateway.executor.requests.Session.request")
def test_non_skew_on_second_attempt_records_attempts(mock_request, executor):
    mock_request.side_effect = [_resp(SKEW), _resp({"code": "51000", "msg": "Parameter error", "data": []})]

    with pytest.raises(ExchangeAPIError) as exc_info:
        executor.get("/api/v5/account/balance")

    assert exc_info.value.attempts == 2


@patch("okx_gateway.executor.requests.Session.request")
def test_network_error_becomes_transport_error(mock_request, executor):
    mock_request.side_effect = requests.exceptions.ConnectionError("refused")

    with pytest.raises(TransportError, match="Request failed"):
        executor.get("/api/v5/account/balance")
    assert mock_request.call_count == 1


@patch("okx_gateway.executor.requests.Session.request")
def test_non_json_error_response(mock_request, executor):
    mock_request.return_value = _resp(status=502, text="<html>Bad Gateway</html>")

    with pytest.raises(TransportError, match="502"):
        executor.get("/api/v5/account/balance")


@patch("okx_gateway.executor.requests.Session.request")
def test_non_json_ok_response(mock_request, executor):
    mock_request.return_value = _resp(status=200, text="not json")

    with pytest.raises(DecodeError):
        executor.get("/api/v5/account/balance")


def test_missing_credentials_not_retried(executor, signer, sleeps):
    signer.build_headers.side_effect = ConfigError("credentials incomplete")

    with pytest.raises(ConfigError):
        executor.get("/api/v5/account/balance")

    assert signer.build_headers.call_count == 1
    assert sleeps == []


@patch("okx_gateway.executor.requests.Session.request")
def test_post_sends_body(mock_request, executor, signer):
    mock_request.return_value = _resp(OK)

    executor.execute(SignedRequest("POST", "/api/v5/x", body={"a": 1}))

    signer.build_headers.assert_called_once_with("POST", "/api/v5/x", '{"a": 1}')
    assert mock_request.call_args.kwargs["data"] == '{"a": 1}'
