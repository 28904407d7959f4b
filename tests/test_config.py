from pathlib import Path

import pytest

from okx_gateway.config import GatewayConfig
from okx_gateway.errors import ConfigError


def test_defaults():
    config = GatewayConfig.default()

    assert config.exchange.base_url == "https://www.okx.com"
    assert config.exchange.max_attempts == 3
    assert config.exchange.retry_backoff_seconds == 0.05
    assert config.sync.clock_cooldown_seconds == 300.0
    assert config.sync.ticker_pairs == ["BTC-USDT", "BTC-USD", "ETH-USDT", "ETH-USD"]
    assert config.broadcast.poll_interval == 5.0
    assert config.broadcast.max_pending_broadcasts == 1
    assert config.server.default_currency == "USDT"
    assert config.logging.rotation == "100 MB"
    assert config.logging.retention == "7 days"


def test_from_yaml_with_env_interpolation(tmp_path, monkeypatch):
    monkeypatch.setenv("GATEWAY_LOG_DIR", "/var/log/okx")
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "exchange:\n"
        "  base_url: https://aws.okx.com\n"
        "  max_attempts: 5\n"
        "broadcast:\n"
        "  symbol: ETH-USDT\n"
        "  poll_interval: 2.5\n"
        "server:\n"
        "  port: 9000\n"
        "  default_currency: CNY\n"
        "logging:\n"
        "  log_file: ${GATEWAY_LOG_DIR}/gateway.log\n"
    )

    config = GatewayConfig.from_yaml(str(config_file))

    assert config.exchange.base_url == "https://aws.okx.com"
    assert config.exchange.max_attempts == 5
    assert config.exchange.private_timeout == 30
    assert config.broadcast.symbol == "ETH-USDT"
    assert config.broadcast.poll_interval == 2.5
    assert config.server.port == 9000
    assert config.logging.log_file == "/var/log/okx/gateway.log"
    assert config.sync.fallback_cny_rate == 7.2


def test_empty_yaml_gives_defaults(tmp_path):
    config_file = tmp_path / "empty.yaml"
    config_file.write_text("")

    assert GatewayConfig.from_yaml(str(config_file)) == GatewayConfig.default()


def test_missing_file_raises():
    with pytest.raises(FileNotFoundError):
        GatewayConfig.from_yaml("/nonexistent/config.yaml")


def test_unknown_key_raises(tmp_path):
    config_file = tmp_path / "bad.yaml"
    config_file.write_text("exchange:\n  product_id: BTC-USD\n")

    with pytest.raises(ConfigError, match="Invalid config"):
        GatewayConfig.from_yaml(str(config_file))


@pytest.mark.parametrize("section,body", [
    ("server", "default_currency: EUR"),
    ("exchange", "max_attempts: 0"),
    ("broadcast", "poll_interval: 0"),
    ("broadcast", "max_pending_broadcasts: 0"),
    ("logging", "log_level: VERBOSE"),
])
def test_invalid_values_raise(tmp_path, section, body):
    config_file = tmp_path / "bad.yaml"
    config_file.write_text(f"{section}:\n  {body}\n")

    with pytest.raises(ConfigError):
        GatewayConfig.from_yaml(str(config_file))


def test_to_yaml_round_trip(tmp_path):
    config = GatewayConfig.default()
    config.server.port = 8181
    config.sync.fiat_apis = ["https://example.test/latest/USD"]
    out = tmp_path / "nested" / "config.yaml"

    config.to_yaml(str(out))

    assert GatewayConfig.from_yaml(str(out)) == config


def test_example_config_loads():
    example = Path(__file__).resolve().parents[1] / "config.example.yaml"

    config = GatewayConfig.from_yaml(str(example))

    assert config == GatewayConfig.from_dict({
        "logging": {"log_file": "logs/okx_gateway.log"},
    })
