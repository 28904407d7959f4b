"""Configuration loader for the gateway.

Supports YAML format with environment variable interpolation.
"""
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

from .errors import ConfigError
from .models import Currency
from .rates import DEFAULT_FIAT_APIS, DEFAULT_TICKER_PAIRS

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ExchangeConfig:
    """OKX REST settings."""
    base_url: str = "https://www.okx.com"
    private_timeout: int = 30
    public_timeout: int = 30
    max_attempts: int = 3
    retry_backoff_seconds: float = 0.05


@dataclass
class SyncConfig:
    """Clock and exchange-rate synchronization."""
    clock_cooldown_seconds: float = 300.0
    rates_cooldown_seconds: float = 300.0
    bridge_currency: str = "USDT"
    ticker_pairs: List[str] = field(default_factory=lambda: list(DEFAULT_TICKER_PAIRS))
    fiat_apis: List[str] = field(default_factory=lambda: list(DEFAULT_FIAT_APIS))
    fallback_cny_rate: float = 7.2


@dataclass
class BroadcastConfig:
    """Live price push settings."""
    symbol: str = "BTC-USDT"
    poll_interval: float = 5.0
    max_pending_broadcasts: int = 1
    feed_timeout: int = 10


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    default_currency: str = "USDT"


@dataclass
class LoggingConfig:
    log_file: Optional[str] = "okx_gateway.log"
    log_level: str = "INFO"
    enable_console: bool = True
    rotation: str = "100 MB"
    retention: str = "7 days"


@dataclass
class GatewayConfig:
    """Complete gateway configuration."""
    exchange: ExchangeConfig
    sync: SyncConfig
    broadcast: BroadcastConfig
    server: ServerConfig
    logging: LoggingConfig

    @classmethod
    def default(cls) -> "GatewayConfig":
        return cls(
            exchange=ExchangeConfig(),
            sync=SyncConfig(),
            broadcast=BroadcastConfig(),
            server=ServerConfig(),
            logging=LoggingConfig(),
        )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "GatewayConfig":
        data = data or {}
        try:
            config = cls(
                exchange=ExchangeConfig(**(data.get("exchange") or {})),
                sync=SyncConfig(**(data.get("sync") or {})),
                broadcast=BroadcastConfig(**(data.get("broadcast") or {})),
                server=ServerConfig(**(data.get("server") or {})),
                logging=LoggingConfig(**(data.get("logging") or {})),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid config: {e}") from e
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, config_path: str) -> "GatewayConfig":
        """Load configuration from YAML file with env var interpolation.

        Args:
            config_path: Path to YAML config file

        Returns:
            GatewayConfig instance

        Example YAML:
            exchange:
              base_url: https://www.okx.com
              max_attempts: 3
            broadcast:
              symbol: BTC-USDT
              poll_interval: 5
            logging:
              log_file: "${LOG_DIR}/okx_gateway.log"
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with config_file.open("r") as f:
            raw = f.read()

        # Interpolate environment variables: ${VAR_NAME}
        for key, value in os.environ.items():
            raw = raw.replace(f"${{{key}}}", value)

        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"Config root must be a mapping: {config_path}")

        return cls.from_dict(data)

    def validate(self) -> None:
        try:
            Currency.parse(self.server.default_currency)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        if self.exchange.max_attempts < 1:
            raise ConfigError("exchange.max_attempts must be at least 1")
        if self.broadcast.poll_interval <= 0:
            raise ConfigError("broadcast.poll_interval must be positive")
        if self.broadcast.max_pending_broadcasts < 1:
            raise ConfigError("broadcast.max_pending_broadcasts must be at least 1")
        if self.logging.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"logging.log_level must be one of {', '.join(LOG_LEVELS)}")

    def to_yaml(self, output_path: str) -> None:
        """Save configuration to YAML file."""
        data = {
            "exchange": asdict(self.exchange),
            "sync": asdict(self.sync),
            "broadcast": asdict(self.broadcast),
            "server": asdict(self.server),
            "logging": asdict(self.logging),
        }

        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with output_file.open("w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
