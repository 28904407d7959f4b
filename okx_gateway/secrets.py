"""Secrets management: load OKX API credentials from environment or config file.

Priority order:
1. Environment variables: OKX_API_KEY, OKX_SECRET_KEY, OKX_PASSPHRASE
2. Config file: ~/.okx_config.json or custom path via ENV OKX_CONFIG_PATH
"""
import json
import os
from pathlib import Path
from typing import NamedTuple, Optional

from .errors import ConfigError


class OKXCredentials(NamedTuple):
    api_key: str
    secret_key: str
    passphrase: str

    def is_complete(self) -> bool:
        return bool(self.api_key and self.secret_key and self.passphrase)


ENV_VARS = ("OKX_API_KEY", "OKX_SECRET_KEY", "OKX_PASSPHRASE")


def load_credentials(
    config_path: Optional[str] = None,
    *,
    allow_incomplete: bool = False,
) -> OKXCredentials:
    """Load OKX credentials from env or config file.

    Args:
        config_path: Optional override path to config file. If not provided,
                     checks OKX_CONFIG_PATH env var, then ~/.okx_config.json
        allow_incomplete: Return whatever was found instead of raising. Public
                     endpoints work without credentials; private calls then
                     fail with ConfigError when they try to sign.

    Returns:
        OKXCredentials with api_key, secret_key, passphrase

    Raises:
        ConfigError: If credentials are incomplete and allow_incomplete is False,
                     or if the config file cannot be parsed
    """
    api_key = os.getenv("OKX_API_KEY", "")
    secret_key = os.getenv("OKX_SECRET_KEY", "")
    passphrase = os.getenv("OKX_PASSPHRASE", "")

    if api_key and secret_key and passphrase:
        return OKXCredentials(api_key=api_key, secret_key=secret_key, passphrase=passphrase)

    if config_path is None:
        config_path = os.getenv("OKX_CONFIG_PATH")
    if config_path is None:
        config_path = str(Path.home() / ".okx_config.json")

    config_file = Path(config_path)
    if config_file.exists():
        try:
            with config_file.open("r") as f:
                cfg = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Failed to load config from {config_path}: {e}") from e
        api_key = api_key or cfg.get("api_key", "")
        secret_key = secret_key or cfg.get("secret_key", "")
        passphrase = passphrase or cfg.get("passphrase", "")

    creds = OKXCredentials(api_key=api_key, secret_key=secret_key, passphrase=passphrase)
    if not creds.is_complete() and not allow_incomplete:
        raise ConfigError(
            "Missing OKX credentials. Provide via:\n"
            f"  - Environment: {', '.join(ENV_VARS)}\n"
            f"  - Config file: {config_path}\n"
            "  - OKX_CONFIG_PATH env var to override config location"
        )
    return creds


def save_config(
    config_path: str,
    api_key: str,
    secret_key: str,
    passphrase: str,
) -> None:
    """Save credentials to a config file for later use.

    WARNING: Stores secrets in plaintext. The file is chmod 600 where supported.
    """
    config = {
        "api_key": api_key,
        "secret_key": secret_key,
        "passphrase": passphrase,
    }
    cfg_file = Path(config_path)
    cfg_file.parent.mkdir(parents=True, exist_ok=True)

    with cfg_file.open("w") as f:
        json.dump(config, f, indent=2)

    try:
        cfg_file.chmod(0o600)
    except OSError:
        pass  # not supported on Windows
