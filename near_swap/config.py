"""Central configuration loader.

Read env vars (``.env`` is loaded by the entrypoint) and expose typed, frozen
config objects. Config values are passed explicitly into constructors; nothing
here is cached process-wide.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

ENV_PREFIX = "NEAR_SWAP_"

DEFAULT_BASE_URL = "https://1click.chaindefuser.com"


def _env(name: str) -> Optional[str]:
    return os.getenv(ENV_PREFIX + name)


def _env_str(name: str, default: str = "") -> str:
    val = _env(name)
    if val is None or val.strip() == "":
        return default
    return val.strip()


def _env_bool(name: str, default: bool = False) -> bool:
    val = _env(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    val = _env(name)
    if val is None or val.strip() == "":
        return default
    return int(val)


def _env_float(name: str, default: float) -> float:
    val = _env(name)
    if val is None or val.strip() == "":
        return default
    return float(val)


def _env_list(name: str, default: List[str], sep: str = ",") -> List[str]:
    val = _env(name)
    if val is None or val.strip() == "":
        return default
    return [v.strip() for v in val.split(sep) if v.strip()]


@dataclass(frozen=True)
class OneClickConfig:
    jwt_token: Optional[str]
    base_url: str = DEFAULT_BASE_URL
    timeout_s: float = 30.0


@dataclass(frozen=True)
class WalletCliConfig:
    """bitcoin-cli / zcash-cli style wallets."""

    enabled: bool = False
    cli_path: str = ""
    cli_args: List[str] = field(default_factory=list)
    wallet: str = ""


@dataclass(frozen=True)
class MoneroConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 18082
    username: str = ""
    password: str = ""
    account_index: int = 0
    priority: int = 0
    unlock_time: int = 0


@dataclass(frozen=True)
class AutoDepositConfig:
    enabled: bool = False
    bitcoin: WalletCliConfig = field(default_factory=lambda: WalletCliConfig(cli_path="bitcoin-cli"))
    zcash: WalletCliConfig = field(default_factory=lambda: WalletCliConfig(cli_path="zcash-cli"))
    monero: MoneroConfig = field(default_factory=MoneroConfig)


@dataclass(frozen=True)
class AppConfig:
    oneclick: OneClickConfig
    auto_deposit: AutoDepositConfig
    plan_storage_path: Optional[str]
    check_interval_s: float
    log_level: str


def load_config() -> AppConfig:
    """Load configuration from environment."""
    oneclick = OneClickConfig(
        jwt_token=_env_str("JWT_TOKEN") or None,
        base_url=_env_str("BASE_URL", DEFAULT_BASE_URL),
        timeout_s=_env_float("TIMEOUT", 30.0),
    )

    bitcoin = WalletCliConfig(
        enabled=_env_bool("BITCOIN_ENABLED", False),
        cli_path=_env_str("BITCOIN_CLI_PATH", "bitcoin-cli"),
        cli_args=_env_list("BITCOIN_CLI_ARGS", [], sep=" "),
        wallet=_env_str("BITCOIN_WALLET"),
    )
    zcash = WalletCliConfig(
        enabled=_env_bool("ZCASH_ENABLED", False),
        cli_path=_env_str("ZCASH_CLI_PATH", "zcash-cli"),
        cli_args=_env_list("ZCASH_CLI_ARGS", [], sep=" "),
    )
    monero = MoneroConfig(
        enabled=_env_bool("MONERO_ENABLED", False),
        host=_env_str("MONERO_HOST", "127.0.0.1"),
        port=_env_int("MONERO_PORT", 18082),
        username=_env_str("MONERO_USERNAME"),
        password=_env_str("MONERO_PASSWORD"),
        account_index=_env_int("MONERO_ACCOUNT_INDEX", 0),
        priority=_env_int("MONERO_PRIORITY", 0),
        unlock_time=_env_int("MONERO_UNLOCK_TIME", 0),
    )
    auto_deposit = AutoDepositConfig(
        enabled=_env_bool("AUTO_DEPOSIT_ENABLED", False),
        bitcoin=bitcoin,
        zcash=zcash,
        monero=monero,
    )

    return AppConfig(
        oneclick=oneclick,
        auto_deposit=auto_deposit,
        plan_storage_path=_env_str("PLAN_STORAGE_PATH") or None,
        check_interval_s=_env_float("CHECK_INTERVAL", 30.0),
        log_level=_env_str("LOG_LEVEL", "INFO"),
    )


__all__ = [
    "AppConfig",
    "AutoDepositConfig",
    "MoneroConfig",
    "OneClickConfig",
    "WalletCliConfig",
    "load_config",
]
