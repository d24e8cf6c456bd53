"""
Webhook Bridge configuration.

Single source for runtime configuration. Values come from environment variables,
optionally loaded from standard env files.

Priority (lowest -> highest):
1) /etc/webhook-bridge/bridge.env (system install)
2) ~/.config/webhook-bridge/.env (user install)
3) ./.env (project override)
4) process environment variables (always win)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from pathlib import Path
from typing import Iterable, Optional

from dotenv import load_dotenv


LOG_LEVELS = ("trace", "debug", "info", "warn", "warning", "error")


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


def _package_version() -> str:
    try:
        return _pkg_version("webhook-bridge")
    except PackageNotFoundError:
        return "0.0.0+dev"


def _env_paths() -> Iterable[Path]:
    # 1) system install
    yield Path("/etc/webhook-bridge/bridge.env")

    # 2) user config dir
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(Path.home())))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    yield base / "webhook-bridge" / ".env"

    # 3) project override
    yield Path(".env")


def _require_env(key: str) -> str:
    v = os.getenv(key)
    if v is None or v == "":
        raise ConfigError(f"Missing required environment variable: {key}")
    return v


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from exc


def _parse_float(key: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid number for {key}: {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class BrokerCredentials:
    url: str
    vpn_name: Optional[str]
    username: str
    password: str

    def __repr__(self) -> str:
        # keep the password out of logs
        return (
            f"BrokerCredentials(url={self.url!r}, vpn_name={self.vpn_name!r}, "
            f"username={self.username!r})"
        )


@dataclass(frozen=True, slots=True)
class TargetEndpoint:
    host: str
    port: int
    path: str
    scheme: str = "https"
    timeout_s: float = 10.0


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    broker: BrokerCredentials
    topic: str
    target: TargetEndpoint
    log_level: str  # one of LOG_LEVELS
    max_workers: int
    shutdown_grace_s: float
    version: str


def load_config(*, dotenv_enabled: bool = True) -> BridgeConfig:
    """
    Load config by reading env files and then validating required
    environment variables.

    Returns an immutable BridgeConfig. Raises ConfigError on failure.
    """
    if dotenv_enabled:
        for p in _env_paths():
            if p.is_file():
                # do not override existing env vars; later files can fill missing
                load_dotenv(p, override=False)

    broker = BrokerCredentials(
        url=_require_env("BROKER_URL"),
        vpn_name=os.getenv("BROKER_VPN_NAME") or None,
        username=_require_env("BROKER_USERNAME"),
        password=_require_env("BROKER_PASSWORD"),
    )
    topic = _require_env("BROKER_TOPIC")

    port = _parse_int("WEBHOOK_PORT", _require_env("WEBHOOK_PORT"))
    if not (1 <= port <= 65535):
        raise ConfigError(f"WEBHOOK_PORT out of range: {port}")

    scheme = os.getenv("WEBHOOK_SCHEME", "https").strip().lower()
    if scheme not in ("http", "https"):
        raise ConfigError(f"WEBHOOK_SCHEME must be http or https, got {scheme!r}")

    timeout_s = _parse_float("WEBHOOK_TIMEOUT", os.getenv("WEBHOOK_TIMEOUT", "10"))
    if timeout_s <= 0:
        raise ConfigError("WEBHOOK_TIMEOUT must be > 0")

    target = TargetEndpoint(
        host=_require_env("WEBHOOK_HOST"),
        port=port,
        path=_require_env("WEBHOOK_PATH"),
        scheme=scheme,
        timeout_s=timeout_s,
    )

    log_level = os.getenv("LOGLEVEL", "info").strip().lower() or "info"
    if log_level not in LOG_LEVELS:
        log_level = "info"

    max_workers = _parse_int("RELAY_MAX_WORKERS", os.getenv("RELAY_MAX_WORKERS", "8"))
    if max_workers < 1:
        raise ConfigError("RELAY_MAX_WORKERS must be >= 1")

    grace_s = _parse_float("SHUTDOWN_GRACE", os.getenv("SHUTDOWN_GRACE", "1"))
    if grace_s < 0:
        raise ConfigError("SHUTDOWN_GRACE must be >= 0")

    return BridgeConfig(
        broker=broker,
        topic=topic,
        target=target,
        log_level=log_level,
        max_workers=max_workers,
        shutdown_grace_s=grace_s,
        version=_package_version(),
    )
