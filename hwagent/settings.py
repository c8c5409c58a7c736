from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

PublishMode = Literal["latest", "stream"]

DEFAULT_MONITOR_URL = "http://localhost:8085/data.json"
_PUBLISH_MODES = {"latest", "stream"}
_TRIM_MODES = {"approx", "exact"}
_LOG_FORMATS = {"text", "json"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class SettingsError(ValueError):
    """Missing or invalid environment configuration."""


def _get_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    value = v.strip().lower()
    if value in {"1", "true", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "no", "n", "off"}:
        return False
    raise SettingsError(f"{name} must be a boolean, got {v!r}")


def _get_positive_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    try:
        value = float(v.strip())
    except ValueError as exc:
        raise SettingsError(f"{name} must be numeric, got {v!r}") from exc
    if value <= 0:
        raise SettingsError(f"{name} must be > 0, got {v!r}")
    return value


def _get_positive_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    try:
        value = int(v.strip())
    except ValueError as exc:
        raise SettingsError(f"{name} must be an integer, got {v!r}") from exc
    if value <= 0:
        raise SettingsError(f"{name} must be > 0, got {v!r}")
    return value


def _get_optional_str(name: str) -> str | None:
    v = os.getenv(name)
    if v is None:
        return None
    vv = v.strip()
    return vv or None


def _get_choice(name: str, default: str, choices: set[str]) -> str:
    v = _get_optional_str(name)
    if v is None:
        return default
    value = v.lower()
    if value not in choices:
        allowed = ", ".join(sorted(choices))
        raise SettingsError(f"{name} must be one of: {allowed} (got {v!r})")
    return value


def parse_redis_addr(addr: str) -> tuple[str, int]:
    """Split ``host:port``; the port defaults to 6379."""

    raw = addr.strip()
    if raw.startswith("rediss://") or raw.startswith("redis://"):
        raw = raw.split("://", 1)[1]
    host, sep, port_raw = raw.rpartition(":")
    if not sep:
        host, port_raw = raw, "6379"
    if not host:
        raise SettingsError(f"UPSTASH_REDIS_ADDR must be host:port, got {addr!r}")
    try:
        port = int(port_raw)
    except ValueError as exc:
        raise SettingsError(f"UPSTASH_REDIS_ADDR has an invalid port: {addr!r}") from exc
    if not 0 < port < 65536:
        raise SettingsError(f"UPSTASH_REDIS_ADDR has an invalid port: {addr!r}")
    return host, port


@dataclass(frozen=True)
class Settings:
    # Hardware monitor
    monitor_url: str
    monitor_url_is_default: bool
    fetch_timeout_s: float
    fetch_max_attempts: int
    fetch_retry_interval_s: float
    poll_interval_s: float

    metrics_config_path: str

    # Store
    redis_host: str | None
    redis_port: int
    redis_username: str
    redis_password: str | None
    redis_tls: bool
    redis_socket_timeout_s: float

    publish_mode: PublishMode
    metrics_key: str
    stream_max_len: int
    stream_approximate: bool
    stream_field: str

    log_level: str
    log_format: str

    @property
    def redis_configured(self) -> bool:
        return self.redis_host is not None and self.redis_password is not None


def load_settings_from_env(*, require_store: bool = True) -> Settings:
    """Read settings from the process environment.

    Store credentials are mandatory unless require_store is False (dry runs).
    """

    redis_addr = _get_optional_str("UPSTASH_REDIS_ADDR")
    redis_password = _get_optional_str("UPSTASH_REDIS_PASSWORD")
    if require_store:
        if redis_addr is None:
            raise SettingsError("UPSTASH_REDIS_ADDR environment variable is required")
        if redis_password is None:
            raise SettingsError("UPSTASH_REDIS_PASSWORD environment variable is required")

    redis_host: str | None = None
    redis_port = 6379
    if redis_addr is not None:
        redis_host, redis_port = parse_redis_addr(redis_addr)

    monitor_url = _get_optional_str("HARDWARE_MONITOR_URL")

    log_level = (_get_optional_str("LOG_LEVEL") or "INFO").upper()
    if log_level not in _LOG_LEVELS:
        allowed = ", ".join(sorted(_LOG_LEVELS))
        raise SettingsError(f"LOG_LEVEL must be one of: {allowed} (got {log_level!r})")

    return Settings(
        monitor_url=monitor_url or DEFAULT_MONITOR_URL,
        monitor_url_is_default=monitor_url is None,
        fetch_timeout_s=_get_positive_float("FETCH_TIMEOUT_S", 5.0),
        fetch_max_attempts=_get_positive_int("FETCH_MAX_ATTEMPTS", 5),
        fetch_retry_interval_s=_get_positive_float("FETCH_RETRY_INTERVAL_S", 12.0),
        poll_interval_s=_get_positive_float("POLL_INTERVAL_S", 10.0),
        metrics_config_path=_get_optional_str("METRICS_CONFIG_PATH") or "metrics-config.json",
        redis_host=redis_host,
        redis_port=redis_port,
        redis_username=_get_optional_str("UPSTASH_REDIS_USERNAME") or "default",
        redis_password=redis_password,
        redis_tls=_get_bool("UPSTASH_REDIS_TLS", True),
        redis_socket_timeout_s=_get_positive_float("REDIS_SOCKET_TIMEOUT_S", 5.0),
        publish_mode=_get_choice("PUBLISH_MODE", "latest", _PUBLISH_MODES),  # type: ignore[arg-type]
        metrics_key=_get_optional_str("METRICS_KEY") or "hardware:metrics",
        stream_max_len=_get_positive_int("STREAM_MAXLEN", 1000),
        stream_approximate=_get_choice("STREAM_TRIM", "approx", _TRIM_MODES) == "approx",
        stream_field=_get_optional_str("STREAM_FIELD") or "data",
        log_level=log_level,
        log_format=_get_choice("LOG_FORMAT", "text", _LOG_FORMATS),
    )
