from __future__ import annotations

import logging
import os
from dataclasses import dataclass


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AccessPolicy:
    """Timing windows of the challenge, ban and relay rules, in seconds."""

    challenge_window_s: int = 30
    ban_duration_s: int = 86400
    verified_ttl_s: int = 3600
    mapping_ttl_s: int = 86400
    edit_window_s: int = 60


@dataclass(frozen=True)
class RelayConfig:
    prefix: str = "public"
    secret_token: str = ""
    db_path: str | None = None
    api_base: str = "https://api.telegram.org"
    public_base_url: str | None = None
    sweep_interval_s: int = 60
    log_level: int = logging.INFO


def _parse_non_negative_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer") from exc
    if parsed < 0:
        raise ConfigError(f"{name} must be non-negative")
    return parsed


def _parse_optional_str(name: str) -> str | None:
    raw = os.environ.get(name, "").strip()
    return raw or None


def _parse_log_level(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    level = logging.getLevelName(raw.upper())
    if not isinstance(level, int):
        raise ConfigError(f"{name} must be a logging level name")
    return level


def load_config_from_env() -> RelayConfig:
    prefix = os.environ.get("RELAY_PREFIX", "").strip().strip("/") or "public"
    public_base_url = _parse_optional_str("RELAY_PUBLIC_BASE_URL")
    return RelayConfig(
        prefix=prefix,
        secret_token=os.environ.get("RELAY_SECRET_TOKEN", ""),
        db_path=_parse_optional_str("RELAY_DB_PATH"),
        api_base=(_parse_optional_str("RELAY_API_BASE") or RelayConfig.api_base).rstrip("/"),
        public_base_url=public_base_url.rstrip("/") if public_base_url else None,
        sweep_interval_s=max(1, _parse_non_negative_int("RELAY_SWEEP_INTERVAL_S", 60)),
        log_level=_parse_log_level("RELAY_LOG_LEVEL", logging.INFO),
    )
