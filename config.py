"""
Application configuration via Pydantic Settings.
All values can be overridden by environment variables or a .env file.

Durations accept Go-style strings ("24h", "1h30m", "10s", "500ms") or a plain
number of seconds, so existing deployments keep their environment files.
"""
from __future__ import annotations

import ipaddress
import re
from datetime import timedelta
from typing import Literal, Optional

from pydantic import ValidationError, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from errors import ConfigError

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration string ("720h", "1h30m") or bare seconds."""
    text = value.strip()
    try:
        return timedelta(seconds=float(text))
    except (ValueError, OverflowError):
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=total)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # ── Subject ────────────────────────────────────────────────────────────
    CLIENT_IP: str = "127.0.0.1"

    # ── ZeroSSL ────────────────────────────────────────────────────────────
    IPSSL_API_KEY: str = ""
    ZEROSSL_API_URL: str = "https://api.zerossl.com"
    HTTP_TIMEOUT: int = 30
    CERT_VALIDITY_DAYS: int = 90

    # ── Storage ────────────────────────────────────────────────────────────
    IPSSL_VALIDATION_DIR: str = "/usr/share/caddy/"
    IPSSL_SSL_DIR: str = "/ipssl/"

    # ── Scheduling ─────────────────────────────────────────────────────────
    RENEWAL_INTERVAL: timedelta = timedelta(hours=24)
    CERT_VALIDITY: timedelta = timedelta(days=30)   # renewal threshold
    POLL_INTERVAL: timedelta = timedelta(seconds=10)
    ISSUANCE_MAX_POLLS: int = 0                     # 0 = poll until a terminal status

    # ── Container reload ───────────────────────────────────────────────────
    IPSSL_CONTAINER_NAME: str = "caddy-1"           # empty disables reload
    RELOAD_MODE: Literal["signal", "restart"] = "signal"
    RELOAD_SIGNAL: str = "SIGHUP"
    DOCKER_HOST: Optional[str] = None

    # ── Logging ────────────────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "json"

    @field_validator(
        "RENEWAL_INTERVAL", "CERT_VALIDITY", "POLL_INTERVAL", mode="before"
    )
    @classmethod
    def parse_durations(cls, v: object, info: ValidationInfo) -> object:
        """Accept Go-style duration strings; an empty value means the default."""
        if isinstance(v, str):
            if not v.strip():
                return cls.model_fields[info.field_name].default
            return parse_duration(v)
        return v

    @field_validator("RENEWAL_INTERVAL", "POLL_INTERVAL")
    @classmethod
    def positive_interval(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("interval must be positive")
        return v

    @field_validator("CLIENT_IP")
    @classmethod
    def validate_ip(cls, v: str) -> str:
        try:
            ipaddress.ip_address(v.strip())
        except ValueError:
            raise ValueError(f"CLIENT_IP is not an IP address: {v!r}") from None
        return v.strip()

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {v!r}")
        return level

    @model_validator(mode="after")
    def require_api_key(self) -> "Settings":
        if not self.IPSSL_API_KEY:
            raise ValueError("IPSSL_API_KEY environment variable is required")
        return self

    @property
    def reload_enabled(self) -> bool:
        return bool(self.IPSSL_CONTAINER_NAME)


def load_settings(**overrides: object) -> Settings:
    """
    Build the immutable settings snapshot.

    Raises ConfigError with a readable message instead of a pydantic
    ValidationError so main() can log it and exit.
    """
    try:
        return Settings(**overrides)  # type: ignore[arg-type]
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigError(f"invalid configuration: {problems}") from exc
