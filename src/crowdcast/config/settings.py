"""TOML config loading and profiles."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

# Default config search path (project root or cwd)
_CONFIG_DIR = Path(__file__).resolve().parent.parent.parent.parent / "config"
_CWD_CONFIG = Path.cwd() / "config"


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base. Override values take precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _find_config_dir(config_dir: Path | None = None) -> Path:
    if config_dir is not None:
        return config_dir
    if _CWD_CONFIG.exists():
        return _CWD_CONFIG
    return _CONFIG_DIR


def load_config(profile: str | None = None, config_dir: Path | None = None) -> dict[str, Any]:
    """Load merged config from default.toml and optional profile overlay."""
    config_dir = _find_config_dir(config_dir)
    default_path = config_dir / "default.toml"
    if not default_path.exists():
        return {}
    base = _load_toml(default_path)
    if profile:
        profile_path = config_dir / f"{profile}.toml"
        if profile_path.exists():
            overlay = _load_toml(profile_path)
            base = _deep_merge(base, overlay)
    return base


def get_settings(profile: str | None = None, config_dir: Path | None = None) -> Settings:
    """Return Settings instance from merged config."""
    raw = load_config(profile, config_dir)
    return Settings.from_dict(raw)


class Settings:
    """Application settings from TOML config."""

    def __init__(
        self,
        *,
        storage: dict[str, Any] | None = None,
        monitor: dict[str, Any] | None = None,
        x: dict[str, Any] | None = None,
        ai: dict[str, Any] | None = None,
        api: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ):
        self.storage = storage or {}
        self.monitor = monitor or {}
        self.x = x or {}
        self.ai = ai or {}
        self.api = api or {}
        self.logging = logging or {}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        return cls(
            storage=raw.get("storage"),
            monitor=raw.get("monitor"),
            x=raw.get("x"),
            ai=raw.get("ai"),
            api=raw.get("api"),
            logging=raw.get("logging"),
        )

    # Convenience accessors with defaults
    @property
    def db_path(self) -> str:
        return self.storage.get("db_path", "data/crowdcast.duckdb")

    @property
    def monitor_enabled(self) -> bool:
        return bool(self.monitor.get("enabled", True))

    @property
    def poll_interval_sec(self) -> float:
        return float(self.monitor.get("poll_interval_sec", 300))

    @property
    def rate_limit_backoff_sec(self) -> float:
        return float(self.monitor.get("rate_limit_backoff_sec", 900))

    @property
    def monitor_run_on_start(self) -> bool:
        return bool(self.monitor.get("run_on_start", True))

    @property
    def max_posts_per_fetch(self) -> int:
        return int(self.monitor.get("max_posts_per_fetch", 10))

    @property
    def x_api_base(self) -> str:
        return self.x.get("api_base", "https://api.twitter.com")

    @property
    def x_authorize_url(self) -> str:
        return self.x.get("authorize_url", "https://twitter.com/i/oauth2/authorize")

    @property
    def x_token_url(self) -> str:
        return self.x.get("token_url", "https://api.twitter.com/2/oauth2/token")

    @property
    def x_client_id(self) -> str | None:
        return self.x.get("client_id") or os.environ.get("CROWDCAST_X_CLIENT_ID")

    @property
    def x_client_secret(self) -> str | None:
        return self.x.get("client_secret") or os.environ.get("CROWDCAST_X_CLIENT_SECRET")

    @property
    def x_redirect_uri(self) -> str:
        # Frontend page X redirects to; it forwards code and state to POST /auth/x/complete
        return self.x.get("redirect_uri", "http://localhost:5173/x/callback")

    @property
    def x_scopes(self) -> list[str]:
        return list(self.x.get("scopes") or ["tweet.read", "users.read"])

    @property
    def oauth_state_ttl_sec(self) -> float:
        return float(self.x.get("oauth_state_ttl_sec", 600))

    @property
    def x_request_timeout_sec(self) -> float:
        return float(self.x.get("request_timeout_sec", 15.0))

    @property
    def ai_model(self) -> str:
        return self.ai.get("model", "gpt-4o-mini")

    @property
    def ai_base_url(self) -> str | None:
        return self.ai.get("base_url") or None

    @property
    def ai_api_key(self) -> str | None:
        return self.ai.get("api_key") or os.environ.get("CROWDCAST_AI_API_KEY")

    @property
    def ai_temperature(self) -> float:
        return float(self.ai.get("temperature", 0.7))

    @property
    def default_end_days(self) -> int:
        return int(self.ai.get("default_end_days", 7))

    @property
    def api_host(self) -> str:
        return self.api.get("host", "127.0.0.1")

    @property
    def api_port(self) -> int:
        return int(self.api.get("port", 8000))

    @property
    def logging_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    @property
    def logging_format(self) -> str:
        return self.logging.get("format", "console")

    @property
    def logging_level_num(self) -> int:
        return getattr(logging, self.logging_level, logging.INFO)


def configure_logging(settings: Settings) -> None:
    """Configure structlog with settings. Call once at application entry."""
    import structlog

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.logging_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.logging_level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
