"""Configuration loader for gh-notifier.

Loads an optional YAML config file with environment variable overrides.
Env vars use the GH_NOTIFIER_ prefix; the token is also read from the
conventional GITHUB_TOKEN variable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from gh_notifier.feed import DEFAULT_API_URL


ENV_PREFIX = "GH_NOTIFIER_"
TOKEN_ENV = "GITHUB_TOKEN"
PRESENTERS = ("desktop", "log")


class ConfigError(Exception):
    """Raised when configuration is missing or invalid at startup."""


@dataclass
class NotifierConfig:
    """Settings for the notifier process."""
    github_token: str = ""
    api_url: str = DEFAULT_API_URL
    poll_interval: float = 30.0
    max_workers: int = 0  # 0 means one worker per new item
    replay_backlog: bool = False
    state_dir: str = ""
    presenter: str = "desktop"
    app_name: str = "GitHub"
    request_timeout: float = 30.0
    retry_attempts: int = 3
    max_backoff: float = 300.0

    def require_token(self) -> str:
        if not self.github_token:
            raise ConfigError(f"{TOKEN_ENV} not set")
        return self.github_token

    def validate(self) -> None:
        self.require_token()
        if self.presenter not in PRESENTERS:
            raise ConfigError(
                f"Unknown presenter {self.presenter!r}, expected one of {', '.join(PRESENTERS)}"
            )
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be positive")
        if self.max_workers < 0:
            raise ConfigError("max_workers must not be negative")


def load_config(path: Path | None = None) -> NotifierConfig:
    """Load config from YAML file with env var overrides.

    Env vars override YAML values. Mapping:
      GITHUB_TOKEN / GH_NOTIFIER_GITHUB_TOKEN → github_token
      GH_NOTIFIER_API_URL → api_url
      GH_NOTIFIER_POLL_INTERVAL → poll_interval
      GH_NOTIFIER_MAX_WORKERS → max_workers
      GH_NOTIFIER_REPLAY_BACKLOG → replay_backlog
      GH_NOTIFIER_STATE_DIR → state_dir
      GH_NOTIFIER_PRESENTER → presenter
    """
    raw: dict[str, Any] = {}
    if path and path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            raw = loaded
        elif loaded is not None:
            raise ConfigError(f"{path} must contain a mapping")

    defaults = NotifierConfig()
    token = os.environ.get(
        f"{ENV_PREFIX}GITHUB_TOKEN",
        os.environ.get(TOKEN_ENV, raw.get("github_token", "")),
    )

    try:
        return NotifierConfig(
            github_token=token or "",
            api_url=_env_or("API_URL", raw.get("api_url", defaults.api_url)),
            poll_interval=float(_env_or("POLL_INTERVAL", raw.get("poll_interval", defaults.poll_interval))),
            max_workers=int(_env_or("MAX_WORKERS", raw.get("max_workers", defaults.max_workers))),
            replay_backlog=_env_bool("REPLAY_BACKLOG", _as_bool(raw.get("replay_backlog", False))),
            state_dir=_env_or("STATE_DIR", raw.get("state_dir", "")),
            presenter=_env_or("PRESENTER", raw.get("presenter", defaults.presenter)),
            app_name=raw.get("app_name", defaults.app_name),
            request_timeout=float(raw.get("request_timeout", defaults.request_timeout)),
            retry_attempts=int(raw.get("retry_attempts", defaults.retry_attempts)),
            max_backoff=float(raw.get("max_backoff", defaults.max_backoff)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc


def _env_or(suffix: str, default: Any) -> Any:
    return os.environ.get(f"{ENV_PREFIX}{suffix}", default)


def _env_bool(suffix: str, default: bool) -> bool:
    val = os.environ.get(f"{ENV_PREFIX}{suffix}")
    if val is None:
        return default
    return _as_bool(val)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)
