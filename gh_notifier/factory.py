"""Factory for building a NotifierEngine from a NotifierConfig.

Keeps client construction out of the CLI so the same wiring can be
reused with pre-built collaborators in tests.
"""

from __future__ import annotations

from pathlib import Path

from gh_notifier.config import NotifierConfig
from gh_notifier.engine import NotifierEngine
from gh_notifier.feed import GitHubFeed, TransientFeedError
from gh_notifier.opener import BrowserOpener
from gh_notifier.presenter import DesktopPresenter, LogPresenter, Presenter
from gh_notifier.retry import RetryConfig
from gh_notifier.watermark import STATE_FILE, WatermarkStore


def build_store(cfg: NotifierConfig) -> WatermarkStore:
    path = Path(cfg.state_dir) / STATE_FILE if cfg.state_dir else None
    return WatermarkStore(path, replay_backlog=cfg.replay_backlog)


def build_presenter(cfg: NotifierConfig) -> Presenter:
    if cfg.presenter == "log":
        return LogPresenter()
    return DesktopPresenter(app_name=cfg.app_name)


def build_engine(
    cfg: NotifierConfig,
    store: WatermarkStore | None = None,
    presenter: Presenter | None = None,
) -> NotifierEngine:
    """Build a NotifierEngine from a NotifierConfig.

    Args:
        cfg: Validated notifier configuration.
        store: Optional pre-built watermark store. If None, one is
            constructed from cfg.state_dir and cfg.replay_backlog.
        presenter: Optional pre-built presenter. If None, one is chosen
            from cfg.presenter.

    Returns:
        A fully wired NotifierEngine.

    Raises:
        ConfigError: If the configuration is invalid or the token is missing.
    """
    cfg.validate()
    feed = GitHubFeed(
        token=cfg.github_token,
        api_url=cfg.api_url,
        timeout=cfg.request_timeout,
        retry_config=RetryConfig(
            max_attempts=max(cfg.retry_attempts, 1),
            retryable_exceptions=(TransientFeedError,),
        ),
    )
    return NotifierEngine(
        feed=feed,
        presenter=presenter or build_presenter(cfg),
        opener=BrowserOpener(feed),
        store=store or build_store(cfg),
        poll_interval=cfg.poll_interval,
        max_workers=cfg.max_workers,
        max_backoff=cfg.max_backoff,
    )
