"""Opens the resource behind a notification in the user's browser."""

from __future__ import annotations

import logging
import webbrowser
from typing import Callable, Protocol

from gh_notifier.feed import FeedError
from gh_notifier.models import Subject

logger = logging.getLogger(__name__)


class OpenError(RuntimeError):
    """Raised when a resource cannot be resolved or opened."""


class HtmlUrlResolver(Protocol):
    def resolve_html_url(self, api_url: str) -> str: ...


class BrowserOpener:
    """Resolves API URLs to html URLs via the feed, then opens a browser."""

    def __init__(
        self,
        resolver: HtmlUrlResolver,
        browser_open: Callable[[str], bool] | None = None,
    ) -> None:
        self._resolver = resolver
        self._browser_open = browser_open or webbrowser.open

    @staticmethod
    def resolve_target(subject: Subject) -> str:
        """Prefer the latest activity on the thread over the thread itself."""
        return subject.latest_comment_url or subject.url

    def open(self, reference: str) -> str:
        """Open the resource and return the html URL that was launched."""
        if not reference:
            raise OpenError("Notification has no resource to open")
        try:
            html_url = self._resolver.resolve_html_url(reference)
        except FeedError as exc:
            raise OpenError(f"Cannot resolve {reference}: {exc}") from exc

        logger.debug("Opening %s for %s", html_url, reference)
        try:
            opened = self._browser_open(html_url)
        except (webbrowser.Error, OSError) as exc:
            raise OpenError(f"Browser failed for {html_url}: {exc}") from exc
        if not opened:
            raise OpenError(f"No browser could open {html_url}")
        return html_url

    def open_subject(self, subject: Subject) -> str:
        return self.open(self.resolve_target(subject))
