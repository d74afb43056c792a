"""GitHub notifications feed client.

Fetches the outstanding notification threads for the authenticated user
and resolves API resource URLs to browsable html URLs. Every failure,
whether authentication, HTTP status, transport or payload shape, surfaces
as a single FeedError so the engine treats them uniformly.
"""

from __future__ import annotations

import http.client
import json
import logging
import re
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable, Dict

from gh_notifier.models import Item
from gh_notifier.retry import RetryConfig, RetryError, retry

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
USER_AGENT = "gh-notifier"

_NEXT_LINK = re.compile(r'<([^>]+)>\s*;\s*rel="next"')


class FeedError(RuntimeError):
    """Raised when the feed cannot be fetched or understood."""


class TransientFeedError(FeedError):
    """A failure worth retrying: transport errors, timeouts, 429 and 5xx."""


@dataclass
class FeedResponse:
    body: str
    headers: dict[str, str] = field(default_factory=dict)


RequestFunc = Callable[[str, Dict[str, str], float], FeedResponse]


def urllib_request(url: str, headers: dict[str, str], timeout: float) -> FeedResponse:
    """Perform a GET with urllib, mapping failures onto the feed errors."""
    req = urllib.request.Request(url, headers=headers, method="GET")
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
            resp_headers = dict(resp.headers.items())
    except urllib.error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")[:200]
        if exc.code == 429 or exc.code >= 500:
            raise TransientFeedError(f"GitHub API error {exc.code}: {detail}") from exc
        raise FeedError(f"GitHub API error {exc.code}: {detail}") from exc
    except urllib.error.URLError as exc:
        raise TransientFeedError(f"GitHub connection error: {exc.reason}") from exc
    except TimeoutError as exc:
        raise TransientFeedError(f"GitHub request timed out after {timeout}s") from exc
    except (OSError, http.client.HTTPException) as exc:
        # Dropped connections and truncated bodies are not wrapped in URLError.
        raise TransientFeedError(f"GitHub transport error: {exc!r}") from exc
    try:
        body = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FeedError(f"Response from {url} is not UTF-8: {exc}") from exc
    return FeedResponse(body=body, headers=resp_headers)


class GitHubFeed:
    """Reads the notifications feed of the token's owner."""

    def __init__(
        self,
        token: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        retry_config: RetryConfig | None = None,
        request_func: RequestFunc | None = None,
        sleep_func: Callable[[float], None] | None = None,
    ) -> None:
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._retry_config = retry_config or RetryConfig(
            retryable_exceptions=(TransientFeedError,),
        )
        self._request = request_func or urllib_request  # Injectable for testing
        self._sleep = sleep_func

    @property
    def notifications_url(self) -> str:
        return f"{self._api_url}/notifications"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"token {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": USER_AGENT,
        }

    def _get(self, url: str) -> tuple[Any, dict[str, str]]:
        try:
            resp = retry(
                self._request, self._retry_config, self._sleep,
                url, self._headers(), self._timeout,
            )
        except RetryError as exc:
            raise FeedError(str(exc.last_error)) from exc.last_error
        try:
            return json.loads(resp.body), resp.headers
        except json.JSONDecodeError as exc:
            raise FeedError(f"Invalid JSON from {url}: {exc}") from exc

    def fetch(self) -> list[Item]:
        """Fetch every outstanding notification, following pagination."""
        items: list[Item] = []
        url: str | None = self.notifications_url
        while url:
            payload, headers = self._get(url)
            if not isinstance(payload, list):
                raise FeedError(f"Expected a list of notifications, got {type(payload).__name__}")
            for entry in payload:
                try:
                    items.append(Item.from_api(entry))
                except (KeyError, TypeError, ValueError) as exc:
                    entry_id = entry.get("id", "?") if isinstance(entry, dict) else "?"
                    logger.warning("Skipping malformed notification %s: %s", entry_id, exc)
            url = _next_page(headers)
        return items

    def resolve_html_url(self, api_url: str) -> str:
        """Look up the browsable html_url for an API resource URL."""
        payload, _ = self._get(api_url)
        html_url = payload.get("html_url") if isinstance(payload, dict) else None
        if not html_url:
            raise FeedError(f"No html_url in detail for {api_url}")
        return html_url


def _next_page(headers: dict[str, str]) -> str | None:
    link = next((v for k, v in headers.items() if k.lower() == "link"), "")
    match = _NEXT_LINK.search(link)
    return match.group(1) if match else None
