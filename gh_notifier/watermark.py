"""Durable watermark for the poll loop.

Stores the instant of the last fully processed poll cycle as a single
RFC 3339 line in the per-application cache directory. Reads never fail:
a missing or corrupt file falls back to "now" (skip the backlog) or,
when configured, to the epoch (replay everything outstanding).
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable

from gh_notifier.models import EPOCH, InvalidTimestamp, format_timestamp, now_utc, parse_timestamp

logger = logging.getLogger(__name__)

APP_NAME = "gh-notifier"
STATE_FILE = "last_updated"


def default_cache_dir(app_name: str = APP_NAME) -> Path:
    """Resolve the per-user cache directory for this application."""
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Caches" / app_name
    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA")
        root = Path(base) if base else Path.home() / "AppData" / "Local"
        return root / app_name / "cache"
    xdg = os.environ.get("XDG_CACHE_HOME")
    root = Path(xdg) if xdg and os.path.isabs(xdg) else Path.home() / ".cache"
    return root / app_name


class WatermarkStore:
    """File-backed watermark with atomic, fsynced writes."""

    def __init__(
        self,
        path: Path | None = None,
        replay_backlog: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = path or default_cache_dir() / STATE_FILE
        self._replay_backlog = replay_backlog
        self._clock = clock or now_utc

    @property
    def path(self) -> Path:
        return self._path

    def _fallback(self) -> datetime:
        return EPOCH if self._replay_backlog else self._clock()

    def read(self) -> datetime:
        try:
            contents = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No watermark at %s, starting fresh", self._path)
            return self._fallback()
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Unreadable watermark at %s: %s", self._path, exc)
            return self._fallback()
        try:
            return parse_timestamp(contents.strip())
        except InvalidTimestamp:
            logger.warning("Corrupt watermark at %s: %r", self._path, contents[:64])
            return self._fallback()

    def write(self, instant: datetime) -> None:
        """Persist the instant; durable on disk once this returns."""
        text = format_timestamp(instant)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(str(tmp), str(self._path))
        _fsync_dir(self._path.parent)


def _fsync_dir(directory: Path) -> None:
    # Directory fds are not supported on Windows.
    if sys.platform == "win32":
        return
    fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
