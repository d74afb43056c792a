"""Presenters show an item to the user and report the action taken.

`present()` returns immediately with an action signal: a Future that
resolves to the action key the user picked (``"default"`` for a click)
or None when the alert is dismissed or closed without an action.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from concurrent.futures import Future
from typing import Any, Callable, Protocol

from gh_notifier.models import Item

logger = logging.getLogger(__name__)

DEFAULT_ACTION = "default"

ActionSignal = Future  # Future[str | None]


class PresentationError(RuntimeError):
    """Raised when an alert cannot be shown."""


class Presenter(Protocol):
    def present(self, item: Item) -> ActionSignal: ...


def format_summary(item: Item) -> str:
    return item.repository.full_name


def format_body(item: Item) -> str:
    return f"{item.subject.title} ({item.subject.subject_type}/{item.reason.value})"


class DesktopPresenter:
    """Shows alerts through libnotify's ``notify-send`` and waits for a click.

    The wait happens on a daemon thread per alert so the caller is never
    blocked by a user who does not respond.
    """

    def __init__(
        self,
        app_name: str = "GitHub",
        command: str = "notify-send",
        popen: Callable[..., Any] | None = None,
    ) -> None:
        self._app_name = app_name
        self._command = command
        self._popen = popen or subprocess.Popen  # Injectable for testing

    def build_args(self, item: Item) -> list[str]:
        return [
            self._command,
            f"--app-name={self._app_name}",
            "--wait",
            f"--action={DEFAULT_ACTION}=Open",
            format_summary(item),
            format_body(item),
        ]

    def present(self, item: Item) -> ActionSignal:
        try:
            proc = self._popen(
                self.build_args(item),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            raise PresentationError(f"Cannot run {self._command}: {exc}") from exc

        signal: ActionSignal = Future()
        signal.set_running_or_notify_cancel()
        watcher = threading.Thread(
            target=self._await_action,
            args=(item, proc, signal),
            name=f"action-{item.item_id}",
            daemon=True,
        )
        watcher.start()
        return signal

    def _await_action(self, item: Item, proc: Any, signal: ActionSignal) -> None:
        try:
            out, err = proc.communicate()
        except Exception as exc:
            signal.set_exception(PresentationError(f"Lost alert for {item.item_id}: {exc}"))
            return
        if proc.returncode not in (0, None):
            reason = (err or "").strip()[:200] or "no output"
            signal.set_exception(PresentationError(
                f"{self._command} exited with {proc.returncode} for {item.item_id}: {reason}"
            ))
            return
        action = (out or "").strip()
        signal.set_result(action or None)


class LogPresenter:
    """Headless presenter: logs the item and never reports an action."""

    def __init__(self, logger_: logging.Logger | None = None) -> None:
        self._logger = logger_ or logger
        self._lock = threading.Lock()
        self._shown = 0

    def present(self, item: Item) -> ActionSignal:
        self._logger.info("[%s] %s", format_summary(item), format_body(item))
        with self._lock:
            self._shown += 1
        signal: ActionSignal = Future()
        signal.set_result(None)
        return signal

    @property
    def items_shown(self) -> int:
        return self._shown
