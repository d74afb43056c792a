"""Poll-diff-dispatch engine.

Each cycle records its start instant, fetches the outstanding items,
keeps those modified strictly after the watermark, presents them
concurrently, and then advances the watermark to the cycle start.

Dispatch barrier: a unit of work is complete once the presenter has shown
the alert. Opening the resource after a click runs as a callback on the
item's action signal, so an absent user never holds up the next cycle.
"""

from __future__ import annotations

import functools
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, Protocol

from gh_notifier.models import InvalidTimestamp, Item, Subject, now_utc
from gh_notifier.opener import OpenError
from gh_notifier.presenter import DEFAULT_ACTION, Presenter
from gh_notifier.retry import RetryConfig, backoff_delay

logger = logging.getLogger(__name__)


class FeedClient(Protocol):
    def fetch(self) -> list[Item]: ...


class ResourceOpener(Protocol):
    def open_subject(self, subject: Subject) -> str: ...


class WatermarkBackend(Protocol):
    def read(self) -> datetime: ...

    def write(self, instant: datetime) -> None: ...


class DispatchStatus(Enum):
    PENDING = "pending"
    PRESENTED = "presented"
    FAILED = "failed"


@dataclass
class DispatchRecord:
    item_id: str
    status: DispatchStatus = DispatchStatus.PENDING
    error: str | None = None

    def mark_presented(self) -> None:
        self.status = DispatchStatus.PRESENTED

    def mark_failed(self, error: str) -> None:
        self.status = DispatchStatus.FAILED
        self.error = error


@dataclass
class CycleResult:
    """Outcome of one poll cycle."""
    started_at: datetime
    watermark: datetime
    fetched: int = 0
    records: list[DispatchRecord] = field(default_factory=list)
    fetch_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.fetch_error is None

    @property
    def dispatched(self) -> int:
        return sum(1 for r in self.records if r.status == DispatchStatus.PRESENTED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.records if r.status == DispatchStatus.FAILED)


def select_new(
    items: Iterable[Item], watermark: datetime,
) -> tuple[list[Item], list[DispatchRecord]]:
    """Split items into those modified after the watermark and parse failures."""
    fresh: list[Item] = []
    rejected: list[DispatchRecord] = []
    for item in items:
        try:
            modified = item.last_modified
        except InvalidTimestamp as exc:
            logger.error("Notification %s has a bad timestamp: %s", item.item_id, exc)
            record = DispatchRecord(item_id=item.item_id)
            record.mark_failed(str(exc))
            rejected.append(record)
            continue
        if modified > watermark:
            fresh.append(item)
    return fresh, rejected


class NotifierEngine:
    """Drives fetch, filter, dispatch and watermark advance forever."""

    def __init__(
        self,
        feed: FeedClient,
        presenter: Presenter,
        opener: ResourceOpener,
        store: WatermarkBackend,
        poll_interval: float = 30.0,
        max_workers: int = 0,
        max_backoff: float = 300.0,
        clock: Callable[[], datetime] | None = None,
        sleep_func: Callable[[float], None] | None = None,
    ) -> None:
        self._feed = feed
        self._presenter = presenter
        self._opener = opener
        self._store = store
        self._poll_interval = poll_interval
        self._max_workers = max_workers
        self._backoff = RetryConfig(
            base_delay=poll_interval,
            max_delay=max(max_backoff, poll_interval),
            jitter=False,
        )
        self._clock = clock or now_utc
        self._sleep = sleep_func or time.sleep
        self._watermark = store.read()

    @property
    def watermark(self) -> datetime:
        return self._watermark

    def run_cycle(self) -> CycleResult:
        cycle_start = self._clock()
        result = CycleResult(started_at=cycle_start, watermark=self._watermark)

        try:
            items = self._feed.fetch()
        except Exception as exc:
            logger.error("Error fetching notifications: %s", exc)
            result.fetch_error = str(exc)
            return result

        result.fetched = len(items)
        fresh, rejected = select_new(items, self._watermark)
        result.records.extend(rejected)
        result.records.extend(self._dispatch_all(fresh))

        self._advance(cycle_start)
        result.watermark = self._watermark
        logger.info(
            "Cycle done: %d fetched, %d presented, %d failed",
            result.fetched, result.dispatched, result.failed,
        )
        return result

    def run_forever(self, max_cycles: int | None = None) -> None:
        logger.info("Notifier started. Last updated date: %s", self._watermark.isoformat())
        cycles = 0
        failures = 0
        while max_cycles is None or cycles < max_cycles:
            result = self.run_cycle()
            cycles += 1
            failures = 0 if result.ok else failures + 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            self._sleep(self.next_delay(failures))

    def next_delay(self, consecutive_failures: int) -> float:
        """Regular interval, growing exponentially after repeated fetch failures."""
        if consecutive_failures <= 1:
            return self._poll_interval
        return backoff_delay(consecutive_failures, self._backoff)

    def _advance(self, instant: datetime) -> None:
        if instant < self._watermark:
            logger.warning(
                "Clock went backwards (%s < %s), keeping watermark",
                instant.isoformat(), self._watermark.isoformat(),
            )
            return
        self._watermark = instant
        try:
            self._store.write(instant)
        except OSError as exc:
            logger.error("Failed to persist watermark: %s", exc)

    def _dispatch_all(self, items: list[Item]) -> list[DispatchRecord]:
        if not items:
            return []
        workers = len(items)
        if self._max_workers > 0:
            workers = min(workers, self._max_workers)

        pending: list[tuple[DispatchRecord, Future]] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dispatch") as pool:
            for item in items:
                record = DispatchRecord(item_id=item.item_id)
                pending.append((record, pool.submit(self._dispatch, item)))

        for record, future in pending:
            exc = future.exception()
            if exc is None:
                record.mark_presented()
            else:
                logger.warning("Failed to present %s: %s", record.item_id, exc)
                record.mark_failed(str(exc))
        return [record for record, _ in pending]

    def _dispatch(self, item: Item) -> None:
        logger.debug("Notifying about '%s' ('%s')", item.item_id, item.subject.title)
        signal = self._presenter.present(item)
        signal.add_done_callback(functools.partial(self._on_action, item))

    def _on_action(self, item: Item, signal: Future) -> None:
        if signal.cancelled():
            return
        exc = signal.exception()
        if exc is not None:
            logger.warning("Alert for %s failed: %s", item.item_id, exc)
            return
        if signal.result() != DEFAULT_ACTION:
            logger.debug("Notification %s dismissed", item.item_id)
            return
        try:
            self._opener.open_subject(item.subject)
        except OpenError as exc:
            logger.error("Could not open %s: %s", item.item_id, exc)
        except Exception:
            logger.exception("Unexpected error opening %s", item.item_id)
