"""Tests for the poll-diff-dispatch engine."""

import threading
import time
from concurrent.futures import Future
from datetime import datetime, timedelta, timezone

from gh_notifier.engine import DispatchStatus, NotifierEngine, select_new
from gh_notifier.feed import FeedError
from gh_notifier.models import Item, Reason, Repository, Subject
from gh_notifier.opener import OpenError
from gh_notifier.presenter import PresentationError

W0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_item(item_id, updated_at, latest_comment_url=None):
    return Item(
        item_id=item_id,
        reason=Reason.MENTION,
        repository=Repository(repo_id=1, name="r", full_name="o/r"),
        subject=Subject(
            title=f"Thread {item_id}",
            url=f"https://api.github.com/repos/o/r/issues/{item_id}",
            subject_type="Issue",
            latest_comment_url=latest_comment_url,
        ),
        updated_at=updated_at,
    )


class FakeFeed:
    def __init__(self, items=None, error=None):
        self.items = list(items or [])
        self.error = error
        self.calls = 0

    def fetch(self):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.items)


class FakePresenter:
    def __init__(self, action=None, delay=None, fail_ids=()):
        self._action = action
        self._delay = delay or (lambda item: 0)
        self._fail_ids = set(fail_ids)
        self._lock = threading.Lock()
        self.presented = []
        self.signals = {}

    def present(self, item):
        time.sleep(self._delay(item))
        if item.item_id in self._fail_ids:
            raise PresentationError("no display")
        signal = Future()
        if self._action != "pending":
            signal.set_result(self._action)
        with self._lock:
            self.presented.append(item.item_id)
            self.signals[item.item_id] = signal
        return signal


class FakeOpener:
    def __init__(self, error=None):
        self.error = error
        self.opened = []

    def open_subject(self, subject):
        if self.error:
            raise self.error
        reference = subject.latest_comment_url or subject.url
        self.opened.append(reference)
        return reference


class MemoryStore:
    def __init__(self, value=W0, fail_writes=False):
        self.value = value
        self.fail_writes = fail_writes
        self.writes = []

    def read(self):
        return self.value

    def write(self, instant):
        if self.fail_writes:
            raise OSError("disk full")
        self.writes.append(instant)
        self.value = instant


class Clock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_engine(feed, presenter=None, opener=None, store=None, clock=None, **kwargs):
    return NotifierEngine(
        feed=feed,
        presenter=presenter or FakePresenter(),
        opener=opener or FakeOpener(),
        store=store or MemoryStore(),
        clock=clock or Clock(W0 + timedelta(hours=2)),
        sleep_func=kwargs.pop("sleep_func", lambda _: None),
        **kwargs,
    )


class TestSelectNew:
    def test_strictly_after_watermark(self):
        items = [
            make_item("old", "2023-12-31T23:59:59Z"),
            make_item("equal", "2024-01-01T00:00:00Z"),
            make_item("new", "2024-01-01T00:00:01Z"),
        ]
        fresh, rejected = select_new(items, W0)
        assert [i.item_id for i in fresh] == ["new"]
        assert rejected == []

    def test_filter_matches_definition(self):
        stamps = ["2023-06-01T00:00:00Z", "2024-01-01T00:00:00+00:00",
                  "2024-01-01T01:00:00+02:00", "2024-01-02T00:00:00Z"]
        items = [make_item(str(n), s) for n, s in enumerate(stamps)]
        for watermark in (W0 - timedelta(days=365), W0, W0 + timedelta(days=1)):
            fresh, _ = select_new(items, watermark)
            assert fresh == [i for i in items if i.last_modified > watermark]

    def test_bad_timestamp_is_rejected_not_dropped(self):
        items = [make_item("bad", "garbage"), make_item("new", "2024-01-02T00:00:00Z")]
        fresh, rejected = select_new(items, W0)
        assert [i.item_id for i in fresh] == ["new"]
        assert len(rejected) == 1
        assert rejected[0].item_id == "bad"
        assert rejected[0].status == DispatchStatus.FAILED


class TestRunCycle:
    def test_end_to_end_stale_and_new(self):
        feed = FakeFeed([
            make_item("stale", "2023-12-31T23:00:00Z"),
            make_item("new", "2024-01-01T01:00:00Z"),
        ])
        presenter = FakePresenter()
        store = MemoryStore(W0)
        clock = Clock(datetime(2024, 1, 1, 2, 0, tzinfo=timezone.utc))
        engine = make_engine(feed, presenter, store=store, clock=clock)

        result = engine.run_cycle()

        assert presenter.presented == ["new"]
        assert result.dispatched == 1
        assert result.fetched == 2
        assert engine.watermark == clock.now
        assert result.watermark == clock.now
        assert store.writes == [clock.now]

    def test_watermark_is_cycle_start_not_fetch_end(self):
        clock = Clock(W0 + timedelta(hours=1))
        start = clock.now

        class SlowFeed(FakeFeed):
            def fetch(self):
                clock.advance(minutes=5)
                return super().fetch()

        engine = make_engine(SlowFeed([]), clock=clock)
        engine.run_cycle()
        assert engine.watermark == start

    def test_second_cycle_is_idempotent(self):
        feed = FakeFeed([make_item("a", "2024-01-01T01:00:00Z"), make_item("b", "2024-01-01T01:30:00Z")])
        presenter = FakePresenter()
        clock = Clock(W0 + timedelta(hours=2))
        engine = make_engine(feed, presenter, clock=clock)

        assert engine.run_cycle().dispatched == 2
        clock.advance(seconds=30)
        second = engine.run_cycle()
        assert second.dispatched == 0
        assert sorted(presenter.presented) == ["a", "b"]

    def test_fetch_failure_keeps_watermark(self):
        store = MemoryStore(W0)
        engine = make_engine(FakeFeed(error=FeedError("401 Bad credentials")), store=store)
        result = engine.run_cycle()
        assert not result.ok
        assert "401" in result.fetch_error
        assert engine.watermark == W0
        assert store.writes == []

    def test_unexpected_fetch_exception_is_not_fatal(self):
        engine = make_engine(FakeFeed(error=KeyError("boom")))
        result = engine.run_cycle()
        assert not result.ok
        assert engine.watermark == W0

    def test_item_failures_do_not_block_watermark(self):
        feed = FakeFeed([
            make_item("ok", "2024-01-01T01:00:00Z"),
            make_item("broken", "2024-01-01T01:00:00Z"),
            make_item("bad-ts", "not a time"),
        ])
        store = MemoryStore(W0)
        clock = Clock(W0 + timedelta(hours=2))
        engine = make_engine(feed, FakePresenter(fail_ids={"broken"}), store=store, clock=clock)

        result = engine.run_cycle()

        statuses = {r.item_id: r.status for r in result.records}
        assert statuses == {
            "ok": DispatchStatus.PRESENTED,
            "broken": DispatchStatus.FAILED,
            "bad-ts": DispatchStatus.FAILED,
        }
        assert result.failed == 2
        assert engine.watermark == clock.now
        assert store.writes == [clock.now]

    def test_store_write_failure_still_advances_in_memory(self):
        clock = Clock(W0 + timedelta(hours=2))
        engine = make_engine(FakeFeed([]), store=MemoryStore(W0, fail_writes=True), clock=clock)
        result = engine.run_cycle()
        assert result.ok
        assert engine.watermark == clock.now

    def test_clock_going_backwards_keeps_watermark(self):
        store = MemoryStore(W0)
        engine = make_engine(FakeFeed([]), store=store, clock=Clock(W0 - timedelta(minutes=1)))
        engine.run_cycle()
        assert engine.watermark == W0
        assert store.writes == []


class TestConcurrentDispatch:
    def test_all_items_presented_before_barrier(self):
        items = [make_item(str(n), "2024-01-01T01:00:00Z") for n in range(5)]
        delays = {"0": 0.05, "1": 0.0, "2": 0.03, "3": 0.01, "4": 0.02}
        presenter = FakePresenter(delay=lambda item: delays[item.item_id])
        engine = make_engine(FakeFeed(items), presenter)

        result = engine.run_cycle()

        assert sorted(presenter.presented) == ["0", "1", "2", "3", "4"]
        assert result.dispatched == 5

    def test_items_are_handled_concurrently(self):
        items = [make_item(str(n), "2024-01-01T01:00:00Z") for n in range(5)]
        barrier = threading.Barrier(5, timeout=5)

        class RendezvousPresenter(FakePresenter):
            def present(self, item):
                barrier.wait()
                return super().present(item)

        presenter = RendezvousPresenter()
        result = make_engine(FakeFeed(items), presenter).run_cycle()
        assert result.dispatched == 5

    def test_max_workers_caps_fan_out(self):
        items = [make_item(str(n), "2024-01-01T01:00:00Z") for n in range(6)]
        lock = threading.Lock()
        active = [0]
        peak = [0]

        class CountingPresenter(FakePresenter):
            def present(self, item):
                with lock:
                    active[0] += 1
                    peak[0] = max(peak[0], active[0])
                time.sleep(0.02)
                with lock:
                    active[0] -= 1
                return super().present(item)

        result = make_engine(FakeFeed(items), CountingPresenter(), max_workers=2).run_cycle()
        assert result.dispatched == 6
        assert peak[0] <= 2


class TestUserAction:
    def test_click_opens_latest_comment(self):
        item = make_item("1", "2024-01-01T01:00:00Z", latest_comment_url="https://api/comments/9")
        opener = FakeOpener()
        make_engine(FakeFeed([item]), FakePresenter(action="default"), opener).run_cycle()
        assert opener.opened == ["https://api/comments/9"]

    def test_dismiss_does_not_open(self):
        opener = FakeOpener()
        make_engine(
            FakeFeed([make_item("1", "2024-01-01T01:00:00Z")]), FakePresenter(action=None), opener,
        ).run_cycle()
        assert opener.opened == []

    def test_cycle_does_not_wait_for_user(self):
        presenter = FakePresenter(action="pending")
        opener = FakeOpener()
        engine = make_engine(FakeFeed([make_item("1", "2024-01-01T01:00:00Z")]), presenter, opener)

        result = engine.run_cycle()
        assert result.dispatched == 1
        assert opener.opened == []

        presenter.signals["1"].set_result("default")
        assert opener.opened == ["https://api.github.com/repos/o/r/issues/1"]

    def test_open_failure_is_logged(self, caplog):
        opener = FakeOpener(error=OpenError("no browser"))
        engine = make_engine(
            FakeFeed([make_item("1", "2024-01-01T01:00:00Z")]), FakePresenter(action="default"), opener,
        )
        with caplog.at_level("ERROR", logger="gh_notifier.engine"):
            result = engine.run_cycle()
        assert result.dispatched == 1
        assert "no browser" in caplog.text

    def test_signal_exception_is_logged(self, caplog):
        presenter = FakePresenter(action="pending")
        opener = FakeOpener()
        make_engine(FakeFeed([make_item("1", "2024-01-01T01:00:00Z")]), presenter, opener).run_cycle()
        with caplog.at_level("WARNING", logger="gh_notifier.engine"):
            presenter.signals["1"].set_exception(PresentationError("alert closed"))
        assert opener.opened == []
        assert "alert closed" in caplog.text


class TestRunForever:
    def test_sleeps_between_cycles(self):
        sleeps = []
        feed = FakeFeed([])
        engine = make_engine(feed, poll_interval=30.0, sleep_func=sleeps.append)
        engine.run_forever(max_cycles=3)
        assert feed.calls == 3
        assert sleeps == [30.0, 30.0]

    def test_backoff_after_repeated_failures(self):
        sleeps = []
        engine = make_engine(
            FakeFeed(error=FeedError("down")),
            poll_interval=10.0, max_backoff=35.0, sleep_func=sleeps.append,
        )
        engine.run_forever(max_cycles=5)
        assert sleeps == [10.0, 20.0, 35.0, 35.0]

    def test_success_resets_backoff(self):
        sleeps = []
        feed = FakeFeed(error=FeedError("down"))

        def sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 2:
                feed.error = None

        engine = make_engine(feed, poll_interval=10.0, sleep_func=sleep)
        engine.run_forever(max_cycles=4)
        assert sleeps == [10.0, 20.0, 10.0]

    def test_next_delay(self):
        engine = make_engine(FakeFeed([]), poll_interval=5.0, max_backoff=100.0)
        assert engine.next_delay(0) == 5.0
        assert engine.next_delay(1) == 5.0
        assert engine.next_delay(3) == 20.0
        assert engine.next_delay(10) == 100.0
