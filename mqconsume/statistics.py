"""Rolling throughput and latency statistics for consumer groups."""

from __future__ import annotations

import calendar
import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional

log = logging.getLogger(__name__)

_MINUTE_SAMPLES = 7
_HOUR_SAMPLES = 7
_DAY_SAMPLES = 25


@dataclass(frozen=True)
class CallSnapshot:
    """Counters of one stats item captured at a moment."""

    timestamp: int
    time: int
    value: int


@dataclass(frozen=True)
class StatsSnapshot:
    """Aggregate computed over a window of call snapshots."""

    sum: int = 0
    tps: float = 0.0
    avgpt: float = 0.0


@dataclass
class ConsumeStatus:
    """Consumption figures of one topic within a group."""

    pull_rt: float = 0.0
    pull_tps: float = 0.0
    consume_rt: float = 0.0
    consume_ok_tps: float = 0.0
    consume_failed_tps: float = 0.0
    consume_failed_msgs: int = 0


def _divide(numerator: float, denominator: float) -> float:
    if denominator != 0:
        return numerator / denominator
    if numerator > 0:
        return math.inf
    if numerator < 0:
        return -math.inf
    return math.nan


def compute_stats_data(snapshots: Iterable[CallSnapshot]) -> StatsSnapshot:
    """Compute sum, TPS and average time between the first and last snapshot."""
    items = list(snapshots)
    if not items:
        return StatsSnapshot()
    first, last = items[0], items[-1]
    total = last.value - first.value
    tps = _divide(float(total * 1000), float(last.timestamp - first.timestamp))
    times_diff = last.time - first.time
    avgpt = float(total) / float(times_diff) if times_diff > 0 else 0.0
    return StatsSnapshot(sum=total, tps=tps, avgpt=avgpt)


def next_minute_time() -> datetime:
    """Return the moment one minute from now."""
    return datetime.now() + timedelta(minutes=1)


def next_hour_time() -> datetime:
    """Return the moment one hour from now."""
    return datetime.now() + timedelta(hours=1)


def next_month_time() -> datetime:
    """Return the moment one calendar month from now, overflowing short months."""
    now = datetime.now()
    year, month = divmod(now.month, 12)
    year += now.year
    month += 1
    days_in_month = calendar.monthrange(year, month)[1]
    base = date(year, month, 1) + timedelta(days=now.day - 1)
    if now.day <= days_in_month:
        base = date(year, month, now.day)
    return datetime.combine(base, now.time())


def _now_millis_second_precision() -> int:
    return int(time.time()) * 1000


class StatsItem:
    """Counters for one key, sampled into minute, hour and day windows."""

    def __init__(self, stats_name: str, stats_key: str) -> None:
        self.stats_name = stats_name
        self.stats_key = stats_key
        self._value = 0
        self._times = 0
        self._counter_lock = threading.Lock()
        self._minute: deque[CallSnapshot] = deque(maxlen=_MINUTE_SAMPLES)
        self._hour: deque[CallSnapshot] = deque(maxlen=_HOUR_SAMPLES)
        self._day: deque[CallSnapshot] = deque(maxlen=_DAY_SAMPLES)
        self._minute_lock = threading.Lock()
        self._hour_lock = threading.Lock()
        self._day_lock = threading.Lock()

    @property
    def value(self) -> int:
        with self._counter_lock:
            return self._value

    @property
    def times(self) -> int:
        with self._counter_lock:
            return self._times

    def add(self, inc_value: int, inc_times: int) -> None:
        """Increase the accumulated value and call count."""
        with self._counter_lock:
            self._value += inc_value
            self._times += inc_times

    def _snapshot(self) -> CallSnapshot:
        with self._counter_lock:
            return CallSnapshot(
                timestamp=_now_millis_second_precision(),
                time=self._times,
                value=self._value,
            )

    def sampling_in_seconds(self) -> None:
        """Record a sample into the minute window."""
        with self._minute_lock:
            self._minute.append(self._snapshot())

    def sampling_in_minutes(self) -> None:
        """Record a sample into the hour window."""
        with self._hour_lock:
            self._hour.append(self._snapshot())

    def sampling_in_hour(self) -> None:
        """Record a sample into the day window."""
        with self._day_lock:
            self._day.append(self._snapshot())

    def stats_data_in_minute(self) -> StatsSnapshot:
        with self._minute_lock:
            return compute_stats_data(self._minute)

    def stats_data_in_hour(self) -> StatsSnapshot:
        with self._hour_lock:
            return compute_stats_data(self._hour)

    def stats_data_in_day(self) -> StatsSnapshot:
        with self._day_lock:
            return compute_stats_data(self._day)

    def _log(self, title: str, snapshot: StatsSnapshot) -> None:
        log.info(
            "%s statsName=%s statsKey=%s SUM=%d TPS=%.2f AVGPT=%s",
            title,
            self.stats_name,
            self.stats_key,
            snapshot.sum,
            snapshot.tps,
            snapshot.avgpt,
        )

    def log_minute(self) -> None:
        self._log("Stats In One Minute.", self.stats_data_in_minute())

    def log_hour(self) -> None:
        self._log("Stats In One Hour.", self.stats_data_in_hour())

    def log_day(self) -> None:
        self._log("Stats In One Day.", self.stats_data_in_day())


class StatsItemSet:
    """A named family of stats items keyed by ``topic@group``."""

    def __init__(self, stats_name: str, start_timers: bool = True) -> None:
        self.stats_name = stats_name
        self._items: dict[str, StatsItem] = {}
        self._items_lock = threading.Lock()
        self._closed = threading.Event()
        self._threads: list[threading.Thread] = []
        if start_timers:
            self._start_timers()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _start_timers(self) -> None:
        schedule: list[tuple[float, Callable[[], None]]] = [
            (10.0, self.sampling_in_seconds),
            (600.0, self.sampling_in_minutes),
            (3600.0, self.sampling_in_hour),
            (60.0, self._log_minutes),
            (3600.0, self._log_hours),
            (86400.0, self._log_days),
        ]
        for interval, task in schedule:
            thread = threading.Thread(
                target=self._run_periodic, args=(interval, task), daemon=True
            )
            thread.start()
            self._threads.append(thread)

    def _run_periodic(self, interval: float, task: Callable[[], None]) -> None:
        while not self._closed.wait(interval):
            try:
                task()
            except Exception:
                log.exception("stats task of %s failed", self.stats_name)

    def _each(self) -> list[StatsItem]:
        with self._items_lock:
            return list(self._items.values())

    def sampling_in_seconds(self) -> None:
        for item in self._each():
            item.sampling_in_seconds()

    def sampling_in_minutes(self) -> None:
        for item in self._each():
            item.sampling_in_minutes()

    def sampling_in_hour(self) -> None:
        for item in self._each():
            item.sampling_in_hour()

    def _log_minutes(self) -> None:
        for item in self._each():
            item.log_minute()

    def _log_hours(self) -> None:
        for item in self._each():
            item.log_hour()

    def _log_days(self) -> None:
        for item in self._each():
            item.log_day()

    def add_value(self, key: str, inc_value: int, inc_times: int) -> None:
        """Add to the counters of ``key``, creating its item if needed."""
        self.get_or_create_item(key).add(inc_value, inc_times)

    def get_or_create_item(self, key: str) -> StatsItem:
        with self._items_lock:
            item = self._items.get(key)
            if item is None:
                item = StatsItem(self.stats_name, key)
                self._items[key] = item
            return item

    def get_stats_item(self, key: str) -> StatsItem:
        """Return the item for ``key``; raise KeyError when it does not exist."""
        with self._items_lock:
            return self._items[key]

    def _find(self, key: str) -> Optional[StatsItem]:
        with self._items_lock:
            return self._items.get(key)

    def stats_data_in_minute(self, key: str) -> StatsSnapshot:
        item = self._find(key)
        return item.stats_data_in_minute() if item else StatsSnapshot()

    def stats_data_in_hour(self, key: str) -> StatsSnapshot:
        item = self._find(key)
        return item.stats_data_in_hour() if item else StatsSnapshot()

    def stats_data_in_day(self, key: str) -> StatsSnapshot:
        item = self._find(key)
        return item.stats_data_in_day() if item else StatsSnapshot()

    def close(self) -> None:
        """Stop the background sampling and logging timers."""
        self._closed.set()


def _key(group: str, topic: str) -> str:
    return f"{topic}@{group}"


class StatsManager:
    """Pull and consume statistics of every topic and group of a client."""

    def __init__(self, start_timers: bool = True) -> None:
        self.consume_ok_tps = StatsItemSet("CONSUME_OK_TPS", start_timers)
        self.consume_rt = StatsItemSet("CONSUME_RT", start_timers)
        self.consume_failed_tps = StatsItemSet("CONSUME_FAILED_TPS", start_timers)
        self.pull_tps = StatsItemSet("PULL_TPS", start_timers)
        self.pull_rt = StatsItemSet("PULL_RT", start_timers)
        self._close_lock = threading.Lock()

    def _sets(self) -> tuple[StatsItemSet, ...]:
        return (
            self.consume_ok_tps,
            self.consume_rt,
            self.consume_failed_tps,
            self.pull_tps,
            self.pull_rt,
        )

    def increase_pull_rt(self, group: str, topic: str, rt: int) -> None:
        self.pull_rt.add_value(_key(group, topic), rt, 1)

    def increase_pull_tps(self, group: str, topic: str, msgs: int) -> None:
        self.pull_tps.add_value(_key(group, topic), msgs, 1)

    def increase_consume_rt(self, group: str, topic: str, rt: int) -> None:
        self.consume_rt.add_value(_key(group, topic), rt, 1)

    def increase_consume_ok_tps(self, group: str, topic: str, msgs: int) -> None:
        self.consume_ok_tps.add_value(_key(group, topic), msgs, 1)

    def increase_consume_failed_tps(self, group: str, topic: str, msgs: int) -> None:
        self.consume_failed_tps.add_value(_key(group, topic), msgs, 1)

    def get_pull_rt(self, group: str, topic: str) -> StatsSnapshot:
        return self.pull_rt.stats_data_in_minute(_key(group, topic))

    def get_pull_tps(self, group: str, topic: str) -> StatsSnapshot:
        return self.pull_tps.stats_data_in_minute(_key(group, topic))

    def get_consume_rt(self, group: str, topic: str) -> StatsSnapshot:
        """Minute pull latency, or hourly consume latency when that is empty."""
        snapshot = self.pull_rt.stats_data_in_minute(_key(group, topic))
        if snapshot.sum == 0:
            return self.consume_rt.stats_data_in_hour(_key(group, topic))
        return snapshot

    def get_consume_ok_tps(self, group: str, topic: str) -> StatsSnapshot:
        return self.consume_ok_tps.stats_data_in_minute(_key(group, topic))

    def get_consume_failed_tps(self, group: str, topic: str) -> StatsSnapshot:
        return self.consume_failed_tps.stats_data_in_minute(_key(group, topic))

    def get_consume_status(self, group: str, topic: str) -> ConsumeStatus:
        """Collect the current figures of ``topic`` in ``group``."""
        status = ConsumeStatus()
        status.pull_tps = self.get_pull_rt(group, topic).tps
        status.pull_tps = self.get_pull_tps(group, topic).tps
        status.consume_rt = self.get_consume_rt(group, topic).avgpt
        status.consume_ok_tps = self.get_consume_ok_tps(group, topic).tps
        status.consume_failed_tps = self.get_consume_failed_tps(group, topic).tps
        status.consume_failed_msgs = self.consume_failed_tps.stats_data_in_hour(
            _key(group, topic)
        ).sum
        return status

    def shutdown(self) -> None:
        """Stop all timers; safe to call more than once."""
        with self._close_lock:
            for item_set in self._sets():
                item_set.close()