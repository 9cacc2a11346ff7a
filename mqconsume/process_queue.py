"""Local cache of messages pulled from one queue and awaiting consumption."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sortedcontainers import SortedDict

from mqconsume.models import (
    PROPERTY_CONSUME_START_TIME,
    PROPERTY_MAX_OFFSET,
    MessageExt,
)

log = logging.getLogger(__name__)

REBALANCE_LOCK_MAX_TIME = 30.0
REBALANCE_INTERVAL = 20.0
PULL_MAX_IDLE_TIME = 120.0

_CHANNEL_SIZE = 32
_CLEAN_BATCH = 16
_POLL_INTERVAL = 0.05
_MIB = 1024 * 1024


def _millis(seconds: float) -> int:
    return int(seconds * 1000)


@dataclass
class ProcessQueueInfo:
    """A snapshot of a process queue for running-info reports."""

    commit_offset: int = 0
    cached_msg_min_offset: int = 0
    cached_msg_max_offset: int = 0
    cached_msg_count: int = 0
    cached_msg_size_in_mib: int = 0
    transaction_msg_min_offset: int = 0
    transaction_msg_max_offset: int = 0
    transaction_msg_count: int = 0
    locked: bool = False
    try_unlock_times: int = 0
    last_lock_timestamp: int = 0
    dropped: bool = False
    last_pull_timestamp: int = 0
    last_consume_timestamp: int = 0


class ProcessQueue:
    """Messages of one queue, ordered by queue offset, pending consumption."""

    _TAKE_TIMEOUT = 5.0

    def __init__(self, order: bool = False) -> None:
        self.order = order
        self._lock = threading.RLock()
        self._not_empty = threading.Condition(self._lock)
        self.consume_lock = threading.Lock()
        self.lock_consume = threading.Lock()
        self._msg_cache: SortedDict = SortedDict()
        self._consuming_orderly: SortedDict = SortedDict()
        self._cached_count = 0
        self._cached_size = 0
        self.try_unlock_times = 0
        self.queue_offset_max = 0
        self.msg_acc_cnt = 0
        self.max_offset_in_queue = -1
        self.consuming = False
        self._locked = False
        self._dropped = False
        self._closed = threading.Event()
        self._msg_ch: queue.Queue = queue.Queue(maxsize=_CHANNEL_SIZE)
        now = time.time()
        self._last_pull_time = now
        self._last_consume_time = now
        self._last_lock_time = now

    @property
    def locked(self) -> bool:
        return self._locked

    @locked.setter
    def locked(self, value: bool) -> None:
        self._locked = bool(value)

    @property
    def dropped(self) -> bool:
        return self._dropped

    @property
    def cached_msg_count(self) -> int:
        with self._lock:
            return self._cached_count

    @property
    def cached_msg_size(self) -> int:
        with self._lock:
            return self._cached_size

    @property
    def last_pull_time(self) -> float:
        return self._last_pull_time

    @property
    def last_consume_time(self) -> float:
        return self._last_consume_time

    @property
    def last_lock_time(self) -> float:
        return self._last_lock_time

    def put_messages(self, *messages: MessageExt) -> None:
        """Cache newly pulled messages, skipping offsets already held."""
        if not messages or self._dropped:
            return
        with self._not_empty:
            valid = 0
            for msg in messages:
                offset = msg.queue_offset
                if offset in self._msg_cache or offset in self._consuming_orderly:
                    continue
                self._msg_cache[offset] = msg
                valid += 1
                self.queue_offset_max = offset
                self._cached_size += len(msg.body)
            self._cached_count += valid
            if valid:
                self._not_empty.notify_all()

        if not self.order:
            batch = list(messages)
            while not self._closed.is_set():
                try:
                    self._msg_ch.put(batch, timeout=_POLL_INTERVAL)
                    break
                except queue.Full:
                    continue
            else:
                return

        if self.cached_msg_count > 0 and not self.consuming:
            self.consuming = True

        last = messages[-1]
        try:
            max_offset = int(last.get_property(PROPERTY_MAX_OFFSET), 10)
        except ValueError:
            return
        acc = max_offset - last.queue_offset
        if acc > 0:
            self.msg_acc_cnt = acc

    def drop(self) -> None:
        """Mark the queue dropped and wake up anyone waiting on it."""
        self._dropped = True
        self._closed.set()
        with self._not_empty:
            self._not_empty.notify_all()

    def update_last_consume_time(self) -> None:
        self._last_consume_time = time.time()

    def update_last_lock_time(self) -> None:
        self._last_lock_time = time.time()

    def update_last_pull_time(self) -> None:
        self._last_pull_time = time.time()

    def make_messages_to_consume_again(self, *messages: MessageExt) -> None:
        """Move messages taken for orderly consumption back into the cache."""
        with self._not_empty:
            for msg in messages:
                self._consuming_orderly.pop(msg.queue_offset, None)
                self._msg_cache[msg.queue_offset] = msg
            if messages:
                self._not_empty.notify_all()

    def remove_messages(self, *messages: MessageExt) -> int:
        """Drop consumed messages; return the offset to commit, -1 if none."""
        result = -1
        with self._lock:
            self.update_last_consume_time()
            if self._msg_cache:
                result = self.queue_offset_max + 1
                removed = 0
                for msg in messages:
                    if self._msg_cache.pop(msg.queue_offset, None) is None:
                        continue
                    removed += 1
                    self._cached_size -= len(msg.body)
                self._cached_count -= removed
            if self._msg_cache:
                result = self._msg_cache.keys()[0]
        return result

    def is_lock_expired(self) -> bool:
        return time.time() - self._last_lock_time > REBALANCE_LOCK_MAX_TIME

    def is_pull_expired(self) -> bool:
        return time.time() - self._last_pull_time > PULL_MAX_IDLE_TIME

    def clean_expired_messages(
        self,
        consume_orderly: bool,
        consume_timeout: float,
        send_back: Callable[[MessageExt, int], bool],
    ) -> None:
        """Send back messages whose consumption started over ``consume_timeout`` seconds ago."""
        if consume_orderly:
            return
        with self._lock:
            loop = min(_CLEAN_BATCH, len(self._msg_cache))
        timeout_ms = _millis(consume_timeout)
        for _ in range(loop):
            with self._lock:
                if not self._msg_cache:
                    return
                msg = self._msg_cache.peekitem(0)[1]
            start_time = msg.get_property(PROPERTY_CONSUME_START_TIME)
            if not start_time:
                continue
            try:
                started = int(start_time, 10)
            except ValueError as err:
                log.warning("parse message start consume time error: time=%s error=%s", start_time, err)
                continue
            if _millis(time.time()) - started <= timeout_ms:
                return
            log.info(
                "send expire msg back: topic=%s msgId=%s startTime=%s storeHost=%s queueId=%d queueOffset=%d",
                msg.topic, msg.msg_id, start_time, msg.store_host, msg.queue.queue_id, msg.queue_offset,
            )
            if not send_back(msg, 3 + msg.reconsume_times):
                log.error("send message back to broker error when clean expired messages")
                continue
            self.remove_messages(msg)

    def max_span(self) -> int:
        """Distance between the highest and lowest cached offsets."""
        with self._lock:
            if not self._msg_cache:
                return 0
            keys = self._msg_cache.keys()
            return keys[-1] - keys[0]

    def get_messages(self, timeout: Optional[float] = None) -> Optional[list]:
        """Return the next pulled batch; None when dropped or on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._closed.is_set():
            wait = _POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                wait = min(wait, remaining)
            try:
                return self._msg_ch.get(timeout=wait)
            except queue.Empty:
                continue
        return None

    def take_messages(self, number: int) -> list:
        """Move up to ``number`` lowest-offset messages into the orderly set."""
        with self._not_empty:
            ready = self._not_empty.wait_for(
                lambda: bool(self._msg_cache) or self._dropped, timeout=self._TAKE_TIMEOUT
            )
            if not ready or not self._msg_cache:
                return []
            result = []
            while len(result) < number and self._msg_cache:
                offset, msg = self._msg_cache.popitem(0)
                self._consuming_orderly[offset] = msg
                result.append(msg)
            return result

    @staticmethod
    def _first(table: SortedDict) -> int:
        return table.keys()[0] if table else -1

    @staticmethod
    def _last(table: SortedDict) -> int:
        return table.keys()[-1] if table else -1

    def min_offset(self) -> int:
        with self._lock:
            return self._first(self._msg_cache)

    def max_offset(self) -> int:
        with self._lock:
            return self._last(self._msg_cache)

    def min_orderly_offset(self) -> int:
        with self._lock:
            return self._first(self._consuming_orderly)

    def max_orderly_offset(self) -> int:
        with self._lock:
            return self._last(self._consuming_orderly)

    def clear(self) -> None:
        """Forget all cached messages."""
        with self._lock:
            self._msg_cache.clear()
            self._cached_count = 0
            self._cached_size = 0
            self.queue_offset_max = 0
            self.max_offset_in_queue = -1

    def commit(self) -> int:
        """Acknowledge the orderly set; return the offset after its highest."""
        with self._lock:
            offset = self._last(self._consuming_orderly) if self._consuming_orderly else 0
            self._cached_count -= len(self._consuming_orderly)
            self._cached_size -= sum(len(m.body) for m in self._consuming_orderly.values())
            self._consuming_orderly.clear()
            return offset + 1

    def current_info(self) -> ProcessQueueInfo:
        """Describe the queue's current state."""
        with self._lock:
            info = ProcessQueueInfo(
                locked=self._locked,
                try_unlock_times=self.try_unlock_times,
                last_lock_timestamp=_millis(self._last_lock_time),
                dropped=self._dropped,
                last_pull_timestamp=_millis(self._last_pull_time),
                last_consume_timestamp=_millis(self._last_consume_time),
            )
            if self._msg_cache:
                info.cached_msg_min_offset = self._first(self._msg_cache)
                info.cached_msg_max_offset = self._last(self._msg_cache)
                info.cached_msg_count = len(self._msg_cache)
                info.cached_msg_size_in_mib = self._cached_size // _MIB
            if self._consuming_orderly:
                info.transaction_msg_min_offset = self._first(self._consuming_orderly)
                info.transaction_msg_max_offset = self._last(self._consuming_orderly)
                info.transaction_msg_count = len(self._consuming_orderly)
            return info