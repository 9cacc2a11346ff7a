"""Strategies for allocating message queues among the consumers of a group."""

from __future__ import annotations

import bisect
import logging
import zlib
from typing import Callable, Optional, Sequence

from mqconsume.models import MessageQueue

log = logging.getLogger(__name__)

AllocateStrategy = Callable[
    [str, str, Sequence[MessageQueue], Sequence[str]], Optional[list]
]


class ConsistentHashRing:
    """A CRC32 consistent hash ring with a fixed number of replicas per node."""

    def __init__(self, replicas: int = 20) -> None:
        self.replicas = replicas
        self._circle: dict[int, str] = {}
        self._sorted: list[int] = []

    @staticmethod
    def _hash(key: str) -> int:
        return zlib.crc32(key.encode("utf-8")) & 0xFFFFFFFF

    def add(self, node: str) -> None:
        """Place a node on the ring."""
        for i in range(self.replicas):
            self._circle[self._hash(f"{i}{node}")] = node
        self._sorted = sorted(self._circle)

    def get(self, key: str) -> str:
        """Return the node owning ``key``; raise LookupError on an empty ring."""
        if not self._circle:
            raise LookupError("empty circle")
        idx = bisect.bisect_right(self._sorted, self._hash(key))
        if idx >= len(self._sorted):
            idx = 0
        return self._circle[self._sorted[idx]]


def _index_of(consumer_group: str, current_cid: str, cid_all: Sequence[str]) -> Optional[int]:
    try:
        return list(cid_all).index(current_cid)
    except ValueError:
        log.warning(
            "[BUG] ConsumerId not in cidAll: group=%s consumerId=%s cidAll=%s",
            consumer_group,
            current_cid,
            list(cid_all),
        )
        return None


def _valid(current_cid: str, mq_all, cid_all) -> bool:
    return bool(current_cid) and bool(mq_all) and bool(cid_all)


def allocate_by_averagely(consumer_group, current_cid, mq_all, cid_all):
    """Give each consumer a contiguous, near-equal block of queues."""
    if not _valid(current_cid, mq_all, cid_all):
        return None
    index = _index_of(consumer_group, current_cid, cid_all)
    if index is None:
        return None

    mq_size = len(mq_all)
    cid_size = len(cid_all)
    mod = mq_size % cid_size
    if mq_size <= cid_size:
        average = 1
    elif mod > 0 and index < mod:
        average = mq_size // cid_size + 1
    else:
        average = mq_size // cid_size

    if mod > 0 and index < mod:
        start = index * average
    else:
        start = index * average + mod

    count = min(average, mq_size - start)
    return [mq_all[(start + i) % mq_size] for i in range(count)]


def allocate_by_averagely_circle(consumer_group, current_cid, mq_all, cid_all):
    """Deal queues to consumers round-robin."""
    if not _valid(current_cid, mq_all, cid_all):
        return None
    index = _index_of(consumer_group, current_cid, cid_all)
    if index is None:
        return None
    return [mq for i, mq in enumerate(mq_all) if i >= index and i % len(cid_all) == index]


def allocate_by_machine_nearby(consumer_group, current_cid, mq_all, cid_all):
    """Nearby-machine allocation; currently the same as averaged allocation."""
    return allocate_by_averagely(consumer_group, current_cid, mq_all, cid_all)


def allocate_by_config(queues):
    """Return a strategy that always yields the configured queues."""

    def strategy(consumer_group, current_cid, mq_all, cid_all):
        return queues

    return strategy


def allocate_by_machine_room(consumer_idcs):
    """Return a strategy that shares queues of brokers in the given rooms."""
    idcs = list(consumer_idcs)

    def strategy(consumer_group, current_cid, mq_all, cid_all):
        if not _valid(current_cid, mq_all, cid_all):
            return None
        index = _index_of(consumer_group, current_cid, cid_all)
        if index is None:
            return None

        pre_mq_all = []
        for mq in mq_all:
            parts = mq.broker_name.split("@")
            if len(parts) == 2:
                pre_mq_all.extend(mq for idc in idcs if idc == parts[0])

        mod, rem = divmod(len(pre_mq_all), len(cid_all))
        start = mod * index
        result = [mq_all[i] for i in range(start, start + mod)]
        if rem > index:
            result.append(pre_mq_all[index + mod * len(cid_all)])
        return result

    return strategy


def allocate_by_consistent_hash(virtual_node_cnt):
    """Return a strategy that maps queues to consumers on a hash ring."""

    def strategy(consumer_group, current_cid, mq_all, cid_all):
        if not _valid(current_cid, mq_all, cid_all):
            return None
        if _index_of(consumer_group, current_cid, cid_all) is None:
            return None

        ring = ConsistentHashRing(virtual_node_cnt)
        for cid in cid_all:
            ring.add(cid)
        return [mq for mq in mq_all if ring.get(str(mq)) == current_cid]

    return strategy