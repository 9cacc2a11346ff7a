"""Consumer offset storage, kept either in a local file or on the brokers."""

from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Iterable, Mapping, Optional, Union

from mqconsume.models import MessageQueue

log = logging.getLogger(__name__)

REQ_QUERY_CONSUMER_OFFSET = 14
REQ_UPDATE_CONSUMER_OFFSET = 15
RES_SUCCESS = 0
RES_QUERY_NOT_FOUND = 22

_STORE_DIR_ENV = "rocketmq.client.localOffsetStoreDir"
_QUERY_TIMEOUT = 3.0
_UPDATE_TIMEOUT = 5.0


class ReadType(IntEnum):
    """Where an offset is read from."""

    MEMORY = 0
    STORE = 1
    MEMORY_THEN_STORE = 2


@dataclass
class RemotingCommand:
    """A request or response exchanged with a broker."""

    code: int = 0
    ext_fields: dict[str, str] = field(default_factory=dict)
    remark: str = ""
    body: Optional[bytes] = None


class BrokerError(Exception):
    """Raised when a broker cannot be reached or answers with a failure."""


class Namesrvs(ABC):
    """Name-server lookups needed to reach a broker."""

    @abstractmethod
    def find_broker_addr_by_name(self, broker_name: str) -> str:
        """Return the master address of a broker, or an empty string."""

    @abstractmethod
    def update_topic_route_info(self, topic: str) -> None:
        """Refresh the route information of a topic."""


class RemotingClient(ABC):
    """Transport used to send commands to brokers."""

    @abstractmethod
    def invoke_sync(self, addr: str, command: RemotingCommand, timeout: float) -> RemotingCommand:
        """Send a command and wait for the response."""

    @abstractmethod
    def invoke_oneway(self, addr: str, command: RemotingCommand, timeout: float) -> None:
        """Send a command without waiting for a response."""


def local_offset_store_dir() -> str:
    """Return the directory holding local offset files."""
    configured = os.environ.get(_STORE_DIR_ENV, "")
    if configured:
        return configured
    return os.path.join(os.environ.get("HOME", ""), ".rocketmq_client_go")


def encode_queue_key(mq: MessageQueue) -> str:
    """Encode a queue as the JSON text used as a key in offset files."""
    return json.dumps(
        {"topic": mq.topic, "brokerName": mq.broker_name, "queueId": mq.queue_id},
        separators=(",", ":"),
    )


def decode_queue_key(text: str) -> MessageQueue:
    """Decode a key written by :func:`encode_queue_key`; raise ValueError if malformed."""
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"queue key is not an object: {text!r}")
    queue_id = data.get("queueId", 0)
    if not isinstance(queue_id, int):
        raise ValueError(f"queueId is not an integer: {queue_id!r}")
    return MessageQueue(
        topic=str(data.get("topic", "")),
        broker_name=str(data.get("brokerName", "")),
        queue_id=queue_id,
    )


class OffsetStore(ABC):
    """Where a consumer keeps the offsets it has consumed up to."""

    @abstractmethod
    def persist(self, mqs: Iterable[MessageQueue]) -> None:
        """Write the offsets of the given queues to durable storage."""

    @abstractmethod
    def remove(self, mq: MessageQueue) -> None:
        """Stop tracking a queue."""

    @abstractmethod
    def read(self, mq: MessageQueue, read_type: ReadType) -> int:
        """Return the offset of a queue, -1 when it is unknown."""

    @abstractmethod
    def update(self, mq: MessageQueue, offset: int, increase_only: bool) -> None:
        """Set the in-memory offset of a queue."""

    @abstractmethod
    def get_mq_offset_map(self, topic: str) -> dict[MessageQueue, int]:
        """Return a copy of the offsets of every queue of a topic."""


class LocalFileOffsetStore(OffsetStore):
    """Offsets kept in memory and persisted to a JSON file on local disk."""

    def __init__(self, client_id: str, group: str, base_dir: Union[str, Path, None] = None) -> None:
        self.group = group
        base = local_offset_store_dir() if base_dir is None else base_dir
        self.path = Path(base, client_id, group, "offset.json")
        self._table: dict[MessageQueue, int] = {}
        self._table_lock = threading.Lock()
        self._file_lock = threading.Lock()
        self.load()

    def _read_file(self) -> Optional[bytes]:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as err:
            log.info("read from local store error, try to use bak file: %s", err)
        try:
            return Path(self.path, ".bak").read_bytes()
        except OSError as err:
            log.info("read from local store bak file error: %s", err)
            return None

    def load(self) -> None:
        """Merge the offsets found in the offset file into memory."""
        with self._file_lock:
            data = self._read_file()
            if data is None:
                return
            try:
                wrapper = json.loads(data)
                raw = wrapper.get("offsetTable") or {}
                loaded = {decode_queue_key(k): int(v) for k, v in raw.items()}
            except (ValueError, TypeError, AttributeError) as err:
                log.warning("unmarshal local offset error: local_path=%s error=%s", self.path, err)
                return
            with self._table_lock:
                self._table.update(loaded)

    def _from_memory(self, mq: MessageQueue) -> int:
        with self._table_lock:
            return self._table.get(mq, -1)

    def read(self, mq: MessageQueue, read_type: ReadType) -> int:
        if read_type in (ReadType.MEMORY, ReadType.MEMORY_THEN_STORE):
            offset = self._from_memory(mq)
            if offset >= 0 or (offset == -1 and read_type == ReadType.MEMORY):
                return offset
        elif read_type != ReadType.STORE:
            return -1
        self.load()
        return self._from_memory(mq)

    def update(self, mq: MessageQueue, offset: int, increase_only: bool) -> None:
        with self._file_lock:
            log.debug("update offset: mq=%s new_offset=%d", mq, offset)
            with self._table_lock:
                current = self._table.get(mq)
                if current is None or not increase_only or current < offset:
                    self._table[mq] = offset

    def persist(self, mqs: Iterable[MessageQueue]) -> None:
        if not list(mqs):
            return
        with self._file_lock:
            with self._table_lock:
                table = {encode_queue_key(mq): off for mq, off in self._table.items()}
            data = json.dumps({"offsetTable": table}, separators=(",", ":"))
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp = self.path.with_name(self.path.name + ".tmp")
                tmp.write_text(data, encoding="utf-8")
                os.replace(tmp, self.path)
            except OSError as err:
                log.error("persist offset to %s: %s", self.path, err)

    def remove(self, mq: MessageQueue) -> None:
        """Queues are never dropped from a local store."""

    def forget(self, mq: MessageQueue) -> None:
        """Drop a queue's offset from memory only, leaving the file untouched."""
        with self._table_lock:
            self._table.pop(mq, None)

    def get_mq_offset_map(self, topic: str) -> dict[MessageQueue, int]:
        with self._table_lock:
            return {mq: off for mq, off in self._table.items() if mq.topic == topic}


class RemoteBrokerOffsetStore(OffsetStore):
    """Offsets cached in memory and committed to the brokers."""

    def __init__(self, group: str, client: RemotingClient, namesrv: Namesrvs) -> None:
        self.group = group
        self.client = client
        self.namesrv = namesrv
        self._table: dict[MessageQueue, int] = {}
        self._lock = threading.RLock()

    def persist(self, mqs: Iterable[MessageQueue]) -> None:
        used = set(mqs)
        with self._lock:
            if not used:
                return
            for mq, offset in list(self._table.items()):
                if mq not in used:
                    del self._table[mq]
                    continue
                try:
                    self.update_consume_offset_to_broker(self.group, mq, offset)
                except Exception as err:
                    log.warning(
                        "update offset to broker error: group=%s mq=%s offset=%d error=%s",
                        self.group, mq, offset, err,
                    )
                else:
                    log.info(
                        "update offset to broker success: group=%s mq=%s offset=%d",
                        self.group, mq, offset,
                    )

    def remove(self, mq: MessageQueue) -> None:
        with self._lock:
            self._table.pop(mq, None)
        log.info("delete mq from offset table: group=%s mq=%s", self.group, mq)

    def read(self, mq: MessageQueue, read_type: ReadType) -> int:
        """Return the offset; raise when it has to be fetched and the broker fails."""
        if read_type in (ReadType.MEMORY, ReadType.MEMORY_THEN_STORE):
            with self._lock:
                if mq in self._table:
                    return self._table[mq]
            if read_type == ReadType.MEMORY:
                return -1
        elif read_type != ReadType.STORE:
            return -1
        try:
            offset = self.fetch_consume_offset_from_broker(self.group, mq)
        except Exception as err:
            log.error(
                "fetch offset of mq from broker error: group=%s mq=%s error=%s",
                self.group, mq, err,
            )
            raise
        log.info(
            "fetch offset of mq from broker success: group=%s mq=%s offset=%d",
            self.group, mq, offset,
        )
        self.update(mq, offset, True)
        return offset

    def update(self, mq: MessageQueue, offset: int, increase_only: bool) -> None:
        with self._lock:
            current = self._table.get(mq)
            if current is None or not increase_only or current < offset:
                self._table[mq] = offset

    def get_mq_offset_map(self, topic: str) -> dict[MessageQueue, int]:
        with self._lock:
            return {mq: off for mq, off in self._table.items() if mq.topic == topic}

    def _broker_addr(self, mq: MessageQueue) -> str:
        broker = self.namesrv.find_broker_addr_by_name(mq.broker_name)
        if not broker:
            self.namesrv.update_topic_route_info(mq.topic)
            broker = self.namesrv.find_broker_addr_by_name(mq.broker_name)
        if not broker:
            raise BrokerError(f"broker: {mq.broker_name} address not found")
        return broker

    def fetch_consume_offset_from_broker(self, group: str, mq: MessageQueue) -> int:
        """Ask the broker for the committed offset; -1 when it has none."""
        broker = self._broker_addr(mq)
        command = RemotingCommand(
            code=REQ_QUERY_CONSUMER_OFFSET,
            ext_fields={
                "consumerGroup": group,
                "topic": mq.topic,
                "queueId": str(mq.queue_id),
            },
        )
        response = self.client.invoke_sync(broker, command, _QUERY_TIMEOUT)
        if response.code == RES_QUERY_NOT_FOUND:
            return -1
        if response.code != RES_SUCCESS:
            raise BrokerError(
                f"broker response code: {response.code}, remarks: {response.remark}"
            )
        raw = response.ext_fields.get("offset", "")
        try:
            return int(raw, 10)
        except ValueError as err:
            raise BrokerError(f"invalid offset in broker response: {raw!r}") from err

    def update_consume_offset_to_broker(self, group: str, mq: MessageQueue, offset: int) -> None:
        """Send a committed offset to the broker without waiting for a reply."""
        broker = self._broker_addr(mq)
        command = RemotingCommand(
            code=REQ_UPDATE_CONSUMER_OFFSET,
            ext_fields={
                "consumerGroup": group,
                "topic": mq.topic,
                "queueId": str(mq.queue_id),
                "commitOffset": str(offset),
            },
        )
        self.client.invoke_oneway(broker, command, _UPDATE_TIMEOUT)