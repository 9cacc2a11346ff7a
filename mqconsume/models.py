"""Core value types shared by the consumer components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum

PROPERTY_MAX_OFFSET = "MAX_OFFSET"
PROPERTY_CONSUME_START_TIME = "CONSUME_START_TIME"
PROPERTY_RETRY_TOPIC = "RETRY_TOPIC"


@dataclass(frozen=True)
class MessageQueue:
    """A single queue of a topic hosted on one broker."""

    topic: str = ""
    broker_name: str = ""
    queue_id: int = 0

    def __str__(self) -> str:
        return (
            f"MessageQueue [topic={self.topic}, brokerName={self.broker_name}, "
            f"queueId={self.queue_id}]"
        )


@dataclass
class MessageExt:
    """A message as delivered by a broker, with its storage metadata."""

    topic: str = ""
    body: bytes = b""
    queue_offset: int = 0
    msg_id: str = ""
    store_host: str = ""
    queue: MessageQueue = field(default_factory=MessageQueue)
    reconsume_times: int = 0
    commit_log_offset: int = 0
    properties: dict[str, str] = field(default_factory=dict)

    def get_property(self, name: str) -> str:
        """Return the named property, or an empty string when it is unset."""
        return self.properties.get(name, "")

    def with_property(self, name: str, value: str) -> None:
        """Set the named property."""
        self.properties[name] = value


class MessageModel(IntEnum):
    """How messages of a topic are spread across a consumer group."""

    BROADCASTING = 0
    CLUSTERING = 1

    def __str__(self) -> str:
        return "BroadCasting" if self is MessageModel.BROADCASTING else "Clustering"


class ConsumeFromWhere(IntEnum):
    """Where a consumer without a stored offset starts reading."""

    LAST_OFFSET = 0
    FIRST_OFFSET = 1
    TIMESTAMP = 2

    def describe(self) -> str:
        """Return the wire name of this starting point."""
        return _WHERE_NAMES.get(self, "UNKNOWN")


_WHERE_NAMES = {
    ConsumeFromWhere.LAST_OFFSET: "CONSUME_FROM_LAST_OFFSET",
    ConsumeFromWhere.FIRST_OFFSET: "CONSUME_FROM_FIRST_OFFSET",
    ConsumeFromWhere.TIMESTAMP: "CONSUME_FROM_TIMESTAMP",
}


class ConsumeResult(IntEnum):
    """Outcome reported by a message handler."""

    CONSUME_SUCCESS = 0
    CONSUME_RETRY_LATER = 1
    COMMIT = 2
    ROLLBACK = 3
    SUSPEND_CURRENT_QUEUE_A_MOMENT = 4


class _Unused(Enum):
    pass