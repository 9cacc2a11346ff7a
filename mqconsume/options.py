"""Consumer configuration and name-server resolvers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Union

from mqconsume.models import ConsumeFromWhere, MessageModel
from mqconsume.strategy import AllocateStrategy, allocate_by_averagely

DEFAULT_CONSUMER_GROUP = "DEFAULT_CONSUMER"
DEFAULT_NAMESRV_DOMAIN = "http://localhost:8080/rocketmq/nsaddr"
_NAMESRV_DOMAIN_ENV = "NAMESRV_DOMAIN"
_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
_NOFIX = "?nofix=1"


def _default_domain() -> str:
    return os.environ.get(_NAMESRV_DOMAIN_ENV, "") or DEFAULT_NAMESRV_DOMAIN


class HttpResolver:
    """Resolves name-server addresses from an HTTP endpoint."""

    def __init__(self, instance_name: str, domain: Optional[str] = None) -> None:
        self.instance_name = instance_name
        self.domain = domain if domain else _default_domain()

    def domain_with_unit(self, unit_name: str) -> None:
        """Rewrite the endpoint so that it addresses the given unit."""
        if not unit_name or _NOFIX in self.domain:
            return
        if "?" in self.domain:
            base, query = self.domain.split("?", 1)
            self.domain = f"{base}-{unit_name}{_NOFIX}&{query}"
        else:
            self.domain = f"{self.domain}-{unit_name}{_NOFIX}"

    def __repr__(self) -> str:
        return f"HttpResolver(instance_name={self.instance_name!r}, domain={self.domain!r})"


class PassthroughResolver:
    """Hands back a fixed list of name-server addresses."""

    def __init__(self, addrs: Union[str, Iterable[str]]) -> None:
        self.addrs = [addrs] if isinstance(addrs, str) else list(addrs)

    def resolve(self) -> list[str]:
        """Return a copy of the configured addresses."""
        return list(self.addrs)

    def __repr__(self) -> str:
        return f"PassthroughResolver(addrs={self.addrs!r})"


Resolver = Union[HttpResolver, PassthroughResolver]


@dataclass
class ConsumerOptions:
    """Settings of a push or pull consumer; durations are in seconds."""

    group_name: str = ""
    instance_name: str = "DEFAULT"
    namespace: str = ""
    unit_name: str = ""
    vip_channel_enabled: bool = False
    retry_times: int = 0
    credentials: Any = None

    consume_timestamp: str = ""
    consumer_pull_timeout: float = 0.0
    consume_concurrently_max_span: int = 0
    pull_threshold_for_queue: int = 0
    pull_threshold_size_for_queue: int = 0
    pull_threshold_for_topic: int = 0
    pull_threshold_size_for_topic: int = 0
    pull_interval: float = 0.0
    consume_message_batch_max_size: int = 0
    pull_batch_size: int = 0
    post_subscription_when_pull: bool = False
    max_reconsume_times: int = 0
    suspend_current_queue_time: float = 0.0
    consume_timeout: float = 0.0

    consumer_model: MessageModel = MessageModel.BROADCASTING
    strategy: Optional[AllocateStrategy] = None
    consume_orderly: bool = False
    from_where: ConsumeFromWhere = ConsumeFromWhere.LAST_OFFSET

    interceptors: list = field(default_factory=list)
    max_time_consume_continuously: float = 0.0
    auto_commit: bool = False
    rebalance_lock_interval: float = 0.0

    resolver: Optional[Resolver] = None
    consume_goroutine_nums: int = 0
    filter_message_hooks: list = field(default_factory=list)
    limiter: Optional[Callable[[str], None]] = None
    trace_dispatcher: Any = None

    def with_group_name(self, group: str) -> "ConsumerOptions":
        """Set the group name; an empty name leaves it unchanged."""
        if group:
            self.group_name = group
        return self

    def with_unit_name(self, unit_name: str) -> "ConsumerOptions":
        """Set the unit name and point an HTTP resolver at that unit."""
        self.unit_name = unit_name.strip()
        if isinstance(self.resolver, HttpResolver):
            self.resolver.domain_with_unit(self.unit_name)
        return self

    def with_name_server(self, name_servers: Union[str, Iterable[str]]) -> "ConsumerOptions":
        """Use a fixed list of name-server addresses."""
        self.resolver = PassthroughResolver(name_servers)
        return self

    def with_name_server_domain(self, url: str) -> "ConsumerOptions":
        """Fetch name-server addresses from the given HTTP endpoint."""
        resolver = HttpResolver("DEFAULT", url)
        if self.unit_name:
            resolver.domain_with_unit(self.unit_name)
        self.resolver = resolver
        return self

    def add_interceptors(self, *interceptors: Callable) -> "ConsumerOptions":
        """Append interceptors; the first one added is the outermost."""
        self.interceptors.extend(interceptors)
        return self


def default_push_consumer_options(**kwargs: Any) -> ConsumerOptions:
    """Return push-consumer defaults, with any given fields overridden."""
    opts = ConsumerOptions(
        group_name=DEFAULT_CONSUMER_GROUP,
        strategy=allocate_by_averagely,
        max_time_consume_continuously=60.0,
        rebalance_lock_interval=20.0,
        max_reconsume_times=-1,
        consumer_model=MessageModel.CLUSTERING,
        auto_commit=True,
        resolver=HttpResolver("DEFAULT"),
        consume_timestamp=(datetime.now() - timedelta(minutes=30)).strftime(_TIMESTAMP_FORMAT),
        consume_timeout=15 * 60.0,
        consume_goroutine_nums=20,
    )
    return replace(opts, **kwargs) if kwargs else opts


def default_pull_consumer_options(**kwargs: Any) -> ConsumerOptions:
    """Return pull-consumer defaults, with any given fields overridden."""
    opts = ConsumerOptions(
        group_name=DEFAULT_CONSUMER_GROUP,
        resolver=HttpResolver("DEFAULT"),
        consumer_model=MessageModel.CLUSTERING,
        strategy=allocate_by_averagely,
    )
    return replace(opts, **kwargs) if kwargs else opts