# mqconsume

Consumer-side building blocks for a message queue client. It has no network
transport and no consumer loop of its own. You supply the transport, and the
package gives you the state and the rules a push or pull consumer works with.

## Modules

- `mqconsume.models` holds the shared value types. `MessageQueue` is a frozen
  dataclass. `MessageExt` carries properties, read with `get_property` and set
  with `with_property`. The enums are `MessageModel`, `ConsumeFromWhere` (its
  `describe()` gives the wire name) and `ConsumeResult`.
- `mqconsume.strategy` decides which queues each consumer in a group owns:
  - `allocate_by_averagely`
  - `allocate_by_averagely_circle`
  - `allocate_by_machine_nearby`, which currently does the same as the average strategy
  - `allocate_by_config(queues)`
  - `allocate_by_machine_room(consumer_idcs)`
  - `allocate_by_consistent_hash(virtual_node_cnt)`, built on `ConsistentHashRing`, a CRC32 ring

  Every strategy returns `None` in two cases: the consumer id, the queue list
  or the id list is empty, or the consumer id is not in the list.
- `mqconsume.offset_store` keeps consumer offsets. There are two stores:
  - `LocalFileOffsetStore` keeps offsets in memory and persists them to
    `<base_dir>/<client_id>/<group>/offset.json`.
  - `RemoteBrokerOffsetStore` caches offsets in memory. It commits and
    fetches them through two abstract classes that you implement,
    `Namesrvs` and `RemotingClient`. Broker failures raise `BrokerError`.

  Reads take a `ReadType`: `MEMORY`, `STORE` or `MEMORY_THEN_STORE`. A read
  returns -1 when the offset is unknown.
- `mqconsume.process_queue` holds `ProcessQueue`, a thread-safe cache of
  pulled messages sorted by queue offset. It supports the following:
  - batch hand-off (`get_messages`)
  - orderly taking and committing (`take_messages`, `commit`, `make_messages_to_consume_again`)
  - removal with commit-offset calculation (`remove_messages`)
  - expiry clean-up (`clean_expired_messages`)
  - snapshots (`current_info` returns a `ProcessQueueInfo`)
- `mqconsume.statistics` holds `StatsManager`, which keeps sampled pull and
  consume rates and response times per `topic@group`. Its building blocks are
  `StatsItemSet` and `StatsItem`, and `compute_stats_data` does the arithmetic.
- `mqconsume.options` holds `ConsumerOptions`, the defaults from
  `default_push_consumer_options()` and `default_pull_consumer_options()`,
  and two name-server resolvers, `HttpResolver` and `PassthroughResolver`.

## Install

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Allocating queues

```python
from mqconsume.models import MessageQueue
from mqconsume.strategy import allocate_by_averagely

queues = [MessageQueue(topic="orders", broker_name="broker-a", queue_id=i) for i in range(6)]
mine = allocate_by_averagely(
    "order-group", "10.0.0.1@default", queues, ["10.0.0.1@default", "10.0.0.2@default"]
)
# -> queues 0, 1 and 2
```

## Tracking offsets locally

```python
from mqconsume.models import MessageQueue
from mqconsume.offset_store import LocalFileOffsetStore, ReadType

store = LocalFileOffsetStore("10.0.0.1@default", "order-group", base_dir="/tmp/offsets")
mq = MessageQueue(topic="orders", broker_name="broker-a", queue_id=1)
store.update(mq, 42, increase_only=True)
store.persist([mq])
assert store.read(mq, ReadType.STORE) == 42
```

When `base_dir` is not given, `local_offset_store_dir()` picks the directory.
If the `rocketmq.client.localOffsetStoreDir` environment variable is set, it
uses that. Otherwise it uses `.rocketmq_client_go` under `$HOME`.

## Statistics

```python
from mqconsume.statistics import StatsManager

stats = StatsManager(start_timers=False)
stats.increase_pull_tps("order-group", "orders", 10)
stats.pull_tps.sampling_in_seconds()
status = stats.get_consume_status("order-group", "orders")
stats.shutdown()
```

With `start_timers=True`, which is the default, every `StatsItemSet` starts
daemon threads. These threads take samples and log summaries until
`shutdown()` is called.

## Options

```python
from mqconsume.options import default_push_consumer_options

opts = default_push_consumer_options()
opts.with_group_name("order-group")
opts.with_name_server(["127.0.0.1:9876"])
```

`with_unit_name` and `with_name_server_domain` work together in either
order. With the domain `http://127.0.0.1:8080/nameserver/addr` and the unit
`unsh`, the resolver's domain becomes
`http://127.0.0.1:8080/nameserver/addr-unsh?nofix=1`.

## What this package does not do

There is no push or pull consumer client here. Nothing connects to brokers,
runs a pull loop or a rebalance loop, or invokes message handlers. Remote
offset storage works only through the `Namesrvs` and `RemotingClient`
implementations you supply. `HttpResolver` only holds and rewrites its
endpoint. It does not fetch addresses from it.