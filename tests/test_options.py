from datetime import datetime, timedelta

import pytest

from mqconsume.models import MessageModel
from mqconsume.options import (
    HttpResolver,
    PassthroughResolver,
    default_pull_consumer_options,
    default_push_consumer_options,
)
from mqconsume.strategy import allocate_by_averagely

UNIT = "unsh"
ADDR = "http://127.0.0.1:8080/nameserver/addr"
ADDR_QUERY = "http://127.0.0.1:8080/nameserver/addr?labels=abc"


def test_with_unit_name():
    opt = default_push_consumer_options()
    opt.with_unit_name(UNIT)
    assert opt.unit_name == UNIT


def test_with_unit_name_strips_spaces():
    opt = default_push_consumer_options()
    opt.with_unit_name("  unsh ")
    assert opt.unit_name == "unsh"


def test_with_name_server_domain():
    opt = default_push_consumer_options()
    opt.with_name_server_domain(ADDR)
    assert opt.resolver.domain == ADDR


@pytest.mark.parametrize(
    "addr, expected",
    [
        (ADDR, "http://127.0.0.1:8080/nameserver/addr-unsh?nofix=1"),
        (ADDR_QUERY, "http://127.0.0.1:8080/nameserver/addr-unsh?nofix=1&labels=abc"),
    ],
)
def test_domain_then_unit(addr, expected):
    opt = default_push_consumer_options()
    opt.with_name_server_domain(addr)
    opt.with_unit_name(UNIT)
    assert opt.resolver.domain == expected


@pytest.mark.parametrize(
    "addr, expected",
    [
        (ADDR, "http://127.0.0.1:8080/nameserver/addr-unsh?nofix=1"),
        (ADDR_QUERY, "http://127.0.0.1:8080/nameserver/addr-unsh?nofix=1&labels=abc"),
    ],
)
def test_unit_then_domain(addr, expected):
    opt = default_push_consumer_options()
    opt.with_unit_name(UNIT)
    opt.with_name_server_domain(addr)
    assert opt.resolver.domain == expected


def test_domain_with_unit_is_applied_once():
    resolver = HttpResolver("DEFAULT", ADDR)
    resolver.domain_with_unit(UNIT)
    resolver.domain_with_unit("other")
    assert resolver.domain == "http://127.0.0.1:8080/nameserver/addr-unsh?nofix=1"


def test_domain_with_empty_unit_keeps_domain():
    resolver = HttpResolver("DEFAULT", ADDR)
    resolver.domain_with_unit("")
    assert resolver.domain == ADDR


def test_with_name_server_uses_passthrough():
    opt = default_pull_consumer_options()
    opt.with_name_server(["127.0.0.1:9876", "127.0.0.2:9876"])
    assert isinstance(opt.resolver, PassthroughResolver)
    assert opt.resolver.resolve() == ["127.0.0.1:9876", "127.0.0.2:9876"]


def test_passthrough_accepts_single_address():
    assert PassthroughResolver("127.0.0.1:9876").resolve() == ["127.0.0.1:9876"]


def test_with_group_name_ignores_empty():
    opt = default_push_consumer_options()
    opt.with_group_name("")
    assert opt.group_name == "DEFAULT_CONSUMER"
    opt.with_group_name("testGroup")
    assert opt.group_name == "testGroup"


def test_add_interceptors_keeps_order():
    def first(*args):
        return None

    def second(*args):
        return None

    opt = default_push_consumer_options()
    opt.add_interceptors(first)
    opt.add_interceptors(second)
    assert opt.interceptors == [first, second]


def test_push_defaults():
    opt = default_push_consumer_options()
    assert opt.group_name == "DEFAULT_CONSUMER"
    assert opt.consumer_model is MessageModel.CLUSTERING
    assert opt.strategy is allocate_by_averagely
    assert opt.max_reconsume_times == -1
    assert opt.auto_commit is True
    assert opt.consume_timeout == 900.0
    assert opt.consume_goroutine_nums == 20
    assert opt.rebalance_lock_interval == 20.0
    assert opt.max_time_consume_continuously == 60.0
    assert isinstance(opt.resolver, HttpResolver)


def test_push_consume_timestamp_is_half_an_hour_ago():
    opt = default_push_consumer_options()
    parsed = datetime.strptime(opt.consume_timestamp, "%Y%m%d%H%M%S")
    delta = datetime.now() - parsed
    assert timedelta(minutes=29) < delta < timedelta(minutes=31)


def test_pull_defaults():
    opt = default_pull_consumer_options()
    assert opt.group_name == "DEFAULT_CONSUMER"
    assert opt.consumer_model is MessageModel.CLUSTERING
    assert opt.auto_commit is False
    assert opt.max_reconsume_times == 0
    assert opt.consume_timestamp == ""


def test_defaults_accept_overrides():
    opt = default_push_consumer_options(pull_batch_size=16, consume_orderly=True)
    assert opt.pull_batch_size == 16
    assert opt.consume_orderly is True


def test_defaults_reject_unknown_field():
    with pytest.raises(TypeError):
        default_pull_consumer_options(no_such_field=1)