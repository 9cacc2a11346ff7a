import math
from datetime import datetime, timedelta

import pytest

from mqconsume.statistics import (
    CallSnapshot,
    ConsumeStatus,
    StatsItem,
    StatsItemSet,
    StatsManager,
    StatsSnapshot,
    compute_stats_data,
    next_hour_time,
    next_minute_time,
    next_month_time,
)

EXPECTED_SUMS = [0, 1, 2, 3, 4, 5, 6, 6]


@pytest.fixture
def manager():
    mgr = StatsManager(start_timers=False)
    mgr.shutdown()
    return mgr


def test_next_minute_time():
    result = next_minute_time()
    elapsed = (result - datetime.now()).total_seconds() / 60
    assert elapsed == pytest.approx(1.0, rel=0.01)


def test_next_hour_time():
    result = next_hour_time()
    elapsed = (result - datetime.now()).total_seconds() / 3600
    assert elapsed == pytest.approx(1.0, rel=0.01)


def test_next_month_time_is_about_a_month_ahead():
    delta = next_month_time() - datetime.now()
    assert timedelta(days=27, hours=23) < delta <= timedelta(days=31)


def test_increase_pull_rt_get_pull_rt(manager):
    for expected in EXPECTED_SUMS:
        manager.increase_pull_rt("rocketmq", "default", 1)
        manager.pull_rt.sampling_in_seconds()
        assert manager.get_pull_rt("rocketmq", "default").sum == expected


def test_increase_pull_tps_get_pull_tps(manager):
    for expected in EXPECTED_SUMS:
        manager.increase_pull_tps("rocketmq", "default", 1)
        manager.pull_tps.sampling_in_seconds()
        assert manager.get_pull_tps("rocketmq", "default").sum == expected


def test_increase_consume_ok_tps_get_consume_ok_tps(manager):
    for expected in EXPECTED_SUMS:
        manager.increase_consume_ok_tps("rocketmq", "default", 1)
        manager.consume_ok_tps.sampling_in_seconds()
        assert manager.get_consume_ok_tps("rocketmq", "default").sum == expected


def test_increase_consume_failed_tps_get_consume_failed_tps(manager):
    for expected in EXPECTED_SUMS:
        manager.increase_consume_failed_tps("rocketmq", "default", 1)
        manager.consume_failed_tps.sampling_in_seconds()
        assert manager.get_consume_failed_tps("rocketmq", "default").sum == expected


def test_get_consume_status(manager):
    group, topic = "rocketmq", "default"
    for expected in [0, 1, 2, 3, 4]:
        manager.increase_pull_rt(group, topic, 1)
        manager.increase_pull_tps(group, topic, 1)
        manager.increase_consume_rt(group, topic, 1)
        manager.increase_consume_ok_tps(group, topic, 1)
        manager.increase_consume_failed_tps(group, topic, 1)
        manager.pull_rt.sampling_in_seconds()
        manager.pull_tps.sampling_in_seconds()
        manager.consume_rt.sampling_in_minutes()
        manager.consume_ok_tps.sampling_in_seconds()
        manager.consume_failed_tps.sampling_in_minutes()
        status = manager.get_consume_status(group, topic)
        assert status.consume_failed_msgs == expected


def test_get_consume_rt_falls_back_to_hourly_consume_rt(manager):
    manager.increase_consume_rt("g", "t", 5)
    manager.consume_rt.sampling_in_minutes()
    manager.increase_consume_rt("g", "t", 7)
    manager.consume_rt.sampling_in_minutes()
    assert manager.get_consume_rt("g", "t").sum == 7


def test_get_consume_rt_prefers_pull_rt_when_nonzero(manager):
    manager.increase_pull_rt("g", "t", 3)
    manager.pull_rt.sampling_in_seconds()
    manager.increase_pull_rt("g", "t", 4)
    manager.pull_rt.sampling_in_seconds()
    assert manager.get_consume_rt("g", "t").sum == 4


def test_unknown_key_yields_empty_snapshot(manager):
    assert manager.get_pull_tps("none", "none") == StatsSnapshot()


def test_consume_status_of_unknown_topic_is_zero(manager):
    assert manager.get_consume_status("none", "none") == ConsumeStatus()


def test_compute_stats_data_values():
    snapshots = [
        CallSnapshot(timestamp=0, time=0, value=0),
        CallSnapshot(timestamp=500, time=2, value=4),
        CallSnapshot(timestamp=1000, time=5, value=10),
    ]
    result = compute_stats_data(snapshots)
    assert result.sum == 10
    assert result.tps == pytest.approx(10.0)
    assert result.avgpt == pytest.approx(2.0)


def test_compute_stats_data_empty():
    assert compute_stats_data([]) == StatsSnapshot(sum=0, tps=0.0, avgpt=0.0)


def test_compute_stats_data_same_timestamp_zero_sum_is_nan():
    snap = CallSnapshot(timestamp=1000, time=1, value=1)
    result = compute_stats_data([snap])
    assert result.sum == 0
    assert math.isnan(result.tps)
    assert result.avgpt == 0.0


def test_compute_stats_data_same_timestamp_positive_sum_is_inf():
    result = compute_stats_data(
        [
            CallSnapshot(timestamp=1000, time=1, value=1),
            CallSnapshot(timestamp=1000, time=3, value=5),
        ]
    )
    assert result.sum == 4
    assert math.isinf(result.tps) and result.tps > 0
    assert result.avgpt == pytest.approx(2.0)


def test_stats_item_add_accumulates():
    item = StatsItem("PULL_TPS", "t@g")
    item.add(3, 1)
    item.add(4, 2)
    assert item.value == 7
    assert item.times == 3


def test_stats_item_hour_window_keeps_seven():
    item = StatsItem("X", "k")
    for _ in range(10):
        item.add(1, 1)
        item.sampling_in_minutes()
    assert item.stats_data_in_hour().sum == 6


def test_stats_item_day_window_keeps_twenty_five():
    item = StatsItem("X", "k")
    for _ in range(30):
        item.add(1, 1)
        item.sampling_in_hour()
    assert item.stats_data_in_day().sum == 24


def test_stats_item_logging_does_not_alter_data(caplog):
    item = StatsItem("X", "k")
    item.add(2, 1)
    item.sampling_in_seconds()
    item.add(2, 1)
    item.sampling_in_seconds()
    with caplog.at_level("INFO"):
        item.log_minute()
        item.log_hour()
        item.log_day()
    assert "Stats In One Minute." in caplog.text
    assert "Stats In One Day." in caplog.text
    assert item.stats_data_in_minute().sum == 2


def test_item_set_get_stats_item_missing_raises():
    item_set = StatsItemSet("X", start_timers=False)
    with pytest.raises(KeyError):
        item_set.get_stats_item("missing")


def test_item_set_get_or_create_returns_same_item():
    item_set = StatsItemSet("X", start_timers=False)
    first = item_set.get_or_create_item("k")
    item_set.add_value("k", 5, 1)
    assert item_set.get_stats_item("k") is first
    assert first.value == 5


def test_item_set_day_data():
    item_set = StatsItemSet("X", start_timers=False)
    item_set.add_value("k", 1, 1)
    item_set.sampling_in_hour()
    item_set.add_value("k", 9, 1)
    item_set.sampling_in_hour()
    assert item_set.stats_data_in_day("k").sum == 9
    assert item_set.stats_data_in_day("other") == StatsSnapshot()


def test_item_set_close_with_timers():
    item_set = StatsItemSet("X", start_timers=True)
    assert item_set.closed is False
    item_set.close()
    item_set.close()
    assert item_set.closed is True


def test_manager_shutdown_closes_all_sets():
    mgr = StatsManager(start_timers=True)
    mgr.shutdown()
    mgr.shutdown()
    assert all(
        s.closed
        for s in (
            mgr.pull_rt,
            mgr.pull_tps,
            mgr.consume_rt,
            mgr.consume_ok_tps,
            mgr.consume_failed_tps,
        )
    )