import threading
import time

import pytest

from contributoor.topic_manager import (
    TopicConfig,
    TopicManager,
    create_attestation_subnet_condition,
)


def _true():
    return True


def _false():
    return False


def _fails():
    raise RuntimeError("test error")


@pytest.mark.parametrize(
    "topic, condition, is_opt_in, expected",
    [
        ("block", None, False, True),
        ("single_attestation", None, True, False),
        ("single_attestation", _true, True, True),
        ("single_attestation", _false, False, False),
        ("single_attestation", _fails, False, False),
    ],
)
def test_should_subscribe(topic, condition, is_opt_in, expected):
    config = TopicConfig(
        all_topics=["block", "head", topic],
        opt_in_topics=[topic] if is_opt_in else [],
    )
    tm = TopicManager(config)
    if condition is not None:
        tm.register_condition(topic, condition)
    assert tm.should_subscribe(topic) is expected


def _true_but_fails():
    raise RuntimeError("test error")


@pytest.mark.parametrize(
    "all_topics, conditions, opt_in, expected",
    [
        (
            ["block", "head", "single_attestation"],
            {},
            False,
            ["block", "head", "single_attestation"],
        ),
        (
            ["block", "head", "single_attestation"],
            {"single_attestation": _false},
            False,
            ["block", "head"],
        ),
        (
            ["block", "head", "single_attestation", "blob_sidecar"],
            {"single_attestation": _false, "head": _false},
            False,
            ["block", "blob_sidecar"],
        ),
        (
            ["block", "head", "single_attestation"],
            {"head": _true_but_fails},
            False,
            ["block", "single_attestation"],
        ),
        (
            ["block", "head", "single_attestation"],
            {},
            True,
            ["block", "head"],
        ),
    ],
)
def test_get_enabled_topics(all_topics, conditions, opt_in, expected):
    config = TopicConfig(
        all_topics=all_topics,
        opt_in_topics=["single_attestation"] if opt_in else [],
    )
    tm = TopicManager(config)
    for topic, condition in conditions.items():
        tm.register_condition(topic, condition)
    assert tm.get_enabled_topics() == expected


def test_excluded_topic_is_not_enabled():
    tm = TopicManager(TopicConfig(all_topics=["block", "head"]))
    tm.exclude_topic("head")
    assert tm.is_excluded("head") is True
    assert tm.is_excluded("block") is False
    assert tm.get_enabled_topics() == ["block"]


@pytest.mark.parametrize(
    "subnet_count, max_subnets, expected",
    [(1, 2, True), (2, 2, True), (3, 2, False), (0, 0, True)],
)
def test_create_attestation_subnet_condition(subnet_count, max_subnets, expected):
    subnets = list(range(subnet_count))
    condition = create_attestation_subnet_condition(len(subnets), max_subnets)
    assert condition() is expected


@pytest.mark.parametrize(
    "advertised, seen, high_water_mark, expect_mismatch",
    [
        ([], [1, 2, 3], 5, False),
        ([1, 2, 3], [1, 2, 3], 5, False),
        ([1, 2], [1, 2, 3, 4, 5], 5, False),
        ([1, 2], [1, 2, 3, 4, 5, 6, 7], 5, False),
        ([1, 2], [1, 2, 3, 4, 5, 6, 7, 8], 5, True),
        ([1, 2], [1, 2, 3, 4, 5, 6], 5, False),
        ([1, 2], [1, 2, 3], 0, True),
        ([1, 2], [1, 2, 3], 1, False),
        ([1, 2], [1, 2, 3, 4], 1, True),
    ],
)
def test_high_water_mark_logic(advertised, seen, high_water_mark, expect_mismatch):
    config = TopicConfig(
        all_topics=["block"],
        opt_in_topics=[],
        attestation_enabled=True,
        attestation_max_subnets=0,
        mismatch_detection_window=32,
        mismatch_threshold=1,
        mismatch_cooldown=300.0,
        subnet_high_water_mark=high_water_mark,
    )
    tm = TopicManager(config)
    tm.set_advertised_subnets(advertised)
    for slot, subnet in enumerate(seen):
        tm.record_attestation(subnet, slot)
    assert tm.needs_reconnection().is_set() is expect_mismatch


def test_high_water_mark_with_cooldown():
    config = TopicConfig(
        all_topics=["block"],
        attestation_enabled=True,
        mismatch_detection_window=10,
        mismatch_threshold=1,
        mismatch_cooldown=0.1,
        subnet_high_water_mark=2,
    )
    tm = TopicManager(config)
    tm.set_advertised_subnets([1, 2])

    for subnet in (1, 2, 3, 4, 5):
        tm.record_attestation(subnet, 1)
    assert tm.needs_reconnection().wait(0.1) is True

    tm.reset_after_reconnection()
    tm.set_advertised_subnets([1, 2])
    for subnet in (1, 2, 3, 4, 5):
        tm.record_attestation(subnet, 20)
    assert tm.needs_reconnection().is_set() is False

    time.sleep(0.15)

    for subnet in (1, 2, 3, 4, 5):
        tm.record_attestation(subnet, 35)
    assert tm.needs_reconnection().wait(0.1) is True


def test_high_water_mark_with_detection_window_reset():
    config = TopicConfig(
        all_topics=["block"],
        attestation_enabled=True,
        mismatch_detection_window=5,
        mismatch_threshold=1,
        mismatch_cooldown=300.0,
        subnet_high_water_mark=3,
    )
    tm = TopicManager(config)
    tm.set_advertised_subnets([1])

    for slot in range(5):
        tm.record_attestation(1, slot)
        tm.record_attestation(2, slot)

    for subnet in (1, 2, 3, 4):
        tm.record_attestation(subnet, 10)

    assert tm.needs_reconnection().is_set() is False


def test_high_water_mark_with_changing_advertised_subnets():
    config = TopicConfig(
        all_topics=["block"],
        attestation_enabled=True,
        mismatch_detection_window=32,
        mismatch_threshold=1,
        mismatch_cooldown=300.0,
        subnet_high_water_mark=2,
    )
    tm = TopicManager(config)

    tm.set_advertised_subnets([1, 2])
    for subnet in (1, 2, 3, 4):
        tm.record_attestation(subnet, 1)

    tm.set_advertised_subnets([3, 4])
    for subnet in (1, 2, 3, 4):
        tm.record_attestation(subnet, 2)

    assert tm.needs_reconnection().is_set() is False

    tm.record_attestation(5, 3)
    assert tm.needs_reconnection().wait(0.1) is True


def test_random_subnet_selection():
    tm = TopicManager(TopicConfig(attestation_enabled=True, attestation_max_subnets=64))

    advertised = [10, 20, 30, 40]
    tm.set_advertised_subnets(advertised)
    active = [s for s in advertised if tm.is_active_subnet(s)]
    assert len(active) == 1
    assert active[0] in advertised

    tm.set_advertised_subnets([])
    assert not any(tm.is_active_subnet(i) for i in range(64))

    tm.set_advertised_subnets([42])
    assert tm.is_active_subnet(42) is True
    assert tm.is_active_subnet(41) is False
    assert tm.is_active_subnet(43) is False


def test_too_many_subnets_disables_selection():
    tm = TopicManager(TopicConfig(attestation_enabled=True, attestation_max_subnets=2))

    tm.set_advertised_subnets([10, 20])
    assert sum(tm.is_active_subnet(i) for i in range(64)) == 1

    tm.set_advertised_subnets(list(range(64)))
    assert not any(tm.is_active_subnet(i) for i in range(64))

    tm.set_advertised_subnets([30])
    assert tm.is_active_subnet(30) is True


def test_mismatch_detection_excludes_not_selected_subnets():
    config = TopicConfig(
        attestation_enabled=True,
        attestation_max_subnets=2,
        mismatch_detection_window=10,
        mismatch_threshold=1,
        mismatch_cooldown=0.1,
        subnet_high_water_mark=2,
    )
    tm = TopicManager(config)
    advertised = [1, 2, 3, 4]
    tm.set_advertised_subnets(advertised)

    for subnet in advertised:
        tm.record_attestation(subnet, 1)
    tm.record_attestation(10, 1)
    tm.record_attestation(11, 1)
    assert tm.needs_reconnection().is_set() is False

    tm.record_attestation(12, 1)
    assert tm.needs_reconnection().wait(0.1) is True


def test_disabled_mismatch_detection_never_signals():
    config = TopicConfig(attestation_enabled=False, subnet_high_water_mark=0)
    tm = TopicManager(config)
    tm.set_advertised_subnets([1])
    for subnet in range(2, 10):
        tm.record_attestation(subnet, 1)
    assert tm.needs_reconnection().is_set() is False


def test_reset_after_reconnection_gives_fresh_event():
    config = TopicConfig(attestation_enabled=True, subnet_high_water_mark=0)
    tm = TopicManager(config)
    tm.set_advertised_subnets([1])
    tm.record_attestation(2, 1)
    first = tm.needs_reconnection()
    assert first.is_set() is True

    tm.reset_after_reconnection()
    second = tm.needs_reconnection()
    assert second is not first
    assert second.is_set() is False


def test_cooldown_period_from_config():
    tm = TopicManager(TopicConfig(mismatch_cooldown=12.5))
    assert tm.cooldown_period() == 12.5


def test_default_config_cooldown_is_five_minutes():
    assert TopicManager().cooldown_period() == 300.0


def _wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_subnet_refresh_updates_selection():
    tm = TopicManager(TopicConfig(attestation_enabled=True, attestation_max_subnets=2))
    tm.set_advertised_subnets([5])
    assert tm.is_active_subnet(5) is True

    tm.start_subnet_refresh(0.01, lambda: [7])
    try:
        assert _wait_until(lambda: tm.is_active_subnet(7)) is True
        assert tm.is_active_subnet(5) is False
    finally:
        tm.stop_subnet_refresh()


def test_subnet_refresh_ignores_none():
    tm = TopicManager(TopicConfig(attestation_enabled=True, attestation_max_subnets=2))
    tm.set_advertised_subnets([5])
    calls = threading.Event()

    def fetcher():
        calls.set()
        return None

    tm.start_subnet_refresh(0.01, fetcher)
    try:
        assert calls.wait(2.0) is True
        time.sleep(0.05)
        assert tm.is_active_subnet(5) is True
    finally:
        tm.stop_subnet_refresh()


def test_stop_subnet_refresh_stops_polling():
    tm = TopicManager()
    count = []
    tm.start_subnet_refresh(0.01, lambda: count.append(1))
    assert _wait_until(lambda: len(count) > 0) is True
    tm.stop_subnet_refresh()
    time.sleep(0.05)
    seen = len(count)
    time.sleep(0.1)
    assert len(count) == seen