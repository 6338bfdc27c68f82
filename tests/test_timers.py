import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from realm.timers import ManualClock, TimerKey, TimerKind, TimerQueue


@pytest.fixture()
def clock():
    return ManualClock(1_000)


@pytest.fixture()
def timers(clock):
    return TimerQueue(clock)


def test_timer_fires_only_once_due(clock, timers):
    fired = []
    due = timers.schedule(TimerKey(TimerKind.PRODUCTION), 500, lambda: fired.append("poll"))

    assert due == 1_500
    assert timers.run_due() == 0
    clock.advance(0.499)
    assert timers.run_due() == 0
    clock.advance(0.001)
    assert timers.run_due() == 1
    assert fired == ["poll"]
    assert len(timers) == 0


def test_rescheduling_a_key_replaces_the_pending_timer(clock, timers):
    fired = []
    key = TimerKey.cell(TimerKind.BUILD, 3, 4)
    timers.schedule(key, 100, lambda: fired.append("first"))
    timers.schedule(key, 200, lambda: fired.append("second"))

    assert len(timers) == 1
    assert timers.due_at(key) == 1_200
    clock.advance(1)
    assert timers.run_due() == 1
    assert fired == ["second"]


def test_cancel_by_key_and_by_kind(clock, timers):
    fired = []
    timers.schedule(TimerKey.cell(TimerKind.BUILD, 0, 0), 10, lambda: fired.append("b"))
    timers.schedule(TimerKey.cell(TimerKind.UPGRADE, 1, 0), 10, lambda: fired.append("u"))
    timers.schedule(TimerKey.project("p1"), 10, lambda: fired.append("p"))

    assert timers.cancel(TimerKey.project("p1")) is True
    assert timers.cancel(TimerKey.project("p1")) is False
    assert timers.cancel_kind(TimerKind.BUILD, TimerKind.UPGRADE) == 2

    clock.advance(1)
    assert timers.run_due() == 0
    assert fired == []


def test_timers_fire_in_due_order(clock, timers):
    fired = []
    timers.schedule(TimerKey.project("late"), 300, lambda: fired.append("late"))
    timers.schedule(TimerKey.project("early"), 100, lambda: fired.append("early"))
    timers.schedule(TimerKey.project("middle"), 200, lambda: fired.append("middle"))

    assert timers.next_due() == 1_100
    clock.advance(1)
    timers.run_due()

    assert fired == ["early", "middle", "late"]


def test_chained_timer_already_due_fires_in_the_same_pass(clock, timers):
    fired = []

    def first():
        fired.append("first")
        timers.schedule(
            TimerKey.project("chain"), 100, lambda: fired.append("second"), start_ms=1_100
        )

    timers.schedule(TimerKey.project("chain"), 100, first)
    clock.advance(0.5)

    assert timers.run_due() == 2
    assert fired == ["first", "second"]


def test_failing_callback_does_not_stop_other_timers(clock, timers, caplog):
    fired = []

    def explode():
        raise RuntimeError("boom")

    timers.schedule(TimerKey.project("bad"), 10, explode)
    timers.schedule(TimerKey.project("good"), 20, lambda: fired.append("good"))
    clock.advance(1)

    with caplog.at_level(logging.ERROR, logger="realm.timers"):
        assert timers.run_due() == 2

    assert fired == ["good"]
    assert any("bad" in record.getMessage() for record in caplog.records)


def test_timer_key_string_form():
    assert str(TimerKey.cell(TimerKind.BUILD, 3, 4)) == "build:3,4"
    assert str(TimerKey.project("construction_1_abc")) == "phase:construction_1_abc"
    assert str(TimerKey(TimerKind.PRODUCTION)) == "production"


def test_snapshot_lists_pending_timers_by_due_time(timers):
    timers.schedule(TimerKey.cell(TimerKind.UPGRADE, 2, 2), 50, lambda: None)
    timers.schedule(TimerKey(TimerKind.PRODUCTION), 10, lambda: None)

    assert timers.snapshot() == [("production", 1_010), ("upgrade:2,2", 1_050)]

    timers.clear()
    assert timers.snapshot() == []
    assert timers.next_due() is None


def test_manual_clock_ignores_negative_steps(clock):
    clock.advance(-5)
    assert clock.now_ms() == 1_000
    clock.set(42)
    assert clock.now_ms() == 42
