import pytest

from bottleneck_sim.core.errors import SchedulingError
from bottleneck_sim.core.scheduler import EventScheduler


def test_events_fire_in_time_order():
    scheduler = EventScheduler()
    fired = []
    scheduler.schedule(2.0, fired.append, "late")
    scheduler.schedule(1.0, fired.append, "early")

    scheduler.run_until(5.0)

    assert fired == ["early", "late"]
    assert scheduler.now() == 5.0


def test_equal_times_fire_in_scheduling_order():
    scheduler = EventScheduler()
    fired = []
    for label in ("a", "b", "c", "d"):
        scheduler.schedule(1.0, fired.append, label)

    scheduler.run_until(2.0)

    assert fired == ["a", "b", "c", "d"]


def test_cancelled_event_does_not_fire():
    scheduler = EventScheduler()
    fired = []
    handle = scheduler.schedule(1.0, fired.append, "x")
    scheduler.schedule(1.0, fired.append, "y")
    assert scheduler.pending == 2

    scheduler.cancel(handle)
    scheduler.cancel(handle)

    assert handle.cancelled
    assert scheduler.pending == 1
    scheduler.run_until(2.0)
    assert fired == ["y"]
    assert scheduler.events_fired == 1


def test_cancel_after_fire_is_noop():
    scheduler = EventScheduler()
    handle = scheduler.schedule(0.5, lambda: None)
    scheduler.run_until(1.0)

    scheduler.cancel(handle)

    assert handle.fired
    assert not handle.cancelled
    assert scheduler.pending == 0


def test_negative_delay_rejected():
    scheduler = EventScheduler()
    with pytest.raises(SchedulingError):
        scheduler.schedule(-0.1, lambda: None)


def test_events_at_stop_time_stay_queued():
    scheduler = EventScheduler()
    fired = []
    scheduler.schedule_at(1.0, fired.append, "edge")

    scheduler.run_until(1.0)
    assert fired == []
    assert scheduler.now() == 1.0

    scheduler.run_until(1.5)
    assert fired == ["edge"]


def test_stop_time_in_the_past_rejected():
    scheduler = EventScheduler()
    scheduler.run_until(2.0)
    with pytest.raises(SchedulingError):
        scheduler.run_until(1.0)


def test_actions_can_schedule_more_events():
    scheduler = EventScheduler()
    times = []

    def tick(remaining):
        times.append(scheduler.now())
        if remaining:
            scheduler.schedule(0.25, tick, remaining - 1)

    scheduler.schedule(0, tick, 3)
    scheduler.run_until(10.0)

    assert times == pytest.approx([0.0, 0.25, 0.5, 0.75])


def test_zero_delay_event_runs_after_current_action():
    scheduler = EventScheduler()
    order = []

    def outer():
        scheduler.schedule(0, order.append, "inner")
        order.append("outer")

    scheduler.schedule(1.0, outer)
    scheduler.run_until(2.0)

    assert order == ["outer", "inner"]
