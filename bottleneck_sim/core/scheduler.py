"""Virtual-time event scheduler for network simulation.

This module defines the EventScheduler class, which orders and fires timed
callbacks on top of a SimPy environment. SimPy keeps its event heap keyed by
(time, priority, insertion id), so callbacks scheduled for the same instant
fire in the order they were scheduled.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generator, Optional, Tuple

import simpy

from bottleneck_sim.core.errors import SchedulingError

logger = logging.getLogger(__name__)


@dataclass
class EventHandle:
    """A scheduled callback.

    Attributes:
        fire_time: Virtual time at which the action runs.
        sequence: Scheduling order, breaks ties between equal fire times.
        action: Callable invoked when the event fires.
        args: Positional arguments passed to the action.
        valid: False once the event has been cancelled or has fired.
        fired: True once the action has run.
    """

    fire_time: float
    sequence: int
    action: Callable[..., Any] = field(repr=False)
    args: Tuple[Any, ...] = field(default=(), repr=False)
    valid: bool = True
    fired: bool = False

    @property
    def cancelled(self) -> bool:
        return not self.valid and not self.fired


class EventScheduler:
    """Orders and fires timed callbacks in virtual time.

    Attributes:
        env: SimPy environment providing the clock and the event heap.
        events_fired: Number of actions executed so far.
    """

    def __init__(self, env: Optional[simpy.Environment] = None) -> None:
        """Initialize the scheduler.

        Args:
            env: SimPy environment to drive. A fresh one starting at time 0
                is created when omitted.
        """
        self.env = env if env is not None else simpy.Environment()
        self.events_fired = 0
        self._sequence = itertools.count()
        self._pending = 0

    def now(self) -> float:
        """Return the current virtual time in seconds."""
        return self.env.now

    @property
    def pending(self) -> int:
        """Number of scheduled events that are still valid."""
        return self._pending

    def schedule(
        self, delay: float, action: Callable[..., Any], *args: Any
    ) -> EventHandle:
        """Schedule an action to run after a delay.

        Args:
            delay: Delay in seconds from the current virtual time.
            action: Callable to invoke.
            *args: Arguments passed to the action.

        Returns:
            Handle that can be passed to cancel().

        Raises:
            SchedulingError: If the delay is negative.
        """
        if not delay >= 0:
            raise SchedulingError(f"Cannot schedule an event {delay}s in the past")

        handle = EventHandle(self.env.now + delay, next(self._sequence), action, args)
        timeout = self.env.timeout(delay)
        timeout.callbacks.append(lambda _event: self._fire(handle))
        self._pending += 1
        return handle

    def schedule_at(
        self, time: float, action: Callable[..., Any], *args: Any
    ) -> EventHandle:
        """Schedule an action at an absolute virtual time."""
        return self.schedule(time - self.env.now, action, *args)

    def cancel(self, handle: EventHandle) -> None:
        """Invalidate a scheduled event.

        Cancelling an event that already fired or was already cancelled does
        nothing.

        Args:
            handle: Handle returned by schedule().
        """
        if handle.valid:
            handle.valid = False
            self._pending -= 1

    def process(self, generator: Generator[Any, Any, Any]) -> simpy.Process:
        """Start a SimPy process on the scheduler's clock."""
        return self.env.process(generator)

    def event(self) -> simpy.Event:
        """Create an untriggered SimPy event bound to the scheduler's clock."""
        return self.env.event()

    def run_until(self, stop_time: float) -> None:
        """Fire events in time order until the stop time is reached.

        Events whose fire time is at or beyond the stop time stay queued.

        Args:
            stop_time: Absolute virtual time at which to stop.

        Raises:
            SchedulingError: If the stop time lies before the current time.
        """
        if stop_time < self.env.now:
            raise SchedulingError(
                f"Stop time {stop_time} is before the current time {self.env.now}"
            )
        if stop_time == self.env.now:
            return
        logger.debug("Running until t=%.6f (%d pending events)", stop_time, self._pending)
        self.env.run(until=stop_time)

    def _fire(self, handle: EventHandle) -> None:
        if not handle.valid:
            return
        handle.valid = False
        handle.fired = True
        self._pending -= 1
        self.events_fired += 1
        handle.action(*handle.args)

    def __repr__(self) -> str:
        return f"EventScheduler(now={self.env.now}, pending={self._pending})"
