"""Daily scheduling for backup runs."""

import threading
import time as time_module
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional

from pgbackup.constants import SECONDS_PER_DAY


def _seconds_of_day(value: time) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second


def compute_initial_offset(now: time, schedule_time: time) -> timedelta:
    """Time to wait from ``now`` until the next ``schedule_time`` on a 24h clock."""
    now_seconds = _seconds_of_day(now)
    target_seconds = _seconds_of_day(schedule_time)

    if now_seconds == target_seconds:
        return timedelta(0)
    if now_seconds < target_seconds:
        return timedelta(seconds=target_seconds - now_seconds)
    return timedelta(seconds=SECONDS_PER_DAY - (now_seconds - target_seconds))


class DailyScheduler:
    """Fires ``job`` at a fixed daily time until stopped.

    Fire instants sit on a grid anchored at the first computed fire time, so a
    slow run does not drift the schedule. When a run overruns one or more
    slots, the next run starts as soon as it finishes and the missed slots are
    dropped rather than replayed.

    Exceptions raised by ``job`` are not caught here.
    """

    def __init__(
        self,
        job: Callable[[], object],
        logger,
        schedule_time: Optional[time] = None,
        period: timedelta = timedelta(days=1),
        clock: Callable[[], float] = time_module.monotonic,
        wall_clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        stop_event: Optional[threading.Event] = None,
    ):
        self.job = job
        self.logger = logger
        self.schedule_time = schedule_time
        self.period = period.total_seconds()
        self.clock = clock
        self.wall_clock = wall_clock
        self.stop_event = stop_event if stop_event is not None else threading.Event()

    def initial_offset(self) -> timedelta:
        if self.schedule_time is None:
            return timedelta(0)
        return compute_initial_offset(self.wall_clock().time(), self.schedule_time)

    def stop(self):
        self.stop_event.set()

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def _current_slot(self, anchor: float, now: float) -> float:
        elapsed_slots = int((now - anchor) // self.period)
        return anchor + elapsed_slots * self.period

    def _wait_until(self, instant: float) -> bool:
        delay = instant - self.clock()
        if delay > 0:
            return not self.stop_event.wait(delay)
        return not self.stopped

    def run_forever(self) -> int:
        offset = self.initial_offset()
        anchor = self.clock() + offset.total_seconds()
        self.logger.info(
            "First backup run in %s, then every %s.",
            offset,
            timedelta(seconds=self.period),
        )

        ticks = 0
        slot = anchor
        fire_at = anchor

        while self._wait_until(fire_at):
            ticks += 1
            self.logger.info("Scheduled run #%s starting.", ticks)
            self.job()

            now = self.clock()
            next_slot = slot + self.period
            if next_slot > now:
                slot = fire_at = next_slot
                self.logger.info("Next run in %s.", timedelta(seconds=round(fire_at - now)))
            else:
                self.logger.warning(
                    "Run #%s overran its schedule slot; starting the next run immediately.", ticks
                )
                slot = self._current_slot(anchor, now)
                fire_at = now

        self.logger.info("Scheduler stopped after %s run(s).", ticks)
        return ticks
