# SPDX-License-Identifier: MIT
# src/alert_bridge/scheduler.py
"""
Periodic task runner.

Every task gets its own daemon thread, so a slow network call in one task
never delays another. A task never overlaps itself: if a run is still in
flight when the next one is due, the new run is skipped. Exceptions are
logged and swallowed by the task wrapper; the process keeps running.
"""
from __future__ import annotations
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from .utils.time_utils import utc_now

logger = logging.getLogger(__name__)

NextRun = Callable[[datetime], datetime]


def every(seconds: int) -> NextRun:
    if seconds <= 0:
        raise ValueError("Interval must be positive")
    return lambda now: now + timedelta(seconds=seconds)


def hourly(minute: int = 0) -> NextRun:
    """Next wall-clock hh:``minute``."""
    def next_run(now: datetime) -> datetime:
        candidate = now + relativedelta(minute=minute, second=0, microsecond=0)
        if candidate <= now:
            candidate += relativedelta(hours=1)
        return candidate
    return next_run


def daily_at(hhmm: str, tz_name: str) -> NextRun:
    """Next ``hhmm`` (e.g. "00:05") on the clock of ``tz_name``."""
    hours, minutes = (int(p) for p in hhmm.split(":", 1))
    tz = ZoneInfo(tz_name)

    def next_run(now: datetime) -> datetime:
        local = now.astimezone(tz)
        candidate = local + relativedelta(hour=hours, minute=minutes, second=0, microsecond=0)
        if candidate <= local:
            candidate += relativedelta(days=1)
        return candidate
    return next_run


class PeriodicTask:
    """One named task and its cadence."""

    def __init__(self, name: str, func: Callable[[], object], next_run: NextRun, run_at_start: bool = False):
        self.name = name
        self.func = func
        self.next_run = next_run
        self.run_at_start = run_at_start
        self._running = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> bool:
        """
        Run the task now unless a previous run is still going.

        Returns:
            True if the task ran to completion without raising
        """
        if not self._running.acquire(blocking=False):
            logger.warning(f"[{self.name}] previous run still in progress, skipping")
            return False
        try:
            result = self.func()
            logger.debug(f"[{self.name}] done: {result!r}")
            return True
        except Exception as e:
            logger.error(f"[{self.name}] failed: {e}", exc_info=True)
            return False
        finally:
            self._running.release()

    def _loop(self, stop: threading.Event) -> None:
        if self.run_at_start:
            self.run_once()
        while not stop.is_set():
            now = utc_now()
            due = self.next_run(now)
            delay = max(0.0, (due - now).total_seconds())
            logger.debug(f"[{self.name}] next run at {due.isoformat()}")
            if stop.wait(delay):
                break
            self.run_once()

    def start(self, stop: threading.Event) -> threading.Thread:
        self._thread = threading.Thread(target=self._loop, args=(stop,), name=f"task-{self.name}", daemon=True)
        self._thread.start()
        return self._thread


class TaskScheduler:
    """Starts every task on its own thread and stops them together."""

    def __init__(self, tasks: Iterable[PeriodicTask]):
        self.tasks: List[PeriodicTask] = list(tasks)
        self._stop = threading.Event()

    def start(self) -> None:
        for task in self.tasks:
            task.start(self._stop)
            logger.info(f"Started task {task.name}")

    def stop(self) -> None:
        self._stop.set()

    def wait(self, poll_secs: float = 1.0) -> None:
        """Block until ``stop()`` is called (or KeyboardInterrupt)."""
        while not self._stop.wait(poll_secs):
            pass
