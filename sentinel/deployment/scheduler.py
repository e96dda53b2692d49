"""
Background scheduler

Runs the monitor's periodic maintenance (tracker pruning, log cleanup, event
retention, persistence, incident escalation) on one daemon thread, off the
request path. Task failures are logged and never stop the scheduler.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    """A named callable run every ``interval`` seconds"""
    name: str
    interval: float
    func: Callable[[], object]
    next_run: float
    runs: int = 0
    failures: int = 0
    last_run: Optional[float] = None


class BackgroundScheduler:
    """
    Interval scheduler on a daemon thread

    ``run_pending`` can be driven directly with an explicit time, which is
    how tests exercise scheduled work without starting the thread.
    """

    def __init__(self, clock: Callable[[], float] = time.time, tick_seconds: float = 1.0):
        self.clock = clock
        self.tick_seconds = tick_seconds
        self._tasks: Dict[str, ScheduledTask] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.is_running = False

    def add_task(self, name: str, interval: float, func: Callable[[], object],
                 run_immediately: bool = False):
        """Register a task; the first run is one interval from now unless run_immediately"""
        if interval <= 0:
            raise ValueError(f"Interval for task '{name}' must be positive")
        now = self.clock()
        with self._lock:
            self._tasks[name] = ScheduledTask(
                name=name,
                interval=interval,
                func=func,
                next_run=now if run_immediately else now + interval,
            )
        logger.debug(f"Scheduled task '{name}' every {interval}s")

    def remove_task(self, name: str) -> bool:
        with self._lock:
            return self._tasks.pop(name, None) is not None

    def run_pending(self, now: Optional[float] = None) -> List[str]:
        """
        Run every task that is due

        Returns:
            Names of tasks that ran
        """
        now = self.clock() if now is None else now
        with self._lock:
            due = [task for task in self._tasks.values() if task.next_run <= now]
            for task in due:
                task.next_run = now + task.interval

        ran = []
        for task in due:
            task.last_run = now
            task.runs += 1
            try:
                task.func()
            except Exception as e:
                task.failures += 1
                logger.error(f"Background task '{task.name}' failed: {e}")
            ran.append(task.name)
        return ran

    def run_task(self, name: str):
        """Run one task immediately, regardless of its schedule"""
        with self._lock:
            task = self._tasks[name]
        task.func()

    # ========================================================================
    # THREAD LIFECYCLE
    # ========================================================================

    def start(self):
        if self._thread and self._thread.is_alive():
            logger.warning("Background scheduler already running")
            return

        self._stop_event.clear()
        self.is_running = True
        self._thread = threading.Thread(target=self._loop, name="sentinel-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Background scheduler started with {len(self._tasks)} tasks")

    def stop(self):
        self.is_running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
            logger.info("Background scheduler stopped")

    def _loop(self):
        while not self._stop_event.is_set():
            try:
                self.run_pending()
            except Exception as e:
                logger.error(f"Scheduler loop error: {e}")
            self._stop_event.wait(self.tick_seconds)

    def status(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            return {
                task.name: {
                    'interval': task.interval,
                    'runs': task.runs,
                    'failures': task.failures,
                    'next_run': task.next_run,
                }
                for task in self._tasks.values()
            }
