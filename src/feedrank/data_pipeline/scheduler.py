"""Cancellable scheduler for the core's periodic background tasks.

Provides scheduling infrastructure for:
- Trending index recomputation
- Timer-driven training batch drains
- Feed cache expiry sweeps
- Interaction event pruning

Every task is registered by name so tests (and operators) can trigger a cycle
deterministically with :meth:`TaskScheduler.run_now` instead of waiting on
wall-clock time.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR

from feedrank.utils.logging import get_logger

logger = get_logger(__name__)


class ScheduledTask:
    """A named periodic callable with run bookkeeping."""

    def __init__(self, name: str, func: Callable[[], Any], interval_seconds: float):
        self.name = name
        self.func = func
        self.interval_seconds = float(interval_seconds)
        self.logger = get_logger(f"{__name__}.{name}")

        self.runs = 0
        self.failures = 0
        self.last_run: Optional[datetime] = None
        self.last_error: Optional[str] = None

    def run(self) -> bool:
        """Execute the task once; failures are logged and never propagate."""
        self.last_run = datetime.now(timezone.utc)
        try:
            self.func()
            self.runs += 1
            self.last_error = None
            return True
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            self.logger.error(f"Task {self.name} failed: {e}")
            return False


class TaskScheduler:
    """Wraps an APScheduler :class:`BackgroundScheduler` with named interval tasks."""

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self.tasks: Dict[str, ScheduledTask] = {}
        self.scheduler.add_listener(self._job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    def add_interval_task(self, name: str, func: Callable[[], Any], interval_seconds: float) -> ScheduledTask:
        """Register (or replace) a task that runs every ``interval_seconds``."""
        task = ScheduledTask(name, func, interval_seconds)
        self.tasks[name] = task
        self.scheduler.add_job(
            func=task.run,
            trigger=IntervalTrigger(seconds=task.interval_seconds),
            id=name,
            name=name,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(f"Scheduled task {name} every {task.interval_seconds:.0f}s")
        return task

    def run_now(self, name: str) -> bool:
        """Run a registered task synchronously in the caller's thread."""
        if name not in self.tasks:
            raise KeyError(f"Unknown task: {name}")
        return self.tasks[name].run()

    def start(self) -> None:
        if self.scheduler.running:
            logger.warning("Task scheduler is already running")
            return
        self.scheduler.start()
        logger.info("Task scheduler started")

    def shutdown(self, wait: bool = True) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
        logger.info("Task scheduler stopped")

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler and task status."""
        jobs = {job.id: job for job in self.scheduler.get_jobs()}
        return {
            "scheduler_running": self.running,
            "tasks": [
                {
                    "name": task.name,
                    "interval_seconds": task.interval_seconds,
                    "runs": task.runs,
                    "failures": task.failures,
                    "last_run": task.last_run.isoformat() if task.last_run else None,
                    "last_error": task.last_error,
                    "next_run": (
                        jobs[name].next_run_time.isoformat()
                        if name in jobs and getattr(jobs[name], "next_run_time", None) else None
                    ),
                }
                for name, task in self.tasks.items()
            ],
        }

    def _job_listener(self, event):
        """Listen to job execution events."""
        if event.exception:
            logger.error(f"Job {event.job_id} failed: {event.exception}")
        else:
            logger.debug(f"Job {event.job_id} executed")
