"""
scheduler/scheduler.py — Scheduler

Process-wide delayed-task scheduler. Wraps one TaskRegistry and keeps at
most one live timer, always aimed at the registry's first timeline group.

Design
------
* Single timer: the tracked group is the registry's group 0 as last
  observed. After every add/remove the tracked ids are compared with the
  live group 0 (as sets). Only when they differ is the timer cancelled and,
  if work remains, re-armed. Unchanged membership leaves the running timer
  alone so its elapsed wait is not lost.
* One re-entrant lock guards the registry and the tracking state together.
  A timer fire runs under it, so no other operation interleaves with a
  firing group, while payloads may still call back into the scheduler.
* Each arm carries a generation number. A callback whose generation is no
  longer current returns without doing anything.
* Fail-safe: every payload runs in isolation. Errors are logged, recorded
  in stats / run_history and passed to on_error. Siblings in the same
  group still run and every fired id is removed.

Usage::

    scheduler = get_scheduler()
    task = Task.create_with_execution_delay_ms(2000, print, "hello")
    scheduler.add_tasks(task)           # -> 1
    scheduler.get_next_execution_time() # -> datetime (UTC)
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from taskagenda.config.settings import get_settings
from taskagenda.exceptions import SchedulerError
from taskagenda.observability.logger import get_logger
from taskagenda.scheduler.registry import TaskRegistry
from taskagenda.scheduler.task import Task, utc_now
from taskagenda.scheduler.timers import (
    ThreadTimerFactory,
    TimerFactory,
    TimerHandle,
    build_timer_factory,
)

log = get_logger(__name__)

ErrorHook = Callable[[Task, Exception], None]


# ─────────────────────────────────────────────────────────────────────────────
# TaskRun: runtime record for one payload execution
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class TaskRun:
    run_id: str
    task_id: str
    task_name: Optional[str]
    trigger: str                        # "timer" | "manual"
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None
    succeeded: Optional[bool] = None
    error: Optional[str] = None

    @property
    def duration_s(self) -> float:
        end = self.finished_at or time.monotonic()
        return end - self.started_at

    def finish(self, *, succeeded: bool, error: Optional[str] = None) -> None:
        self.finished_at = time.monotonic()
        self.succeeded = succeeded
        self.error = error


# ─────────────────────────────────────────────────────────────────────────────
# SchedulerStats
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class SchedulerStats:
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    timer_arms: int = 0
    timer_fires: int = 0
    last_run_at: Optional[str] = None
    last_run_task: Optional[str] = None
    last_error: Optional[str] = None


# ─────────────────────────────────────────────────────────────────────────────
# Scheduler
# ─────────────────────────────────────────────────────────────────────────────

class Scheduler:
    """
    Single-timer scheduler over a TaskRegistry.

    Applications should use get_scheduler(); constructing a Scheduler
    directly is meant for tests and hosts that need a private instance
    with its own timer backend.

    Introspection::

        scheduler.stats             # SchedulerStats counters
        scheduler.run_history       # List[TaskRun] (last history_limit)
        scheduler.to_snapshot()     # dict for diagnostics
    """

    def __init__(
        self,
        registry: Optional[TaskRegistry] = None,
        timer_factory: Optional[TimerFactory] = None,
        *,
        history_limit: int = 100,
        on_error: Optional[ErrorHook] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._registry = registry if registry is not None else TaskRegistry()
        self._timer_factory = timer_factory or ThreadTimerFactory()
        self._clock = clock
        self._lock = threading.RLock()

        # Task tracker: the group the live timer will fire.
        self._tracked_ids: Optional[list[str]] = None
        self._tracked_time: Optional[datetime] = None
        self._timer: Optional[TimerHandle] = None
        self._generation = 0

        self.on_error = on_error
        self.stats = SchedulerStats()
        self.run_history: list[TaskRun] = []
        self._history_limit = history_limit

        log.debug(
            "scheduler.init",
            timer_backend=getattr(self._timer_factory, "name", type(self._timer_factory).__name__),
            history_limit=history_limit,
        )

    # ── Factory ───────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(
        cls,
        settings,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> "Scheduler":
        cfg = settings.scheduler
        return cls(
            registry=TaskRegistry(id_length=cfg.id_length),
            timer_factory=build_timer_factory(cfg.timer_backend, loop),
            history_limit=cfg.history_limit,
        )

    # ── Public API ────────────────────────────────────────────────────────────

    def task_count(self) -> int:
        with self._lock:
            return self._registry.count()

    def __len__(self) -> int:
        return self.task_count()

    def add_tasks(self, *tasks: Any) -> int:
        """
        Add tasks; each runs automatically once due. Non-Task values are
        ignored. Returns the number of tasks now pending.

        Raises TimerBackendError if the backend cannot arm a timer. The
        insert is rolled back first, so the scheduler is left as it was.
        """
        with self._lock:
            before = set(self._registry.ids())
            if not self._registry.insert(*tasks):
                return self._registry.count()
            try:
                self._reconcile()
            except SchedulerError as e:
                added = [i for i in self._registry.ids() if i not in before]
                self._registry.remove(*added)
                log.error("scheduler.add_rolled_back", ids=added, error=str(e))
                raise
            return self._registry.count()

    def remove_task(self, *task_ids: str) -> int:
        """
        Remove tasks by id (unknown ids are ignored). Returns the remaining count.

        If the next group cannot be armed the removal still stands and the
        previous timer is kept; its fire skips vanished ids and re-aims.
        """
        with self._lock:
            removed = [i for i in dict.fromkeys(task_ids) if i in self._registry]
            if not self._registry.remove(*removed):
                return self._registry.count()
            log.info("scheduler.tasks_removed", ids=removed)
            try:
                self._reconcile()
            except SchedulerError as e:
                log.error("scheduler.rearm_failed", ids=removed, error=str(e))
            return self._registry.count()

    remove_tasks = remove_task

    def execute_now(self, task_id: str, remove_after_execution: bool = True) -> int:
        """
        Run one task's payload immediately, bypassing the timer.

        Does nothing for an unknown id. Returns the remaining count.
        """
        with self._lock:
            found = self._registry.get_tasks(task_id)
            if found:
                self._run_payload(found[0], trigger="manual")
                if remove_after_execution:
                    self.remove_task(task_id)
            return self._registry.count()

    def get_task_list(self) -> TaskRegistry:
        """Read-only copy of the registry. Changes to it never reach the scheduler."""
        with self._lock:
            return self._registry.copy()

    def get_next_execution_time(self) -> Optional[datetime]:
        with self._lock:
            return self._tracked_time

    @property
    def tracked_ids(self) -> list[str]:
        with self._lock:
            return list(self._tracked_ids or [])

    @property
    def is_armed(self) -> bool:
        with self._lock:
            return self._timer is not None

    def shutdown(self) -> None:
        """Cancel the live timer and forget the tracked group. Pending tasks stay."""
        with self._lock:
            self._clear_tracker()
            log.info("scheduler.shutdown", pending=self._registry.count())

    def to_snapshot(self) -> dict[str, Any]:
        """Human-readable dump for diagnostics. Not a restore format."""
        with self._lock:
            return {
                "task_list": self._registry.to_dict(),
                "next_task_ids": list(self._tracked_ids or []),
                "active_timer": self._describe_timer(),
                "next_execution_time": (
                    self._tracked_time.isoformat() if self._tracked_time else None
                ),
                "stats": asdict(self.stats),
            }

    # ── Task tracker ──────────────────────────────────────────────────────────

    def _reconcile(self) -> bool:
        """
        Re-aim the timer if the registry's first group changed.

        Compares tracked ids with the live group 0 ignoring order. Returns
        True if the timer was cancelled / re-armed.
        """
        live = self._registry.next_ids()
        mine = self._tracked_ids or []
        if len(mine) == len(live) and set(mine) == set(live):
            return False

        if not live:
            self._clear_tracker()
            log.debug("scheduler.idle")
            return True
        self._set_tracker(live)
        return True

    def _set_tracker(self, next_ids: list[str]) -> None:
        sample = self._registry.get_tasks(next_ids[0])[0]
        delay_s = sample.seconds_until_execution(self._clock())
        self._arm(delay_s)
        self._tracked_ids = next_ids
        self._tracked_time = sample.execution_time
        log.debug(
            "scheduler.tracking",
            ids=next_ids,
            execution_time=sample.execution_time.isoformat(),
            delay_s=round(delay_s, 3),
        )

    def _clear_tracker(self) -> None:
        self._tracked_ids = None
        self._tracked_time = None
        self._cancel_timer()
        # invalidates any callback already past its wait
        self._generation += 1

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            log.debug("scheduler.timer_cancelled", generation=self._generation)

    def _arm(self, delay_s: float) -> None:
        # The live timer is only replaced once the backend has accepted the
        # new one; a failing backend leaves timer and generation untouched.
        generation = self._generation + 1
        handle = self._timer_factory(delay_s, lambda: self._on_timer(generation))
        self._cancel_timer()
        self._generation = generation
        self._timer = handle
        self.stats.timer_arms += 1
        log.debug("scheduler.timer_armed", generation=generation, delay_s=round(delay_s, 3))

    def _describe_timer(self) -> Optional[dict[str, Any]]:
        if self._timer is None:
            return None
        return {
            "backend": getattr(self._timer_factory, "name", type(self._timer_factory).__name__),
            "generation": self._generation,
        }

    # ── Timer fire ────────────────────────────────────────────────────────────

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                log.debug("scheduler.stale_timer_ignored", generation=generation)
                return
            self._timer = None
            self.stats.timer_fires += 1

            now = self._clock()
            if self._tracked_time is not None and now < self._tracked_time:
                remaining = (self._tracked_time - now).total_seconds()
                log.debug("scheduler.timer_early", remaining_s=round(remaining, 6))
                self._arm(remaining)
                return

            tracked = list(self._tracked_ids or [])
            due = self._registry.get_tasks(*tracked)
            log.info(
                "scheduler.group_firing",
                ids=[t.id for t in due],
                vanished=len(tracked) - len(due),
            )

            fired: list[str] = []
            for task in due:
                # a sibling payload may have removed it already
                if task.id not in self._registry:
                    continue
                fired.append(task.id)
                self._run_payload(task, trigger="timer")

            self._registry.remove(*fired)
            self._reconcile()

    # ── Payload execution ─────────────────────────────────────────────────────

    def _run_payload(self, task: Task, *, trigger: str) -> bool:
        """Execute one payload. Never raises Exception subclasses."""
        run = TaskRun(
            run_id=uuid.uuid4().hex[:12],
            task_id=task.id,
            task_name=task.name,
            trigger=trigger,
        )
        self.stats.total_runs += 1
        self.stats.last_run_task = task.id
        self.stats.last_run_at = utc_now().isoformat()

        try:
            task.execute()
        except Exception as e:
            err = f"{type(e).__name__}: {e}"
            run.finish(succeeded=False, error=err)
            self.stats.failed_runs += 1
            self.stats.last_error = err
            log.error(
                "scheduler.payload_error",
                task_id=task.id,
                task_name=task.name,
                trigger=trigger,
                error=err,
                exc_info=True,
            )
            self._notify_error(task, e)
        else:
            run.finish(succeeded=True)
            self.stats.successful_runs += 1
            log.info(
                "scheduler.payload_complete",
                task_id=task.id,
                task_name=task.name,
                trigger=trigger,
                duration_s=round(run.duration_s, 4),
            )

        self._record(run)
        return bool(run.succeeded)

    def _notify_error(self, task: Task, exc: Exception) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(task, exc)
        except Exception as hook_err:
            log.warning("scheduler.error_hook_failed", task_id=task.id, error=str(hook_err))

    def _record(self, run: TaskRun) -> None:
        if self._history_limit <= 0:
            return
        self.run_history.append(run)
        if len(self.run_history) > self._history_limit:
            self.run_history = self.run_history[-self._history_limit:]


# ─────────────────────────────────────────────────────────────────────────────
# Singleton accessor
# ─────────────────────────────────────────────────────────────────────────────

_instance: Optional[Scheduler] = None
_instance_lock = threading.Lock()


def get_scheduler() -> Scheduler:
    """
    Return the process-wide Scheduler, creating it from get_settings() on
    first use. Later calls return the same instance.
    """
    global _instance
    if _instance is not None:
        return _instance
    with _instance_lock:
        if _instance is None:
            _instance = Scheduler.from_settings(get_settings())
            log.info("scheduler.created", timer_backend=get_settings().timer_backend)
        return _instance


def reset_scheduler() -> None:
    """Shut down and drop the process-wide Scheduler. Mainly for tests."""
    global _instance
    with _instance_lock:
        if _instance is not None:
            _instance.shutdown()
        _instance = None
