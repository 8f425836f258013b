"""
scheduler/ — Task, TaskRegistry, timer backends and the Scheduler singleton.

    from taskagenda.scheduler import Task, get_scheduler
"""

from taskagenda.scheduler.registry import TaskRegistry, TimeField
from taskagenda.scheduler.scheduler import (
    Scheduler,
    SchedulerStats,
    TaskRun,
    get_scheduler,
    reset_scheduler,
)
from taskagenda.scheduler.task import Task
from taskagenda.scheduler.timers import (
    AsyncioTimerFactory,
    ThreadTimerFactory,
    build_timer_factory,
)

__all__ = [
    "AsyncioTimerFactory",
    "Scheduler",
    "SchedulerStats",
    "Task",
    "TaskRegistry",
    "TaskRun",
    "ThreadTimerFactory",
    "TimeField",
    "build_timer_factory",
    "get_scheduler",
    "reset_scheduler",
]
