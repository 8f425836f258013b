"""
taskagenda — single-process, in-memory delayed task scheduler.

    from taskagenda import Task, get_scheduler

    scheduler = get_scheduler()
    scheduler.add_tasks(Task.create_with_execution_delay_ms(2000, print, "hi"))

The Scheduler instance is reached only through get_scheduler(). The class
itself stays importable from taskagenda.scheduler for embedding hosts and
tests that need their own timer backend or clock.
"""

from taskagenda.exceptions import (
    ConfigError,
    InvalidArgumentError,
    SchedulerError,
    TaskAgendaError,
    TimelineIndexError,
    TimerBackendError,
)
from taskagenda.scheduler import (
    Task,
    TaskRegistry,
    TimeField,
    get_scheduler,
    reset_scheduler,
)

__version__ = "1.0.0"

__all__ = [
    "ConfigError",
    "InvalidArgumentError",
    "SchedulerError",
    "Task",
    "TaskAgendaError",
    "TaskRegistry",
    "TimeField",
    "TimelineIndexError",
    "TimerBackendError",
    "get_scheduler",
    "reset_scheduler",
]
