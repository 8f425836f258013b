"""
exceptions.py — taskagenda Unified Error Hierarchy

All taskagenda-specific exceptions live here. Every layer raises typed
subclasses of TaskAgendaError — never bare Exception.

Import from here, not from individual modules:
    from taskagenda.exceptions import InvalidArgumentError, TimelineIndexError

Hierarchy:
    TaskAgendaError
    ├── InvalidArgumentError      (also ValueError)
    ├── TimelineIndexError        (also IndexError)
    ├── SchedulerError
    │   └── TimerBackendError
    └── ConfigError

Lookups and removals by an unknown task id are NOT errors anywhere in the
package: they return empty results or leave the registry untouched.
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class TaskAgendaError(Exception):
    """Base class for all taskagenda exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Task / registry layer
# ─────────────────────────────────────────────────────────────────────────────

class InvalidArgumentError(TaskAgendaError, ValueError):
    """A constructor or query argument has the wrong type or value."""

    def __init__(self, argument: str, message: str = "") -> None:
        self.argument = argument
        super().__init__(message or f"Invalid value for argument '{argument}'.")


class TimelineIndexError(TaskAgendaError, IndexError):
    """A timeline group index lies outside [0, timeline_length)."""

    def __init__(self, index: int, length: int) -> None:
        self.index = index
        self.length = length
        super().__init__(
            f"Timeline index {index} is out of range: "
            f"expected 0 <= index < {length}."
        )


# ─────────────────────────────────────────────────────────────────────────────
# Scheduler layer
# ─────────────────────────────────────────────────────────────────────────────

class SchedulerError(TaskAgendaError):
    """Base for scheduler / timer errors."""


class TimerBackendError(SchedulerError):
    """The configured timer backend is unknown or cannot arm a timer."""


# ─────────────────────────────────────────────────────────────────────────────
# Config layer
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(TaskAgendaError):
    """Raised when settings cannot be loaded or fail validation."""


__all__ = [
    "TaskAgendaError",
    "InvalidArgumentError",
    "TimelineIndexError",
    "SchedulerError",
    "TimerBackendError",
    "ConfigError",
]
