"""
scheduler/task.py — Task

A Task is one deferred unit of work: a callable, the positional arguments
bound to it at construction, and the absolute UTC time at which it becomes
due. Tasks are plain values until a TaskRegistry stores a copy and assigns
it an id; every hand-off after that is another copy.

Build tasks through the two factories:

    Task.create_with_execution_time(when, fn, *args)
    Task.create_with_execution_delay_ms(1500, fn, *args)

The delay form fixes execution_time = creation_time + delay at construction,
so adding the task to a scheduler later does not push it back.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from taskagenda.exceptions import InvalidArgumentError

_ZERO = timedelta(0)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # naive datetimes are read as local time, like datetime.astimezone() does
    return value.astimezone(timezone.utc)


def _describe_callable(fn: Callable[..., Any]) -> str:
    label = getattr(fn, "__qualname__", None) or type(fn).__name__
    return f"<callable {label}>"


class Task:
    """
    Deferred unit of work.

    id              Registry-assigned identifier; "" until inserted.
    name            Optional label (None when unset).
    description     Optional label (None when unset).
    creation_time   UTC time the task object was built.
    execution_time  UTC time at or after which the payload runs.
    """

    __slots__ = (
        "_id",
        "_name",
        "_description",
        "_creation_time",
        "_execution_time",
        "_payload_function",
        "_payload_arguments",
    )

    def __init__(
        self,
        execution_time: datetime,
        payload_function: Callable[..., Any],
        payload_arguments: tuple[Any, ...] = (),
        *,
        creation_time: Optional[datetime] = None,
    ) -> None:
        self._id = ""
        self._name: Optional[str] = None
        self._description: Optional[str] = None
        self._creation_time = creation_time or utc_now()
        self._execution_time = execution_time
        self._payload_function = payload_function
        self._payload_arguments = tuple(payload_arguments)

    # ── Factories ─────────────────────────────────────────────────────────────

    @classmethod
    def create_with_execution_time(
        cls,
        execution_time: datetime,
        execution_function: Callable[..., Any],
        *execution_arguments: Any,
    ) -> "Task":
        """Build a task that becomes due at an absolute time (past times run immediately)."""
        if not isinstance(execution_time, datetime):
            raise InvalidArgumentError(
                "execution_time",
                f"execution_time must be a datetime, got {type(execution_time).__name__}.",
            )
        _require_callable(execution_function)
        return cls(as_utc(execution_time), execution_function, execution_arguments)

    @classmethod
    def create_with_execution_delay_ms(
        cls,
        execution_delay_ms: int,
        execution_function: Callable[..., Any],
        *execution_arguments: Any,
    ) -> "Task":
        """Build a task that becomes due execution_delay_ms after construction."""
        if isinstance(execution_delay_ms, bool) or not isinstance(execution_delay_ms, int):
            raise InvalidArgumentError(
                "execution_delay_ms",
                f"execution_delay_ms must be an integer, got {type(execution_delay_ms).__name__}.",
            )
        if execution_delay_ms < 0:
            raise InvalidArgumentError(
                "execution_delay_ms",
                f"execution_delay_ms must be >= 0, got {execution_delay_ms}.",
            )
        _require_callable(execution_function)
        created = utc_now()
        return cls(
            created + timedelta(milliseconds=execution_delay_ms),
            execution_function,
            execution_arguments,
            creation_time=created,
        )

    # ── Copying ───────────────────────────────────────────────────────────────

    def copy(self) -> "Task":
        """Return an independent copy; the payload callable itself is shared."""
        clone = Task.__new__(Task)
        clone._id = self._id
        clone._name = self._name
        clone._description = self._description
        clone._creation_time = self._creation_time
        clone._execution_time = self._execution_time
        clone._payload_function = self._payload_function
        clone._payload_arguments = tuple(self._payload_arguments)
        return clone

    __copy__ = copy

    # ── Accessors ─────────────────────────────────────────────────────────────

    @property
    def id(self) -> str:
        return self._id

    def _assign_id(self, new_id: str) -> None:
        # Only TaskRegistry calls this, on its own private copy.
        self._id = new_id

    @property
    def name(self) -> Optional[str]:
        return self._name

    @name.setter
    def name(self, value: Any) -> None:
        self._name = None if value is None else str(value)

    @property
    def description(self) -> Optional[str]:
        return self._description

    @description.setter
    def description(self, value: Any) -> None:
        self._description = None if value is None else str(value)

    @property
    def creation_time(self) -> datetime:
        return self._creation_time

    @property
    def execution_time(self) -> datetime:
        return self._execution_time

    @property
    def payload_function(self) -> Callable[..., Any]:
        return self._payload_function

    @property
    def payload_arguments(self) -> list[Any]:
        return list(self._payload_arguments)

    @property
    def planned_delay(self) -> timedelta:
        """execution_time - creation_time, never negative. Timeline grouping key."""
        return max(self._execution_time - self._creation_time, _ZERO)

    def seconds_until_execution(self, now: Optional[datetime] = None) -> float:
        now = now or utc_now()
        return max((self._execution_time - now).total_seconds(), 0.0)

    # ── Execution ─────────────────────────────────────────────────────────────

    def execute(self) -> Any:
        """Invoke the payload with its bound arguments. Exceptions propagate."""
        return self._payload_function(*self._payload_arguments)

    # ── Diagnostics ───────────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        """Human-readable dump. Not a restore format: the payload is opaque."""
        return {
            "id": self._id,
            "name": self._name,
            "description": self._description,
            "creation_time": self._creation_time.isoformat(),
            "execution_time": self._execution_time.isoformat(),
            "payload_function": _describe_callable(self._payload_function),
            "payload_arguments": [repr(a) for a in self._payload_arguments],
        }

    def __repr__(self) -> str:
        return (
            f"Task(id={self._id!r}, name={self._name!r}, "
            f"execution_time={self._execution_time.isoformat()})"
        )


def _require_callable(fn: Any) -> None:
    if not callable(fn):
        raise InvalidArgumentError(
            "execution_function",
            f"execution_function must be callable, got {type(fn).__name__}.",
        )
