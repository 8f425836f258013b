"""
scheduler/registry.py — TaskRegistry

Authoritative id -> Task mapping plus a derived timeline.

Timeline
--------
The timeline is a list of id groups. Every task lands in the group for its
planned delay (execution_time - creation_time, clamped at zero) and groups
are ordered by ascending delay. Two tasks share a group only when their
delays are exactly equal; equal absolute execution times are not enough.

The timeline is rebuilt from scratch after every structural change, never
patched, so it always partitions the current id set.

Ownership
---------
The registry stores its own copies of tasks. insert() copies on the way in,
every query copies on the way out. Callers can mutate what they get back
without touching registry state.

The registry knows nothing about timers or the Scheduler.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from taskagenda.exceptions import InvalidArgumentError, TimelineIndexError
from taskagenda.observability.logger import get_logger
from taskagenda.scheduler.task import Task, as_utc

log = get_logger(__name__)

IdFactory = Callable[[], str]


class TimeField(str, Enum):
    EXECUTION = "execution"
    CREATION = "creation"


class TaskRegistry:
    """
    Mapping of task id to Task with a delay-ordered timeline.

    Usage::

        registry = TaskRegistry()
        registry.insert(task_a, task_b)     # -> True
        registry.next_ids()                 # ids of the smallest-delay group
        registry.remove(registry.next_ids()[0])
    """

    def __init__(
        self,
        *tasks: Any,
        id_factory: Optional[IdFactory] = None,
        id_length: int = 10,
    ) -> None:
        self._tasks: dict[str, Task] = {}
        self._timeline: list[list[str]] = []
        self._id_length = id_length
        self._custom_id_factory = id_factory
        self._id_factory = id_factory or self._random_id
        if tasks:
            self.insert(*tasks)

    # ── Id generation ─────────────────────────────────────────────────────────

    def _random_id(self) -> str:
        return uuid.uuid4().hex[: self._id_length]

    def _generate_unique_id(self) -> str:
        new_id = self._id_factory()
        while new_id in self._tasks:
            log.debug("registry.id_collision", id=new_id)
            new_id = self._id_factory()
        return new_id

    # ── Mutation ──────────────────────────────────────────────────────────────

    def _store(self, task: Task) -> str:
        stored = task.copy()
        stored._assign_id(self._generate_unique_id())
        self._tasks[stored.id] = stored
        return stored.id

    def insert(self, *tasks: Any) -> bool:
        """
        Store copies of every Task given, each under a fresh id.

        Anything that is not a Task is skipped. Returns True if at least one
        task was stored (and the timeline rebuilt).
        """
        added: list[str] = []
        for task in tasks:
            if not isinstance(task, Task):
                log.debug("registry.insert_skipped", type=type(task).__name__)
                continue
            added.append(self._store(task))

        if not added:
            return False
        self.organize()
        log.debug("registry.inserted", ids=added, total=len(self._tasks))
        return True

    def remove(self, *task_ids: str) -> bool:
        """Delete the given ids. Unknown ids are ignored. True if anything changed."""
        removed: list[str] = []
        for task_id in task_ids:
            if self._tasks.pop(task_id, None) is not None:
                removed.append(task_id)

        if not removed:
            return False
        self.organize()
        log.debug("registry.removed", ids=removed, total=len(self._tasks))
        return True

    def organize(self) -> None:
        """Rebuild the timeline: one group per distinct planned delay, ascending."""
        groups: dict[timedelta, list[str]] = {}
        for task_id, task in self._tasks.items():
            groups.setdefault(task.planned_delay, []).append(task_id)
        self._timeline = [groups[delay] for delay in sorted(groups)]

    # ── Size ──────────────────────────────────────────────────────────────────

    def count(self) -> int:
        return len(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def timeline_length(self) -> int:
        return len(self._timeline)

    # ── Queries ───────────────────────────────────────────────────────────────

    def ids(self) -> list[str]:
        return list(self._tasks)

    def timeline(self) -> list[list[str]]:
        return [list(group) for group in self._timeline]

    def tasks_copy(self) -> dict[str, Task]:
        return {task_id: task.copy() for task_id, task in self._tasks.items()}

    def get_tasks(self, *task_ids: str) -> list[Task]:
        """Copies of the tasks matching task_ids, in argument order. Misses are omitted."""
        found: list[Task] = []
        for task_id in task_ids:
            task = self._tasks.get(task_id)
            if task is not None:
                found.append(task.copy())
        return found

    def next_ids(self) -> list[str]:
        if not self._timeline:
            return []
        return list(self._timeline[0])

    def tasks_at(self, index: int) -> list[Task]:
        """Copies of the tasks in timeline group `index`."""
        if isinstance(index, bool) or not isinstance(index, int):
            raise InvalidArgumentError(
                "index", f"Timeline index must be an integer, got {type(index).__name__}."
            )
        if index < 0 or index >= len(self._timeline):
            raise TimelineIndexError(index, len(self._timeline))
        return self.get_tasks(*self._timeline[index])

    def next_tasks(self) -> list[Task]:
        return self.tasks_at(0)

    # ── Search ────────────────────────────────────────────────────────────────

    def find_by_name(self, search: str, case_sensitive: bool = True) -> "TaskRegistry":
        """
        Snapshot of tasks whose name contains `search`.

        Tasks without a name never match, not even an empty search string.
        """
        needle = str(search)
        if not case_sensitive:
            needle = needle.lower()

        def matches(task: Task) -> bool:
            if task.name is None:
                return False
            haystack = task.name if case_sensitive else task.name.lower()
            return needle in haystack

        return self._snapshot(t for t in self._tasks.values() if matches(t))

    def find_within_timeframe(
        self,
        start_time: datetime,
        end_time: datetime,
        field: TimeField | str = TimeField.EXECUTION,
    ) -> "TaskRegistry":
        """Snapshot of tasks whose execution (or creation) time lies in [start, end]."""
        for arg_name, value in (("start_time", start_time), ("end_time", end_time)):
            if not isinstance(value, datetime):
                raise InvalidArgumentError(
                    arg_name, f"{arg_name} must be a datetime, got {type(value).__name__}."
                )
        start_time, end_time = as_utc(start_time), as_utc(end_time)
        try:
            field = TimeField(field)
        except ValueError as exc:
            raise InvalidArgumentError(
                "field", f"field must be one of {[f.value for f in TimeField]}, got {field!r}."
            ) from exc

        def stamp(task: Task) -> datetime:
            if field is TimeField.EXECUTION:
                return task.execution_time
            return task.creation_time

        return self._snapshot(
            t for t in self._tasks.values() if start_time <= stamp(t) <= end_time
        )

    def find_within_execution_timeframe(self, start_time: datetime, end_time: datetime) -> "TaskRegistry":
        return self.find_within_timeframe(start_time, end_time, TimeField.EXECUTION)

    def find_within_creation_timeframe(self, start_time: datetime, end_time: datetime) -> "TaskRegistry":
        return self.find_within_timeframe(start_time, end_time, TimeField.CREATION)

    # ── Copies / snapshots ────────────────────────────────────────────────────

    def _snapshot(self, tasks: Iterable[Task]) -> "TaskRegistry":
        # Keeps the original ids, unlike insert().
        out = TaskRegistry(id_factory=self._custom_id_factory, id_length=self._id_length)
        out._tasks = {task.id: task.copy() for task in tasks}
        out.organize()
        return out

    def copy(self) -> "TaskRegistry":
        """Independent clone: no Task object or timeline list is shared."""
        out = TaskRegistry(id_factory=self._custom_id_factory, id_length=self._id_length)
        out._tasks = self.tasks_copy()
        out._timeline = self.timeline()
        return out

    def to_dict(self) -> dict[str, Any]:
        """Human-readable dump of tasks and timeline."""
        return {
            "tasks": {task_id: task.to_dict() for task_id, task in self._tasks.items()},
            "timeline": self.timeline(),
        }

    def __repr__(self) -> str:
        return f"TaskRegistry(tasks={len(self._tasks)}, groups={len(self._timeline)})"
