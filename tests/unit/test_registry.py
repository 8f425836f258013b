"""
tests/unit/test_registry.py — TaskRegistry Unit Tests

Covers:
  - insert / remove: counts, skipped non-Task values, unknown ids ignored
  - id generation: uniqueness, configured length, collision retry
  - timeline: partitions the id set, delay grouping, ascending order,
    rebuilt after every change
  - defensive copies on the way in and out
  - tasks_at / next_tasks index validation
  - find_by_name and time-window searches return organized snapshots
  - copy() / to_dict()
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import chain

import pytest

from taskagenda.exceptions import InvalidArgumentError, TimelineIndexError
from taskagenda.scheduler.registry import TaskRegistry, TimeField
from taskagenda.scheduler.task import Task

_BASE = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _noop(*args):
    return None


def _task(delay_ms: int, name: str | None = None, created: datetime = _BASE) -> Task:
    """Task with a fixed creation time so planned delays are exact."""
    task = Task(created + timedelta(milliseconds=delay_ms), _noop, creation_time=created)
    task.name = name
    return task


def _assert_partition(registry: TaskRegistry) -> None:
    flat = list(chain.from_iterable(registry.timeline()))
    assert len(flat) == len(set(flat))
    assert set(flat) == set(registry.tasks_copy())


def _id_of(registry: TaskRegistry, name: str) -> str:
    return next(t.id for t in registry.tasks_copy().values() if t.name == name)


# ─────────────────────────────────────────────────────────────────────────────
# Insert / remove
# ─────────────────────────────────────────────────────────────────────────────

class TestInsertRemove:
    def test_empty_registry(self):
        registry = TaskRegistry()
        assert registry.count() == 0
        assert len(registry) == 0
        assert registry.timeline_length() == 0
        assert registry.next_ids() == []

    def test_insert_counts_tasks(self):
        registry = TaskRegistry()
        assert registry.insert(_task(0), _task(10)) is True
        assert registry.count() == 2

    def test_constructor_inserts(self):
        registry = TaskRegistry(_task(0), _task(5))
        assert registry.count() == 2
        _assert_partition(registry)

    def test_non_tasks_are_skipped(self):
        registry = TaskRegistry()
        assert registry.insert("nope", 42, None) is False
        assert registry.insert(_task(0), "nope") is True
        assert registry.count() == 1

    def test_same_task_inserted_twice_gets_two_ids(self):
        task = _task(0)
        registry = TaskRegistry(task, task)
        assert registry.count() == 2
        assert len(set(registry.tasks_copy())) == 2

    def test_remove_known_and_unknown(self):
        registry = TaskRegistry(_task(0, "a"), _task(10, "b"))
        a_id = _id_of(registry, "a")
        assert registry.remove(a_id, "missing") is True
        assert registry.count() == 1
        assert a_id not in registry
        assert registry.remove("missing") is False
        _assert_partition(registry)

    def test_remove_without_ids_changes_nothing(self):
        registry = TaskRegistry(_task(0))
        assert registry.remove() is False
        assert registry.count() == 1


class TestIdGeneration:
    def test_ids_have_configured_length(self):
        registry = TaskRegistry(_task(0), _task(1), id_length=16)
        assert all(len(task_id) == 16 for task_id in registry.tasks_copy())

    def test_ids_are_unique(self):
        registry = TaskRegistry(*[_task(i) for i in range(50)])
        assert len(registry.tasks_copy()) == 50

    def test_collision_is_retried(self):
        ids = iter(["aaa", "aaa", "aaa", "bbb"])
        registry = TaskRegistry(id_factory=lambda: next(ids))
        registry.insert(_task(0))
        registry.insert(_task(1))
        assert set(registry.tasks_copy()) == {"aaa", "bbb"}

    def test_stored_task_carries_its_id(self):
        registry = TaskRegistry(_task(0, "a"))
        task_id = _id_of(registry, "a")
        assert registry.get_tasks(task_id)[0].id == task_id

    def test_caller_task_is_not_mutated(self):
        task = _task(0)
        TaskRegistry(task)
        assert task.id == ""


# ─────────────────────────────────────────────────────────────────────────────
# Timeline
# ─────────────────────────────────────────────────────────────────────────────

class TestTimeline:
    def test_groups_by_exact_delay_ascending(self):
        registry = TaskRegistry(
            _task(300, "c"), _task(100, "a1"), _task(200, "b"), _task(100, "a2"),
        )
        timeline = registry.timeline()
        assert registry.timeline_length() == 3
        assert set(timeline[0]) == {_id_of(registry, "a1"), _id_of(registry, "a2")}
        assert timeline[1] == [_id_of(registry, "b")]
        assert timeline[2] == [_id_of(registry, "c")]
        _assert_partition(registry)

    def test_equal_execution_time_with_different_delays_is_two_groups(self):
        when = _BASE + timedelta(seconds=10)
        early = Task(when, _noop, creation_time=_BASE)
        late = Task(when, _noop, creation_time=_BASE + timedelta(seconds=5))
        registry = TaskRegistry(early, late)
        assert registry.timeline_length() == 2

    def test_past_execution_clamps_to_zero_delay(self):
        past = Task(_BASE - timedelta(seconds=30), _noop, creation_time=_BASE)
        immediate = _task(0)
        registry = TaskRegistry(past, immediate)
        assert registry.timeline_length() == 1

    def test_rebuilt_after_remove(self):
        registry = TaskRegistry(_task(100, "a"), _task(200, "b"))
        registry.remove(_id_of(registry, "a"))
        assert registry.next_ids() == [_id_of(registry, "b")]
        assert registry.timeline_length() == 1

    def test_removing_everything_empties_timeline(self):
        registry = TaskRegistry(_task(1), _task(2))
        registry.remove(*registry.tasks_copy())
        assert registry.timeline() == []
        assert registry.next_ids() == []

    def test_timeline_is_a_copy(self):
        registry = TaskRegistry(_task(0))
        registry.timeline()[0].append("injected")
        registry.next_ids().append("injected")
        assert "injected" not in registry.timeline()[0]


# ─────────────────────────────────────────────────────────────────────────────
# Queries
# ─────────────────────────────────────────────────────────────────────────────

class TestQueries:
    def test_get_tasks_keeps_argument_order_and_skips_misses(self):
        registry = TaskRegistry(_task(0, "a"), _task(1, "b"))
        a_id, b_id = _id_of(registry, "a"), _id_of(registry, "b")
        found = registry.get_tasks(b_id, "missing", a_id)
        assert [t.name for t in found] == ["b", "a"]

    def test_returned_tasks_are_copies(self):
        registry = TaskRegistry(_task(0, "a"))
        a_id = _id_of(registry, "a")
        registry.get_tasks(a_id)[0].name = "mutated"
        registry.tasks_copy()[a_id].name = "mutated"
        assert registry.get_tasks(a_id)[0].name == "a"

    def test_inserted_task_is_copied_in(self):
        task = _task(0, "before")
        registry = TaskRegistry(task)
        task.name = "after"
        assert [t.name for t in registry.tasks_copy().values()] == ["before"]

    def test_ids_follow_insertion_order(self):
        registry = TaskRegistry(_task(50, "late"), _task(0, "early"))
        assert registry.ids() == [_id_of(registry, "late"), _id_of(registry, "early")]
        registry.ids().clear()
        assert registry.count() == 2

    def test_tasks_at_and_next_tasks(self):
        registry = TaskRegistry(_task(0, "first"), _task(50, "second"))
        assert [t.name for t in registry.next_tasks()] == ["first"]
        assert [t.name for t in registry.tasks_at(1)] == ["second"]

    @pytest.mark.parametrize("index", [-1, 2, 10])
    def test_tasks_at_out_of_range(self, index):
        registry = TaskRegistry(_task(0), _task(50))
        with pytest.raises(TimelineIndexError) as exc_info:
            registry.tasks_at(index)
        assert exc_info.value.length == 2

    def test_next_tasks_on_empty_registry_raises(self):
        with pytest.raises(IndexError):
            TaskRegistry().next_tasks()

    @pytest.mark.parametrize("index", ["0", 0.0, None, True])
    def test_tasks_at_rejects_non_integers(self, index):
        registry = TaskRegistry(_task(0))
        with pytest.raises(InvalidArgumentError):
            registry.tasks_at(index)


# ─────────────────────────────────────────────────────────────────────────────
# Search
# ─────────────────────────────────────────────────────────────────────────────

class TestFindByName:
    @pytest.fixture
    def registry(self):
        return TaskRegistry(
            _task(0, "Daily Report"), _task(10, "weekly report"), _task(20, "backup"), _task(30),
        )

    def test_case_sensitive_substring(self, registry):
        found = registry.find_by_name("report")
        assert [t.name for t in found.tasks_copy().values()] == ["weekly report"]

    def test_case_insensitive(self, registry):
        found = registry.find_by_name("REPORT", case_sensitive=False)
        assert {t.name for t in found.tasks_copy().values()} == {"Daily Report", "weekly report"}

    def test_empty_search_skips_unnamed_tasks(self, registry):
        assert registry.find_by_name("").count() == 3

    def test_no_match_is_empty_snapshot(self, registry):
        found = registry.find_by_name("nothing")
        assert found.count() == 0
        assert found.timeline() == []

    def test_snapshot_keeps_ids_and_is_organized(self, registry):
        found = registry.find_by_name("report", case_sensitive=False)
        assert set(found.tasks_copy()) <= set(registry.tasks_copy())
        _assert_partition(found)
        assert found.timeline_length() == 2

    def test_snapshot_is_independent(self, registry):
        found = registry.find_by_name("backup")
        found.remove(*found.tasks_copy())
        assert registry.count() == 4


class TestFindWithinTimeframe:
    @pytest.fixture
    def registry(self):
        return TaskRegistry(
            _task(0, "t0"),
            _task(1000, "t1"),
            _task(2000, "t2"),
            _task(0, "late", created=_BASE + timedelta(hours=1)),
        )

    def test_execution_window_is_inclusive(self, registry):
        found = registry.find_within_execution_timeframe(
            _BASE + timedelta(seconds=1), _BASE + timedelta(seconds=2),
        )
        assert {t.name for t in found.tasks_copy().values()} == {"t1", "t2"}

    def test_creation_window(self, registry):
        found = registry.find_within_creation_timeframe(_BASE, _BASE)
        assert {t.name for t in found.tasks_copy().values()} == {"t0", "t1", "t2"}

    def test_field_as_string(self, registry):
        found = registry.find_within_timeframe(
            _BASE + timedelta(minutes=30), _BASE + timedelta(hours=2), "creation",
        )
        assert [t.name for t in found.tasks_copy().values()] == ["late"]

    def test_inverted_window_is_empty(self, registry):
        found = registry.find_within_timeframe(_BASE + timedelta(hours=1), _BASE)
        assert found.count() == 0

    def test_other_time_zones_are_compared_in_utc(self, registry):
        plus_two = timezone(timedelta(hours=2))
        start = (_BASE + timedelta(seconds=2)).astimezone(plus_two)
        found = registry.find_within_timeframe(start, start, TimeField.EXECUTION)
        assert [t.name for t in found.tasks_copy().values()] == ["t2"]

    @pytest.mark.parametrize("start, end", [("2030-01-01", _BASE), (_BASE, 12345)])
    def test_non_datetime_bounds_rejected(self, registry, start, end):
        with pytest.raises(InvalidArgumentError):
            registry.find_within_timeframe(start, end)

    def test_unknown_field_rejected(self, registry):
        with pytest.raises(InvalidArgumentError) as exc_info:
            registry.find_within_timeframe(_BASE, _BASE, "modified")
        assert exc_info.value.argument == "field"


# ─────────────────────────────────────────────────────────────────────────────
# Copy / dump
# ─────────────────────────────────────────────────────────────────────────────

class TestCopyAndDump:
    def test_copy_is_deep_for_tasks_and_timeline(self):
        registry = TaskRegistry(_task(0, "a"), _task(10, "b"))
        clone = registry.copy()
        assert clone.timeline() == registry.timeline()
        clone.remove(_id_of(clone, "a"))
        assert registry.count() == 2
        assert clone.count() == 1

    def test_copy_keeps_custom_id_factory(self):
        ids = iter(["x1", "x2", "x3"])
        registry = TaskRegistry(_task(0), id_factory=lambda: next(ids))
        clone = registry.copy()
        clone.insert(_task(1))
        assert set(clone.tasks_copy()) == {"x1", "x2"}

    def test_to_dict(self):
        registry = TaskRegistry(_task(0, "a"))
        a_id = _id_of(registry, "a")
        dump = registry.to_dict()
        assert dump["timeline"] == [[a_id]]
        assert dump["tasks"][a_id]["name"] == "a"

    def test_repr(self):
        assert repr(TaskRegistry(_task(0), _task(1))) == "TaskRegistry(tasks=2, groups=2)"
