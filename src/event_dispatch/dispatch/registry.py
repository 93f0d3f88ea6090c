"""In-memory registry of active dispatch tasks."""

from __future__ import annotations

from collections.abc import Iterator

from event_dispatch.dispatch.errors import DuplicateTaskIdError
from event_dispatch.dispatch.models import DispatchTask, Priority, TaskState

_TIERS_HIGH_FIRST = tuple(sorted(Priority, reverse=True))


class TaskRegistry:
    """Active tasks indexed by id and grouped by priority tier.

    Pure bookkeeping: nothing here delivers, arms timers or changes task state.
    Callers serialize access (the engine lock).
    """

    def __init__(self) -> None:
        self._tiers: dict[Priority, dict[str, DispatchTask]] = {tier: {} for tier in Priority}
        self._index: dict[str, DispatchTask] = {}

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._index

    def insert(self, task: DispatchTask) -> None:
        if task.task_id in self._index:
            raise DuplicateTaskIdError(task.task_id)
        self._index[task.task_id] = task
        self._tiers[task.priority][task.task_id] = task

    def remove(self, task_id: str) -> DispatchTask | None:
        task = self._index.pop(task_id, None)
        if task is not None:
            self._tiers[task.priority].pop(task_id, None)
        return task

    def find(self, task_id: str) -> DispatchTask | None:
        return self._index.get(task_id)

    def count_all(self) -> int:
        return len(self._index)

    def count_by_priority(self, priority: Priority) -> int:
        return len(self._tiers[priority])

    def remove_by_marker(self, marker: str) -> list[DispatchTask]:
        matched = [task for task in self._index.values() if task.marker == marker]
        for task in matched:
            self.remove(task.task_id)
        return matched

    def remove_by_priority(self, priority: Priority) -> list[DispatchTask]:
        removed = list(self._tiers[priority].values())
        for task in removed:
            del self._index[task.task_id]
        self._tiers[priority] = {}
        return removed

    def remove_all(self) -> list[DispatchTask]:
        removed = [task for tier in _TIERS_HIGH_FIRST for task in self._tiers[tier].values()]
        self._index.clear()
        for tier in Priority:
            self._tiers[tier] = {}
        return removed

    def list_scheduled(self) -> list[DispatchTask]:
        return list(self.iter_in_state(TaskState.SCHEDULED))

    def iter_in_state(self, state: TaskState) -> Iterator[DispatchTask]:
        """Yield tasks in ``state``, highest priority tier first."""

        for tier in _TIERS_HIGH_FIRST:
            for task in list(self._tiers[tier].values()):
                if task.state is state:
                    yield task
