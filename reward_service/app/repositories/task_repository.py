"""tasks_new / user_tasks_new 레포지토리."""

from __future__ import annotations

from common.recordstore.interfaces import (
    RecordStoreError,
    RecordStoreInterface,
    select_one,
)
from common.recordstore.query import Query

from .interfaces import TaskRepositoryInterface
from ..models.task import Task, TaskCompletion


TASKS = "tasks_new"
TASK_COMPLETIONS = "user_tasks_new"

# unique 제약 위반 (PostgREST, Mongo 모두 409 로 매핑됨)
_CONFLICT_STATUS = 409


class TaskRepository(TaskRepositoryInterface):
    def __init__(self, store: RecordStoreInterface) -> None:
        self._store = store

    def find_by_id(self, task_id: int) -> Task | None:
        row = select_one(self._store, TASKS, Query().eq("id", task_id))
        if row is None:
            return None
        return Task.model_validate(row)

    def list_active(self) -> list[Task]:
        rows = self._store.select(
            TASKS, Query().eq("is_active", True).order("id")
        )
        return [Task.model_validate(row) for row in rows]

    def update_participants(
        self,
        task_id: int,
        expected_current: int,
        new_current: int,
        *,
        deactivate: bool,
    ) -> int:
        values: dict[str, object] = {"current_users": new_current}
        if deactivate:
            values["is_active"] = False
        query = (
            Query()
            .eq("id", task_id)
            .eq("is_active", True)
            .eq("current_users", expected_current)
        )
        return self._store.update(TASKS, query, values)

    def has_completion(self, user_id: int, task_id: int) -> bool:
        row = select_one(
            self._store,
            TASK_COMPLETIONS,
            Query().eq("user_id", user_id).eq("task_id", task_id).select("task_id"),
        )
        return row is not None

    def completed_task_ids(self, user_id: int) -> set[int]:
        rows = self._store.select(
            TASK_COMPLETIONS, Query().eq("user_id", user_id).select("task_id")
        )
        return {int(row["task_id"]) for row in rows}

    def record_completion(self, completion: TaskCompletion) -> bool:
        try:
            self._store.insert(TASK_COMPLETIONS, completion.model_dump())
        except RecordStoreError as exc:
            if exc.status_code == _CONFLICT_STATUS:
                return False
            raise
        return True
