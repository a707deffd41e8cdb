from __future__ import annotations

from fastapi import Depends

from common.recordstore.client import get_record_store
from common.recordstore.interfaces import RecordStoreInterface

from ..exceptions import ForbiddenError, NotFoundError
from ..models.task import TaskView
from ..repositories.interfaces import TaskRepositoryInterface, UserRepositoryInterface
from ..repositories.task_repository import TaskRepository
from ..repositories.user_repository import UserRepository


class TasksService:
    """참여 가능한 동적 태스크 목록 조회."""

    def __init__(
        self,
        user_repo: UserRepositoryInterface,
        task_repo: TaskRepositoryInterface,
    ) -> None:
        self._user_repo = user_repo
        self._task_repo = task_repo

    def get_new_tasks(self, user_id: int) -> list[TaskView]:
        """활성 상태이고 정원이 남은 태스크를, 유저의 완료 여부와 함께 반환한다."""
        user = self._user_repo.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        if user.is_banned:
            raise ForbiddenError("User is banned.")

        completed = self._task_repo.completed_task_ids(user_id)
        return [
            TaskView(
                id=task.id,
                task_name=task.task_name,
                task_url=task.task_url,
                task_reward=task.task_reward,
                max_users=task.max_users,
                current_users=task.current_users,
                is_completed=task.id in completed,
            )
            for task in self._task_repo.list_active()
            if task.has_capacity
        ]


def get_tasks_service(
    store: RecordStoreInterface = Depends(get_record_store),
) -> TasksService:
    """FastAPI DI용 TasksService 팩토리."""

    return TasksService(UserRepository(store), TaskRepository(store))
