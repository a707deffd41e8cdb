from __future__ import annotations

from pydantic import BaseModel

from common.types.datetime import UtcDateTime
from common.types.money import Money


class Task(BaseModel):
    """외부에서 관리되는 동적 태스크 (tasks_new).

    verify_channel 이 설정되어 있으면 완료 시 해당 채널 멤버십을 확인한다.
    """

    id: int
    task_name: str
    task_url: str
    task_reward: Money
    max_users: int
    current_users: int = 0
    is_active: bool = True
    verify_channel: str | None = None

    @property
    def has_capacity(self) -> bool:
        return self.current_users < self.max_users


class TaskCompletion(BaseModel):
    """유저-태스크 완료 기록 (user_tasks_new). (user_id, task_id) 당 하나."""

    user_id: int
    task_id: int
    created_at: UtcDateTime | None = None


class TaskView(BaseModel):
    """getNewTasks 응답 항목."""

    id: int
    task_name: str
    task_url: str
    task_reward: Money
    max_users: int
    current_users: int
    is_completed: bool
