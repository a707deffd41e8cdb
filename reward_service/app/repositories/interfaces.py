from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Protocol

from ..models.action_token import ActionKind, ActionToken
from ..models.ledger import CommissionRecord, WithdrawalRecord
from ..models.task import Task, TaskCompletion
from ..models.user import User


class UserRepositoryInterface(Protocol):
    """UserRepository가 따라야 할 최소한의 계약.

    Service 레이어는 이 인터페이스에만 의존하고, 구체 저장소(REST, Mongo)는 몰라도 된다.
    """

    def find_by_id(self, user_id: int) -> User | None:  # pragma: no cover - Protocol
        ...

    def insert(self, user: User) -> User:  # pragma: no cover - Protocol
        ...

    def update_fields(
        self, user_id: int, values: Mapping[str, Any]
    ) -> int:  # pragma: no cover - Protocol
        ...

    def update_if(
        self,
        user_id: int,
        expected: Mapping[str, Any],
        values: Mapping[str, Any],
    ) -> int:  # pragma: no cover - Protocol
        """expected 의 모든 컬럼 값이 일치할 때만 갱신하고, 갱신된 행 수를 반환한다."""
        ...

    def count_referrals(self, referrer_id: int) -> int:  # pragma: no cover - Protocol
        ...


class ActionTokenRepositoryInterface(Protocol):
    """temp_actions 에 대한 계약.

    - (user_id, action_type, action_id) 조합으로 유일하게 식별한다.
    - delete 의 반환값(삭제된 행 수)이 토큰 소비 성공 여부다.
    """

    def create(self, token: ActionToken) -> ActionToken:  # pragma: no cover - Protocol
        ...

    def find(
        self, user_id: int, kind: ActionKind, value: str
    ) -> ActionToken | None:  # pragma: no cover - Protocol
        ...

    def delete(
        self, user_id: int, kind: ActionKind, value: str
    ) -> int:  # pragma: no cover - Protocol
        ...

    def delete_created_before(
        self, cutoff: datetime
    ) -> int:  # pragma: no cover - Protocol
        ...


class TaskRepositoryInterface(Protocol):
    def find_by_id(self, task_id: int) -> Task | None:  # pragma: no cover - Protocol
        ...

    def list_active(self) -> list[Task]:  # pragma: no cover - Protocol
        ...

    def update_participants(
        self,
        task_id: int,
        expected_current: int,
        new_current: int,
        *,
        deactivate: bool,
    ) -> int:  # pragma: no cover - Protocol
        """current_users 가 expected_current 인 활성 태스크만 갱신한다."""
        ...

    def has_completion(
        self, user_id: int, task_id: int
    ) -> bool:  # pragma: no cover - Protocol
        ...

    def completed_task_ids(self, user_id: int) -> set[int]:  # pragma: no cover - Protocol
        ...

    def record_completion(
        self, completion: TaskCompletion
    ) -> bool:  # pragma: no cover - Protocol
        """완료 기록을 추가한다. 이미 (user_id, task_id) 기록이 있으면 False."""
        ...


class WithdrawalRepositoryInterface(Protocol):
    def create(
        self, record: WithdrawalRecord
    ) -> WithdrawalRecord:  # pragma: no cover - Protocol
        ...

    def list_recent(
        self, user_id: int, limit: int
    ) -> list[WithdrawalRecord]:  # pragma: no cover - Protocol
        ...


class CommissionRepositoryInterface(Protocol):
    def create(
        self, record: CommissionRecord
    ) -> CommissionRecord:  # pragma: no cover - Protocol
        ...

    def claim(self, record: CommissionRecord) -> bool:  # pragma: no cover - Protocol
        ...

    def release(self, event_id: str) -> int:  # pragma: no cover - Protocol
        ...
