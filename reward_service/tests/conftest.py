"""reward_service 테스트 공용 가짜 구현과 fixture."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

import pytest

from common.recordstore.interfaces import RecordStoreError, Row
from common.recordstore.query import Condition, Operator, Query

from reward_service.app.config import RewardPolicy
from reward_service.app.models.action_token import ActionKind
from reward_service.app.models.reward import CommissionRequest
from reward_service.app.models.task import Task
from reward_service.app.models.user import User
from reward_service.app.repositories.action_token_repository import ActionTokenRepository
from reward_service.app.repositories.commission_repository import CommissionRepository
from reward_service.app.repositories.task_repository import TaskRepository
from reward_service.app.repositories.user_repository import UserRepository
from reward_service.app.repositories.withdrawal_repository import WithdrawalRepository
from reward_service.app.services.action_token_service import ActionTokenService
from reward_service.app.services.commission_service import CommissionService
from reward_service.app.services.daily_limit_service import DailyLimitService
from reward_service.app.services.ledger_service import LedgerService
from reward_service.app.services.rate_limiter import RateLimiter
from reward_service.app.services.reward_service import RewardService
from reward_service.app.services.tasks_service import TasksService
from reward_service.app.services.users_service import UsersService


START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

# 실제 테이블의 unique 제약과 같은 키
UNIQUE_KEYS: dict[str, tuple[str, ...]] = {
    "users": ("id",),
    "tasks_new": ("id",),
    "temp_actions": ("user_id", "action_type", "action_id"),
    "user_tasks_new": ("user_id", "task_id"),
    "commission_history": ("event_id",),
}


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _matches(row: Row, condition: Condition) -> bool:
    actual = row.get(condition.column)
    op = condition.op
    if op is Operator.IS_NULL:
        return actual is None
    if op is Operator.NOT_IN:
        return actual not in condition.value
    if op is Operator.EQ:
        return actual == condition.value
    if op is Operator.NEQ:
        return actual != condition.value
    if actual is None:
        return False
    if op is Operator.LT:
        return actual < condition.value
    if op is Operator.LTE:
        return actual <= condition.value
    if op is Operator.GT:
        return actual > condition.value
    return actual >= condition.value


class InMemoryRecordStore:
    """Query 의미를 그대로 따르는 메모리 레코드 저장소. unique 위반은 409 로 보고한다."""

    def __init__(self) -> None:
        self.tables: dict[str, list[Row]] = defaultdict(list)
        self.update_calls: list[tuple[str, Row]] = []
        self.closed = False

    def rows(self, collection: str) -> list[Row]:
        return self.tables[collection]

    def insert(self, collection: str, row: Row) -> Row:
        keys = UNIQUE_KEYS.get(collection)
        if keys and any(
            all(existing.get(k) == row.get(k) for k in keys)
            for existing in self.tables[collection]
        ):
            raise RecordStoreError(
                "duplicate key value violates unique constraint", status_code=409
            )
        stored = dict(row)
        self.tables[collection].append(stored)
        return dict(stored)

    def _where(self, collection: str, query: Query) -> list[Row]:
        return [
            row
            for row in self.tables[collection]
            if all(_matches(row, cond) for cond in query.conditions)
        ]

    def select(self, collection: str, query: Query) -> list[Row]:
        rows = self._where(collection, query)
        for order in reversed(query.ordering):
            rows = sorted(rows, key=lambda r: r[order.column], reverse=order.descending)
        if query.limit is not None:
            rows = rows[: query.limit]
        if query.columns:
            return [{c: row.get(c) for c in query.columns} for row in rows]
        return [dict(row) for row in rows]

    def update(self, collection: str, query: Query, values: Row) -> int:
        matched = self._where(collection, query)
        for row in matched:
            row.update(values)
        self.update_calls.append((collection, dict(values)))
        return len(matched)

    def delete(self, collection: str, query: Query) -> int:
        matched = {id(row) for row in self._where(collection, query)}
        self.tables[collection] = [
            row for row in self.tables[collection] if id(row) not in matched
        ]
        return len(matched)

    def close(self) -> None:
        self.closed = True


class RecordingDispatcher:
    def __init__(self) -> None:
        self.submitted: list[CommissionRequest] = []
        self.raise_error: Exception | None = None

    def start(self) -> None:
        return None

    def submit(self, request: CommissionRequest) -> None:
        if self.raise_error is not None:
            raise self.raise_error
        self.submitted.append(request)

    def stop(self) -> None:
        return None


class FakeMembershipChecker:
    def __init__(self) -> None:
        self.members: set[tuple[int, str]] = set()
        self.calls: list[tuple[int, str]] = []

    def is_member(self, user_id: int, channel: str) -> bool:
        self.calls.append((user_id, channel))
        return (user_id, channel) in self.members


@dataclass
class RewardHarness:
    """실제 레포지토리/서비스를 메모리 저장소 위에 조립한 테스트 환경."""

    store: InMemoryRecordStore = field(default_factory=InMemoryRecordStore)
    clock: FakeClock = field(default_factory=FakeClock)
    policy: RewardPolicy = field(default_factory=RewardPolicy)
    membership: FakeMembershipChecker = field(default_factory=FakeMembershipChecker)
    dispatcher: RecordingDispatcher = field(default_factory=RecordingDispatcher)
    randbelow: Callable[[int], int] = lambda n: 0

    def __post_init__(self) -> None:
        self.user_repo = UserRepository(self.store)
        self.task_repo = TaskRepository(self.store)
        self.token_repo = ActionTokenRepository(self.store)
        self.withdrawal_repo = WithdrawalRepository(self.store)
        self.commission_repo = CommissionRepository(self.store)

        self.tokens = ActionTokenService(
            self.token_repo, self.user_repo, self.policy, clock=self.clock
        )
        self.rate_limiter = RateLimiter(self.user_repo, self.policy, clock=self.clock)
        self.limits = DailyLimitService(self.user_repo, self.policy, clock=self.clock)
        self.ledger = LedgerService(self.user_repo)
        self.rewards = RewardService(
            tokens=self.tokens,
            rate_limiter=self.rate_limiter,
            limits=self.limits,
            ledger=self.ledger,
            user_repo=self.user_repo,
            task_repo=self.task_repo,
            withdrawal_repo=self.withdrawal_repo,
            membership=self.membership,
            dispatcher=self.dispatcher,
            policy=self.policy,
            clock=self.clock,
            randbelow=lambda n: self.randbelow(n),
        )
        self.commissions = CommissionService(
            self.ledger, self.commission_repo, self.policy, clock=self.clock
        )
        self.users = UsersService(
            self.user_repo,
            self.withdrawal_repo,
            self.limits,
            self.policy,
            clock=self.clock,
        )
        self.tasks = TasksService(self.user_repo, self.task_repo)

    def seed_user(self, user_id: int, **fields: Any) -> User:
        user = User(id=user_id, **fields)
        self.store.insert("users", user.model_dump(by_alias=True))
        return user

    def seed_task(self, task_id: int, **fields: Any) -> Task:
        values: dict[str, Any] = {
            "task_name": f"task-{task_id}",
            "task_url": f"https://t.me/sponsor_{task_id}",
            "task_reward": Decimal("25"),
            "max_users": 10,
        }
        values.update(fields)
        task = Task(id=task_id, **values)
        self.store.insert("tasks_new", task.model_dump())
        return task

    def user_row(self, user_id: int) -> Row:
        rows = [row for row in self.store.rows("users") if row["id"] == user_id]
        assert len(rows) == 1
        return rows[0]

    def user(self, user_id: int) -> User:
        return User.model_validate(self.user_row(user_id))

    def task(self, task_id: int) -> Task:
        rows = [row for row in self.store.rows("tasks_new") if row["id"] == task_id]
        assert len(rows) == 1
        return Task.model_validate(rows[0])

    def issue(self, user_id: int, kind: ActionKind) -> str:
        return self.tokens.issue(user_id, kind).value


@pytest.fixture
def harness() -> RewardHarness:
    return RewardHarness()
