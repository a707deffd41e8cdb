"""응답 봉투 ``{"ok": true, "data": ...}`` 의 data 스키마."""

from __future__ import annotations

from pydantic import BaseModel

from common.types.money import Money

from ...models.reward import RewardResult
from ...models.task import TaskView


class MessageData(BaseModel):
    message: str


class ActionIdData(BaseModel):
    action_id: str


class RewardData(BaseModel):
    new_balance: Money
    actual_reward: Money
    new_ads_count: int | None = None
    new_spins_count: int | None = None
    prize_index: int | None = None
    new_current_users: int | None = None
    message: str | None = None

    @classmethod
    def from_result(cls, result: RewardResult, message: str | None = None) -> "RewardData":
        return cls(
            new_balance=result.new_balance,
            actual_reward=result.actual_reward,
            new_ads_count=result.new_ads_count,
            new_spins_count=result.new_spins_count,
            prize_index=result.prize_index,
            new_current_users=result.new_current_users,
            message=message,
        )


class WithdrawalData(BaseModel):
    new_balance: Money
    message: str


class TasksData(BaseModel):
    tasks: list[TaskView]


class CommissionData(BaseModel):
    credited: bool
    amount: Money
    new_referrer_balance: Money | None = None
    reason: str | None = None
