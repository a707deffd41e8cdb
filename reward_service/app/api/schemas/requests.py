"""POST /api 요청 바디 스키마.

모든 요청 종류가 하나의 바디를 공유하고, ``type`` 으로 처리할 동작을 고른다.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class ActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str | None = None
    init_data: str | None = Field(default=None, alias="initData")
    user_id: int | None = None

    # generateActionId
    action_type: str | None = None
    # 보상 요청 공통 (일회용 토큰 값)
    action_id: str | None = None
    # register
    ref_by: int | None = None
    # completeNewTask
    task_id: int | None = None
    # withdraw
    binance_id: str | None = Field(default=None, alias="binanceId")
    amount: Decimal | None = None
    # commission (서버 간 호출)
    referrer_id: int | None = None
    referee_id: int | None = None
    source_reward: Decimal | None = None
