from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from common.types.datetime import UtcDateTime


class ActionKind(StrEnum):
    """보상 요청 종류. 값은 클라이언트/저장소가 사용하는 action_type 문자열이다."""

    AD_VIEW = "watchAd"
    PRE_SPIN = "preSpin"
    SPIN_RESULT = "spinResult"
    WITHDRAW = "withdraw"
    CHANNEL_TASK = "completeTask"
    TASK_COMPLETE = "completeNewTask"


class ActionToken(BaseModel):
    """일회용 액션 토큰 (temp_actions).

    소비되면 행을 즉시 삭제하므로, 재사용된 값은 살아있는 행과 절대 일치하지 않는다.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int | str | None = None
    user_id: int
    kind: ActionKind = Field(alias="action_type")
    value: str = Field(alias="action_id")
    created_at: UtcDateTime
