"""출금 요청과 커미션 감사 기록 (append-only)."""

from __future__ import annotations

from pydantic import BaseModel

from common.types.datetime import UtcDateTime
from common.types.money import Money


WITHDRAWAL_STATUS_PENDING = "pending"


class WithdrawalRecord(BaseModel):
    """출금 요청 기록. status 는 외부에서 처리되며 이 서비스는 pending 으로만 생성한다."""

    id: int | str | None = None
    user_id: int
    binance_id: str
    amount: Money
    status: str = WITHDRAWAL_STATUS_PENDING
    created_at: UtcDateTime | None = None


class CommissionRecord(BaseModel):
    """커미션 감사 기록. 재계산에는 사용하지 않으며, 추천인 잔액이 기준값이다.

    event_id 는 unique 이며 같은 요청의 중복 적립을 막는 선점 키로 쓰인다.
    """

    referrer_id: int
    referee_id: int
    amount: Money
    source_reward: Money
    event_id: str | None = None
    created_at: UtcDateTime | None = None
