from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from common.types.datetime import UtcDateTime
from common.types.money import Money

from .ledger import WithdrawalRecord


class User(BaseModel):
    """users 테이블과 1:1 로 매핑되는 유저 도메인 모델.

    - id 는 Telegram user id 를 그대로 사용한다.
    - referrer_id 는 생성 시 한 번만 설정되며 이후 변경되지 않는다 (컬럼명 ref_by).
    - last_activity 는 rate limit 판단에만 사용한다.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int
    balance: Money = Decimal("0")
    is_banned: bool = False
    ads_watched_today: int = 0
    spins_today: int = 0
    ads_limit_reached_at: UtcDateTime | None = None
    spins_limit_reached_at: UtcDateTime | None = None
    referrer_id: int | None = Field(default=None, alias="ref_by")
    last_activity: UtcDateTime | None = None
    task_completed: bool = False


class UserSnapshot(BaseModel):
    """getUserData 응답용 유저 요약."""

    id: int
    balance: Money
    is_banned: bool
    ads_watched_today: int
    spins_today: int
    referrer_id: int | None = Field(serialization_alias="ref_by")
    task_completed: bool
    referrals_count: int
    withdrawal_history: list[WithdrawalRecord]
