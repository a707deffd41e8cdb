from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True, slots=True)
class RewardResult:
    """보상 지급 결과. 응답 data 로 그대로 직렬화된다."""

    new_balance: Decimal
    actual_reward: Decimal
    new_ads_count: int | None = None
    new_spins_count: int | None = None
    prize_index: int | None = None
    new_current_users: int | None = None


@dataclass(frozen=True, slots=True)
class WithdrawalResult:
    new_balance: Decimal


@dataclass(frozen=True, slots=True)
class CommissionRequest:
    """비동기 커미션 적립 요청 (백그라운드 워커로 전달되는 메시지)."""

    referrer_id: int
    referee_id: int
    source_reward: Decimal
    reason: str = ""
    # 재전달된 같은 요청을 한 번만 적립하기 위한 키. 없으면 적용 시점에 새로 만든다.
    event_id: str | None = None


@dataclass(frozen=True, slots=True)
class CommissionOutcome:
    """커미션 적용 결과. credited 가 False 면 skipped_reason 에 사유가 담긴다."""

    credited: bool
    amount: Decimal = Decimal("0")
    new_referrer_balance: Decimal | None = None
    skipped_reason: str | None = None
