"""추천인 커미션 관련 이벤트 정의."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Self


class CommissionEventType:
    """커미션 이벤트 타입 상수."""

    COMMISSION_REQUESTED = "commission.requested"


@dataclass(slots=True)
class CommissionRequestedEvent:
    """커미션 적립 요청 이벤트.

    피추천인이 보상을 받으면 발행되고, 커미션 컨슈머가 추천인 잔액에 반영한다.
    source_reward 는 정밀도 보존을 위해 문자열(Decimal 표현)로 전달한다.
    """

    id: str
    type: str
    timestamp: str
    source: str
    version: str
    referrer_id: int
    referee_id: int
    source_reward: str
    reason: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            timestamp=str(data["timestamp"]),
            source=str(data["source"]),
            version=str(data.get("version", "1.0")),
            referrer_id=int(data["referrer_id"]),
            referee_id=int(data["referee_id"]),
            source_reward=str(data["source_reward"]),
            reason=str(data.get("reason", "")),
        )
