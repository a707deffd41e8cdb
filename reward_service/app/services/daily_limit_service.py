"""광고/스핀 일일 한도 관리.

한도는 자정 기준이 아니라 "한도에 도달한 시각" 기준으로 쿨다운(기본 6시간) 후 풀린다.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Callable

from common.types.datetime import utcnow

from ..config import RewardPolicy
from ..exceptions import ForbiddenError
from ..models.user import User
from ..repositories.interfaces import UserRepositoryInterface


logger = logging.getLogger(__name__)


class LimitKind(StrEnum):
    ADS = "ads"
    SPINS = "spins"


@dataclass(frozen=True, slots=True)
class _Counter:
    count_field: str
    stamp_field: str
    label: str


_COUNTERS: dict[LimitKind, _Counter] = {
    LimitKind.ADS: _Counter("ads_watched_today", "ads_limit_reached_at", "ad"),
    LimitKind.SPINS: _Counter("spins_today", "spins_limit_reached_at", "spin"),
}


class DailyLimitService:
    def __init__(
        self,
        user_repo: UserRepositoryInterface,
        policy: RewardPolicy,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._user_repo = user_repo
        self._policy = policy
        self._clock = clock

    def cap(self, kind: LimitKind) -> int:
        if kind is LimitKind.ADS:
            return self._policy.max_ads_per_cycle
        return self._policy.max_spins_per_cycle

    def reset_if_expired(self, user: User) -> User:
        """쿨다운이 지난 카운터를 0 으로 되돌리고, 반영된 유저를 반환한다.

        바뀐 필드만 기록하며, 초기화할 카운터가 없으면 저장소를 호출하지 않는다.
        """
        now = self._clock()
        changes: dict[str, Any] = {}
        for kind, counter in _COUNTERS.items():
            reached_at = getattr(user, counter.stamp_field)
            if reached_at is None:
                continue
            if getattr(user, counter.count_field) < self.cap(kind):
                continue
            if now - reached_at > self._policy.limit_cooldown:
                changes[counter.count_field] = 0
                changes[counter.stamp_field] = None
                logger.info(
                    "%s limit reset", counter.label, extra={"user_id": user.id}
                )

        if not changes:
            return user
        self._user_repo.update_fields(user.id, changes)
        return user.model_copy(update=changes)

    def ensure_available(self, user: User, kind: LimitKind) -> None:
        counter = _COUNTERS[kind]
        cap = self.cap(kind)
        if getattr(user, counter.count_field) >= cap:
            raise ForbiddenError(f"Daily {counter.label} limit ({cap}) reached.")

    def record(self, user: User, kind: LimitKind) -> dict[str, Any]:
        """카운터 증가분을 계산한다. 한도를 처음 넘는 순간에만 도달 시각을 기록한다."""
        counter = _COUNTERS[kind]
        current = getattr(user, counter.count_field)
        new_count = current + 1
        changes: dict[str, Any] = {counter.count_field: new_count}
        cap = self.cap(kind)
        if new_count >= cap and current < cap:
            changes[counter.stamp_field] = self._clock()
        return changes
