"""유저별 보상 요청 최소 간격 제한.

check 는 읽기 전용 검사이고, 실제 last_activity 기록은 보상 변경과 함께 touch 로 한 번에 한다.
touch 는 check 시점에 읽은 last_activity 를 조건으로 거는 조건부 갱신이라,
같은 유저의 동시 요청 중 하나만 기록에 성공한다.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from common.types.datetime import utcnow

from ..config import RewardPolicy
from ..exceptions import NotFoundError, RateLimitError
from ..models.user import User
from ..repositories.interfaces import UserRepositoryInterface


logger = logging.getLogger(__name__)


class StaleUserError(Exception):
    """touch 조건 중 balance 만 바뀐 경우 (예: 커미션 적립). 최신 유저로 다시 계산해야 한다."""

    def __init__(self, current: User) -> None:
        super().__init__(f"user {current.id} changed concurrently")
        self.current = current


def _remaining_ms(interval: timedelta, elapsed: timedelta) -> int:
    return max(0, math.ceil((interval - elapsed).total_seconds() * 1000))


class RateLimiter:
    def __init__(
        self,
        user_repo: UserRepositoryInterface,
        policy: RewardPolicy,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._user_repo = user_repo
        self._interval = policy.min_action_interval
        self._clock = clock

    def check(self, user: User) -> None:
        """마지막 활동 이후 최소 간격이 지나지 않았으면 RateLimitError."""
        if user.last_activity is None:
            return
        elapsed = self._clock() - user.last_activity
        if elapsed < self._interval:
            raise RateLimitError(_remaining_ms(self._interval, elapsed))

    def touch(self, user: User, changes: Mapping[str, Any]) -> User:
        """changes 와 새 last_activity 를 하나의 조건부 갱신으로 기록하고 갱신된 유저를 반환한다.

        - 조건: id, 읽은 last_activity (changes 에 balance 가 있으면 읽은 balance 도)
        - 다른 요청이 먼저 활동을 기록했으면 RateLimitError
        - balance 만 바뀌었으면 StaleUserError (호출자가 최신 값으로 재시도)
        """
        now = self._clock()
        expected: dict[str, Any] = {"last_activity": user.last_activity}
        if "balance" in changes:
            expected["balance"] = user.balance
        values = {**changes, "last_activity": now}

        if self._user_repo.update_if(user.id, expected, values):
            return user.model_copy(update=values)

        current = self._user_repo.find_by_id(user.id)
        if current is None:
            raise NotFoundError("User not found.")
        if current.last_activity != user.last_activity:
            logger.warning(
                "concurrent activity detected, rejecting write",
                extra={"user_id": user.id},
            )
            elapsed = now - current.last_activity if current.last_activity else self._interval
            raise RateLimitError(_remaining_ms(self._interval, elapsed))
        raise StaleUserError(current)
