from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from fastapi import Depends

from common.recordstore.client import get_record_store
from common.recordstore.interfaces import RecordStoreError, RecordStoreInterface
from common.types.datetime import utcnow

from ..config import AppConfig, RewardPolicy, get_config
from ..exceptions import ForbiddenError, NotFoundError
from ..models.user import User, UserSnapshot
from ..repositories.interfaces import (
    UserRepositoryInterface,
    WithdrawalRepositoryInterface,
)
from ..repositories.user_repository import UserRepository
from ..repositories.withdrawal_repository import WithdrawalRepository
from .daily_limit_service import DailyLimitService


logger = logging.getLogger(__name__)


class UsersService:
    """유저 등록 및 프로필 조회 비즈니스 로직."""

    def __init__(
        self,
        user_repo: UserRepositoryInterface,
        withdrawal_repo: WithdrawalRepositoryInterface,
        limits: DailyLimitService,
        policy: RewardPolicy,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._user_repo = user_repo
        self._withdrawal_repo = withdrawal_repo
        self._limits = limits
        self._policy = policy
        self._clock = clock

    def register(self, user_id: int, ref_by: int | None = None) -> bool:
        """처음 보는 유저면 생성하고 True, 이미 있으면 False.

        ref_by 는 생성 시점에만 기록하며, 기존 유저의 추천인은 절대 바꾸지 않는다.
        """
        existing = self._user_repo.find_by_id(user_id)
        if existing is not None:
            self._ensure_not_banned(existing)
            return False

        referrer_id = ref_by if ref_by and ref_by != user_id else None
        user = User(id=user_id, referrer_id=referrer_id, last_activity=self._clock())
        try:
            self._user_repo.insert(user)
        except RecordStoreError as exc:
            if exc.status_code != 409:
                raise
            # 동시에 들어온 다른 등록 요청이 먼저 생성했다.
            existing = self._user_repo.find_by_id(user_id)
            if existing is None:
                raise
            self._ensure_not_banned(existing)
            return False

        logger.info("new user registered", extra={"user_id": user_id})
        return True

    def get_user_data(self, user_id: int) -> UserSnapshot:
        user = self._user_repo.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")

        # 표시 전에 쿨다운이 끝난 한도를 먼저 풀어준다.
        user = self._limits.reset_if_expired(user)

        return UserSnapshot(
            id=user.id,
            balance=user.balance,
            is_banned=user.is_banned,
            ads_watched_today=user.ads_watched_today,
            spins_today=user.spins_today,
            referrer_id=user.referrer_id,
            task_completed=user.task_completed,
            referrals_count=self._user_repo.count_referrals(user_id),
            withdrawal_history=self._withdrawal_repo.list_recent(
                user_id, self._policy.withdrawal_history_limit
            ),
        )

    @staticmethod
    def _ensure_not_banned(user: User) -> None:
        if user.is_banned:
            raise ForbiddenError("User is banned.")


def get_users_service(
    store: RecordStoreInterface = Depends(get_record_store),
    config: AppConfig = Depends(get_config),
) -> UsersService:
    """FastAPI DI용 UsersService 팩토리."""

    user_repo = UserRepository(store)
    return UsersService(
        user_repo,
        WithdrawalRepository(store),
        DailyLimitService(user_repo, config.policy),
        config.policy,
    )
