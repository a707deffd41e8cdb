"""보상 지급 엔진.

모든 보상 요청은 같은 순서를 따른다.

    토큰 소비 -> 유저 조회 -> 차단 확인 -> 한도 확인 -> 간격 확인 -> 변경 -> (비동기) 커미션

검사는 모두 변경 전에 끝나며, 처음 실패한 검사가 그대로 응답이 된다.
유저 행 변경은 RateLimiter.touch 의 조건부 갱신 한 번으로 기록한다.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from decimal import Decimal
from functools import lru_cache
from typing import Any, Callable, Sequence

from fastapi import Depends

from common.recordstore.client import get_record_store
from common.recordstore.interfaces import RecordStoreError, RecordStoreInterface
from common.telegram.membership import (
    MembershipCheckerInterface,
    TelegramMembershipChecker,
)
from common.types.datetime import utcnow

from ..config import AppConfig, RewardPolicy, get_config
from ..exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..models.action_token import ActionKind
from ..models.ledger import WithdrawalRecord
from ..models.reward import CommissionRequest, RewardResult, WithdrawalResult
from ..models.task import Task, TaskCompletion
from ..models.user import User
from ..repositories.action_token_repository import ActionTokenRepository
from ..repositories.interfaces import (
    TaskRepositoryInterface,
    UserRepositoryInterface,
    WithdrawalRepositoryInterface,
)
from ..repositories.task_repository import TaskRepository
from ..repositories.user_repository import UserRepository
from ..repositories.withdrawal_repository import WithdrawalRepository
from .action_token_service import ActionTokenService
from .commission_dispatcher import (
    CommissionDispatcherInterface,
    get_commission_dispatcher,
)
from .daily_limit_service import DailyLimitService, LimitKind
from .ledger_service import LedgerService
from .rate_limiter import RateLimiter, StaleUserError


logger = logging.getLogger(__name__)


MAX_WRITE_ATTEMPTS = 3
MAX_CAPACITY_ATTEMPTS = 5

NOT_A_MEMBER_MESSAGE = "User has not joined the required Telegram channel."


def pick_spin_prize(
    sectors: Sequence[Decimal],
    randbelow: Callable[[int], int] = secrets.randbelow,
) -> tuple[int, Decimal]:
    """상금 테이블에서 균등한 확률로 인덱스를 고른다. (index, prize) 반환."""
    index = randbelow(len(sectors))
    return index, sectors[index]


class RewardService:
    """광고, 스핀, 태스크, 출금 보상 규칙."""

    def __init__(
        self,
        *,
        tokens: ActionTokenService,
        rate_limiter: RateLimiter,
        limits: DailyLimitService,
        ledger: LedgerService,
        user_repo: UserRepositoryInterface,
        task_repo: TaskRepositoryInterface,
        withdrawal_repo: WithdrawalRepositoryInterface,
        membership: MembershipCheckerInterface,
        dispatcher: CommissionDispatcherInterface,
        policy: RewardPolicy,
        clock: Callable[[], datetime] = utcnow,
        randbelow: Callable[[int], int] = secrets.randbelow,
    ) -> None:
        self._tokens = tokens
        self._rate_limiter = rate_limiter
        self._limits = limits
        self._ledger = ledger
        self._user_repo = user_repo
        self._task_repo = task_repo
        self._withdrawal_repo = withdrawal_repo
        self._membership = membership
        self._dispatcher = dispatcher
        self._policy = policy
        self._clock = clock
        self._randbelow = randbelow

    # 광고 -------------------------------------------------------------------
    def watch_ad(self, user_id: int, action_id: str | None) -> RewardResult:
        self._tokens.consume(user_id, action_id, ActionKind.AD_VIEW)
        user = self._load_active_user(user_id)
        user = self._limits.reset_if_expired(user)
        self._limits.ensure_available(user, LimitKind.ADS)
        self._rate_limiter.check(user)

        reward = self._policy.ad_reward
        updated = self._commit(
            user,
            lambda current: {
                "balance": current.balance + reward,
                **self._limits.record(current, LimitKind.ADS),
            },
        )
        self._request_commission(updated, reward, ActionKind.AD_VIEW)
        return RewardResult(
            new_balance=updated.balance,
            actual_reward=reward,
            new_ads_count=updated.ads_watched_today,
        )

    # 스핀 -------------------------------------------------------------------
    def pre_spin(self, user_id: int, action_id: str | None) -> None:
        """스핀 애니메이션 전에 자격만 확인한다. 아무것도 기록하지 않는다."""
        self._tokens.consume(user_id, action_id, ActionKind.PRE_SPIN)
        self._ensure_can_spin(user_id)

    def spin_result(self, user_id: int, action_id: str | None) -> RewardResult:
        # pre_spin 의 검사 결과는 신뢰하지 않고 처음부터 다시 확인한다.
        self._tokens.consume(user_id, action_id, ActionKind.SPIN_RESULT)
        user = self._ensure_can_spin(user_id)

        prize_index, prize = pick_spin_prize(self._policy.spin_sectors, self._randbelow)
        updated = self._commit(
            user,
            lambda current: {
                "balance": current.balance + prize,
                **self._limits.record(current, LimitKind.SPINS),
            },
        )
        self._request_commission(updated, prize, ActionKind.SPIN_RESULT)
        return RewardResult(
            new_balance=updated.balance,
            actual_reward=prize,
            new_spins_count=updated.spins_today,
            prize_index=prize_index,
        )

    def _ensure_can_spin(self, user_id: int) -> User:
        user = self._load_active_user(user_id)
        user = self._limits.reset_if_expired(user)
        self._limits.ensure_available(user, LimitKind.SPINS)
        self._rate_limiter.check(user)
        return user

    # 채널 가입 태스크 -------------------------------------------------------------
    def complete_channel_task(self, user_id: int, action_id: str | None) -> RewardResult:
        """지정 채널 가입 1회성 태스크 (users.task_completed 로 중복 방지)."""
        self._tokens.consume(user_id, action_id, ActionKind.CHANNEL_TASK)
        user = self._load_active_user(user_id)
        if user.task_completed:
            raise ForbiddenError("Task already completed.")
        self._rate_limiter.check(user)
        if not self._membership.is_member(user_id, self._policy.required_channel):
            raise ValidationError(NOT_A_MEMBER_MESSAGE)

        reward = self._policy.channel_task_reward

        def build(current: User) -> dict[str, Any]:
            if current.task_completed:
                raise ForbiddenError("Task already completed.")
            return {"balance": current.balance + reward, "task_completed": True}

        updated = self._commit(user, build)
        self._request_commission(updated, reward, ActionKind.CHANNEL_TASK)
        return RewardResult(new_balance=updated.balance, actual_reward=reward)

    # 동적 태스크 -----------------------------------------------------------------
    def complete_task(
        self, user_id: int, task_id: int | None, action_id: str | None
    ) -> RewardResult:
        if task_id is None:
            raise ValidationError("Missing task_id in the request body.")

        self._tokens.consume(user_id, action_id, ActionKind.TASK_COMPLETE)
        user = self._load_active_user(user_id)

        task = self._task_repo.find_by_id(task_id)
        if task is None:
            raise NotFoundError("Task not found.")
        self._ensure_task_open(task)
        if self._task_repo.has_completion(user_id, task_id):
            raise ConflictError("Task already completed by user.")
        self._rate_limiter.check(user)
        if task.verify_channel and not self._membership.is_member(
            user_id, task.verify_channel
        ):
            raise ValidationError(NOT_A_MEMBER_MESSAGE)

        # 활동 기록을 먼저 남겨 같은 유저의 동시 요청을 막은 뒤, 정원 -> 완료 기록 -> 적립 순으로 진행한다.
        self._commit(user, lambda current: {})
        new_current = self._claim_slot(task)
        completion = TaskCompletion(
            user_id=user_id, task_id=task_id, created_at=self._clock()
        )
        if not self._task_repo.record_completion(completion):
            raise ConflictError("Task already completed by user.")

        new_balance = self._ledger.credit(user_id, task.task_reward)
        if new_balance is None:
            raise ForbiddenError("User is banned.")

        logger.info(
            "task %s completed (%d/%d)",
            task_id,
            new_current,
            task.max_users,
            extra={"user_id": user_id, "action": ActionKind.TASK_COMPLETE.value},
        )
        self._request_commission(user, task.task_reward, ActionKind.TASK_COMPLETE)
        return RewardResult(
            new_balance=new_balance,
            actual_reward=task.task_reward,
            new_current_users=new_current,
        )

    @staticmethod
    def _ensure_task_open(task: Task) -> None:
        if not task.is_active:
            raise ForbiddenError("Task is inactive.")
        if not task.has_capacity:
            raise ForbiddenError("Task has reached maximum user capacity.")

    def _claim_slot(self, task: Task) -> int:
        """current_users 를 조건부로 1 증가시키고, 정원이 차면 비활성화한다."""
        for _ in range(MAX_CAPACITY_ATTEMPTS):
            self._ensure_task_open(task)
            new_current = task.current_users + 1
            if self._task_repo.update_participants(
                task.id,
                task.current_users,
                new_current,
                deactivate=new_current >= task.max_users,
            ):
                return new_current

            refreshed = self._task_repo.find_by_id(task.id)
            if refreshed is None:
                raise NotFoundError("Task not found.")
            task = refreshed

        raise ConflictError("Task capacity update conflicted, please retry.")

    # 출금 -------------------------------------------------------------------
    def withdraw(
        self,
        user_id: int,
        action_id: str | None,
        amount: Decimal | None,
        binance_id: str | None,
    ) -> WithdrawalResult:
        self._tokens.consume(user_id, action_id, ActionKind.WITHDRAW)
        user = self._load_active_user(user_id)

        if amount is None or amount <= 0:
            raise ValidationError("Withdrawal amount must be greater than zero.")
        if amount < self._policy.min_withdrawal:
            raise ValidationError(
                f"Minimum withdrawal amount is {self._policy.min_withdrawal:,} SHIB."
            )
        if not binance_id:
            raise ValidationError("Missing binanceId in the request body.")
        if user.balance < amount:
            raise ValidationError("Insufficient balance.")
        self._rate_limiter.check(user)

        def build(current: User) -> dict[str, Any]:
            if current.balance < amount:
                raise ValidationError("Insufficient balance.")
            return {"balance": current.balance - amount}

        updated = self._commit(user, build)
        try:
            self._withdrawal_repo.create(
                WithdrawalRecord(
                    user_id=user_id,
                    binance_id=binance_id,
                    amount=amount,
                    created_at=self._clock(),
                )
            )
        except RecordStoreError:
            # 차감은 이미 반영되었다. 수동 정산을 위해 금액과 대상을 남긴다.
            logger.error(
                "withdrawal debited but record insert failed amount=%s binance_id=%s",
                amount,
                binance_id,
                extra={"user_id": user_id, "action": ActionKind.WITHDRAW.value},
            )
            raise

        logger.info(
            "withdrawal requested amount=%s",
            amount,
            extra={"user_id": user_id, "action": ActionKind.WITHDRAW.value},
        )
        return WithdrawalResult(new_balance=updated.balance)

    # 내부 util -------------------------------------------------------------
    def _load_active_user(self, user_id: int) -> User:
        user = self._user_repo.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        if user.is_banned:
            raise ForbiddenError("User is banned.")
        return user

    def _commit(self, user: User, build: Callable[[User], dict[str, Any]]) -> User:
        """build(user) 결과를 touch 로 기록한다.

        커미션 적립 등으로 balance 만 바뀐 경우 최신 유저로 다시 계산해 재시도한다.
        """
        for _ in range(MAX_WRITE_ATTEMPTS):
            try:
                return self._rate_limiter.touch(user, build(user))
            except StaleUserError as exc:
                user = exc.current
                if user.is_banned:
                    raise ForbiddenError("User is banned.") from exc
        raise ConflictError("Balance update conflicted, please retry.")

    def _request_commission(self, user: User, amount: Decimal, kind: ActionKind) -> None:
        if user.referrer_id is None:
            return
        try:
            self._dispatcher.submit(
                CommissionRequest(
                    referrer_id=user.referrer_id,
                    referee_id=user.id,
                    source_reward=amount,
                    reason=kind.value,
                )
            )
        except Exception:
            logger.exception(
                "failed to hand off commission", extra={"user_id": user.id}
            )


# -------- Dependencies --------


@lru_cache(maxsize=1)
def get_membership_checker() -> MembershipCheckerInterface:
    """FastAPI DI용 MembershipChecker 싱글톤."""

    return TelegramMembershipChecker(get_config().bot_token)


def get_action_token_service(
    store: RecordStoreInterface = Depends(get_record_store),
    config: AppConfig = Depends(get_config),
) -> ActionTokenService:
    """FastAPI DI용 ActionTokenService 팩토리."""

    return ActionTokenService(
        ActionTokenRepository(store), UserRepository(store), config.policy
    )


def get_reward_service(
    store: RecordStoreInterface = Depends(get_record_store),
    config: AppConfig = Depends(get_config),
    tokens: ActionTokenService = Depends(get_action_token_service),
    membership: MembershipCheckerInterface = Depends(get_membership_checker),
    dispatcher: CommissionDispatcherInterface = Depends(get_commission_dispatcher),
) -> RewardService:
    """FastAPI DI용 RewardService 팩토리."""

    user_repo = UserRepository(store)
    return RewardService(
        tokens=tokens,
        rate_limiter=RateLimiter(user_repo, config.policy),
        limits=DailyLimitService(user_repo, config.policy),
        ledger=LedgerService(user_repo),
        user_repo=user_repo,
        task_repo=TaskRepository(store),
        withdrawal_repo=WithdrawalRepository(store),
        membership=membership,
        dispatcher=dispatcher,
        policy=config.policy,
    )
