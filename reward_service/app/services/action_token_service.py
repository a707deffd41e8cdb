"""일회용 액션 토큰 발급/소비.

보상 요청은 반드시 직전에 발급받은 토큰을 소비해야 하며, 소비는 행 삭제로 이뤄진다.
동시에 같은 토큰을 제출한 요청 중 삭제 행 수가 1인 요청만 통과한다.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Callable

from common.types.datetime import utcnow

from ..config import RewardPolicy
from ..exceptions import (
    ConflictError,
    ForbiddenError,
    TokenExpiredError,
    ValidationError,
)
from ..models.action_token import ActionKind, ActionToken
from ..repositories.interfaces import (
    ActionTokenRepositoryInterface,
    UserRepositoryInterface,
)


logger = logging.getLogger(__name__)


# 128 bit
TOKEN_BYTES = 16

TOKEN_INVALID_MESSAGE = "Invalid or previously used Server Token (Action ID)."
TOKEN_EXPIRED_MESSAGE = "Server Token (Action ID) expired. Please retry."


class ActionTokenService:
    def __init__(
        self,
        token_repo: ActionTokenRepositoryInterface,
        user_repo: UserRepositoryInterface,
        policy: RewardPolicy,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._token_repo = token_repo
        self._user_repo = user_repo
        self._policy = policy
        self._clock = clock

    def issue(self, user_id: int, kind: ActionKind) -> ActionToken:
        """알려진, 차단되지 않은 유저에게만 새 토큰을 발급한다."""
        user = self._user_repo.find_by_id(user_id)
        if user is None or user.is_banned:
            raise ForbiddenError("User not found or banned.")

        token = ActionToken(
            user_id=user_id,
            kind=kind,
            value=secrets.token_hex(TOKEN_BYTES),
            created_at=self._clock(),
        )
        created = self._token_repo.create(token)
        logger.info(
            "issued action token",
            extra={"user_id": user_id, "action": kind.value},
        )
        return created

    def consume(self, user_id: int, value: str | None, kind: ActionKind) -> None:
        """토큰을 소비한다. 실패하면 예외를 던지고, 호출자는 어떤 변경도 하지 않아야 한다.

        값 불일치, 종류 불일치, 다른 유저, 이미 사용됨은 모두 같은 ConflictError 로 보고한다.
        """
        if not value:
            raise ValidationError("Missing Server Token (Action ID). Request rejected.")

        token = self._token_repo.find(user_id, kind, value)
        if token is None:
            raise ConflictError(TOKEN_INVALID_MESSAGE)

        if self._clock() - token.created_at > self._policy.action_token_ttl:
            self._token_repo.delete(user_id, kind, value)
            raise TokenExpiredError(TOKEN_EXPIRED_MESSAGE)

        if self._token_repo.delete(user_id, kind, value) == 0:
            # 조회와 삭제 사이에 다른 요청이 먼저 소비했다.
            logger.warning(
                "action token consumed concurrently",
                extra={"user_id": user_id, "action": kind.value},
            )
            raise ConflictError(TOKEN_INVALID_MESSAGE)

    def purge_expired(self) -> int:
        cutoff = self._clock() - self._policy.action_token_ttl
        deleted = self._token_repo.delete_created_before(cutoff)
        if deleted:
            logger.info("purged %d expired action tokens", deleted)
        return deleted
