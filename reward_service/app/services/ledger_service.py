"""잔액 적립.

읽은 balance 를 조건으로 건 조건부 갱신(compare-and-swap)으로 적립하여,
동시에 들어온 적립끼리 서로의 변경을 덮어쓰지 않게 한다.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..exceptions import ConflictError
from ..repositories.interfaces import UserRepositoryInterface


logger = logging.getLogger(__name__)


MAX_CREDIT_ATTEMPTS = 5


class LedgerService:
    def __init__(
        self,
        user_repo: UserRepositoryInterface,
        *,
        max_attempts: int = MAX_CREDIT_ATTEMPTS,
    ) -> None:
        self._user_repo = user_repo
        self._max_attempts = max_attempts

    def credit(self, user_id: int, amount: Decimal) -> Decimal | None:
        """amount 를 적립하고 새 잔액을 반환한다. 유저가 없거나 차단되었으면 None."""
        for attempt in range(1, self._max_attempts + 1):
            user = self._user_repo.find_by_id(user_id)
            if user is None or user.is_banned:
                return None

            new_balance = user.balance + amount
            if self._user_repo.update_if(
                user_id, {"balance": user.balance}, {"balance": new_balance}
            ):
                return new_balance

            logger.info(
                "balance changed concurrently, retrying credit (attempt %d/%d)",
                attempt,
                self._max_attempts,
                extra={"user_id": user_id},
            )

        raise ConflictError("Balance update conflicted, please retry.")
