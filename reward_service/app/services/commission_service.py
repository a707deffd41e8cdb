"""추천인 커미션 적립.

피추천인이 받은 보상의 일정 비율을 추천인 잔액에 적립하고 감사 기록을 남긴다.
보상 요청의 응답과는 독립적으로 실행되며, 실패해도 원래 보상은 되돌리지 않는다.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable

from fastapi import Depends

from common.recordstore.client import get_record_store
from common.recordstore.interfaces import RecordStoreError, RecordStoreInterface
from common.types.datetime import utcnow

from ..config import AppConfig, RewardPolicy, get_config
from ..models.ledger import CommissionRecord
from ..models.reward import CommissionOutcome, CommissionRequest
from ..repositories.commission_repository import CommissionRepository
from ..repositories.interfaces import CommissionRepositoryInterface
from ..repositories.user_repository import UserRepository
from .ledger_service import LedgerService


logger = logging.getLogger(__name__)


SKIP_BELOW_FLOOR = "Commission amount is effectively zero."
SKIP_REFERRER_UNAVAILABLE = "Referrer not found or banned, commission aborted."
SKIP_ALREADY_APPLIED = "Commission already applied for this event."


class CommissionService:
    def __init__(
        self,
        ledger: LedgerService,
        commission_repo: CommissionRepositoryInterface,
        policy: RewardPolicy,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._ledger = ledger
        self._commission_repo = commission_repo
        self._policy = policy
        self._clock = clock

    def apply(self, request: CommissionRequest) -> CommissionOutcome:
        """커미션을 적용한다.

        감사 기록을 먼저 insert 해 event_id 를 선점하고, 선점에 성공한 경우에만 적립한다.
        적립하지 못하면 선점을 되돌려 재전달 시 다시 시도할 수 있게 한다.
        같은 event_id 가 이미 기록되어 있으면 적립하지 않는다.
        """
        amount = request.source_reward * self._policy.commission_rate
        if amount < self._policy.commission_floor:
            logger.info(
                "commission too small (%s), skipped for referee %s",
                amount,
                request.referee_id,
            )
            return CommissionOutcome(credited=False, skipped_reason=SKIP_BELOW_FLOOR)

        event_id = request.event_id or uuid.uuid4().hex
        claimed = self._commission_repo.claim(
            CommissionRecord(
                referrer_id=request.referrer_id,
                referee_id=request.referee_id,
                amount=amount,
                source_reward=request.source_reward,
                event_id=event_id,
                created_at=self._clock(),
            )
        )
        if not claimed:
            logger.info("commission %s already applied, skipped", event_id)
            return CommissionOutcome(credited=False, skipped_reason=SKIP_ALREADY_APPLIED)

        try:
            new_balance = self._ledger.credit(request.referrer_id, amount)
        except Exception:
            self._release(event_id)
            raise

        if new_balance is None:
            self._release(event_id)
            logger.info(
                "referrer %s not found or banned, commission skipped",
                request.referrer_id,
            )
            return CommissionOutcome(
                credited=False, skipped_reason=SKIP_REFERRER_UNAVAILABLE
            )

        logger.info(
            "credited commission %s to referrer %s (referee=%s, reason=%s, event=%s)",
            amount,
            request.referrer_id,
            request.referee_id,
            request.reason or "-",
            event_id,
        )
        return CommissionOutcome(
            credited=True, amount=amount, new_referrer_balance=new_balance
        )

    def _release(self, event_id: str) -> None:
        try:
            self._commission_repo.release(event_id)
        except RecordStoreError:
            # 선점 기록이 남으면 이후 재전달은 건너뛴다. 수동 정산 대상.
            logger.exception("failed to release commission claim %s", event_id)


def get_commission_service(
    store: RecordStoreInterface = Depends(get_record_store),
    config: AppConfig = Depends(get_config),
) -> CommissionService:
    """FastAPI DI용 CommissionService 팩토리. 워커/컨슈머에서도 인자를 넘겨 직접 호출한다."""

    return CommissionService(
        LedgerService(UserRepository(store)),
        CommissionRepository(store),
        config.policy,
    )
