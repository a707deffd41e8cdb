from __future__ import annotations

from common.recordstore.interfaces import RecordStoreInterface
from common.recordstore.query import Query

from .interfaces import WithdrawalRepositoryInterface
from ..models.ledger import WithdrawalRecord


WITHDRAWAL_HISTORY = "withdrawal_history"


class WithdrawalRepository(WithdrawalRepositoryInterface):
    """withdrawal_history 컬렉션 접근 레이어 (append-only)."""

    def __init__(self, store: RecordStoreInterface) -> None:
        self._store = store

    def create(self, record: WithdrawalRecord) -> WithdrawalRecord:
        row = self._store.insert(
            WITHDRAWAL_HISTORY, record.model_dump(exclude_none=True)
        )
        return WithdrawalRecord.model_validate(row)

    def list_recent(self, user_id: int, limit: int) -> list[WithdrawalRecord]:
        rows = self._store.select(
            WITHDRAWAL_HISTORY,
            Query()
            .eq("user_id", user_id)
            .order("created_at", descending=True)
            .take(limit),
        )
        return [WithdrawalRecord.model_validate(row) for row in rows]
