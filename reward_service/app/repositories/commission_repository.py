from __future__ import annotations

from common.recordstore.interfaces import RecordStoreError, RecordStoreInterface
from common.recordstore.query import Query

from .interfaces import CommissionRepositoryInterface
from ..models.ledger import CommissionRecord


COMMISSION_HISTORY = "commission_history"

# event_id unique 제약 위반 (PostgREST, Mongo 모두 409 로 매핑됨)
_CONFLICT_STATUS = 409


class CommissionRepository(CommissionRepositoryInterface):
    """commission_history 컬렉션 접근 레이어 (감사 기록 전용)."""

    def __init__(self, store: RecordStoreInterface) -> None:
        self._store = store

    def create(self, record: CommissionRecord) -> CommissionRecord:
        row = self._store.insert(COMMISSION_HISTORY, record.model_dump(exclude_none=True))
        return CommissionRecord.model_validate(row)

    def claim(self, record: CommissionRecord) -> bool:
        """기록을 먼저 남겨 event_id 를 선점한다. 이미 같은 event_id 가 있으면 False."""
        try:
            self.create(record)
        except RecordStoreError as exc:
            if exc.status_code == _CONFLICT_STATUS:
                return False
            raise
        return True

    def release(self, event_id: str) -> int:
        return self._store.delete(COMMISSION_HISTORY, Query().eq("event_id", event_id))
