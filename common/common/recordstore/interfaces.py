from __future__ import annotations

from typing import Any, Protocol

from .query import Query


Row = dict[str, Any]


class RecordStoreError(Exception):
    """레코드 저장소 호출 실패 (전송 오류 또는 저장소가 돌려준 애플리케이션 오류)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RecordStoreInterface(Protocol):
    """이름 붙은 컬렉션에 대한 범용 CRUD 계약.

    Repository 레이어는 이 인터페이스에만 의존하고, 구체 구현(REST, Mongo 등)은 몰라도 된다.
    update/delete 는 영향을 받은 행 수를 반환하며, 조건부 갱신/삭제의 성공 여부 판단에 사용한다.
    """

    def insert(self, collection: str, row: Row) -> Row:  # pragma: no cover - Protocol
        ...

    def select(
        self, collection: str, query: Query
    ) -> list[Row]:  # pragma: no cover - Protocol
        ...

    def update(
        self, collection: str, query: Query, values: Row
    ) -> int:  # pragma: no cover - Protocol
        ...

    def delete(self, collection: str, query: Query) -> int:  # pragma: no cover - Protocol
        ...

    def close(self) -> None:  # pragma: no cover - Protocol
        ...


def select_one(store: RecordStoreInterface, collection: str, query: Query) -> Row | None:
    """0 또는 1개의 행을 조회한다. 일치하는 행이 없으면 None."""
    rows = store.select(collection, query.take(1))
    if not rows:
        return None
    return rows[0]
