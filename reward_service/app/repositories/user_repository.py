"""users 컬렉션 레포지토리."""

from __future__ import annotations

from typing import Any, Mapping

from common.recordstore.interfaces import RecordStoreInterface, select_one
from common.recordstore.query import Query

from .interfaces import UserRepositoryInterface
from ..models.user import User


USERS = "users"


class UserRepository(UserRepositoryInterface):
    """users 컬렉션에 대한 레코드 저장소 접근 레이어."""

    def __init__(self, store: RecordStoreInterface) -> None:
        self._store = store

    def find_by_id(self, user_id: int) -> User | None:
        row = select_one(self._store, USERS, Query().eq("id", user_id))
        if row is None:
            return None
        return User.model_validate(row)

    def insert(self, user: User) -> User:
        row = self._store.insert(USERS, user.model_dump(by_alias=True))
        return User.model_validate(row)

    def update_fields(self, user_id: int, values: Mapping[str, Any]) -> int:
        if not values:
            return 0
        return self._store.update(USERS, Query().eq("id", user_id), dict(values))

    def update_if(
        self,
        user_id: int,
        expected: Mapping[str, Any],
        values: Mapping[str, Any],
    ) -> int:
        query = Query().eq("id", user_id)
        for column, value in expected.items():
            # 아직 한 번도 기록되지 않은 값(None)도 "읽은 그대로"라는 조건으로 취급한다.
            query = query.eq_or_null(column, value)
        return self._store.update(USERS, query, dict(values))

    def count_referrals(self, referrer_id: int) -> int:
        rows = self._store.select(USERS, Query().eq("ref_by", referrer_id).select("id"))
        return len(rows)
