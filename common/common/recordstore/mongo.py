"""MongoDB 기반 레코드 저장소 구현.

REST 저장소와 동일한 계약을 유지한다.

- 모든 조회 결과에서 ``_id`` 는 숨기고, 식별자는 ``id`` 컬럼을 그대로 사용한다.
- Decimal 값은 Decimal128 로 저장하고 조회 시 Decimal 로 되돌린다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from bson.decimal128 import Decimal128
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from common.mongo.client import close_client

from .interfaces import RecordStoreError, RecordStoreInterface, Row
from .query import Operator, Query


_MONGO_OPERATORS: dict[Operator, str] = {
    Operator.EQ: "$eq",
    Operator.NEQ: "$ne",
    Operator.LT: "$lt",
    Operator.LTE: "$lte",
    Operator.GT: "$gt",
    Operator.GTE: "$gte",
    Operator.NOT_IN: "$nin",
}


@dataclass(slots=True)
class MongoQuery:
    """Query 를 pymongo find 인자로 변환한 결과."""

    filter: dict[str, Any] = field(default_factory=dict)
    projection: dict[str, int] = field(default_factory=lambda: {"_id": 0})
    sort: list[tuple[str, int]] = field(default_factory=list)
    limit: int = 0


def _to_bson(value: Any) -> Any:
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, (list, tuple)):
        return [_to_bson(v) for v in value]
    return value


def _from_bson(doc: dict[str, Any]) -> Row:
    return {
        key: value.to_decimal() if isinstance(value, Decimal128) else value
        for key, value in doc.items()
        if key != "_id"
    }


def translate_query(query: Query) -> MongoQuery:
    """Query 를 Mongo filter/projection/sort/limit 로 변환한다.

    같은 컬럼에 여러 조건이 걸리면 하나의 연산자 도큐먼트로 합친다.
    """
    result = MongoQuery()
    for cond in query.conditions:
        ops = result.filter.setdefault(cond.column, {})
        if cond.op is Operator.IS_NULL:
            # null 비교는 필드가 없는 도큐먼트도 포함한다 (SQL IS NULL 과 동일한 의미).
            ops["$eq"] = None
            continue
        ops[_MONGO_OPERATORS[cond.op]] = _to_bson(cond.value)

    if query.columns:
        result.projection.update({column: 1 for column in query.columns})
    result.sort = [
        (o.column, DESCENDING if o.descending else ASCENDING) for o in query.ordering
    ]
    result.limit = query.limit or 0
    return result


class MongoRecordStore(RecordStoreInterface):
    """컬렉션 이름을 그대로 Mongo 컬렉션에 매핑하는 레코드 저장소."""

    def __init__(self, database: Database) -> None:
        self._db = database

    def close(self) -> None:
        close_client()

    def insert(self, collection: str, row: Row) -> Row:
        payload = {key: _to_bson(value) for key, value in row.items()}
        try:
            self._db[collection].insert_one(payload)
        except DuplicateKeyError as exc:
            # REST 저장소의 unique 위반(409)과 동일하게 취급한다.
            raise RecordStoreError(str(exc), status_code=409) from exc
        except PyMongoError as exc:
            raise RecordStoreError(str(exc)) from exc
        return _from_bson(payload)

    def select(self, collection: str, query: Query) -> list[Row]:
        mq = translate_query(query)
        try:
            cursor = self._db[collection].find(
                mq.filter,
                projection=mq.projection,
                sort=mq.sort or None,
                limit=mq.limit,
            )
            return [_from_bson(doc) for doc in cursor]
        except PyMongoError as exc:
            raise RecordStoreError(str(exc)) from exc

    def update(self, collection: str, query: Query, values: Row) -> int:
        if not query.conditions:
            raise ValueError("refusing to update without conditions")
        mq = translate_query(query)
        try:
            result = self._db[collection].update_many(
                mq.filter,
                {"$set": {key: _to_bson(value) for key, value in values.items()}},
            )
        except PyMongoError as exc:
            raise RecordStoreError(str(exc)) from exc
        return result.matched_count

    def delete(self, collection: str, query: Query) -> int:
        if not query.conditions:
            raise ValueError("refusing to delete without conditions")
        mq = translate_query(query)
        try:
            result = self._db[collection].delete_many(mq.filter)
        except PyMongoError as exc:
            raise RecordStoreError(str(exc)) from exc
        return result.deleted_count
