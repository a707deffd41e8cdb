"""레코드 저장소 조회 조건 정의.

저장소 백엔드(REST, Mongo)에 독립적인 필터/정렬/limit/프로젝션 표현이다.
각 백엔드는 ``Query`` 를 자신의 질의 문법으로 변환한다.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any, Iterable, Self


class Operator(StrEnum):
    EQ = "eq"
    NEQ = "neq"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    IS_NULL = "is_null"
    NOT_IN = "not_in"


@dataclass(frozen=True, slots=True)
class Condition:
    column: str
    op: Operator
    value: Any = None


@dataclass(frozen=True, slots=True)
class OrderBy:
    column: str
    descending: bool = False


@dataclass(frozen=True, slots=True)
class Query:
    """불변 조회 조건.

    메서드 체이닝으로 조건을 추가하며, 매 호출마다 새 Query 를 반환한다.

        Query().eq("user_id", 1).order("created_at", descending=True).take(10)
    """

    conditions: tuple[Condition, ...] = ()
    ordering: tuple[OrderBy, ...] = ()
    limit: int | None = None
    columns: tuple[str, ...] | None = None

    def _where(self, column: str, op: Operator, value: Any = None) -> Self:
        return replace(self, conditions=(*self.conditions, Condition(column, op, value)))

    def eq(self, column: str, value: Any) -> Self:
        return self._where(column, Operator.EQ, value)

    def neq(self, column: str, value: Any) -> Self:
        return self._where(column, Operator.NEQ, value)

    def lt(self, column: str, value: Any) -> Self:
        return self._where(column, Operator.LT, value)

    def lte(self, column: str, value: Any) -> Self:
        return self._where(column, Operator.LTE, value)

    def gt(self, column: str, value: Any) -> Self:
        return self._where(column, Operator.GT, value)

    def gte(self, column: str, value: Any) -> Self:
        return self._where(column, Operator.GTE, value)

    def is_null(self, column: str) -> Self:
        return self._where(column, Operator.IS_NULL)

    def eq_or_null(self, column: str, value: Any) -> Self:
        """value 가 None 이면 IS NULL, 아니면 equality 조건을 추가한다."""
        if value is None:
            return self.is_null(column)
        return self.eq(column, value)

    def not_in(self, column: str, values: Iterable[Any]) -> Self:
        return self._where(column, Operator.NOT_IN, tuple(values))

    def order(self, column: str, *, descending: bool = False) -> Self:
        return replace(self, ordering=(*self.ordering, OrderBy(column, descending)))

    def take(self, limit: int) -> Self:
        if limit <= 0:
            raise ValueError("limit must be positive")
        return replace(self, limit=limit)

    def select(self, *columns: str) -> Self:
        return replace(self, columns=tuple(columns) or None)

