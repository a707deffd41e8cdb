"""PostgREST(Supabase REST) 기반 레코드 저장소 구현."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx

from .interfaces import RecordStoreError, RecordStoreInterface, Row
from .query import Condition, Operator, Query


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 10.0


def _encode_value(value: Any) -> str:
    """필터 값(query string)을 PostgREST 문법에 맞는 문자열로 변환한다."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _encode_in_list(values: tuple[Any, ...]) -> str:
    items = []
    for value in values:
        text = _encode_value(value)
        # 쉼표/괄호가 들어간 값은 따옴표로 감싸야 PostgREST 가 하나의 값으로 해석한다.
        if any(ch in text for ch in ',()"'):
            text = '"' + text.replace('"', '\\"') + '"'
        items.append(text)
    return "(" + ",".join(items) + ")"


def _condition_param(condition: Condition) -> tuple[str, str]:
    if condition.op is Operator.IS_NULL:
        return condition.column, "is.null"
    if condition.op is Operator.NOT_IN:
        return condition.column, f"not.in.{_encode_in_list(condition.value)}"
    return condition.column, f"{condition.op.value}.{_encode_value(condition.value)}"


def build_query_params(query: Query, *, with_modifiers: bool = True) -> list[tuple[str, str]]:
    """Query 를 PostgREST query string 파라미터 목록으로 변환한다.

    - 조건은 ``column=op.value`` 형태
    - with_modifiers 가 True 이면 select/order/limit 도 포함한다.
    """
    params = [_condition_param(cond) for cond in query.conditions]
    if not with_modifiers:
        return params

    params.append(("select", ",".join(query.columns) if query.columns else "*"))
    if query.ordering:
        params.append(
            (
                "order",
                ",".join(
                    f"{o.column}.{'desc' if o.descending else 'asc'}" for o in query.ordering
                ),
            )
        )
    if query.limit is not None:
        params.append(("limit", str(query.limit)))
    return params


class _JsonEncoder(json.JSONEncoder):
    def default(self, o: Any) -> Any:
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Decimal):
            # numeric 컬럼은 문자열 입력을 그대로 캐스팅하므로 정밀도를 잃지 않는다.
            return str(o)
        return super().default(o)


class RestRecordStore(RecordStoreInterface):
    """``{base_url}/rest/v1/{collection}`` 엔드포인트를 사용하는 레코드 저장소."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/") + "/rest/v1",
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            },
        )

    def close(self) -> None:
        self._client.close()

    def insert(self, collection: str, row: Row) -> Row:
        rows = self._request("POST", collection, params=[("select", "*")], body=row)
        if not rows:
            # return=representation 인데 행이 없으면 RLS 등으로 가려진 경우다.
            return dict(row)
        return rows[0]

    def select(self, collection: str, query: Query) -> list[Row]:
        return self._request("GET", collection, params=build_query_params(query))

    def update(self, collection: str, query: Query, values: Row) -> int:
        if not query.conditions:
            raise ValueError("refusing to update without conditions")
        params = build_query_params(query, with_modifiers=False)
        params.append(("select", "*"))
        return len(self._request("PATCH", collection, params=params, body=values))

    def delete(self, collection: str, query: Query) -> int:
        if not query.conditions:
            raise ValueError("refusing to delete without conditions")
        params = build_query_params(query, with_modifiers=False)
        params.append(("select", "*"))
        return len(self._request("DELETE", collection, params=params))

    def _request(
        self,
        method: str,
        collection: str,
        *,
        params: list[tuple[str, str]],
        body: Row | None = None,
    ) -> list[Row]:
        content = None
        if body is not None:
            content = json.dumps(body, cls=_JsonEncoder, ensure_ascii=False).encode("utf-8")

        try:
            resp = self._client.request(
                method, f"/{collection}", params=params, content=content
            )
        except httpx.HTTPError as exc:
            logger.error(
                "record store request failed method=%s collection=%s: %s",
                method,
                collection,
                exc,
            )
            raise RecordStoreError(f"record store unreachable: {exc}") from exc

        if resp.is_error:
            raise RecordStoreError(
                self._error_message(resp), status_code=resp.status_code
            )

        if not resp.content:
            return []
        try:
            data = resp.json()
        except ValueError:
            return []
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return [data]
        return []

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        fallback = f"record store error: {resp.status_code} {resp.reason_phrase}"
        try:
            data = resp.json()
        except ValueError:
            return fallback
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return fallback
