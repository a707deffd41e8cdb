from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from pydantic.functional_serializers import PlainSerializer
from pydantic.functional_validators import BeforeValidator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """naive 값은 UTC 로 간주하고, aware 값은 UTC 로 변환한다."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_utc(value: object) -> object:
    # REST 저장소는 timestamptz 를 ISO8601 문자열("...Z" 포함)로 돌려준다.
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return as_utc(value) if isinstance(value, datetime) else value


UtcDateTime = Annotated[
    datetime,
    BeforeValidator(_coerce_utc),
    PlainSerializer(lambda value: as_utc(value).isoformat(), return_type=str, when_used="json"),
]
