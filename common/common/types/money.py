from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from pydantic.functional_serializers import PlainSerializer


def serialize_money(value: Decimal) -> int | float:
    """JSON 응답에서는 금액을 숫자로 내보낸다 (정수면 int, 아니면 float)."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# 내부 계산은 Decimal 로 정확히 하고, 직렬화할 때만 JSON 숫자로 변환한다.
Money = Annotated[
    Decimal,
    PlainSerializer(serialize_money, return_type=int | float, when_used="json"),
]
