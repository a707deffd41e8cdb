"""이벤트 버스 공통 타입.

커미션처럼 유실되면 안 되는 메시지를 위해 재시도 토픽 단계와 DLQ 규칙을 정의한다.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Self


# 재시도 단계별 지연(초). `<base>.retry.N` 메시지는 발행 시각 + N 번째 지연 이후에 처리된다.
# 단계 수가 곧 최대 재시도 횟수이며, 소진하면 DLQ 로 보낸다.
RETRY_DELAYS_SECONDS: tuple[float, ...] = (30.0, 120.0, 600.0)
MAX_RETRY = len(RETRY_DELAYS_SECONDS)


class MaxRetryExceededError(Exception):
    """재시도 단계를 모두 소진한 이벤트."""


def _clamp_retry(value: int | None) -> int:
    if value is None or value <= 0 or value > MAX_RETRY:
        return MAX_RETRY
    return value


def retry_delay_seconds(stage: int) -> float:
    """재시도 단계의 처리 지연. 기본 토픽(stage 0)은 지연 없음."""
    if stage <= 0:
        return 0.0
    return RETRY_DELAYS_SECONDS[min(stage, MAX_RETRY) - 1]


@dataclass(slots=True)
class Event:
    """Kafka 메시지 한 건.

    - payload 는 JSON 직렬화 가능한 dict 이며 Kafka I/O 레이어에서 인코딩/디코딩한다.
    - id 는 메시지 key 이자 컨슈머 쪽 멱등 처리 키다.
    """

    id: str
    payload: Any
    retry: int = 0
    max_retry: int = MAX_RETRY
    last_error: str | None = None

    def __post_init__(self) -> None:
        self.max_retry = _clamp_retry(self.max_retry)

    @classmethod
    def wrap(
        cls,
        payload: Mapping[str, Any],
        *,
        event_id: str | None = None,
        max_retry: int | None = None,
    ) -> Self:
        """dict 페이로드를 새 이벤트로 감싼다. event_id 가 없으면 uuid4 hex 를 사용한다."""
        return cls(
            id=event_id or uuid.uuid4().hex,
            payload=dict(payload),
            max_retry=_clamp_retry(max_retry),
        )

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any]) -> Self:
        return cls(
            id=str(raw.get("id", "")),
            payload=raw.get("payload"),
            retry=int(raw.get("retry", 0)),
            max_retry=int(raw.get("max_retry", 0)),
            last_error=raw.get("last_error"),
        )

    def to_wire(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class Topic:
    """기본 토픽과 그에 딸린 재시도(``<base>.retry.N``) / DLQ(``<base>.dlq``) 토픽."""

    base: str

    @property
    def dlq(self) -> str:
        return f"{self.base}.dlq"

    @property
    def retry_topics(self) -> list[str]:
        return [self.retry_topic(attempt) for attempt in range(1, MAX_RETRY + 1)]

    def retry_topic(self, attempt: int) -> str:
        if attempt <= 0 or attempt > MAX_RETRY:
            raise MaxRetryExceededError(f"{self.base}: no retry stage {attempt}")
        return f"{self.base}.retry.{attempt}"

    def retry_stage(self, topic_name: str) -> int:
        """``<base>.retry.N`` 이면 N, 기본 토픽이나 그 밖의 토픽이면 0."""
        prefix = f"{self.base}.retry."
        if not topic_name.startswith(prefix):
            return 0
        suffix = topic_name[len(prefix):]
        return int(suffix) if suffix.isdigit() else 0

    def subscriptions(self) -> list[str]:
        """컨슈머가 구독할 토픽 목록. 재시도 토픽도 단계별 지연 뒤 같은 핸들러로 처리한다."""
        return [self.base, *self.retry_topics]

    def next_destination(self, event: Event) -> str:
        """실패한 이벤트가 다음에 갈 토픽. 이벤트의 재시도 한도를 넘으면 DLQ."""
        if event.retry + 1 > event.max_retry:
            return self.dlq
        return self.retry_topic(event.retry + 1)
