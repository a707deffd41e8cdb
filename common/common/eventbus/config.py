"""Kafka 접속 설정.

발행(커미션 디스패처)과 구독(커미션 컨슈머)이 같은 설정 객체를 사용한다.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


KAFKA_BOOTSTRAP_SERVERS_ENV = "KAFKA_BOOTSTRAP_SERVERS"
KAFKA_GROUP_ID_ENV = "KAFKA_GROUP_ID"
KAFKA_MESSAGE_TIMEOUT_MS_ENV = "KAFKA_MESSAGE_TIMEOUT_MS"

# 브로커 장애 시 발행이 무한정 대기하지 않도록 message.timeout.ms 를 제한한다.
DEFAULT_MESSAGE_TIMEOUT_MS = 10_000


@dataclass(frozen=True, slots=True)
class KafkaSettings:
    brokers: str
    group_id: str | None = None
    message_timeout_ms: int = DEFAULT_MESSAGE_TIMEOUT_MS

    def consumer_group(self, name: str) -> str:
        """``<KAFKA_GROUP_ID>-<name>`` 형태의 컨슈머 그룹 id. 발행 전용이면 group id 가 없어도 된다."""
        if not self.group_id:
            raise RuntimeError(
                f"{KAFKA_GROUP_ID_ENV} environment variable is required for consumers"
            )
        return f"{self.group_id}-{name}"


def _read_timeout_ms() -> int:
    raw_value = os.getenv(KAFKA_MESSAGE_TIMEOUT_MS_ENV, "").strip()
    if not raw_value:
        return DEFAULT_MESSAGE_TIMEOUT_MS
    try:
        value = int(raw_value)
    except ValueError as exc:  # noqa: TRY003
        raise RuntimeError(
            f"{KAFKA_MESSAGE_TIMEOUT_MS_ENV} must be an integer value, got: {raw_value!r}"
        ) from exc
    return value if value > 0 else DEFAULT_MESSAGE_TIMEOUT_MS


def load_kafka_settings() -> KafkaSettings:
    """환경 변수에서 Kafka 설정을 읽는다. 브로커 주소가 없으면 RuntimeError."""

    brokers = os.getenv(KAFKA_BOOTSTRAP_SERVERS_ENV, "").strip()
    if not brokers:
        raise RuntimeError(
            f"{KAFKA_BOOTSTRAP_SERVERS_ENV} environment variable is required "
            "when COMMISSION_DISPATCH=kafka"
        )
    return KafkaSettings(
        brokers=brokers,
        group_id=os.getenv(KAFKA_GROUP_ID_ENV, "").strip() or None,
        message_timeout_ms=_read_timeout_ms(),
    )
