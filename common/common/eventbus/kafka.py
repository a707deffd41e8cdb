from __future__ import annotations

import json
import logging
import threading
import time
from typing import Callable, Optional

from confluent_kafka import (
    TIMESTAMP_NOT_AVAILABLE,
    Consumer,
    KafkaError,
    Producer,
    TopicPartition,
)

from .config import KafkaSettings, load_kafka_settings
from .core import Event, Topic, retry_delay_seconds

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], None]


class KafkaEventBus:
    """confluent-kafka 위에 얹은 이벤트 버스.

    처리에 실패한 이벤트는 ``Topic.next_destination`` 이 정한 재시도 토픽 또는 DLQ 로
    재발행한 뒤 원본 오프셋을 커밋한다. 재발행까지 실패하면 커밋하지 않고 다시 읽는다.
    """

    def __init__(
        self,
        settings: KafkaSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self._producer = Producer(
            {
                "bootstrap.servers": settings.brokers,
                "message.timeout.ms": settings.message_timeout_ms,
            }
        )

    @property
    def brokers(self) -> str:
        return self._settings.brokers

    def close(self) -> None:
        self._producer.flush()

    def publish(self, topic: str, event: Event) -> None:
        value = json.dumps(event.to_wire(), ensure_ascii=False).encode("utf-8")

        def _on_delivery(err, msg) -> None:  # type: ignore[no-untyped-def]
            if err is not None:
                logger.error("kafka delivery failed topic=%s: %s", msg.topic(), err)

        self._producer.produce(
            topic=topic,
            value=value,
            key=event.id.encode("utf-8"),
            callback=_on_delivery,
        )
        self._producer.poll(0)

    def subscribe(
        self,
        group_id: str,
        topic: Topic,
        handler: EventHandler,
        *,
        poll_timeout: float = 0.1,
        stop_flag: list[bool] | None = None,
    ) -> None:
        """stop_flag[0] 이 True 가 될 때까지 topic 을 소비한다.

        재시도 토픽 메시지는 발행 시각 + 단계별 지연이 지나기 전에는 처리하지 않는다.
        아직 이른 메시지를 만나면 해당 파티션을 멈추고 그 오프셋으로 되감아 두었다가,
        지연이 지나면 다시 읽는다. 다른 파티션과 기본 토픽은 그동안 계속 처리된다.
        """
        consumer = Consumer(
            {
                "bootstrap.servers": self._settings.brokers,
                "group.id": group_id,
                "auto.offset.reset": "earliest",
                "enable.auto.commit": False,
            }
        )
        consumer.subscribe(topic.subscriptions())
        logger.info("Kafka consumer started. group_id=%s topic=%s", group_id, topic.base)

        deferred: dict[tuple[str, int], float] = {}
        try:
            while not (stop_flag and stop_flag[0]):
                self._resume_due(consumer, deferred)

                msg = consumer.poll(poll_timeout)
                if msg is None:
                    continue
                if msg.error():
                    if msg.error().code() != KafkaError._PARTITION_EOF:
                        logger.error("consumer error: %s", msg.error())
                    continue
                if (msg.topic(), msg.partition()) in deferred:
                    # pause 전에 이미 가져온 메시지. 재개 후 seek 한 오프셋부터 다시 읽는다.
                    continue

                wait = self._retry_wait_seconds(topic, msg)
                if wait > 0:
                    self._defer(consumer, msg, wait, deferred)
                    continue

                if self._dispatch(topic, handler, msg):
                    self._commit(consumer, msg)
        finally:
            consumer.close()

    def _retry_wait_seconds(self, topic: Topic, msg) -> float:  # type: ignore[no-untyped-def]
        """재시도 메시지가 처리 가능해질 때까지 남은 시간(초). 바로 처리할 수 있으면 0."""
        delay = retry_delay_seconds(topic.retry_stage(msg.topic()))
        if delay <= 0:
            return 0.0
        ts_type, ts_ms = msg.timestamp()
        if ts_type == TIMESTAMP_NOT_AVAILABLE or ts_ms <= 0:
            return 0.0
        return ts_ms / 1000 + delay - self._clock()

    def _defer(
        self,
        consumer: Consumer,
        msg,  # type: ignore[no-untyped-def]
        wait: float,
        deferred: dict[tuple[str, int], float],
    ) -> None:
        tp = TopicPartition(msg.topic(), msg.partition(), msg.offset())
        consumer.pause([tp])
        consumer.seek(tp)
        deferred[(msg.topic(), msg.partition())] = self._clock() + wait
        logger.info(
            "deferring %s[%d]@%d for %.1fs",
            msg.topic(),
            msg.partition(),
            msg.offset(),
            wait,
        )

    def _resume_due(
        self, consumer: Consumer, deferred: dict[tuple[str, int], float]
    ) -> None:
        now = self._clock()
        due = [key for key, resume_at in deferred.items() if resume_at <= now]
        if not due:
            return
        consumer.resume([TopicPartition(name, partition) for name, partition in due])
        for key in due:
            del deferred[key]

    def _dispatch(self, topic: Topic, handler: EventHandler, msg) -> bool:  # type: ignore[no-untyped-def]
        """메시지 한 건을 처리한다. 오프셋을 커밋해도 되면 True."""
        try:
            raw = json.loads(msg.value())
        except ValueError as exc:
            # 해석할 수 없는 메시지는 재시도해도 같다.
            logger.error("dropping undecodable message on %s: %s", msg.topic(), exc)
            return True

        evt = Event.from_wire(raw)
        try:
            handler(evt)
        except Exception as exc:  # noqa: BLE001
            return self._reschedule(topic, evt, exc)
        return True

    def _reschedule(self, topic: Topic, evt: Event, exc: Exception) -> bool:
        evt.last_error = str(exc)
        destination = topic.next_destination(evt)
        if destination == topic.dlq:
            logger.error(
                "event %s exhausted %d retries, moving to %s: %s",
                evt.id,
                evt.max_retry,
                destination,
                exc,
            )
        else:
            evt.retry += 1
            logger.warning(
                "event %s failed (%s), retry %d/%d via %s",
                evt.id,
                exc,
                evt.retry,
                evt.max_retry,
                destination,
            )

        try:
            self.publish(destination, evt)
        except Exception as pub_exc:  # noqa: BLE001
            logger.error("failed to republish event %s to %s: %s", evt.id, destination, pub_exc)
            return False
        return True

    @staticmethod
    def _commit(consumer: Consumer, msg) -> None:  # type: ignore[no-untyped-def]
        try:
            consumer.commit(message=msg, asynchronous=False)
        except Exception as exc:  # noqa: BLE001
            logger.error("offset commit error: %s", exc)


_bus: Optional[KafkaEventBus] = None
_bus_lock = threading.Lock()


def get_kafka_event_bus() -> KafkaEventBus:
    """프로세스 전역 발행용 KafkaEventBus."""

    global _bus

    if _bus is not None:
        return _bus

    with _bus_lock:
        if _bus is None:
            _bus = KafkaEventBus(load_kafka_settings())
        return _bus
