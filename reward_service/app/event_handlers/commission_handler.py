"""커미션 이벤트 핸들러.

Kafka 에서 commission.requested 이벤트를 소비하여 추천인 잔액에 커미션을 적립한다.
핸들러가 예외를 던지면 이벤트 버스가 재시도 토픽 또는 DLQ 로 보낸다.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from common.eventbus.config import load_kafka_settings
from common.eventbus.core import Event
from common.eventbus.kafka import KafkaEventBus
from common.eventbus.topics import TOPIC_COMMISSION
from common.events.commission import CommissionEventType, CommissionRequestedEvent

from ..models.reward import CommissionRequest
from ..services.commission_service import CommissionService


logger = logging.getLogger(__name__)


def _handle_commission_event(evt: Event, *, service: CommissionService) -> None:
    payload = evt.payload
    if not isinstance(payload, dict):
        logger.error("unexpected payload type for event %s: %r", evt.id, type(payload))
        return

    event_type = str(payload.get("type", ""))
    if event_type != CommissionEventType.COMMISSION_REQUESTED:
        logger.debug("ignoring unknown commission event type=%s id=%s", event_type, evt.id)
        return

    try:
        event = CommissionRequestedEvent.from_dict(payload)
        source_reward = Decimal(event.source_reward)
    except (KeyError, ValueError, TypeError, InvalidOperation):
        # 재시도해도 해석할 수 없는 페이로드이므로 버린다.
        logger.exception("failed to decode CommissionRequestedEvent payload=%r", payload)
        return

    logger.info(
        "handling commission.requested event id=%s referrer_id=%s referee_id=%s",
        event.id,
        event.referrer_id,
        event.referee_id,
    )

    outcome = service.apply(
        CommissionRequest(
            referrer_id=event.referrer_id,
            referee_id=event.referee_id,
            source_reward=source_reward,
            reason=event.reason,
            event_id=event.id,
        )
    )
    if not outcome.credited:
        logger.info("commission event %s skipped: %s", event.id, outcome.skipped_reason)


def run_commission_consumer(stop_flag: list[bool], service: CommissionService) -> None:
    """커미션 이벤트를 소비하는 구독 루프를 실행한다. stop_flag[0] 이 True 가 되면 종료한다."""
    logger.info("commission-consumer starting up")

    settings = load_kafka_settings()
    group_id = settings.consumer_group("commission")

    bus = KafkaEventBus(settings)

    try:
        logger.info(
            "subscribing to topic=%s group_id=%s", TOPIC_COMMISSION.base, group_id
        )
        bus.subscribe(
            group_id=group_id,
            topic=TOPIC_COMMISSION,
            handler=lambda evt: _handle_commission_event(evt, service=service),
            stop_flag=stop_flag,
        )
    finally:
        bus.close()
        logger.info("commission-consumer stopped")
