"""커미션 적립 요청을 보상 요청 처리 경로 밖으로 넘기는 디스패처.

- thread: 프로세스 내부 큐 + 워커 스레드. 종료 시 남은 요청을 모두 처리한 뒤 멈춘다.
- kafka: ``rewards.commission`` 토픽으로 ``commission.requested`` 이벤트를 발행하고,
  별도 컨슈머(event_handlers.commission_handler)가 적립한다.

submit 은 어떤 경우에도 예외를 호출자에게 전파하지 않는다.
"""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from dataclasses import asdict
from typing import Callable, Optional, Protocol

from common.eventbus.core import Event
from common.eventbus.kafka import KafkaEventBus, get_kafka_event_bus
from common.eventbus.topics import TOPIC_COMMISSION
from common.events.commission import CommissionEventType, CommissionRequestedEvent
from common.recordstore.client import get_record_store
from common.types.datetime import utcnow

from ..config import CommissionDispatchMode, get_config
from ..models.reward import CommissionOutcome, CommissionRequest
from .commission_service import get_commission_service


logger = logging.getLogger(__name__)


EVENT_SOURCE = "reward-service"


class CommissionDispatcherInterface(Protocol):
    def start(self) -> None:  # pragma: no cover - Protocol
        ...

    def submit(self, request: CommissionRequest) -> None:  # pragma: no cover - Protocol
        ...

    def stop(self) -> None:  # pragma: no cover - Protocol
        ...


class BackgroundCommissionDispatcher(CommissionDispatcherInterface):
    """queue.Queue 와 단일 워커 스레드로 커미션을 처리한다."""

    _STOP = object()

    def __init__(self, apply: Callable[[CommissionRequest], CommissionOutcome]) -> None:
        self._apply = apply
        self._queue: queue.Queue[object] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._thread = threading.Thread(
                target=self._run, name="commission-worker", daemon=True
            )
            self._thread.start()
        logger.info("commission worker started")

    def submit(self, request: CommissionRequest) -> None:
        self._queue.put(request)

    def stop(self, timeout: float | None = 10.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        # 종료 표시는 큐 맨 뒤에 들어가므로 먼저 들어온 요청은 모두 처리된다.
        self._queue.put(self._STOP)
        thread.join(timeout)
        logger.info("commission worker stopped")

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                self._apply(item)  # type: ignore[arg-type]
            except Exception:
                logger.exception("commission processing failed")
            finally:
                self._queue.task_done()


class KafkaCommissionDispatcher(CommissionDispatcherInterface):
    """커미션 요청을 이벤트로 발행한다."""

    def __init__(
        self, bus_factory: Callable[[], KafkaEventBus] = get_kafka_event_bus
    ) -> None:
        self._bus_factory = bus_factory

    def start(self) -> None:
        return None

    def submit(self, request: CommissionRequest) -> None:
        event_id = uuid.uuid4().hex
        event = CommissionRequestedEvent(
            id=event_id,
            type=CommissionEventType.COMMISSION_REQUESTED,
            timestamp=utcnow().isoformat(),
            source=EVENT_SOURCE,
            version="1.0",
            referrer_id=request.referrer_id,
            referee_id=request.referee_id,
            source_reward=str(request.source_reward),
            reason=request.reason,
        )
        try:
            bus = self._bus_factory()
            wrapped = Event.wrap(asdict(event), event_id=event_id)
            bus.publish(TOPIC_COMMISSION.base, wrapped)
        except Exception:
            logger.exception(
                "failed to publish commission.requested for referee %s",
                request.referee_id,
            )

    def stop(self) -> None:
        try:
            self._bus_factory().close()
        except Exception:
            logger.exception("failed to flush commission events")


_dispatcher: Optional[CommissionDispatcherInterface] = None
_dispatcher_lock = threading.Lock()


def get_commission_dispatcher() -> CommissionDispatcherInterface:
    """COMMISSION_DISPATCH 설정에 맞는 디스패처 싱글톤. FastAPI Depends 팩토리로도 사용된다."""

    global _dispatcher

    if _dispatcher is not None:
        return _dispatcher

    with _dispatcher_lock:
        if _dispatcher is None:
            if get_config().commission_dispatch is CommissionDispatchMode.KAFKA:
                _dispatcher = KafkaCommissionDispatcher()
            else:
                service = get_commission_service(get_record_store(), get_config())
                _dispatcher = BackgroundCommissionDispatcher(service.apply)
        return _dispatcher
