from __future__ import annotations

from decimal import Decimal

import pytest

from common.eventbus.config import KafkaSettings
from common.eventbus.core import Event
from common.eventbus.topics import TOPIC_COMMISSION
from common.events.commission import CommissionEventType
from common.recordstore.interfaces import RecordStoreError

from reward_service.app.event_handlers import commission_handler
from reward_service.app.models.reward import CommissionOutcome, CommissionRequest


class FakeCommissionService:
    def __init__(self) -> None:
        self.received: list[CommissionRequest] = []
        self.raise_error: Exception | None = None

    def apply(self, request: CommissionRequest) -> CommissionOutcome:
        if self.raise_error is not None:
            raise self.raise_error
        self.received.append(request)
        return CommissionOutcome(
            credited=True,
            amount=request.source_reward * Decimal("0.05"),
            new_referrer_balance=Decimal("10"),
        )


class FakeKafkaEventBus:
    instances: list["FakeKafkaEventBus"] = []
    next_event: Event | None = None

    def __init__(self, settings: KafkaSettings) -> None:
        self.brokers = settings.brokers
        self.subscribe_calls: list[dict] = []
        self.closed = False
        self.__class__.instances.append(self)

    def subscribe(self, *, group_id, topic, handler, stop_flag) -> None:
        self.subscribe_calls.append(
            {
                "group_id": group_id,
                "topic": topic,
                "handler": handler,
                "stop_flag": stop_flag,
            }
        )
        if self.__class__.next_event is not None:
            handler(self.__class__.next_event)

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def reset_fake_kafka_event_bus_state() -> None:
    FakeKafkaEventBus.instances = []
    FakeKafkaEventBus.next_event = None


def _patch_consumer_dependencies(
    monkeypatch: pytest.MonkeyPatch,
    *,
    event: Event | None,
) -> None:
    FakeKafkaEventBus.next_event = event
    monkeypatch.setattr(
        commission_handler,
        "load_kafka_settings",
        lambda: KafkaSettings(brokers="kafka:9092", group_id="reward-group"),
    )
    monkeypatch.setattr(commission_handler, "KafkaEventBus", FakeKafkaEventBus)


def _run_consumer_once(
    monkeypatch: pytest.MonkeyPatch,
    *,
    event: Event,
    service: FakeCommissionService | None = None,
) -> tuple[FakeCommissionService, FakeKafkaEventBus, list[bool]]:
    local_service = service or FakeCommissionService()
    _patch_consumer_dependencies(monkeypatch, event=event)

    stop_flag = [False]
    commission_handler.run_commission_consumer(stop_flag, local_service)

    assert len(FakeKafkaEventBus.instances) == 1
    bus = FakeKafkaEventBus.instances[0]
    return local_service, bus, stop_flag


def _build_commission_payload(*, event_type: str) -> dict:
    return {
        "id": "commission-1",
        "type": event_type,
        "timestamp": "2025-01-01T12:00:00+00:00",
        "source": "reward-service",
        "version": "1.0",
        "referrer_id": 2,
        "referee_id": 1,
        "source_reward": "3",
        "reason": "watchAd",
    }


def test_run_commission_consumer_applies_requested_event(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    event = Event(
        id="commission-1",
        payload=_build_commission_payload(
            event_type=CommissionEventType.COMMISSION_REQUESTED
        ),
    )

    service, bus, stop_flag = _run_consumer_once(monkeypatch, event=event)

    assert bus.brokers == "kafka:9092"
    assert bus.closed is True
    assert len(bus.subscribe_calls) == 1
    call = bus.subscribe_calls[0]
    assert call["group_id"] == "reward-group-commission"
    assert call["topic"] == TOPIC_COMMISSION
    assert call["stop_flag"] is stop_flag

    assert service.received == [
        CommissionRequest(
            referrer_id=2,
            referee_id=1,
            source_reward=Decimal("3"),
            reason="watchAd",
            event_id="commission-1",
        )
    ]


def test_run_commission_consumer_ignores_unknown_event_type(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    event = Event(
        id="commission-unknown",
        payload=_build_commission_payload(event_type="commission.reversed"),
    )

    service, bus, _ = _run_consumer_once(monkeypatch, event=event)

    assert service.received == []
    assert bus.closed is True


@pytest.mark.parametrize(
    "payload",
    [
        ["not", "a", "dict"],
        {"type": CommissionEventType.COMMISSION_REQUESTED, "id": "broken"},
        {
            **_build_commission_payload(
                event_type=CommissionEventType.COMMISSION_REQUESTED
            ),
            "source_reward": "three",
        },
    ],
)
def test_run_commission_consumer_drops_undecodable_payload(
    monkeypatch: pytest.MonkeyPatch, payload
) -> None:
    event = Event(id="commission-broken", payload=payload)

    service, _, _ = _run_consumer_once(monkeypatch, event=event)

    assert service.received == []


def test_run_commission_consumer_propagates_service_error_and_closes_bus(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service = FakeCommissionService()
    service.raise_error = RuntimeError("record store down")
    event = Event(
        id="commission-1",
        payload=_build_commission_payload(
            event_type=CommissionEventType.COMMISSION_REQUESTED
        ),
    )

    with pytest.raises(RuntimeError, match="record store down"):
        _run_consumer_once(monkeypatch, event=event, service=service)

    assert len(FakeKafkaEventBus.instances) == 1
    assert FakeKafkaEventBus.instances[0].closed is True


def _requested_event(event_id: str = "commission-1") -> Event:
    return Event(
        id=event_id,
        payload={
            **_build_commission_payload(
                event_type=CommissionEventType.COMMISSION_REQUESTED
            ),
            "id": event_id,
        },
    )


def test_redelivered_event_after_failed_history_insert_credits_once(
    harness, monkeypatch: pytest.MonkeyPatch
) -> None:
    harness.seed_user(2)
    original_insert = harness.store.insert
    failures: list[str] = []

    def flaky_insert(collection, row):
        if collection == "commission_history" and not failures:
            failures.append(collection)
            raise RecordStoreError("connection reset")
        return original_insert(collection, row)

    monkeypatch.setattr(harness.store, "insert", flaky_insert)
    event = _requested_event()

    with pytest.raises(RecordStoreError):
        commission_handler._handle_commission_event(event, service=harness.commissions)
    assert harness.user(2).balance == Decimal("0")

    commission_handler._handle_commission_event(event, service=harness.commissions)
    commission_handler._handle_commission_event(event, service=harness.commissions)

    assert harness.user(2).balance == Decimal("0.15")
    rows = harness.store.rows("commission_history")
    assert [row["event_id"] for row in rows] == ["commission-1"]


def test_redelivered_event_after_failed_credit_credits_once(
    harness, monkeypatch: pytest.MonkeyPatch
) -> None:
    harness.seed_user(2)
    original_update_if = harness.user_repo.update_if
    failures: list[int] = []

    def flaky_update_if(user_id, expected, values):
        if not failures:
            failures.append(user_id)
            raise RecordStoreError("upstream timeout", status_code=504)
        return original_update_if(user_id, expected, values)

    monkeypatch.setattr(harness.user_repo, "update_if", flaky_update_if)
    event = _requested_event()

    with pytest.raises(RecordStoreError):
        commission_handler._handle_commission_event(event, service=harness.commissions)
    # 적립에 실패하면 선점 기록도 남지 않는다.
    assert harness.store.rows("commission_history") == []

    commission_handler._handle_commission_event(event, service=harness.commissions)
    commission_handler._handle_commission_event(event, service=harness.commissions)

    assert harness.user(2).balance == Decimal("0.15")
    assert len(harness.store.rows("commission_history")) == 1


def test_distinct_events_are_credited_separately(harness) -> None:
    harness.seed_user(2)

    for event_id in ("commission-1", "commission-2"):
        commission_handler._handle_commission_event(
            _requested_event(event_id), service=harness.commissions
        )

    assert harness.user(2).balance == Decimal("0.30")
