from __future__ import annotations

import random
from collections import Counter
from decimal import Decimal

import pytest

from reward_service.app.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from reward_service.app.models.action_token import ActionKind
from reward_service.app.models.reward import CommissionRequest
from reward_service.app.services.reward_service import NOT_A_MEMBER_MESSAGE, pick_spin_prize


# -------- 광고 --------


def test_watch_ad_credits_reward_and_requests_commission(harness) -> None:
    harness.seed_user(2)
    harness.seed_user(1, referrer_id=2)
    token = harness.issue(1, ActionKind.AD_VIEW)

    result = harness.rewards.watch_ad(1, token)

    assert result.new_balance == Decimal("3")
    assert result.actual_reward == Decimal("3")
    assert result.new_ads_count == 1
    stored = harness.user(1)
    assert stored.balance == Decimal("3")
    assert stored.ads_watched_today == 1
    assert stored.last_activity == harness.clock.now
    assert harness.dispatcher.submitted == [
        CommissionRequest(
            referrer_id=2, referee_id=1, source_reward=Decimal("3"), reason="watchAd"
        )
    ]


def test_watch_ad_without_referrer_skips_commission(harness) -> None:
    harness.seed_user(1)

    harness.rewards.watch_ad(1, harness.issue(1, ActionKind.AD_VIEW))

    assert harness.dispatcher.submitted == []


def test_replayed_token_is_rejected_without_credit(harness) -> None:
    harness.seed_user(1)
    token = harness.issue(1, ActionKind.AD_VIEW)
    harness.rewards.watch_ad(1, token)
    harness.clock.advance(seconds=5)

    with pytest.raises(ConflictError):
        harness.rewards.watch_ad(1, token)

    assert harness.user(1).balance == Decimal("3")


def test_requests_closer_than_interval_are_rate_limited(harness) -> None:
    harness.seed_user(1)
    harness.rewards.watch_ad(1, harness.issue(1, ActionKind.AD_VIEW))
    harness.clock.advance(seconds=1)

    with pytest.raises(RateLimitError) as exc_info:
        harness.rewards.watch_ad(1, harness.issue(1, ActionKind.AD_VIEW))
    assert exc_info.value.retry_after_ms == 2000
    assert harness.user(1).balance == Decimal("3")

    harness.clock.advance(seconds=2)
    result = harness.rewards.watch_ad(1, harness.issue(1, ActionKind.AD_VIEW))
    assert result.new_ads_count == 2


def test_ad_cap_then_cooldown_reset(harness) -> None:
    harness.seed_user(1, ads_watched_today=99)
    reached_at = harness.clock.now

    result = harness.rewards.watch_ad(1, harness.issue(1, ActionKind.AD_VIEW))

    assert result.new_ads_count == 100
    assert harness.user(1).ads_limit_reached_at == reached_at

    harness.clock.advance(hours=5)
    with pytest.raises(ForbiddenError, match="Daily ad limit"):
        harness.rewards.watch_ad(1, harness.issue(1, ActionKind.AD_VIEW))

    harness.clock.advance(hours=1, seconds=1)
    result = harness.rewards.watch_ad(1, harness.issue(1, ActionKind.AD_VIEW))
    assert result.new_ads_count == 1
    assert harness.user(1).ads_limit_reached_at is None
    assert harness.user(1).balance == Decimal("6")


def test_banned_user_cannot_earn(harness) -> None:
    harness.seed_user(1)
    token = harness.issue(1, ActionKind.AD_VIEW)
    harness.user_row(1)["is_banned"] = True

    with pytest.raises(ForbiddenError, match="User is banned."):
        harness.rewards.watch_ad(1, token)

    assert harness.user(1).balance == Decimal("0")


def test_commission_handoff_failure_does_not_affect_reward(harness) -> None:
    harness.seed_user(2)
    harness.seed_user(1, referrer_id=2)
    harness.dispatcher.raise_error = RuntimeError("queue closed")

    result = harness.rewards.watch_ad(1, harness.issue(1, ActionKind.AD_VIEW))

    assert result.new_balance == Decimal("3")
    assert harness.user(1).balance == Decimal("3")


def test_reward_recomputed_when_balance_changed_concurrently(
    harness, monkeypatch: pytest.MonkeyPatch
) -> None:
    harness.seed_user(1, balance=Decimal("1"))
    original = harness.user_repo.update_if
    raced: list[bool] = []

    def racing_update_if(user_id, expected, values):
        if not raced:
            raced.append(True)
            # 같은 순간 커미션이 적립되었다.
            harness.user_row(1)["balance"] += Decimal("0.15")
        return original(user_id, expected, values)

    monkeypatch.setattr(harness.user_repo, "update_if", racing_update_if)

    result = harness.rewards.watch_ad(1, harness.issue(1, ActionKind.AD_VIEW))

    assert result.new_balance == Decimal("4.15")
    assert harness.user(1).balance == Decimal("4.15")
    assert harness.user(1).ads_watched_today == 1


# -------- 스핀 --------


def test_pre_spin_checks_without_mutation(harness) -> None:
    harness.seed_user(1)

    harness.rewards.pre_spin(1, harness.issue(1, ActionKind.PRE_SPIN))

    assert harness.store.update_calls == []
    assert harness.user(1).last_activity is None


def test_spin_result_uses_drawn_sector(harness) -> None:
    harness.seed_user(1)
    harness.randbelow = lambda n: 3

    harness.rewards.pre_spin(1, harness.issue(1, ActionKind.PRE_SPIN))
    result = harness.rewards.spin_result(1, harness.issue(1, ActionKind.SPIN_RESULT))

    assert result.prize_index == 3
    assert result.actual_reward == Decimal("20")
    assert result.new_balance == Decimal("20")
    assert result.new_spins_count == 1


def test_spin_rejected_at_cap(harness) -> None:
    harness.seed_user(1, spins_today=15)

    with pytest.raises(ForbiddenError, match=r"Daily spin limit \(15\) reached\."):
        harness.rewards.pre_spin(1, harness.issue(1, ActionKind.PRE_SPIN))
    with pytest.raises(ForbiddenError):
        harness.rewards.spin_result(1, harness.issue(1, ActionKind.SPIN_RESULT))

    assert harness.user(1).balance == Decimal("0")


def test_spin_cap_then_cooldown_reset(harness) -> None:
    harness.seed_user(1, spins_today=14)
    reached_at = harness.clock.now

    result = harness.rewards.spin_result(1, harness.issue(1, ActionKind.SPIN_RESULT))

    assert result.new_spins_count == 15
    assert harness.user(1).spins_limit_reached_at == reached_at

    harness.clock.advance(hours=5)
    with pytest.raises(ForbiddenError, match="Daily spin limit"):
        harness.rewards.spin_result(1, harness.issue(1, ActionKind.SPIN_RESULT))

    harness.clock.advance(hours=1)
    with pytest.raises(ForbiddenError, match="Daily spin limit"):
        harness.rewards.pre_spin(1, harness.issue(1, ActionKind.PRE_SPIN))

    harness.clock.advance(seconds=1)
    harness.rewards.pre_spin(1, harness.issue(1, ActionKind.PRE_SPIN))
    result = harness.rewards.spin_result(1, harness.issue(1, ActionKind.SPIN_RESULT))
    assert result.new_spins_count == 1
    assert harness.user(1).spins_limit_reached_at is None
    assert harness.user(1).balance == Decimal("10")


def test_spin_token_kinds_are_not_interchangeable(harness) -> None:
    harness.seed_user(1)
    token = harness.issue(1, ActionKind.PRE_SPIN)

    with pytest.raises(ConflictError):
        harness.rewards.spin_result(1, token)


def test_spin_prize_distribution_is_uniform_over_sectors() -> None:
    sectors = tuple(Decimal(v) for v in ("5", "10", "15", "20", "5"))
    rng = random.Random(20250101)
    trials = 20_000

    indexes = Counter()
    prizes = Counter()
    for _ in range(trials):
        index, prize = pick_spin_prize(sectors, rng.randrange)
        indexes[index] += 1
        prizes[prize] += 1

    assert set(indexes) == {0, 1, 2, 3, 4}
    for count in indexes.values():
        assert abs(count / trials - 0.2) < 0.02
    # 5 는 두 칸을 차지하므로 약 40%
    assert abs(prizes[Decimal("5")] / trials - 0.4) < 0.02


# -------- 채널 가입 태스크 --------


def test_channel_task_requires_membership(harness) -> None:
    harness.seed_user(1)

    with pytest.raises(ValidationError, match=NOT_A_MEMBER_MESSAGE):
        harness.rewards.complete_channel_task(1, harness.issue(1, ActionKind.CHANNEL_TASK))

    assert harness.membership.calls == [(1, "@botbababab")]
    assert harness.user(1).balance == Decimal("0")
    assert harness.user(1).task_completed is False


def test_channel_task_rewards_once(harness) -> None:
    harness.seed_user(1)
    harness.membership.members.add((1, "@botbababab"))

    result = harness.rewards.complete_channel_task(
        1, harness.issue(1, ActionKind.CHANNEL_TASK)
    )

    assert result.new_balance == Decimal("50")
    assert harness.user(1).task_completed is True

    harness.clock.advance(seconds=10)
    with pytest.raises(ForbiddenError, match="Task already completed."):
        harness.rewards.complete_channel_task(1, harness.issue(1, ActionKind.CHANNEL_TASK))
    assert harness.user(1).balance == Decimal("50")


# -------- 동적 태스크 --------


def test_complete_task_credits_and_records_completion(harness) -> None:
    harness.seed_user(2)
    harness.seed_user(1, referrer_id=2)
    harness.seed_task(10, task_reward=Decimal("25"), max_users=5)

    result = harness.rewards.complete_task(1, 10, harness.issue(1, ActionKind.TASK_COMPLETE))

    assert result.new_balance == Decimal("25")
    assert result.new_current_users == 1
    assert harness.task(10).current_users == 1
    assert harness.task(10).is_active is True
    assert [(r["user_id"], r["task_id"]) for r in harness.store.rows("user_tasks_new")] == [
        (1, 10)
    ]
    assert harness.dispatcher.submitted[0].source_reward == Decimal("25")


def test_complete_task_twice_is_conflict(harness) -> None:
    harness.seed_user(1)
    harness.seed_task(10)
    harness.rewards.complete_task(1, 10, harness.issue(1, ActionKind.TASK_COMPLETE))
    harness.clock.advance(seconds=5)

    with pytest.raises(ConflictError, match="Task already completed by user."):
        harness.rewards.complete_task(1, 10, harness.issue(1, ActionKind.TASK_COMPLETE))

    assert harness.user(1).balance == Decimal("25")
    assert harness.task(10).current_users == 1


def test_last_slot_deactivates_task(harness) -> None:
    harness.seed_user(1)
    harness.seed_user(3)
    harness.seed_task(10, max_users=1)

    harness.rewards.complete_task(1, 10, harness.issue(1, ActionKind.TASK_COMPLETE))

    assert harness.task(10).is_active is False
    with pytest.raises(ForbiddenError):
        harness.rewards.complete_task(3, 10, harness.issue(3, ActionKind.TASK_COMPLETE))
    assert harness.user(3).balance == Decimal("0")


def test_full_task_is_rejected(harness) -> None:
    harness.seed_user(1)
    harness.seed_task(10, max_users=2, current_users=2)

    with pytest.raises(ForbiddenError, match="maximum user capacity"):
        harness.rewards.complete_task(1, 10, harness.issue(1, ActionKind.TASK_COMPLETE))


def test_task_filled_during_member_check_still_stamps_activity(
    harness, monkeypatch: pytest.MonkeyPatch
) -> None:
    harness.seed_user(1)
    harness.seed_task(10, max_users=1, verify_channel="@sponsor")

    def member_while_task_fills(user_id: int, channel: str) -> bool:
        harness.task_repo.update_participants(10, 0, 1, deactivate=True)
        return True

    monkeypatch.setattr(harness.membership, "is_member", member_while_task_fills)

    with pytest.raises(ForbiddenError, match="inactive"):
        harness.rewards.complete_task(1, 10, harness.issue(1, ActionKind.TASK_COMPLETE))

    # 보상은 없지만 활동 기록은 남아 3초 제한이 걸린다.
    assert harness.user(1).balance == Decimal("0")
    assert harness.user(1).last_activity == harness.clock.now
    assert harness.store.rows("user_tasks_new") == []


def test_missing_task_id_keeps_token(harness) -> None:
    harness.seed_user(1)
    harness.seed_task(10)
    token = harness.issue(1, ActionKind.TASK_COMPLETE)

    with pytest.raises(ValidationError):
        harness.rewards.complete_task(1, None, token)

    result = harness.rewards.complete_task(1, 10, token)
    assert result.new_current_users == 1


def test_unknown_task(harness) -> None:
    harness.seed_user(1)

    with pytest.raises(NotFoundError):
        harness.rewards.complete_task(1, 99, harness.issue(1, ActionKind.TASK_COMPLETE))


def test_task_with_verify_channel_requires_membership(harness) -> None:
    harness.seed_user(1)
    harness.seed_task(10, verify_channel="@sponsor")

    with pytest.raises(ValidationError, match=NOT_A_MEMBER_MESSAGE):
        harness.rewards.complete_task(1, 10, harness.issue(1, ActionKind.TASK_COMPLETE))
    assert harness.task(10).current_users == 0

    harness.membership.members.add((1, "@sponsor"))
    result = harness.rewards.complete_task(
        1, 10, harness.issue(1, ActionKind.TASK_COMPLETE)
    )
    assert result.new_balance == Decimal("25")


def test_slot_claim_retries_after_concurrent_increment(
    harness, monkeypatch: pytest.MonkeyPatch
) -> None:
    harness.seed_user(1)
    harness.seed_task(10, max_users=3)
    original = harness.task_repo.update_participants
    expected_values: list[int] = []

    def racing_update(task_id, expected_current, new_current, *, deactivate):
        if not expected_values:
            # 다른 유저가 먼저 자리를 차지했다.
            harness.store.rows("tasks_new")[0]["current_users"] += 1
        expected_values.append(expected_current)
        return original(task_id, expected_current, new_current, deactivate=deactivate)

    monkeypatch.setattr(harness.task_repo, "update_participants", racing_update)

    result = harness.rewards.complete_task(1, 10, harness.issue(1, ActionKind.TASK_COMPLETE))

    assert expected_values == [0, 1]
    assert result.new_current_users == 2
    assert harness.task(10).current_users == 2


# -------- 출금 --------


def test_withdraw_debits_exactly_and_records_pending_request(harness) -> None:
    harness.seed_user(1, balance=Decimal("1500"))

    result = harness.rewards.withdraw(
        1, harness.issue(1, ActionKind.WITHDRAW), Decimal("1000"), "binance-42"
    )

    assert result.new_balance == Decimal("500")
    assert harness.user(1).balance == Decimal("500")
    rows = harness.store.rows("withdrawal_history")
    assert len(rows) == 1
    assert rows[0]["user_id"] == 1
    assert rows[0]["binance_id"] == "binance-42"
    assert rows[0]["amount"] == Decimal("1000")
    assert rows[0]["status"] == "pending"
    assert harness.dispatcher.submitted == []


def test_withdraw_below_minimum(harness) -> None:
    harness.seed_user(1, balance=Decimal("1500"))

    with pytest.raises(ValidationError, match="Minimum withdrawal amount is 1,000 SHIB."):
        harness.rewards.withdraw(
            1, harness.issue(1, ActionKind.WITHDRAW), Decimal("999"), "binance-42"
        )

    assert harness.user(1).balance == Decimal("1500")
    assert harness.store.rows("withdrawal_history") == []


def test_withdraw_insufficient_balance(harness) -> None:
    harness.seed_user(1, balance=Decimal("1500"))

    with pytest.raises(ValidationError, match="Insufficient balance."):
        harness.rewards.withdraw(
            1, harness.issue(1, ActionKind.WITHDRAW), Decimal("2000"), "binance-42"
        )

    assert harness.user(1).balance == Decimal("1500")


@pytest.mark.parametrize(
    ("amount", "binance_id"),
    [(None, "binance-42"), (Decimal("0"), "binance-42"), (Decimal("1000"), None)],
)
def test_withdraw_rejects_incomplete_input(harness, amount, binance_id) -> None:
    harness.seed_user(1, balance=Decimal("1500"))

    with pytest.raises(ValidationError):
        harness.rewards.withdraw(
            1, harness.issue(1, ActionKind.WITHDRAW), amount, binance_id
        )

    assert harness.user(1).balance == Decimal("1500")
