from __future__ import annotations

from reward_service.app.models.action_token import ActionKind
from reward_service.app.scheduler.token_sweeper import sweep_once


class FailingTokenService:
    def purge_expired(self) -> int:
        raise RuntimeError("record store down")


def test_sweep_once_purges_expired_tokens(harness) -> None:
    harness.seed_user(1)
    harness.issue(1, ActionKind.AD_VIEW)
    harness.clock.advance(seconds=120)

    assert sweep_once(harness.tokens) == 1
    assert harness.store.rows("temp_actions") == []


def test_sweep_once_survives_failure() -> None:
    assert sweep_once(FailingTokenService()) == 0
