"""reward-service 설정.

- 보상 금액, 일일 한도, 쿨다운, 커미션 비율 등 비즈니스 상수는 불변 ``RewardPolicy`` 로 묶어
  서비스에 주입한다. 기본값은 운영 값이며 ``config.yaml`` 의 ``reward_policy`` 섹션으로 덮어쓸 수 있다.
- 외부 연동(봇 토큰, 커미션 전달 방식 등)은 환경 변수에서 읽는다.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml


DEFAULT_CONFIG_FILE_NAME = "config.yaml"

BOT_TOKEN = "BOT_TOKEN"
COMMISSION_SERVICE_KEY = "COMMISSION_SERVICE_KEY"
COMMISSION_DISPATCH = "COMMISSION_DISPATCH"
TOKEN_SWEEP_INTERVAL_SECONDS = "TOKEN_SWEEP_INTERVAL_SECONDS"


@dataclass(frozen=True, slots=True)
class RewardPolicy:
    """프로세스 전역 고정 비즈니스 상수."""

    ad_reward: Decimal = Decimal("3")
    max_ads_per_cycle: int = 100
    max_spins_per_cycle: int = 15
    # 한도에 도달한 시점부터 카운터가 풀릴 때까지의 시간 (자정 기준이 아님)
    limit_cooldown: timedelta = timedelta(hours=6)
    min_action_interval: timedelta = timedelta(seconds=3)
    action_token_ttl: timedelta = timedelta(seconds=60)
    # 인덱스 0, 4 가 모두 5 이므로 값 분포는 균등하지 않다.
    spin_sectors: tuple[Decimal, ...] = field(
        default_factory=lambda: tuple(Decimal(v) for v in ("5", "10", "15", "20", "5"))
    )
    commission_rate: Decimal = Decimal("0.05")
    commission_floor: Decimal = Decimal("0.000001")
    channel_task_reward: Decimal = Decimal("50")
    required_channel: str = "@botbababab"
    min_withdrawal: Decimal = Decimal("1000")
    withdrawal_history_limit: int = 10
    init_data_max_age: timedelta = timedelta(minutes=20)


class CommissionDispatchMode(StrEnum):
    THREAD = "thread"
    KAFKA = "kafka"


@dataclass(frozen=True, slots=True)
class AppConfig:
    """reward-service 전체 설정 루트."""

    policy: RewardPolicy
    bot_token: str | None
    commission_service_key: str | None
    commission_dispatch: CommissionDispatchMode
    token_sweep_interval_seconds: float


_DURATION_FIELDS = {
    "limit_cooldown",
    "min_action_interval",
    "action_token_ttl",
    "init_data_max_age",
}
_DECIMAL_FIELDS = {
    "ad_reward",
    "commission_rate",
    "commission_floor",
    "channel_task_reward",
    "min_withdrawal",
}
_INT_FIELDS = {"max_ads_per_cycle", "max_spins_per_cycle", "withdrawal_history_limit"}


def _find_config_path() -> Path | None:
    """현재 작업 디렉토리 기준으로 상위로 올라가며 config.yaml 을 찾는다."""

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / DEFAULT_CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def _to_decimal(key: str, raw: Any) -> Decimal:
    try:
        return Decimal(str(raw))
    except InvalidOperation as exc:
        raise RuntimeError(f"invalid reward_policy.{key}: {raw!r}") from exc


def parse_reward_policy(raw: dict[str, Any]) -> RewardPolicy:
    """``reward_policy`` 섹션 dict 를 RewardPolicy 로 변환한다.

    - 기간 값은 ``*_seconds`` 키로 받는다 (예: limit_cooldown_seconds: 21600).
    - 알 수 없는 키는 설정 실수이므로 RuntimeError 를 발생시킨다.
    """

    known = {f.name for f in fields(RewardPolicy)}
    overrides: dict[str, Any] = {}
    for key, value in raw.items():
        name = key.removesuffix("_seconds")
        if name not in known:
            raise RuntimeError(f"unknown reward_policy key: {key}")

        if name in _DURATION_FIELDS:
            overrides[name] = timedelta(seconds=float(value))
        elif name in _DECIMAL_FIELDS:
            overrides[name] = _to_decimal(key, value)
        elif name in _INT_FIELDS:
            overrides[name] = int(value)
        elif name == "spin_sectors":
            sectors = tuple(_to_decimal(key, v) for v in value or [])
            if not sectors:
                raise RuntimeError("reward_policy.spin_sectors must not be empty")
            overrides[name] = sectors
        else:
            overrides[name] = str(value)

    return RewardPolicy(**overrides)


def load_reward_policy(path: Path | None = None) -> RewardPolicy:
    path = path or _find_config_path()
    if path is None:
        return RewardPolicy()

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    section = data.get("reward_policy") or {}
    if not isinstance(section, dict):
        raise RuntimeError(f"reward_policy in {path} must be a mapping")
    return parse_reward_policy(section)


def _read_float(env: str, default: float) -> float:
    raw = os.getenv(env, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{env} must be a float if set, got: {raw!r}") from exc


def load_config() -> AppConfig:
    """reward-service 설정을 로드하여 AppConfig 로 반환한다."""

    dispatch_raw = (os.getenv(COMMISSION_DISPATCH) or "thread").strip().lower()
    try:
        dispatch = CommissionDispatchMode(dispatch_raw)
    except ValueError as exc:
        raise RuntimeError(
            f"{COMMISSION_DISPATCH} must be 'thread' or 'kafka', got: {dispatch_raw!r}"
        ) from exc

    return AppConfig(
        policy=load_reward_policy(),
        bot_token=os.getenv(BOT_TOKEN) or None,
        commission_service_key=os.getenv(COMMISSION_SERVICE_KEY) or None,
        commission_dispatch=dispatch,
        token_sweep_interval_seconds=_read_float(TOKEN_SWEEP_INTERVAL_SECONDS, 300.0),
    )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """FastAPI DI 용 설정 싱글톤."""

    return load_config()
