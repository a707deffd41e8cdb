"""Telegram Mini App ``initData`` 서명 검증.

검증 절차:
1. ``hash`` 를 제외한 모든 key=value 쌍을 key 순으로 정렬해 개행으로 이어 붙인다.
2. secret_key = HMAC_SHA256(key="WebAppData", msg=bot_token)
3. HMAC_SHA256(key=secret_key, msg=data_check_string) 의 hex 값이 ``hash`` 와 같아야 한다.
4. ``auth_date`` 가 허용된 신선도 범위(기본 20분) 안에 있어야 한다.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl, urlencode


logger = logging.getLogger(__name__)


DEFAULT_MAX_AGE = timedelta(minutes=20)


@dataclass(frozen=True, slots=True)
class InitDataResult:
    valid: bool
    auth_date: datetime | None = None
    user_id: int | None = None
    reason: str | None = None


def _invalid(reason: str, auth_date: datetime | None = None) -> InitDataResult:
    logger.warning("initData verification failed: %s", reason)
    return InitDataResult(valid=False, auth_date=auth_date, reason=reason)


def _compute_hash(fields: dict[str, str], bot_token: str) -> str:
    data_check_string = "\n".join(f"{key}={fields[key]}" for key in sorted(fields))
    secret_key = hmac.new(b"WebAppData", bot_token.encode("utf-8"), hashlib.sha256).digest()
    return hmac.new(
        secret_key, data_check_string.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def _extract_user_id(raw_user: str | None) -> int | None:
    if not raw_user:
        return None
    try:
        user = json.loads(raw_user)
        return int(user["id"])
    except (ValueError, TypeError, KeyError):
        return None


def verify_init_data(
    init_data: str | None,
    bot_token: str | None,
    *,
    max_age: timedelta = DEFAULT_MAX_AGE,
    now: datetime | None = None,
) -> InitDataResult:
    """서명된 initData 를 검증하고 auth_date, 서명된 user id 를 함께 반환한다."""
    if not init_data or not bot_token:
        return _invalid("initData or bot token is missing")

    pairs = parse_qsl(init_data, keep_blank_values=True)
    fields = dict(pairs)
    received_hash = fields.pop("hash", None)
    if not received_hash:
        return _invalid("hash is missing")

    calculated = _compute_hash(fields, bot_token)
    if not hmac.compare_digest(calculated, received_hash):
        return _invalid("hash mismatch")

    raw_auth_date = fields.get("auth_date")
    if not raw_auth_date:
        return _invalid("auth_date is missing")
    try:
        auth_date = datetime.fromtimestamp(int(raw_auth_date), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return _invalid("auth_date is malformed")

    current = now or datetime.now(timezone.utc)
    if current - auth_date > max_age:
        return _invalid("initData expired", auth_date)

    return InitDataResult(
        valid=True,
        auth_date=auth_date,
        user_id=_extract_user_id(fields.get("user")),
    )


def sign_init_data(fields: dict[str, str], bot_token: str) -> str:
    """필드에 서명(hash)을 붙여 initData query string 을 만든다. 테스트/로컬 개발용."""
    return urlencode({**fields, "hash": _compute_hash(fields, bot_token)})
