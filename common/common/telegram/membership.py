"""Telegram 채널 멤버십 확인 (Bot API ``getChatMember``)."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx


logger = logging.getLogger(__name__)


TELEGRAM_API_BASE = "https://api.telegram.org"
MEMBERSHIP_TIMEOUT_SECONDS = 5.0

MEMBER_STATUSES = frozenset({"member", "administrator", "creator"})


class MembershipCheckerInterface(Protocol):
    def is_member(self, user_id: int, channel: str) -> bool:  # pragma: no cover - Protocol
        ...


def normalize_channel(channel: str) -> str:
    """``@username`` 또는 ``-100...`` 형태의 chat_id 로 정규화한다."""
    channel = channel.strip()
    if channel.startswith("@") or channel.lstrip("-").isdigit():
        return channel
    return f"@{channel}"


class TelegramMembershipChecker(MembershipCheckerInterface):
    """member/administrator/creator 이면 True, 그 외 상태나 오류는 모두 False."""

    def __init__(
        self,
        bot_token: str | None,
        *,
        base_url: str = TELEGRAM_API_BASE,
        timeout: float = MEMBERSHIP_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def is_member(self, user_id: int, channel: str) -> bool:
        if not self._bot_token:
            logger.error("BOT_TOKEN is not configured for membership check")
            return False

        url = f"{self._base_url}/bot{self._bot_token}/getChatMember"
        params = {"chat_id": normalize_channel(channel), "user_id": str(user_id)}

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.get(url, params=params)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("getChatMember request failed user_id=%s: %s", user_id, exc)
            return False

        if resp.status_code != 200 or not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else None
            logger.error(
                "getChatMember returned error user_id=%s status=%s: %s",
                user_id,
                resp.status_code,
                description or resp.reason_phrase,
            )
            return False

        status = (data.get("result") or {}).get("status")
        return status in MEMBER_STATUSES
