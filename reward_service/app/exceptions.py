from __future__ import annotations

import math


class RewardError(Exception):
    """Base exception for all reward-service errors.

    status_code 는 응답 봉투(``{"ok": false, "error": ...}``)에 사용할 HTTP 상태 코드다.
    message 는 사용자에게 그대로 노출되므로 내부 식별자를 담지 않는다.
    """

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RewardError):
    """Missing or malformed input, or a business-rule input check (e.g. withdrawal floor)."""

    status_code = 400


class AuthError(RewardError):
    """Identity verification (signed initData) failure."""

    status_code = 401


class ForbiddenError(RewardError):
    """Banned user, limit reached, task inactive or full."""

    status_code = 403


class NotFoundError(RewardError):
    """Unknown user or task."""

    status_code = 404


class TokenExpiredError(RewardError):
    """Action token older than its expiry window."""

    status_code = 408


class ConflictError(RewardError):
    """Replayed or unknown action token, already-completed task."""

    status_code = 409


class RateLimitError(RewardError):
    """Requests spaced closer than the minimum action interval."""

    status_code = 429

    def __init__(self, retry_after_ms: int) -> None:
        self.retry_after_ms = max(0, retry_after_ms)
        super().__init__(
            f"Rate limit exceeded. Please wait {self.retry_after_seconds} seconds "
            "before the next action."
        )

    @property
    def retry_after_seconds(self) -> int:
        return math.ceil(self.retry_after_ms / 1000)


class UpstreamError(RewardError):
    """Record store or external API failure."""

    status_code = 500


class MethodNotAllowedError(RewardError):
    status_code = 405
