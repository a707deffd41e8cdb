"""만료된 액션 토큰 정리 스케줄러.

소비되지 않고 만료된 temp_actions 행을 주기적으로 삭제한다.
"""

from __future__ import annotations

import logging
import threading

from common.recordstore.client import get_record_store

from ..config import get_config
from ..repositories.action_token_repository import ActionTokenRepository
from ..repositories.user_repository import UserRepository
from ..services.action_token_service import ActionTokenService


logger = logging.getLogger(__name__)


_SWEEPER_THREAD: threading.Thread | None = None
_SWEEPER_STOP_EVENT: threading.Event | None = None


def sweep_once(service: ActionTokenService) -> int:
    try:
        return service.purge_expired()
    except Exception:  # noqa: BLE001
        logger.exception("expired action token sweep failed")
        return 0


def _run_sweeper_loop(stop_event: threading.Event, interval: float) -> None:
    logger.info("token sweeper thread started (interval=%.0f seconds)", interval)

    config = get_config()
    store = get_record_store()
    service = ActionTokenService(
        ActionTokenRepository(store), UserRepository(store), config.policy
    )

    sweep_once(service)
    while not stop_event.wait(interval):
        sweep_once(service)

    logger.info("token sweeper thread stopped")


def start_token_sweeper() -> None:
    """토큰 정리 스레드를 시작한다. 주기가 0 이하이면 시작하지 않는다."""

    global _SWEEPER_THREAD, _SWEEPER_STOP_EVENT

    if _SWEEPER_THREAD and _SWEEPER_THREAD.is_alive():
        return

    interval = get_config().token_sweep_interval_seconds
    if interval <= 0:
        logger.info("token sweeper disabled")
        return

    stop_event = threading.Event()
    thread = threading.Thread(
        target=_run_sweeper_loop,
        args=(stop_event, interval),
        name="token-sweeper",
        daemon=True,
    )

    _SWEEPER_STOP_EVENT = stop_event
    _SWEEPER_THREAD = thread

    thread.start()


def stop_token_sweeper() -> None:
    global _SWEEPER_THREAD, _SWEEPER_STOP_EVENT

    if _SWEEPER_THREAD is None or _SWEEPER_STOP_EVENT is None:
        return

    _SWEEPER_STOP_EVENT.set()
    _SWEEPER_THREAD.join(timeout=10.0)

    _SWEEPER_THREAD = None
    _SWEEPER_STOP_EVENT = None
