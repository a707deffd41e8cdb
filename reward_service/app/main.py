from __future__ import annotations

import logging
import os
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from common.logger import setup_logger
from common.middleware.request_trace import RequestTraceMiddleware
from common.recordstore.client import close_record_store, get_record_store

from .api.health import router as health_router
from .api.v1 import api_router
from .config import CommissionDispatchMode, get_config
from .event_handlers import run_commission_consumer
from .exceptions import RateLimitError, RewardError
from .scheduler.token_sweeper import start_token_sweeper, stop_token_sweeper
from .services.commission_dispatcher import get_commission_dispatcher
from .services.commission_service import get_commission_service


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - framework hook
    """애플리케이션 생명주기 동안 백그라운드 작업을 관리한다.

    - 커미션 디스패처 (thread 모드: 워커 스레드, kafka 모드: 발행 전용)
    - kafka 모드일 때 commission.requested 이벤트를 소비하는 컨슈머 스레드
    - 만료 토큰 정리 스레드
    """

    config = get_config()
    dispatcher = get_commission_dispatcher()
    dispatcher.start()

    consumer_stop_flag = [False]
    consumer_thread: threading.Thread | None = None
    if config.commission_dispatch is CommissionDispatchMode.KAFKA:
        consumer_thread = threading.Thread(
            target=run_commission_consumer,
            args=(consumer_stop_flag, get_commission_service(get_record_store(), config)),
            name="commission-consumer",
            daemon=True,
        )
        consumer_thread.start()

    start_token_sweeper()

    try:
        yield
    finally:
        stop_token_sweeper()
        consumer_stop_flag[0] = True
        if consumer_thread is not None:
            consumer_thread.join(timeout=10.0)
        dispatcher.stop()
        close_record_store()


async def handle_reward_error(request: Request, exc: RewardError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    if exc.status_code >= 500:
        logger.error("request failed status=%d: %s", exc.status_code, exc.message)
    else:
        logger.info("request rejected status=%d: %s", exc.status_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.message},
        headers=headers,
    )


async def handle_invalid_body(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400, content={"ok": False, "error": "Invalid JSON payload."}
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=500, content={"ok": False, "error": "Internal server error."}
    )


def create_app() -> FastAPI:
    setup_logger()
    app = FastAPI(
        title="Reward Service",
        version="0.1.0",
        lifespan=lifespan,
    )

    # 공통 Request/Span ID 로그 미들웨어
    app.add_middleware(RequestTraceMiddleware)

    app.add_exception_handler(RewardError, handle_reward_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_invalid_body)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(health_router, tags=["health"])
    app.include_router(api_router)

    return app


app = create_app()


def main() -> None:
    import uvicorn

    port = int(os.getenv("REWARD_SERVICE_PORT", "8000"))
    uvicorn.run(
        "reward_service.app.main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
        access_log=False,
    )


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
