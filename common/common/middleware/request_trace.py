import json
import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response


REQUEST_ID_HEADER = "X-Request-Id"
SPAN_ID_HEADER = "X-Span-Id"

# 헬스체크는 로그를 남기지 않는다.
IGNORED_LOG_PATHS: frozenset[str] = frozenset({"/health"})

# 서명된 initData 와 일회용 토큰 값은 로그에 원문으로 남기지 않는다.
REDACTED_BODY_FIELDS: frozenset[str] = frozenset({"initData", "action_id"})

MAX_LOGGED_BODY_LENGTH = 1024


def redact_body(text: str) -> str:
    """JSON 바디의 민감 필드를 ``***`` 로 바꾼다. JSON 이 아니면 잘라서만 돌려준다."""
    try:
        data = json.loads(text)
    except ValueError:
        return text[:MAX_LOGGED_BODY_LENGTH]

    if isinstance(data, dict):
        data.update({key: "***" for key in REDACTED_BODY_FIELDS & data.keys()})
    return json.dumps(data, ensure_ascii=False)[:MAX_LOGGED_BODY_LENGTH]


class RequestTraceMiddleware(BaseHTTPMiddleware):
    """X-Request-Id / X-Span-Id 를 전파하고 요청마다 로그 한 줄을 남긴다.

    request_id 가 없으면 새로 만들고 span_id 는 "0" 으로 시작한다.
    두 값은 request.state 와 응답 헤더에 그대로 실린다.
    """

    def __init__(self, app, logger: logging.Logger | None = None) -> None:  # type: ignore[override]
        super().__init__(app)
        self._logger = logger or logging.getLogger("request_trace")

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        trace = {
            "request_id": request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex,
            "span_id": request.headers.get(SPAN_ID_HEADER) or "0",
        }
        request.state.request_id = trace["request_id"]
        request.state.span_id = trace["span_id"]

        extra: dict[str, object] = {
            **trace,
            "method": request.method,
            "path": request.url.path,
        }
        if request.method == "POST":
            # BaseHTTPMiddleware 는 읽은 바디를 캐시하므로 라우트에서도 다시 읽을 수 있다.
            body = await request.body()
            if body:
                extra["body"] = redact_body(body.decode("utf-8", errors="replace"))

        should_log = request.url.path not in IGNORED_LOG_PATHS
        started = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            if should_log:
                self._logger.exception(
                    "request failed", extra=self._timed(extra, started)
                )
            raise

        response.headers.setdefault(REQUEST_ID_HEADER, trace["request_id"])
        response.headers.setdefault(SPAN_ID_HEADER, trace["span_id"])
        if should_log:
            extra["status"] = response.status_code
            self._logger.info("completed request", extra=self._timed(extra, started))
        return response

    @staticmethod
    def _timed(extra: dict[str, object], started: float) -> dict[str, object]:
        return {**extra, "duration": f"{(time.monotonic() - started) * 1000:.3f}ms"}
