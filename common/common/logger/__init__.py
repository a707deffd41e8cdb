"""JSON 한 줄 로그 설정.

모듈은 ``logging.getLogger(__name__)`` 만 사용하고, 프로세스 시작 시 setup_logger 를 한 번 호출한다.
"""

import json
import logging
import os
import sys


# LogRecord 가 기본으로 가진 속성. 이 외의 속성은 extra= 로 넘어온 값으로 본다.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}

# 로그 수집기에서 소음이 되는 라이브러리 로거. httpx 는 INFO 로 Bot API URL(토큰 포함)을 남긴다.
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _resolve_level(level: str | None) -> int:
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def setup_logger(name: str = "reward-service", level: str | None = None) -> logging.Logger:
    """루트 로거에 JSON stdout 핸들러를 설치하고 서비스 로거를 돌려준다.

    SERVICE_NAME 환경변수가 있으면 name 대신 사용한다. 여러 번 호출해도 핸들러는 하나만 남는다.
    """
    log_level = _resolve_level(level)
    service_name = os.getenv("SERVICE_NAME", name)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(service_name))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing.formatter, JsonFormatter):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(log_level)

    for noisy in _QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    return logging.getLogger(service_name)


class JsonFormatter(logging.Formatter):
    """datetime, level, logger, message 와 extra 로 넘긴 필드를 JSON 객체 하나로 쓴다."""

    def __init__(self, service_name: str | None = None) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")
        self._service_name = service_name

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        entry: dict[str, object] = {
            "datetime": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self._service_name:
            entry["service_name"] = self._service_name

        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        )

        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)
